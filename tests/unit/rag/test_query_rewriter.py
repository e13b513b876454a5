"""
QueryReformulator 단위 테스트
"""

import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from notebook_rag.domain.entities import ChatMessage, MessageRole
from notebook_rag.domain.exceptions import ExternalServiceUnavailableError
from notebook_rag.rag.query_rewriter import QueryReformulator


def _history(*pairs: tuple[str, str]) -> list[ChatMessage]:
    messages = []
    for user, assistant in pairs:
        messages.append(ChatMessage(session_id="s", role=MessageRole.USER, content=user))
        messages.append(ChatMessage(session_id="s", role=MessageRole.ASSISTANT, content=assistant))
    return messages


def _output(**fields) -> str:
    return json.dumps(fields)


HISTORY = _history(("Tell me about solar panels", "Solar panels convert sunlight..."))


class TestQueryReformulator:
    @pytest.mark.asyncio
    async def test_no_history_skips_llm(self, mock_llm):
        result = await QueryReformulator(mock_llm).reformulate("What is RAG?", [])

        assert result.query == "What is RAG?"
        assert result.was_reformulated is False
        mock_llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_follow_up_rewritten(self, mock_llm):
        mock_llm.complete = AsyncMock(
            return_value=_output(
                needsReformulation=True,
                isFollowUp=True,
                query="How efficient are solar panels?",
                reasoning="pronoun 'they'",
            )
        )

        result = await QueryReformulator(mock_llm).reformulate("How efficient are they?", HISTORY)

        assert result.query == "How efficient are solar panels?"
        assert result.original_query == "How efficient are they?"
        assert result.was_reformulated is True
        assert result.is_follow_up is True

    @pytest.mark.asyncio
    async def test_standalone_kept(self, mock_llm):
        mock_llm.complete = AsyncMock(
            return_value=_output(needsReformulation=False, query="ignored")
        )
        result = await QueryReformulator(mock_llm).reformulate("What is wind power?", HISTORY)
        assert result.query == "What is wind power?"
        assert result.was_reformulated is False

    @pytest.mark.asyncio
    async def test_fenced_json_accepted(self, mock_llm):
        payload = _output(needsReformulation=True, query="Solar panel cost?")
        mock_llm.complete = AsyncMock(return_value=f"```json\n{payload}\n```")
        result = await QueryReformulator(mock_llm).reformulate("Cost?", HISTORY)
        assert result.query == "Solar panel cost?"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        ["not json", _output(needsReformulation=True, query="   "), '{"needsReformulation": "maybe?"}'],
    )
    async def test_bad_output_keeps_original(self, mock_llm, response):
        mock_llm.complete = AsyncMock(return_value=response)
        result = await QueryReformulator(mock_llm).reformulate("And then?", HISTORY)
        assert result.query == "And then?"
        assert result.was_reformulated is False

    @pytest.mark.asyncio
    async def test_llm_failure_keeps_original(self, mock_llm):
        mock_llm.complete = AsyncMock(
            side_effect=ExternalServiceUnavailableError("down", service="completion")
        )
        result = await QueryReformulator(mock_llm).reformulate("And then?", HISTORY)
        assert result.query == "And then?"
        assert result.reasoning == "reformulation unavailable"

    @pytest.mark.asyncio
    async def test_long_query_truncated(self, mock_llm):
        mock_llm.complete = AsyncMock(
            return_value=_output(needsReformulation=True, query="x" * 900)
        )
        result = await QueryReformulator(mock_llm, max_query_length=500).reformulate("q", HISTORY)
        assert len(result.query) == 500

    @pytest.mark.asyncio
    async def test_cached(self, mock_llm):
        mock_llm.complete = AsyncMock(
            return_value=_output(needsReformulation=True, query="Solar panel cost?")
        )
        reformulator = QueryReformulator(mock_llm)

        await reformulator.reformulate("Cost?", HISTORY)
        await reformulator.reformulate("Cost?", HISTORY)

        assert mock_llm.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_disabled(self, mock_llm):
        result = await QueryReformulator(mock_llm, enabled=False).reformulate("q", HISTORY)
        assert result.query == "q"
        mock_llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_only_recent_turns_sent(self, mock_llm):
        mock_llm.complete = AsyncMock(return_value=_output(needsReformulation=False))
        history = _history(*[(f"question {i}", f"answer {i}") for i in range(8)])

        await QueryReformulator(mock_llm, history_turns=2).reformulate("next?", history)

        prompt = mock_llm.complete.await_args.kwargs["user_prompt"]
        assert "question 7" in prompt
        assert "question 6" in prompt
        assert "question 5" not in prompt

    def test_format_history_truncates(self):
        history = _history(("hi", "y" * 300))
        formatted = QueryReformulator.format_history(history)
        assert formatted.startswith("User: hi\nAssistant: ")
        assert formatted.endswith("...")


# =============================================================================
# 출처 고정
# =============================================================================


def _answer(content: str, *document_ids: str) -> ChatMessage:
    return ChatMessage(
        session_id="s",
        role=MessageRole.ASSISTANT,
        content=content,
        retrieved_document_ids=list(document_ids),
    )


class TestAnchorDocuments:
    @pytest.mark.asyncio
    async def test_follow_up_anchored_to_last_answer(self, mock_llm):
        mock_llm.complete = AsyncMock(
            return_value=_output(needsReformulation=True, isFollowUp=True, query="Solar cost?")
        )
        history = [
            ChatMessage(session_id="s", role=MessageRole.USER, content="Tell me about wind"),
            _answer("Wind turbines...", "doc-wind"),
            ChatMessage(session_id="s", role=MessageRole.USER, content="And solar panels?"),
            _answer("Solar panels...", "doc-solar", "doc-grid"),
        ]

        result = await QueryReformulator(mock_llm).reformulate("How much do they cost?", history)

        assert result.anchor_document_ids == ["doc-solar", "doc-grid"]

    @pytest.mark.asyncio
    async def test_standalone_not_anchored(self, mock_llm):
        mock_llm.complete = AsyncMock(
            return_value=_output(needsReformulation=False, isFollowUp=False)
        )
        history = [_answer("Solar panels...", "doc-solar")]

        result = await QueryReformulator(mock_llm).reformulate("What is wind power?", history)

        assert result.anchor_document_ids == []

    @pytest.mark.asyncio
    async def test_cached_result_still_anchored(self, mock_llm):
        mock_llm.complete = AsyncMock(
            return_value=_output(needsReformulation=True, isFollowUp=True, query="Solar cost?")
        )
        history = [_answer("Solar panels...", "doc-solar")]
        reformulator = QueryReformulator(mock_llm)

        await reformulator.reformulate("Cost?", history)
        result = await reformulator.reformulate("Cost?", history)

        assert mock_llm.complete.await_count == 1
        assert result.anchor_document_ids == ["doc-solar"]

    def test_anchor_documents_uses_last_assistant_only(self):
        history = [
            _answer("first", "doc-1"),
            _answer("second"),
            ChatMessage(session_id="s", role=MessageRole.USER, content="hmm"),
        ]
        assert QueryReformulator.anchor_documents(history) == []
        assert QueryReformulator.anchor_documents(history[:1]) == ["doc-1"]


# =============================================================================
# 대화 기록 검색으로 맥락 보강
# =============================================================================


def _timeline(count: int) -> list[ChatMessage]:
    """1분 간격의 user/assistant 교대 메시지"""
    start = datetime(2026, 1, 1, 9, 0)
    return [
        ChatMessage(
            id=f"m{i}",
            session_id="s",
            role=MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT,
            content=f"message {i}",
            created_at=start + timedelta(minutes=i),
        )
        for i in range(count)
    ]


class TestHistorySearchContext:
    @pytest.mark.asyncio
    async def test_related_older_messages_merged_chronologically(self, mock_llm):
        messages = _timeline(12)
        history_search = AsyncMock()
        history_search.search = AsyncMock(return_value=[messages[3], messages[10], messages[1]])
        reformulator = QueryReformulator(
            mock_llm, history_turns=3, history_search=history_search, recent_messages=4
        )

        context = await reformulator.select_context("budget?", messages, "s")

        assert [m.id for m in context] == ["m1", "m3", "m8", "m9", "m10", "m11"]
        history_search.search.assert_awaited_once_with("s", "budget?", 6)

    @pytest.mark.asyncio
    async def test_window_caps_related_messages(self, mock_llm):
        messages = _timeline(12)
        history_search = AsyncMock()
        history_search.search = AsyncMock(return_value=messages[:8])
        reformulator = QueryReformulator(
            mock_llm, history_turns=2, history_search=history_search, recent_messages=2
        )

        context = await reformulator.select_context("q", messages, "s")

        assert [m.id for m in context] == ["m0", "m1", "m10", "m11"]

    @pytest.mark.asyncio
    async def test_search_failure_falls_back_to_recent_turns(self, mock_llm):
        messages = _timeline(12)
        history_search = AsyncMock()
        history_search.search = AsyncMock(side_effect=RuntimeError("index down"))
        reformulator = QueryReformulator(mock_llm, history_turns=2, history_search=history_search)

        context = await reformulator.select_context("q", messages, "s")

        assert [m.id for m in context] == ["m8", "m9", "m10", "m11"]

    @pytest.mark.asyncio
    async def test_without_session_search_skipped(self, mock_llm):
        mock_llm.complete = AsyncMock(return_value=_output(needsReformulation=False))
        history_search = AsyncMock()
        reformulator = QueryReformulator(mock_llm, history_search=history_search)

        await reformulator.reformulate("q", _timeline(4))

        history_search.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_related_message_reaches_prompt(self, mock_llm):
        mock_llm.complete = AsyncMock(return_value=_output(needsReformulation=False))
        messages = _timeline(20)
        history_search = AsyncMock()
        history_search.search = AsyncMock(return_value=[messages[2]])
        reformulator = QueryReformulator(
            mock_llm, history_turns=2, history_search=history_search, recent_messages=2
        )

        await reformulator.reformulate("q", messages, "s")

        prompt = mock_llm.complete.await_args.kwargs["user_prompt"]
        assert "message 2\n" in prompt
        assert "message 19" in prompt
        assert "message 17" not in prompt
