"""
Query Reformulator
대화 맥락 기반 후속 질문 재구성 모듈

Flow:
1. 히스토리가 없거나 비활성화면 LLM 호출 없이 원본 반환
2. 참조할 대화 구성
   - 대화 기록 검색이 있으면: 최근 메시지(기본 4개) + 질문과 관련된 과거 메시지를
     N턴 분량까지 채운 뒤 시간순 정렬
   - 없으면: 최근 N턴(user+assistant 쌍, 기본 5)
3. 포맷한 대화로 LLM에 JSON 판단 요청, ReformulationOutput 스키마로 검증
4. 빈 쿼리 → 원본, 최대 길이(500자) 초과 → 절단
5. 후속 질문이면 직전 답변이 인용한 문서 ID를 출처 고정용으로 반환
6. 어떤 실패든 원본 쿼리로 폴백 (검색을 막지 않음)

Usage:
    from notebook_rag.rag.query_rewriter import QueryReformulator

    reformulator = QueryReformulator(llm_client)
    result = await reformulator.reformulate("How efficient are they?", recent_messages)
    print(result.query)  # "How efficient are solar panels?"
"""

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from notebook_rag.domain.entities import ChatMessage, MessageRole
from notebook_rag.domain.interfaces import CompletionProvider
from notebook_rag.shared.llm_client import strip_code_fences

if TYPE_CHECKING:
    from notebook_rag.rag.chat_history_search import ChatHistorySearch

logger = logging.getLogger(__name__)

REFORMULATION_SYSTEM_PROMPT = """You are a query reformulation assistant for a conversational document Q&A system.

Task: Analyze the user's new query in the context of their conversation history.

Rules:
1. If the query is standalone (self-contained), return needsReformulation=false
2. If it references previous context (pronouns like "it"/"they", implicit topics,
   follow-ups like "what about X"), return needsReformulation=true
3. When reformulating, create a self-contained query incorporating relevant context
4. Keep reformulated queries concise (under 50 words)
5. Preserve the user's intent and question type
6. Only include context that is directly relevant to answering the query

Examples:
- Standalone: "What is quantum computing?" -> needsReformulation=false, query unchanged
- Follow-up: "What about chapter 3?" (after discussing climate change)
  -> needsReformulation=true, query="What does chapter 3 say about climate change?"
- Pronoun: "How efficient are they?" (after discussing solar panels)
  -> needsReformulation=true, query="How efficient are solar panels?"

Return your analysis as JSON with these fields:
- needsReformulation (boolean)
- isFollowUp (boolean)
- query (string) - original if standalone, reformulated if not
- reasoning (string) - brief explanation of your decision"""

REFORMULATION_USER_PROMPT = """Conversation History:
{history}

New User Query: {query}

Analyze and return JSON with needsReformulation, isFollowUp, query, and reasoning fields."""

# 캐시 크기 제한 (FIFO)
CACHE_SIZE = 100
HISTORY_CONTENT_CHARS = 200


class ReformulationOutput(BaseModel):
    """LLM 구조화 출력 스키마"""

    model_config = ConfigDict(populate_by_name=True)

    needs_reformulation: bool = Field(default=False, alias="needsReformulation")
    is_follow_up: bool = Field(default=False, alias="isFollowUp")
    query: str = ""
    reasoning: str = ""


@dataclass
class ReformulatedQuery:
    """재구성 결과"""

    original_query: str  # 원본 질문
    query: str  # 검색에 사용할 질문
    was_reformulated: bool
    is_follow_up: bool = False
    reasoning: str = ""
    anchor_document_ids: list[str] = field(default_factory=list)  # 후속 질문일 때만 채워짐

    @classmethod
    def unchanged(cls, query: str, reasoning: str = "") -> "ReformulatedQuery":
        return cls(original_query=query, query=query, was_reformulated=False, reasoning=reasoning)


class QueryReformulator:
    """
    대화 히스토리 기반 질문 재구성

    후속 질문의 지시어나 생략된 주제를 이전 대화 맥락으로 채워
    독립적인 검색 질문으로 변환합니다.

    최적화:
    - 캐싱으로 동일 쿼리+히스토리 조합 중복 호출 방지
    - 최근 N턴만 참조하고 긴 메시지는 앞부분만 사용
    """

    def __init__(
        self,
        llm: CompletionProvider,
        history_turns: int = 5,
        max_query_length: int = 500,
        enabled: bool = True,
        history_search: "ChatHistorySearch | None" = None,
        recent_messages: int = 4,
    ):
        """
        Args:
            llm: LLM 클라이언트
            history_turns: 참조할 최대 대화 턴 수 (user+assistant 쌍)
            max_query_length: 재구성된 질문 최대 길이
            enabled: False면 항상 원본 반환
            history_search: 대화 기록 검색 (None이면 최근 N턴만 사용)
            recent_messages: 검색 결과와 별개로 항상 포함할 최근 메시지 수
        """
        self.llm = llm
        self.history_turns = history_turns
        self.max_query_length = max_query_length
        self.enabled = enabled
        self.history_search = history_search
        self.recent_messages = recent_messages
        self._cache: dict[str, ReformulatedQuery] = {}

    async def reformulate(
        self, query: str, history: list[ChatMessage], session_id: str | None = None
    ) -> ReformulatedQuery:
        """
        후속 질문을 독립적인 검색 쿼리로 재구성

        Args:
            query: 현재 사용자 질문
            history: 이전 대화 메시지 (시간순, 현재 질문 제외)
            session_id: 대화 기록 검색 대상 세션 (없으면 검색하지 않음)
        """
        if not self.enabled:
            return ReformulatedQuery.unchanged(query, "reformulation disabled")
        if not history:
            return ReformulatedQuery.unchanged(query, "no conversation history")

        context = await self.select_context(query, history, session_id)
        cache_key = self._make_cache_key(query, context)
        if cache_key in self._cache:
            return self._with_anchors(self._cache[cache_key], history)

        try:
            response = await self.llm.complete(
                system_prompt=REFORMULATION_SYSTEM_PROMPT,
                user_prompt=REFORMULATION_USER_PROMPT.format(
                    history=self.format_history(context), query=query
                ),
                temperature=0.1,
                max_tokens=300,
            )
            output = ReformulationOutput.model_validate_json(strip_code_fences(response))
        except (PydanticValidationError, json.JSONDecodeError) as e:
            logger.warning(f"Malformed reformulation output, using original query: {e}")
            return ReformulatedQuery.unchanged(query, "malformed model output")
        except Exception as e:
            logger.warning(f"Query reformulation failed, using original query: {e}")
            return ReformulatedQuery.unchanged(query, "reformulation unavailable")

        result = self._to_result(query, output)
        logger.debug(
            f"Query reformulation: needs_reformulation={output.needs_reformulation}, "
            f"is_follow_up={output.is_follow_up}, reasoning={output.reasoning}"
        )

        self._cache[cache_key] = result
        if len(self._cache) > CACHE_SIZE:
            del self._cache[next(iter(self._cache))]
        return self._with_anchors(result, history)

    async def select_context(
        self, query: str, history: list[ChatMessage], session_id: str | None = None
    ) -> list[ChatMessage]:
        """
        LLM에 보여줄 대화 선택

        최근 메시지를 먼저 넣고 관련 과거 메시지로 history_turns * 2개까지 채운 뒤
        시간순으로 정렬합니다. 검색이 실패하면 최근 N턴으로 대체합니다.
        """
        window = self.history_turns * 2
        if self.history_search is None or not session_id:
            return history[-window:]

        recent = history[-self.recent_messages :] if self.recent_messages > 0 else []
        try:
            related = await self.history_search.search(session_id, query, window)
        except Exception as e:
            logger.warning(f"Chat history search failed, using recent messages only: {e}")
            return history[-window:]

        selected = {m.id: m for m in recent}
        for message in related:
            if len(selected) >= window:
                break
            selected.setdefault(message.id, message)
        logger.debug(
            f"Reformulation context: recent={len(recent)}, related={len(related)}, "
            f"selected={len(selected)}"
        )
        return sorted(selected.values(), key=lambda m: m.created_at)

    @staticmethod
    def anchor_documents(history: list[ChatMessage]) -> list[str]:
        """직전 assistant 답변이 인용한 문서 ID"""
        for message in reversed(history):
            if message.role == MessageRole.ASSISTANT:
                return list(message.retrieved_document_ids)
        return []

    def _with_anchors(
        self, result: ReformulatedQuery, history: list[ChatMessage]
    ) -> ReformulatedQuery:
        if not result.is_follow_up:
            return result
        anchors = self.anchor_documents(history)
        if not anchors:
            return result
        return dataclasses.replace(result, anchor_document_ids=anchors)

    def _to_result(self, original: str, output: ReformulationOutput) -> ReformulatedQuery:
        rewritten = output.query.strip()
        if not output.needs_reformulation or not rewritten:
            return ReformulatedQuery(
                original_query=original,
                query=original,
                was_reformulated=False,
                is_follow_up=output.is_follow_up,
                reasoning=output.reasoning,
            )

        if len(rewritten) > self.max_query_length:
            logger.debug(f"Reformulated query truncated from {len(rewritten)} chars")
            rewritten = rewritten[: self.max_query_length]

        return ReformulatedQuery(
            original_query=original,
            query=rewritten,
            was_reformulated=rewritten != original,
            is_follow_up=output.is_follow_up,
            reasoning=output.reasoning,
        )

    @staticmethod
    def _make_cache_key(query: str, history: list[ChatMessage]) -> str:
        history_str = "|".join(m.id for m in history)
        return f"{query}:{hash(history_str)}"

    @staticmethod
    def format_history(history: list[ChatMessage]) -> str:
        lines = []
        for message in history:
            role = "User" if message.role == MessageRole.USER else "Assistant"
            content = message.content
            # 토큰 절약: 긴 응답은 앞부분만
            if len(content) > HISTORY_CONTENT_CHARS:
                content = content[:HISTORY_CONTENT_CHARS] + "..."
            lines.append(f"{role}: {content}")
        return "\n".join(lines)

    def clear_cache(self) -> None:
        self._cache.clear()
