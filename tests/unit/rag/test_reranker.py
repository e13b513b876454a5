"""
의미 재순위 (LLMReranker / CrossEncoderReranker) 단위 테스트
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from notebook_rag.core.resilience import RetryPolicy
from notebook_rag.domain.exceptions import ExternalServiceUnavailableError
from notebook_rag.rag.reranker import (
    CrossEncoderReranker,
    LLMReranker,
    create_reranker,
    fallback_score,
    fit_scores,
    parse_scores,
)
from tests.helpers import make_chunk


def _candidates(n: int) -> list:
    return [make_chunk(f"c{i}", content=f"passage {i}", score=0.016 - i * 0.001) for i in range(n)]


# ---------------------------------------------------------------------------
# 점수 파싱
# ---------------------------------------------------------------------------


class TestParseScores:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ('{"scores": [0.8, 0.3]}', [0.8, 0.3]),
            ("[0.1, 0.9]", [0.1, 0.9]),
            ('```json\n{"scores": [1, 0]}\n```', [1.0, 0.0]),
            ("0.7, 0.2, 0.5", [0.7, 0.2, 0.5]),
            ("Scores: 0.9 and 0.4", [0.9, 0.4]),
            ("no numbers here", []),
            ("", []),
        ],
    )
    def test_lenient_parsing(self, text, expected):
        assert parse_scores(text) == expected

    def test_fit_pads_and_clamps(self):
        assert fit_scores([1.5, -0.2], 4) == [1.0, 0.0, 0.5, 0.5]
        assert fit_scores([0.1, 0.2, 0.3], 2) == [0.1, 0.2]

    @pytest.mark.parametrize(
        "prior,expected",
        [(None, 0.5), (0.0, 0.5), (0.016, 0.16), (0.5, 1.0)],
    )
    def test_fallback_score(self, prior, expected):
        assert fallback_score(make_chunk("x", score=prior)) == pytest.approx(expected)


# ---------------------------------------------------------------------------
# LLMReranker
# ---------------------------------------------------------------------------


class TestLLMReranker:
    @pytest.mark.asyncio
    async def test_reorders_by_llm_scores(self, mock_llm):
        mock_llm.complete = AsyncMock(return_value='{"scores": [0.2, 0.9, 0.5]}')
        reranker = LLMReranker(mock_llm)

        result = await reranker.rerank("query", _candidates(3), top_k=2)

        assert [c.id for c in result] == ["c1", "c2"]
        assert result[0].relevance_score == 0.9

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n,top_k", [(3, 6), (8, 6), (25, 6)])
    async def test_failure_still_scores_every_chunk(self, mock_llm, n, top_k):
        """배치 호출이 실패해도 모든 청크가 [0,1] 점수를 받고 길이는 min(top_k, n)"""
        mock_llm.complete = AsyncMock(
            side_effect=ExternalServiceUnavailableError("reranker down", service="reranker")
        )
        reranker = LLMReranker(mock_llm, batch_size=10)

        result = await reranker.rerank("query", _candidates(n), top_k=top_k)

        assert len(result) == min(top_k, n)
        assert all(0.0 <= c.relevance_score <= 1.0 for c in result)

    @pytest.mark.asyncio
    async def test_unparseable_response_uses_fallback(self, mock_llm):
        mock_llm.complete = AsyncMock(return_value="I cannot score these.")
        reranker = LLMReranker(mock_llm)

        result = await reranker.rerank("query", _candidates(2), top_k=2)

        assert [c.relevance_score for c in result] == pytest.approx([0.16, 0.15])

    @pytest.mark.asyncio
    async def test_short_score_list_padded(self, mock_llm):
        mock_llm.complete = AsyncMock(return_value="[0.9]")
        result = await LLMReranker(mock_llm).rerank("q", _candidates(3), top_k=3)
        assert [c.relevance_score for c in result] == [0.9, 0.5, 0.5]

    @pytest.mark.asyncio
    async def test_batches(self, mock_llm):
        mock_llm.complete = AsyncMock(return_value="[0.5, 0.5]")
        await LLMReranker(mock_llm, batch_size=2).rerank("q", _candidates(5), top_k=5)
        assert mock_llm.complete.await_count == 3

    @pytest.mark.asyncio
    async def test_disabled_sorts_by_prior(self, mock_llm):
        candidates = [make_chunk("low", score=0.1), make_chunk("high", score=0.9)]
        result = await LLMReranker(mock_llm, enabled=False).rerank("q", candidates, top_k=1)
        assert [c.id for c in result] == ["high"]
        mock_llm.complete.assert_not_awaited()

    def test_passages_truncated(self, mock_llm):
        reranker = LLMReranker(mock_llm, passage_max_chars=10)
        text = reranker.build_passages([make_chunk("x", content="a" * 50)])
        assert text.startswith("[0] " + "a" * 10 + "...")

    @pytest.mark.asyncio
    async def test_empty_candidates(self, mock_llm):
        assert await LLMReranker(mock_llm).rerank("q", [], top_k=3) == []


# ---------------------------------------------------------------------------
# CrossEncoderReranker (모델 로드 없이 _predict_async 대체)
# ---------------------------------------------------------------------------


class TestCrossEncoderReranker:
    def test_model_alias(self):
        reranker = CrossEncoderReranker(model_name="bge-reranker-base")
        assert reranker.model_name == "BAAI/bge-reranker-base"

    @pytest.mark.asyncio
    async def test_scores_from_predictions(self):
        reranker = CrossEncoderReranker(retry_policy=RetryPolicy(max_attempts=1, delay=0.0))
        reranker._predict_async = AsyncMock(return_value=[0.1, 0.95])

        result = await reranker.rerank("q", _candidates(2), top_k=2)

        assert [c.id for c in result] == ["c1", "c0"]

    @pytest.mark.asyncio
    async def test_failure_uses_fallback(self):
        reranker = CrossEncoderReranker(retry_policy=RetryPolicy(max_attempts=1, delay=0.0))
        reranker._predict_async = AsyncMock(side_effect=RuntimeError("model missing"))

        result = await reranker.rerank("q", _candidates(3), top_k=2)

        assert len(result) == 2
        assert all(0.0 <= c.relevance_score <= 1.0 for c in result)


class TestCreateReranker:
    def test_default_llm(self):
        assert isinstance(create_reranker("llm", MagicMock()), LLMReranker)

    def test_cross_encoder(self):
        assert isinstance(create_reranker("cross-encoder", MagicMock()), CrossEncoderReranker)
