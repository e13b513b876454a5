"""
Centralized Constants
=====================
All magic numbers and fixed strings extracted to one place.
"""

# ==============================================================================
# TOKEN ESTIMATION
# ==============================================================================

CHARS_PER_TOKEN = 4  # 대략적 토큰 추정 (len / 4)


def estimate_tokens(text: str | None) -> int:
    """문자 수 기반 토큰 수 추정"""
    if not text:
        return 0
    return len(text) // CHARS_PER_TOKEN


# ==============================================================================
# RANK FUSION / CONFIDENCE
# ==============================================================================

# 순위 1의 RRF 점수 (1 / (60 + 1)). 신뢰도 정규화 기준
RRF_TOP_SCORE = 0.0164
AGREEMENT_TOP_N = 10  # 채널 간 일치도 계산에 쓰는 상위 N
DIVERSITY_FULL_DOCS = 5  # 고유 문서 5개 이상이면 다양성 1.0

COVERAGE_STOP_WORDS = frozenset(
    {"the", "is", "at", "which", "on", "a", "an", "and", "or", "but", "in", "with"}
)


# ==============================================================================
# RERANKING
# ==============================================================================

NEUTRAL_SCORE = 0.5  # 누락/해석 실패 시 중립 점수
FALLBACK_SCORE_SCALE = 10.0  # RRF 점수는 작으므로 ×10 후 클램프


# ==============================================================================
# ANSWER VERIFICATION
# ==============================================================================

VERIFICATION_EVIDENCE_CHARS = 1000


# ==============================================================================
# CHAT
# ==============================================================================

INSUFFICIENT_CONTEXT_ANSWER = (
    "I don't have enough information in the uploaded documents to answer this question "
    "confidently. Could you rephrase your question or upload more relevant documents?"
)

HEDGE_NOTE = (
    "Note: Evidence quality is moderate. "
    "Be explicit about uncertainty and cite specific passages."
)

COMPACTION_FALLBACK_CHARS = 100  # 요약 실패 시 메시지당 보존 길이

GENERATION_UNAVAILABLE_MESSAGE = (
    "The AI service is temporarily unavailable. Please try again in a moment."
)
GENERATION_TIMEOUT_MESSAGE = "Response generation timed out. Please try again."

CITATION_SNIPPET_CHARS = 100
