"""
Answer Verifier
===============
생성된 답변의 인용 문장이 인용된 근거로 뒷받침되는지 검사합니다.

1. 답변을 문장으로 분리
2. [Source N] / [N] / (Source N) / (N) 인용이 있는 문장만 검사 대상
3. LLM이 (주장, 근거) 지지도를 0.0 ~ 1.0으로 채점
4. 임계값(0.7) 미만이면 unsupported로 표시

검증 결과는 응답을 막지 않으며 사용자 노출용 경고 신호로만 쓰입니다.
"""

import logging
import re
from dataclasses import dataclass

from notebook_rag.domain.entities import Chunk
from notebook_rag.domain.interfaces import CompletionProvider
from notebook_rag.domain.value_objects import VerificationResult
from notebook_rag.shared.constants import NEUTRAL_SCORE, VERIFICATION_EVIDENCE_CHARS

logger = logging.getLogger(__name__)

CITATION = re.compile(r"\[(?:Source\s+)?(\d+)\]|\((?:Source\s+)?(\d+)\)")
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")

SUPPORT_PROMPT = """Does the evidence fully support the claim? Answer with a score from 0.0 to 1.0.

Scoring:
- 1.0: Evidence completely supports the claim with direct statements
- 0.7-0.9: Evidence strongly supports the claim with clear implications
- 0.4-0.6: Evidence partially supports the claim
- 0.1-0.3: Evidence weakly relates to the claim
- 0.0: Evidence does not support or contradicts the claim

Claim: {claim}

Evidence: {evidence}

Return ONLY the numeric score (e.g., 0.8). Do not include explanations.
Score: """


@dataclass
class CitedClaim:
    text: str
    citation_index: int  # 0부터
    evidence: str


def extract_claims(answer: str, evidence: list[Chunk]) -> list[CitedClaim]:
    """문장별 첫 인용만 사용, 범위를 벗어난 인용은 무시"""
    claims = []
    for sentence in SENTENCE_SPLIT.split(answer):
        match = CITATION.search(sentence)
        if match is None:
            continue
        index = int(match.group(1) or match.group(2)) - 1
        if 0 <= index < len(evidence):
            claims.append(CitedClaim(sentence.strip(), index, evidence[index].content))
    return claims


class AnswerVerifier:
    def __init__(
        self, llm: CompletionProvider, support_threshold: float = 0.7, enabled: bool = True
    ):
        self.llm = llm
        self.support_threshold = support_threshold
        self.enabled = enabled

    async def verify(self, answer: str, evidence: list[Chunk]) -> VerificationResult:
        if not self.enabled:
            logger.debug("Answer verification disabled, skipping")
            return VerificationResult(is_valid=True)
        if not answer:
            return VerificationResult(is_valid=True)
        if not evidence:
            logger.warning("No evidence provided for verification")
            return VerificationResult(is_valid=True)

        claims = extract_claims(answer, evidence)
        unsupported = []
        for claim in claims:
            score = await self.score_support(claim.text, claim.evidence)
            if score < self.support_threshold:
                logger.debug(f"Claim unsupported (score={score:.2f}): {claim.text[:50]}")
                unsupported.append(claim.text)

        logger.debug(
            f"Verification complete: {len(claims)} claims verified, {len(unsupported)} unsupported"
        )
        return VerificationResult(
            is_valid=not unsupported, unsupported_claims=unsupported, checked_claims=len(claims)
        )

    async def score_support(self, claim: str, evidence: str) -> float:
        prompt = SUPPORT_PROMPT.format(
            claim=claim, evidence=evidence[:VERIFICATION_EVIDENCE_CHARS]
        )
        try:
            response = await self.llm.complete(user_prompt=prompt, temperature=0.0, max_tokens=10)
        except Exception as e:
            logger.warning(f"Failed to score support level: {e}, defaulting to {NEUTRAL_SCORE}")
            return NEUTRAL_SCORE

        match = _NUMBER.search(response or "")
        if match is None:
            logger.warning(f"Unparseable support score: {response[:50]!r}")
            return NEUTRAL_SCORE
        return max(0.0, min(1.0, float(match.group())))
