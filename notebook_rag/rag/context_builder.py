"""
Context Builder
LLM 프롬프트용 컨텍스트 조립기

기능:
1. 검색 청크를 출처 헤더가 붙은 문서 컨텍스트 블록으로 변환
2. 모드별 시스템 프롬프트 + 메모리 + 요약 + 최근 대화 창 조립
3. 우선순위 기반 섹션 선택 (토큰 제한 고려)
"""

from dataclasses import dataclass
from enum import Enum

from notebook_rag.domain.entities import (
    ChatMessage,
    ChatSummary,
    Chunk,
    InteractionMode,
    MessageRole,
)
from notebook_rag.domain.value_objects import ConfidenceLevel, ConfidenceResult
from notebook_rag.shared.constants import HEDGE_NOTE, estimate_tokens

BASE_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. You can answer questions about the user's uploaded "
    "documents, but you can also have general conversations and answer questions on "
    "any topic using your general knowledge."
)

MODE_PROMPTS = {
    InteractionMode.EXPLORING: (
        "Current mode: EXPLORING - Encourage broad discovery. Suggest related topics and "
        "connections. Help the user discover new insights."
    ),
    InteractionMode.RESEARCH: (
        "Current mode: RESEARCH - Focus on precision and citations. When referencing "
        "documents, cite specific sources. Provide fact-focused, accurate responses."
    ),
    InteractionMode.LEARNING: (
        "Current mode: LEARNING - Use the Socratic method. Ask clarifying questions. "
        "Build understanding progressively. Explain concepts step by step."
    ),
}

IMAGE_INSTRUCTIONS = """IMPORTANT - Image References:
The document context may include image markers in the format:
[IMAGE: filename - Figure N - ID: uuid]

When you encounter these markers:
1. Reference them naturally in your response (e.g., "As shown in Figure 1...")
2. Include the EXACT marker in your response where relevant
3. Do NOT describe the image content unless you have textual context"""

RELEVANCE_INSTRUCTIONS = (
    "IMPORTANT: Only use the document context above if it is RELEVANT to the user's "
    "question. If the user asks about something unrelated to the documents, ignore the "
    "document context and respond using your general knowledge."
)

NO_CONTEXT_INSTRUCTIONS = "No document context is available. Respond using your general knowledge."


class ContextPriority(str, Enum):
    """컨텍스트 우선순위"""

    CRITICAL = "critical"  # 반드시 포함
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class ContextSection:
    """컨텍스트 섹션"""

    title: str
    content: str
    priority: ContextPriority
    token_estimate: int = 0
    source: str = "unknown"

    def __post_init__(self):
        if self.token_estimate == 0:
            self.token_estimate = estimate_tokens(self.content)


def build_document_context(chunks: list[Chunk], file_names: dict[str, str] | None = None) -> str:
    """
    검색 청크를 문서 컨텍스트 블록으로 변환

    Args:
        chunks: 최종 검색 결과 (순서가 곧 Source 번호)
        file_names: document_id → 원본 파일명 (없으면 문서 제목 사용)
    """
    if not chunks:
        return ""

    file_names = file_names or {}
    parts = [
        "=== DOCUMENT CONTEXT (from user's uploaded files) ===\n\n",
        "The following excerpts were retrieved from the user's documents. "
        "Use this information ONLY if relevant to the user's question:\n\n",
    ]
    figure = 0

    for i, chunk in enumerate(chunks, 1):
        file_name = file_names.get(chunk.document_id) or chunk.document_title or chunk.document_id
        header = f"[Source {i}: {file_name}"
        if chunk.document_title and chunk.document_title != file_name:
            header += f" - {chunk.document_title}"
        if chunk.section_title:
            header += f" > Section: {chunk.section_title}"
        parts.append(header + "]\n")
        parts.append(chunk.content)
        parts.append("\n")

        for image_id in chunk.associated_image_ids:
            figure += 1
            parts.append(f"[IMAGE: {file_name} - Figure {figure} - ID: {image_id}]\n")
        parts.append("\n")

    parts.append("=== END DOCUMENT CONTEXT ===")
    return "".join(parts)


class ContextBuilder:
    """
    채팅 메시지 조립기

    시스템 메시지: 모드 프롬프트 + 문서 컨텍스트 (+ 중간 신뢰도 주의 문구)
                   + 메모리 + 최신 대화 요약
    이후 최근 비압축 메시지 창 + 현재 사용자 메시지

    사용 예:
        builder = ContextBuilder(max_tokens=6000)
        messages = builder.build_messages(
            mode=InteractionMode.RESEARCH,
            user_message="What is the deadline?",
            chunks=search_result.final_results,
        )
    """

    def __init__(self, max_tokens: int = 6000):
        """
        Args:
            max_tokens: 시스템 섹션 + 최근 대화 창의 최대 추정 토큰 수
        """
        self.max_tokens = max_tokens

    def build_system_prompt(self, mode: InteractionMode, document_context: str) -> str:
        prompt = [BASE_SYSTEM_PROMPT, MODE_PROMPTS.get(mode, "Provide helpful, accurate responses.")]
        if document_context:
            prompt.extend([IMAGE_INSTRUCTIONS, document_context, RELEVANCE_INSTRUCTIONS])
        else:
            prompt.append(NO_CONTEXT_INSTRUCTIONS)
        return "\n\n".join(prompt)

    def build_messages(
        self,
        mode: InteractionMode,
        user_message: str,
        chunks: list[Chunk] | None = None,
        file_names: dict[str, str] | None = None,
        confidence: ConfidenceResult | None = None,
        memory_context: str = "",
        summary: ChatSummary | None = None,
        recent_messages: list[ChatMessage] | None = None,
    ) -> list[dict[str, str]]:
        document_context = build_document_context(chunks or [], file_names)
        sections = [
            ContextSection(
                title="system",
                content=self.build_system_prompt(mode, document_context),
                priority=ContextPriority.CRITICAL,
                source="documents",
            )
        ]
        if confidence is not None and confidence.level == ConfidenceLevel.MEDIUM:
            sections.append(
                ContextSection("hedge", HEDGE_NOTE, ContextPriority.CRITICAL, source="confidence")
            )
        if memory_context:
            sections.append(
                ContextSection("memories", memory_context, ContextPriority.HIGH, source="memory")
            )
        if summary is not None:
            sections.append(
                ContextSection(
                    "summary",
                    f"Previous conversation summary: {summary.summary_content}",
                    ContextPriority.MEDIUM,
                    source="compaction",
                )
            )

        selected = self._select_within_limit(sections)
        used = sum(s.token_estimate for s in selected)

        messages = [{"role": "system", "content": self._assemble(selected)}]
        for message in self._recent_within_limit(recent_messages or [], self.max_tokens - used):
            role = "user" if message.role == MessageRole.USER else "assistant"
            messages.append({"role": role, "content": message.content})
        messages.append({"role": "user", "content": user_message})
        return messages

    def _select_within_limit(self, sections: list[ContextSection]) -> list[ContextSection]:
        """토큰 제한 내 섹션 선택 (원래 순서 유지)"""
        priority_order = {
            ContextPriority.CRITICAL: 0,
            ContextPriority.HIGH: 1,
            ContextPriority.MEDIUM: 2,
            ContextPriority.LOW: 3,
        }
        ranked = sorted(sections, key=lambda s: priority_order.get(s.priority, 4))

        selected_ids = set()
        total_tokens = 0
        for section in ranked:
            if total_tokens + section.token_estimate <= self.max_tokens:
                selected_ids.add(id(section))
                total_tokens += section.token_estimate
            elif section.priority == ContextPriority.CRITICAL:
                # CRITICAL은 반드시 포함
                selected_ids.add(id(section))
                total_tokens += section.token_estimate

        return [s for s in sections if id(s) in selected_ids]

    @staticmethod
    def _recent_within_limit(messages: list[ChatMessage], budget: int) -> list[ChatMessage]:
        """최신 메시지부터 예산 안에서 채운 뒤 시간순으로 반환"""
        kept: list[ChatMessage] = []
        for message in reversed(messages):
            if message.is_compacted:
                continue
            cost = message.token_count or estimate_tokens(message.content)
            if cost > budget:
                break
            kept.append(message)
            budget -= cost
        kept.reverse()
        return kept

    @staticmethod
    def _assemble(sections: list[ContextSection]) -> str:
        return "\n\n".join(section.content for section in sections)
