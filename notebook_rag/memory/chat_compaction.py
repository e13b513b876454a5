"""
Chat Compaction
===============
오래된 대화를 요약으로 대체하여 대화 컨텍스트 크기를 제한합니다.

트리거:
- 비압축 메시지 토큰 합 > token_threshold (3000)
- 비압축 메시지 수 > message_threshold (30)
- 명시적 요청 (compact)

동작:
- 최근 sliding_window_size(10)개 메시지는 건드리지 않음
- 그 이전 메시지를 batch_size(20)개씩 요약 → ChatSummary 추가
- 원본은 is_compacted=True, summary_id 설정 (활성 창으로 돌아오지 않음)
- 압축할 메시지가 없으면 아무것도 하지 않음 (멱등)
"""

import logging

from notebook_rag.domain.entities import ChatMessage, ChatSummary
from notebook_rag.domain.exceptions import SessionNotFoundError
from notebook_rag.domain.interfaces import CompletionProvider
from notebook_rag.domain.interfaces.repository import NotebookRepository
from notebook_rag.shared.constants import COMPACTION_FALLBACK_CHARS, estimate_tokens

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = (
    "Summarize the following conversation concisely, "
    "preserving key facts, decisions, and context:\n\n"
)


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def _message_tokens(message: ChatMessage) -> int:
    return message.token_count or estimate_tokens(message.content)


class ChatCompactionService:
    """
    대화 압축 서비스

    사용 예:
        compaction = ChatCompactionService(repository, llm_client)
        await compaction.check_and_compact(session_id)
    """

    def __init__(
        self,
        repository: NotebookRepository,
        llm: CompletionProvider,
        sliding_window_size: int = 10,
        token_threshold: int = 3000,
        message_threshold: int = 30,
        batch_size: int = 20,
    ):
        self.repository = repository
        self.llm = llm
        self.sliding_window_size = sliding_window_size
        self.token_threshold = token_threshold
        self.message_threshold = message_threshold
        self.batch_size = batch_size

    async def _active_messages(self, session_id: str) -> list[ChatMessage]:
        return await self.repository.list_messages(session_id, include_compacted=False)

    def needs_compaction(self, messages: list[ChatMessage]) -> bool:
        total_tokens = sum(_message_tokens(m) for m in messages)
        return len(messages) > self.message_threshold or total_tokens > self.token_threshold

    async def check_and_compact(self, session_id: str) -> list[ChatSummary]:
        """임계값을 넘었을 때만 압축"""
        messages = await self._active_messages(session_id)
        if not self.needs_compaction(messages):
            return []

        logger.info(
            f"Compaction triggered for session {session_id} "
            f"(messages: {len(messages)}, tokens: {sum(_message_tokens(m) for m in messages)})"
        )
        return await self.compact(session_id)

    async def compact(self, session_id: str) -> list[ChatSummary]:
        """
        슬라이딩 창 밖의 메시지를 배치 단위로 요약

        Returns:
            새로 생성된 요약 (없으면 빈 리스트)

        Raises:
            SessionNotFoundError: 세션이 없음
        """
        if await self.repository.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)

        messages = await self._active_messages(session_id)
        if len(messages) <= self.sliding_window_size:
            return []

        to_compact = messages[: len(messages) - self.sliding_window_size]
        summaries = []
        for start in range(0, len(to_compact), self.batch_size):
            batch = to_compact[start : start + self.batch_size]
            summaries.append(await self._compact_batch(session_id, batch))

        logger.info(
            f"Compacted {len(to_compact)} messages into {len(summaries)} summaries "
            f"for session {session_id}"
        )
        return summaries

    async def _compact_batch(self, session_id: str, batch: list[ChatMessage]) -> ChatSummary:
        content = await self.generate_summary(batch)
        summary = await self.repository.save_summary(
            ChatSummary(
                session_id=session_id,
                summary_content=content,
                message_count_covered=len(batch),
                token_count=estimate_tokens(content),
                original_token_count=sum(_message_tokens(m) for m in batch),
            )
        )
        await self.repository.save_messages(
            [m.model_copy(update={"is_compacted": True, "summary_id": summary.id}) for m in batch]
        )
        return summary

    async def generate_summary(self, messages: list[ChatMessage]) -> str:
        conversation = "".join(
            f"{m.role.value.upper()}: {m.content}\n\n" for m in messages
        )
        try:
            summary = await self.llm.complete(
                user_prompt=SUMMARY_PROMPT + conversation, temperature=0.3, max_tokens=500
            )
            if summary.strip():
                return summary.strip()
            logger.warning("Empty summary returned, using truncated transcript")
        except Exception as e:
            logger.error(f"Failed to generate summary: {e}")

        return "\n".join(
            f"{m.role.value.upper()}: {_truncate(m.content, COMPACTION_FALLBACK_CHARS)}"
            for m in messages
        )

    async def get_latest_summary(self, session_id: str) -> ChatSummary | None:
        summaries = await self.repository.list_summaries(session_id)
        return summaries[-1] if summaries else None
