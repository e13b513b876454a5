"""
Notebook RAG 커스텀 예외 타입

이 모듈은 RAG 코어 전체에서 사용되는 예외 계층을 정의합니다.
외부 서비스 장애는 호출 지점에서 잡혀 빈 결과/폴백 점수로 변환되고,
NotFound 계열은 호출자 버그이므로 그대로 전파됩니다.

사용 예:
    from notebook_rag.domain.exceptions import SessionNotFoundError

    try:
        memories = await service.get_relevant_memories(session_id, query)
    except SessionNotFoundError as e:
        logger.error(f"Unknown session: {e.entity_id}")
"""

from typing import Any


class NotebookRagError(Exception):
    """
    Base exception for all notebook RAG errors.

    모든 커스텀 예외의 기본 클래스입니다.

    Example:
        try:
            await pipeline.search(session_id, query)
        except NotebookRagError as e:
            logger.error(f"RAG error: {e}")
    """

    pass


class ExternalServiceUnavailableError(NotebookRagError):
    """
    External collaborator failure (embedding, index store, reranker, completion).

    회로 차단기가 열려 있거나 재시도가 모두 소진되었을 때 발생합니다.
    호출 지점에서 잡아 빈 결과 또는 폴백 점수로 변환해야 합니다.

    Attributes:
        service: 실패한 서비스 이름 (예: "embedding", "index")
        cause: 마지막 원인 예외 (해당시)
    """

    def __init__(self, message: str, service: str = "unknown", cause: Exception | None = None):
        super().__init__(message)
        self.service = service
        self.cause = cause


class MalformedModelOutputError(NotebookRagError):
    """
    Unparseable structured response from a model.

    추출/점수화/재작성 호출의 응답을 해석할 수 없을 때 발생합니다.
    호출 지점에서 "추출 없음" / "중립 점수" / "원본 쿼리"로 처리됩니다.

    Attributes:
        raw_output: 원본 응답 (앞 200자)
    """

    def __init__(self, message: str, raw_output: str | None = None):
        super().__init__(message)
        self.raw_output = raw_output[:200] if raw_output else raw_output


class ValidationError(NotebookRagError):
    """
    Invalid input value (unknown memory type, empty content, ...).

    Attributes:
        field: 검증 실패한 필드명
        value: 실패한 값
        constraint: 위반된 제약 조건

    Example:
        raise ValidationError(
            "Unknown memory type",
            field="type",
            value="opinion",
            constraint="one of fact, preference, insight"
        )
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.value = value
        self.constraint = constraint


class NotFoundError(NotebookRagError):
    """
    Unknown entity referenced by the caller.

    Attributes:
        entity_id: 찾지 못한 엔티티 ID
    """

    entity_type = "entity"

    def __init__(self, entity_id: str, message: str | None = None):
        super().__init__(message or f"{self.entity_type} not found: {entity_id}")
        self.entity_id = entity_id


class SessionNotFoundError(NotFoundError):
    """세션을 찾을 수 없음"""

    entity_type = "Session"


class DocumentNotFoundError(NotFoundError):
    """문서를 찾을 수 없음"""

    entity_type = "Document"


class MemoryNotFoundError(NotFoundError):
    """메모리를 찾을 수 없음"""

    entity_type = "Memory"


class ConfigurationError(NotebookRagError):
    """
    Configuration errors (missing or out-of-range settings).

    Attributes:
        config_key: 문제가 된 설정 키
    """

    def __init__(self, message: str, config_key: str | None = None):
        super().__init__(message)
        self.config_key = config_key


__all__ = [
    "NotebookRagError",
    "ExternalServiceUnavailableError",
    "MalformedModelOutputError",
    "ValidationError",
    "NotFoundError",
    "SessionNotFoundError",
    "DocumentNotFoundError",
    "MemoryNotFoundError",
    "ConfigurationError",
]
