"""
RAG Logger
==========
노트북 RAG 코어의 로깅 구성

- SensitiveDataFilter: 모델 제공자 키, Bearer 토큰, key=value 비밀값 마스킹
- ErrorDeduplicationFilter: 외부 호출 장애 시 반복되는 재시도/폴백 경고 억제
- RagLogger: 이름별 싱글톤. 콘솔 + 일별 파일 로그, 채팅 턴 감사 레코드(jsonl)
- timed: 동기/비동기 함수 실행 시간 로깅
"""

import asyncio
import json
import logging
import re
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
AUDIT_QUERY_CHARS = 100

# litellm이 다루는 제공자별 키 형식 (구체적인 패턴이 먼저)
REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"sk-ant-[A-Za-z0-9_\-]{20,}"), "sk-ant-****"),
    (re.compile(r"sk-[A-Za-z0-9_\-]{20,}"), "sk-****"),
    (re.compile(r"AIza[0-9A-Za-z_\-]{30,}"), "AIza****"),
    (re.compile(r"Bearer\s+[A-Za-z0-9_\-.]{20,}"), "Bearer ****"),
    (
        re.compile(
            r"(?i)\b(api[_-]?key|token|secret|password)[\"']?\s*[:=]\s*[\"']?[A-Za-z0-9_\-]{16,}[\"']?"
        ),
        r"\1=****",
    ),
]


def redact(value: Any) -> Any:
    """문자열(및 중첩 컨테이너 안 문자열)의 비밀값 마스킹"""
    if isinstance(value, str):
        for pattern, replacement in REDACTIONS:
            value = pattern.sub(replacement, value)
        return value
    if isinstance(value, dict):
        return {k: redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact(item) for item in value)
    return value


class SensitiveDataFilter(logging.Filter):
    """레코드를 막지 않고 메시지와 인자만 마스킹"""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = redact(str(record.msg))
        if isinstance(record.args, (dict, tuple)):
            record.args = redact(record.args)
        return True


@dataclass
class _SeenMessage:
    first_seen: float
    count: int = 1
    suppressed: int = 0


class ErrorDeduplicationFilter(logging.Filter):
    """
    반복 경고/에러 억제

    숫자와 타임스탬프를 정규화한 메시지가 window_seconds 안에 max_count번을 넘으면
    억제합니다. 첫 억제와 이후 10건마다 "[Dedup]" 요약을 한 번 통과시킵니다.
    """

    SUMMARY_EVERY = 10

    def __init__(self, window_seconds: int = 60, max_count: int = 3, name: str = ""):
        super().__init__(name)
        self.window_seconds = window_seconds
        self.max_count = max_count
        self._seen: dict[str, _SeenMessage] = {}

    @staticmethod
    def _key(record: logging.LogRecord) -> str:
        text = re.sub(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}", "<TS>", str(record.msg))
        text = re.sub(r"\b\d+(\.\d+)?\b", "<N>", text)
        return f"{record.levelno}:{text[:200]}"

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno < logging.WARNING:
            return True

        now = time.time()
        self._expire(now)
        key = self._key(record)
        seen = self._seen.get(key)
        if seen is None:
            self._seen[key] = _SeenMessage(first_seen=now)
            return True

        seen.count += 1
        if seen.count <= self.max_count:
            return True

        seen.suppressed += 1
        if seen.suppressed == 1 or seen.suppressed % self.SUMMARY_EVERY == 0:
            record.msg = (
                f"[Dedup] {seen.suppressed} identical messages suppressed "
                f"({str(record.msg)[:100]})"
            )
            return True
        return False

    def _expire(self, now: float) -> None:
        for key in [k for k, s in self._seen.items() if now - s.first_seen > self.window_seconds]:
            seen = self._seen.pop(key)
            if seen.suppressed:
                logging.getLogger(__name__).info(
                    f"[Dedup Summary] {seen.suppressed} messages suppressed "
                    f"within {self.window_seconds}s"
                )

    def get_stats(self) -> dict[str, Any]:
        return {
            "tracked_messages": len(self._seen),
            "total_suppressed": sum(s.suppressed for s in self._seen.values()),
            "window_seconds": self.window_seconds,
            "max_count": self.max_count,
        }


class RagLogger:
    """
    이름별 싱글톤 로거

    같은 이름으로 다시 생성하면 처음 설정이 유지됩니다.

    Args:
        name: 로거 이름
        log_dir: 일별 파일 로그와 채팅 감사 jsonl 디렉토리 (None이면 콘솔만)
        level: 콘솔 로그 레벨
    """

    _instances: dict[str, "RagLogger"] = {}

    def __new__(cls, name: str = "notebook_rag", log_dir: str | None = None, level: str = "INFO"):
        if name not in cls._instances:
            cls._instances[name] = super().__new__(cls)
        return cls._instances[name]

    def __init__(self, name: str = "notebook_rag", log_dir: str | None = None, level: str = "INFO"):
        if getattr(self, "_initialized", False):
            return

        self.name = name
        self.log_dir = Path(log_dir) if log_dir else None
        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)
        self.logger.handlers = []
        filters = [SensitiveDataFilter(), ErrorDeduplicationFilter(window_seconds=60, max_count=3)]

        console = logging.StreamHandler(sys.stdout)
        console.setLevel(getattr(logging, level.upper(), logging.INFO))
        console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        self._attach(console, filters)

        if self.log_dir:
            log_file = self.log_dir / f"{name}_{datetime.now():%Y-%m-%d}.log"
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            self._attach(file_handler, filters)

        self._initialized = True

    def _attach(self, handler: logging.Handler, filters: list[logging.Filter]) -> None:
        for log_filter in filters:
            handler.addFilter(log_filter)
        self.logger.addHandler(handler)

    def _log(self, level: int, message: str, extra: dict | None, exc_info: bool = False) -> None:
        if extra:
            message = f"{message} | {json.dumps(extra, ensure_ascii=False, default=str)}"
        self.logger.log(level, message, exc_info=exc_info)

    def debug(self, message: str, extra: dict | None = None) -> None:
        self._log(logging.DEBUG, message, extra)

    def info(self, message: str, extra: dict | None = None) -> None:
        self._log(logging.INFO, message, extra)

    def warning(self, message: str, extra: dict | None = None) -> None:
        self._log(logging.WARNING, message, extra)

    def error(self, message: str, extra: dict | None = None, exc_info: bool = False) -> None:
        self._log(logging.ERROR, message, extra, exc_info=exc_info)

    # =========================================================================
    # 모델 호출
    # =========================================================================

    def llm_request(self, model: str, message_count: int | None = None) -> None:
        self.debug(f"LLM request: {model}", {"messages": message_count})

    def llm_response(
        self, model: str, completion_tokens: int | None = None, latency_ms: float | None = None
    ) -> None:
        self.debug(
            f"LLM response: {model}",
            {
                "completion_tokens": completion_tokens,
                "latency_ms": round(latency_ms, 1) if latency_ms else None,
            },
        )

    # =========================================================================
    # 채팅 턴 감사
    # =========================================================================

    def chat_request(self, query: str, session_id: str | None = None) -> dict[str, Any]:
        """채팅 턴 시작. 반환된 컨텍스트를 chat_response에 넘깁니다."""
        if len(query) > AUDIT_QUERY_CHARS:
            query = query[:AUDIT_QUERY_CHARS] + "..."
        context = {
            "request_id": f"chat_{int(time.time() * 1000)}",
            "session_id": session_id,
            "query": query,
            "start_time": time.time(),
        }
        self.info("Chat request", {k: v for k, v in context.items() if k != "start_time"})
        return context

    def chat_response(
        self,
        request_context: dict[str, Any],
        response: str,
        model: str | None = None,
        chunks_count: int = 0,
        confidence_level: str | None = None,
        verified: bool | None = None,
        success: bool = True,
        error: str | None = None,
    ) -> None:
        """채팅 턴 종료. log_dir이 있으면 chat_audit_YYYY-MM-DD.jsonl에 한 줄 추가"""
        latency_ms = (time.time() - request_context.get("start_time", time.time())) * 1000
        record = {
            "request_id": request_context.get("request_id"),
            "session_id": request_context.get("session_id"),
            "timestamp": datetime.now().isoformat(),
            "latency_ms": round(latency_ms, 1),
            "model": model,
            "rag_chunks": chunks_count,
            "confidence": confidence_level,
            "verified": verified,
            "success": success,
            "error": error,
            "response_length": len(response or ""),
        }

        if success:
            self.info(
                f"Chat response | {latency_ms:.0f}ms | chunks={chunks_count} "
                f"confidence={confidence_level}",
                record,
            )
        else:
            self.error(f"Chat failed | {error}", record)

        if self.log_dir:
            self._append_audit(record)

    def _append_audit(self, record: dict[str, Any]) -> None:
        audit_file = self.log_dir / f"chat_audit_{datetime.now():%Y-%m-%d}.jsonl"
        try:
            with open(audit_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(redact(record), ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            self.warning(f"Failed to write audit log: {e}")


def timed(name: str | None = None, logger: logging.Logger | None = None):
    """
    실행 시간 로깅 데코레이터

    성공 시 DEBUG로 소요 시간을, 예외 시 ERROR로 실패를 남기고 예외는 그대로 전파합니다.

    Usage:
        @timed("hybrid_search")
        async def search(...): ...
    """

    def decorator(func):
        label = name or func.__qualname__
        log = logger or logging.getLogger(func.__module__)

        def elapsed(start: float) -> str:
            return f"{(time.perf_counter() - start) * 1000:.1f}ms"

        if asyncio.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    log.error(f"Failed: {label} ({elapsed(start)}): {e}")
                    raise
                log.debug(f"Timing: {label} took {elapsed(start)}")
                return result

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log.error(f"Failed: {label} ({elapsed(start)}): {e}")
                raise
            log.debug(f"Timing: {label} took {elapsed(start)}")
            return result

        return sync_wrapper

    return decorator
