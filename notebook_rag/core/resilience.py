"""
Resilience Wrappers
===================
외부 호출 경계에 적용하는 회로 차단 + 제한 재시도 데코레이터

정책:
- embedding: 3회, 지수 백오프
- index: 3회, 고정 0.5초
- reranker: 2회, 고정 0.5초
- completion: 3회, 지수 백오프

회로가 열려 있거나 재시도가 모두 소진되면 fallback을 호출하거나
ExternalServiceUnavailableError를 발생시킵니다.
NotFoundError / ValidationError는 호출자 버그이므로 재시도 없이 그대로 전파됩니다.
어느 경로로 끝나든 acquire()로 얻은 허가는 기록(record_*) 또는 release()로 반납됩니다.

Usage:
    breaker = CircuitBreaker(name="index")

    @resilient(breaker, INDEX_RETRY, fallback=lambda *a, **kw: [])
    async def search(...):
        ...
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from notebook_rag.core.circuit_breaker import CircuitBreaker
from notebook_rag.domain.exceptions import (
    ExternalServiceUnavailableError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

# 재시도 대상이 아닌 예외 (호출자 버그)
NON_RETRYABLE: tuple[type[Exception], ...] = (NotFoundError, ValidationError)


@dataclass(frozen=True)
class RetryPolicy:
    """
    재시도 정책

    Attributes:
        max_attempts: 최대 시도 횟수 (첫 호출 포함)
        delay: 첫 재시도 전 대기 시간 (초)
        backoff: 대기 시간 배수 (1.0 = 고정)
        max_delay: 대기 시간 상한
    """

    max_attempts: int = 3
    delay: float = 0.5
    backoff: float = 1.0
    max_delay: float = 10.0

    def wait_time(self, attempt: int) -> float:
        """attempt번째(0부터) 실패 후 대기 시간"""
        return min(self.delay * (self.backoff**attempt), self.max_delay)


EMBEDDING_RETRY = RetryPolicy(max_attempts=3, delay=1.0, backoff=2.0)
INDEX_RETRY = RetryPolicy(max_attempts=3, delay=0.5, backoff=1.0)
RERANKER_RETRY = RetryPolicy(max_attempts=2, delay=0.5, backoff=1.0)
COMPLETION_RETRY = RetryPolicy(max_attempts=3, delay=1.0, backoff=2.0)


async def call_with_resilience(
    breaker: CircuitBreaker,
    policy: RetryPolicy,
    func: Callable[..., Awaitable[R]],
    *args: Any,
    **kwargs: Any,
) -> R:
    """
    회로 차단기 + 재시도로 비동기 함수 호출

    Raises:
        ExternalServiceUnavailableError: 회로 OPEN 또는 재시도 소진
    """
    last_error: Exception | None = None

    for attempt in range(policy.max_attempts):
        if not breaker.acquire():
            raise ExternalServiceUnavailableError(
                f"Circuit breaker '{breaker.name}' is open (retry in {breaker.retry_after:.1f}s)",
                service=breaker.name,
                cause=last_error,
            )
        try:
            result = await func(*args, **kwargs)
        except NON_RETRYABLE:
            breaker.release()
            raise
        except asyncio.CancelledError as e:
            # 타임아웃으로 취소된 호출도 실패로 기록 (HALF_OPEN 시험 슬롯 반환)
            breaker.record_failure(e)
            raise
        except Exception as e:
            last_error = e
            breaker.record_failure(e)
            logger.warning(
                f"{breaker.name} call failed (attempt {attempt + 1}/{policy.max_attempts}): {e}"
            )
        else:
            breaker.record_success()
            return result

        if attempt < policy.max_attempts - 1:
            await asyncio.sleep(policy.wait_time(attempt))

    raise ExternalServiceUnavailableError(
        f"{breaker.name} unavailable after {policy.max_attempts} attempts: {last_error}",
        service=breaker.name,
        cause=last_error,
    )


def resilient(
    breaker: CircuitBreaker,
    policy: RetryPolicy,
    fallback: Callable[..., Any] | None = None,
):
    """
    비동기 함수용 회로 차단 + 재시도 데코레이터

    Args:
        breaker: 공유 회로 차단기
        policy: 재시도 정책
        fallback: 실패 시 같은 인자로 호출되는 폴백 (None이면 예외 전파)
    """

    def decorator(func: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> R:
            try:
                return await call_with_resilience(breaker, policy, func, *args, **kwargs)
            except ExternalServiceUnavailableError as e:
                if fallback is None:
                    raise
                logger.warning(f"{func.__qualname__} degraded to fallback: {e}")
                return fallback(*args, **kwargs)

        return wrapper

    return decorator
