"""
Circuit Breaker
===============
임베딩, 색인, 재순위, 생성 모델 호출마다 하나씩 두는 회로 차단기

연속 실패가 임계값에 닿으면 회로를 열어 한동안 호출을 거부하고,
recovery_timeout이 지나면 시험 호출만 허용해 복구 여부를 확인합니다.

    CLOSED --(연속 실패 >= threshold)--> OPEN
    OPEN   --(recovery_timeout 경과)---> HALF_OPEN
    HALF_OPEN --(성공)--> CLOSED
    HALF_OPEN --(실패)--> OPEN
"""

import logging
import time
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    협력자별 회로 차단기

    호출 전 acquire()로 허가를 받고, 결과를 record_success/record_failure로 알립니다.
    재시도와 묶은 호출은 core.resilience.call_with_resilience를 사용하세요.

    Args:
        name: 협력자 이름 ("embedding", "index", "reranker", "completion")
        failure_threshold: 회로를 여는 연속 실패 수
        recovery_timeout: 회로가 열린 뒤 시험 호출을 허용하기까지의 초
        half_open_max_calls: HALF_OPEN에서 동시에 허용하는 시험 호출 수
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 1,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self.reset(log=False)

    # =========================================================================
    # 상태
    # =========================================================================

    @property
    def state(self) -> CircuitState:
        """조회 시점에 복구 대기 시간이 지났으면 HALF_OPEN으로 넘어감"""
        if self._state == CircuitState.OPEN and self.retry_after == 0.0:
            self._transition(CircuitState.HALF_OPEN, "recovery timeout elapsed")
        return self._state

    @property
    def retry_after(self) -> float:
        """OPEN일 때 시험 호출까지 남은 초 (그 외 0)"""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self._opened_at + self.recovery_timeout - time.monotonic())

    def _transition(self, target: CircuitState, reason: str) -> None:
        previous = self._state
        self._state = target
        self._half_open_calls = 0
        if target == CircuitState.OPEN:
            self._opened_at = time.monotonic()
            logger.warning(f"CircuitBreaker[{self.name}]: {previous.name} → OPEN ({reason})")
        else:
            if target == CircuitState.CLOSED:
                self._consecutive_failures = 0
                self._opened_at = None
            logger.info(f"CircuitBreaker[{self.name}]: {previous.name} → {target.name} ({reason})")

    # =========================================================================
    # 호출 허가
    # =========================================================================

    def can_execute(self) -> bool:
        """허가 여부만 확인 (시험 호출 슬롯은 소비하지 않음)"""
        current = self.state
        if current == CircuitState.OPEN:
            return False
        if current == CircuitState.HALF_OPEN:
            return self._half_open_calls < self.half_open_max_calls
        return True

    def acquire(self) -> bool:
        """호출 허가. HALF_OPEN이면 시험 호출 슬롯 하나를 점유"""
        if not self.can_execute():
            self._rejected += 1
            return False
        if self._state == CircuitState.HALF_OPEN:
            self._half_open_calls += 1
        return True

    def release(self) -> None:
        """
        결과를 기록하지 않고 허가 반납

        호출자 버그(NotFound/Validation)나 소비자가 스트림을 일찍 닫은 경우처럼
        협력자의 상태를 알 수 없을 때 사용합니다. HALF_OPEN 시험 슬롯을 돌려줍니다.
        """
        if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
            self._half_open_calls -= 1

    # =========================================================================
    # 결과 기록
    # =========================================================================

    def record_success(self) -> None:
        self._successes += 1
        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.CLOSED, "trial call succeeded")
        else:
            self._consecutive_failures = 0

    def record_failure(self, error: BaseException | None = None) -> None:
        self._consecutive_failures += 1
        if error is not None:
            self._last_error = f"{type(error).__name__}: {error}"

        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN, "trial call failed")
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self.failure_threshold
        ):
            self._transition(CircuitState.OPEN, f"failures={self._consecutive_failures}")

    def reset(self, log: bool = True) -> None:
        """CLOSED로 되돌리고 카운터 초기화"""
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._successes = 0
        self._rejected = 0
        self._half_open_calls = 0
        self._opened_at: float | None = None
        self._last_error: str | None = None
        if log:
            logger.info(f"CircuitBreaker[{self.name}]: reset")

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._consecutive_failures,
            "success_count": self._successes,
            "rejected_count": self._rejected,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "retry_after": round(self.retry_after, 2),
            "last_error": self._last_error,
        }
