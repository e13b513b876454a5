"""
LLM Client
==========
재순위, 질문 재구성, 답변 검증, 메모리 추출, 대화 압축, 답변 생성이 함께 쓰는 완성 클라이언트

모든 호출은 litellm을 거치며 공유 회로 차단기와 completion 재시도 정책을 적용합니다.
실패는 ExternalServiceUnavailableError로 올라오므로 호출 지점마다 각자 방식으로 저하합니다.
"""

import asyncio
import json
import re
import time
from collections.abc import AsyncIterator
from typing import Any

from litellm import acompletion

from notebook_rag.core.circuit_breaker import CircuitBreaker
from notebook_rag.core.resilience import COMPLETION_RETRY, RetryPolicy, call_with_resilience
from notebook_rag.domain.exceptions import (
    ExternalServiceUnavailableError,
    MalformedModelOutputError,
)
from notebook_rag.monitoring.logger import RagLogger

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")


def strip_code_fences(text: str) -> str:
    """응답을 감싼 Markdown 코드 펜스 (```json ... ```) 제거"""
    return _FENCE_PATTERN.sub("", text.strip()).strip()


class LLMClient:
    """
    litellm 통합 LLM 클라이언트

    litellm.acompletion 위에 다음을 제공합니다:
    - 모델/temperature 기본값
    - 회로 차단기 + 제한 재시도 (3회, 지수 백오프)
    - 호출별 타임아웃
    - 토큰 사용량 집계
    - JSON 응답 파싱, 토큰 스트리밍

    Usage:
        client = LLMClient(model="gpt-4.1-mini")
        text = await client.complete(
            system_prompt="You are a helpful assistant.",
            user_prompt="Summarize this conversation.",
        )

        async for token in client.stream(messages):
            ...
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        default_temperature: float = 0.3,
        timeout: float = 60.0,
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy = COMPLETION_RETRY,
        logger: RagLogger | None = None,
    ):
        """
        Args:
            model: 기본 모델 (litellm 모델 문자열)
            default_temperature: 기본 샘플링 temperature
            timeout: 호출별 타임아웃 (초)
            breaker: 공유 회로 차단기 (외부 서비스마다 하나)
            retry_policy: 비스트리밍 호출의 재시도 정책
            logger: API 호출 기록용 로거 (선택)
        """
        self.model = model
        self.default_temperature = default_temperature
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(name="completion")
        self.retry_policy = retry_policy
        self.logger = logger or RagLogger("notebook_rag.llm")

        self._total_calls = 0
        self._total_prompt_tokens = 0
        self._total_completion_tokens = 0
        self._total_errors = 0

    def _build_messages(
        self,
        system_prompt: str | None,
        user_prompt: str | None,
        messages: list[dict[str, str]] | None,
    ) -> list[dict[str, str]]:
        if messages is not None:
            return messages
        built = []
        if system_prompt:
            built.append({"role": "system", "content": system_prompt})
        built.append({"role": "user", "content": user_prompt or ""})
        return built

    async def _call(self, **params: Any) -> Any:
        response = await acompletion(timeout=self.timeout, **params)
        if not response.choices:
            raise MalformedModelOutputError("LLM returned empty choices list")
        return response

    async def complete(
        self,
        system_prompt: str | None = None,
        user_prompt: str | None = None,
        messages: list[dict[str, str]] | None = None,
        temperature: float | None = None,
        max_tokens: int = 2000,
        model: str | None = None,
    ) -> str:
        """
        텍스트 완성 생성

        Raises:
            ExternalServiceUnavailableError: 회로 OPEN 또는 재시도 소진
        """
        effective_model = model or self.model
        chat = self._build_messages(system_prompt, user_prompt, messages)

        self.logger.llm_request(effective_model, message_count=len(chat))
        start_time = time.time()

        try:
            response = await call_with_resilience(
                self.breaker,
                self.retry_policy,
                self._call,
                model=effective_model,
                messages=chat,
                temperature=temperature if temperature is not None else self.default_temperature,
                max_tokens=max_tokens,
            )
        except ExternalServiceUnavailableError:
            self._total_errors += 1
            raise

        self._total_calls += 1
        latency_ms = (time.time() - start_time) * 1000
        usage = getattr(response, "usage", None)
        if usage is not None:
            self._total_prompt_tokens += usage.prompt_tokens or 0
            self._total_completion_tokens += usage.completion_tokens or 0
        self.logger.llm_response(
            effective_model,
            completion_tokens=usage.completion_tokens if usage is not None else None,
            latency_ms=latency_ms,
        )

        return response.choices[0].message.content or ""

    async def complete_json(
        self,
        system_prompt: str | None = None,
        user_prompt: str | None = None,
        temperature: float | None = 0.1,
        max_tokens: int = 1000,
        model: str | None = None,
    ) -> Any:
        """
        완성을 생성해 JSON으로 파싱

        Raises:
            ExternalServiceUnavailableError: 호출 실패
            MalformedModelOutputError: 응답이 올바른 JSON이 아님
        """
        text = await self.complete(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            model=model,
        )
        cleaned = strip_code_fences(text)
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as e:
            self.logger.warning(
                "Failed to parse JSON response from LLM",
                {"error": str(e), "response_preview": text[:200]},
            )
            raise MalformedModelOutputError(f"LLM response was not valid JSON: {e}", text) from e

    async def stream(
        self,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int = 2000,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """
        토큰 스트리밍

        스트림을 여는 호출만 회로 차단기를 거치며, 중간에 실패한 스트림은
        이미 토큰이 전달됐으므로 재시도하지 않습니다.

        허가 반납 규칙:
        - 정상 종료 → record_success
        - 제공자 오류, 타임아웃 취소 (CancelledError) → record_failure
        - 소비자가 일찍 닫음 (GeneratorExit) → release (결과 기록 없음)
        """
        effective_model = model or self.model
        if not self.breaker.acquire():
            raise ExternalServiceUnavailableError(
                f"Circuit breaker '{self.breaker.name}' is open "
                f"(retry in {self.breaker.retry_after:.1f}s)",
                service=self.breaker.name,
            )

        self.logger.llm_request(effective_model, message_count=len(messages))
        try:
            response = await acompletion(
                model=effective_model,
                messages=messages,
                temperature=temperature if temperature is not None else self.default_temperature,
                max_tokens=max_tokens,
                timeout=self.timeout,
                stream=True,
            )
            async for part in response:
                if not part.choices:
                    continue
                delta = part.choices[0].delta.content
                if delta:
                    yield delta
        except GeneratorExit:
            self.breaker.release()
            raise
        except asyncio.CancelledError as e:
            self.breaker.record_failure(e)
            self._total_errors += 1
            self.logger.warning(f"Streaming completion cancelled ({effective_model})")
            raise
        except Exception as e:
            self.breaker.record_failure(e)
            self._total_errors += 1
            raise ExternalServiceUnavailableError(
                f"Streaming completion failed: {e}", service=self.breaker.name, cause=e
            ) from e

        self.breaker.record_success()
        self._total_calls += 1

    def get_statistics(self) -> dict[str, Any]:
        return {
            "total_calls": self._total_calls,
            "total_prompt_tokens": self._total_prompt_tokens,
            "total_completion_tokens": self._total_completion_tokens,
            "total_errors": self._total_errors,
            "breaker": self.breaker.get_stats(),
        }

    def reset_statistics(self) -> None:
        self._total_calls = 0
        self._total_prompt_tokens = 0
        self._total_completion_tokens = 0
        self._total_errors = 0
