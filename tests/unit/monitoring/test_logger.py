"""
RagLogger / 로깅 필터 / timed 데코레이터 단위 테스트
"""

import json
import logging

import pytest

from notebook_rag.monitoring.logger import (
    ErrorDeduplicationFilter,
    RagLogger,
    SensitiveDataFilter,
    redact,
    timed,
)


def _record(msg: str, level: int = logging.WARNING) -> logging.LogRecord:
    return logging.LogRecord("test", level, __file__, 1, msg, None, None)


class TestSensitiveDataFilter:
    @pytest.mark.parametrize(
        "raw,hidden",
        [
            ("key sk-abcdefghijklmnopqrstuvwxyz123", "abcdefghijklmnopqrstuvwxyz123"),
            ("api_key=abcdef1234567890abcdef", "abcdef1234567890abcdef"),
            ("Bearer abcdefghijklmnopqrstuvwxyz.123", "abcdefghijklmnopqrstuvwxyz"),
        ],
    )
    def test_masks_secrets(self, raw, hidden):
        record = _record(raw)
        assert SensitiveDataFilter().filter(record) is True
        assert hidden not in record.msg

    def test_plain_message_untouched(self):
        record = _record("Retrieved 6 chunks")
        SensitiveDataFilter().filter(record)
        assert record.msg == "Retrieved 6 chunks"


class TestErrorDeduplicationFilter:
    def test_info_always_passes(self):
        dedup = ErrorDeduplicationFilter(max_count=1)
        assert all(dedup.filter(_record("same", logging.INFO)) for _ in range(5))

    def test_suppresses_repeats(self):
        """max_count 초과 동일 경고는 첫 억제 요약 이후 차단"""
        dedup = ErrorDeduplicationFilter(max_count=2)
        results = [dedup.filter(_record("index call failed (attempt 1/3)")) for _ in range(5)]

        assert results == [True, True, True, False, False]
        assert dedup.get_stats()["total_suppressed"] == 3

    def test_numbers_normalized(self):
        dedup = ErrorDeduplicationFilter(max_count=1)
        dedup.filter(_record("attempt 1 failed"))
        second = _record("attempt 2 failed")
        dedup.filter(second)
        assert second.msg.startswith("[Dedup]")


class TestRagLogger:
    def test_singleton_per_name(self):
        assert RagLogger("notebook_rag.test_a") is RagLogger("notebook_rag.test_a")
        assert RagLogger("notebook_rag.test_a") is not RagLogger("notebook_rag.test_b")

    def test_chat_audit_written(self, tmp_path):
        rag_logger = RagLogger("notebook_rag.test_audit", log_dir=str(tmp_path))
        context = rag_logger.chat_request("what is the deadline?", session_id="s1")
        rag_logger.chat_response(context, "March 15", chunks_count=3, confidence_level="high")

        audit_files = list(tmp_path.glob("chat_audit_*.jsonl"))
        assert len(audit_files) == 1
        record = json.loads(audit_files[0].read_text(encoding="utf-8").strip())
        assert record["session_id"] == "s1"
        assert record["rag_chunks"] == 3
        assert record["success"] is True

    def test_long_query_truncated(self):
        rag_logger = RagLogger("notebook_rag.test_truncate")
        context = rag_logger.chat_request("x" * 150)
        assert context["query"].endswith("...")
        assert len(context["query"]) == 103


class TestTimed:
    @pytest.mark.asyncio
    async def test_async_logs_timing(self, caplog):
        @timed("fused_search")
        async def search():
            return 3

        with caplog.at_level(logging.DEBUG):
            assert await search() == 3
        assert "Timing: fused_search" in caplog.text

    def test_sync_logs_failure(self, caplog):
        @timed()
        def broken():
            raise ValueError("boom")

        with caplog.at_level(logging.DEBUG), pytest.raises(ValueError):
            broken()
        assert "Failed:" in caplog.text
        assert broken.__name__ == "broken"


# ----------------------------------------------------------------------------
# redact
# ----------------------------------------------------------------------------


class TestRedact:
    def test_nested_containers(self):
        """dict/list 안의 문자열도 마스킹, 다른 타입은 그대로"""
        value = {"error": ["token: abcdef1234567890abcd"], "count": 3}
        result = redact(value)
        assert "abcdef1234567890abcd" not in result["error"][0]
        assert result["count"] == 3

    def test_anthropic_key_masked_before_generic(self):
        assert redact("sk-ant-" + "a" * 24) == "sk-ant-****"
