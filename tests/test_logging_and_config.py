"""Tests for structured logging and settings."""

import json
import logging
import sys

from chain_worker.config import get_settings
from chain_worker.lib.json_logger import JSONFormatter, get_structured_logger, job_logger
from chain_worker.queue import QueueConfig


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("chain_worker.test", logging.WARNING, __file__, 1, "Job %s failed", ("job_1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_promotes_job_fields(self):
        line = JSONFormatter().format(_record(job_id="job_1", attempts=2, error_code="TIMEOUT", custom="x"))
        log_obj = json.loads(line)

        assert log_obj["message"] == "Job job_1 failed"
        assert log_obj["level"] == "WARNING"
        assert log_obj["job_id"] == "job_1"
        assert log_obj["attempts"] == 2
        assert log_obj["error_code"] == "TIMEOUT"
        assert log_obj["custom"] == "x"
        assert log_obj["timestamp"].endswith("Z")

    def test_includes_exception(self):
        try:
            raise RuntimeError("rpc down")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()

        log_obj = json.loads(JSONFormatter().format(record))
        assert log_obj["exception"]["type"] == "RuntimeError"
        assert log_obj["exception"]["message"] == "rpc down"


class TestStructuredLogger:

    def test_context_is_attached(self, caplog):
        log = get_structured_logger("chain_worker.test", job_id="job_9").with_context(job_type="MINT_NFT")

        with caplog.at_level(logging.INFO, logger="chain_worker.test"):
            log.info("hello", extra={"attempts": 1})

        record = caplog.records[-1]
        assert record.job_id == "job_9"
        assert record.job_type == "MINT_NFT"
        assert record.attempts == 1

    def test_job_logger(self, caplog):
        class FakeJob:
            id = "job_1"
            type = "REGISTER_EVENT"
            idempotency_key = "idem_abc"

        with caplog.at_level(logging.INFO, logger="chain_worker.queue.engine"):
            job_logger(FakeJob()).info("claimed")

        assert caplog.records[-1].idempotency_key == "idem_abc"


class TestSettings:

    def test_defaults_match_queue_defaults(self):
        assert get_settings().queue_config() == QueueConfig()

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CHAIN_WORKER_QUEUE_BACKOFF_MULTIPLIER", "3")
        monkeypatch.setenv("CHAIN_WORKER_LOG_FORMAT", "text")

        settings = get_settings()

        assert settings.queue_config().backoff_multiplier == 3.0
        assert settings.log_format == "text"
