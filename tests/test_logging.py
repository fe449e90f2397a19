import json
import logging

from studydesk.logging_config import AUDIT_LOGGER_NAME, MinimalJSONFormatter, configure_logging
from studydesk.telemetry import log_event, traced_duration


def _record(msg, **extra) -> logging.LogRecord:
    record = logging.LogRecord("studydesk.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_merges_dict_messages() -> None:
    payload = json.loads(MinimalJSONFormatter().format(_record({"step": "ingest.job", "file_id": "f1"})))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "studydesk.test"
    assert payload["step"] == "ingest.job"
    assert payload["file_id"] == "f1"
    assert payload["ts"].endswith("Z")


def test_formatter_keeps_plain_messages_and_extras() -> None:
    payload = json.loads(MinimalJSONFormatter().format(_record("hello", req_id="r1")))

    assert payload["message"] == "hello"
    assert payload["req_id"] == "r1"


def test_log_event_builds_shared_schema(caplog) -> None:
    logger = logging.getLogger("studydesk.test.events")
    caplog.set_level(logging.INFO, logger="studydesk.test.events")

    log_event(logger, "retriever.search", req_id="r1", file_id="f1", duration_ms=1.23456, details={"hits": 2})

    event = caplog.records[-1].msg
    assert event == {
        "step": "retriever.search",
        "module": "studydesk.test.events",
        "req_id": "r1",
        "file_id": "f1",
        "duration_ms": 1.235,
        "details": {"hits": 2},
    }


def test_traced_duration_logs_error_and_completion(caplog) -> None:
    logger = logging.getLogger("studydesk.test.trace")
    caplog.set_level(logging.INFO, logger="studydesk.test.trace")

    try:
        with traced_duration("ingest.job.process", logger=logger, job_id="j1"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    steps = [record.msg["step"] for record in caplog.records if record.name == "studydesk.test.trace"]
    assert steps == ["ingest.job.process.start", "ingest.job.process.error", "ingest.job.process.complete"]


def test_configure_logging_writes_audit_file(tmp_path) -> None:
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    configure_logging("INFO", log_dir=tmp_path)
    try:
        audit_logger.info({"event": "file.status", "id": "f1", "from": "queued", "to": "processing"})
        for handler in audit_logger.handlers:
            handler.flush()
        lines = (tmp_path / "ingest_audit.log").read_text(encoding="utf-8").splitlines()
    finally:
        for handler in list(audit_logger.handlers):
            audit_logger.removeHandler(handler)
            handler.close()

    entry = json.loads(lines[-1])
    assert entry["event"] == "file.status"
    assert entry["to"] == "processing"
    assert audit_logger.propagate is False
