import json
import logging

from blobgate.log import JsonFormatter


def make_record(**kwargs) -> logging.LogRecord:
    return logging.LogRecord("blobgate.test", logging.ERROR, __file__, 1, "upload failed", None, **{"exc_info": None, **kwargs})


def test_json_formatter_merges_extra() -> None:
    record = make_record()
    record.extra = {"key": "greeting", "status": 500}

    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "ERROR"
    assert payload["logger"] == "blobgate.test"
    assert payload["message"] == "upload failed"
    assert payload["key"] == "greeting"
    assert payload["status"] == 500
    assert "time" in payload
    assert "exc_info" not in payload


def test_json_formatter_includes_traceback() -> None:
    try:
        raise RuntimeError("bucket unreachable")
    except RuntimeError as exc:
        record = make_record(exc_info=(type(exc), exc, exc.__traceback__))

    payload = json.loads(JsonFormatter().format(record))
    assert "RuntimeError: bucket unreachable" in payload["exc_info"]
