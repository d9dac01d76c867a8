from __future__ import annotations

import io
import json
import logging
import sys

from ezthrottle.logging import JsonFormatter, configure_logging


def test_json_formatter_keeps_extra_fields() -> None:
    record = logging.LogRecord(
        name="ezthrottle.client",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Job accepted",
        args=None,
        exc_info=None,
    )
    record.job_id = "job_1"
    record.status = "queued"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "ezthrottle.client"
    assert payload["message"] == "Job accepted"
    assert payload["extra"] == {"job_id": "job_1", "status": "queued"}
    assert "exception" not in payload


def test_configure_logging_writes_json_lines() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    stream = io.StringIO()
    try:
        configure_logging("debug", stream=stream)
        logging.getLogger("ezthrottle.test").warning("hello", extra={"url": "https://a.example.com"})
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

    line = json.loads(stream.getvalue().strip())
    assert line["message"] == "hello"
    assert line["extra"] == {"url": "https://a.example.com"}
    assert logging.getLogger("httpx").level == logging.WARNING


def test_json_formatter_reports_exception_and_location() -> None:
    try:
        raise ValueError("bad status")
    except ValueError:
        record = logging.getLogger("ezthrottle.workflow.engine").makeRecord(
            "ezthrottle.workflow.engine",
            logging.ERROR,
            __file__,
            42,
            "Job submission failed",
            None,
            sys.exc_info(),
            func="submit",
        )

    payload = json.loads(JsonFormatter(include_location=True).format(record))

    assert payload["where"] == "test_logging:submit:42"
    assert payload["exception"]["type"] == "ValueError"
    assert payload["exception"]["message"] == "bad status"
    assert "Traceback" in payload["exception"]["traceback"]
    assert "extra" not in payload
