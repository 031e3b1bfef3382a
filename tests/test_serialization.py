from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from policy_exporter.logging import JsonFormatter, LogConfig, PlainFormatter, add_run_log_file, setup_logging
from policy_exporter.model.records import Attachment
from policy_exporter.model.values import ArrayValue, IntValue, StringValue
from policy_exporter.util.serialization import dumps_pretty, to_jsonable
from policy_exporter.util.time import date_stamp, doc_timestamp


class _Color(Enum):
    RED = "red"


def test_to_jsonable_handles_records_and_values() -> None:
    attachment = Attachment(enabled=True, parameters={"days": IntValue(3)}, location="westeurope")
    assert to_jsonable(attachment) == {
        "enabled": True,
        "effect": "",
        "parameters": {"days": 3},
        "location": "westeurope",
        "linked_scopes": [],
    }
    assert to_jsonable(ArrayValue((StringValue("a"), IntValue(1)))) == ["a", 1]


def test_to_jsonable_handles_datetime_bytes_enum_and_paths() -> None:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    payload = {"when": ts, "blob": b"bytes", "color": _Color.RED, "path": Path("a/b")}

    assert to_jsonable(payload) == {
        "when": "2024-01-01T00:00:00+00:00",
        "blob": "bytes",
        "color": "red",
        "path": str(Path("a/b")),
    }


def test_dumps_pretty_uses_tabs() -> None:
    assert dumps_pretty({"a": [1]}) == '{\n\t"a": [\n\t\t1\n\t]\n}'


def test_time_formats() -> None:
    now = datetime(2024, 3, 5, 7, 8, 9)
    assert date_stamp(now) == "20240305"
    assert doc_timestamp(now) == "2024-03-05 07:08:09"


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="unit",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_skips_non_serializable_extras() -> None:
    record = _record(good={"a": 1, "b": [1, 2]}, bad={"obj": object()}, step="export")

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "hello"
    assert payload["good"] == {"a": 1, "b": [1, 2]}
    assert payload["step"] == "export"
    assert "bad" not in payload


def test_plain_formatter_prefixes_step_and_phase() -> None:
    text = PlainFormatter().format(_record(step="source", phase="excel", duration_ms=12))
    assert "INFO unit: [source:excel] hello (duration_ms=12)" in text


def test_add_run_log_file_writes(tmp_path) -> None:
    if getattr(setup_logging, "_configured", False):
        setattr(setup_logging, "_configured", False)
    setup_logging(LogConfig(level="INFO", json_logs=False))

    log_path = tmp_path / "debug.log"
    add_run_log_file(log_path)
    add_run_log_file(log_path)

    logger = logging.getLogger("unit.test")
    logger.info("file log test", extra={"step": "export", "phase": "json"})

    content = log_path.read_text(encoding="utf-8")
    assert content.count("file log test") == 1
    assert "[export:json] file log test" in content
    assert logging.getLogger("azure").level == logging.WARNING

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    logging.captureWarnings(False)
