import json
import logging

from tracker.core.logging import JsonFormatter


def test_json_formatter_keeps_whitelisted_extras_only():
    record = logging.LogRecord(
        name="tracker.features.poller.service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="poll_complete",
        args=(),
        exc_info=None,
    )
    record.online = 3
    record.task = "online-tracker"
    record.unrelated = "dropped"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["msg"] == "poll_complete"
    assert payload["level"] == "INFO"
    assert payload["online"] == 3
    assert payload["task"] == "online-tracker"
    assert "unrelated" not in payload
    assert "ts_utc" in payload
