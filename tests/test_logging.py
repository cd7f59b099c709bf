from __future__ import annotations

import json
import logging

from notecal.logging import JsonFormatter


def test_json_formatter_redacts_secrets_in_extra_fields() -> None:
    record = logging.LogRecord("notecal.test", logging.INFO, __file__, 1, "Refreshed", None, None)
    record.event = "token_refreshed"
    record.details = {"refresh_token": "r1", "client_secret": "shh", "calendar": "primary"}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["msg"] == "Refreshed"
    assert payload["event"] == "token_refreshed"
    assert payload["details"] == {
        "refresh_token": "***",
        "client_secret": "***",
        "calendar": "primary",
    }
