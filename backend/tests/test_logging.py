import io
import json
import re
import logging
from unittest.mock import patch

import structlog

from infrastructure.logging import configure_logging


def _capture_root_output() -> io.StringIO:
    buf = io.StringIO()
    logging.getLogger().handlers[0].setStream(buf)
    return buf


def test_production_events_are_single_json_objects():
    try:
        with patch("infrastructure.logging.settings.ENVIRONMENT", "production"):
            configure_logging()
        buf = _capture_root_output()

        structlog.get_logger("users").info("user_delete_requested", user_id="u1")

        record = json.loads(buf.getvalue().strip().splitlines()[-1])
        assert record["event"] == "user_delete_requested"
        assert record["user_id"] == "u1"
        assert record["level"] == "info"
    finally:
        configure_logging()


def test_stdlib_records_share_the_json_format():
    try:
        with patch("infrastructure.logging.settings.ENVIRONMENT", "production"):
            configure_logging()
        buf = _capture_root_output()

        logging.getLogger("google.cloud.firestore").warning("retrying commit")

        record = json.loads(buf.getvalue().strip().splitlines()[-1])
        assert record["event"] == "retrying commit"
        assert record["logger"] == "google.cloud.firestore"
    finally:
        configure_logging()


def test_development_events_are_rendered_once():
    with patch("infrastructure.logging.settings.ENVIRONMENT", "development"):
        configure_logging()
    buf = _capture_root_output()

    structlog.get_logger("users").info("user_setup_requested", new_user_id="auth456")

    line = buf.getvalue().strip().splitlines()[-1]
    assert line.count("user_setup_requested") == 1
    assert len(re.findall(r"\d{4}-\d{2}-\d{2}T", line)) == 1
