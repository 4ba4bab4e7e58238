import structlog
from structlog.testing import capture_logs

from utils.logging import get_logger, log_backend_event, log_chat_event, log_poll_event, setup_logging


def test_setup_logging_configures_structlog():
    try:
        setup_logging("DEBUG")
        assert structlog.is_configured()
        get_logger("test").debug("configured")
    finally:
        structlog.reset_defaults()


def test_chat_event_carries_thread_and_user():
    with capture_logs() as logs:
        log_chat_event("thread_opened", thread_id="t1", user_id="u1")

    assert logs == [{
        "event": "Chat thread_opened",
        "event_type": "thread_opened",
        "thread_id": "t1",
        "user_id": "u1",
        "log_level": "info",
    }]


def test_poll_events_log_at_debug():
    with capture_logs() as logs:
        log_poll_event("messages", 3, applied=False, stale=True)

    assert logs[0]["log_level"] == "debug"
    assert logs[0]["tick"] == 3
    assert logs[0]["stale"] is True


def test_backend_event_records_outcome():
    with capture_logs() as logs:
        log_backend_event("list_threads", success=False, duration=0.25, status_code=503)

    assert logs[0]["operation"] == "list_threads"
    assert logs[0]["success"] is False
    assert logs[0]["status_code"] == 503
