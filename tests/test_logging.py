"""Tests for logging helpers."""

import uuid
from types import SimpleNamespace

from structlog.testing import capture_logs

from newsletter_queue.infrastructure.logging import bind_queue_item, get_logger


def test_bind_queue_item_adds_identifiers():
    newsletter_id = uuid.uuid4()
    item = SimpleNamespace(
        id=7,
        newsletter_id=newsletter_id,
        section_number=2,
        section_type="industry_trends",
    )

    with capture_logs() as logs:
        bind_queue_item(get_logger("test"), item).info("Section generated", attempts=2)

    assert len(logs) == 1
    event = logs[0]
    assert event["event"] == "Section generated"
    assert event["queue_item_id"] == 7
    assert event["newsletter_id"] == str(newsletter_id)
    assert event["section_number"] == 2
    assert event["section_type"] == "industry_trends"
    assert event["attempts"] == 2
