"""
Tests for delivery status callbacks.
"""

import pytest

from whatsapp_crm.persistence.models import Message
from whatsapp_crm.persistence.repo import CRMRepository
from whatsapp_crm.service.status_tracker import DeliveryStatusTracker, summarize_errors


@pytest.fixture
def sent_message(db, org, make_conversation):
    conversation = make_conversation(org, status="open")
    message = CRMRepository(db).create_message(
        conversation.id,
        sender_type="agent",
        message_type="text",
        content="Oi",
        whatsapp_message_id="wamid.sent_1",
        status="sent",
    )
    db.commit()
    return message


@pytest.fixture
def tracker(db):
    return DeliveryStatusTracker(db)


class TestApplyStatus:
    """Tests for DeliveryStatusTracker.apply_status."""

    @pytest.mark.parametrize("value", ["delivered", "read", "sent"])
    def test_updates_status(self, db, sent_message, tracker, value):
        """Test known statuses are written with a timestamp."""
        assert tracker.apply_status("wamid.sent_1", value) == 1
        db.commit()
        db.expire_all()

        message = db.get(Message, sent_message.id)
        assert message.status == value
        assert message.status_updated_at is not None
        assert message.error_message is None

    def test_failed_records_errors(self, db, sent_message, tracker):
        """Test a failed status stores the joined error detail."""
        tracker.apply_status(
            "wamid.sent_1",
            "failed",
            [{"code": 131047, "title": "Re-engagement message"}],
        )
        db.commit()
        db.expire_all()

        message = db.get(Message, sent_message.id)
        assert message.status == "failed"
        assert message.error_message == "131047: Re-engagement message"

    def test_unknown_message_is_noop(self, db, sent_message, tracker):
        """Test a callback for an unknown ID changes nothing and does not raise."""
        assert tracker.apply_status("wamid.unknown", "delivered") == 0
        db.expire_all()
        assert db.get(Message, sent_message.id).status == "sent"

    def test_unknown_status_ignored(self, db, sent_message, tracker):
        """Test unrecognized status values are skipped."""
        assert tracker.apply_status("wamid.sent_1", "deleted") == 0
        db.expire_all()
        assert db.get(Message, sent_message.id).status == "sent"

    def test_empty_id_ignored(self, tracker):
        """Test a callback without message ID is skipped."""
        assert tracker.apply_status("", "read") == 0


class TestApplyStatuses:
    """Tests for the webhook statuses array."""

    def test_applies_in_order(self, db, sent_message, tracker):
        """Test several callbacks for one message leave the last status."""
        updated = tracker.apply_statuses([
            {"id": "wamid.sent_1", "status": "delivered"},
            {"id": "wamid.sent_1", "status": "read"},
            {"id": "wamid.other", "status": "read"},
        ])
        db.commit()
        db.expire_all()

        assert updated == 2
        assert db.get(Message, sent_message.id).status == "read"


class TestSummarizeErrors:
    """Tests for summarize_errors."""

    def test_joins_multiple(self):
        """Test several errors are joined with semicolons."""
        errors = [
            {"code": 131026, "title": "Message undeliverable"},
            {"code": 131047, "message": "Re-engagement message"},
        ]
        assert summarize_errors(errors) == (
            "131026: Message undeliverable; 131047: Re-engagement message"
        )

    def test_empty(self):
        """Test no errors gives None."""
        assert summarize_errors(None) is None
        assert summarize_errors([]) is None
