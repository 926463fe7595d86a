"""
test_broadcast_service.py - Tests for broadcast orchestration.

Covers:
    • Request validation order
    • Channel / category parsing
    • Payload builders (inbox template, email body, SMS truncation)
    • End-to-end scenarios over in-memory stores and simulated transports
    • Per-channel skip reasons and global warnings
    • No-recipients rejection before any transport is touched
    • Single inbox messages
    • Broadcast history store

Run with:
    pytest tests/test_broadcast_service.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from backend.app.core.errors import NoRecipientsError, ValidationError
from backend.app.messaging.broadcast_service import (
    EMAIL_DISABLED_WARNING,
    SMS_DISABLED_WARNING,
    BroadcastService,
    _broadcast_history,
    build_email_body,
    build_history_record,
    build_inbox_template,
    build_sms_body,
    get_broadcast_history,
    list_broadcast_history,
    normalize_channels,
    parse_categories,
    store_broadcast_history,
)
from backend.app.messaging.channels.base import EmailSender, InboxWriter, SmsSender
from backend.app.messaging.channels.email_sender import SimulationEmailSender
from backend.app.messaging.channels.inbox_writer import InMemoryInboxWriter
from backend.app.messaging.channels.sms_sender import SimulationSmsSender
from backend.app.messaging.directory import (
    InMemoryParticipantStore,
    InMemoryTeamApplicationStore,
    InMemoryUserDirectory,
    InMemoryVolunteerApplicationStore,
)
from backend.app.messaging.models import (
    BroadcastRequest,
    BroadcastResult,
    ParticipantRecord,
    RecipientCategory,
    UserRecord,
)
from backend.app.messaging.recipient_resolver import RecipientResolver


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

PARENT_WITH_INBOX = UserRecord(
    user_id="1", firebase_uid="uid-linked", email="linked@example.com",
    phone_number="(555) 123-4567", first_name="Lin", last_name="Ked",
)
PARENT_EMAIL_ONLY = UserRecord(
    user_id="2", firebase_uid=None, email="emailonly@example.com",
    phone_number="n/a", first_name="Em", last_name="Only",
)


def _make_request(**overrides) -> BroadcastRequest:
    fields = dict(
        subject="Update",
        message="Field changed",
        delivery_channels=["inbox", "email"],
        categories=["parents"],
        direct_emails=[],
    )
    fields.update(overrides)
    return BroadcastRequest(**fields)


def _make_resolver(users=(), participants=()) -> RecipientResolver:
    return RecipientResolver(
        InMemoryUserDirectory(users),
        InMemoryParticipantStore(participants),
        InMemoryVolunteerApplicationStore(),
        InMemoryTeamApplicationStore(),
    )


def _make_service(
    resolver=None,
    inbox=None,
    email=None,
    sms=None,
) -> BroadcastService:
    if resolver is None:
        resolver = _make_resolver(
            users=[PARENT_WITH_INBOX, PARENT_EMAIL_ONLY],
            participants=[
                ParticipantRecord("c1", parent=PARENT_WITH_INBOX),
                ParticipantRecord("c2", parent=PARENT_EMAIL_ONLY),
            ],
        )
    return BroadcastService(
        resolver,
        inbox if inbox is not None else InMemoryInboxWriter(),
        email if email is not None else SimulationEmailSender(),
        sms if sms is not None else SimulationSmsSender(),
    )


def _mock_transports():
    inbox = MagicMock(spec=InboxWriter)
    email = MagicMock(spec=EmailSender)
    sms = MagicMock(spec=SmsSender)
    for t in (inbox, email, sms):
        t.enabled.return_value = True
    inbox.persist.return_value = True
    email.send.return_value = True
    sms.send.return_value = True
    return inbox, email, sms


def _reasons(result: BroadcastResult, channel: str):
    return [f.reason for f in result.failures if f.channel == channel]


@pytest.fixture(autouse=True)
def _clear_history():
    """Clean the in-memory history store before each test."""
    _broadcast_history.clear()
    yield
    _broadcast_history.clear()


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Validation
# ═══════════════════════════════════════════════════════════════════════════

class TestValidation:

    def test_missing_request(self):
        with pytest.raises(ValidationError, match="Request payload is required"):
            _make_service().broadcast(None, "admin@example.com")

    @pytest.mark.parametrize("subject", [None, "", "   "])
    def test_blank_subject(self, subject):
        with pytest.raises(ValidationError, match="subject/title is required"):
            _make_service().broadcast(_make_request(subject=subject))

    @pytest.mark.parametrize("message", [None, "", "\n"])
    def test_blank_message(self, message):
        with pytest.raises(ValidationError, match="Message content is required"):
            _make_service().broadcast(_make_request(message=message))

    @pytest.mark.parametrize("channels", [[], ["", "  "]])
    def test_no_channels(self, channels):
        with pytest.raises(ValidationError, match="At least one delivery channel"):
            _make_service().broadcast(_make_request(delivery_channels=channels))

    def test_subject_checked_before_message(self):
        with pytest.raises(ValidationError, match="subject"):
            _make_service().broadcast(_make_request(subject="", message="", delivery_channels=[]))

    def test_empty_subject_never_touches_resolver(self):
        resolver = MagicMock(spec=RecipientResolver)
        service = _make_service(resolver=resolver)
        with pytest.raises(ValidationError):
            service.broadcast(_make_request(subject=""))
        resolver.resolve.assert_not_called()

    def test_validation_error_is_400(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_service().broadcast(_make_request(message=""))
        assert exc_info.value.status_code == 400
        assert exc_info.value.details["field"] == "message"


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Request Parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestRequestParsing:

    def test_channels_normalised(self):
        assert normalize_channels([" Inbox", "EMAIL", "email", "", None, "Phone"]) == [
            "inbox", "email", "phone",
        ]

    def test_unknown_categories_dropped(self):
        assert parse_categories(["parents", "bogus", "Coaches", "parents"]) == [
            RecipientCategory.PARENTS, RecipientCategory.COACHES,
        ]

    @pytest.mark.parametrize("alias", ["sms", "phone", "SMS", " Phone "])
    def test_sms_aliases(self, alias):
        inbox, email, sms = _mock_transports()
        service = _make_service(inbox=inbox, email=email, sms=sms)
        result = service.broadcast(_make_request(delivery_channels=[alias]))
        # only the linked parent has a usable phone
        assert result.sms_sent == 1
        assert sms.send.call_count == 1
        inbox.persist.assert_not_called()
        email.send.assert_not_called()

    def test_unrecognised_channel_sends_nothing(self):
        inbox, email, sms = _mock_transports()
        service = _make_service(inbox=inbox, email=email, sms=sms)
        result = service.broadcast(_make_request(delivery_channels=["fax"]))
        assert result.total_recipients == 2
        assert result.requested_channels == {"fax"}
        assert result.failures == []
        inbox.persist.assert_not_called()
        email.send.assert_not_called()
        sms.send.assert_not_called()


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Payload Builders
# ═══════════════════════════════════════════════════════════════════════════

class TestInboxTemplate:

    def test_fields(self):
        tpl = build_inbox_template(_make_request(), "admin@example.com", ["inbox", "email"])
        assert tpl["id"].startswith("broadcast_")
        assert tpl["type"] == "admin-broadcast"
        assert tpl["title"] == "Update"
        assert tpl["message"] == "Field changed"
        assert tpl["from"] == "admin@example.com"
        assert tpl["channels"] == ["inbox", "email"]
        assert tpl["read"] is False
        assert tpl["timestamp"]

    def test_default_sender(self):
        tpl = build_inbox_template(_make_request(), None, ["inbox"])
        assert tpl["from"] == "Kids in Motion Admin"


class TestEmailBody:

    def test_with_attribution(self):
        body = build_email_body("Hello", "admin@example.com")
        assert body == "Hello\n\n— admin@example.com\nKids in Motion Admin Team"

    def test_without_attribution(self):
        assert build_email_body("Hello", "  ") == "Hello\nKids in Motion Admin Team"

    def test_custom_organisation(self):
        assert build_email_body("Hi", None, organization="Acme").endswith("\nAcme Admin Team")


class TestSmsBody:

    def test_short_body_untouched(self):
        assert build_sms_body("  Update ", "Field changed") == "Update: Field changed"

    def test_exactly_320_untouched(self):
        message = "x" * (320 - len("S: "))
        body = build_sms_body("S", message)
        assert len(body) == 320
        assert body == f"S: {message}"

    @pytest.mark.parametrize("extra", [1, 5, 500])
    def test_long_body_truncated_to_320(self, extra):
        message = "y" * (320 - len("S: ") + extra)
        body = build_sms_body("S", message)
        assert len(body) == 320
        assert body.endswith("...")
        assert body[:317] == f"S: {message}"[:317]


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: End-to-End Scenarios
# ═══════════════════════════════════════════════════════════════════════════

class TestScenarios:

    def test_parents_over_inbox_and_email(self):
        inbox = InMemoryInboxWriter()
        email = SimulationEmailSender()
        service = _make_service(inbox=inbox, email=email)

        result = service.broadcast(_make_request(), "admin@example.com")

        assert result.total_recipients == 2
        assert result.inbox_sent == 1
        assert result.inbox_skipped == 1
        assert _reasons(result, "inbox") == ["no linked inbox identity"]
        assert result.email_sent == 2
        assert result.email_skipped == 0
        assert result.category_counts == {"parents": 2}
        assert result.global_warnings == []

        stored = inbox.messages_for("uid-linked")
        assert len(stored) == 1
        assert stored[0]["recipientEmail"] == "linked@example.com"
        assert stored[0]["recipientDisplayName"] == "Lin Ked"
        assert stored[0]["userId"] == "uid-linked"
        assert {e.to for e in email.outbox} == {"linked@example.com", "emailonly@example.com"}
        assert email.outbox[0].subject == "Update"

    def test_unknown_direct_email(self):
        service = _make_service(resolver=_make_resolver())
        result = service.broadcast(_make_request(
            categories=[], direct_emails=["ghost@example.com"],
            delivery_channels=["inbox", "email", "sms"],
        ))

        assert result.total_recipients == 1
        assert result.direct_emails_without_accounts == ["ghost@example.com"]
        assert result.inbox_skipped == 1
        assert _reasons(result, "inbox") == ["no linked inbox identity"]
        assert result.email_sent == 1
        assert _reasons(result, "sms") == ["no phone number available"]
        assert result.failures[0].recipient["displayName"] == "ghost@example.com"

    def test_delivery_order_per_recipient(self):
        calls = []
        inbox, email, sms = _mock_transports()
        inbox.persist.side_effect = lambda *a: calls.append("inbox") or True
        email.send.side_effect = lambda *a: calls.append("email") or True
        sms.send.side_effect = lambda *a: calls.append("sms") or True
        service = _make_service(inbox=inbox, email=email, sms=sms)

        service.broadcast(_make_request(
            delivery_channels=["sms", "email", "inbox"], categories=["parents"],
        ))
        # second parent has no inbox identity and no phone
        assert calls == ["inbox", "email", "sms", "email"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Per-Channel Skips & Warnings
# ═══════════════════════════════════════════════════════════════════════════

class TestChannelSkips:

    def test_sms_disabled_does_not_affect_other_channels(self):
        user = UserRecord(user_id="9", firebase_uid="uid-9", email="solo@example.com")
        service = _make_service(
            resolver=_make_resolver(users=[user]),
            sms=SimulationSmsSender(enabled=False),
        )
        result = service.broadcast(_make_request(
            categories=["all"], delivery_channels=["inbox", "email", "sms"],
        ))
        assert result.inbox_sent == 1
        assert result.email_sent == 1
        assert result.sms_sent == 0
        assert result.sms_skipped == 1
        # no phone is checked before the transport state
        assert _reasons(result, "sms") == ["no phone number available"]
        assert result.global_warnings == [SMS_DISABLED_WARNING]

    def test_sms_disabled_with_phone(self):
        service = _make_service(sms=SimulationSmsSender(enabled=False))
        result = service.broadcast(_make_request(delivery_channels=["sms"]))
        assert _reasons(result, "sms") == [
            "SMS delivery not configured",
            "no phone number available",
        ]

    def test_email_disabled(self):
        email = SimulationEmailSender(enabled=False)
        service = _make_service(email=email)
        result = service.broadcast(_make_request(delivery_channels=["email"]))
        assert result.email_sent == 0
        assert result.email_skipped == 2
        assert set(_reasons(result, "email")) == {"email delivery disabled"}
        assert result.global_warnings == [EMAIL_DISABLED_WARNING]
        assert email.outbox == []

    def test_missing_email_checked_before_disabled_transport(self):
        user = UserRecord(user_id="9", firebase_uid="uid-9", phone_number="5551234567")
        service = _make_service(
            resolver=_make_resolver(users=[user]),
            email=SimulationEmailSender(enabled=False),
        )
        result = service.broadcast(_make_request(categories=["all"], delivery_channels=["email"]))
        assert _reasons(result, "email") == ["no email address on file"]

    def test_provider_failures(self):
        inbox, email, sms = _mock_transports()
        inbox.persist.return_value = False
        email.send.return_value = False
        sms.send.return_value = False
        service = _make_service(inbox=inbox, email=email, sms=sms)

        result = service.broadcast(_make_request(delivery_channels=["inbox", "email", "sms"]))

        assert _reasons(result, "inbox") == [
            "failed to persist (service disabled or error)",
            "no linked inbox identity",
        ]
        assert _reasons(result, "email") == ["email provider reported a failure"] * 2
        assert _reasons(result, "sms") == [
            "SMS provider reported a failure",
            "no phone number available",
        ]
        assert result.inbox_sent == result.email_sent == result.sms_sent == 0

    def test_failure_snapshot(self):
        service = _make_service()
        result = service.broadcast(_make_request(delivery_channels=["inbox"]))
        assert result.failures[0].recipient == {
            "displayName": "Em Only",
            "email": "emailonly@example.com",
            "phone": None,
            "firebaseUid": None,
        }

    def test_one_failing_recipient_does_not_stop_others(self):
        inbox, email, sms = _mock_transports()
        email.send.side_effect = [False, True]
        service = _make_service(inbox=inbox, email=email, sms=sms)
        result = service.broadcast(_make_request(delivery_channels=["email"]))
        assert result.email_sent == 1
        assert result.email_skipped == 1
        assert email.send.call_count == 2


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: No Recipients
# ═══════════════════════════════════════════════════════════════════════════

class TestNoRecipients:

    def test_rejected_before_any_transport_call(self):
        inbox, email, sms = _mock_transports()
        service = _make_service(resolver=_make_resolver(), inbox=inbox, email=email, sms=sms)

        with pytest.raises(NoRecipientsError, match="No recipients resolved"):
            service.broadcast(_make_request(
                categories=[], direct_emails=[], delivery_channels=["inbox", "email", "sms"],
            ))

        for transport in (inbox, email, sms):
            assert transport.method_calls == []

    def test_unknown_categories_only(self):
        service = _make_service()
        with pytest.raises(NoRecipientsError):
            service.broadcast(_make_request(categories=["nobody", "event-parents-12"]))

    def test_is_a_validation_error(self):
        assert issubclass(NoRecipientsError, ValidationError)
        assert NoRecipientsError().error_code == "NO_RECIPIENTS"


# ═══════════════════════════════════════════════════════════════════════════
# Section 7: Result Serialisation
# ═══════════════════════════════════════════════════════════════════════════

class TestResultToDict:

    def test_camel_case_keys(self):
        result = _make_service().broadcast(_make_request(), "admin@example.com")
        d = result.to_dict()
        assert d["totalRecipients"] == 2
        assert d["inboxSent"] == 1
        assert d["inboxSkipped"] == 1
        assert d["emailSent"] == 2
        assert d["requestedChannels"] == ["email", "inbox"]
        assert d["categoryCounts"] == {"parents": 2}
        assert d["warnings"] == []
        assert d["failures"][0]["channel"] == "inbox"


# ═══════════════════════════════════════════════════════════════════════════
# Section 8: Single Inbox Message
# ═══════════════════════════════════════════════════════════════════════════

class TestSendInboxMessage:

    def test_enriches_payload(self):
        inbox = InMemoryInboxWriter()
        service = _make_service(inbox=inbox)
        assert service.send_inbox_message("uid-7", {"title": "Hi"}, "admin@example.com") is True

        stored = inbox.messages_for("uid-7")[0]
        assert stored["title"] == "Hi"
        assert stored["userId"] == "uid-7"
        assert stored["status"] == "sent"
        assert stored["from"] == "admin@example.com"
        assert stored["timestamp"]

    def test_keeps_caller_fields(self):
        inbox = InMemoryInboxWriter()
        service = _make_service(inbox=inbox)
        service.send_inbox_message("uid-7", {"from": "Coach Sam", "status": "draft"})
        stored = inbox.messages_for("uid-7")[0]
        assert stored["from"] == "Coach Sam"
        assert stored["status"] == "draft"

    def test_default_sender(self):
        inbox = InMemoryInboxWriter()
        _make_service(inbox=inbox).send_inbox_message("uid-7", None)
        assert inbox.messages_for("uid-7")[0]["from"] == "Kids in Motion Admin"

    def test_blank_user(self):
        with pytest.raises(ValidationError):
            _make_service().send_inbox_message("  ", {"title": "Hi"})

    def test_disabled_inbox_returns_false(self):
        service = _make_service(inbox=InMemoryInboxWriter(enabled=False))
        assert service.send_inbox_message("uid-7", {"title": "Hi"}) is False


# ═══════════════════════════════════════════════════════════════════════════
# Section 9: Broadcast History
# ═══════════════════════════════════════════════════════════════════════════

class TestBroadcastHistory:

    def test_store_and_retrieve(self):
        request = _make_request(direct_emails=[" a@example.com ", ""])
        result = _make_service().broadcast(request, "admin@example.com")
        record = build_history_record(request, "admin@example.com", result)
        store_broadcast_history(record)

        fetched = get_broadcast_history(record.broadcast_id)
        assert fetched is record
        assert record.broadcast_id.startswith("BRD-")
        assert record.direct_emails == ["a@example.com"]

        d = record.to_dict()
        assert d["id"] == record.broadcast_id
        assert d["initiatedBy"] == "admin@example.com"
        assert d["subject"] == "Update"
        assert d["totalRecipients"] == 3

    def test_retrieve_nonexistent(self):
        assert get_broadcast_history("BRD-NOSUCH") is None

    def test_list_newest_first(self):
        now = datetime.now(timezone.utc)
        for i in range(3):
            record = build_history_record(_make_request(subject=f"S{i}"), "admin", BroadcastResult())
            record.created_at = now + timedelta(minutes=i)
            store_broadcast_history(record)

        subjects = [r.subject for r in list_broadcast_history()]
        assert subjects == ["S2", "S1", "S0"]
        assert len(list_broadcast_history(limit=2)) == 2

    def test_record_detached_from_returned_result(self):
        request = _make_request()
        result = _make_service().broadcast(request, "admin@example.com")
        record = build_history_record(request, "admin@example.com", result)
        store_broadcast_history(record)
        emailed = result.email_sent
        failures = len(result.failures)

        result.email_sent += 10
        result.failures.clear()
        result.global_warnings.append("edited later")

        stored = get_broadcast_history(record.broadcast_id).result
        assert stored is not result
        assert stored.email_sent == emailed
        assert len(stored.failures) == failures
        assert "edited later" not in stored.global_warnings

    def test_oldest_evicted_beyond_cap(self):
        now = datetime.now(timezone.utc)
        records = []
        for i in range(5):
            record = build_history_record(_make_request(subject=f"S{i}"), "admin", BroadcastResult())
            record.created_at = now + timedelta(minutes=i)
            store_broadcast_history(record, max_records=3)
            records.append(record)

        assert get_broadcast_history(records[0].broadcast_id) is None
        assert get_broadcast_history(records[1].broadcast_id) is None
        assert [r.subject for r in list_broadcast_history()] == ["S4", "S3", "S2"]
