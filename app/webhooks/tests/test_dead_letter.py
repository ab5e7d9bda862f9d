"""
Tests for the dead-letter sink.
"""

import pytest

from core.exceptions import ConflictError
from webhooks.dead_letter import DeadLetterSink
from webhooks.models import DeadLetterEntry
from webhooks.tests.factories import DeadLetterEntryFactory


def record(sink, **overrides):
    kwargs = {
        "event_type": "payment.failed",
        "payload": {"subscription_id": "sub_1"},
        "target_url": "https://receiver.example.com/hooks",
        "error_message": "HTTP 500: Server error",
        "retry_count": 3,
        "request_id": "chain-1",
    }
    kwargs.update(overrides)
    return sink.record(**kwargs)


@pytest.mark.django_db
class TestDeadLetterSinkRecord:
    """Tests for DeadLetterSink.record."""

    def test_persists_entry(self):
        entry = record(DeadLetterSink())

        entry.refresh_from_db()
        assert entry.event_type == "payment.failed"
        assert entry.payload == {"subscription_id": "sub_1"}
        assert entry.retry_count == 3
        assert entry.created_at is not None

    def test_same_request_id_recorded_once(self):
        """Should return the first entry instead of inserting a duplicate."""
        sink = DeadLetterSink()

        first = record(sink)
        second = record(sink, error_message="Delivery cancelled", retry_count=0)

        assert first.id == second.id
        assert DeadLetterEntry.objects.count() == 1
        assert DeadLetterEntry.objects.get().error_message == "HTTP 500: Server error"

    def test_distinct_request_ids_recorded_separately(self):
        sink = DeadLetterSink()

        record(sink, request_id="chain-1")
        record(sink, request_id="chain-2")

        assert DeadLetterEntry.objects.count() == 2


@pytest.mark.django_db
class TestDeadLetterEntryImmutability:
    """Dead-letter entries are append-only."""

    def test_update_rejected(self):
        entry = DeadLetterEntryFactory()
        entry.error_message = "rewritten"

        with pytest.raises(ConflictError) as exc_info:
            entry.save()

        assert exc_info.value.error_code == "IMMUTABLE_RECORD"

    def test_delete_rejected(self):
        entry = DeadLetterEntryFactory()

        with pytest.raises(ConflictError):
            entry.delete()

        assert DeadLetterEntry.objects.filter(id=entry.id).exists()


@pytest.mark.django_db
class TestDeadLetterReplay:
    """Tests for DeadLetterSink.replay."""

    def test_queues_fresh_delivery(self, mocker):
        """Should re-send the stored payload under a new request id."""
        delay = mocker.patch("webhooks.tasks.deliver_event.delay")
        entry = DeadLetterEntryFactory(request_id="chain-old")

        request_id = DeadLetterSink().replay(entry)

        assert request_id != "chain-old"
        delay.assert_called_once_with(
            event_type=entry.event_type,
            payload=entry.payload,
            target_urls=[entry.target_url],
            request_id=request_id,
            secret=None,
        )

    def test_entry_left_untouched(self, mocker):
        mocker.patch("webhooks.tasks.deliver_event.delay")
        entry = DeadLetterEntryFactory()

        DeadLetterSink().replay(entry, secret="override")

        assert DeadLetterEntry.objects.count() == 1
        assert DeadLetterEntry.objects.get().request_id == entry.request_id


@pytest.mark.django_db
class TestDeadLetterAdminReplay:
    def test_replays_each_selected_entry(self, mocker, rf):
        from django.contrib.admin.sites import site

        delay = mocker.patch("webhooks.tasks.deliver_event.delay")
        model_admin = site._registry[DeadLetterEntry]
        mocker.patch.object(model_admin, "message_user")
        DeadLetterEntryFactory.create_batch(2)

        model_admin.replay_selected(rf.post("/admin/"), DeadLetterEntry.objects.all())

        assert delay.call_count == 2
        model_admin.message_user.assert_called_once()

    def test_skips_entries_signed_with_request_secret(self, mocker, rf):
        """Replay signs with WEBHOOK_SECRET, which would not verify for these."""
        from django.contrib import messages
        from django.contrib.admin.sites import site

        delay = mocker.patch("webhooks.tasks.deliver_event.delay")
        model_admin = site._registry[DeadLetterEntry]
        mocker.patch.object(model_admin, "message_user")
        default = DeadLetterEntryFactory()
        DeadLetterEntryFactory(signed_with_default_secret=False)

        model_admin.replay_selected(rf.post("/admin/"), DeadLetterEntry.objects.all())

        delay.assert_called_once()
        assert delay.call_args.kwargs["target_urls"] == [default.target_url]
        levels = [c.args[2] for c in model_admin.message_user.call_args_list]
        assert levels == [messages.SUCCESS, messages.WARNING]
