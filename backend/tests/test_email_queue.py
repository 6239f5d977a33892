"""
Unit Tests for the email retry queue
"""

from datetime import timedelta

import pytest

from app.models.email import EmailMessage, EmailPriority
from app.services.email_queue import EmailRetryQueue

from factories import START


def message(to_email="analyst@example.com", priority=EmailPriority.MEDIUM):
    return EmailMessage(to_email=to_email, subject="Alert", html="<p>Alert</p>", text="Alert", priority=priority)


class TestEmailRetryQueue:
    """Test suite for EmailRetryQueue"""

    @pytest.fixture
    def queue(self):
        return EmailRetryQueue(max_retries=3)

    def test_enqueue_copies_message(self, queue):
        item = queue.enqueue(message(), START, errors=["Both providers failed."])

        assert item.id.startswith("email_")
        assert item.id in queue
        assert len(queue) == 1
        assert item.to_email == "analyst@example.com"
        assert item.retry_count == 0
        assert item.max_retries == 3
        assert item.created_at == START
        assert item.last_attempt is None
        assert item.errors == ["Both providers failed."]
        assert item.to_message() == message()

    def test_full_queue_rejects_new_items(self):
        queue = EmailRetryQueue(max_size=1)
        assert queue.enqueue(message(), START) is not None
        assert queue.enqueue(message("other@example.com"), START) is None
        assert len(queue) == 1

    def test_zero_max_size_is_unbounded(self):
        queue = EmailRetryQueue(max_size=0)
        for i in range(50):
            queue.enqueue(message(f"user{i}@example.com"), START)
        assert len(queue) == 50

    def test_due_orders_by_priority_then_age(self, queue):
        low = queue.enqueue(message(priority=EmailPriority.LOW), START)
        old_medium = queue.enqueue(message(priority=EmailPriority.MEDIUM), START)
        new_medium = queue.enqueue(message(priority=EmailPriority.MEDIUM), START + timedelta(seconds=1))
        high = queue.enqueue(message(priority=EmailPriority.HIGH), START + timedelta(seconds=2))

        due = queue.due(START + timedelta(seconds=3), timedelta(seconds=5))
        assert [item.id for item in due] == [high.id, old_medium.id, new_medium.id, low.id]

    def test_recently_attempted_items_wait_for_retry_delay(self, queue):
        item = queue.enqueue(message(), START)
        queue.record_failure(item.id, "still failing", START)
        delay = timedelta(seconds=5)

        assert queue.due(START + timedelta(seconds=5), delay) == []
        assert [i.id for i in queue.due(START + timedelta(seconds=6), delay)] == [item.id]

    def test_record_failure_drops_after_max_retries(self, queue):
        item = queue.enqueue(message(), START, errors=["initial"])

        assert queue.record_failure(item.id, "retry 1", START) is False
        assert queue.record_failure(item.id, "retry 2", START) is False
        assert queue.get(item.id).retry_count == 2
        assert queue.get(item.id).errors == ["initial", "retry 1", "retry 2"]

        assert queue.record_failure(item.id, "retry 3", START) is True
        assert item.id not in queue

    def test_record_failure_for_unknown_item(self, queue):
        assert queue.record_failure("email_missing", "boom", START) is False

    def test_remove_and_clear(self, queue):
        first = queue.enqueue(message(), START)
        queue.enqueue(message(), START)

        assert queue.remove(first.id).id == first.id
        assert queue.remove(first.id) is None
        queue.clear()
        assert len(queue) == 0
