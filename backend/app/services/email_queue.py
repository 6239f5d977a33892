"""
In-memory retry queue for emails that failed every provider
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from app.models.email import EmailMessage, EmailPriority, EmailQueueItem

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {
    EmailPriority.HIGH: 0,
    EmailPriority.MEDIUM: 1,
    EmailPriority.LOW: 2,
}


class EmailRetryQueue:
    """
    Holds failed messages until a sweep delivers them or they run out of
    retries. `max_size` of 0 means unbounded; otherwise new items are
    rejected once the queue is full.
    """

    def __init__(self, max_retries: int = 3, max_size: int = 0):
        self.max_retries = max_retries
        self.max_size = max_size
        self._items: Dict[str, EmailQueueItem] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._items

    def items(self) -> List[EmailQueueItem]:
        return list(self._items.values())

    def get(self, item_id: str) -> Optional[EmailQueueItem]:
        return self._items.get(item_id)

    def enqueue(self, message: EmailMessage, now: datetime, errors: Optional[List[str]] = None) -> Optional[EmailQueueItem]:
        """Queue a message for retry. Returns None if the queue is full."""
        if self.max_size and len(self._items) >= self.max_size:
            logger.warning(f"Email retry queue full ({self.max_size}), dropping message to {message.to_email}")
            return None

        item = EmailQueueItem(
            to_email=message.to_email,
            subject=message.subject,
            html=message.html,
            text=message.text,
            priority=message.priority,
            max_retries=self.max_retries,
            created_at=now,
            errors=list(errors or []),
        )
        self._items[item.id] = item
        logger.info(f"📧 Email queued for retry: {item.id} ({message.to_email})")
        return item

    def due(self, now: datetime, retry_delay: timedelta) -> List[EmailQueueItem]:
        """Items ready for another attempt, highest priority and oldest first"""
        ready = [
            item for item in self._items.values()
            if item.retry_count < item.max_retries
            and (item.last_attempt is None or now - item.last_attempt > retry_delay)
        ]
        return sorted(ready, key=lambda item: (PRIORITY_ORDER[item.priority], item.created_at))

    def remove(self, item_id: str) -> Optional[EmailQueueItem]:
        return self._items.pop(item_id, None)

    def record_failure(self, item_id: str, error: str, now: datetime) -> bool:
        """
        Register a failed retry. Returns True when the item has used up its
        retries and was dropped.
        """
        item = self._items.get(item_id)
        if item is None:
            return False

        item.retry_count += 1
        item.last_attempt = now
        item.errors.append(error)

        if item.retry_count >= item.max_retries:
            self._items.pop(item_id, None)
            logger.error(
                f"❌ Email failed after {item.max_retries} attempts: {item.id} ({item.to_email}) errors={item.errors}"
            )
            return True
        return False

    def clear(self) -> None:
        self._items.clear()
