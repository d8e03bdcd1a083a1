"""
Notifications derived from detections, plus SMS delivery for unknown persons.
"""
import logging
from collections import deque
from typing import Deque, List, Optional

import httpx

from config import RECENT_LIMIT
from database import SurveillanceStore
from errors import DeliveryFailure, PersistenceFailure
from schemas import Collection, DetectionRecord, NotificationRecord, NotificationType

logger = logging.getLogger("surveillance.notifications")


def build_notification(detection: DetectionRecord) -> NotificationRecord:
    """Derive the notification for a detection; values are copied, not referenced."""
    distance = f"{detection.estimated_distance_meters:.1f}"
    confidence = f"{detection.confidence:.2f}"
    expression = detection.dominant_expression.value

    if detection.is_known:
        title = f"{detection.person_name} Detected"
        message = (
            f"Detected {detection.person_name} ({detection.person_details.role}) at ~{distance}m "
            f"with {confidence} confidence. Expression: {expression}"
        )
    else:
        title = "Unknown Person Detected"
        message = (
            f"Unknown person detected at ~{distance}m with {confidence} confidence. "
            f"Expression: {expression}"
        )

    return NotificationRecord(
        id=f"notification-{detection.id}",
        title=title,
        message=message,
        timestamp=detection.timestamp,
        thumbnail=detection.face_thumbnail,
        context_image=detection.context_image,
        is_read=False,
        type=NotificationType.INFO if detection.is_known else NotificationType.WARNING,
        detection_id=detection.id,
        person_name=detection.person_name,
        is_known=detection.is_known,
        estimated_distance_meters=detection.estimated_distance_meters,
    )


class SmsNotifier:
    """Sends alerts through an HTTP GET SMS gateway."""

    def __init__(
        self,
        base_url: str,
        username: str,
        api_password: str,
        sender: str = "",
        priority: str = "",
        e_id: str = "",
        t_id: str = "",
        camera_name: str = "Camera 1",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.params = {
            "username": username,
            "api_password": api_password,
            "sender": sender,
            "priority": priority,
            "e_id": e_id,
            "t_id": t_id,
        }
        self.camera_name = camera_name
        self.client = client or httpx.AsyncClient(timeout=10.0)

    async def deliver(self, recipient: str, message: str, image: Optional[str] = None):
        """Dispatch one SMS. The gateway is text-only, so image is ignored."""
        params = {
            **self.params,
            "to": recipient,
            "message": f"Alert: {message} {self.camera_name}. Please check immediately.",
        }
        try:
            response = await self.client.get(self.base_url, params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryFailure(f"Error sending SMS: {e}")
        logger.info("SMS sent successfully: %s", response.text[:200])
        return response.text

    async def aclose(self):
        await self.client.aclose()


class NotificationCenter:
    """
    Persists notifications and keeps the most recent ones in memory.

    The store keeps full history; only the in-memory list is capped.
    """

    def __init__(self, store: SurveillanceStore, delivery=None, recipient: Optional[str] = None,
                 limit: int = RECENT_LIMIT):
        self.store = store
        self.delivery = delivery
        self.recipient = recipient
        self.recent: Deque[NotificationRecord] = deque(maxlen=limit)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.recent if not n.is_read)

    def list(self) -> List[NotificationRecord]:
        return list(self.recent)

    async def load(self) -> List[NotificationRecord]:
        """Seed the recent list with the newest stored notifications."""
        stored = await self.store.get_all(Collection.NOTIFICATIONS)
        stored.sort(key=lambda n: n.timestamp, reverse=True)
        self.recent = deque(stored[:self.recent.maxlen], maxlen=self.recent.maxlen)
        return self.list()

    async def publish(self, detection: DetectionRecord) -> Optional[NotificationRecord]:
        """Store the notification for a detection and hand unknowns to delivery."""
        notification = build_notification(detection)
        try:
            await self.store.put(Collection.NOTIFICATIONS, notification)
        except PersistenceFailure as e:
            logger.error("Error storing notification: %s", e)
            return None

        self.recent.appendleft(notification)

        if not detection.is_known:
            await self._deliver(notification)
        return notification

    async def _deliver(self, notification: NotificationRecord):
        if self.delivery is None or not self.recipient:
            return
        try:
            await self.delivery.deliver(self.recipient, notification.message, notification.context_image)
        except DeliveryFailure as e:
            # The stored notification stays; delivery is best-effort
            logger.warning("Notification delivery failed: %s", e)

    async def mark_read(self, notification_id: str) -> bool:
        notification = await self.store.get_by_id(Collection.NOTIFICATIONS, notification_id)
        if notification is None:
            return False

        notification = notification.model_copy(update={"is_read": True})
        await self.store.put(Collection.NOTIFICATIONS, notification)

        self.recent = deque(
            (n.model_copy(update={"is_read": True}) if n.id == notification_id else n for n in self.recent),
            maxlen=self.recent.maxlen,
        )
        return True

    async def clear(self):
        await self.store.clear(Collection.NOTIFICATIONS)
        self.recent.clear()
        logger.info("All notifications cleared")
