"""
Unit tests for notification building, storage and SMS delivery.
"""
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import make_detection_record
from errors import DeliveryFailure
from notifications import NotificationCenter, SmsNotifier, build_notification
from schemas import Collection, NotificationType


class TestBuildNotification:
    """Tests for build_notification"""

    def test_known_person(self):
        detection = make_detection_record(1, name="Alice")
        notification = build_notification(detection)
        assert notification.id == f"notification-{detection.id}"
        assert notification.title == "Alice Detected"
        assert notification.type == NotificationType.INFO
        assert notification.message == (
            "Detected Alice (Guard) at ~2.5m with 0.87 confidence. Expression: happy"
        )
        assert notification.detection_id == detection.id
        assert notification.is_read is False

    def test_unknown_person(self):
        detection = make_detection_record(2)
        notification = build_notification(detection)
        assert notification.title == "Unknown Person Detected"
        assert notification.type == NotificationType.WARNING
        assert notification.message.startswith("Unknown person detected at ~2.5m")
        assert notification.thumbnail == detection.face_thumbnail
        assert notification.context_image == detection.context_image


class TestNotificationCenter:
    """Tests for NotificationCenter"""

    @pytest.mark.asyncio
    async def test_publish_stores_and_prepends(self, notifications, store):
        first = await notifications.publish(make_detection_record(1))
        second = await notifications.publish(make_detection_record(2))
        assert [n.id for n in notifications.list()] == [second.id, first.id]
        assert await store.count(Collection.NOTIFICATIONS) == 2
        assert notifications.unread_count == 2

    @pytest.mark.asyncio
    async def test_recent_list_is_capped(self, store):
        center = NotificationCenter(store, limit=20)
        for i in range(25):
            await center.publish(make_detection_record(i))
        assert len(center.list()) == 20
        assert center.list()[0].detection_id == "face-test-24"
        assert await store.count(Collection.NOTIFICATIONS) == 25

    @pytest.mark.asyncio
    async def test_mark_read(self, notifications, store):
        notification = await notifications.publish(make_detection_record(1))
        assert await notifications.mark_read(notification.id) is True
        assert notifications.unread_count == 0
        stored = await store.get_by_id(Collection.NOTIFICATIONS, notification.id)
        assert stored.is_read is True

    @pytest.mark.asyncio
    async def test_mark_read_missing(self, notifications):
        assert await notifications.mark_read("notification-nope") is False

    @pytest.mark.asyncio
    async def test_clear(self, notifications, store):
        await notifications.publish(make_detection_record(1))
        await notifications.clear()
        assert notifications.list() == []
        assert await store.count(Collection.NOTIFICATIONS) == 0

    @pytest.mark.asyncio
    async def test_load_newest_first(self, store):
        center = NotificationCenter(store)
        for i in range(3):
            await center.publish(make_detection_record(i))

        reloaded = NotificationCenter(store)
        await reloaded.load()
        assert [n.detection_id for n in reloaded.list()] == ["face-test-2", "face-test-1", "face-test-0"]

    @pytest.mark.asyncio
    async def test_only_unknowns_are_delivered(self, store):
        delivery = AsyncMock()
        center = NotificationCenter(store, delivery=delivery, recipient="+15550100")
        await center.publish(make_detection_record(1, name="Alice"))
        await center.publish(make_detection_record(2))
        delivery.deliver.assert_awaited_once()
        recipient, message, _ = delivery.deliver.await_args.args
        assert recipient == "+15550100"
        assert message.startswith("Unknown person detected")

    @pytest.mark.asyncio
    async def test_delivery_failure_keeps_notification(self, store):
        delivery = AsyncMock()
        delivery.deliver.side_effect = DeliveryFailure("gateway down")
        center = NotificationCenter(store, delivery=delivery, recipient="+15550100")
        notification = await center.publish(make_detection_record(1))
        assert notification is not None
        assert await store.get_by_id(Collection.NOTIFICATIONS, notification.id) is not None


class TestSmsNotifier:
    """Tests for SmsNotifier using an httpx mock transport"""

    @pytest.mark.asyncio
    async def test_sends_gateway_params(self):
        seen = {}

        def handler(request: httpx.Request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, text="OK")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = SmsNotifier("http://sms.test/push", "user", "secret", sender="ALERT", client=client)
        assert await notifier.deliver("+15550100", "Unknown person detected") == "OK"
        assert seen["to"] == "+15550100"
        assert seen["username"] == "user"
        assert "Unknown person detected" in seen["message"]
        await notifier.aclose()

    @pytest.mark.asyncio
    async def test_gateway_error_raises_delivery_failure(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        notifier = SmsNotifier("http://sms.test/push", "user", "secret", client=client)
        with pytest.raises(DeliveryFailure):
            await notifier.deliver("+15550100", "hello")
        await notifier.aclose()
