"""
Unit tests for the event bus.
"""

from datetime import datetime, timedelta, timezone

import pytest

from vibe_checkpoint.utils.notifications import (
    EventBus,
    EventCategory,
    EventPriority,
)


class TestEventBus:
    """Test EventBus."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        bus = EventBus()
        sync_received = []
        async_received = []

        async def async_handler(event):
            async_received.append(event.name)

        bus.subscribe(lambda event: sync_received.append(event.name))
        bus.subscribe(async_handler)

        event = await bus.emit("checkpoint.created", EventCategory.CHECKPOINT, {"checkpoint_id": "c1"})

        assert sync_received == ["checkpoint.created"]
        assert async_received == ["checkpoint.created"]
        assert event.data == {"checkpoint_id": "c1"}
        assert event.to_dict()["category"] == "checkpoint"

    @pytest.mark.asyncio
    async def test_filtering(self):
        bus = EventBus()
        by_category = []
        by_name = []
        high_only = []

        bus.subscribe(by_category.append, categories=[EventCategory.ERROR])
        bus.subscribe(by_name.append, event_names="checkpoint.deleted")
        bus.subscribe(high_only.append, priority_min=EventPriority.HIGH)

        await bus.emit("checkpoint.created", EventCategory.CHECKPOINT, {})
        await bus.emit("checkpoint.deleted", EventCategory.CHECKPOINT, {}, priority=EventPriority.HIGH)
        await bus.emit("failure", EventCategory.ERROR, {})

        assert [e.name for e in by_category] == ["failure"]
        assert [e.name for e in by_name] == ["checkpoint.deleted"]
        assert [e.name for e in high_only] == ["checkpoint.deleted"]

    @pytest.mark.asyncio
    async def test_handler_errors_are_contained(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise ValueError("bad handler")

        async def broken_async(event):
            raise RuntimeError("bad async handler")

        bus.subscribe(broken)
        bus.subscribe(broken_async)
        bus.subscribe(received.append)

        await bus.emit("checkpoint.created", EventCategory.CHECKPOINT, {})

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []
        subscription = bus.subscribe(received.append)

        assert bus.unsubscribe(subscription) is True
        assert bus.unsubscribe(subscription) is False

        await bus.emit("checkpoint.created", EventCategory.CHECKPOINT, {})
        assert received == []

    @pytest.mark.asyncio
    async def test_history(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            await bus.emit(f"event.{i}", EventCategory.SYSTEM, {"i": i})
        await bus.emit("checkpoint.created", EventCategory.CHECKPOINT, {})

        history = bus.get_history()
        assert [e.name for e in history] == ["event.3", "event.4", "checkpoint.created"]

        assert [e.name for e in bus.get_history(category=EventCategory.CHECKPOINT)] == ["checkpoint.created"]
        assert [e.name for e in bus.get_history(event_name="event.4")] == ["event.4"]
        assert [e.name for e in bus.get_history(limit=1)] == ["checkpoint.created"]

        future = datetime.now(timezone.utc) + timedelta(minutes=1)
        assert bus.get_history(since=future) == []
