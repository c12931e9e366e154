"""
tests.test_message_pipeline
~~~~~~~~~~~~~~~~~~~~~~~~~~~

MessagePipeline 测试：校验、先持久化后广播、打赏表示一致性、
身份解析失败时放弃广播、同房间广播顺序。
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from streamchat.core.errors import (
    InvalidDonationError,
    InvalidMessageError,
    PersistenceError,
    UserNotFoundError,
)
from streamchat.db.memory_store import MemoryChatStore
from streamchat.services.message_pipeline import MessagePipeline
from streamchat.services.room_registry import RoomRegistry
from tests.fakes import FakeConnection


class TestSubmitChatMessage:
    """普通聊天消息。"""

    @pytest.mark.asyncio
    async def test_persists_then_broadcasts_enriched_message(self, store, registry, pipeline) -> None:
        a, b, outsider = FakeConnection("a"), FakeConnection("b"), FakeConnection("outsider")
        registry.join(5, a)
        registry.join(5, b)
        registry.join(6, outsider)

        message = await pipeline.submit_chat_message(5, 1, "hi")

        assert len(store.messages) == 1
        for conn in (a, b):
            frames = conn.frames_of("chat")
            assert len(frames) == 1
            payload = frames[0]["message"]
            assert payload["message"] == "hi"
            assert payload["userId"] == 1
            assert payload["username"] == "alice"
            assert payload["displayName"] == "Alice"
            assert payload["isDonation"] is False
            assert "donationAmount" not in payload
            assert payload["id"] == message.id
        assert outsider.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("body", "sender"),
        [("", 1), ("   ", 1), (None, 1), (42, 1), ("hi", None), ("hi", 0), ("hi", "x")],
    )
    async def test_invalid_input_is_rejected_without_persisting(
        self, store, registry, pipeline, body, sender,
    ) -> None:
        member = FakeConnection()
        registry.join(5, member)

        with pytest.raises(InvalidMessageError):
            await pipeline.submit_chat_message(5, sender, body)

        assert store.messages == []
        assert member.sent == []

    @pytest.mark.asyncio
    async def test_unknown_sender_is_rejected_before_persisting(self, store, registry, pipeline) -> None:
        member = FakeConnection()
        registry.join(5, member)

        with pytest.raises(UserNotFoundError) as exc_info:
            await pipeline.submit_chat_message(5, 999, "hi")

        assert exc_info.value.message == "User not found"
        assert store.messages == []
        assert member.sent == []

    @pytest.mark.asyncio
    async def test_persistence_failure_suppresses_broadcast(self, store, registry) -> None:
        store.persist_message = AsyncMock(side_effect=RuntimeError("disk full"))
        pipeline = MessagePipeline(store=store, registry=registry)
        member = FakeConnection()
        registry.join(5, member)

        with pytest.raises(PersistenceError):
            await pipeline.submit_chat_message(5, 1, "hi")

        assert member.sent == []

    @pytest.mark.asyncio
    async def test_enrichment_failure_keeps_message_but_skips_broadcast(self, store, registry) -> None:
        member = FakeConnection()
        registry.join(5, member)
        pipeline = MessagePipeline(store=store, registry=registry)

        original_persist = store.persist_message

        async def persist_then_delete_user(*args, **kwargs):
            stored = await original_persist(*args, **kwargs)
            store.delete_user(stored.user_id)
            return stored

        store.persist_message = persist_then_delete_user

        with pytest.raises(UserNotFoundError):
            await pipeline.submit_chat_message(5, 2, "vanishing")

        assert len(store.messages) == 1
        assert member.sent == []

    @pytest.mark.asyncio
    async def test_broadcasts_follow_persistence_order(self, registry) -> None:
        """同一房间并发提交时，广播顺序与消息 ID（持久化顺序）一致。"""
        store = MemoryChatStore()
        store.create_user("slow")
        store.create_user("fast")
        original_lookup = store.get_user_identity

        async def jittery_lookup(user_id: int):
            # 让第一个发送者的身份解析更慢，制造交错
            await asyncio.sleep(0.01 if user_id == 1 else 0)
            return await original_lookup(user_id)

        store.get_user_identity = jittery_lookup
        pipeline = MessagePipeline(store=store, registry=registry)
        member = FakeConnection()
        registry.join(3, member)

        await asyncio.gather(
            pipeline.submit_chat_message(3, 1, "first"),
            pipeline.submit_chat_message(3, 2, "second"),
            pipeline.submit_chat_message(3, 1, "third"),
        )

        ids = [frame["message"]["id"] for frame in member.frames_of("chat")]
        assert len(ids) == 3
        assert ids == sorted(ids)

    @pytest.mark.asyncio
    async def test_room_locks_are_released(self, pipeline) -> None:
        await pipeline.submit_chat_message(5, 1, "hi")
        assert len(pipeline._room_locks) == 0


class TestSubmitDonationEvent:
    """打赏事件。"""

    @pytest.mark.asyncio
    async def test_donation_broadcast_matches_history(self, store, registry, pipeline) -> None:
        member = FakeConnection()
        registry.join(5, member)

        donation, chat_message = await pipeline.submit_donation_event(5, 3, 20, "thanks!")

        assert donation.amount == 20
        assert donation.message == "thanks!"
        assert store.donations == [donation]

        frames = member.frames_of("donation")
        assert len(frames) == 1
        live = frames[0]["message"]
        assert live["isDonation"] is True
        assert live["donationAmount"] == 20
        assert live["message"] == "thanks!"

        history = await store.get_recent_messages(5, 50)
        assert history[-1].model_dump(by_alias=True, exclude_none=True) == live
        assert chat_message.id == live["id"]

    @pytest.mark.asyncio
    async def test_missing_message_uses_default_text(self, store, registry, pipeline) -> None:
        donation, chat_message = await pipeline.submit_donation_event(5, 1, 5)

        assert donation.message is None
        assert chat_message.message == "Made a donation!"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, 2.5, "10", True])
    async def test_invalid_amount_is_rejected(self, store, pipeline, amount) -> None:
        with pytest.raises(InvalidDonationError):
            await pipeline.submit_donation_event(5, 1, amount)

        assert store.donations == []
        assert store.messages == []

    @pytest.mark.asyncio
    async def test_unknown_donor_is_rejected(self, store, pipeline) -> None:
        with pytest.raises(UserNotFoundError):
            await pipeline.submit_donation_event(5, 404, 10)

        assert store.donations == []

    @pytest.mark.asyncio
    async def test_donation_does_not_reach_other_rooms(self, registry: RoomRegistry, pipeline) -> None:
        here, elsewhere = FakeConnection("here"), FakeConnection("elsewhere")
        registry.join(1, here)
        registry.join(2, elsewhere)

        await pipeline.submit_donation_event(1, 2, 50, "gg")

        assert len(here.frames_of("donation")) == 1
        assert elsewhere.sent == []
