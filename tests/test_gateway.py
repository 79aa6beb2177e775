"""
Unit tests for lazy index construction, the pending queue and background indexing.
"""

import asyncio

import pytest

from contextmem.errors import (
    CredentialInvalid,
    CredentialMismatch,
    CredentialRequired,
    EmbeddingProviderError,
)
from contextmem.memory.gateway import (
    SENTINEL_ID,
    SENTINEL_TEXT,
    EmbeddingGateway,
    GatewayState,
    credential_fingerprint,
)
from contextmem.memory.models import IndexedItem, ItemType


def _chat_item(ref_id: str, text: str, user_id: str = "alice") -> IndexedItem:
    return IndexedItem(ref_id=ref_id, user_id=user_id, item_type=ItemType.CHAT, text=text)


class TestEnsure:
    async def test_first_call_builds_index_with_sentinel(self, gateway, provider):
        index = await gateway.ensure("key-a")

        assert gateway.state is GatewayState.READY
        assert provider.calls == [[SENTINEL_TEXT]]
        items = index.items()
        assert len(items) == 1
        assert items[0].ref_id == SENTINEL_ID
        assert items[0].item_type is ItemType.SENTINEL

    async def test_concurrent_first_calls_build_once(self, gateway, provider):
        provider.delay = 0.05

        indexes = await asyncio.gather(*(gateway.ensure("key-a") for _ in range(5)))

        assert provider.calls == [[SENTINEL_TEXT]]
        assert all(index is indexes[0] for index in indexes)
        assert indexes[0].count() == 1

    async def test_ready_index_does_not_reembed_sentinel(self, gateway, provider):
        await gateway.ensure("key-a")
        await gateway.ensure("key-a")
        await gateway.ensure("key-a")

        assert len(provider.calls) == 1

    async def test_missing_credential_is_rejected(self, gateway, provider):
        with pytest.raises(CredentialRequired):
            await gateway.ensure(None)
        with pytest.raises(CredentialRequired):
            await gateway.ensure("   ")

        assert gateway.state is GatewayState.UNINITIALIZED
        assert provider.calls == []

    async def test_second_credential_is_rejected(self, gateway):
        await gateway.ensure("key-a")

        with pytest.raises(CredentialMismatch):
            await gateway.ensure("key-b")

    async def test_failed_build_can_be_retried(self, gateway, provider):
        provider.fail_with = CredentialInvalid("rejected")

        with pytest.raises(CredentialInvalid):
            await gateway.ensure("bad-key")
        assert gateway.state is GatewayState.FAILED
        assert gateway.index is None

        provider.fail_with = None
        await gateway.ensure("good-key")

        assert gateway.state is GatewayState.READY
        assert gateway._fingerprint == credential_fingerprint("good-key")


class TestPendingQueue:
    async def test_items_without_credential_are_queued(self, gateway, provider):
        await asyncio.gather(
            gateway.enqueue_or_embed(_chat_item("m1", "user: hello")),
            gateway.enqueue_or_embed(_chat_item("m2", "user: hi there")),
        )

        assert gateway.pending_count == 2
        assert gateway.index is None
        assert provider.calls == []

    async def test_first_credentialed_call_drains_in_batches(self, gateway, provider):
        for n in range(3):
            gateway.submit(_chat_item(f"m{n}", f"user: note {n}"))

        index = await gateway.ensure("key-a")

        assert gateway.pending_count == 0
        assert provider.calls == [
            [SENTINEL_TEXT],
            ["user: note 0", "user: note 1"],
            ["user: note 2"],
        ]
        assert [item.ref_id for item in index.items()] == [SENTINEL_ID, "m0", "m1", "m2"]

    async def test_drain_failure_keeps_remaining_items(self, gateway, provider):
        for n in range(3):
            gateway.submit(_chat_item(f"m{n}", f"user: note {n}"))
        provider.fail_texts = {"user: note 2"}

        index = await gateway.ensure("key-a")

        assert index.count() == 3
        assert [item.ref_id for item in gateway.pending_items()] == ["m2"]

        provider.fail_texts = set()
        await gateway.ensure("key-a")

        assert gateway.pending_count == 0
        assert index.count() == 4

    async def test_add_items_drains_pending_first(self, gateway):
        gateway.submit(_chat_item("old", "user: queued earlier"))

        added = await gateway.add_items([_chat_item("new", "user: added now")], "key-a")

        assert added == 1
        refs = [item.ref_id for item in gateway.index.items()]
        assert refs == [SENTINEL_ID, "old", "new"]


class TestQuery:
    async def test_query_before_build_is_empty_and_builds_nothing(self, gateway, provider):
        assert await gateway.query("anything", "key-a", 5) == []
        assert gateway.state is GatewayState.UNINITIALIZED
        assert provider.calls == []

    async def test_query_with_other_credential_is_rejected(self, gateway):
        await gateway.ensure("key-a")

        with pytest.raises(CredentialMismatch):
            await gateway.query("anything", "key-b", 5)


class TestBackgroundIndexing:
    async def test_submitted_items_are_indexed_by_workers(self, gateway):
        gateway.start()

        assert gateway.submit(_chat_item("m1", "user: hello"), "key-a") is True
        await gateway.join()

        assert [item.ref_id for item in gateway.index.items()] == [SENTINEL_ID, "m1"]

    async def test_worker_failures_are_logged_not_raised(self, gateway, provider, caplog):
        gateway.start()
        provider.fail_texts = {"user: broken"}

        gateway.submit(_chat_item("m1", "user: broken"), "key-a")
        await gateway.join()

        assert gateway.index.count() == 1
        assert "Failed to add item m1" in caplog.text

    async def test_full_queue_drops_item(self, provider):
        gateway = EmbeddingGateway(provider, workers=1, queue_size=1)
        provider.delay = 0.05
        gateway.start()
        try:
            accepted = [gateway.submit(_chat_item(f"m{n}", "user: hi"), "key-a") for n in range(3)]
            assert accepted[0] is True
            assert False in accepted
        finally:
            await gateway.aclose()

    async def test_aclose_stops_workers_and_closes_provider(self, provider):
        gateway = EmbeddingGateway(provider)
        gateway.start()

        await gateway.aclose()

        assert gateway._workers == []
        assert provider.closed

    async def test_stats(self, gateway):
        gateway.submit(_chat_item("m1", "user: hello"))

        stats = gateway.stats()

        assert stats == {
            "state": "uninitialized",
            "initialized": False,
            "has_index": False,
            "pending": 1,
            "indexed": 0,
        }
