"""Unit tests for the mirror subscription state machine."""

import asyncio

from tilapios.core.exceptions import RemoteErrorKind, RemoteStoreError
from tilapios.dao.remote_store import TOURNAMENT_INVITES, TOURNAMENTS, Filter
from tilapios.services.subscriptions import MirrorState, MirrorSubscription


async def _wait_for(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class TestStart:
    """Tests for start."""

    async def test_subscribes_and_delivers_snapshot(self, flaky_remote, remote_store):
        await remote_store.add_document(TOURNAMENTS, {"name": "Copa"})
        snapshots = []
        mirror = MirrorSubscription(flaky_remote, "tournaments", TOURNAMENTS, snapshots.append)

        assert await mirror.start() is MirrorState.SUBSCRIBED
        assert len(snapshots[0]) == 1

        await remote_store.add_document(TOURNAMENTS, {"name": "Taça"})
        assert len(snapshots[-1]) == 2
        await mirror.stop()

    async def test_recoverable_failure_without_polling_disconnects(self, flaky_remote):
        flaky_remote.fail("subscribe_to_collection", RemoteErrorKind.PERMISSION_DENIED)
        mirror = MirrorSubscription(flaky_remote, "posts", "posts", lambda _: None)

        assert await mirror.start() is MirrorState.DISCONNECTED

    async def test_other_failure_disconnects(self, flaky_remote):
        flaky_remote.fail("subscribe_to_collection", RemoteErrorKind.UNKNOWN)
        mirror = MirrorSubscription(
            flaky_remote, "invites", TOURNAMENT_INVITES, lambda _: None, polling_interval=0.01
        )

        assert await mirror.start() is MirrorState.DISCONNECTED


class TestPollingFallback:
    """Tests for the polling fallback."""

    async def test_polls_then_resubscribes(self, flaky_remote, remote_store):
        """Test PollingFallback -> Subscribed once the subscription works again."""
        await remote_store.add_document(
            TOURNAMENT_INVITES, {"invitee_email": "bob@example.com", "status": "pending"}
        )
        snapshots = []
        mirror = MirrorSubscription(
            flaky_remote,
            "invites",
            TOURNAMENT_INVITES,
            snapshots.append,
            filters=[Filter("invitee_email", "==", "bob@example.com")],
            polling_interval=0.01,
        )
        flaky_remote.fail("subscribe_to_collection", RemoteErrorKind.PERMISSION_DENIED)

        assert await mirror.start() is MirrorState.POLLING_FALLBACK
        await _wait_for(lambda: len(snapshots) >= 1)
        assert len(snapshots[0]) == 1

        flaky_remote.heal()
        await _wait_for(lambda: mirror.state is MirrorState.SUBSCRIBED)
        await mirror.stop()
        assert mirror.state is MirrorState.DISCONNECTED

    async def test_failed_polls_keep_last_snapshot(self, flaky_remote):
        snapshots = []
        mirror = MirrorSubscription(
            flaky_remote, "invites", TOURNAMENT_INVITES, snapshots.append, polling_interval=0.01
        )
        flaky_remote.fail("*")

        await mirror.start()
        await _wait_for(lambda: flaky_remote.calls.count("query_documents") >= 2)

        assert mirror.state is MirrorState.POLLING_FALLBACK
        assert snapshots == []
        await mirror.stop()

    async def test_non_recoverable_poll_error_stops_polling(self, flaky_remote):
        mirror = MirrorSubscription(
            flaky_remote, "invites", TOURNAMENT_INVITES, lambda _: None, polling_interval=0.01
        )
        flaky_remote.fail("subscribe_to_collection")
        await mirror.start()

        flaky_remote.fail("query_documents", RemoteErrorKind.VALIDATION)
        await _wait_for(lambda: mirror.state is MirrorState.DISCONNECTED)
        await mirror.stop()


class TestStandingSubscriptionErrors:
    """Tests for errors reported after subscribing."""

    async def test_recoverable_error_moves_to_fallback(self, flaky_remote):
        mirror = MirrorSubscription(
            flaky_remote, "invites", TOURNAMENT_INVITES, lambda _: None, polling_interval=10
        )
        await mirror.start()

        mirror._handle_error(
            RemoteStoreError(message="lost", kind=RemoteErrorKind.NETWORK_UNAVAILABLE)
        )

        assert mirror.state is MirrorState.POLLING_FALLBACK
        await mirror.stop()
        assert mirror.state is MirrorState.DISCONNECTED

    async def test_other_error_disconnects(self, flaky_remote, remote_store):
        snapshots = []
        mirror = MirrorSubscription(flaky_remote, "tournaments", TOURNAMENTS, snapshots.append)
        await mirror.start()

        mirror._handle_error(RemoteStoreError(message="boom", kind=RemoteErrorKind.UNKNOWN))
        await remote_store.add_document(TOURNAMENTS, {"name": "Copa"})

        assert mirror.state is MirrorState.DISCONNECTED
        assert len(snapshots) == 1
