"""Unit tests for the sync reconciler."""

import asyncio
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from tilapios.core.exceptions import RemoteErrorKind, RemoteStoreError
from tilapios.core.time_utils import utcnow
from tilapios.dao.local_store import (
    ALL_CATCHES,
    ALL_TOURNAMENTS,
    PENDING_CATCHES,
    PENDING_INVITE_STATUS_UPDATES,
    PENDING_PARTICIPATIONS,
    PENDING_TOURNAMENTS,
    user_tournaments_key,
)
from tilapios.dao.remote_store import CATCHES, TOURNAMENT_INVITES, TOURNAMENTS
from tilapios.schemas.schemas import CatchCreate, CatchRecord, RankingPolicy
from tilapios.services.catch_service import register_catch
from tilapios.services.ranking_service import compute_ranking, tournament_catches
from tilapios.services.sync_service import (
    SyncReconciler,
    SyncStatus,
    is_temp_id,
    temp_id,
    unique_participant_count,
)
from tilapios.services.tournament_service import (
    create_tournament,
    join_tournament,
    write_participation,
)


def _pending_catch(user, weight=1.0, **extra):
    local_id = temp_id("catch", user.uid)
    return CatchRecord(
        id=local_id,
        client_id=local_id,
        user_id=user.uid,
        user_name=user.name,
        species="Tilápia",
        weight=weight,
        registered_at=utcnow().isoformat(),
        pending=True,
        **extra,
    ).model_dump(mode="json")


def _tournament_doc(owner, **overrides):
    now = utcnow()
    document = {
        "name": "Copa",
        "created_by": owner.uid,
        "creator_name": owner.name,
        "created_at": now.isoformat(),
        "start_date": (now - timedelta(hours=1)).isoformat(),
        "end_date": (now + timedelta(hours=5)).isoformat(),
        "status": "open",
        "max_participants": 10,
        "participants": [{"user_id": owner.uid, "user_name": owner.name}],
        "participant_count": 1,
    }
    document.update(overrides)
    return document


class TestTempIds:
    """Tests for temp_id and is_temp_id."""

    def test_format_and_uniqueness(self, alice):
        first = temp_id("catch", alice.uid)
        second = temp_id("catch", alice.uid)

        assert first.startswith("temp_catch_")
        assert alice.uid[:8] in first
        assert first != second
        assert is_temp_id(first)
        assert not is_temp_id("a1b2c3")
        assert not is_temp_id(None)


class TestDurableMutation:
    """Tests for apply_durable_mutation through register_catch."""

    async def test_online_write_goes_straight_to_remote(self, reconciler, alice, remote_store):
        outcome = await register_catch(reconciler, alice, CatchCreate(species="Pacu", weight=2.0))

        assert outcome.pending is False
        assert outcome.remote_id == outcome.entity["id"]
        assert reconciler.local.count(PENDING_CATCHES) == 0
        assert await remote_store.get_document(CATCHES, outcome.remote_id) is not None

    @pytest.mark.parametrize(
        "kind",
        [
            RemoteErrorKind.NETWORK_UNAVAILABLE,
            RemoteErrorKind.PERMISSION_DENIED,
            RemoteErrorKind.FAILED_PRECONDITION,
        ],
    )
    async def test_recoverable_failure_queues_locally(self, reconciler, alice, flaky_remote, kind):
        """Test that connectivity-class failures fall back to the queue."""
        flaky_remote.fail("add_document", kind)

        outcome = await register_catch(reconciler, alice, CatchCreate(species="Pacu", weight=2.0))

        assert outcome.pending is True
        assert reconciler.local.count(PENDING_CATCHES) == 1
        assert reconciler.catches[0]["pending"] is True

    async def test_other_failures_propagate(self, reconciler, alice, flaky_remote):
        flaky_remote.fail("add_document", RemoteErrorKind.VALIDATION)

        with pytest.raises(RemoteStoreError):
            await register_catch(reconciler, alice, CatchCreate(species="Pacu", weight=2.0))
        assert reconciler.local.count(PENDING_CATCHES) == 0

    async def test_offline_write_never_touches_remote(self, reconciler, alice, flaky_remote):
        await reconciler.set_online(False)

        outcome = await register_catch(reconciler, alice, CatchCreate(species="Pacu", weight=2.0))

        assert outcome.pending is True
        assert "add_document" not in flaky_remote.calls

    async def test_successful_write_drains_leftover_queue(self, reconciler, alice, remote_store):
        """Test the opportunistic drain after an online write."""
        reconciler.local.save(PENDING_CATCHES, [_pending_catch(alice)])

        await register_catch(reconciler, alice, CatchCreate(species="Pacu", weight=2.0))

        assert reconciler.local.count(PENDING_CATCHES) == 0
        assert len(await remote_store.query_documents(CATCHES)) == 2


class TestOfflineRoundTrip:
    """Tests for queueing offline and draining on reconnect."""

    async def test_catch_round_trip(self, live_reconciler, alice, remote_store):
        """Test an offline catch becomes a confirmed remote document."""
        await live_reconciler.set_online(False)
        outcome = await register_catch(
            live_reconciler, alice, CatchCreate(species="Tilápia", weight=1.8)
        )
        local_id = outcome.entity["id"]

        assert outcome.pending is True
        assert live_reconciler.local.count(PENDING_CATCHES) == 1
        optimistic = [c for c in live_reconciler.catches if c["id"] == local_id]
        assert optimistic and optimistic[0]["pending"] is True

        await live_reconciler.set_online(True)

        assert live_reconciler.local.count(PENDING_CATCHES) == 0
        remote_docs = await remote_store.query_documents(CATCHES)
        assert len(remote_docs) == 1
        assert remote_docs[0]["client_id"] == local_id
        assert len(live_reconciler.catches) == 1
        assert live_reconciler.catches[0]["pending"] is False
        assert live_reconciler.status is SyncStatus.SUCCESS

    async def test_temp_tournament_ids_are_remapped(
        self, reconciler, alice, bob, remote_store, tournament_data
    ):
        """Test catches and joins of an offline tournament follow its remote id."""
        await reconciler.set_online(False)
        created = await create_tournament(reconciler, alice, tournament_data)
        local_id = created.entity["id"]
        await register_catch(
            reconciler, alice, CatchCreate(species="Pacu", weight=2.0, tournament_id=local_id)
        )
        await join_tournament(reconciler, bob, local_id)

        assert reconciler.find_tournament(local_id)["participant_count"] == 2

        await reconciler.set_online(True)

        tournaments = await remote_store.query_documents(TOURNAMENTS)
        assert len(tournaments) == 1
        remote_id = tournaments[0]["id"]
        assert remote_id != local_id
        assert tournaments[0]["client_id"] == local_id
        assert {p["user_id"] for p in tournaments[0]["participants"]} == {alice.uid, bob.uid}
        assert tournaments[0]["participant_count"] == 2

        catches = await remote_store.query_documents(CATCHES)
        assert [c["tournament_id"] for c in catches] == [remote_id]
        assert reconciler.pending_total() == 0


class TestDrain:
    """Tests for drain."""

    @pytest.mark.parametrize("match_on", ["id", "client_id"])
    async def test_already_written_items_are_not_duplicated(
        self, reconciler, alice, remote_store, match_on
    ):
        """Test replaying an item the remote store already holds."""
        entity = _pending_catch(alice)
        if match_on == "id":
            await remote_store.add_document(CATCHES, entity, entity["id"])
        else:
            await remote_store.add_document(CATCHES, entity)
        reconciler.local.save(PENDING_CATCHES, [entity])

        report = await reconciler.drain()

        assert report.catches.duplicates == 1
        assert report.catches.confirmed == 0
        assert len(await remote_store.query_documents(CATCHES)) == 1
        assert reconciler.local.count(PENDING_CATCHES) == 0

    async def test_second_drain_is_a_no_op(self, reconciler, alice, remote_store):
        reconciler.local.save(PENDING_CATCHES, [_pending_catch(alice)])

        await reconciler.drain()
        report = await reconciler.drain()

        assert report.remaining == 0
        assert report.catches.confirmed == 0
        assert len(await remote_store.query_documents(CATCHES)) == 1
        assert reconciler.status is SyncStatus.IDLE

    async def test_batches_are_capped(self, reconciler, alice, flaky_remote, remote_store):
        """Test that a large queue is flushed in batches of the configured size."""
        reconciler.local.save(PENDING_CATCHES, [_pending_catch(alice) for _ in range(1001)])

        report = await reconciler.drain()

        assert flaky_remote.batch_sizes == [499, 499, 3]
        assert report.catches.confirmed == 1001
        assert len(await remote_store.query_documents(CATCHES)) == 1001

    async def test_recoverable_failure_keeps_queue(self, reconciler, alice, flaky_remote):
        reconciler.local.save(PENDING_CATCHES, [_pending_catch(alice), _pending_catch(alice)])
        flaky_remote.fail("batch_write")

        report = await reconciler.drain()

        assert reconciler.status is SyncStatus.ERROR
        assert report.catches.remaining == 2
        assert reconciler.local.count(PENDING_CATCHES) == 2

        flaky_remote.heal()
        await reconciler.drain()

        assert reconciler.status is SyncStatus.SUCCESS
        assert reconciler.local.count(PENDING_CATCHES) == 0

    async def test_rejected_batch_does_not_block_the_next(
        self, flaky_remote, local_store, settings, alice
    ):
        """Test partial success: only the rejected batch stays queued."""
        reconciler = SyncReconciler(flaky_remote, local_store, replace(settings, batch_limit=1))
        first, second = _pending_catch(alice), _pending_catch(alice)
        local_store.save(PENDING_CATCHES, [first, second])

        rejection = RemoteStoreError(message="bad document", kind=RemoteErrorKind.VALIDATION)
        with patch.object(
            flaky_remote, "batch_write", AsyncMock(side_effect=[rejection, ["remote-2"]])
        ):
            report = await reconciler.drain()

        assert report.catches.confirmed == 1
        assert [c["id"] for c in local_store.load(PENDING_CATCHES)] == [first["id"]]
        assert reconciler.status is SyncStatus.ERROR

    async def test_failed_existence_check_keeps_queue(self, reconciler, alice, flaky_remote):
        reconciler.local.save(PENDING_CATCHES, [_pending_catch(alice)])
        flaky_remote.fail("query_documents")

        report = await reconciler.drain()

        assert report.catches.remaining == 1
        assert reconciler.status is SyncStatus.ERROR

    async def test_reentrant_drain_is_skipped(self, reconciler, alice):
        reconciler.local.save(PENDING_CATCHES, [_pending_catch(alice)])
        reconciler.status = SyncStatus.SYNCING

        assert await reconciler.drain() is None
        assert reconciler.local.count(PENDING_CATCHES) == 1

    async def test_concurrent_drains_write_once(self, reconciler, alice, flaky_remote, remote_store):
        """Test that a drain started while another runs does nothing."""
        reconciler.local.save(PENDING_CATCHES, [_pending_catch(alice)])
        release = asyncio.Event()
        inner_batch_write = flaky_remote.batch_write

        async def slow_batch_write(operations):
            await release.wait()
            return await inner_batch_write(operations)

        with patch.object(flaky_remote, "batch_write", slow_batch_write):
            first = asyncio.create_task(reconciler.drain())
            await asyncio.sleep(0)
            second = await reconciler.drain()
            release.set()
            await first

        assert second is None
        assert len(await remote_store.query_documents(CATCHES)) == 1

    async def test_catch_queued_during_drain_is_kept(
        self, reconciler, alice, flaky_remote, remote_store
    ):
        """Test that an envelope appended while a batch is in flight survives the drain."""
        first = _pending_catch(alice, weight=1.0)
        reconciler.local.save(PENDING_CATCHES, [first])
        entered, release = asyncio.Event(), asyncio.Event()
        inner_batch_write = flaky_remote.batch_write

        async def slow_batch_write(operations):
            entered.set()
            await release.wait()
            return await inner_batch_write(operations)

        with patch.object(flaky_remote, "batch_write", slow_batch_write):
            drain = asyncio.create_task(reconciler.drain())
            await entered.wait()

            flaky_remote.fail("add_document")
            late = await register_catch(
                reconciler, alice, CatchCreate(species="Pacu", weight=2.0)
            )
            flaky_remote.heal()
            assert late.pending is True

            release.set()
            report = await drain

        assert report.catches.confirmed == 1
        assert report.catches.remaining == 1
        queued = reconciler.local.load(PENDING_CATCHES)
        assert [c["id"] for c in queued] == [late.entity["id"]]
        pending_view = [c for c in reconciler.catches if c.get("pending")]
        assert [c["id"] for c in pending_view] == [late.entity["id"]]
        written = await remote_store.query_documents(CATCHES)
        assert [c["client_id"] for c in written] == [first["id"]]

        await reconciler.drain()
        assert reconciler.local.count(PENDING_CATCHES) == 0
        assert len(await remote_store.query_documents(CATCHES)) == 2

    async def test_catch_of_tournament_confirmed_earlier_is_remapped(
        self, live_reconciler, alice, remote_store
    ):
        """Test a queued catch whose temporary tournament id was confirmed by a previous drain."""
        local_tournament = temp_id("tournament", alice.uid)
        remote_id = await remote_store.add_document(
            TOURNAMENTS, _tournament_doc(alice, client_id=local_tournament)
        )
        live_reconciler.local.save(
            PENDING_CATCHES, [_pending_catch(alice, tournament_id=local_tournament)]
        )

        report = await live_reconciler.drain()

        assert report.catches.confirmed == 1
        written = await remote_store.query_documents(CATCHES)
        assert [c["tournament_id"] for c in written] == [remote_id]

    async def test_offline_drain_is_postponed(self, reconciler, alice):
        reconciler.local.save(PENDING_CATCHES, [_pending_catch(alice)])
        await reconciler.set_online(False)

        assert await reconciler.drain() is None
        assert reconciler.local.count(PENDING_CATCHES) == 1

    async def test_catches_of_unsynced_tournament_wait(self, reconciler, alice, flaky_remote):
        """Test that a catch of a still-queued tournament is held back."""
        waiting = _pending_catch(alice, tournament_id=temp_id("tournament", alice.uid))
        reconciler.local.save(PENDING_CATCHES, [waiting])

        report = await reconciler.drain()

        assert report.catches.remaining == 1
        assert flaky_remote.batch_sizes == []


class TestParticipationDrain:
    """Tests for draining queued joins."""

    async def test_replayed_joins_count_each_user_once(self, reconciler, alice, bob, remote_store):
        tournament_id = await remote_store.add_document(TOURNAMENTS, _tournament_doc(alice))
        envelope = {
            "tournament_id": tournament_id,
            "user_id": bob.uid,
            "user_name": bob.name,
            "timestamp": utcnow().isoformat(),
        }
        reconciler.local.save(PENDING_PARTICIPATIONS, [envelope, envelope, envelope])

        report = await reconciler.drain()

        document = await remote_store.get_document(TOURNAMENTS, tournament_id)
        assert len(document["participants"]) == 2
        assert document["participant_count"] == 2
        assert report.participations.confirmed == 1
        assert report.participations.duplicates == 2

    async def test_concurrent_remote_joins_are_idempotent(self, alice, bob, remote_store):
        tournament_id = await remote_store.add_document(TOURNAMENTS, _tournament_doc(alice))
        envelope = {
            "tournament_id": tournament_id,
            "user_id": bob.uid,
            "user_name": bob.name,
            "timestamp": utcnow().isoformat(),
        }

        await asyncio.gather(*(write_participation(remote_store, envelope) for _ in range(3)))

        document = await remote_store.get_document(TOURNAMENTS, tournament_id)
        assert document["participant_count"] == unique_participant_count(document["participants"])
        assert document["participant_count"] == 2

    @pytest.mark.parametrize("status", ["cancelled", "finished"])
    async def test_joins_to_closed_tournaments_are_dropped(
        self, reconciler, alice, bob, remote_store, status
    ):
        tournament_id = await remote_store.add_document(
            TOURNAMENTS, _tournament_doc(alice, status=status)
        )
        reconciler.local.save(
            PENDING_PARTICIPATIONS,
            [{"tournament_id": tournament_id, "user_id": bob.uid, "timestamp": "t"}],
        )

        report = await reconciler.drain()

        assert report.participations.dropped == 1
        assert reconciler.local.count(PENDING_PARTICIPATIONS) == 0
        document = await remote_store.get_document(TOURNAMENTS, tournament_id)
        assert document["participant_count"] == 1

    async def test_joins_to_missing_or_full_tournaments_are_dropped(
        self, reconciler, alice, bob, remote_store
    ):
        full_id = await remote_store.add_document(
            TOURNAMENTS, _tournament_doc(alice, max_participants=1)
        )
        reconciler.local.save(
            PENDING_PARTICIPATIONS,
            [
                {"tournament_id": "missing", "user_id": bob.uid, "timestamp": "t"},
                {"tournament_id": full_id, "user_id": bob.uid, "timestamp": "t"},
            ],
        )

        report = await reconciler.drain()

        assert report.participations.dropped == 2
        assert reconciler.status is SyncStatus.SUCCESS


class TestInviteUpdateDrain:
    """Tests for draining queued invite answers."""

    async def test_updates_known_invites_and_drops_unknown(self, reconciler, remote_store):
        invite_id = await remote_store.add_document(
            TOURNAMENT_INVITES, {"invitee_email": "bob@example.com", "status": "pending"}
        )
        reconciler.local.save(
            PENDING_INVITE_STATUS_UPDATES,
            [
                {"invite_id": invite_id, "status": "accepted", "timestamp": "2024-01-01T00:00:00"},
                {"invite_id": "gone", "status": "declined", "timestamp": "2024-01-01T00:00:00"},
            ],
        )

        report = await reconciler.drain()

        invite = await remote_store.get_document(TOURNAMENT_INVITES, invite_id)
        assert invite["status"] == "accepted"
        assert invite["responded_at"] == "2024-01-01T00:00:00"
        assert report.invite_updates.confirmed == 1
        assert report.invite_updates.dropped == 1
        assert reconciler.local.count(PENDING_INVITE_STATUS_UPDATES) == 0


class TestMirrors:
    """Tests for the collection mirrors and the pending overlay."""

    async def test_remote_changes_reach_views_and_cache(self, live_reconciler, alice, remote_store):
        tournament_id = await remote_store.add_document(TOURNAMENTS, _tournament_doc(alice))

        assert [t["id"] for t in live_reconciler.tournaments] == [tournament_id]
        assert live_reconciler.local.load(ALL_TOURNAMENTS)[0]["id"] == tournament_id
        cached = live_reconciler.local.load(user_tournaments_key(alice.uid))
        assert [t["id"] for t in cached] == [tournament_id]

    async def test_cached_mirrors_are_used_offline(
        self, flaky_remote, local_store, settings, alice
    ):
        local_store.save(ALL_CATCHES, [{"id": "c1", "user_id": alice.uid, "weight": 1.0}])
        local_store.save(PENDING_CATCHES, [_pending_catch(alice)])
        reconciler = SyncReconciler(flaky_remote, local_store, replace(settings, start_online=False))

        await reconciler.init(alice, run_sweeper=False)

        assert len(reconciler.catches) == 2
        assert "subscribe_to_collection" not in flaky_remote.calls
        await reconciler.dispose()

    async def test_emission_keeps_pending_overlay(self, live_reconciler, alice, remote_store):
        """Test that a remote snapshot does not hide queued catches."""
        live_reconciler.local.save(PENDING_CATCHES, [_pending_catch(alice)])
        await remote_store.add_document(CATCHES, {"user_id": "someone", "weight": 1.0})

        pending = [c for c in live_reconciler.catches if c.get("pending")]
        assert len(live_reconciler.catches) == 2
        assert len(pending) == 1

    async def test_set_user_rebuilds_invite_mirror(self, live_reconciler, bob, remote_store):
        await remote_store.add_document(
            TOURNAMENT_INVITES,
            {"invitee_email": bob.email, "status": "pending", "tournament_id": "t"},
        )
        assert live_reconciler.invites == []

        await live_reconciler.set_user(bob)

        assert len(live_reconciler.invites) == 1
        assert live_reconciler.user == bob


class TestExpirySweep:
    """Tests for sweep_expired."""

    async def test_expired_tournament_is_finished_with_weight_winner(
        self, live_reconciler, alice, bob, remote_store
    ):
        past = utcnow() - timedelta(minutes=5)
        tournament_id = await remote_store.add_document(
            TOURNAMENTS,
            _tournament_doc(
                alice,
                start_date=(past - timedelta(hours=2)).isoformat(),
                end_date=past.isoformat(),
            ),
        )
        for user, weight in [(alice, 3.0), (alice, 1.0), (bob, 5.0)]:
            await remote_store.add_document(
                CATCHES,
                {
                    "user_id": user.uid,
                    "user_name": user.name,
                    "species": "Pacu",
                    "weight": weight,
                    "tournament_id": tournament_id,
                    "registered_at": (past - timedelta(hours=1)).isoformat(),
                },
            )

        finished = await live_reconciler.sweep_expired()

        assert finished == [tournament_id]
        document = await remote_store.get_document(TOURNAMENTS, tournament_id)
        expected = compute_ranking(
            tournament_catches(await remote_store.query_documents(CATCHES), tournament_id),
            RankingPolicy.WEIGHT,
        )
        assert document["status"] == "finished"
        assert document["winner"]["user_id"] == expected[0].user_id == bob.uid
        assert [p["user_id"] for p in document["final_ranking"]] == [bob.uid, alice.uid]

    async def test_catches_after_end_date_do_not_count(
        self, live_reconciler, alice, bob, remote_store
    ):
        end = utcnow() - timedelta(minutes=5)
        tournament_id = await remote_store.add_document(
            TOURNAMENTS,
            _tournament_doc(
                alice,
                start_date=(end - timedelta(hours=2)).isoformat(),
                end_date=end.isoformat(),
            ),
        )
        for user, weight, registered_at in [
            (alice, 2.0, end - timedelta(minutes=30)),
            (bob, 9.0, end + timedelta(minutes=1)),
        ]:
            await remote_store.add_document(
                CATCHES,
                {
                    "user_id": user.uid,
                    "user_name": user.name,
                    "species": "Pacu",
                    "weight": weight,
                    "tournament_id": tournament_id,
                    "registered_at": registered_at.isoformat(),
                },
            )

        await live_reconciler.sweep_expired()

        document = await remote_store.get_document(TOURNAMENTS, tournament_id)
        assert document["winner"]["user_id"] == alice.uid
        assert [p["user_id"] for p in document["final_ranking"]] == [alice.uid]

    async def test_failed_cycle_does_not_stop_the_loop(
        self, flaky_remote, local_store, settings
    ):
        """Test that an unexpected error in one sweep is logged and the next still runs."""
        reconciler = SyncReconciler(
            flaky_remote, local_store, replace(settings, expiry_sweep_interval=0.001)
        )
        calls = []
        second_cycle = asyncio.Event()

        async def sweep_expired(now=None):
            calls.append(now)
            if len(calls) == 1:
                raise SQLAlchemyError("database is locked")
            second_cycle.set()
            return []

        with patch.object(reconciler, "sweep_expired", sweep_expired):
            task = asyncio.create_task(reconciler._sweep_loop())
            await asyncio.wait_for(second_cycle.wait(), timeout=5)
            assert not task.done()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert len(calls) >= 2

    async def test_open_and_closed_tournaments_are_left_alone(
        self, live_reconciler, alice, remote_store
    ):
        past = (utcnow() - timedelta(minutes=5)).isoformat()
        await remote_store.add_document(TOURNAMENTS, _tournament_doc(alice))
        await remote_store.add_document(
            TOURNAMENTS, _tournament_doc(alice, status="cancelled", end_date=past)
        )

        assert await live_reconciler.sweep_expired() == []

    async def test_offline_sweep_updates_local_view_only(
        self, live_reconciler, alice, remote_store
    ):
        past = (utcnow() - timedelta(minutes=5)).isoformat()
        tournament_id = await remote_store.add_document(
            TOURNAMENTS, _tournament_doc(alice, end_date=past)
        )
        await live_reconciler.set_online(False)

        await live_reconciler.sweep_expired()

        assert live_reconciler.find_tournament(tournament_id)["status"] == "finished"
        assert live_reconciler.find_tournament(tournament_id)["winner"] is None
        document = await remote_store.get_document(TOURNAMENTS, tournament_id)
        assert document["status"] == "open"

    async def test_sweep_of_queued_tournament_patches_queue(
        self, reconciler, alice, tournament_data
    ):
        await reconciler.set_online(False)
        created = await create_tournament(reconciler, alice, tournament_data)

        later = utcnow() + timedelta(hours=3)
        assert await reconciler.sweep_expired(now=later) == [created.entity["id"]]
        assert reconciler.local.load(PENDING_TOURNAMENTS)[0]["status"] == "finished"


class TestStatus:
    """Tests for status_summary and lifecycle."""

    async def test_summary_reports_queue_and_mirrors(self, live_reconciler, alice):
        await live_reconciler.set_online(False)
        await register_catch(live_reconciler, alice, CatchCreate(species="Pacu", weight=1.0))

        summary = live_reconciler.status_summary()

        assert summary.online is False
        assert summary.pending[PENDING_CATCHES] == 1
        assert summary.pending_total == 1
        assert set(summary.mirrors) == {"tournaments", "catches", "posts", "invites"}
        assert all(state == "disconnected" for state in summary.mirrors.values())

    async def test_sweeper_task_is_cancelled_on_dispose(self, reconciler, alice):
        await reconciler.init(alice)
        task = reconciler._sweep_task
        assert task is not None and not task.done()

        await reconciler.dispose()

        assert task.cancelled()
