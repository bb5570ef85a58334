"""Tests for the message cap state machine and the conversation gate backends"""

import asyncio
import pytest
import sys
from datetime import datetime
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from studybuddy.api.session_manager import SessionManager
from studybuddy.conversation.gate import ConversationGate, MatchStoreGateBackend
from studybuddy.conversation.state_machine import (
    GateState,
    NoPairing,
    RateLimited,
    SendAllowed,
    decide,
    remaining_messages,
)
from studybuddy.data.schema import MatchPairing, PairingStatus
from studybuddy.storage.locks import KeyedLocks
from studybuddy.storage.match_store import InMemoryMatchStore, SQLiteMatchStore


def send_all(state, senders, cap=2):
    """Apply decide() for each sender in turn, keeping allowed states"""
    results = []
    for sender in senders:
        result = decide(state, sender, cap=cap)
        if isinstance(result, SendAllowed):
            state = result.new_state
        results.append(result)
    return state, results


class TestDecide:
    """Test the pure decide() rule"""

    @pytest.fixture
    def fresh(self):
        return GateState(members=("alice", "bob"), message_counts={"alice": 0, "bob": 0})

    def test_two_messages_then_rate_limited(self, fresh):
        state, results = send_all(fresh, ["alice", "alice", "alice"])

        assert isinstance(results[0], SendAllowed)
        assert isinstance(results[1], SendAllowed)
        assert results[2] == RateLimited(sender="alice", sent=2, cap=2)
        assert state.count_for("alice") == 2
        assert state.status == PairingStatus.INTRODUCED

    def test_rate_limited_leaves_state_unchanged(self, fresh):
        state, _ = send_all(fresh, ["alice", "alice"])
        result = decide(state, "alice")
        assert isinstance(result, RateLimited)
        assert state.count_for("alice") == 2
        assert state.last_message_from == "alice"

    def test_reply_activates_conversation(self, fresh):
        state, results = send_all(fresh, ["alice", "alice", "bob"])

        assert all(isinstance(r, SendAllowed) for r in results)
        assert state.status == PairingStatus.ACTIVE
        assert state.last_message_from == "bob"

        state, results = send_all(state, ["alice"] * 5)
        assert all(isinstance(r, SendAllowed) for r in results)
        assert state.count_for("alice") == 7

    def test_first_reply_alone_does_not_activate(self, fresh):
        state, _ = send_all(fresh, ["bob"])
        assert state.status == PairingStatus.INTRODUCED

        state, _ = send_all(state, ["alice"])
        assert state.status == PairingStatus.ACTIVE

    def test_alternating_senders_never_capped(self, fresh):
        _, results = send_all(fresh, ["alice", "bob", "alice", "bob", "alice", "bob"])
        assert all(isinstance(r, SendAllowed) for r in results)

    def test_active_state_stays_active(self):
        state = GateState(
            members=("alice", "bob"),
            status=PairingStatus.ACTIVE,
            message_counts={"alice": 9, "bob": 0},
            last_message_from="alice",
        )
        result = decide(state, "alice")
        assert isinstance(result, SendAllowed)
        assert result.new_state.status == PairingStatus.ACTIVE

    def test_decide_does_not_mutate_input(self, fresh):
        decide(fresh, "alice")
        assert fresh.count_for("alice") == 0
        assert fresh.last_message_from is None

    def test_custom_cap(self, fresh):
        _, results = send_all(fresh, ["alice"] * 4, cap=3)
        assert [type(r) for r in results] == [SendAllowed, SendAllowed, SendAllowed, RateLimited]

    def test_remaining_messages(self, fresh):
        assert remaining_messages(fresh, "alice") == 2
        state, _ = send_all(fresh, ["alice"])
        assert remaining_messages(state, "alice") == 1
        state, _ = send_all(state, ["alice"])
        assert remaining_messages(state, "alice") == 0
        state, _ = send_all(state, ["bob"])
        assert remaining_messages(state, "alice") is None


class TestMatchStoreGate:
    """Test ConversationGate over the in-memory match store"""

    @pytest.fixture
    def match_store(self):
        return InMemoryMatchStore()

    @pytest.fixture
    def gate(self, match_store):
        return ConversationGate(MatchStoreGateBackend(match_store), cap=2)

    @pytest.mark.asyncio
    async def test_cap_is_persisted(self, match_store, gate):
        pairing_id = await match_store.create(MatchPairing(users=("alice", "bob"), score=3.0))

        assert isinstance(await gate.attempt_send(pairing_id, "alice"), SendAllowed)
        assert isinstance(await gate.attempt_send(pairing_id, "alice"), SendAllowed)
        assert isinstance(await gate.attempt_send(pairing_id, "alice"), RateLimited)

        stored = await match_store.get(pairing_id)
        assert stored.message_counts == {"alice": 2, "bob": 0}
        assert stored.last_message_from == "alice"
        assert stored.status == PairingStatus.INTRODUCED

    @pytest.mark.asyncio
    async def test_reply_unlocks(self, match_store, gate):
        pairing_id = await match_store.create(MatchPairing(users=("alice", "bob"), score=3.0))
        for sender in ("alice", "alice", "bob"):
            await gate.attempt_send(pairing_id, sender)

        stored = await match_store.get(pairing_id)
        assert stored.status == PairingStatus.ACTIVE

        for _ in range(3):
            assert isinstance(await gate.attempt_send(pairing_id, "alice"), SendAllowed)

    @pytest.mark.asyncio
    async def test_unknown_pairing(self, gate):
        result = await gate.attempt_send("missing", "alice")
        assert result == NoPairing(sender="alice")

    @pytest.mark.asyncio
    async def test_non_member_sender(self, match_store, gate):
        pairing_id = await match_store.create(MatchPairing(users=("alice", "bob"), score=3.0))

        assert isinstance(await gate.attempt_send(pairing_id, "mallory"), NoPairing)
        stored = await match_store.get(pairing_id)
        assert "mallory" not in stored.message_counts

    @pytest.mark.asyncio
    async def test_concurrent_sends_lose_no_increment(self, match_store, gate):
        pairing_id = await match_store.create(MatchPairing(users=("alice", "bob"), score=3.0))

        results = await asyncio.gather(*(gate.attempt_send(pairing_id, "alice") for _ in range(6)))

        assert sum(isinstance(r, SendAllowed) for r in results) == 2
        assert sum(isinstance(r, RateLimited) for r in results) == 4
        stored = await match_store.get(pairing_id)
        assert stored.message_counts["alice"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_both_sides(self, match_store, gate):
        pairing_id = await match_store.create(MatchPairing(users=("alice", "bob"), score=3.0))

        senders = ["alice", "bob"] * 5
        await asyncio.gather(*(gate.attempt_send(pairing_id, s) for s in senders))

        stored = await match_store.get(pairing_id)
        assert stored.status == PairingStatus.ACTIVE
        assert stored.message_counts == {"alice": 5, "bob": 5}

    @pytest.mark.asyncio
    async def test_get_state(self, match_store, gate):
        pairing_id = await match_store.create(MatchPairing(users=("alice", "bob"), score=3.0))
        await gate.attempt_send(pairing_id, "bob")

        state = await gate.get_state(pairing_id)
        assert state.count_for("bob") == 1
        assert await gate.get_state("missing") is None


class TestSessionGate:
    """Test ConversationGate over ephemeral direct chats"""

    @pytest.fixture
    def sessions(self):
        manager = SessionManager()
        manager.start_chat("alice", "bob")
        return manager

    @pytest.fixture
    def gate(self, sessions):
        return ConversationGate(sessions, cap=2)

    @pytest.mark.asyncio
    async def test_same_cap_as_pairings(self, sessions, gate):
        assert isinstance(await gate.attempt_send("alice", "alice"), SendAllowed)
        assert isinstance(await gate.attempt_send("alice", "alice"), SendAllowed)
        assert isinstance(await gate.attempt_send("alice", "alice"), RateLimited)

        assert sessions.get_chat("alice").message_count == 2
        assert sessions.get_chat("bob").last_message_from == "alice"

    @pytest.mark.asyncio
    async def test_reply_marks_both_sides_active(self, sessions, gate):
        await gate.attempt_send("alice", "alice")
        await gate.attempt_send("bob", "bob")

        assert sessions.get_chat("alice").active
        assert sessions.get_chat("bob").active

    @pytest.mark.asyncio
    async def test_no_chat(self, sessions, gate):
        assert isinstance(await gate.attempt_send("carol", "carol"), NoPairing)

    @pytest.mark.asyncio
    async def test_ended_chat(self, sessions, gate):
        sessions.end_chat("bob")
        assert isinstance(await gate.attempt_send("alice", "alice"), NoPairing)

    @pytest.mark.asyncio
    async def test_concurrent_sends(self, sessions, gate):
        results = await asyncio.gather(*(gate.attempt_send("alice", "alice") for _ in range(5)))
        assert sum(isinstance(r, SendAllowed) for r in results) == 2
        assert sessions.get_chat("alice").message_count == 2


class TestSQLiteMatchStore:
    """Test the SQLite backend"""

    @pytest.mark.asyncio
    async def test_state_survives_new_store(self, tmp_path):
        path = str(tmp_path / "matches.db")
        store = SQLiteMatchStore(path)
        pairing_id = await store.create(MatchPairing(users=("alice", "bob"), score=2.5))

        gate = ConversationGate(MatchStoreGateBackend(store), cap=2)
        await gate.attempt_send(pairing_id, "alice")
        await gate.attempt_send(pairing_id, "alice")

        reopened = SQLiteMatchStore(path)
        gate = ConversationGate(MatchStoreGateBackend(reopened), cap=2)
        assert isinstance(await gate.attempt_send(pairing_id, "alice"), RateLimited)

        stored = await reopened.get(pairing_id)
        assert stored.message_counts == {"alice": 2, "bob": 0}
        assert stored.score == pytest.approx(2.5)

    @pytest.mark.asyncio
    async def test_concurrent_sends(self, tmp_path):
        store = SQLiteMatchStore(str(tmp_path / "matches.db"))
        pairing_id = await store.create(MatchPairing(users=("alice", "bob"), score=2.5))
        gate = ConversationGate(MatchStoreGateBackend(store), cap=2)

        results = await asyncio.gather(*(gate.attempt_send(pairing_id, "alice") for _ in range(4)))

        assert sum(isinstance(r, SendAllowed) for r in results) == 2
        assert (await store.get(pairing_id)).message_counts["alice"] == 2

    @pytest.mark.asyncio
    async def test_find_update_delete(self, tmp_path):
        store = SQLiteMatchStore(str(tmp_path / "matches.db"))
        first = MatchPairing(users=("alice", "bob"), score=2.0)
        await store.create(first)

        found = await store.find_active_for("bob")
        assert found.pairing_id == first.pairing_id
        assert await store.find_active_for("carol") is None

        updated = await store.update(first.pairing_id, {"status": "active"})
        assert updated.status == PairingStatus.ACTIVE

        with pytest.raises(ValueError):
            await store.update(first.pairing_id, {"score": 9.0})

        assert await store.delete_for_user("alice") == 1
        assert await store.get(first.pairing_id) is None

    @pytest.mark.asyncio
    async def test_failed_transaction_rolls_back(self, tmp_path):
        store = SQLiteMatchStore(str(tmp_path / "matches.db"))
        pairing_id = await store.create(MatchPairing(users=("alice", "bob"), score=2.0))

        with pytest.raises(RuntimeError):
            async with store.transaction(pairing_id) as pairing:
                pairing.message_counts["alice"] = 5
                raise RuntimeError("boom")

        assert (await store.get(pairing_id)).message_counts["alice"] == 0


class TestLatestPairing:
    """Both stores resolve a user's current pairing the same way"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", ["memory", "sqlite"])
    async def test_same_timestamp_prefers_later_insert(self, backend, tmp_path):
        if backend == "memory":
            store = InMemoryMatchStore()
        else:
            store = SQLiteMatchStore(str(tmp_path / "matches.db"))

        created_at = datetime(2026, 1, 1)
        old = MatchPairing(users=("alice", "bob"), score=2.0, created_at=created_at)
        new = MatchPairing(users=("alice", "carol"), score=2.0, created_at=created_at)
        await store.create(old)
        await store.create(new)

        assert (await store.find_active_for("alice")).pairing_id == new.pairing_id
        assert (await store.find_active_for("bob")).pairing_id == old.pairing_id


class TestKeyedLocks:
    """Test per-key lock bookkeeping"""

    @pytest.mark.asyncio
    async def test_lock_dropped_after_release(self):
        locks = KeyedLocks()
        async with locks("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_waiters_stay_serialized(self):
        locks = KeyedLocks()
        inside = 0
        peak = 0

        async def worker():
            nonlocal inside, peak
            async with locks("a"):
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0)
                inside -= 1

        await asyncio.gather(*(worker() for _ in range(5)))

        assert peak == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_store_locks_released_after_sends(self, tmp_path):
        memory = InMemoryMatchStore()
        sqlite = SQLiteMatchStore(str(tmp_path / "matches.db"))

        for store in (memory, sqlite):
            pairing_id = await store.create(MatchPairing(users=("alice", "bob"), score=2.0))
            gate = ConversationGate(MatchStoreGateBackend(store), cap=2)
            await asyncio.gather(*(gate.attempt_send(pairing_id, "alice") for _ in range(3)))
            assert len(store._locks) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
