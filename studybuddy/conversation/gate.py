"""Conversation Gate - Applies the message cap over a pluggable storage backend"""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Optional, Protocol
from loguru import logger

from studybuddy.conversation.state_machine import (
    DEFAULT_MESSAGE_CAP,
    GateState,
    NoPairing,
    RateLimited,
    SendAllowed,
    SendResult,
    decide,
)
from studybuddy.data.schema import MatchPairing


class GateTransaction:
    """Working copy of a gate state inside a backend transaction"""

    def __init__(self, state: GateState):
        self.state = state
        self.committed: Optional[GateState] = None

    def commit(self, new_state: GateState) -> None:
        self.committed = new_state


class GateBackend(Protocol):
    def transaction(self, key: str) -> AsyncContextManager[Optional[GateTransaction]]:
        """
        Lock the conversation identified by key and yield its state

        Yields None when there is no conversation. A state passed to
        GateTransaction.commit() is persisted when the block exits cleanly.
        """
        ...


def gate_state_from_pairing(pairing: MatchPairing) -> GateState:
    return GateState(
        members=pairing.users,
        status=pairing.status,
        message_counts=dict(pairing.message_counts),
        last_message_from=pairing.last_message_from,
    )


class MatchStoreGateBackend:
    """Persisted conversations: one MatchPairing per key (pairing id)"""

    def __init__(self, match_store):
        self.match_store = match_store

    @asynccontextmanager
    async def transaction(self, key: str) -> AsyncIterator[Optional[GateTransaction]]:
        async with self.match_store.transaction(key) as pairing:
            txn = GateTransaction(gate_state_from_pairing(pairing)) if pairing is not None else None
            yield txn
            if txn is not None and txn.committed is not None:
                pairing.status = txn.committed.status
                pairing.message_counts = dict(txn.committed.message_counts)
                pairing.last_message_from = txn.committed.last_message_from


class ConversationGate:
    """
    Decides whether a message may be forwarded to the matched partner

    The read -> decide -> write sequence runs inside the backend's per-key
    transaction, so concurrent sends on the same conversation are serialized
    and no increment is lost.
    """

    def __init__(self, backend: GateBackend, cap: int = DEFAULT_MESSAGE_CAP):
        self.backend = backend
        self.cap = cap

    async def attempt_send(self, key: str, sender: str) -> SendResult:
        """
        Record one message from sender if the cap allows it

        Args:
            key: Conversation key understood by the backend
            sender: User id of the sender

        Returns:
            SendAllowed with the new state, RateLimited, or NoPairing
        """
        async with self.backend.transaction(key) as txn:
            if txn is None or sender not in txn.state.members:
                logger.debug(f"No conversation {key} for sender {sender}")
                return NoPairing(sender=sender)

            result = decide(txn.state, sender, cap=self.cap)

            if isinstance(result, SendAllowed):
                txn.commit(result.new_state)
                logger.debug(
                    f"Conversation {key}: {sender} sent message #{result.new_state.count_for(sender)} "
                    f"(status={result.new_state.status.value})"
                )
            elif isinstance(result, RateLimited):
                logger.info(f"Conversation {key}: {sender} rate limited at {result.sent}/{result.cap}")

        return result

    async def get_state(self, key: str) -> Optional[GateState]:
        async with self.backend.transaction(key) as txn:
            return txn.state if txn is not None else None

