"""Session Manager - Ephemeral per-user sessions (profile input, direct chats)"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional
from loguru import logger

from studybuddy.conversation.gate import GateTransaction
from studybuddy.conversation.state_machine import GateState
from studybuddy.data.schema import PairingStatus
from studybuddy.storage.locks import KeyedLocks


@dataclass
class ChatSession:
    """One side of a direct chat; lives only as long as the process"""
    other_user_id: str
    message_count: int = 0
    last_message_from: Optional[str] = None
    active: bool = False


@dataclass
class UserSession:
    user_id: str
    created_at: float = field(default_factory=time.time)
    last_active: float = field(default_factory=time.time)
    pending_input: Optional[str] = None  # profile field awaiting free-text input
    chat: Optional[ChatSession] = None

    def touch(self) -> None:
        self.last_active = time.time()


def _pair_key(a: str, b: str) -> tuple:
    return tuple(sorted((a, b)))


class SessionManager:
    """
    Maps user_id to UserSession objects

    Independent of persisted storage. Direct chats keep a ChatSession on both
    members' sessions; transaction() exposes them to the ConversationGate,
    keyed by the sender's user id and locked per pair.
    """

    def __init__(self, timeout_seconds: int = 3600):
        self.sessions: Dict[str, UserSession] = {}
        self.timeout_seconds = timeout_seconds
        self._pair_locks = KeyedLocks()

        logger.info("SessionManager initialized")

    def create_session(self, user_id: str) -> UserSession:
        """
        Create a new session for a user, or reuse the existing one

        Args:
            user_id: User identifier

        Returns:
            The user's session
        """
        session = self.sessions.get(user_id)
        if session is not None:
            session.touch()
            return session

        session = UserSession(user_id=user_id)
        self.sessions[user_id] = session
        logger.info(f"Created new session for user {user_id}")
        return session

    def get_session(self, user_id: str) -> Optional[UserSession]:
        session = self.sessions.get(user_id)
        if session:
            session.touch()
        return session

    def delete_session(self, user_id: str) -> bool:
        """
        Delete a session, ending any direct chat it is part of

        Returns:
            True if deleted, False if not found
        """
        if user_id not in self.sessions:
            logger.warning(f"Session not found for deletion: {user_id}")
            return False

        self.end_chat(user_id)
        del self.sessions[user_id]
        logger.info(f"Deleted session: {user_id}")
        return True

    # ------------------------------------------------------------------
    # Profile input
    # ------------------------------------------------------------------

    def set_pending_input(self, user_id: str, field_name: Optional[str]) -> None:
        self.create_session(user_id).pending_input = field_name

    def pop_pending_input(self, user_id: str) -> Optional[str]:
        session = self.sessions.get(user_id)
        if session is None:
            return None
        pending, session.pending_input = session.pending_input, None
        return pending

    # ------------------------------------------------------------------
    # Direct chats
    # ------------------------------------------------------------------

    def start_chat(self, user_id: str, other_user_id: str) -> None:
        """Open a fresh direct chat between two users, replacing older ones"""
        if user_id == other_user_id:
            raise ValueError("cannot start a chat with yourself")

        for uid in (user_id, other_user_id):
            self.end_chat(uid)

        self.create_session(user_id).chat = ChatSession(other_user_id=other_user_id)
        self.create_session(other_user_id).chat = ChatSession(other_user_id=user_id)
        logger.info(f"Started direct chat between {user_id} and {other_user_id}")

    def get_chat(self, user_id: str) -> Optional[ChatSession]:
        session = self.sessions.get(user_id)
        return session.chat if session else None

    def end_chat(self, user_id: str) -> Optional[str]:
        """
        End the user's direct chat for both members

        Returns:
            The former partner's user id, or None if there was no chat
        """
        chat = self.get_chat(user_id)
        if chat is None:
            return None

        partner = chat.other_user_id
        self.sessions[user_id].chat = None
        partner_session = self.sessions.get(partner)
        if partner_session and partner_session.chat and partner_session.chat.other_user_id == user_id:
            partner_session.chat = None

        logger.info(f"Ended direct chat between {user_id} and {partner}")
        return partner

    @asynccontextmanager
    async def transaction(self, key: str) -> AsyncIterator[Optional[GateTransaction]]:
        """Gate backend: key is the sender's user id"""
        chat = self.get_chat(key)
        if chat is None:
            yield None
            return

        partner = chat.other_user_id
        async with self._pair_locks(_pair_key(key, partner)):
            mine = self.get_chat(key)
            theirs = self.get_chat(partner)
            if mine is None or mine.other_user_id != partner:
                # chat changed while waiting for the lock
                yield None
                return

            message_counts = {key: mine.message_count, partner: theirs.message_count if theirs else 0}
            state = GateState(
                members=(key, partner),
                status=PairingStatus.ACTIVE if mine.active else PairingStatus.INTRODUCED,
                message_counts=message_counts,
                last_message_from=mine.last_message_from,
            )
            txn = GateTransaction(state)

            yield txn

            if txn.committed is not None:
                new = txn.committed
                for uid, chat_side in ((key, mine), (partner, theirs)):
                    if chat_side is None:
                        continue
                    chat_side.message_count = new.count_for(uid)
                    chat_side.last_message_from = new.last_message_from
                    chat_side.active = new.is_active

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def get_session_info(self, user_id: str) -> Optional[dict]:
        session = self.sessions.get(user_id)
        if session is None:
            return None
        return {
            "session_id": user_id,
            "created_at": session.created_at,
            "last_active": session.last_active,
            "pending_input": session.pending_input,
            "chatting_with": session.chat.other_user_id if session.chat else None,
        }

    def cleanup_inactive_sessions(self, timeout_seconds: Optional[int] = None) -> int:
        """
        Clean up sessions that have been inactive for too long

        Args:
            timeout_seconds: Inactivity timeout in seconds (default: manager's timeout)

        Returns:
            Number of sessions cleaned up
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        current_time = time.time()

        expired_sessions = [
            user_id for user_id, session in self.sessions.items()
            if current_time - session.last_active > timeout
        ]

        for user_id in expired_sessions:
            if user_id in self.sessions:
                self.delete_session(user_id)

        if expired_sessions:
            logger.info(f"Cleaned up {len(expired_sessions)} inactive sessions")

        return len(expired_sessions)

    def get_active_sessions_count(self) -> int:
        """Get count of active sessions"""
        return len(self.sessions)

    def list_all_sessions(self) -> list[dict]:
        return [self.get_session_info(user_id) for user_id in self.sessions]
