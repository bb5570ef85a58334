"""Chat Handler - Coordinates matching, moderation and the conversation gates"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
from loguru import logger

from studybuddy.api.session_manager import SessionManager
from studybuddy.config import settings
from studybuddy.conversation.gate import ConversationGate, MatchStoreGateBackend, gate_state_from_pairing
from studybuddy.conversation.moderation import ModerationResult, Moderator, chat_moderator
from studybuddy.conversation.state_machine import (
    NoPairing,
    RateLimited,
    SendAllowed,
    SendResult,
    remaining_messages,
)
from studybuddy.data.validation import (
    FieldCheck,
    parse_modules,
    validate_description,
    validate_major,
    validate_modules,
)
from studybuddy.matching.matching_engine import MatchingEngine, MatchOutcome


@dataclass(frozen=True)
class MessageOutcome:
    """Result of trying to send one chat message"""
    moderation: ModerationResult
    result: Optional[SendResult] = None  # None when moderation blocked the message
    recipient: Optional[str] = None
    remaining: Optional[int] = None  # None = unlimited

    @property
    def delivered(self) -> bool:
        return isinstance(self.result, SendAllowed)


TEXT_INPUT_FIELDS = ("major", "modules", "description")


class ChatHandler:
    """
    Handles study buddy operations on top of the stores

    - Matching (profile store -> engine -> match store)
    - Messages inside a persisted pairing (gate over the match store)
    - Direct chats (gate over the session manager)
    - Profile free-text input, pausing, and data deletion
    """

    def __init__(self,
                 profile_store,
                 match_store,
                 session_manager: SessionManager,
                 engine: Optional[MatchingEngine] = None,
                 moderator: Moderator = chat_moderator,
                 message_cap: Optional[int] = None):
        cap = settings.message_cap if message_cap is None else message_cap

        self.profile_store = profile_store
        self.match_store = match_store
        self.session_manager = session_manager
        self.engine = engine if engine is not None else MatchingEngine(min_score_threshold=settings.match_threshold)
        self.moderator = moderator
        self.cap = cap

        self.pairing_gate = ConversationGate(MatchStoreGateBackend(match_store), cap=cap)
        self.direct_gate = ConversationGate(session_manager, cap=cap)

        logger.info(f"ChatHandler initialized (message cap={cap})")

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    async def find_match(self, user_id: str) -> MatchOutcome:
        return await self.engine.match_user(user_id, self.profile_store, self.match_store)

    async def match_status(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Status of the user's current pairing, or None if unmatched"""
        pairing = await self.match_store.find_active_for(user_id)
        if pairing is None:
            return None

        state = gate_state_from_pairing(pairing)
        partner = pairing.other(user_id)
        return {
            "pairing_id": pairing.pairing_id,
            "partner_id": partner,
            "score": pairing.score,
            "status": pairing.status.value,
            "messages_sent": state.count_for(user_id),
            "messages_received": state.count_for(partner),
            "remaining": remaining_messages(state, user_id, cap=self.cap),
        }

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_match_message(self, user_id: str, text: str) -> MessageOutcome:
        """Send a message to the partner of the user's current pairing"""
        moderation = self.moderator.check(text)
        if not moderation.allowed:
            return MessageOutcome(moderation=moderation)

        pairing = await self.match_store.find_active_for(user_id)
        if pairing is None:
            return MessageOutcome(moderation=moderation, result=NoPairing(sender=user_id))

        result = await self.pairing_gate.attempt_send(pairing.pairing_id, user_id)
        return self._outcome(moderation, result, user_id)

    async def send_direct_message(self, user_id: str, text: str) -> MessageOutcome:
        """Send a message inside the user's direct chat"""
        moderation = self.moderator.check(text)
        if not moderation.allowed:
            return MessageOutcome(moderation=moderation)

        result = await self.direct_gate.attempt_send(user_id, user_id)
        return self._outcome(moderation, result, user_id)

    def _outcome(self, moderation: ModerationResult, result: SendResult, user_id: str) -> MessageOutcome:
        if isinstance(result, SendAllowed):
            state = result.new_state
            return MessageOutcome(
                moderation=moderation,
                result=result,
                recipient=state.other(user_id),
                remaining=remaining_messages(state, user_id, cap=self.cap),
            )
        remaining = 0 if isinstance(result, RateLimited) else None
        return MessageOutcome(moderation=moderation, result=result, remaining=remaining)

    # ------------------------------------------------------------------
    # Direct chats
    # ------------------------------------------------------------------

    async def start_direct_chat(self, user_id: str, partner_id: str) -> bool:
        """
        Accept a match and open a direct chat with partner_id

        Only allowed when the two users are currently paired.
        """
        pairing = await self.match_store.find_active_for(user_id)
        if pairing is None or pairing.other(user_id) != partner_id:
            logger.warning(f"User {user_id} tried to chat with {partner_id} without a pairing")
            return False

        self.session_manager.start_chat(user_id, partner_id)
        return True

    def chat_status(self, user_id: str) -> Optional[Dict[str, Any]]:
        chat = self.session_manager.get_chat(user_id)
        if chat is None:
            return None

        remaining = None if chat.active else max(self.cap - chat.message_count, 0)
        return {
            "partner_id": chat.other_user_id,
            "messages_sent": chat.message_count,
            "status": "active" if chat.active else "waiting_for_reply",
            "remaining": remaining,
        }

    def end_direct_chat(self, user_id: str) -> Optional[str]:
        return self.session_manager.end_chat(user_id)

    # ------------------------------------------------------------------
    # Profile input
    # ------------------------------------------------------------------

    def request_profile_input(self, user_id: str, field_name: str) -> None:
        if field_name not in TEXT_INPUT_FIELDS:
            raise ValueError(f"Field '{field_name}' is not entered as free text")
        self.session_manager.set_pending_input(user_id, field_name)

    async def submit_profile_input(self, user_id: str, text: str) -> Optional[FieldCheck]:
        """
        Apply free text to the field the user was asked for

        Returns:
            FieldCheck describing the outcome, or None if no input was pending.
            An invalid value keeps the field pending so the user can retry.
        """
        field_name = self.session_manager.pop_pending_input(user_id)
        if field_name is None:
            return None

        if field_name == "major":
            check = validate_major(text)
        elif field_name == "modules":
            check = validate_modules(parse_modules(text))
        else:
            check = validate_description(text)

        if not check.is_valid:
            self.session_manager.set_pending_input(user_id, field_name)
            return check

        await self.profile_store.update(user_id, **{field_name: check.value})
        return check

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def pause_matching(self, user_id: str) -> bool:
        return await self.profile_store.set_opt_in(user_id, False)

    async def resume_matching(self, user_id: str) -> bool:
        return await self.profile_store.set_opt_in(user_id, True)

    async def block_user(self, user_id: str, blocked_id: str) -> bool:
        """Never match user_id with blocked_id again; ends any direct chat between them"""
        if not await self.profile_store.block(user_id, blocked_id):
            return False
        chat = self.session_manager.get_chat(user_id)
        if chat is not None and chat.other_user_id == blocked_id:
            self.session_manager.end_chat(user_id)
        return True

    async def delete_user_data(self, user_id: str) -> Dict[str, Any]:
        """Remove the user's profile, pairings and session"""
        profile_deleted = await self.profile_store.delete(user_id)
        pairings_deleted = await self.match_store.delete_for_user(user_id)
        session_deleted = self.session_manager.delete_session(user_id)

        logger.info(f"Deleted data for user {user_id}")
        return {
            "profile_deleted": profile_deleted,
            "pairings_deleted": pairings_deleted,
            "session_deleted": session_deleted,
        }
