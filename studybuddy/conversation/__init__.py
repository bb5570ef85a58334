"""Conversation gate and moderation modules"""

from studybuddy.conversation.state_machine import (
    GateState,
    SendAllowed,
    RateLimited,
    NoPairing,
    decide,
    remaining_messages,
)
from studybuddy.conversation.gate import ConversationGate, MatchStoreGateBackend
from studybuddy.conversation.moderation import Moderator, ModerationRule, ModerationAction

__all__ = [
    "GateState", "SendAllowed", "RateLimited", "NoPairing",
    "decide", "remaining_messages",
    "ConversationGate", "MatchStoreGateBackend",
    "Moderator", "ModerationRule", "ModerationAction",
]
