"""Conversation gate state machine: message cap until the partner replies"""

from dataclasses import dataclass
from typing import Optional, Union
from pydantic import BaseModel, Field

from studybuddy.data.schema import PairingStatus


DEFAULT_MESSAGE_CAP = 2


class GateState(BaseModel):
    """Conversation state shared by the two members of a pairing"""

    members: tuple[str, str]
    status: PairingStatus = PairingStatus.INTRODUCED
    message_counts: dict[str, int] = Field(default_factory=dict)
    last_message_from: Optional[str] = None

    def count_for(self, user_id: str) -> int:
        return self.message_counts.get(user_id, 0)

    def other(self, user_id: str) -> str:
        a, b = self.members
        return b if user_id == a else a

    @property
    def is_active(self) -> bool:
        return self.status == PairingStatus.ACTIVE


@dataclass(frozen=True)
class SendAllowed:
    """The message may be forwarded; new_state must be persisted"""
    new_state: GateState


@dataclass(frozen=True)
class RateLimited:
    """Sender hit the cap before the partner replied; nothing changed"""
    sender: str
    sent: int
    cap: int


@dataclass(frozen=True)
class NoPairing:
    """There is no conversation for this sender"""
    sender: str


SendResult = Union[SendAllowed, RateLimited, NoPairing]


def decide(state: GateState, sender: str, cap: int = DEFAULT_MESSAGE_CAP) -> Union[SendAllowed, RateLimited]:
    """
    Decide whether sender may send one more message

    Before the conversation is active, a sender who also sent the previous
    message is capped at `cap` messages. The conversation becomes active as
    soon as the receiving side has sent at least one message, and stays
    active from then on.
    """
    is_active = state.is_active

    if not is_active and state.last_message_from == sender and state.count_for(sender) >= cap:
        return RateLimited(sender=sender, sent=state.count_for(sender), cap=cap)

    counts = dict(state.message_counts)
    counts[sender] = counts.get(sender, 0) + 1
    partner_has_written = counts.get(state.other(sender), 0) >= 1

    new_state = state.model_copy(update={
        "message_counts": counts,
        "last_message_from": sender,
        "status": PairingStatus.ACTIVE if (is_active or partner_has_written) else PairingStatus.INTRODUCED,
    })
    return SendAllowed(new_state=new_state)


def remaining_messages(state: GateState, user_id: str, cap: int = DEFAULT_MESSAGE_CAP) -> Optional[int]:
    """How many more messages user_id may send now; None means unlimited"""
    if state.is_active:
        return None
    return max(cap - state.count_for(user_id), 0)
