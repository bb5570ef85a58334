"""Data schema definitions for study buddy profiles and match pairings"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class Gender(str, Enum):
    """Self-reported gender"""
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    PREFER_NOT_TO_SAY = "prefer_not_to_say"


class Medium(str, Enum):
    """How a user likes to study"""
    ONLINE = "online"
    IN_PERSON = "in-person"


class PairingStatus(str, Enum):
    """Conversation state of a match pairing"""
    INTRODUCED = "introduced"  # message cap enforced
    ACTIVE = "active"  # both sides have written, no cap


class Profile(BaseModel):
    """Study buddy profile"""

    # Basic Info
    gender: Optional[Gender] = None
    year_of_study: Optional[int] = Field(None, ge=1, le=5)
    major: Optional[str] = None

    # Study preferences
    modules: list[str] = Field(default_factory=list)  # course codes, e.g. ["CS2030S", "ST2334"]
    mediums: list[Medium] = Field(default_factory=list)
    description: str = ""

    # Matching
    match_opt_in: bool = True
    blocked: list[str] = Field(default_factory=list)  # user ids this profile refuses

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value):
        return "" if value is None else value

    def has_blocked(self, user_id: str) -> bool:
        """Check whether this profile refuses to match with user_id"""
        return user_id in self.blocked


class MatchPairing(BaseModel):
    """Persisted record of two matched users and their conversation state"""

    pairing_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    users: tuple[str, str]
    score: float

    # Conversation state
    status: PairingStatus = PairingStatus.INTRODUCED
    message_counts: dict[str, int] = Field(default_factory=dict)
    last_message_from: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("users")
    @classmethod
    def _distinct_users(cls, users):
        if users[0] == users[1]:
            raise ValueError("a pairing needs two distinct users")
        return users

    def model_post_init(self, __context) -> None:
        for user_id in self.users:
            self.message_counts.setdefault(user_id, 0)

    def other(self, user_id: str) -> str:
        """Return the partner of user_id in this pairing"""
        a, b = self.users
        return b if user_id == a else a

    def involves(self, user_id: str) -> bool:
        return user_id in self.users
