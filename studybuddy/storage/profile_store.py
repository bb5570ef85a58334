"""Profile Store - Keeps study buddy profiles keyed by user id"""

from typing import Dict, List, Optional, Protocol, Tuple
from loguru import logger

from studybuddy.data.schema import Profile


class ProfileStore(Protocol):
    async def get(self, user_id: str) -> Optional[Profile]: ...
    async def list_opted_in(self) -> List[Tuple[str, Profile]]: ...


class InMemoryProfileStore:
    """
    Process-local profile store

    Iteration order of list_opted_in() is insertion order, which makes
    tie-breaking during candidate selection deterministic.
    """

    def __init__(self):
        self._profiles: Dict[str, Profile] = {}

    async def get(self, user_id: str) -> Optional[Profile]:
        profile = self._profiles.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    async def put(self, user_id: str, profile: Profile) -> None:
        """Create or replace a profile"""
        created = user_id not in self._profiles
        self._profiles[user_id] = profile.model_copy(deep=True)
        logger.info(f"{'Created' if created else 'Replaced'} profile for user {user_id}")

    async def update(self, user_id: str, **fields) -> Profile:
        """
        Merge fields into a profile, creating an empty one if needed

        Fields are validated by re-building the model, so a bad value raises
        pydantic.ValidationError and leaves the stored profile untouched.
        """
        current = self._profiles.get(user_id) or Profile()
        updated = Profile.model_validate({**current.model_dump(), **fields})
        self._profiles[user_id] = updated
        logger.debug(f"Updated profile for user {user_id}: {sorted(fields)}")
        return updated.model_copy(deep=True)

    async def set_opt_in(self, user_id: str, opted_in: bool) -> bool:
        """Pause or resume matching. Returns False if the user is unknown."""
        profile = self._profiles.get(user_id)
        if profile is None:
            return False
        profile.match_opt_in = opted_in
        logger.info(f"User {user_id} match opt-in set to {opted_in}")
        return True

    async def block(self, user_id: str, blocked_id: str) -> bool:
        profile = self._profiles.get(user_id)
        if profile is None:
            return False
        if blocked_id not in profile.blocked:
            profile.blocked.append(blocked_id)
            logger.info(f"User {user_id} blocked {blocked_id}")
        return True

    async def delete(self, user_id: str) -> bool:
        if self._profiles.pop(user_id, None) is None:
            return False
        logger.info(f"Deleted profile for user {user_id}")
        return True

    async def list_opted_in(self) -> List[Tuple[str, Profile]]:
        return [
            (user_id, profile.model_copy(deep=True))
            for user_id, profile in self._profiles.items()
            if profile.match_opt_in
        ]

    def __len__(self) -> int:
        return len(self._profiles)
