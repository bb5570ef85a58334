"""Matching Engine - Pick the best study buddy for a user"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union, Any
from loguru import logger

from studybuddy.data.schema import MatchPairing, Profile
from studybuddy.data.validation import check_profile_completeness
from studybuddy.matching.compatibility_scorer import CompatibilityScorer


@dataclass(frozen=True)
class MatchCandidate:
    user_id: str
    score: float


@dataclass(frozen=True)
class Matched:
    pairing: MatchPairing
    candidate: MatchCandidate
    profile: Profile  # the candidate's profile


@dataclass(frozen=True)
class NoCandidates:
    """Nobody eligible scored above the acceptance threshold"""
    best: Optional[MatchCandidate] = None


@dataclass(frozen=True)
class InvalidProfile:
    """Requester's profile is missing fields needed for matching"""
    user_id: str
    missing_fields: List[str] = field(default_factory=list)


MatchOutcome = Union[Matched, NoCandidates, InvalidProfile]


def is_blocked_pair(me_id: str, me: Profile, other_id: str, other: Profile) -> bool:
    """True if either side has blocked the other"""
    return me.has_blocked(other_id) or other.has_blocked(me_id)


class MatchingEngine:
    """
    Matching engine for study buddies

    Features:
    - Filter candidates (self, opted-out, blocked pairs)
    - Rank candidates by compatibility score
    - Pick the single best candidate (first one wins ties)
    - Run the full match flow against profile and match stores
    """

    def __init__(self,
                 scorer: Optional[CompatibilityScorer] = None,
                 min_score_threshold: float = 1.5):
        """
        Initialize matching engine

        Args:
            scorer: Custom CompatibilityScorer (if None, uses default)
            min_score_threshold: A best match must score strictly above this (default 1.5)
        """
        self.scorer = scorer if scorer is not None else CompatibilityScorer()
        self.min_score_threshold = min_score_threshold

    def _eligible(self, me_id: str, me: Profile,
                  candidates: Iterable[Tuple[str, Profile]]) -> Iterable[Tuple[str, Profile]]:
        for user_id, profile in candidates:
            if user_id == me_id or not profile.match_opt_in:
                continue
            if is_blocked_pair(me_id, me, user_id, profile):
                logger.debug(f"Skipping blocked pair {me_id} <-> {user_id}")
                continue
            yield user_id, profile

    def find_best_match(self, me_id: str, me: Profile,
                        candidates: Iterable[Tuple[str, Profile]]) -> Optional[MatchCandidate]:
        """
        Select the eligible candidate with the strictly greatest score

        Args:
            me_id: Requesting user's id
            me: Requesting user's profile
            candidates: (user_id, profile) pairs, e.g. all opted-in profiles

        Returns:
            Best MatchCandidate, or None when nobody is eligible
        """
        best: Optional[MatchCandidate] = None
        for user_id, profile in self._eligible(me_id, me, candidates):
            score = self.scorer.score(me, profile)
            if best is None or score > best.score:
                best = MatchCandidate(user_id=user_id, score=score)
        return best

    def rank_candidates(self, me_id: str, me: Profile,
                        candidates: Iterable[Tuple[str, Profile]]) -> List[Tuple[str, float, Dict[str, Any]]]:
        """
        Rank eligible candidates by compatibility score

        Returns:
            List of (user_id, score, breakdown) tuples, sorted by score descending
        """
        ranked = []
        for user_id, profile in self._eligible(me_id, me, candidates):
            score, breakdown = self.scorer.score_breakdown(me, profile)
            ranked.append((user_id, score, breakdown))

        # Stable sort keeps iteration order among equal scores
        ranked.sort(key=lambda x: x[1], reverse=True)

        logger.info(f"Ranked {len(ranked)} candidates for {me_id} (scores: {[f'{s:.2f}' for _, s, _ in ranked[:5]]})")
        return ranked

    def is_strong_enough(self, candidate: Optional[MatchCandidate]) -> bool:
        return candidate is not None and candidate.score > self.min_score_threshold

    async def match_user(self, user_id: str, profile_store, match_store) -> MatchOutcome:
        """
        Find and record the best study buddy for user_id

        Args:
            user_id: Requesting user
            profile_store: Supplies get() and list_opted_in()
            match_store: Persists the resulting MatchPairing

        Returns:
            Matched, NoCandidates or InvalidProfile
        """
        me = await profile_store.get(user_id)
        completeness = check_profile_completeness(me)
        if not completeness.is_complete:
            logger.info(f"User {user_id} cannot be matched, missing {completeness.missing_fields}")
            return InvalidProfile(user_id=user_id, missing_fields=completeness.missing_fields)

        candidates = await profile_store.list_opted_in()
        best = self.find_best_match(user_id, me, candidates)

        if not self.is_strong_enough(best):
            if best is None:
                logger.info(f"No eligible candidates for {user_id}")
            else:
                logger.info(f"No strong match for {user_id} (best={best.score:.2f} <= {self.min_score_threshold})")
            return NoCandidates(best=best)

        pairing = MatchPairing(users=(user_id, best.user_id), score=best.score)
        await match_store.create(pairing)

        partner_profile = next(p for uid, p in candidates if uid == best.user_id)
        logger.info(f"Matched {user_id} with {best.user_id} (score={best.score:.2f})")
        return Matched(pairing=pairing, candidate=best, profile=partner_profile)

    def explain_match(self, me: Profile, other: Profile) -> str:
        """Short human-readable summary of why two profiles match"""
        score, breakdown = self.scorer.score_breakdown(me, other)
        components = breakdown["components"]

        parts = [f"Match score: {score:.2f}"]
        shared = sorted({m.strip().upper() for m in me.modules} & {m.strip().upper() for m in other.modules})
        if shared:
            parts.append(f"Shared modules: {', '.join(shared)}")
        if components["year"]["score"]:
            parts.append(f"Both in year {me.year_of_study}")
        if components["major"]["score"]:
            parts.append("Same major")
        if components["mediums"]["score"] > 0:
            parts.append("Overlapping study mediums")
        if components["description"]["score"] >= 0.3:
            parts.append("Similar study styles")
        return "\n".join(parts)
