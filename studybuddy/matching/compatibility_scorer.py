"""Compatibility Scorer - Compute compatibility between two study buddy profiles"""

from typing import Dict, Iterable, Tuple, Any
from loguru import logger

from studybuddy.data.schema import Profile
from studybuddy.matching.text_similarity import (
    tokenize,
    term_frequencies,
    cosine_similarity,
    keyword_boost,
    KEYWORD_BOOST_CAP,
)


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """
    Jaccard similarity of two collections treated as sets

    Items are trimmed and compared case-insensitively; blank items are ignored.
    Defined as 0.0 when the union is empty.
    """
    set_a = {str(x).strip().upper() for x in (a or [])} - {""}
    set_b = {str(x).strip().upper() for x in (b or [])} - {""}
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def get_initials(major: str) -> str:
    """
    Initialism of a major name

    Examples: "Computer Science" -> "CS", "Information Systems" -> "IS"
    """
    return "".join(word[0].upper() for word in major.strip().split())


def majors_match(major1: str, major2: str) -> bool:
    """
    Check if two majors match, either exactly or by initials

    Examples: "Computer Science" matches "CS", "IS" matches "Information Systems"
    """
    m1 = major1.strip().lower()
    m2 = major2.strip().lower()

    if m1 == m2:
        return True

    initials1 = get_initials(major1).lower()
    initials2 = get_initials(major2).lower()

    return initials1 == m2 or m1 == initials2 or initials1 == initials2


def _medium_values(mediums) -> list[str]:
    return [getattr(m, "value", m) for m in (mediums or [])]


class CompatibilityScorer:
    """
    Compute compatibility scores between two study buddy profiles

    Scoring components (weighted sum, no upper bound enforced):
    - Module overlap (Jaccard): x 4.0
    - Year of study match: x 1.0
    - Major match (exact or initials): x 1.0
    - Study medium overlap (Jaccard): x 1.5
    - Gender: 0 (neutral by default)
    - Description similarity (TF cosine): x 3.5
    - Study keyword boost: capped at 0.8
    """

    MODULES_WEIGHT = 4.0
    YEAR_WEIGHT = 1.0
    MAJOR_WEIGHT = 1.0
    MEDIUMS_WEIGHT = 1.5
    GENDER_WEIGHT = 0.0
    DESCRIPTION_WEIGHT = 3.5

    def __init__(self,
                 modules_weight: float = MODULES_WEIGHT,
                 year_weight: float = YEAR_WEIGHT,
                 major_weight: float = MAJOR_WEIGHT,
                 mediums_weight: float = MEDIUMS_WEIGHT,
                 description_weight: float = DESCRIPTION_WEIGHT,
                 keyword_cap: float = KEYWORD_BOOST_CAP):
        """
        Initialize compatibility scorer

        Args:
            modules_weight: Weight for module overlap (default 4.0)
            year_weight: Weight for same year of study (default 1.0)
            major_weight: Weight for matching majors (default 1.0)
            mediums_weight: Weight for study medium overlap (default 1.5)
            description_weight: Weight for description cosine similarity (default 3.5)
            keyword_cap: Maximum total study keyword boost (default 0.8)
        """
        weights = (modules_weight, year_weight, major_weight, mediums_weight, description_weight, keyword_cap)
        if any(w < 0 for w in weights):
            logger.warning(f"Negative weights {weights} clamped to 0")
            weights = tuple(max(w, 0.0) for w in weights)

        (self.modules_weight, self.year_weight, self.major_weight,
         self.mediums_weight, self.description_weight, self.keyword_cap) = weights

    def compute_year_match(self, me: Profile, other: Profile) -> float:
        if me.year_of_study and other.year_of_study and me.year_of_study == other.year_of_study:
            return 1.0
        return 0.0

    def compute_major_match(self, me: Profile, other: Profile) -> float:
        major_me = (me.major or "").strip()
        major_other = (other.major or "").strip()
        if major_me and major_other and majors_match(major_me, major_other):
            return 1.0
        return 0.0

    def compute_description_match(self, me: Profile, other: Profile) -> Tuple[float, float]:
        """
        Compute description similarity and study keyword boost

        Returns:
            Tuple of (cosine similarity [0-1], keyword boost [0-cap])
        """
        tokens_me = tokenize(me.description)
        tokens_other = tokenize(other.description)

        cosine = cosine_similarity(term_frequencies(tokens_me), term_frequencies(tokens_other))
        boost = keyword_boost(tokens_me, tokens_other, cap=self.keyword_cap)

        return cosine, boost

    def score_breakdown(self, me: Profile, other: Profile) -> Tuple[float, Dict[str, Any]]:
        """
        Compute overall compatibility score with per-component breakdown

        Args:
            me: Requesting user's profile
            other: Candidate profile

        Returns:
            Tuple of (overall_score >= 0, breakdown_dict)
        """
        modules_score = jaccard(me.modules, other.modules)
        year_score = self.compute_year_match(me, other)
        major_score = self.compute_major_match(me, other)
        mediums_score = jaccard(_medium_values(me.mediums), _medium_values(other.mediums))
        description_score, boost = self.compute_description_match(me, other)

        components = {
            "modules": {"score": modules_score, "weight": self.modules_weight},
            "year": {"score": year_score, "weight": self.year_weight},
            "major": {"score": major_score, "weight": self.major_weight},
            "mediums": {"score": mediums_score, "weight": self.mediums_weight},
            "gender": {"score": 0.0, "weight": self.GENDER_WEIGHT},
            "description": {"score": description_score, "weight": self.description_weight},
        }
        for component in components.values():
            component["weighted_score"] = component["score"] * component["weight"]

        components["keyword_boost"] = {"score": boost, "weight": 1.0, "weighted_score": boost}

        overall_score = sum(c["weighted_score"] for c in components.values())

        breakdown = {
            "overall_score": float(overall_score),
            "components": components,
        }

        return float(overall_score), breakdown

    def score(self, me: Profile, other: Profile) -> float:
        """Compute overall compatibility score"""
        overall_score, _ = self.score_breakdown(me, other)
        return overall_score
