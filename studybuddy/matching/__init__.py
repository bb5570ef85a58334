"""Matching engine modules"""

from studybuddy.matching.compatibility_scorer import CompatibilityScorer, jaccard, majors_match, get_initials
from studybuddy.matching.matching_engine import MatchingEngine

__all__ = ["CompatibilityScorer", "MatchingEngine", "jaccard", "majors_match", "get_initials"]
