"""Profile field validation and completeness checks"""

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from studybuddy.data.schema import Profile
from studybuddy.conversation.moderation import profile_moderator


VALID_MAJORS = frozenset({
    # Computing
    "artificial intelligence", "ai",
    "computer science", "cs",
    "information systems", "is",
    "information security", "infosec",
    "business analytics", "ba",
    "computer engineering", "ceg",
    "software engineering", "se",
    "data science analytics", "dsa",
    "cybersecurity",
    "machine learning", "ml",
    "robotics",

    # Engineering
    "engineering", "eng",
    "mechanical engineering", "me",
    "electrical engineering", "ee",
    "civil engineering", "civil",
    "chemical engineering", "che",
    "biomedical engineering", "bme",
    "aerospace engineering", "aero",
    "industrial systems engineering", "ise",
    "environmental engineering",
    "materials science and engineering", "mse",
    "engineering science", "engsci",

    # Business / Accountancy
    "business administration", "biz", "bba",
    "accountancy", "accounting", "acc",
    "finance",
    "marketing",
    "operations and supply chain management", "osc",
    "management", "mgmt",
    "entrepreneurship",
    "human resources", "hr",
    "real estate",
    "economics", "econs",

    # Science
    "mathematics", "math",
    "applied mathematics",
    "pure mathematics",
    "statistics", "stats",
    "physics",
    "chemistry",
    "biology",
    "life sciences", "lsm",
    "biochemistry",
    "environmental studies", "envs",
    "pharmaceutical science", "pharmsci",

    # Medicine and health
    "medicine", "mbbs",
    "nursing",
    "pharmacy",
    "dentistry",
    "public health",

    # Design & Architecture
    "architecture", "archi",
    "industrial design", "did",
    "urban planning",
    "project and facilities management", "pfm",

    # Arts & Social Sciences
    "psychology", "psych",
    "sociology",
    "political science", "polisci",
    "history",
    "literature", "english literature",
    "philosophy",
    "geography", "geo",
    "communications and new media", "cnm",
    "linguistics",
    "global studies",
    "southeast asian studies", "seas",
    "social work",

    # Law, Music, Education
    "law", "llb",
    "music",
    "education",

    # Cross-disciplinary
    "philosophy, politics and economics", "ppe",
    "interdisciplinary studies",
})

# CS2030S, ST2334, MA1101R, CS203, CS20
MODULE_CODE_PATTERN = re.compile(r"^[A-Z]{2,5}\d{2,4}[A-Z]?$")

MIN_DESCRIPTION_LENGTH = 10

REQUIRED_FIELDS = {
    "gender": "Gender",
    "year_of_study": "Year of Study",
    "major": "Major",
    "modules": "Modules",
}


@dataclass
class FieldCheck:
    """Outcome of validating one profile field"""
    is_valid: bool
    value: Any = None
    error: Optional[str] = None


@dataclass
class Completeness:
    missing_fields: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields


def check_profile_completeness(profile: Optional[Profile]) -> Completeness:
    """
    Check that the fields needed for matching are filled in

    Gender, year of study, major and at least one module are required;
    mediums and description are optional.
    """
    if profile is None:
        return Completeness(missing_fields=list(REQUIRED_FIELDS.values()))

    missing = []
    for attr, label in REQUIRED_FIELDS.items():
        value = getattr(profile, attr)
        if isinstance(value, str):
            value = value.strip()
        if not value:
            missing.append(label)
    return Completeness(missing_fields=missing)


def validate_major(major: str) -> FieldCheck:
    clean = (major or "").strip().lower()

    if not profile_moderator.check(clean).allowed:
        return FieldCheck(False, error="Please enter a real major name. Inappropriate content is not allowed.")

    if clean not in VALID_MAJORS:
        return FieldCheck(False, error="Please enter a real major name (e.g., Computer Science, Business, Engineering).")

    return FieldCheck(True, value=major.strip())


def validate_modules(modules: List[str]) -> FieldCheck:
    """
    Validate module codes

    Returns the upper-cased, de-duplicated codes on success. The first bad
    code rejects the whole list.
    """
    valid: List[str] = []
    for module in modules:
        clean = module.strip().upper()
        if not clean:
            continue

        if not profile_moderator.check(clean).allowed:
            return FieldCheck(False, error="Please enter real module codes. Inappropriate content is not allowed.")

        if not MODULE_CODE_PATTERN.match(clean):
            return FieldCheck(
                False,
                error=f'"{clean}" doesn\'t look like a real module code. Please use format like CS2030S, ST2334, MA1101R.',
            )

        if clean not in valid:
            valid.append(clean)

    if not valid:
        return FieldCheck(False, error="Please enter at least one module code.")

    return FieldCheck(True, value=valid)


def parse_modules(raw: str) -> List[str]:
    """Split free text like "CS2030S, ST2334 MA1101R" into module codes"""
    return [part for part in re.split(r"[,\s]+", raw or "") if part]


def validate_description(description: str) -> FieldCheck:
    clean = (description or "").strip()

    if not profile_moderator.check(clean).allowed:
        return FieldCheck(False, error="Please keep your description appropriate and study-related.")

    if len(clean) < MIN_DESCRIPTION_LENGTH:
        return FieldCheck(False, error=f"Please write at least {MIN_DESCRIPTION_LENGTH} characters describing your study style.")

    return FieldCheck(True, value=clean)
