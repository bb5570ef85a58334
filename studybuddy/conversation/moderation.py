"""Content moderation rules for profile fields and chat messages"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence
from loguru import logger


class ModerationAction(str, Enum):
    """What to do with text that matches a rule"""
    ALLOW = "allow"
    WARN = "warn"  # deliver, but remind the sender
    BLOCK = "block"  # do not deliver


@dataclass(frozen=True)
class ModerationRule:
    """A single pattern -> action rule"""
    name: str
    pattern: re.Pattern
    action: ModerationAction
    message: str = ""

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


@dataclass(frozen=True)
class ModerationResult:
    action: ModerationAction
    rule: Optional[str] = None
    message: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.action != ModerationAction.BLOCK


ALLOWED = ModerationResult(action=ModerationAction.ALLOW)


def make_rule(name: str, regex: str, action: ModerationAction, message: str = "") -> ModerationRule:
    return ModerationRule(name=name, pattern=re.compile(regex, re.IGNORECASE), action=action, message=message)


class Moderator:
    """
    Ordered rule list, evaluated in sequence; the first matching rule wins

    Text that matches no rule is allowed.
    """

    def __init__(self, rules: Sequence[ModerationRule]):
        self.rules: List[ModerationRule] = list(rules)

    def check(self, text: str) -> ModerationResult:
        cleaned = (text or "").strip()
        for rule in self.rules:
            if rule.matches(cleaned):
                if rule.action != ModerationAction.ALLOW:
                    logger.info(f"Moderation rule '{rule.name}' matched ({rule.action.value})")
                return ModerationResult(action=rule.action, rule=rule.name, message=rule.message)
        return ALLOWED


# ============================================================================
# DEFAULT RULES
# ============================================================================

INAPPROPRIATE_MESSAGE = "Please keep things respectful and study-focused. Inappropriate content is not allowed."
HARASSMENT_MESSAGE = (
    "This message contains inappropriate content. Please keep conversations respectful "
    "and study-focused. End the chat if you want to stop chatting."
)
PERSONAL_QUESTION_MESSAGE = "Please keep conversations focused on studying. Avoid personal questions."

INAPPROPRIATE_RULES = [
    make_rule("profanity", r"\b(fuck\w*|fk|shit\w*|damn|bitch\w*|asshole\w*)\b", ModerationAction.BLOCK, INAPPROPRIATE_MESSAGE),
    make_rule("junk", r"\b(spam|scam|fake|asdf\w*|qwerty\w*)\b", ModerationAction.BLOCK, INAPPROPRIATE_MESSAGE),
    make_rule("sexual", r"\b(nudes?|sex\w*|porn\w*|xxx)\b", ModerationAction.BLOCK, INAPPROPRIATE_MESSAGE),
    make_rule("violence", r"\b(hate|kill|die|suicide)\b", ModerationAction.BLOCK, INAPPROPRIATE_MESSAGE),
    make_rule("sexual_zh", r"睡|约|上床", ModerationAction.BLOCK, INAPPROPRIATE_MESSAGE),
    make_rule("profanity_zh", r"操|吊|逼|屌", ModerationAction.BLOCK, INAPPROPRIATE_MESSAGE),
]

HARASSMENT_RULES = [
    make_rule("insult", r"\b(ugly|fat|stupid|idiot|loser|weirdo|creep|freak)\b", ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("dismissive", r"\b(shut ?up|go away|leave me alone|stop talking)\b", ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("advances", r"\b(sexy|hot|gorgeous|attractive|date me|go out with me|kiss|boobs|dick|pussy)\b",
              ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("photo_request", r"\b(send me (your|a) (photo|pic)|show me your face)\b", ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("contact_details", r"\b(what'?s your number|give me your number|phone number|where do you live|what'?s your address)\b",
              ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("identity", r"\b(what'?s your real name|tell me your name|full name)\b", ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("social_media", r"\b(instagram|facebook|snapchat|tiktok|follow me)\b", ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("meetup", r"\b(meet me|come over|visit me)\b", ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("aggression", r"\b(fuck (you|off)|piss off|get lost|screw you|i hate you|you suck|you'?re worthless)\b",
              ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("threat", r"\b(threat(en)?|hurt you|kill you|beat you)\b", ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("money", r"\b(send me money|give me money|pay me|buy me)\b", ModerationAction.BLOCK, HARASSMENT_MESSAGE),
    make_rule("dishonesty", r"\b(do my homework|help me cheat|copy your work|sleep with)\b", ModerationAction.BLOCK, HARASSMENT_MESSAGE),
]

PERSONAL_QUESTION_RULES = [
    make_rule("personal_info", r"\b(personal question|private question|personal info)\b", ModerationAction.WARN, PERSONAL_QUESTION_MESSAGE),
    make_rule("appearance", r"\b(what do you look like|describe yourself|appearance)\b", ModerationAction.WARN, PERSONAL_QUESTION_MESSAGE),
    make_rule("relationship", r"\b(are you single|do you have a (boy|girl)friend|relationship status)\b",
              ModerationAction.WARN, PERSONAL_QUESTION_MESSAGE),
    make_rule("age", r"\b(how old are you|birthday|birth date)\b", ModerationAction.WARN, PERSONAL_QUESTION_MESSAGE),
]

# Harassment first, then softer warnings, then general inappropriate content
CHAT_RULES = HARASSMENT_RULES + PERSONAL_QUESTION_RULES + INAPPROPRIATE_RULES
PROFILE_RULES = INAPPROPRIATE_RULES

chat_moderator = Moderator(CHAT_RULES)
profile_moderator = Moderator(PROFILE_RULES)
