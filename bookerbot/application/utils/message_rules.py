from __future__ import annotations

import re
from collections.abc import Iterable

OPT_OUT_KEYWORDS = (
    "stop",
    "unsubscribe",
    "remove me",
    "opt out",
    "opt-out",
    "dont contact",
    "don't contact",
    "leave me alone",
    "remove my number",
    "take me off",
    "no more messages",
    "stop texting",
    "stop messaging",
)

# carrier-standard keywords, only honoured as the whole message
OPT_OUT_EXACT = frozenset({"stopall", "cancel", "end", "quit"})

HUMAN_REQUEST_KEYWORDS = (
    "speak to someone",
    "talk to a person",
    "real person",
    "human",
    "representative",
    "manager",
    "call me",
    "agent",
    "support",
    "speak to a human",
    "talk to someone real",
)

# stems; matched as word prefixes so "booking", "scheduling", "slots" all count
BOOKING_KEYWORDS = (
    "book",
    "schedul",
    "appointment",
    "meeting",
    "availab",
    "calendar",
    "set up a call",
    "set up a time",
    "when can we",
    "lets meet",
    "let's meet",
    "free time",
    "slot",
)

RESCHEDULE_KEYWORDS = (
    "reschedul",
    "change the time",
    "change the meeting",
    "change the appointment",
    "change my appointment",
    "change my booking",
    "move the meeting",
    "move the appointment",
    "move my appointment",
    "move it to",
    "different time",
    "different day",
    "can we do",
    "switch to",
    "change to",
    "move to",
    "push back",
    "push it back",
    "postpone",
    "cancel and rebook",
)

POSITIVE_KEYWORDS = (
    "yes",
    "sure",
    "sounds good",
    "interested",
    "tell me more",
    "go ahead",
    "okay",
    "ok",
    "definitely",
    "absolutely",
    "perfect",
    "great",
)

NEGATIVE_KEYWORDS = (
    "no thanks",
    "not interested",
    "not for me",
    "pass",
    "maybe later",
    "not right now",
    "busy",
    "can't",
    "cannot",
    "nope",
)

GREETING_PREFIXES = ("hi", "hello", "hey", "good morning", "good afternoon", "good evening")

THANKS_KEYWORDS = ("thanks", "thank you", "appreciate", "cheers")

FRUSTRATION_KEYWORDS = ("frustrated", "angry", "ridiculous", "waste of time", "useless")

QUESTION_STARTERS = ("what", "how", "why", "when", "where", "who", "can you")

_DAY_WORDS = r"(?:mon|tue|tues|wed|weds|thu|thur|thurs|fri|sat|sun)(?:day)?"

TIME_SELECTION_PATTERNS = (
    re.compile(r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm)\b"),
    re.compile(r"\b(?:at|@)\s*\d{1,2}(?::\d{2})?\s*(?:am|pm)?\b"),
    re.compile(r"\bthe\s+\d{1,2}(?::\d{2})?\s*(?:am|pm)?\s*(?:works?|is good|sounds good|please|slot)?\b"),
    re.compile(r"\b(?:let'?s?\s+(?:do|go with)|i'?ll?\s+take|works?\s+for\s+me)\b"),
    re.compile(rf"\b{_DAY_WORDS}\s*(?:at|@)?\s*\d{{1,2}}\b"),
    re.compile(r"\b(?:tomorrow|today)\s+(?:at|@)?\s*\d{1,2}\b"),
    re.compile(r"\bi\s+(?:meant|mean|want|prefer|said)\s+\d{1,2}\b"),
)

AFFIRMATIVE_PATTERNS = (
    re.compile(r"^(?:yes|yeah|yep|yup|sure|ok|okay|sounds good|that works|perfect|great|fine|let'?s do it|book it|confirmed?)[.!]*$"),
    re.compile(r"^(?:yes|yeah|yep|yup|sure|ok|okay)\b(?!.*\b(?:but|if|unless|although|though|not)\b)"),
    re.compile(r"that\s*(?:works|sounds good|'?s good|'?s fine|'?s perfect)"),
    re.compile(r"^(?:sounds?|looks?)\s+(?:good|great|fine|perfect)"),
    re.compile(r"^(?:let'?s|i'?ll)\s+(?:do|take|book)\s+(?:it|that|this)"),
)

# "yes but...", "that works unless..." are conditional, not a confirmation
HEDGE_PATTERN = re.compile(r"\b(?:but|unless|although|though|except)\b")


def normalize_text(text: str) -> str:
    normalized = text.lower().replace("’", "'").replace("‘", "'")
    normalized = re.sub(r"\s+", " ", normalized).strip()
    return normalized


def contains_keyword(text: str, keywords: Iterable[str], prefix: bool = False) -> bool:
    """
    Match any keyword in already-normalized `text`.

    Keywords are whole words by default. With `prefix=True` a keyword only has
    to start a word, so stems like "schedul" cover "scheduled" and "scheduling".
    """
    return any(_keyword_pattern(keyword, prefix).search(text) for keyword in keywords)


def matches_any(text: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def is_opt_out(text: str) -> bool:
    normalized = normalize_text(text)
    if normalized.strip(" .!") in OPT_OUT_EXACT:
        return True
    return contains_keyword(normalized, OPT_OUT_KEYWORDS)


def is_affirmative(text: str) -> bool:
    normalized = normalize_text(text)
    if HEDGE_PATTERN.search(normalized):
        return False
    return matches_any(normalized, AFFIRMATIVE_PATTERNS)


def looks_like_question(text: str) -> bool:
    normalized = normalize_text(text)
    return "?" in normalized or normalized.startswith(QUESTION_STARTERS)


def is_greeting(text: str) -> bool:
    normalized = normalize_text(text)
    return len(normalized) < 20 and any(
        normalized == prefix or re.match(rf"{re.escape(prefix)}\b", normalized) for prefix in GREETING_PREFIXES
    )


_PATTERN_CACHE: dict[tuple[str, bool], re.Pattern[str]] = {}


def _keyword_pattern(keyword: str, prefix: bool = False) -> re.Pattern[str]:
    pattern = _PATTERN_CACHE.get((keyword, prefix))
    if pattern is None:
        tail = "" if prefix else "(?![a-z0-9])"
        pattern = re.compile(rf"(?<![a-z0-9]){re.escape(keyword)}{tail}")
        _PATTERN_CACHE[(keyword, prefix)] = pattern
    return pattern
