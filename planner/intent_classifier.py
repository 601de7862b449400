"""
Planner Intent Classifier - Classify a user reply without an LLM on the critical path.

Pure keyword/regex classification of one utterance into:
  affirmative | negative | help_request | generate_command | ambiguous

Negation beats affirmation: "yes, but wait" is a refusal. Change requests
("make it cheaper") are never commands. Polite idioms
("no problem", "no worries") are not negations.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

logger = logging.getLogger("planner.intent")


class Intent(str, Enum):
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    HELP_REQUEST = "help_request"
    GENERATE_COMMAND = "generate_command"
    AMBIGUOUS = "ambiguous"


@dataclass
class IntentResult:
    """Result of classifying one utterance."""
    intent: Intent
    normalized: str
    signals: Dict[str, bool] = field(default_factory=dict)

    @property
    def is_generate_command(self) -> bool:
        return self.intent in (Intent.AFFIRMATIVE, Intent.GENERATE_COMMAND)


# Contractions collapse to one token so word boundaries stay stable
CONTRACTIONS = [
    (r"\blet'?s\b", "lets"),
    (r"\bthat'?s\b", "thats"),
    (r"\bit'?s\b", "its"),
    (r"\bdon'?t\b", "dont"),
    (r"\bi'?m\b", "im"),
]

INTENT_PATTERNS: Dict[str, List[str]] = {
    "polite_negative": [
        r"\bno (problem|problems|worries|worry|issue|issues|concern|concerns)\b",
    ],
    "negative": [
        r"\b(no|nope|not|dont|stop|wait|hold|never|cancel|abort)\b",
    ],
    "affirmative": [
        r"\b(yes|yeah|yep|sure|ok|okay|perfect|great|good|fine|alright|absolutely|definitely)\b",
        r"\b(sounds? good|looks good|that works|thats works|lets do|lets go|go ahead|proceed|im comfortable)\b",
    ],
    "generate_command": [
        r"\b(generate|create|make)\b.*\b(plan|activity|it)\b",
    ],
    "revision": [
        r"\b(generate|create|make)\b.*\b(plan|activity|it)\b (a )?(bit |little |lot )?"
        r"(cheaper|smaller|bigger|larger|shorter|longer|simpler|easier|faster|earlier|later|different|more|less|fewer)\b",
        r"\b(add|remove|drop|change|replace|swap|move|instead)\b",
    ],
    "help_request": [
        r"what.*do(es)?.*it.*do",
        r"\bhow\b.*\bwork",
        r"difference.*\b(quick|smart)\b",
        r"what.*is.*\bsmart\b.*plan",
        r"what.*is.*\bquick\b.*plan",
        r"explain.*mode",
        r"help.*understand",
    ],
    "replay_request": [
        r"\b(show|see|view|display|repeat|recap)\b.*\b(plan|overview|summary|it|that)\b.*\b(again|once more)\b",
        r"^(can you |could you |can i |please )?(show|see|view|display)( me)? (the|my) (plan|overview|summary)( please)?$",
        r"\bwhat was the plan\b",
    ],
}

CONFIRMATION_PROMPT_PATTERNS = [
    r"are you comfortable",
    r"does this work",
    r"is this okay",
    r"sounds? good\?",
    r"sound good",
    r"ready to (proceed|generate|create)",
]

_COMPILED = {
    name: [re.compile(p, re.IGNORECASE) for p in patterns]
    for name, patterns in INTENT_PATTERNS.items()
}
_CONFIRMATION_PROMPTS = [re.compile(p, re.IGNORECASE) for p in CONFIRMATION_PROMPT_PATTERNS]


def normalize(utterance: str) -> str:
    """Lowercase, collapse contractions, strip punctuation, collapse whitespace."""
    text = (utterance or "").lower().strip()
    text = text.replace("’", "'")
    for pattern, replacement in CONTRACTIONS:
        text = re.sub(pattern, replacement, text)
    text = re.sub(r"[!?.,:;]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def _matches(name: str, text: str) -> bool:
    return any(p.search(text) for p in _COMPILED[name])


def _has_negation(text: str) -> bool:
    # Polite idioms are removed first so their "no" never counts as refusal
    stripped = text
    for pattern in _COMPILED["polite_negative"]:
        stripped = pattern.sub(" ", stripped)
    return _matches("negative", stripped)


def classify(utterance: str, has_pending_plan: bool) -> IntentResult:
    """
    Classify an utterance. Deterministic and side-effect free.

    Args:
        utterance: Raw user message
        has_pending_plan: Whether a candidate plan is awaiting confirmation

    Returns: IntentResult with the resolved intent and the raw signals
    """
    text = normalize(utterance)
    signals = {
        "help_request": _matches("help_request", (utterance or "").lower()),
        "negative": _has_negation(text),
        "affirmative": _matches("affirmative", text),
        "generate_command": _matches("generate_command", text),
        "revision": _matches("revision", text),
    }

    if not text:
        intent = Intent.AMBIGUOUS
    elif signals["help_request"]:
        intent = Intent.HELP_REQUEST
    elif signals["negative"]:
        intent = Intent.NEGATIVE
    elif signals["revision"]:
        # "make it cheaper" edits the plan, even after an "ok"
        intent = Intent.AMBIGUOUS
    elif signals["generate_command"]:
        intent = Intent.GENERATE_COMMAND
    elif signals["affirmative"]:
        # A bare "yes" means nothing without a plan to say yes to
        intent = Intent.AFFIRMATIVE if has_pending_plan else Intent.AMBIGUOUS
    else:
        intent = Intent.AMBIGUOUS

    logger.debug(f"classify({text!r}, pending={has_pending_plan}) -> {intent.value} {signals}")
    return IntentResult(intent=intent, normalized=text, signals=signals)


def is_replay_request(utterance: str) -> bool:
    """True when the user asks to see the current plan again."""
    return _matches("replay_request", normalize(utterance))


def already_asks_for_confirmation(message: str) -> bool:
    """True when an assistant message already ends in a confirmation question."""
    text = (message or "").lower()
    return any(p.search(text) for p in _CONFIRMATION_PROMPTS)
