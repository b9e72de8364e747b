"""Keyword and pattern screening of prompts before generation."""

import re
from dataclasses import dataclass, field

from knowledge_search.config import settings

MAX_PROMPT_LENGTH = 2000
SAFE_CONFIDENCE = 0.5

SUSPICIOUS_PATTERNS = [
    re.compile(r"\b(kill|murder|death|violence)\b", re.IGNORECASE),
    re.compile(r"\b(nude|naked|sexual|explicit)\b", re.IGNORECASE),
    re.compile(r"\b(drug|cocaine|heroin|marijuana)\b", re.IGNORECASE),
    re.compile(r"\b(hate|racist|nazi|terrorist)\b", re.IGNORECASE),
]

REPLACEMENTS = {
    "violence": "action",
    "weapon": "tool",
    "drug": "medicine",
    "hate": "dislike",
    "explicit": "detailed",
    "nude": "unclothed",
    "sexual": "romantic",
    "inappropriate": "unusual",
    "offensive": "strong",
}


@dataclass
class ContentSafetyResult:
    safe: bool
    confidence: float
    flags: list[str] = field(default_factory=list)
    filtered_content: str | None = None


class ContentSafetyChecker:
    """Flags prompts containing blocked keywords or suspicious phrases.

    Each kind of flag caps the confidence: blocked keywords at 0.3, suspicious
    patterns at 0.2, excessive length at 0.7. A prompt is safe when it has no
    flags or the confidence stays above 0.5.
    """

    def __init__(self, blocked_keywords: list[str] | None = None):
        if blocked_keywords is None:
            blocked_keywords = settings.blocked_keyword_list
        self.blocked_keywords = [k.lower() for k in blocked_keywords]

    def check(self, prompt: str) -> ContentSafetyResult:
        lowered = prompt.lower()
        flags: list[str] = []
        confidence = 1.0

        for keyword in self.blocked_keywords:
            if keyword in lowered:
                flags.append(f"blocked_keyword:{keyword}")
                confidence = min(confidence, 0.3)

        for pattern in SUSPICIOUS_PATTERNS:
            if pattern.search(prompt):
                flags.append(f"suspicious_pattern:{pattern.pattern}")
                confidence = min(confidence, 0.2)

        if len(prompt) > MAX_PROMPT_LENGTH:
            flags.append("excessive_length")
            confidence = min(confidence, 0.7)

        safe = not flags or confidence > SAFE_CONFIDENCE
        return ContentSafetyResult(
            safe=safe,
            confidence=confidence,
            flags=flags,
            filtered_content=prompt if safe else self.filter_prompt(prompt),
        )

    @staticmethod
    def filter_prompt(prompt: str) -> str:
        """Replace blocked words with neutral substitutes."""
        filtered = prompt
        for blocked, replacement in REPLACEMENTS.items():
            filtered = re.sub(rf"\b{blocked}\b", replacement, filtered, flags=re.IGNORECASE)
        return filtered
