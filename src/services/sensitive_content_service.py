"""
Sensitive-content detection for call transcripts and summaries.

Two disjoint phrase groups are scanned:
- self_harm: suicidal ideation and self-injury
- crisis: abuse, psychiatric emergency, substance dependency

Each text field gets two renditions. `sanitized` (operator record) only swaps
the matched spans for a marker. `training` (de-identified twin) additionally
goes through PII redaction and first-person pronoun masking, because these
narratives stay identifying even after standard redaction.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from src.services.redaction_service import PiiRedactor

logger = logging.getLogger(__name__)

SENSITIVE_MARKER = "[SENSITIVE CONTENT]"
PRONOUN_MARKER = "[PERSON]"

SELF_HARM = "self_harm"
CRISIS = "crisis"

# ── PHRASE DICTIONARIES ──────────────────────────────────────
# Keys become category labels. Keep the groups disjoint.

SENSITIVE_PHRASES: dict[str, list[str]] = {
    SELF_HARM: [
        r"kill(?:ing)?\s+myself",
        r"end(?:ing)?\s+(?:my|it)\s+(?:own\s+)?life",
        r"end(?:ing)?\s+it\s+all",
        r"take\s+my\s+own\s+life",
        r"suicid(?:e|al)",
        r"(?:want|wanted|wanting)\s+to\s+die",
        r"better\s+off\s+dead",
        r"no\s+reason\s+to\s+live",
        r"(?:hurt|hurting|harm|harming|cut|cutting)\s+myself",
        r"self[-\s]?harm(?:ing)?",
        r"don'?t\s+want\s+to\s+(?:be\s+alive|live\s+anymore|wake\s+up)",
    ],
    CRISIS: [
        # abuse
        r"domestic\s+violence",
        r"(?:physically|sexually|emotionally)\s+abused",
        r"abus(?:ed|ing|ive)\s+(?:me|partner|relationship|husband|wife|boyfriend|girlfriend)",
        r"(?:he|she|they)\s+(?:hit|hits|beat|beats|hurt|hurts|choked|chokes)\s+me",
        r"sexual(?:ly)?\s+assault(?:ed)?",
        r"rap(?:e|ed)\b",
        # psychiatric emergency
        r"hearing\s+voices",
        r"psychotic(?:\s+episode)?",
        r"(?:mental|nervous)\s+breakdown",
        r"psychiatric\s+emergency",
        r"manic\s+episode",
        r"panic\s+attacks?",
        # substance dependency
        r"overdos(?:e|ed|ing)",
        r"addict(?:ed|ion)?",
        r"relaps(?:e|ed|ing)",
        r"going\s+through\s+withdrawals?",
        r"withdrawal\s+symptoms",
        r"alcoholic",
        r"substance\s+(?:abuse|use\s+disorder)",
    ],
}


def _compile_group(phrases: Iterable[str]) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(phrases) + r")\b", re.IGNORECASE)


CATEGORY_PATTERNS: dict[str, re.Pattern] = {
    category: _compile_group(phrases) for category, phrases in SENSITIVE_PHRASES.items()
}

_ANY_SENSITIVE = _compile_group(
    phrase for phrases in SENSITIVE_PHRASES.values() for phrase in phrases
)

FIRST_PERSON = re.compile(
    r"\b(?:I(?:'m|'ve|'ll|'d)?|me|my|mine|myself)\b",
    re.IGNORECASE,
)


def mask_pronouns(text: Optional[str]) -> Optional[str]:
    """Replace first-person pronouns with the person marker."""
    if not text:
        return text
    return FIRST_PERSON.sub(PRONOUN_MARKER, text)


@dataclass
class SensitivityAssessment:
    """Outcome for one text field. Transient - informs both record variants."""
    categories: set[str] = field(default_factory=set)
    sanitized_text: Optional[str] = None
    training_text: Optional[str] = None

    @property
    def is_sensitive(self) -> bool:
        return bool(self.categories)


class SensitiveContentDetector:
    """Classifies free text into crisis / self-harm categories."""

    def __init__(self, redactor: PiiRedactor):
        self.redactor = redactor

    def categorize(self, text: Optional[str]) -> set[str]:
        if not text:
            return set()
        return {
            category
            for category, pattern in CATEGORY_PATTERNS.items()
            if pattern.search(text)
        }

    def sanitize(self, text: Optional[str]) -> Optional[str]:
        """Operator rendition: matched spans replaced by the sensitive marker."""
        if not text:
            return text
        return _ANY_SENSITIVE.sub(SENSITIVE_MARKER, text)

    def assess(self, text: Optional[str], known_names: Optional[Iterable[str]] = None) -> SensitivityAssessment:
        """
        Assess one text field.

        Args:
            text: Transcript or summary (None yields an empty assessment)
            known_names: Allow-listed names for the training rendition

        Returns:
            SensitivityAssessment; training_text equals the input when nothing matched
        """
        categories = self.categorize(text)
        if not categories:
            return SensitivityAssessment(set(), text, text)

        sanitized = self.sanitize(text)
        training = mask_pronouns(self.redactor.redact(sanitized, known_names))

        logger.info(f"Sensitive content detected: categories={sorted(categories)}")
        return SensitivityAssessment(categories, sanitized, training)
