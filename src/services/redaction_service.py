"""
PII redaction service - removes regulated identifiers from free text.

Redaction is an ordered list of (category, pattern, marker) rules. Order is
part of the configuration: categories overlap in character class, so the
formatted and keyword-anchored patterns run before the bare digit runs.

After the fixed categories, names from an explicit allow-list (caller name,
business name, ...) are replaced with deterministic name tokens. There is no
general name detection - everything not on the list stays readable.

Markers and tokens are never rewritten, so redact(redact(x)) == redact(x).
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from src.services.pseudonymization_service import Pseudonymizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedactionRule:
    category: str
    pattern: re.Pattern
    marker: str


_MONTHS = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|"
    r"Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)

# NANP-style number with optional country code: +1 (555) 123-4567, 555.123.4567
_PHONE_BODY = r"(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}"

# "number", "no.", "#", "is" between a keyword and the value it labels
_KEYED = r"(?:\s*(?:number|no\.?|#))?(?:\s+(?:is|was))?\s*[:#]?\s*#?\s*"

_STREET_SUFFIXES = (
    r"(?:Street|St|Avenue|Ave|Road|Rd|Drive|Dr|Lane|Ln|Boulevard|Blvd|"
    r"Court|Ct|Circle|Cir|Way|Place|Pl|Parkway|Pkwy|Terrace|Ter)"
)


def _rule(category: str, pattern: str, marker: str, flags: int = 0) -> RedactionRule:
    return RedactionRule(category, re.compile(pattern, flags), marker)


REDACTION_RULES: tuple[RedactionRule, ...] = (
    # Contains digits and dots that the numeric rules would otherwise split up
    _rule("email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "[EMAIL]"),
    _rule("url", r"\bhttps?://[^\s]+", "[URL]", re.IGNORECASE),
    _rule("url", r"\bwww\.[^\s]+", "[URL]", re.IGNORECASE),
    _rule("ip", r"\b(?:\d{1,3}\.){3}\d{1,3}\b", "[IP]"),
    # Fax before phone, otherwise the number is gone before "fax" is seen
    _rule("fax", r"\bfax" + _KEYED + _PHONE_BODY + r"\b", "[FAX]", re.IGNORECASE),
    _rule("phone", r"(?<![\w+])" + _PHONE_BODY + r"\b", "[PHONE]"),
    _rule("ssn", r"\b\d{3}-\d{2}-\d{4}\b", "[SSN]"),
    _rule("date", r"\b" + _MONTHS + r"\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}\b", "[DATE]", re.IGNORECASE),
    _rule("date", r"\b\d{1,2}(?:st|nd|rd|th)?\s+(?:of\s+)?" + _MONTHS + r"\.?,?\s+\d{4}\b", "[DATE]", re.IGNORECASE),
    _rule("date", r"\b\d{4}[/-]\d{1,2}[/-]\d{1,2}\b", "[DATE]"),
    _rule("date", r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b", "[DATE]"),
    _rule("age", r"\b(?:9\d|[1-9]\d{2,})\s*-?\s*(?:years?(?:\s*-?\s*old)?|yrs?\.?|y/o)(?!\w)", "[AGE]", re.IGNORECASE),
    _rule("mrn", r"\b(?:MRN|MR|medical\s+record|record)" + _KEYED + r"\d{3,}\b", "[MRN]", re.IGNORECASE),
    _rule("account", r"\b(?:account|acct)" + _KEYED + r"\d{4,}\b", "[ACCOUNT]", re.IGNORECASE),
    _rule("license", r"\b(?:license|licence|cert|certificate)" + _KEYED + r"(?=[A-Z0-9]*\d)[A-Z0-9]{4,}\b", "[LICENSE]", re.IGNORECASE),
    # Speech-to-text output is often all lowercase
    _rule("address", r"\b\d+\s+[a-z]+(?:\s+[a-z]+)*\s+" + _STREET_SUFFIXES + r"\b\.?", "[ADDRESS]", re.IGNORECASE),
    # Bare digit runs last
    _rule("phone", r"\b\d{10,}\b", "[PHONE]"),
    _rule("ssn", r"\b\d{9}\b", "[SSN]"),
    _rule("zip", r"\b\d{5}(?:-\d{4})?\b", "[ZIP]"),
)

# Already-redacted spans: category markers and pseudonymization tokens
PROTECTED_SPAN = re.compile(r"(\[[A-Z][A-Z ]*\]|\b(?:PH|EM|NM|TK)-[0-9a-f]{8}\b)")


def _outside_protected(text: str, transform: Callable[[str], str]) -> str:
    """Apply transform to every part of text that is not a marker or token."""
    parts = PROTECTED_SPAN.split(text)
    # split() with a capturing group puts protected spans at odd indexes
    for i in range(0, len(parts), 2):
        if parts[i]:
            parts[i] = transform(parts[i])
    return "".join(parts)


def name_pattern(name: str) -> re.Pattern:
    """Whole-word, case-insensitive pattern for a literal name."""
    return re.compile(r"(?<!\w)" + re.escape(name) + r"(?!\w)", re.IGNORECASE)


class PiiRedactor:
    """Applies REDACTION_RULES in order, then allow-list name tokenization."""

    def __init__(
        self,
        pseudonymizer: Pseudonymizer,
        rules: Iterable[RedactionRule] = REDACTION_RULES,
    ):
        self.pseudonymizer = pseudonymizer
        self.rules = tuple(rules)

    def _apply_rules(self, text: str) -> str:
        for rule in self.rules:
            text = rule.pattern.sub(rule.marker, text)
        return text

    def redact_categories(self, text: str) -> str:
        return _outside_protected(text, self._apply_rules)

    def anonymize_names(self, text: str, known_names: Optional[Iterable[str]]) -> str:
        """Replace each allow-listed name with its name token."""
        if not known_names:
            return text

        names = {name.strip() for name in known_names if isinstance(name, str) and name.strip()}
        token_cache: dict[str, str] = {}
        # Longest first so "Jane Doe" becomes one token instead of "Jane" + "Doe"
        for name in sorted(names, key=lambda n: (-len(n), n.lower())):
            key = name.lower()
            if key not in token_cache:
                token_cache[key] = self.pseudonymizer.token(name, "name") or "[NAME]"
            pattern = name_pattern(name)
            token = token_cache[key]
            text = _outside_protected(text, lambda part: pattern.sub(token, part))
        return text

    def redact(self, text: Optional[str], known_names: Optional[Iterable[str]] = None) -> Optional[str]:
        """
        De-identify free text.

        Args:
            text: Transcript, summary or any other free text (None passes through)
            known_names: Names to replace with tokens; nothing else is treated as a name

        Returns:
            The redacted text
        """
        if not text:
            return text
        redacted = self.redact_categories(text)
        return self.anonymize_names(redacted, known_names)
