"""
Pseudonymization service - deterministic, salted, one-way tokens.

The same normalized value always yields the same token for a given salt, so
calls from one caller can be linked without storing who they are. There is no
inverse: tokens are only ever compared for equality.
"""
import hashlib
import logging
import re
import uuid
from typing import Optional

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 8
FINGERPRINT_LENGTH = 16

# Debugging aid only - the prefix carries no information about the value
NAMESPACE_PREFIXES = {
    "phone": "PH",
    "email": "EM",
    "name": "NM",
}
DEFAULT_PREFIX = "TK"

TOKEN_PATTERN = re.compile(r"^(?:PH|EM|NM|TK)-[0-9a-f]{8}$")


def normalize_phone(value: str) -> str:
    """Strip formatting from a phone-like value, keeping digits only."""
    return re.sub(r"\D", "", value)


def normalize_text(value: str) -> str:
    """Trim, lowercase and collapse inner whitespace."""
    return re.sub(r"\s+", " ", value.strip().lower())


def normalize(value: Optional[str], namespace: str) -> str:
    if value is None:
        return ""
    value = str(value)
    if namespace == "phone":
        return normalize_phone(value)
    return normalize_text(value)


def is_token(value: Optional[str]) -> bool:
    """True when the value already is a pseudonymization token."""
    return bool(value) and bool(TOKEN_PATTERN.match(value))


class Pseudonymizer:
    """Salted SHA-256 tokenization. The salt is injected, never read from env here."""

    def __init__(self, salt: str):
        if not salt:
            raise ValueError("Pseudonymizer requires a non-empty salt")
        self._salt = salt

    def _digest(self, namespace: str, normalized: str) -> str:
        return hashlib.sha256(
            f"{self._salt}-{namespace}-{normalized}".encode("utf-8")
        ).hexdigest()

    def token(self, value: Optional[str], namespace: str) -> Optional[str]:
        """
        Tokenize a single identifying value.

        Args:
            value: Raw phone number, email, name, ...
            namespace: "phone", "email", "name" (others get the generic prefix)

        Returns:
            e.g. "PH-3f9a1c02", or None when the value is empty after normalization
        """
        normalized = normalize(value, namespace)
        if not normalized:
            return None
        prefix = NAMESPACE_PREFIXES.get(namespace, DEFAULT_PREFIX)
        return f"{prefix}-{self._digest(namespace, normalized)[:TOKEN_LENGTH]}"

    def fingerprint(
        self,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        name: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> str:
        """
        Cross-call identity fingerprint over phone, email and name.

        Each field is normalized on its own and empty fields are left out.
        When no field is present the result is a placeholder derived from the
        event-local nonce (the call id), so two unidentified callers never
        share a fingerprint.
        """
        parts = []
        for label, value, namespace in (
            ("phone", phone, "phone"),
            ("email", email, "email"),
            ("name", name, "name"),
        ):
            normalized = normalize(value, namespace)
            if normalized:
                parts.append(f"{label}:{normalized}")

        if not parts:
            local = nonce or uuid.uuid4().hex
            return f"anon-{self._digest('anon', local)[:FINGERPRINT_LENGTH]}"

        return self._digest("fingerprint", "|".join(parts))[:FINGERPRINT_LENGTH]
