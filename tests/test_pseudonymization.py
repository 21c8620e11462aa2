"""
Tests for the pseudonymization engine.

Run with: pytest tests/test_pseudonymization.py -v
"""
import hashlib
import re

import pytest

from src.services.pseudonymization_service import Pseudonymizer, is_token, normalize

from tests.conftest import TEST_SALT


class TestTokens:
    """Deterministic, namespaced, salted tokens."""

    def test_token_matches_salted_sha256(self, pseudonymizer: Pseudonymizer):
        expected = hashlib.sha256(f"{TEST_SALT}-phone-15558675309".encode()).hexdigest()[:8]
        assert pseudonymizer.token("+1 (555) 867-5309", "phone") == f"PH-{expected}"

    def test_phone_formatting_does_not_matter(self, pseudonymizer: Pseudonymizer):
        assert pseudonymizer.token("+1 (555) 867-5309", "phone") == pseudonymizer.token("15558675309", "phone")

    def test_name_normalization(self, pseudonymizer: Pseudonymizer):
        assert pseudonymizer.token("  Jane   DOE ", "name") == pseudonymizer.token("jane doe", "name")

    def test_prefixes(self, pseudonymizer: Pseudonymizer):
        assert re.match(r"^PH-[0-9a-f]{8}$", pseudonymizer.token("5558675309", "phone"))
        assert re.match(r"^EM-[0-9a-f]{8}$", pseudonymizer.token("jane@example.com", "email"))
        assert re.match(r"^NM-[0-9a-f]{8}$", pseudonymizer.token("Jane", "name"))
        assert re.match(r"^TK-[0-9a-f]{8}$", pseudonymizer.token("sip:desk@clinic.com", "sip"))

    def test_namespaces_do_not_collide(self, pseudonymizer: Pseudonymizer):
        name = pseudonymizer.token("jane", "name")
        email = pseudonymizer.token("jane", "email")
        assert name[3:] != email[3:]

    def test_salt_changes_tokens(self, pseudonymizer: Pseudonymizer):
        other = Pseudonymizer("another-salt")
        assert other.token("Jane Doe", "name") != pseudonymizer.token("Jane Doe", "name")

    @pytest.mark.parametrize("value,namespace", [
        (None, "phone"),
        ("", "email"),
        ("   ", "name"),
        ("--- ()", "phone"),
    ])
    def test_empty_values_have_no_token(self, pseudonymizer: Pseudonymizer, value, namespace):
        assert pseudonymizer.token(value, namespace) is None

    def test_empty_salt_is_rejected(self):
        with pytest.raises(ValueError):
            Pseudonymizer("")

    def test_is_token(self, pseudonymizer: Pseudonymizer):
        assert is_token(pseudonymizer.token("Jane", "name"))
        assert not is_token("Jane")
        assert not is_token(None)
        assert not is_token("PH-XYZ")

    def test_normalize(self):
        assert normalize("(555) 867-5309", "phone") == "5558675309"
        assert normalize(" Jane\t Doe ", "name") == "jane doe"
        assert normalize(None, "email") == ""


class TestFingerprint:
    """Cross-call identity fingerprint."""

    def test_stable_across_formatting(self, pseudonymizer: Pseudonymizer):
        first = pseudonymizer.fingerprint(phone="+1 555 867 5309", name="Jane Doe")
        second = pseudonymizer.fingerprint(phone="15558675309", name="  jane doe")
        assert first == second
        assert re.match(r"^[0-9a-f]{16}$", first)

    def test_extra_identifier_changes_fingerprint(self, pseudonymizer: Pseudonymizer):
        phone_only = pseudonymizer.fingerprint(phone="5558675309")
        with_email = pseudonymizer.fingerprint(phone="5558675309", email="jane@example.com")
        assert phone_only != with_email

    def test_field_position_matters(self, pseudonymizer: Pseudonymizer):
        assert pseudonymizer.fingerprint(email="jane") != pseudonymizer.fingerprint(name="jane")

    def test_no_identifiers_uses_nonce(self, pseudonymizer: Pseudonymizer):
        first = pseudonymizer.fingerprint(nonce="call-1")
        assert first.startswith("anon-")
        assert first == pseudonymizer.fingerprint(nonce="call-1"), "Same call must keep its placeholder"
        assert first != pseudonymizer.fingerprint(nonce="call-2"), "Unidentified callers must not share one"

    def test_no_identifiers_without_nonce_is_unique(self, pseudonymizer: Pseudonymizer):
        assert pseudonymizer.fingerprint() != pseudonymizer.fingerprint()
