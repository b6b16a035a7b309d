"""Tests for the shared input validators."""

from __future__ import annotations

import pytest

from journeyflow.errors import ValidationError
from journeyflow.validation import validate_email, validate_variable_key


class TestValidateEmail:
    @pytest.mark.parametrize(
        "email",
        [
            "alice@example.com",
            "bob.jones@clinic.co.uk",
            "jane+tag@gmail.com",
            "user@sub.domain.org",
            "UPPER@CASE.COM",
            "digits123@test456.io",
        ],
    )
    def test_accepts_valid_emails(self, email: str):
        assert validate_email(email) == email

    def test_strips_surrounding_whitespace(self):
        assert validate_email("  alice@example.com \n") == "alice@example.com"

    @pytest.mark.parametrize(
        "email",
        [
            "not-an-email",
            "missing@",
            "@no-local.com",
            "spaces in@email.com",
            "double@@at.com",
            "no-tld@localhost",
            "user@.leading-dot.com",
        ],
    )
    def test_rejects_invalid_emails(self, email: str):
        with pytest.raises(ValidationError, match="does not look like a valid email"):
            validate_email(email)

    @pytest.mark.parametrize("email", ["", "   "])
    def test_rejects_blank(self, email: str):
        with pytest.raises(ValidationError, match="email address is required"):
            validate_email(email)


class TestValidateVariableKey:
    @pytest.mark.parametrize("key", ["brand", "Company_Name", "x1", "_private"])
    def test_accepts_word_keys(self, key: str):
        assert validate_variable_key(f" {key} ") == key

    @pytest.mark.parametrize("key", ["", "has space", "dash-key", "@brand", "café"])
    def test_rejects_other_keys(self, key: str):
        with pytest.raises(ValidationError):
            validate_variable_key(key)
