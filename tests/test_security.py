"""
Tests for Security Utilities
=============================

Tests for:
- SecureString masking and comparison
- mask_sensitive for user names and keys
- sanitize_for_logging of provider settings
"""

import pytest

from app_runner.utils.security import SecureString, mask_sensitive, sanitize_for_logging


class TestSecureString:
    def test_str_masked(self):
        s = SecureString("oauth-2f9c1d")
        assert "oauth-2f9c1d" not in str(s)
        assert str(s) == "********"

    def test_repr_masked(self):
        assert "oauth-2f9c1d" not in repr(SecureString("oauth-2f9c1d"))

    def test_get_secret(self):
        assert SecureString("secret").get_secret() == "secret"

    def test_len_and_bool(self):
        assert len(SecureString("abcde")) == 5
        assert SecureString("x")
        assert not SecureString("")

    def test_equality(self):
        assert SecureString("hello") == SecureString("hello")
        assert SecureString("hello") != SecureString("world")
        assert SecureString("test") == "test"
        assert SecureString("test") != 42

    def test_hash_consistent(self):
        assert hash(SecureString("hello")) == hash(SecureString("hello"))

    def test_type_error(self):
        with pytest.raises(TypeError):
            SecureString(12345)


class TestMaskSensitive:
    def test_basic(self):
        assert mask_sensitive("key-123456") == "key********"

    def test_email(self):
        assert mask_sensitive("ci-bot@example.com") == "ci-***@example.com"

    def test_email_short_local(self):
        assert mask_sensitive("ab@example.com") == "a***@example.com"

    def test_short_string(self):
        assert mask_sensitive("ab") == "**"

    def test_empty(self):
        assert mask_sensitive("") == ""

    def test_custom_visible_chars(self):
        assert mask_sensitive("password123", visible_chars=5) == "passw********"


class TestSanitizeForLogging:
    def test_masks_access_key(self):
        result = sanitize_for_logging({"sauce_username": "ci-bot", "sauce_access_key": "abc-123-xyz"})
        assert result["sauce_username"] == "ci-bot"
        assert "abc-123-xyz" not in result["sauce_access_key"]

    def test_non_string_secret(self):
        assert sanitize_for_logging({"auth": 1234}) == {"auth": "********"}

    def test_nested(self):
        result = sanitize_for_logging({"saucelabs": {"sauce_access_key": "abc-123-xyz"}, "run_timeout": 30})
        assert "abc-123-xyz" not in str(result)
        assert result["run_timeout"] == 30

    def test_secure_string_values(self):
        result = sanitize_for_logging({"token": SecureString("mytoken"), "name": SecureString("alice")})
        assert result == {"token": "*******", "name": "*****"}
