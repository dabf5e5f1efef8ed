"""
Tests for bearer tokens.
"""

import time

import pytest

from sitedeploy.core.services.auth import (
    InvalidCredentials,
    MissingCredentials,
    issue_token,
    token_from_header,
    verify_token,
)


class TestTokens:
    def test_round_trip(self):
        token = issue_token("s3cret", "user-1", "u@example.test")
        identity = verify_token("s3cret", token)
        assert identity.owner_id == "user-1"
        assert identity.email == "u@example.test"

    def test_empty_token_is_missing(self):
        with pytest.raises(MissingCredentials) as exc:
            verify_token("s3cret", "")
        assert exc.value.http_status == 401

    def test_wrong_secret_is_invalid(self):
        token = issue_token("s3cret", "user-1")
        with pytest.raises(InvalidCredentials) as exc:
            verify_token("other", token)
        assert exc.value.http_status == 403

    def test_tampered_token(self):
        token = issue_token("s3cret", "user-1")
        with pytest.raises(InvalidCredentials):
            verify_token("s3cret", token + "x")

    def test_expired_token(self):
        token = issue_token("s3cret", "user-1")
        time.sleep(1.1)
        with pytest.raises(InvalidCredentials, match="expired"):
            verify_token("s3cret", token, max_age=0)

    def test_owner_required(self):
        with pytest.raises(ValueError):
            issue_token("s3cret", "")


class TestHeader:
    def test_bearer(self):
        assert token_from_header("Bearer abc.def") == "abc.def"

    def test_case_insensitive_scheme(self):
        assert token_from_header("bearer abc") == "abc"

    def test_other_scheme(self):
        assert token_from_header("Basic abc") == ""

    def test_missing(self):
        assert token_from_header(None) == ""
        assert token_from_header("") == ""
