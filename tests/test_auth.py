"""Tests for JWT issuing and verification."""

import jwt
import pytest

from shortener.auth import ALGORITHM, USER_ID_CLAIM, TokenManager

SECRET = "unit-test-secret-that-is-long-enough"


@pytest.fixture
def tokens() -> TokenManager:
    return TokenManager(SECRET)


def test_issue_generates_user_id(tokens: TokenManager) -> None:
    token, user_id = tokens.issue()
    assert user_id
    assert jwt.decode(token, SECRET, algorithms=[ALGORITHM]) == {USER_ID_CLAIM: user_id}


def test_issue_for_known_user(tokens: TokenManager) -> None:
    token, user_id = tokens.issue("user-42")
    assert user_id == "user-42"
    assert tokens.verify(token) == "user-42"


def test_each_issue_is_a_new_user(tokens: TokenManager) -> None:
    assert tokens.issue()[1] != tokens.issue()[1]


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "not-a-jwt",
        jwt.encode({USER_ID_CLAIM: "u1"}, "some-other-secret-of-sufficient-length", algorithm=ALGORITHM),
        jwt.encode({"sub": "u1"}, SECRET, algorithm=ALGORITHM),
        jwt.encode({USER_ID_CLAIM: ""}, SECRET, algorithm=ALGORITHM),
    ],
)
def test_verify_rejects_bad_tokens(tokens: TokenManager, token) -> None:
    assert tokens.verify(token) is None


def test_authenticate_valid_token(tokens: TokenManager) -> None:
    token, user_id = tokens.issue()
    result = tokens.authenticate(token)
    assert result.authenticated is True
    assert result.user_id == user_id
    assert result.new_token is None


def test_authenticate_missing_token_issues_new_identity(tokens: TokenManager) -> None:
    result = tokens.authenticate(None)
    assert result.authenticated is False
    assert result.new_token is not None
    assert tokens.verify(result.new_token) == result.user_id


def test_empty_secret_is_rejected() -> None:
    with pytest.raises(ValueError):
        TokenManager("")
