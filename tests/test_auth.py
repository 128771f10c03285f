import pytest
from itsdangerous import URLSafeTimedSerializer

from auth import current_user_id, issue_session_token


def test_session_token_resolves_to_user() -> None:
    token = issue_session_token("firebase-uid-123")
    assert current_user_id(token) == "firebase-uid-123"


def test_missing_or_tampered_tokens_resolve_to_nobody() -> None:
    token = issue_session_token("u1")

    assert current_user_id(None) is None
    assert current_user_id("") is None
    assert current_user_id(token[:-2] + "xx") is None


def test_token_signed_with_another_secret_is_rejected() -> None:
    forged = URLSafeTimedSerializer("not-the-secret", salt="budgetbox-session").dumps(
        {"u": "u1"}
    )
    assert current_user_id(forged) is None


def test_empty_user_id_cannot_be_issued() -> None:
    with pytest.raises(ValueError):
        issue_session_token("")
