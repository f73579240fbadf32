from itsdangerous import URLSafeTimedSerializer

import auth
from auth import bearer_token, issue_access_token, resolve_user_id


def test_issued_token_resolves_to_user() -> None:
    token = issue_access_token(42)

    assert resolve_user_id(token) == 42


def test_tampered_or_foreign_tokens_are_rejected() -> None:
    token = issue_access_token(42)

    assert resolve_user_id(token[:-2] + "xx") is None
    assert resolve_user_id("not-a-token") is None

    foreign = URLSafeTimedSerializer("another-secret", salt="access-token")
    assert resolve_user_id(foreign.dumps({"u": 42})) is None


def test_token_without_integer_user_is_rejected() -> None:
    signed = auth._serializer().dumps({"u": "42"})

    assert resolve_user_id(signed) is None
    assert resolve_user_id(auth._serializer().dumps(["u", 42])) is None


def test_bearer_token_parsing() -> None:
    assert bearer_token("Bearer abc.def") == "abc.def"
    assert bearer_token("bearer   abc ") == "abc"
    assert bearer_token("Basic abc") is None
    assert bearer_token("Bearer ") is None
    assert bearer_token(None) is None
