from __future__ import annotations

import pytest

from tessera.security.auth import jwt
from tessera.security.auth.jwt import (
    JWTError,
    build_access_token_payload,
    decode_hs256,
    encode_hs256,
    subject_user_id,
)


def test_encode_decode_round_trip():
    payload = build_access_token_payload(user_id=7, ttl_seconds=60)
    token = encode_hs256(payload, secret="s3cret")
    decoded = decode_hs256(token, secret="s3cret")
    assert decoded == payload
    assert subject_user_id(decoded) == 7


def test_wrong_secret_rejected():
    token = encode_hs256({"sub": "1"}, secret="a")
    with pytest.raises(JWTError, match="signature"):
        decode_hs256(token, secret="b")


def test_expired_token_rejected_unless_within_leeway(monkeypatch):
    token = encode_hs256({"sub": "1", "exp": 1000}, secret="k")
    monkeypatch.setattr(jwt, "now_ts", lambda: 1005)
    with pytest.raises(JWTError, match="expired"):
        decode_hs256(token, secret="k")
    assert decode_hs256(token, secret="k", leeway_seconds=10)["sub"] == "1"


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "!!.??.**"])
def test_malformed_tokens_rejected(token):
    with pytest.raises(JWTError):
        decode_hs256(token, secret="k")


def test_bad_subject_rejected():
    with pytest.raises(JWTError):
        subject_user_id({"sub": "alice"})
    with pytest.raises(JWTError):
        subject_user_id({})
