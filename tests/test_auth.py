import pytest
from bson import ObjectId
from itsdangerous import BadData

from auth import create_token, decode_token, hash_password, verify_password
from config import Settings


def test_password_hash_round_trip():
    hashed = hash_password("correct horse battery staple")

    assert hashed != "correct horse battery staple"
    assert verify_password("correct horse battery staple", hashed)
    assert not verify_password("wrong", hashed)


def test_long_passwords_are_not_truncated():
    base = "x" * 80
    hashed = hash_password(base + "a")

    assert not verify_password(base + "b", hashed)


def test_token_carries_identity_role_and_name(settings):
    uid = ObjectId()
    token = create_token({"_id": uid, "user_type": "Agent", "name": "G1"}, settings)

    user = decode_token(token, settings)

    assert (user.id, user.user_type, user.name) == (str(uid), "Agent", "G1")


def test_expired_token_is_rejected(settings):
    token = create_token({"_id": ObjectId(), "user_type": "Customer", "name": "Asha"}, settings)
    expired = settings.model_copy(update={"token_ttl_seconds": -1})

    with pytest.raises(BadData):
        decode_token(token, expired)


def test_default_unguarded_operations():
    settings = Settings()

    assert not settings.is_guarded("complaint_update")
    assert not settings.is_guarded("message_create")
    assert settings.is_guarded("assignment_create")


def test_unknown_operation_names_are_rejected():
    with pytest.raises(ValueError):
        Settings(unguarded_operations=["complaint_update", "complaint_purge"])


def test_unguarded_operations_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("UNGUARDED_OPERATIONS", "complaint_update, feedback_read")

    settings = Settings(_env_file=None)

    assert settings.unguarded_operations == ["complaint_update", "feedback_read"]
    assert settings.is_guarded("message_create")


def test_unguarded_operations_from_json_env(monkeypatch):
    monkeypatch.setenv("UNGUARDED_OPERATIONS", '["message_create"]')

    assert Settings(_env_file=None).unguarded_operations == ["message_create"]


def test_empty_unguarded_operations_env_guards_everything(monkeypatch):
    monkeypatch.setenv("UNGUARDED_OPERATIONS", "")

    settings = Settings(_env_file=None)

    assert settings.unguarded_operations == []
    assert settings.is_guarded("complaint_update")
