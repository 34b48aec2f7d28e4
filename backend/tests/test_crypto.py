"""
Tests for encryption of secrets at rest.
"""

import pytest
from cryptography.fernet import Fernet

from shopads.crypto import SecretBox
from fakes import make_settings


def test_round_trip_with_key():
    box = SecretBox(make_settings(encryption_key=Fernet.generate_key().decode()))
    ciphertext = box.encrypt("access-token-value")
    assert box.enabled is True
    assert ciphertext != "access-token-value"
    assert box.decrypt(ciphertext) == "access-token-value"


def test_plaintext_rows_are_read_back_as_is():
    box = SecretBox(make_settings(encryption_key=Fernet.generate_key().decode()))
    assert box.decrypt("legacy-plaintext-token") == "legacy-plaintext-token"


def test_passthrough_without_key_in_development():
    box = SecretBox(make_settings(encryption_key=""))
    assert box.enabled is False
    assert box.encrypt("secret") == "secret"
    assert box.decrypt(None) is None


def test_production_requires_key():
    settings = make_settings(environment="production", cron_secret="cron", api_key="key")
    with pytest.raises(RuntimeError, match="ENCRYPTION_KEY must be set"):
        SecretBox(settings)


def test_invalid_key_rejected():
    with pytest.raises(RuntimeError, match="Invalid ENCRYPTION_KEY"):
        SecretBox(make_settings(encryption_key="not-a-fernet-key"))
