import json

import pytest

from shared.config import apply_env_overrides, default_config, load_config, save_config
from shared.crypto import CredentialManager
from shared.models import DeskConfig, StorageProvider


def _r2_config():
    return DeskConfig(
        provider=StorageProvider.CLOUDFLARE_R2,
        endpoint="abc123",
        bucket="desk",
        access_key_id="AKIA-TEST",
        secret_access_key="s3cr3t",
    )


def test_credentials_are_encrypted_on_disk(tmp_path):
    path = save_config(_r2_config(), tmp_path / "config.json")
    stored = json.loads(path.read_text())

    assert stored['is_encrypted'] is True
    assert stored['access_key_id'] != "AKIA-TEST"
    assert stored['provider'] == "r2"

    loaded = load_config(path, env={})
    assert loaded.access_key_id == "AKIA-TEST"
    assert loaded.secret_access_key == "s3cr3t"
    assert not loaded.is_encrypted


def test_missing_file_gives_local_defaults(tmp_path):
    config = load_config(tmp_path / "absent.json", env={})
    assert config == default_config()
    assert config.provider == StorageProvider.LOCAL


def test_env_overrides(tmp_path):
    env = {
        'HOMEDESK_PROVIDER': 'local',
        'HOMEDESK_ENDPOINT': str(tmp_path),
        'HOMEDESK_SMALL_TIMEOUT': '2.5',
        'HOMEDESK_MAX_SAVE_ATTEMPTS': '3',
    }
    config = load_config(tmp_path / "absent.json", env=env)
    assert config.endpoint == str(tmp_path)
    assert config.small_timeout == 2.5
    assert config.max_save_attempts == 3


def test_bad_env_value_is_reported():
    with pytest.raises(ValueError):
        apply_env_overrides(default_config(), {'HOMEDESK_LARGE_TIMEOUT': 'soon'})


def test_decrypt_with_wrong_key_returns_none():
    token = CredentialManager.encrypt("secret")
    other_key = CredentialManager.generate_key_from_password("elsewhere", b"salt")
    assert CredentialManager.decrypt(token, other_key) is None
    assert CredentialManager.decrypt(token) == "secret"
