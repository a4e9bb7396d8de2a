from __future__ import annotations

import json
import os

import pytest

from clickhouse_client.config import ConnectionProfile
from monitor.profiles import ProfileError, ProfileNotFoundError, ProfileStore


def _profile(**overrides):
    values = dict(urls=['ch1', 'ch2'], user='reader', password='s3cret', accept_invalid_certificate=False)
    values.update(overrides)
    return ConnectionProfile(**values)


def test_missing_file_means_no_profiles(config_path):
    store = ProfileStore(config_path)

    assert store.list() == []
    assert store.active_profile_name() is None
    assert store.profile() is None
    assert store.config_path() == config_path


def test_set_profile_round_trip(config_path, vault_key):
    ProfileStore(config_path).set_profile('prod', _profile())

    loaded = ProfileStore(config_path).get_profile('prod')
    assert loaded == _profile()


def test_password_is_never_stored_in_clear(config_path, vault_key):
    ProfileStore(config_path).set_profile('prod', _profile())

    with open(config_path, encoding='utf-8') as f:
        raw = f.read()
    assert 's3cret' not in raw
    assert json.loads(raw)['profiles']['prod']['user'] == 'reader'


def test_default_and_override(config_path, vault_key):
    store = ProfileStore(config_path)
    store.set_profile('prod', _profile())
    store.set_profile('stage', _profile(user='stager'))
    store.set_default('prod')

    assert ProfileStore(config_path).active_profile_name() == 'prod'
    overridden = ProfileStore(config_path, override_name='stage')
    assert overridden.active_profile_name() == 'stage'
    assert overridden.profile().user == 'stager'


def test_override_must_exist(config_path):
    with pytest.raises(ProfileNotFoundError):
        ProfileStore(config_path, override_name='ghost')


def test_delete_resets_current(config_path, vault_key):
    store = ProfileStore(config_path)
    store.set_profile('prod', _profile())
    store.set_default('prod')
    store.delete_profile('prod')

    reloaded = ProfileStore(config_path)
    assert reloaded.list() == []
    assert reloaded.active_profile_name() is None
    with pytest.raises(ProfileNotFoundError):
        reloaded.delete_profile('prod')
    with pytest.raises(ProfileNotFoundError):
        reloaded.set_default('prod')


def test_wrong_vault_key(config_path, vault_key, monkeypatch):
    from cryptography.fernet import Fernet

    ProfileStore(config_path).set_profile('prod', _profile())
    monkeypatch.setenv('CLICKCHECK_VAULT_KEY', Fernet.generate_key().decode())

    with pytest.raises(ProfileError):
        ProfileStore(config_path).get_profile('prod')


def test_missing_vault_key(config_path, monkeypatch):
    monkeypatch.delenv('CLICKCHECK_VAULT_KEY', raising=False)

    with pytest.raises(ProfileError):
        ProfileStore(config_path).set_profile('prod', _profile())
    # Пустой пароль шифровать не нужно
    ProfileStore(config_path).set_profile('open', _profile(password=''))
    assert ProfileStore(config_path).get_profile('open').password == ''


def test_corrupt_file(config_path):
    os.makedirs(os.path.dirname(config_path))
    with open(config_path, 'w', encoding='utf-8') as f:
        f.write('{not json')

    with pytest.raises(ProfileError):
        ProfileStore(config_path)
