"""Tests for settings loading and validation."""

import pytest

from config import DEFAULTS, SettingsError, load_settings_conf, validate_settings

def test_defaults_without_file(tmp_path):
    settings = validate_settings(load_settings_conf(str(tmp_path)))

    assert settings['chain_id'] == 8453
    assert settings['secondary_batch_size'] == 30
    assert settings['primary_batch_delay'] == 0.5

def test_file_and_environment(tmp_path, monkeypatch):
    (tmp_path / 'settings.conf').write_text(
        "[DEFAULT]\n"
        "stats_batch_size = 20\n"
        "factory_address = 0x777777751622C0D3258F214F9DF38E35BF45BAF3\n"
        "zora_api_key = from-file\n"
    )
    monkeypatch.setenv('ZORA_API_KEY', 'from-env')

    settings = validate_settings(load_settings_conf(str(tmp_path)))

    assert settings['stats_batch_size'] == 20
    assert settings['factory_address'] == DEFAULTS['factory_address']
    assert settings['zora_api_key'] == 'from-env'

def test_invalid_values(tmp_path):
    (tmp_path / 'settings.conf').write_text("[DEFAULT]\napi_port = eight\nsecondary_batch_delay = -1\n")

    with pytest.raises(SettingsError) as exc:
        validate_settings(load_settings_conf(str(tmp_path)))

    assert 'api_port' in str(exc.value)
    assert 'secondary_batch_delay' in str(exc.value)
