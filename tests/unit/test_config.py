"""Tests for settings loading, validation and persistence."""

import json

import pytest
from pydantic import ValidationError
from ravenchat.config import CUSTOM_PROVIDER, PROVIDER_URLS, Settings, load_settings
from ravenchat.errors import ConfigurationError


class TestDefaults:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.provider == "OpenRouter"
        assert settings.max_tokens == 500
        assert settings.use_adaptive_tokens is True
        assert settings.show_reasoning is True
        assert settings.feature_mode == "standard"
        assert settings.api_key is None

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("RAVENCHAT_PROVIDER", "Groq")
        monkeypatch.setenv("RAVENCHAT_MAX_TOKENS", "800")
        monkeypatch.setenv("RAVENCHAT_USE_ADAPTIVE_TOKENS", "false")
        settings = Settings(_env_file=None)
        assert settings.provider == "Groq"
        assert settings.max_tokens == 800
        assert settings.use_adaptive_tokens is False


class TestValidation:
    def test_unknown_provider(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, provider="Skynet")

    @pytest.mark.parametrize("value", [0, -5])
    def test_non_positive_ceiling(self, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, max_tokens=value)

    def test_unknown_feature_mode(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, feature_mode="dreaming")

    def test_log_level_normalized(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="LOUD")


class TestUrls:
    @pytest.mark.parametrize("provider", ["OpenRouter", "Together AI", "Groq"])
    def test_known_provider_urls(self, provider):
        settings = Settings(_env_file=None, provider=provider)
        assert settings.api_url == PROVIDER_URLS[provider]
        assert settings.base_url + "/chat/completions" == PROVIDER_URLS[provider]

    def test_custom_url(self):
        settings = Settings(
            _env_file=None,
            provider=CUSTOM_PROVIDER,
            custom_api_url="http://localhost:8000/v1/chat/completions/",
        )
        assert settings.api_url == "http://localhost:8000/v1/chat/completions/"
        assert settings.base_url == "http://localhost:8000/v1"

    def test_custom_base_url_left_alone(self):
        settings = Settings(
            _env_file=None, provider=CUSTOM_PROVIDER, custom_api_url="http://h/v1"
        )
        assert settings.base_url == "http://h/v1"


class TestPersistence:
    def test_save_and_load(self, temp_dir):
        path = temp_dir / "nested" / "settings.json"
        Settings(_env_file=None, provider="Groq", model="llama3-8b-8192", max_tokens=900).save(
            path
        )
        loaded = Settings.load(path)
        assert loaded.provider == "Groq"
        assert loaded.model == "llama3-8b-8192"
        assert loaded.max_tokens == 900

    def test_overrides_win(self, temp_dir):
        path = temp_dir / "settings.json"
        Settings(_env_file=None, model="a").save(path)
        assert Settings.load(path, model="b").model == "b"

    def test_missing_file_uses_defaults(self, temp_dir):
        assert Settings.load(temp_dir / "nope.json").provider == "OpenRouter"

    def test_invalid_json(self, temp_dir):
        path = temp_dir / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            Settings.load(path)

    def test_invalid_values_raise_configuration_error(self, temp_dir):
        with pytest.raises(ConfigurationError):
            Settings.load(None, max_tokens=0)

    def test_api_key_is_not_written(self, temp_dir):
        path = temp_dir / "settings.json"
        Settings(_env_file=None, api_key="sk-secret", settings_path=path).save(path)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert "api_key" not in data
        assert "settings_path" not in data
        assert "sk-secret" not in path.read_text(encoding="utf-8")


class TestLoadSettings:
    def test_without_saved_file(self):
        assert load_settings(_env_file=None).settings_path is None

    def test_saved_file_is_applied(self, temp_dir, monkeypatch):
        path = temp_dir / "settings.json"
        Settings(_env_file=None, model="saved/model", show_reasoning=False).save(path)
        monkeypatch.setenv("RAVENCHAT_SETTINGS_PATH", str(path))
        monkeypatch.setenv("RAVENCHAT_API_KEY", "sk-env")

        settings = load_settings(_env_file=None)

        assert settings.model == "saved/model"
        assert settings.show_reasoning is False
        assert settings.api_key == "sk-env"
        assert settings.settings_path == path

    def test_missing_saved_file_uses_environment(self, temp_dir, monkeypatch):
        monkeypatch.setenv("RAVENCHAT_SETTINGS_PATH", str(temp_dir / "later.json"))
        monkeypatch.setenv("RAVENCHAT_MODEL", "env/model")
        assert load_settings(_env_file=None).model == "env/model"
