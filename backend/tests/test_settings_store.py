import json

import pytest

from settings_store import PluginSettings, SettingsStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("DESIGN_PROVIDER", "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "SETTINGS_PATH"):
        monkeypatch.delenv(name, raising=False)


def test_missing_file_gives_defaults(tmp_path):
    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.selected_provider == "claude"
    assert settings.viewport == "mobile"
    assert settings.custom_colors.primary == "#18A0FB"


def test_save_then_load(tmp_path):
    path = tmp_path / "nested" / "settings.json"
    store = SettingsStore(path)
    settings = PluginSettings.model_validate({
        "openaiApiKey": "sk-test",
        "selectedProvider": "openai",
        "contextInstructions": "Dark theme",
        "viewport": "desktop",
        "customColors": {"primary": "#FF0000"},
    })

    store.save(settings)

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["selectedProvider"] == "openai"
    assert saved["customColors"]["primary"] == "#FF0000"
    assert store.load() == settings


def test_corrupt_file_gives_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(path).load() == PluginSettings()


def test_defaults_follow_design_provider(tmp_path, monkeypatch):
    monkeypatch.setenv("DESIGN_PROVIDER", "OpenAI")

    assert SettingsStore(tmp_path / "none.json").load().selected_provider == "openai"


def test_settings_path_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("SETTINGS_PATH", str(tmp_path / "env.json"))

    assert SettingsStore().path == tmp_path / "env.json"


def test_api_key_per_provider():
    settings = PluginSettings(claude_api_key=" sk-ant ", openai_api_key="sk-oai", selected_provider="openai")

    assert settings.api_key() == "sk-oai"
    assert settings.api_key("claude") == "sk-ant"


def test_env_keys_fill_only_empty_fields(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "env-ant")
    monkeypatch.setenv("OPENAI_API_KEY", "env-oai")

    settings = PluginSettings(openai_api_key="saved").with_env_defaults()

    assert settings.claude_api_key == "env-ant"
    assert settings.openai_api_key == "saved"


def test_viewport_size_preset():
    assert PluginSettings(viewport="tablet").viewport_size().width == 768
    assert PluginSettings(viewport="watch").viewport_size().name == "Mobile"
