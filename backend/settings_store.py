"""
Settings Store - Plugin settings persisted as a JSON file

The UI owns editing; the agent only loads, saves and reads them when building
a generation request. Saved settings override the environment's provider and
API keys when they are filled in.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import Field, ValidationError

from design_schema import ColorPalette, DesignModel, ViewportSize

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = "~/.figma-designer/settings.json"


class PluginSettings(DesignModel):
    claude_api_key: str = ""
    openai_api_key: str = ""
    selected_provider: str = "claude"
    context_instructions: str = ""
    viewport: str = "mobile"
    custom_colors: ColorPalette = Field(default_factory=ColorPalette)

    def api_key(self, provider: Optional[str] = None) -> str:
        provider = (provider or self.selected_provider or "").lower()
        key = self.openai_api_key if provider == "openai" else self.claude_api_key
        return key.strip()

    def viewport_size(self) -> ViewportSize:
        return ViewportSize.from_preset(self.viewport)

    def with_env_defaults(self) -> "PluginSettings":
        """Fill empty keys and provider from DESIGN_PROVIDER / ANTHROPIC_API_KEY / OPENAI_API_KEY."""
        updates = {}
        if not self.claude_api_key and os.getenv("ANTHROPIC_API_KEY"):
            updates["claude_api_key"] = os.getenv("ANTHROPIC_API_KEY")
        if not self.openai_api_key and os.getenv("OPENAI_API_KEY"):
            updates["openai_api_key"] = os.getenv("OPENAI_API_KEY")
        return self.model_copy(update=updates) if updates else self


class SettingsStore:
    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(os.path.expanduser(str(path or os.getenv("SETTINGS_PATH", DEFAULT_SETTINGS_PATH))))

    def load(self) -> PluginSettings:
        """Saved settings, or the defaults when nothing usable is on disk."""
        if not self.path.exists():
            logger.info(f"⚙️ No saved settings at {self.path}, using defaults")
            return self.defaults()
        try:
            settings = PluginSettings.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"⚠️ Could not read settings from {self.path}: {e}")
            return self.defaults()
        logger.info(f"⚙️ Loaded settings from {self.path} (provider={settings.selected_provider})")
        return settings

    def save(self, settings: PluginSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(settings.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        logger.info(f"💾 Saved settings to {self.path}")

    @staticmethod
    def defaults() -> PluginSettings:
        settings = PluginSettings()
        provider = os.getenv("DESIGN_PROVIDER")
        if provider:
            settings = settings.model_copy(update={"selected_provider": provider.lower()})
        return settings
