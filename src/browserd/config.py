from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

RECORDING_EXTENSION = ".webm"


def parse_size(value: str) -> dict[str, int]:
    """Parse a 'WxH' string into a width/height dict."""
    parts = value.lower().split("x")
    if len(parts) != 2:
        raise ValueError(f"Size must be in 'WxH' format, got '{value}'")
    return {"width": int(parts[0]), "height": int(parts[1])}


class Viewport(BaseModel):
    width: int = 1280
    height: int = 720

    def as_dict(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height}


class ProxyConfig(BaseModel):
    server: str
    bypass: str | None = None
    username: str | None = None
    password: str | None = None


class LaunchConfig(BaseModel):
    """Options carried by a ``launch`` command."""

    headless: bool = True
    viewport: Viewport = Field(default_factory=Viewport)
    browser_name: Literal["chromium", "firefox", "webkit"] = "chromium"
    headers: dict[str, str] | None = None
    executable_path: str | None = None
    cdp_port: int | None = None
    extensions: list[str] = Field(default_factory=list)
    proxy: ProxyConfig | None = None
    provider: str | None = None

    @field_validator("viewport", mode="before")
    @classmethod
    def parse_viewport(cls, v: str | dict | Viewport | None) -> dict | Viewport:
        if v is None:
            return Viewport()
        if isinstance(v, str):
            return parse_size(v)
        return v

    def context_options(self) -> dict:
        """Keyword arguments for ``new_context`` / ``launch_persistent_context``."""
        opts: dict = {"viewport": self.viewport.as_dict()}
        if self.headers:
            opts["extra_http_headers"] = self.headers
        if self.proxy is not None:
            opts["proxy"] = self.proxy.model_dump(exclude_none=True)
        return opts


class TimeoutsConfig(BaseModel):
    default: int = 60000
    browserbase: int = 10000
    browser_use: int = 60000
    recording: int = 10000
    attach: int = 30000


class RecordingConfig(BaseModel):
    viewport: Viewport = Field(default_factory=Viewport)


class DaemonSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AGENT_BROWSER_",
        env_nested_delimiter="__",
    )

    session: str = "default"
    provider: str | None = None
    browserbase_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("BROWSERBASE_API_KEY", "browserbase_api_key"),
    )
    browserbase_project_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "BROWSERBASE_PROJECT_ID", "browserbase_project_id"
        ),
    )
    browser_use_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("BROWSER_USE_API_KEY", "browser_use_api_key"),
    )
    browserbase_api_url: str = "https://api.browserbase.com/v1"
    browser_use_api_url: str = "https://api.browser-use.com/api/v2"
    launch: LaunchConfig = Field(default_factory=LaunchConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    recording: RecordingConfig = Field(default_factory=RecordingConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "DEBUG"

    @property
    def has_browserbase_credentials(self) -> bool:
        return bool(self.browserbase_api_key and self.browserbase_project_id)

    def merged_launch(self, overrides: dict | None = None) -> LaunchConfig:
        """Return ``self.launch`` with the non-``None`` *overrides* applied."""
        values = self.launch.model_dump()
        for key, value in (overrides or {}).items():
            if value is not None:
                values[key] = value
        return LaunchConfig.model_validate(values)


def _truthy(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


def apply_env_overrides(settings: DaemonSettings) -> DaemonSettings:
    """Read the AGENT_BROWSER_* launch env vars and apply them as overrides.

    These don't follow the ``launch__field`` nested delimiter convention, so
    they are handled manually here.
    """
    launch = settings.launch

    # AGENT_BROWSER_HEADED -> launch.headless = False
    headed = os.environ.get("AGENT_BROWSER_HEADED")
    if headed is not None and _truthy(headed):
        launch.headless = False

    # AGENT_BROWSER_EXECUTABLE_PATH -> launch.executable_path
    executable_path = os.environ.get("AGENT_BROWSER_EXECUTABLE_PATH")
    if executable_path is not None:
        launch.executable_path = executable_path

    # AGENT_BROWSER_VIEWPORT -> launch.viewport (WxH)
    viewport = os.environ.get("AGENT_BROWSER_VIEWPORT")
    if viewport is not None:
        launch.viewport = Viewport(**parse_size(viewport))

    # AGENT_BROWSER_EXTENSIONS -> launch.extensions (comma-separated)
    extensions = os.environ.get("AGENT_BROWSER_EXTENSIONS")
    if extensions is not None:
        launch.extensions = [e.strip() for e in extensions.split(",") if e.strip()]

    # AGENT_BROWSER_PROXY / AGENT_BROWSER_PROXY_BYPASS -> launch.proxy
    proxy_server = os.environ.get("AGENT_BROWSER_PROXY")
    if proxy_server is not None:
        launch.proxy = ProxyConfig(
            server=proxy_server,
            bypass=os.environ.get("AGENT_BROWSER_PROXY_BYPASS"),
        )

    return settings


def load_config(config_path: str | None = None) -> DaemonSettings:
    """Load daemon settings from a JSON file and/or environment variables.

    Priority (highest to lowest):
        1. The launch env vars handled by ``apply_env_overrides``
        2. Explicitly provided config_path JSON file
        3. Default config file at .agent-browser/config.json in cwd
        4. AGENT_BROWSER_* / provider credential env vars (pydantic-settings)
        5. Built-in defaults
    """
    file_values: dict = {}

    if config_path is not None:
        config_file = Path(config_path)
        if config_file.is_file():
            file_values = json.loads(config_file.read_text(encoding="utf-8"))
    else:
        default_config = Path.cwd() / ".agent-browser" / "config.json"
        if default_config.is_file():
            file_values = json.loads(default_config.read_text(encoding="utf-8"))

    settings = DaemonSettings(**file_values)
    return apply_env_overrides(settings)
