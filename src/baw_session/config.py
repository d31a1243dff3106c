from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, model_validator


logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _host_of(url: str) -> str:
    parsed = urlparse(url)
    host = (parsed.netloc or parsed.path or "").strip().lower()
    if "@" in host:
        host = host.rsplit("@", 1)[1]
    if ":" in host:
        host = host.split(":", 1)[0]
    return host


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r (using %s).", name, raw, default)
        return default


def _env_list(name: str) -> Optional[list[str]]:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return None
    return [p for p in re.split(r"[,\s]+", raw) if p]


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _drop_none(value: object) -> object:
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    return value


def _default_config_from_env() -> dict:
    """
    Env-only config so most deployments only need `.env`; a YAML file is an optional override.
    """
    return _drop_none(
        {
            "portal": {
                "base_url": os.getenv("BAW_BASE_URL", ""),
                "login_url": os.getenv("BAW_LOGIN_URL", ""),
                "authenticated_host": os.getenv("BAW_AUTH_HOST", ""),
                "auth_path_markers": _env_list("BAW_AUTH_PATH_MARKERS"),
                "since_minutes": _env_int("BAW_SINCE_MINUTES", 60),
            },
            "credentials": {
                "email": os.getenv("BAW_EMAIL", ""),
                "password": os.getenv("BAW_PASSWORD", ""),
                "totp": os.getenv("BAW_TOTP", ""),
            },
            "browser": {
                "headless": _env_bool("BROWSER_HEADLESS", default=True),
                "channel": os.getenv("BROWSER_CHANNEL", ""),
                "user_agent": os.getenv("BROWSER_USER_AGENT", ""),
                "slow_mo_ms": _env_int("BROWSER_SLOW_MO_MS", 0),
            },
            "logging": {
                "level": os.getenv("LOG_LEVEL", "INFO"),
                "file_path": os.getenv("LOG_FILE", "data/acquire.log"),
            },
            "debug": {
                "dir": os.getenv("DEBUG_DIR", "data/debug"),
            },
        }
    )


class PortalConfig(BaseModel):
    """
    Where the portal lives and how a logged-in URL is recognized.

    `login_url` defaults to `base_url`; `authenticated_host` defaults to the host of `base_url`.
    """

    base_url: str
    login_url: str = ""
    authenticated_host: str = ""
    # A post-login URL whose path contains any of these is still on the login/auth flow.
    auth_path_markers: tuple[str, ...] = ("auth", "login")
    # Only used to window downstream queries (see `--fetch`); the login itself ignores it.
    since_minutes: int = 60

    @model_validator(mode="after")
    def _fill_defaults_and_validate(self) -> "PortalConfig":
        base_url = (self.base_url or "").strip().rstrip("/")
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("portal.base_url must be a full URL like 'https://portal.example.com' (BAW_BASE_URL)")

        login_url = (self.login_url or "").strip() or base_url
        if not urlparse(login_url).scheme:
            raise ValueError("portal.login_url must be a full URL (BAW_LOGIN_URL)")

        self.base_url = base_url
        self.login_url = login_url
        self.authenticated_host = (self.authenticated_host or "").strip().lower() or _host_of(base_url)
        self.auth_path_markers = tuple(m.strip().lower() for m in self.auth_path_markers if m and m.strip())
        if self.since_minutes < 0:
            raise ValueError("portal.since_minutes must be >= 0")
        return self


class CredentialsConfig(BaseModel):
    # Kept permissive here; the session engine validates (and reports InvalidInput) per attempt.
    email: str = ""
    password: str = Field(default="", repr=False)
    totp: str = Field(default="", repr=False)


class TimeoutConfig(BaseModel):
    navigation_ms: int = 45_000
    element_ms: int = 20_000
    # SPA transitions often never fire a navigation; keep this short.
    click_navigation_ms: int = 8_000
    second_factor_ms: int = 20_000
    typing_delay_ms: int = 10
    settle_delay_ms: int = 1_200


class BrowserConfig(BaseModel):
    headless: bool = True
    channel: str = ""
    user_agent: str = ""
    slow_mo_ms: int = 0
    ignore_https_errors: bool = True
    default_timeout_ms: int = 45_000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/acquire.log"


class DebugConfig(BaseModel):
    dir: str = "data/debug"


class AppConfig(BaseModel):
    portal: PortalConfig
    credentials: CredentialsConfig = CredentialsConfig()
    timeouts: TimeoutConfig = TimeoutConfig()
    browser: BrowserConfig = BrowserConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: DebugConfig = DebugConfig()


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
