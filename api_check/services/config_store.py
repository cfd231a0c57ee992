"""
ConfigStore Class - Shared runtime configuration

This module holds the process-wide configuration snapshot and loads it from
defaults, an optional TOML/JSON file, ``.env`` and the environment.
"""

import logging
import os
import threading
import tomllib
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from api_check.config import ENV_PREFIX
from api_check.models.data_models import AppConfig, ProxyConfig, TestConfig
from api_check.services.parser import PayloadParser

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a configuration source cannot be read or is invalid"""


class ConfigStore:
    """
    Concurrently readable holder of the current AppConfig.
    Snapshots are frozen dataclasses, so get() hands out the current one
    directly and writers swap in a new object under the lock.
    """

    def __init__(self, config: Optional[AppConfig] = None):
        self._config = config or AppConfig()
        self._lock = threading.Lock()

    def get(self) -> AppConfig:
        with self._lock:
            return self._config

    def update(self, config: AppConfig) -> None:
        with self._lock:
            self._config = config
        logger.info("Configuration replaced")

    def update_proxy(self, proxy: ProxyConfig) -> None:
        with self._lock:
            self._config = replace(self._config, proxy=proxy)
        logger.info(f"Proxy configuration updated: enabled={proxy.enabled} target={proxy.target}")

    def update_test(self, test: TestConfig) -> None:
        with self._lock:
            self._config = replace(self._config, test=test)
        logger.info("Test configuration updated")


# ──────────────────────────────────────────────────────────────────────────────
# Loading
# ──────────────────────────────────────────────────────────────────────────────

# env suffix -> (section, key)
ENV_KEYS = {
    "SERVER_HOST": ("server", "host"),
    "SERVER_PORT": ("server", "port"),
    "PROXY_ENABLED": ("proxy", "enabled"),
    "PROXY_TARGET": ("proxy", "target"),
    "TEST_NUM_CALLS": ("test", "num_calls"),
    "TEST_FREQUENCY_MS": ("test", "frequency_ms"),
    "TEST_METHOD": ("test", "method"),
    "TEST_TARGET_URL": ("test", "target_url"),
    "TEST_BODY": ("test", "body"),
}


def read_config_file(path: str) -> Dict[str, Any]:
    """Read a TOML or JSON config file into a dict"""
    try:
        with open(path, "rb") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    text = content.decode("utf-8", errors="replace")
    if path.endswith(".toml"):
        try:
            return tomllib.loads(text)
        except tomllib.TOMLDecodeError:
            logger.debug(f"{path} is not valid TOML, trying JSON")

    data = PayloadParser.parse_json(text)
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} is neither a TOML table nor a JSON object")
    return data


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Dict[str, Any]]:
    """Collect API_CHECK_* variables into config sections"""
    sections: Dict[str, Dict[str, Any]] = {}
    for suffix, (section, key) in ENV_KEYS.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is not None and value != "":
            sections.setdefault(section, {})[key] = value
    return sections


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Build an AppConfig from defaults, then the file at `path` (if it exists),
    then environment variables (after loading a .env file when reading the
    real process environment).
    """
    config = AppConfig()

    if path and os.path.exists(path):
        raw = read_config_file(path)
        try:
            config = PayloadParser.parse_app_config(raw, config)
        except ValueError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e
        logger.info(f"Loaded configuration from {path}")

    if environ is None:
        load_dotenv()
        environ = os.environ

    overrides = env_overrides(environ)
    if overrides:
        try:
            config = PayloadParser.parse_app_config(overrides, config)
        except ValueError as e:
            raise ConfigError(f"Invalid {ENV_PREFIX}* environment value: {e}") from e
        logger.debug(f"Applied environment overrides for {sorted(overrides)}")

    return config
