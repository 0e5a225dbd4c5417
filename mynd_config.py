# mynd_config.py
# User configuration for mynd tools
# License: MIT
"""
Configuration loading for mynd.

Sources, lowest to highest precedence:
  1. built-in defaults (MyndConfig)
  2. JSON config file: $MYND_CONFIG, else $XDG_CONFIG_HOME/mynd/config.json,
     else ~/.config/mynd/config.json
  3. environment: MYND_HOME, MYND_SAVE_FORMAT, MYND_LOG_LEVEL
"""

from __future__ import annotations
import enum
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional

from mynd_persist import atomic_write_bytes
from mynd_todos import MyndError

LOG = logging.getLogger("mynd.config")

APP_NAME = "mynd"
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL"}


class ConfigError(MyndError):
    pass


class SaveFileFormat(str, enum.Enum):
    JSON = "json"
    BINARY = "binary"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, raw: Any) -> "SaveFileFormat":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            choices = ", ".join(f.value for f in cls)
            raise ConfigError(f"invalid save_file_format {raw!r} (expected one of: {choices})") from None


def default_data_dir() -> str:
    return os.path.join(os.path.expanduser("~"), APP_NAME)


@dataclass
class MyndConfig:
    save_file_format: SaveFileFormat = SaveFileFormat.BINARY
    data_dir: str = field(default_factory=default_data_dir)
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["save_file_format"] = self.save_file_format.value
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MyndConfig":
        cfg = cls()
        if "save_file_format" in data:
            cfg.save_file_format = SaveFileFormat.parse(data["save_file_format"])
        if data.get("data_dir"):
            cfg.data_dir = os.path.expanduser(str(data["data_dir"]))
        if "log_level" in data:
            cfg.log_level = _parse_log_level(data["log_level"])
        return cfg


def _parse_log_level(raw: Any) -> str:
    level = str(raw).strip().upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(f"invalid log_level {raw!r}")
    return level


def config_path(env: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if env is None else env
    if env.get("MYND_CONFIG"):
        return env["MYND_CONFIG"]
    base = env.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, APP_NAME, "config.json")


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> MyndConfig:
    env = os.environ if env is None else env
    path = path or config_path(env)
    data: Dict[str, Any] = {}
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"failed to load config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"config {path} must hold a JSON object")
    cfg = MyndConfig.from_dict(data)

    if env.get("MYND_HOME"):
        cfg.data_dir = os.path.expanduser(env["MYND_HOME"])
    if env.get("MYND_SAVE_FORMAT"):
        cfg.save_file_format = SaveFileFormat.parse(env["MYND_SAVE_FORMAT"])
    if env.get("MYND_LOG_LEVEL"):
        cfg.log_level = _parse_log_level(env["MYND_LOG_LEVEL"])
    LOG.debug("loaded config from %s: %s", path, cfg)
    return cfg


def store_config(cfg: MyndConfig, path: Optional[str] = None) -> str:
    path = path or config_path()
    body = json.dumps(cfg.to_dict(), indent=2) + "\n"
    try:
        return atomic_write_bytes(path, body.encode("utf-8"))
    except OSError as e:
        raise ConfigError(f"failed to store config {path}: {e}") from e
