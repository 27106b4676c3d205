import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

log = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item.strip()]


@dataclass
class Settings:
    session_id: str = "default"
    database: str = "database.db"
    log_level: str = "INFO"
    prefixes: List[str] = field(default_factory=lambda: ["."])
    mode: str = "private"
    sudo: List[str] = field(default_factory=list)
    session_uri: str = ""
    session_dir: str = "session"
    migrate: bool = False
    old_session_folder: str = ""
    old_session_db: str = ""
    socket_factory: str = ""
    plugins_dir: str = "plugins"
    group_refresh_seconds: float = 300.0
    flush_delay_ms: int = 20
    cache_size: int = 1000
    reconnect_delay: float = 3.0
    command_react: bool = True

    @property
    def private_mode(self) -> bool:
        return self.mode.strip().lower() != "public"

    @property
    def flush_delay(self) -> float:
        return self.flush_delay_ms / 1000.0


_ENV_KEYS = {
    "session_id": "SESSION_ID",
    "database": "DATABASE",
    "log_level": "LOG_LEVEL",
    "prefixes": "PREFIX",
    "mode": "MODE",
    "sudo": "SUDO",
    "session_uri": "SESSION_URI",
    "session_dir": "SESSION_DIR",
    "migrate": "MIGRATE",
    "old_session_folder": "OLD_SESSION_FOLDER",
    "old_session_db": "OLD_SESSION_DB",
    "socket_factory": "SOCKET_FACTORY",
    "plugins_dir": "PLUGINS_DIR",
    "group_refresh_seconds": "GROUP_REFRESH_SECONDS",
    "flush_delay_ms": "FLUSH_DELAY_MS",
    "cache_size": "CACHE_SIZE",
    "reconnect_delay": "RECONNECT_DELAY",
    "command_react": "CMD_REACT",
}


def _read_overrides(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        log.warning("failed to read settings file %s: %s", path, exc)
        return {}
    if not isinstance(raw, dict):
        log.warning("settings file %s is not a mapping, ignoring", path)
        return {}
    overrides: Dict[str, Any] = {}
    for key, value in raw.items():
        name = str(key).strip().lower()
        if name == "prefix":
            name = "prefixes"
        overrides[name] = value
    return overrides


def _coerce(settings: Settings, values: Mapping[str, Any]) -> Settings:
    defaults = Settings()
    for item in fields(Settings):
        if item.name not in values:
            continue
        raw = values[item.name]
        default = getattr(defaults, item.name)
        try:
            if isinstance(default, bool):
                value: Any = _as_bool(raw, default)
            elif isinstance(default, list):
                value = _as_list(raw) or default
            elif isinstance(default, int):
                value = int(raw)
            elif isinstance(default, float):
                value = float(raw)
            else:
                value = str(raw).strip()
        except (TypeError, ValueError):
            log.warning("invalid value for %s: %r, keeping %r", item.name, raw, default)
            continue
        setattr(settings, item.name, value)
    return settings


def load_settings(
    env_file: Optional[str] = None,
    settings_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    if environ is None:
        load_dotenv(env_file)
        environ = os.environ
    values: Dict[str, Any] = {}
    for name, env_key in _ENV_KEYS.items():
        raw = environ.get(env_key)
        if raw is not None and raw != "":
            values[name] = raw
    path = Path(settings_file or environ.get("SETTINGS_FILE", "settings.yaml"))
    values.update(_read_overrides(path))
    return _coerce(Settings(), values)
