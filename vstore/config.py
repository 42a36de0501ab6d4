"""
vstore configuration loader.

Layered config with clear precedence:
    1) Explicit overrides passed to `load()` (highest)
    2) Environment variables (VSTORE_*)
    3) Config file (TOML or JSON); `config_file=` or $VSTORE_CONFIG
    4) Built-in defaults (lowest)

Sections
--------
    backend:  { uri }
    engine:   { max_retries, backoff_base, backoff_max }
    logging:  { level, format, file }
    metrics:  { enabled, namespace }

Durations accept plain seconds or "250ms", "2s", "1m".

Environment
-----------
    VSTORE_BACKEND_URI, VSTORE_DATA_DIR,
    VSTORE_MAX_RETRIES, VSTORE_BACKOFF_BASE, VSTORE_BACKOFF_MAX,
    VSTORE_LOG_LEVEL, VSTORE_LOG_FORMAT, VSTORE_LOG_FILE,
    VSTORE_METRICS, VSTORE_METRICS_NAMESPACE

Invalid values raise ConfigError.
"""

from __future__ import annotations

import json
import os
import platform
import re
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigError

DEFAULT_DB_FILENAME = "vstore.db"
DEFAULT_MAX_RETRIES = 8
DEFAULT_BACKOFF_BASE = 0.01
DEFAULT_BACKOFF_MAX = 1.0

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}
_LOG_FORMATS = {"auto", "json", "text"}


def _expand(p: str | Path) -> Path:
    return Path(p).expanduser().resolve()


def _default_data_dir() -> Path:
    override = os.environ.get("VSTORE_DATA_DIR")
    if override:
        return _expand(override)
    system = platform.system()
    if system == "Darwin":
        return _expand("~/Library/Application Support/vstore")
    if system == "Windows":
        appdata = os.environ.get("APPDATA") or os.environ.get("LOCALAPPDATA")
        if appdata:
            return _expand(appdata) / "vstore"
    xdg = os.environ.get("XDG_DATA_HOME")
    return (_expand(xdg) if xdg else _expand("~/.local/share")) / "vstore"


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$", re.IGNORECASE)


def _parse_duration(value: Any, name: str) -> float:
    """
    Seconds from an int/float or a string:
      "0.5" -> 0.5s, "250ms" -> 0.25s, "2s", "1m", "1h"
    """
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a duration", value=value)
    if isinstance(value, (int, float)):
        return float(value)
    m = _DURATION_RE.match(str(value))
    if not m:
        raise ConfigError(f"{name} must be a duration", value=value)
    num = float(m.group(1))
    unit = (m.group(2) or "s").lower()
    return num * {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}[unit]


def _parse_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _parse_int(v: Any, name: str) -> int:
    if isinstance(v, bool):
        raise ConfigError(f"{name} must be int", value=v)
    try:
        return int(v, 0) if isinstance(v, str) else int(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be int", value=v) from e


# ------------------------------
# Typed configuration model
# ------------------------------


@dataclass
class BackendConfig:
    uri: str = ""

    @staticmethod
    def sqlite_default() -> "BackendConfig":
        # sqlite:/// + absolute path yields the four-slash absolute form
        return BackendConfig(uri=f"sqlite:///{_default_data_dir() / DEFAULT_DB_FILENAME}")


@dataclass
class EngineConfig:
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX

    def validate(self) -> None:
        if self.max_retries < 0:
            raise ConfigError("engine.max_retries must be >= 0", value=self.max_retries)
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ConfigError("engine backoff must be >= 0", base=self.backoff_base, max=self.backoff_max)
        if self.backoff_max < self.backoff_base:
            raise ConfigError("engine.backoff_max must be >= backoff_base", base=self.backoff_base, max=self.backoff_max)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "auto"
    file: Optional[str] = None

    def validate(self) -> None:
        if self.level.upper() not in _LOG_LEVELS:
            raise ConfigError("logging.level is not a log level", value=self.level)
        if self.format.lower() not in _LOG_FORMATS:
            raise ConfigError("logging.format must be auto, json or text", value=self.format)


@dataclass
class MetricsConfig:
    enabled: bool = True
    namespace: str = "vstore"

    def validate(self) -> None:
        if not re.fullmatch(r"[a-zA-Z_][a-zA-Z0-9_]*", self.namespace):
            raise ConfigError("metrics.namespace must be a Prometheus identifier", value=self.namespace)


@dataclass
class Config:
    backend: BackendConfig = field(default_factory=BackendConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    def validate(self) -> None:
        _validate_backend_uri(self.backend.uri)
        self.engine.validate()
        self.logging.validate()
        self.metrics.validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ------------------------------
# File loader (TOML / JSON)
# ------------------------------


def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError("config file not found", path=str(path))
    suffix = path.suffix.lower()
    try:
        with path.open("rb") as f:
            if suffix in {".toml", ".tml"}:
                return tomllib.load(f)
            if suffix == ".json":
                return json.load(f)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot parse config file: {e}", path=str(path)) from e
    raise ConfigError("unsupported config format; use .toml or .json", path=str(path))


def _merge_dict(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """Nested dict merge: values in b override a."""
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dict(out[k], v)
        else:
            out[k] = v
    return out


def _env_layer() -> Dict[str, Any]:
    env = os.environ
    layer: Dict[str, Dict[str, Any]] = {"backend": {}, "engine": {}, "logging": {}, "metrics": {}}
    if "VSTORE_BACKEND_URI" in env:
        layer["backend"]["uri"] = env["VSTORE_BACKEND_URI"].strip()
    if "VSTORE_MAX_RETRIES" in env:
        layer["engine"]["max_retries"] = env["VSTORE_MAX_RETRIES"]
    if "VSTORE_BACKOFF_BASE" in env:
        layer["engine"]["backoff_base"] = env["VSTORE_BACKOFF_BASE"]
    if "VSTORE_BACKOFF_MAX" in env:
        layer["engine"]["backoff_max"] = env["VSTORE_BACKOFF_MAX"]
    if "VSTORE_LOG_LEVEL" in env:
        layer["logging"]["level"] = env["VSTORE_LOG_LEVEL"].strip()
    if "VSTORE_LOG_FORMAT" in env:
        layer["logging"]["format"] = env["VSTORE_LOG_FORMAT"].strip()
    if "VSTORE_LOG_FILE" in env:
        layer["logging"]["file"] = env["VSTORE_LOG_FILE"].strip() or None
    if "VSTORE_METRICS" in env:
        layer["metrics"]["enabled"] = env["VSTORE_METRICS"]
    if "VSTORE_METRICS_NAMESPACE" in env:
        layer["metrics"]["namespace"] = env["VSTORE_METRICS_NAMESPACE"].strip()
    return {k: v for k, v in layer.items() if v}


def _section(base: Dict[str, Any], name: str) -> Dict[str, Any]:
    sec = base.get(name) or {}
    if not isinstance(sec, dict):
        raise ConfigError(f"config section {name!r} must be a table", got=type(sec).__name__)
    return sec


def _known(sec: Dict[str, Any], name: str, allowed: set) -> None:
    unknown = set(sec) - allowed
    if unknown:
        raise ConfigError(f"unknown keys in {name!r}", keys=sorted(unknown))


# ------------------------------
# Main loader
# ------------------------------


def load(config_file: Optional[str | Path] = None, **overrides: Any) -> Config:
    """
    Load configuration. Precedence: overrides > env > file > defaults.

        load(backend={"uri": "memory://"}, engine={"max_retries": 2})
    """
    base: Dict[str, Any] = asdict(Config())
    base["backend"] = asdict(BackendConfig.sqlite_default())

    path = config_file or os.environ.get("VSTORE_CONFIG")
    if path:
        base = _merge_dict(base, _load_file(_expand(path)))

    base = _merge_dict(base, _env_layer())

    if overrides:
        base = _merge_dict(base, overrides)

    b, e, lg, m = (_section(base, n) for n in ("backend", "engine", "logging", "metrics"))
    _known(b, "backend", {"uri"})
    _known(e, "engine", {"max_retries", "backoff_base", "backoff_max"})
    _known(lg, "logging", {"level", "format", "file"})
    _known(m, "metrics", {"enabled", "namespace"})

    cfg = Config(
        backend=BackendConfig(uri=str(b.get("uri") or "")),
        engine=EngineConfig(
            max_retries=_parse_int(e.get("max_retries", DEFAULT_MAX_RETRIES), "engine.max_retries"),
            backoff_base=_parse_duration(e.get("backoff_base", DEFAULT_BACKOFF_BASE), "engine.backoff_base"),
            backoff_max=_parse_duration(e.get("backoff_max", DEFAULT_BACKOFF_MAX), "engine.backoff_max"),
        ),
        logging=LoggingConfig(
            level=str(lg.get("level", "INFO")),
            format=str(lg.get("format", "auto")),
            file=lg.get("file"),
        ),
        metrics=MetricsConfig(
            enabled=_parse_bool(m.get("enabled", True)),
            namespace=str(m.get("namespace", "vstore")),
        ),
    )
    if not cfg.backend.uri:
        cfg.backend = BackendConfig.sqlite_default()
    cfg.validate()
    return cfg


def _validate_backend_uri(uri: str) -> None:
    if uri.startswith(("sqlite:///", "memory://")) or uri.endswith((".db", ".sqlite", ".sqlite3")):
        return
    raise ConfigError("unsupported backend URI; use sqlite:///path.db or memory://", uri=uri)


__all__ = [
    "Config",
    "BackendConfig",
    "EngineConfig",
    "LoggingConfig",
    "MetricsConfig",
    "load",
]
