"""Runtime configuration: YAML file, then environment overrides."""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from jsonschema import Draft7Validator

from .errors import ConfigError
from .units import DISTANCE_UNITS

ENV_CONFIG = "SERVICE_INTERVALS_CONFIG"
ENV_DATABASE_URL = "SERVICE_INTERVALS_DATABASE_URL"
ENV_LOG_LEVEL = "SERVICE_INTERVALS_LOG_LEVEL"

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "database_url": {"type": "string", "minLength": 1},
        "log_level": {"type": "string", "enum": LOG_LEVELS},
        "default_distance_unit": {"type": "string", "enum": list(DISTANCE_UNITS)},
        "notify_in_days": {"type": "integer", "minimum": 0},
        "notify_in_mileage": {"type": "number", "minimum": 0},
        "echo_sql": {"type": "boolean"},
    },
    "additionalProperties": False,
}


@dataclass
class Config:
    database_url: str = "sqlite:///service_intervals.db"
    log_level: str = "INFO"
    default_distance_unit: str = "km"
    notify_in_days: int = 14
    notify_in_mileage: float = 500
    echo_sql: bool = False


def _read_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path) as fp:
            data = yaml.safe_load(fp)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def load_config(path: Optional[Union[str, Path]] = None, environ=None) -> Config:
    """
    Build the configuration.

    The file is `path`, else $SERVICE_INTERVALS_CONFIG, else none at all.
    $SERVICE_INTERVALS_DATABASE_URL and $SERVICE_INTERVALS_LOG_LEVEL win
    over the file.
    """
    environ = os.environ if environ is None else environ
    if path is None:
        path = environ.get(ENV_CONFIG)

    data = _read_file(Path(path)) if path else {}
    if environ.get(ENV_DATABASE_URL):
        data["database_url"] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_LOG_LEVEL):
        data["log_level"] = environ[ENV_LOG_LEVEL].upper()
    if isinstance(data.get("log_level"), str):
        data["log_level"] = data["log_level"].upper()

    errors = sorted(Draft7Validator(CONFIG_SCHEMA).iter_errors(data), key=lambda e: list(e.path))
    if errors:
        details = "; ".join(
            f"{'.'.join(str(p) for p in e.path) or 'config'}: {e.message}" for e in errors
        )
        raise ConfigError(f"Invalid configuration: {details}")

    known = {f.name for f in fields(Config)}
    return Config(**{k: v for k, v in data.items() if k in known})
