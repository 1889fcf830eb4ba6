"""
Configuration for the VTM tools.

Settings come from defaults, then an optional `.vtmrc` JSON file, then
VTM_* environment variables.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger("vtm.config")

DEFAULT_CONFIG_FILE = ".vtmrc"

ENV_OVERRIDES = {
    "VTM_MANIFEST": "manifest_path",
    "VTM_SESSION": "session_path",
    "VTM_LOCK_TIMEOUT": "lock_timeout",
    "VTM_LOG_LEVEL": "log_level",
}


class VTMConfig(BaseModel):
    manifest_path: str = "vtm.json"
    session_path: str = ".vtm-session"
    lock_timeout: float = Field(default=10.0, gt=0)
    log_level: str = "INFO"


def _read_config_file(config_path: Path) -> dict:
    if not config_path.exists():
        return {}
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to parse {config_path}, using defaults. Error: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: expected a JSON object")
        return {}
    return data


def load_config(config_path: Optional[Union[str, Path]] = None) -> VTMConfig:
    """Load configuration, falling back to defaults for anything unusable."""
    path = Path(config_path or DEFAULT_CONFIG_FILE)
    values = _read_config_file(path)

    for env_name, field in ENV_OVERRIDES.items():
        if os.environ.get(env_name):
            values[field] = os.environ[env_name]

    try:
        return VTMConfig(**values)
    except ValidationError as e:
        bad_fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
        logger.warning(
            f"Invalid VTM configuration, using defaults for {', '.join(sorted(bad_fields))}. Error: {e}"
        )

    kept = {k: v for k, v in values.items() if k not in bad_fields}
    try:
        return VTMConfig(**kept)
    except ValidationError as e:
        logger.warning(f"Invalid VTM configuration, using defaults. Error: {e}")
        return VTMConfig()
