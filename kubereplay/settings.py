# kubereplay/settings.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

# Load .env file if it exists (from project root or current directory)
load_dotenv()

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _app_data_dir() -> Path:
    """
    - Respect KUBEREPLAY_DATA_DIR when set
    - Otherwise: ~/.kubereplay
    """
    base = os.getenv("KUBEREPLAY_DATA_DIR", "").strip()
    if base:
        return Path(base).expanduser().resolve()
    return (Path.home() / ".kubereplay").resolve()


def _config_path(environ: Mapping[str, str]) -> Path:
    explicit = environ.get("KUBEREPLAY_CONFIG", "").strip()
    if explicit:
        return Path(explicit).expanduser()
    return _app_data_dir() / "config.yaml"


class ReplaySettings(BaseModel):
    """
    Defaults for the CLI. Precedence (lowest to highest):
    built-in defaults, config.yaml, environment variables, command-line flags.
    """
    region: str = Field(default="", description="AWS region for CloudWatch Logs")
    query_timeout_s: float = Field(default=300.0, gt=0, description="Overall bound on a remote query")
    poll_interval_s: float = Field(default=0.5, ge=0, description="Fixed interval between query status polls")
    max_workers: int = Field(default=4, ge=1, description="Threads used to classify records")
    default_start: str = Field(default="24h", description="Default look-back for --start")
    nomination_markers: List[str] = Field(default_factory=lambda: ["karpenter"])
    track_node_updates: bool = True
    log_level: str = "WARNING"

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, v: str) -> str:
        level = (v or "").strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level

    @field_validator("nomination_markers", mode="before")
    @classmethod
    def _split_markers(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [m.strip() for m in v.split(",") if m.strip()]
        return v


_ENV_FIELDS = {
    "KUBEREPLAY_REGION": "region",
    "KUBEREPLAY_QUERY_TIMEOUT_S": "query_timeout_s",
    "KUBEREPLAY_POLL_INTERVAL_S": "poll_interval_s",
    "KUBEREPLAY_MAX_WORKERS": "max_workers",
    "KUBEREPLAY_DEFAULT_START": "default_start",
    "KUBEREPLAY_NOMINATION_MARKERS": "nomination_markers",
    "KUBEREPLAY_TRACK_NODE_UPDATES": "track_node_updates",
    "KUBEREPLAY_LOG_LEVEL": "log_level",
}


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    # AWS_REGION is the SDK's own variable; ours wins when both are set.
    aws_region = (environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or "").strip()
    if aws_region:
        out["region"] = aws_region
    for env_name, field in _ENV_FIELDS.items():
        raw = environ.get(env_name)
        if raw is not None and raw.strip() != "":
            out[field] = raw.strip()
    return out


def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text("utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")
    return data


def get_settings(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> ReplaySettings:
    environ = os.environ if environ is None else environ
    data = _load_file(path or _config_path(environ))
    data.update(_env_overrides(environ))
    try:
        return ReplaySettings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid settings: {e}") from e
