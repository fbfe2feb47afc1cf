"""
Configuration loading.

Settings come from the first JSON config file found (local, user, global),
then ``ENVSTACK_*`` environment variables override individual keys.
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"


@dataclass(frozen=True)
class Settings:
    region: str = "us-east-1"
    home: str = ".envstack"

    # compute
    image_id: Optional[str] = None          # ECS optimized AMI
    instance_type: str = "t3.small"
    instance_count: int = 1
    instance_profile: Optional[str] = "ecsInstanceRole"
    key_name: Optional[str] = None
    container_port: int = 80

    # load balancing
    ssl_certificate_id: Optional[str] = None

    # dns
    tld: Optional[str] = None               # overrides the hosted zone name
    record_ttl: int = 300

    # networking
    subnet_prefix: int = 24

    # pull requests
    pr_ttl_hours: float = 48.0


_ENV_KEYS = {
    "ENVSTACK_REGION": "region",
    "AWS_REGION": "region",
    "ENVSTACK_HOME": "home",
    "ENVSTACK_IMAGE_ID": "image_id",
    "ENVSTACK_INSTANCE_TYPE": "instance_type",
    "ENVSTACK_INSTANCE_COUNT": "instance_count",
    "ENVSTACK_INSTANCE_PROFILE": "instance_profile",
    "ENVSTACK_KEY_NAME": "key_name",
    "ENVSTACK_CONTAINER_PORT": "container_port",
    "ENVSTACK_SSL_CERTIFICATE_ID": "ssl_certificate_id",
    "ENVSTACK_TLD": "tld",
    "ENVSTACK_RECORD_TTL": "record_ttl",
    "ENVSTACK_SUBNET_PREFIX": "subnet_prefix",
    "ENVSTACK_PR_TTL_HOURS": "pr_ttl_hours",
}


def config_paths() -> List[Path]:
    """Config file locations, highest precedence first."""
    return [
        Path(".envstack") / CONFIG_FILENAME,
        Path.home() / ".envstack" / CONFIG_FILENAME,
        Path("/etc/envstack") / CONFIG_FILENAME,
    ]


def _load_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return None


def _coerce(name: str, value: Any) -> Any:
    field_type = {f.name: f.type for f in fields(Settings)}[name]
    if value is None:
        return None
    if field_type in (int, "int"):
        return int(value)
    if field_type in (float, "float"):
        return float(value)
    return str(value)


def load_settings(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    Build Settings from config files and the environment.

    Args:
        path: Explicit config file; skips the search chain when given
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Settings

    Raises:
        ValueError: If a value cannot be converted to its setting's type
    """
    environ = os.environ if environ is None else environ
    known = {f.name for f in fields(Settings)}

    data: Dict[str, Any] = {}
    candidates = [Path(path)] if path else config_paths()
    for candidate in candidates:
        loaded = _load_json(candidate)
        if loaded is not None:
            logger.debug(f"Loaded config from {candidate}")
            data = loaded
            break

    values = {}
    for key, value in data.items():
        if key in known:
            values[key] = _coerce(key, value)
        else:
            logger.warning(f"Unknown config key ignored: {key}")

    # ENVSTACK_REGION wins over AWS_REGION
    for env_key in sorted(_ENV_KEYS, key=lambda k: k.startswith("ENVSTACK_")):
        if env_key in environ and environ[env_key] != "":
            name = _ENV_KEYS[env_key]
            values[name] = _coerce(name, environ[env_key])

    return replace(Settings(), **values)


def get_home(settings: Settings) -> Path:
    return Path(settings.home).resolve()
