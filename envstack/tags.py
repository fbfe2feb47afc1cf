"""
Tagging utilities for consistent resource tagging across environments.

The tag index is the only record of which resources belong to which
environment, so every resource gets the same tag set and every discovery
call filters on it.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from . import rid
from .models import Environment

MANAGED_TAG = "envstack:managed"
PROJECT_TAG = "envstack:project"
ENV_TYPE_TAG = "envstack:env-type"
ENV_NAME_TAG = "envstack:env-name"
STACK_TAG = "envstack:stack"
REVISION_TAG = "envstack:revision"
EXPIRES_TAG = "envstack:expires-at"
NAME_TAG = "Name"


def base_tags(env, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Generate the tags every resource of an environment carries.

    Args:
        env: Environment
        extra: Additional tags to include

    Returns:
        Dictionary of tags to apply to resources
    """
    tags = {
        MANAGED_TAG: "true",
        PROJECT_TAG: env.project_id,
        ENV_TYPE_TAG: env.env_type,
        ENV_NAME_TAG: env.name,
        STACK_TAG: env.stack_name,
    }
    if env.revision:
        tags[REVISION_TAG] = env.revision

    if extra:
        tags.update(extra)

    return tags


def project_tags(project_id: str) -> Dict[str, str]:
    return {MANAGED_TAG: "true", PROJECT_TAG: project_id}


def format_expiry(expires_at: datetime) -> str:
    return expires_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_expiry(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None


def add_ttl_tags(tags: Dict[str, str], ttl_hours: float,
                 now: Optional[datetime] = None) -> Dict[str, str]:
    """
    Add the expiry marker to a tag dictionary.

    Args:
        tags: Base tags dictionary
        ttl_hours: TTL in hours
        now: Reference time (defaults to the current UTC time)

    Returns:
        Tags dictionary with the expiry marker added
    """
    now = now or datetime.now(timezone.utc)
    tags_with_ttl = tags.copy()
    tags_with_ttl[EXPIRES_TAG] = format_expiry(now + timedelta(hours=ttl_hours))
    return tags_with_ttl


def get_expiry(tags: Dict[str, str]) -> Optional[datetime]:
    """Expiry marker of a resource, or None when it never expires."""
    if EXPIRES_TAG not in tags:
        return None
    return parse_expiry(tags[EXPIRES_TAG])


def is_expired(tags: Dict[str, str], now: Optional[datetime] = None) -> bool:
    """
    Check if a resource is expired based on its tags.

    Resources without an expiry marker (deployments) never expire.
    """
    expires_at = get_expiry(tags)
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return expires_at < now


def matches(tags: Dict[str, str], env) -> bool:
    """True when a resource's tags place it in the given environment."""
    return (tags.get(PROJECT_TAG) == env.project_id
            and tags.get(ENV_TYPE_TAG) == env.env_type
            and tags.get(ENV_NAME_TAG) == env.name)


def env_from_tags(tags: Dict[str, str]):
    """Rebuild the Environment a resource belongs to, or None for foreign resources."""
    project_id = tags.get(PROJECT_TAG)
    name = tags.get(ENV_NAME_TAG)
    env_type = tags.get(ENV_TYPE_TAG)
    if not project_id or not name or env_type not in (rid.DEPLOYMENT, rid.PULL_REQUEST):
        return None
    return Environment(project_id, name, env_type)


def to_aws(tags: Dict[str, str]) -> List[Dict[str, str]]:
    """{"k": "v"} -> [{"Key": "k", "Value": "v"}]"""
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def from_aws(tag_list: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in (tag_list or [])}


def tag_filters(tags: Dict[str, str]) -> List[Dict[str, object]]:
    """EC2 describe filters matching every given tag."""
    return [{"Name": f"tag:{k}", "Values": [v]} for k, v in tags.items()]


def env_filters(env) -> List[Dict[str, object]]:
    return tag_filters({
        PROJECT_TAG: env.project_id,
        ENV_TYPE_TAG: env.env_type,
        ENV_NAME_TAG: env.name,
    })


def is_managed(tags: Dict[str, str]) -> bool:
    return tags.get(MANAGED_TAG) == "true"
