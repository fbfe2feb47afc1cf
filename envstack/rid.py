"""
Resource identifiers: deterministic names for every resource of an environment.

An identifier is a sequence of length-prefixed segments::

    p5-proj1--d9-feature-x--r7-abc1234

Each segment is ``<key><length>-<value>`` where ``value`` has every character
outside ``[A-Za-z0-9-]`` escaped as ``_xx`` (hex). Because lengths are
explicit, distinct inputs can never produce the same identifier, and the
result only uses characters AWS accepts in cluster, group and family names.
"""

import hashlib
import re
import string
from typing import Dict, Optional

from .errors import ValidationError

DEPLOYMENT = "deployment"
PULL_REQUEST = "pr"

_TYPE_KEYS = {DEPLOYMENT: "d", PULL_REQUEST: "q"}
_KEY_TYPES = {v: k for k, v in _TYPE_KEYS.items()}

_SAFE = set(string.ascii_letters + string.digits + "-")
_SEGMENT = re.compile(r"([a-z])(\d+)-")
_SEPARATOR = "--"

# subdomain labels are more restrictive than resource names
_LABEL_UNSAFE = re.compile(r"[^a-z0-9-]+")


def escape(value: str) -> str:
    """Escape every character outside ``[A-Za-z0-9-]`` as ``_xx``."""
    out = []
    for ch in value:
        if ch in _SAFE:
            out.append(ch)
        else:
            out.append("".join(f"_{b:02x}" for b in ch.encode("utf-8")))
    return "".join(out)


def _unescape(value: str) -> str:
    raw = bytearray()
    i = 0
    while i < len(value):
        if value[i] == "_":
            raw.append(int(value[i + 1:i + 3], 16))
            i += 3
        else:
            raw.extend(value[i].encode("ascii"))
            i += 1
    return raw.decode("utf-8")


def _segment(key: str, value: str) -> str:
    escaped = escape(value)
    return f"{key}{len(escaped)}-{escaped}"


def validate_project_id(project_id: Optional[str]) -> None:
    if not project_id or not isinstance(project_id, str):
        raise ValidationError("project id is required")


def validate_ids(project_id: Optional[str], env_name: Optional[str]) -> None:
    """Raise ValidationError unless both identifiers are non-empty strings."""
    validate_project_id(project_id)
    if not env_name or not isinstance(env_name, str):
        raise ValidationError("environment name is required")


def generate_rid(project_id: str, env_name: str, revision: Optional[str] = None,
                 env_type: str = DEPLOYMENT) -> str:
    """
    Build the identifier of an environment (or of one revision of it).

    Args:
        project_id: Project identifier
        env_name: Deployment branch name or pull request number
        revision: Optional build identifier (commit sha)
        env_type: DEPLOYMENT or PULL_REQUEST

    Returns:
        Deterministic identifier

    Raises:
        ValidationError: If project_id or env_name is empty
    """
    validate_ids(project_id, env_name)
    if env_type not in _TYPE_KEYS:
        raise ValidationError(f"unknown environment type: {env_type}")

    parts = [_segment("p", project_id), _segment(_TYPE_KEYS[env_type], env_name)]
    if revision:
        parts.append(_segment("r", revision))
    return _SEPARATOR.join(parts)


def parse_rid(rid: str) -> Dict[str, Optional[str]]:
    """
    Inverse of generate_rid.

    Returns:
        Dict with project_id, env_type, env_name and revision

    Raises:
        ValidationError: If rid was not produced by generate_rid
    """
    fields: Dict[str, Optional[str]] = {"revision": None}
    pos = 0
    while pos < len(rid):
        m = _SEGMENT.match(rid, pos)
        if not m:
            raise ValidationError(f"malformed resource identifier: {rid}")
        key, length = m.group(1), int(m.group(2))
        start = m.end()
        value = rid[start:start + length]
        if len(value) != length:
            raise ValidationError(f"malformed resource identifier: {rid}")
        try:
            text = _unescape(value)
        except ValueError as e:
            raise ValidationError(f"malformed escape in resource identifier: {rid}") from e
        if key == "p":
            fields["project_id"] = text
        elif key in _KEY_TYPES:
            fields["env_type"] = _KEY_TYPES[key]
            fields["env_name"] = text
        elif key == "r":
            fields["revision"] = text
        else:
            raise ValidationError(f"unknown segment '{key}' in {rid}")
        pos = start + length
        if pos < len(rid):
            if not rid.startswith(_SEPARATOR, pos):
                raise ValidationError(f"malformed resource identifier: {rid}")
            pos += len(_SEPARATOR)

    if "project_id" not in fields or "env_name" not in fields:
        raise ValidationError(f"incomplete resource identifier: {rid}")
    return fields


def short_name(rid: str, prefix: str = "es", length: int = 32) -> str:
    """Stable, length-limited name for resources like classic load balancers."""
    digest = hashlib.sha256(rid.encode("utf-8")).hexdigest()
    return f"{prefix}-{digest}"[:length]


def _label(value: str) -> str:
    return _LABEL_UNSAFE.sub("-", value.lower()).strip("-")


def _disambiguate(label: str, project_id: str, env_name: str, env_type: str) -> str:
    """
    Keep ``label`` when both ids were already valid DNS labels. Otherwise
    sanitizing may have merged distinct names (``feature/x`` and ``feature-x``),
    so a hash of the revision independent identifier is appended.
    """
    if _label(project_id) == project_id and _label(env_name) == env_name:
        return label
    binding = generate_rid(project_id, env_name, env_type=env_type)
    return f"{label}-{short_name(binding, prefix='h', length=8)[2:]}"


def deployment_subdomain(project_id: str, deployment: str) -> str:
    """The master deployment owns the bare project subdomain."""
    validate_ids(project_id, deployment)
    if deployment == "master":
        label = _label(project_id)
    else:
        label = f"{_label(deployment)}-{_label(project_id)}"
    return _disambiguate(label, project_id, deployment, DEPLOYMENT)


def pr_subdomain(project_id: str, pr: str) -> str:
    validate_ids(project_id, pr)
    return _disambiguate(f"pr-{_label(pr)}-{_label(project_id)}", project_id, pr, PULL_REQUEST)


def subdomain(project_id: str, env_name: str, env_type: str = DEPLOYMENT) -> str:
    if env_type == PULL_REQUEST:
        return pr_subdomain(project_id, env_name)
    return deployment_subdomain(project_id, env_name)
