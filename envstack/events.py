"""
Lifecycle journal in NDJSON format.

The journal is an audit trail only: the orchestrator never reads it back to
decide anything, the tag index stays the source of truth.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import rid
from .errors import ValidationError


class EventTypes:
    PROVISIONING = "PROVISIONING"
    READY = "READY"
    UPDATING = "UPDATING"
    DESTROYING = "DESTROYING"
    ABSENT = "ABSENT"
    ERROR = "ERROR"
    WARNING = "WARNING"
    SWEEP = "SWEEP"


def journal_path(home: Path, env) -> Path:
    """<home>/events/<project>/<binding>.ndjson, one file per environment."""
    return Path(home) / "events" / rid.escape(env.project_id) / f"{env.binding_name}.ndjson"


def emit_event(home: Path, env, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
    """
    Append an event to the environment's journal.

    Args:
        home: envstack home directory
        env: Environment the event belongs to
        event_type: One of EventTypes
        data: Event data
    """
    path = journal_path(home, env)
    path.parent.mkdir(parents=True, exist_ok=True)

    event = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "type": event_type,
        "stack": env.stack_name,
        "data": data or {},
    }

    with open(path, "a") as f:
        f.write(json.dumps(event) + "\n")
        f.flush()


def read_events(home: Path, env) -> List[Dict[str, Any]]:
    """Read all events of an environment, skipping malformed lines."""
    path = journal_path(home, env)
    if not path.exists():
        return []

    events = []
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
    return events


def list_journals(home: Path, project_id: Optional[str] = None) -> List[Dict[str, str]]:
    """Environments that have a journal, as parsed identifiers."""
    root = Path(home) / "events"
    if not root.exists():
        return []
    pattern = f"{rid.escape(project_id)}/*.ndjson" if project_id else "*/*.ndjson"
    found = []
    for path in sorted(root.glob(pattern)):
        try:
            fields = rid.parse_rid(path.stem)
        except ValidationError:
            continue
        if project_id is None or fields["project_id"] == project_id:
            found.append(fields)
    return found
