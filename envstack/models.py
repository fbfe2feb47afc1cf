"""
Data models shared by the managers and the orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from . import rid
from .errors import TeardownWarning


class StackState(Enum):
    """Lifecycle states of an environment."""
    ABSENT = "absent"
    PROVISIONING = "provisioning"
    READY = "ready"
    UPDATING = "updating"
    DESTROYING = "destroying"


@dataclass(frozen=True)
class Environment:
    """A Deployment or Pull-Request instance of a project's application."""
    project_id: str
    name: str                       # deployment branch or PR number
    env_type: str = rid.DEPLOYMENT  # rid.DEPLOYMENT | rid.PULL_REQUEST
    revision: Optional[str] = None  # build identifier, e.g. commit sha

    def __post_init__(self):
        rid.validate_ids(self.project_id, self.name)

    @property
    def stack_name(self) -> str:
        """Names the resources of this generation (cluster, task family, instances)."""
        return rid.generate_rid(self.project_id, self.name, self.revision, self.env_type)

    @property
    def binding_name(self) -> str:
        """Revision independent; names the resources that survive updates."""
        return rid.generate_rid(self.project_id, self.name, None, self.env_type)

    @property
    def elb_name(self) -> str:
        return rid.short_name(self.binding_name)

    @property
    def subdomain(self) -> str:
        return rid.subdomain(self.project_id, self.name, self.env_type)

    @property
    def is_pr(self) -> bool:
        return self.env_type == rid.PULL_REQUEST

    def with_revision(self, revision: Optional[str]) -> "Environment":
        return Environment(self.project_id, self.name, self.env_type, revision)


@dataclass(frozen=True)
class ScaffoldDescriptor:
    """Per-project networking shared by every environment of the project."""
    project_id: str
    vpc_id: str
    subnet_id: str
    acl_id: Optional[str]
    route_table_id: Optional[str]


@dataclass
class CreationRequest:
    """
    Accumulator threaded through every step of a workflow.

    Each step reads what earlier steps produced and writes its own output,
    e.g. the security group id written by one step feeds instance launch.
    """
    env: Environment
    app_def: Dict[str, Any] = field(default_factory=dict)
    ssh_keys: Optional[List[str]] = None
    tags: Dict[str, str] = field(default_factory=dict)

    scaffold: Optional[ScaffoldDescriptor] = None
    group_id: Optional[str] = None
    cluster_arn: Optional[str] = None
    instance_ids: List[str] = field(default_factory=list)
    elb_name: Optional[str] = None
    elb_dns: Optional[str] = None
    task_definition_arn: Optional[str] = None
    service_arn: Optional[str] = None
    domain: Optional[str] = None

    completed: List[str] = field(default_factory=list)
    warnings: List[TeardownWarning] = field(default_factory=list)

    @property
    def subnet_id(self) -> Optional[str]:
        return self.scaffold.subnet_id if self.scaffold else None


@dataclass
class EnvironmentSummary:
    """An environment discovered from instance tags."""
    env: Environment
    state: StackState
    instance_ids: List[str] = field(default_factory=list)
    stack_names: List[str] = field(default_factory=list)
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.env.project_id,
            "name": self.env.name,
            "env_type": self.env.env_type,
            "state": self.state.value,
            "instance_ids": self.instance_ids,
            "stack_names": self.stack_names,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
