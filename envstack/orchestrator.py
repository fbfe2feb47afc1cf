"""
Stack orchestrator: create, update and destroy Deployments and Pull-Request
environments, plus the project-level operations they depend on.

No environment state is kept between calls. Every workflow starts by asking
AWS (through resource tags) what currently exists.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from . import rid
from . import tags as T
from .events import EventTypes, emit_event
from .errors import EnvStackError, NotFoundError, ProvisionError, TeardownError, ValidationError
from .models import CreationRequest, Environment, EnvironmentSummary, StackState
from .steps import BEST_EFFORT, Step, run_steps

logger = logging.getLogger(__name__)


def summarize(instances: Iterable[Dict[str, Any]]) -> List[EnvironmentSummary]:
    """Group tagged instances into the environments they belong to."""
    found: Dict[Environment, EnvironmentSummary] = {}
    for instance in instances:
        tags = T.from_aws(instance.get("Tags"))
        env = T.env_from_tags(tags)
        if env is None:
            continue
        summary = found.setdefault(env, EnvironmentSummary(env, StackState.READY))
        summary.instance_ids.append(instance["InstanceId"])
        stack = tags.get(T.STACK_TAG)
        if stack and stack not in summary.stack_names:
            summary.stack_names.append(stack)
        expires_at = T.get_expiry(tags)
        if expires_at and (summary.expires_at is None or expires_at < summary.expires_at):
            summary.expires_at = expires_at
    return list(found.values())


class StackOrchestrator:
    """
    Top-level lifecycle workflows.

    Args:
        context: EnvironmentContext (settings, home and the bootstrap cache)
        journal: Append lifecycle events to the NDJSON journal
    """

    def __init__(self, context, journal: bool = True):
        self.context = context
        self.journal = journal

    # -- helpers ----------------------------------------------------------

    def _emit(self, env: Environment, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        logger.info(f"{env.stack_name}: {event_type} {data or ''}".rstrip())
        if not self.journal:
            return
        try:
            emit_event(self.context.home, env, event_type, data)
        except OSError as e:
            logger.warning(f"Could not write journal for {env.binding_name}: {e}")

    def _tags(self, env: Environment) -> Dict[str, str]:
        tags = T.base_tags(env)
        if env.is_pr:
            tags = T.add_ttl_tags(tags, self.context.settings.pr_ttl_hours)
        return tags

    def _failed(self, env: Environment, error: EnvStackError) -> None:
        data = {"error": str(error)}
        if isinstance(error, ProvisionError):
            data["step"] = error.step
        self._emit(env, EventTypes.ERROR, data)

    async def describe(self, env: Environment) -> EnvironmentSummary:
        """Current state of ``env``, derived from tagged instances."""
        state = await self.context.state()
        live = await state.compute.discover(env)
        for summary in summarize(live):
            if summary.env == env.with_revision(None):
                return summary
        return EnvironmentSummary(env.with_revision(None), StackState.ABSENT)

    # -- environment workflows --------------------------------------------

    async def create(self, project_id: str, name: str, app_def: Dict[str, Any],
                     revision: Optional[str] = None, env_type: str = rid.DEPLOYMENT,
                     ssh_keys: Optional[List[str]] = None) -> str:
        """
        Provision an environment and bind its domain.

        Retrying after a failure is safe: every step finds what an earlier
        attempt created before creating anything.

        Returns:
            The environment's domain name

        Raises:
            ValidationError: Missing identifiers (before any AWS call)
            BootstrapError: Account context not discoverable
            ProvisionError: A mandatory step failed
        """
        env = Environment(project_id, name, env_type, revision)
        state = await self.context.state()

        current = await self.describe(env)
        if current.state is StackState.READY:
            logger.info(f"{env.binding_name} already has instances, re-running create idempotently")

        creq = CreationRequest(env, app_def=app_def or {}, ssh_keys=ssh_keys, tags=self._tags(env))

        async def scaffold(c: CreationRequest) -> None:
            c.scaffold = await state.network.find_or_create(project_id)

        async def compute(c: CreationRequest) -> None:
            await state.compute.create_stack(c)

        async def bind(c: CreationRequest) -> None:
            c.domain = await state.dns.bind(env, c.elb_dns)

        self._emit(env, EventTypes.PROVISIONING, {"revision": revision})
        try:
            await run_steps([
                Step("scaffold", scaffold),
                Step("compute", compute),
                Step("dns", bind),
            ], creq)
        except EnvStackError as e:
            self._failed(env, e)
            self._emit(env, EventTypes.ABSENT)
            raise
        self._emit(env, EventTypes.READY, {"domain": creq.domain, "instances": creq.instance_ids})
        return creq.domain

    async def update(self, project_id: str, name: str, app_def: Dict[str, Any],
                     revision: Optional[str] = None, env_type: str = rid.DEPLOYMENT,
                     ssh_keys: Optional[List[str]] = None) -> str:
        """
        Replace a READY environment's compute generation, keeping its load
        balancer and DNS record.

        Raises:
            ValidationError: The environment does not exist
            ProvisionError: A mandatory step failed
        """
        env = Environment(project_id, name, env_type, revision)
        state = await self.context.state()

        current = await self.describe(env)
        if current.state is not StackState.READY:
            raise ValidationError(f"{env.binding_name} does not exist; create it first")

        creq = CreationRequest(env, app_def=app_def or {}, ssh_keys=ssh_keys, tags=self._tags(env))

        async def scaffold(c: CreationRequest) -> None:
            try:
                c.scaffold = await state.network.find(project_id)
            except NotFoundError as e:
                raise ProvisionError("scaffold", e, c) from e

        async def compute(c: CreationRequest) -> None:
            await state.compute.update_stack(c, current.instance_ids, current.stack_names)

        async def domain(c: CreationRequest) -> None:
            c.domain = await state.dns.domain_for(env)

        self._emit(env, EventTypes.UPDATING, {"revision": revision,
                                              "previous": current.stack_names})
        try:
            await run_steps([
                Step("scaffold", scaffold),
                Step("compute", compute),
                Step("domain", domain),
            ], creq)
        except EnvStackError as e:
            self._failed(env, e)
            raise
        for warning in creq.warnings:
            self._emit(env, EventTypes.WARNING, {"step": warning.step, "error": str(warning.cause)})
        self._emit(env, EventTypes.READY, {"domain": creq.domain, "instances": creq.instance_ids})
        return creq.domain

    async def create_or_update(self, project_id: str, name: str, app_def: Dict[str, Any],
                               revision: Optional[str] = None, env_type: str = rid.DEPLOYMENT,
                               ssh_keys: Optional[List[str]] = None) -> str:
        env = Environment(project_id, name, env_type, revision)
        current = await self.describe(env)
        if current.state is StackState.READY:
            return await self.update(project_id, name, app_def, revision, env_type, ssh_keys)
        return await self.create(project_id, name, app_def, revision, env_type, ssh_keys)

    async def destroy(self, project_id: str, name: str,
                      env_type: str = rid.DEPLOYMENT) -> CreationRequest:
        """
        Tear an environment down. Safe on environments that never existed.

        The DNS record goes first and its failure is tolerated; compute
        teardown runs regardless.

        Returns:
            The teardown request, with any best-effort failures on ``warnings``

        Raises:
            TeardownError: Container deregistration or instance termination failed
        """
        env = Environment(project_id, name, env_type)
        state = await self.context.state()
        creq = CreationRequest(env, elb_name=env.elb_name)

        async def unbind(c: CreationRequest) -> None:
            await state.dns.unbind(env)

        async def compute(c: CreationRequest) -> None:
            result = await state.compute.destroy_stack(env)
            c.instance_ids = result.instance_ids
            c.completed.extend(result.completed)
            c.warnings.extend(result.warnings)

        self._emit(env, EventTypes.DESTROYING)
        try:
            await run_steps([
                Step("dns", unbind, BEST_EFFORT),
                Step("compute", compute),
            ], creq, error_cls=TeardownError)
        except EnvStackError as e:
            self._failed(env, e)
            raise
        for warning in creq.warnings:
            self._emit(env, EventTypes.WARNING, {"step": warning.step, "error": str(warning.cause)})
        self._emit(env, EventTypes.ABSENT, {"instances": creq.instance_ids})
        return creq

    # -- deployments and pull requests --------------------------------------

    async def create_deployment(self, project_id: str, deployment: str, sha: Optional[str],
                                app_def: Dict[str, Any], ssh_keys: Optional[List[str]] = None) -> str:
        return await self.create(project_id, deployment, app_def, sha, rid.DEPLOYMENT, ssh_keys)

    async def update_deployment(self, project_id: str, deployment: str, sha: Optional[str],
                                app_def: Dict[str, Any], ssh_keys: Optional[List[str]] = None) -> str:
        return await self.update(project_id, deployment, app_def, sha, rid.DEPLOYMENT, ssh_keys)

    async def destroy_deployment(self, project_id: str, deployment: str) -> CreationRequest:
        return await self.destroy(project_id, deployment, rid.DEPLOYMENT)

    async def create_pr(self, project_id: str, pr: str, app_def: Dict[str, Any],
                        ssh_keys: Optional[List[str]] = None) -> str:
        return await self.create(project_id, str(pr), app_def, None, rid.PULL_REQUEST, ssh_keys)

    async def update_pr(self, project_id: str, pr: str, app_def: Dict[str, Any],
                        ssh_keys: Optional[List[str]] = None) -> str:
        return await self.update(project_id, str(pr), app_def, None, rid.PULL_REQUEST, ssh_keys)

    async def destroy_pr(self, project_id: str, pr: str) -> CreationRequest:
        return await self.destroy(project_id, str(pr), rid.PULL_REQUEST)

    # -- projects -----------------------------------------------------------

    async def create_project(self, project_id: str):
        state = await self.context.state()
        return await state.network.find_or_create(project_id)

    async def destroy_project(self, project_id: str) -> bool:
        """
        Raises:
            ProjectInUseError: Environments still exist under the project
        """
        state = await self.context.state()
        return await state.network.destroy(project_id)

    async def list_projects(self) -> List[str]:
        state = await self.context.state()
        return await state.network.list_projects()

    async def describe_project(self, project_id: str) -> List[EnvironmentSummary]:
        rid.validate_project_id(project_id)
        state = await self.context.state()
        live = await state.compute.instances.describe(T.tag_filters({T.PROJECT_TAG: project_id}))
        return summarize(live)
