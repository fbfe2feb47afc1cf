"""
Compute stack provisioning: security group, cluster, instances, load balancer,
task/service, and the wiring between them.
"""

import asyncio
import logging
from typing import Iterable, List, Optional

from . import tags as T
from .aws import Ecs, Elb, Instances, SecurityGroups
from .config import Settings
from .errors import NotFoundError, ProvisionError, TeardownError
from .models import CreationRequest, Environment
from .steps import BEST_EFFORT, MANDATORY, Step, parallel, run_steps

logger = logging.getLogger(__name__)


async def ignore_missing(coro):
    """Await ``coro``; a missing resource counts as success."""
    try:
        return await coro
    except NotFoundError:
        return None


def render_user_data(cluster: str, ssh_keys: Optional[Iterable[str]] = None) -> str:
    """Boot script joining the instance to the ECS cluster."""
    lines = [
        "#!/bin/bash",
        f"echo ECS_CLUSTER={cluster} >> /etc/ecs/ecs.config",
    ]
    keys = [k.strip() for k in (ssh_keys or []) if k and k.strip()]
    if keys:
        lines.append("mkdir -p /home/ec2-user/.ssh")
        for key in keys:
            lines.append(f"echo '{key}' >> /home/ec2-user/.ssh/authorized_keys")
        lines.append("chown -R ec2-user:ec2-user /home/ec2-user/.ssh")
        lines.append("chmod 600 /home/ec2-user/.ssh/authorized_keys")
    return "\n".join(lines) + "\n"


class ComputeStackProvisioner:
    """Creates, updates and destroys the compute resources of an environment."""

    def __init__(self, settings: Settings, security_groups: SecurityGroups, ecs: Ecs,
                 instances: Instances, elb: Elb):
        self.settings = settings
        self.security_groups = security_groups
        self.ecs = ecs
        self.instances = instances
        self.elb = elb

    # -- individual steps -------------------------------------------------

    async def _security_group(self, creq: CreationRequest) -> None:
        # one group per environment, shared by every generation and the load balancer
        creq.group_id = await self.security_groups.create(
            creq.env.binding_name, creq.tags,
            ports=tuple(sorted({22, 80, 443, self.settings.container_port})))

    async def _cluster(self, creq: CreationRequest) -> None:
        creq.cluster_arn = await self.ecs.create_cluster(creq.env.stack_name, creq.tags)

    async def _instances(self, creq: CreationRequest) -> None:
        stack = creq.env.stack_name
        existing = await self.instances.describe(T.tag_filters({T.STACK_TAG: stack}))
        if existing:
            creq.instance_ids = [i["InstanceId"] for i in existing]
            logger.info(f"{stack}: reusing instances {creq.instance_ids}")
            return
        if not self.settings.image_id:
            raise ProvisionError("instances", ValueError("no image_id configured"), creq)
        creq.instance_ids = await self.instances.launch(
            image_id=self.settings.image_id,
            instance_type=self.settings.instance_type,
            count=self.settings.instance_count,
            subnet_id=creq.subnet_id,
            group_id=creq.group_id,
            user_data=render_user_data(stack, creq.ssh_keys),
            tags={**creq.tags, T.NAME_TAG: stack},
            key_name=self.settings.key_name,
            instance_profile=self.settings.instance_profile,
        )

    async def _create_load_balancer(self, creq: CreationRequest) -> None:
        creq.elb_name = creq.env.elb_name
        creq.elb_dns = await self.elb.create(
            creq.elb_name, creq.subnet_id, creq.group_id, creq.tags,
            instance_port=self.settings.container_port,
            ssl_certificate_id=self.settings.ssl_certificate_id)

    async def _existing_load_balancer(self, creq: CreationRequest) -> None:
        creq.elb_name = creq.env.elb_name
        described = await self.elb.describe(creq.elb_name)
        creq.elb_dns = described["DNSName"]

    async def _task(self, creq: CreationRequest) -> None:
        stack = creq.env.stack_name
        creq.task_definition_arn = await self.ecs.register_task_definition(
            stack, creq.app_def, creq.tags)
        creq.service_arn = await self.ecs.create_or_update_service(
            stack, stack, creq.task_definition_arn,
            int(creq.app_def.get("desiredCount", 1)), creq.tags)

    async def _register(self, creq: CreationRequest) -> None:
        await self.elb.register(creq.elb_name, creq.instance_ids)

    # -- teardown helpers -------------------------------------------------

    async def _deregister_containers(self, stack: str) -> None:
        arns = await ignore_missing(self.ecs.list_container_instances(stack)) or []
        await asyncio.gather(*(
            ignore_missing(self.ecs.deregister_container_instance(stack, arn)) for arn in arns
        ))

    async def _destroy_task(self, stack: str) -> None:
        await ignore_missing(self.ecs.delete_service(stack, stack))
        await ignore_missing(self.ecs.deregister_task_definitions(stack))

    async def _destroy_cluster(self, stack: str) -> None:
        await ignore_missing(self.ecs.delete_cluster(stack))

    def _per_stack(self, name: str, fn, stacks: List[str], policy: str) -> Step:
        return parallel(name, [
            Step(f"{name}:{stack}", lambda creq, stack=stack: fn(stack), policy)
            for stack in stacks
        ], policy)

    # -- workflows --------------------------------------------------------

    def _build_steps(self, load_balancer: Optional[Step]) -> List[Step]:
        launch = [Step("instances", self._instances)]
        if load_balancer is not None:
            launch.append(load_balancer)
        return [
            parallel("security-group+cluster", [
                Step("security-group", self._security_group),
                Step("cluster", self._cluster),
            ]),
            parallel("instances+load-balancer", launch),
            Step("task", self._task),
            Step("register-instances", self._register),
        ]

    async def create_stack(self, creq: CreationRequest) -> CreationRequest:
        """
        Provision a new stack for ``creq.env``.

        ``creq.scaffold`` must already hold the project's network scaffold.

        Raises:
            ProvisionError: The first failed step, with the partial request
        """
        if creq.scaffold is None:
            raise ProvisionError("scaffold", NotFoundError("project scaffold not resolved"), creq)
        steps = self._build_steps(Step("load-balancer", self._create_load_balancer))
        await run_steps(steps, creq)
        logger.info(f"{creq.env.stack_name}: stack created ({creq.elb_dns})")
        return creq

    async def update_stack(self, creq: CreationRequest, existing_instance_ids: List[str],
                           previous_stacks: Optional[List[str]] = None) -> CreationRequest:
        """
        Replace the running generation with a new one behind the same load balancer.

        Teardown of the old generation is best-effort; the load balancer is
        reused and never re-created.
        """
        if creq.scaffold is None:
            raise ProvisionError("scaffold", NotFoundError("project scaffold not resolved"), creq)
        stack = creq.env.stack_name
        # a redeploy of the same stack keeps its cluster and updates the service in place
        old_stacks = [s for s in (previous_stacks or []) if s != stack]

        async def deregister(c: CreationRequest) -> None:
            await ignore_missing(self.elb.deregister(c.elb_name, existing_instance_ids))

        async def terminate(c: CreationRequest) -> None:
            await self.instances.terminate(existing_instance_ids)

        teardown = [
            Step("load-balancer", self._existing_load_balancer),
            Step("deregister-instances", deregister, BEST_EFFORT),
            self._per_stack("old-containers", self._deregister_containers, old_stacks, BEST_EFFORT),
            Step("old-instances", terminate, BEST_EFFORT),
            self._per_stack("old-task", self._destroy_task, old_stacks, BEST_EFFORT),
            self._per_stack("old-cluster", self._destroy_cluster, old_stacks, BEST_EFFORT),
        ]
        steps = teardown + self._build_steps(None)
        await run_steps(steps, creq)
        logger.info(f"{stack}: stack updated ({len(creq.warnings)} teardown warning(s))")
        return creq

    async def discover(self, env: Environment):
        """Live instances of the environment, any generation."""
        live = await self.instances.describe(T.env_filters(env))
        return [i for i in live if T.matches(T.from_aws(i.get("Tags")), env)]

    async def destroy_stack(self, env: Environment) -> CreationRequest:
        """
        Tear down every generation of the environment's compute stack.

        Container deregistration and instance termination are mandatory;
        everything after them is best-effort.

        Raises:
            TeardownError: A mandatory step failed
        """
        live = await self.discover(env)
        stacks: List[str] = []
        for instance in live:
            stack = T.from_aws(instance.get("Tags")).get(T.STACK_TAG)
            if stack and stack not in stacks:
                stacks.append(stack)
        if env.stack_name not in stacks:
            stacks.append(env.stack_name)

        creq = CreationRequest(env, instance_ids=[i["InstanceId"] for i in live],
                               elb_name=env.elb_name)

        async def terminate(c: CreationRequest) -> None:
            await self.instances.terminate(c.instance_ids)

        async def delete_load_balancer(c: CreationRequest) -> None:
            await ignore_missing(self.elb.delete(c.elb_name))

        async def delete_security_group(c: CreationRequest) -> None:
            await ignore_missing(self.security_groups.destroy(c.env.binding_name))

        steps = [
            self._per_stack("containers", self._deregister_containers, stacks, MANDATORY),
            Step("instances", terminate),
            Step("load-balancer", delete_load_balancer, BEST_EFFORT),
            self._per_stack("task", self._destroy_task, stacks, BEST_EFFORT),
            self._per_stack("cluster", self._destroy_cluster, stacks, BEST_EFFORT),
            Step("security-group", delete_security_group, BEST_EFFORT),
        ]
        await run_steps(steps, creq, error_cls=TeardownError)
        logger.info(f"{env.binding_name}: stack destroyed ({len(creq.warnings)} warning(s))")
        return creq
