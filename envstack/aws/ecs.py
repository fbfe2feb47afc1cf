"""
ECS facade: clusters, container instances, task definitions and services.
"""

import logging
from typing import Any, Dict, List, Optional

from ..errors import NotFoundError
from .common import call, paginate

logger = logging.getLogger(__name__)


def to_ecs_tags(tags: Dict[str, str]) -> List[Dict[str, str]]:
    # ECS uses lower-case keys, unlike EC2/ELB
    return [{"key": k, "value": v} for k, v in tags.items()]


class Ecs:
    def __init__(self, ecs):
        self.ecs = ecs

    async def create_cluster(self, name: str, tags: Dict[str, str]) -> str:
        # CreateCluster returns the existing cluster when the name is taken
        result = await call(self.ecs.create_cluster, clusterName=name, tags=to_ecs_tags(tags))
        return result["cluster"]["clusterArn"]

    async def delete_cluster(self, name: str) -> None:
        await call(self.ecs.delete_cluster, cluster=name)
        logger.info(f"Deleted cluster {name}")

    async def list_container_instances(self, cluster: str) -> List[str]:
        """
        Raises:
            NotFoundError: If the cluster does not exist
        """
        return await paginate(self.ecs, "list_container_instances", "containerInstanceArns",
                              cluster=cluster)

    async def deregister_container_instance(self, cluster: str, arn: str) -> None:
        await call(self.ecs.deregister_container_instance, cluster=cluster,
                   containerInstance=arn, force=True)

    async def register_task_definition(self, family: str, app_def: Dict[str, Any],
                                       tags: Dict[str, str]) -> str:
        containers = app_def.get("containerDefinitions") or app_def.get("tasks") or []
        if not containers:
            raise ValueError(f"Application descriptor for {family} has no container definitions")
        params: Dict[str, Any] = {
            "family": family,
            "containerDefinitions": containers,
            "tags": to_ecs_tags(tags),
        }
        for key in ("volumes", "networkMode", "taskRoleArn", "executionRoleArn"):
            if key in app_def:
                params[key] = app_def[key]
        result = await call(self.ecs.register_task_definition, **params)
        return result["taskDefinition"]["taskDefinitionArn"]

    async def deregister_task_definitions(self, family: str) -> int:
        arns = await paginate(self.ecs, "list_task_definitions", "taskDefinitionArns",
                              familyPrefix=family, status="ACTIVE")
        for arn in arns:
            await call(self.ecs.deregister_task_definition, taskDefinition=arn)
        return len(arns)

    async def find_service(self, cluster: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            result = await call(self.ecs.describe_services, cluster=cluster, services=[name])
        except NotFoundError:
            return None
        for service in result.get("services", []):
            if service.get("status") == "ACTIVE":
                return service
        return None

    async def create_or_update_service(self, cluster: str, name: str, task_definition: str,
                                       desired_count: int, tags: Dict[str, str]) -> str:
        existing = await self.find_service(cluster, name)
        if existing:
            result = await call(self.ecs.update_service, cluster=cluster, service=name,
                                taskDefinition=task_definition, desiredCount=desired_count)
        else:
            result = await call(self.ecs.create_service, cluster=cluster, serviceName=name,
                                taskDefinition=task_definition, desiredCount=desired_count,
                                launchType="EC2", tags=to_ecs_tags(tags))
        return result["service"]["serviceArn"]

    async def delete_service(self, cluster: str, name: str) -> None:
        await call(self.ecs.delete_service, cluster=cluster, service=name, force=True)
        logger.info(f"Deleted service {name} on {cluster}")
