"""
Per-project network scaffold: subnet, route table association and ACL.
"""

import asyncio
import logging
from typing import List

from . import tags as T
from .aws import Acls, Instances, RouteTables, Subnets
from .errors import AlreadyExistsError, NotFoundError, ProjectInUseError, ProvisionError
from .models import ScaffoldDescriptor
from .rid import validate_project_id

logger = logging.getLogger(__name__)


class NetworkScaffoldManager:
    """Find-or-create and destroy the networking every environment of a project shares."""

    def __init__(self, vpc_id: str, subnets: Subnets, acls: Acls,
                 routes: RouteTables, instances: Instances):
        self.vpc_id = vpc_id
        self.subnets = subnets
        self.acls = acls
        self.routes = routes
        self.instances = instances

    async def find(self, project_id: str) -> ScaffoldDescriptor:
        """
        Raises:
            NotFoundError: If the project has no scaffold
        """
        subnet = await self.subnets.find(project_id)
        subnet_id = subnet["SubnetId"]
        acl_id, route_table_id = await asyncio.gather(
            self.acls.find_for_subnet(subnet_id),
            self.routes.find_default(),
        )
        return ScaffoldDescriptor(project_id, self.vpc_id, subnet_id, acl_id, route_table_id)

    async def find_or_create(self, project_id: str) -> ScaffoldDescriptor:
        """
        Return the project's scaffold, creating it when absent.

        Concurrent callers may both try to create; the loser's subnet create
        collides, it re-queries and adopts the winner's scaffold.
        """
        validate_project_id(project_id)
        try:
            return await self.find(project_id)
        except NotFoundError:
            logger.info(f"No scaffold for project {project_id}, creating one")

        try:
            route_table_id, acl_id = await asyncio.gather(
                self.routes.find_default(),
                self.acls.create(project_id),
            )
        except Exception as e:
            raise ProvisionError("scaffold-acl", e) from e

        try:
            subnet = await self.subnets.create(project_id)
        except AlreadyExistsError as e:
            return await self._adopt(project_id, acl_id, e)
        except Exception as e:
            await self._discard_acl(acl_id)
            raise ProvisionError("scaffold-subnet", e) from e

        subnet_id = subnet["SubnetId"]
        try:
            await self.routes.associate(route_table_id, subnet_id)
            await self.acls.associate(acl_id, subnet_id)
        except Exception as e:
            raise ProvisionError("scaffold-associate", e) from e

        return ScaffoldDescriptor(project_id, self.vpc_id, subnet_id, acl_id, route_table_id)

    async def _adopt(self, project_id: str, acl_id: str, cause: Exception) -> ScaffoldDescriptor:
        try:
            scaffold = await self.find(project_id)
        except NotFoundError:
            await self._discard_acl(acl_id)
            raise ProvisionError("scaffold-subnet", cause) from cause
        if scaffold.acl_id != acl_id:
            await self._discard_acl(acl_id)
        logger.info(f"Adopted existing scaffold {scaffold.subnet_id} for project {project_id}")
        return scaffold

    async def _discard_acl(self, acl_id: str) -> None:
        try:
            await self.acls.destroy(acl_id)
        except Exception as e:
            logger.warning(f"Could not delete unused network ACL {acl_id}: {e}")

    async def destroy(self, project_id: str) -> bool:
        """
        Destroy the scaffold; False when there was none.

        Raises:
            ProjectInUseError: If environments still exist under the project
        """
        validate_project_id(project_id)
        live = await self.instances.describe(T.tag_filters({T.PROJECT_TAG: project_id}))
        if live:
            raise ProjectInUseError(
                f"Cannot destroy project {project_id} while {len(live)} environment instance(s) exist")

        try:
            scaffold = await self.find(project_id)
        except NotFoundError:
            return False

        await self.subnets.destroy(scaffold.subnet_id)
        if scaffold.acl_id:
            await self.acls.destroy(scaffold.acl_id)
        logger.info(f"Destroyed scaffold of project {project_id}")
        return True

    async def list_projects(self) -> List[str]:
        projects = []
        for subnet in await self.subnets.describe():
            project_id = T.from_aws(subnet.get("Tags")).get(T.PROJECT_TAG)
            if project_id and project_id not in projects:
                projects.append(project_id)
        return projects
