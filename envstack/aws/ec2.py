"""
EC2 facades: VPC, route tables, network ACLs, subnets, security groups, instances.
"""

import asyncio
import ipaddress
import logging
from typing import Dict, List, Optional

from .. import tags as T
from ..errors import AlreadyExistsError, NotFoundError
from .common import call, paginate, wait

logger = logging.getLogger(__name__)

LIVE_INSTANCE_STATES = ["pending", "running", "stopping", "stopped"]

# ports opened on every environment security group
DEFAULT_INGRESS_PORTS = (22, 80, 443)


def tag_specifications(resource_type: str, tags: Dict[str, str]) -> List[Dict[str, object]]:
    return [{"ResourceType": resource_type, "Tags": T.to_aws(tags)}]


class Vpc:
    def __init__(self, ec2):
        self.ec2 = ec2

    async def find_managed(self) -> Dict[str, str]:
        """
        The VPC that hosts every managed project.

        Raises:
            NotFoundError: If no VPC carries the managed tag
        """
        result = await call(self.ec2.describe_vpcs,
                            Filters=[{"Name": f"tag:{T.MANAGED_TAG}", "Values": ["true"]}])
        vpcs = result.get("Vpcs", [])
        if not vpcs:
            raise NotFoundError(f"No VPC tagged {T.MANAGED_TAG}=true")
        return vpcs[0]


class RouteTables:
    def __init__(self, ec2, vpc_id: str):
        self.ec2 = ec2
        self.vpc_id = vpc_id

    async def find_default(self) -> str:
        """Id of the VPC's main route table."""
        result = await call(self.ec2.describe_route_tables, Filters=[
            {"Name": "vpc-id", "Values": [self.vpc_id]},
            {"Name": "association.main", "Values": ["true"]},
        ])
        tables = result.get("RouteTables", [])
        if not tables:
            raise NotFoundError(f"No main route table in {self.vpc_id}")
        return tables[0]["RouteTableId"]

    async def associate(self, route_table_id: str, subnet_id: str) -> str:
        result = await call(self.ec2.associate_route_table,
                            RouteTableId=route_table_id, SubnetId=subnet_id)
        return result["AssociationId"]


class Acls:
    def __init__(self, ec2, vpc_id: str):
        self.ec2 = ec2
        self.vpc_id = vpc_id

    async def create(self, project_id: str) -> str:
        """Create a project ACL that allows all traffic in and out."""
        result = await call(self.ec2.create_network_acl, VpcId=self.vpc_id,
                            TagSpecifications=tag_specifications(
                                "network-acl", T.project_tags(project_id)))
        acl_id = result["NetworkAcl"]["NetworkAclId"]
        for egress in (False, True):
            await call(self.ec2.create_network_acl_entry, NetworkAclId=acl_id,
                       RuleNumber=100, Protocol="-1", RuleAction="allow",
                       Egress=egress, CidrBlock="0.0.0.0/0")
        logger.info(f"Created network ACL {acl_id} for project {project_id}")
        return acl_id

    async def _association(self, subnet_id: str) -> Dict[str, str]:
        result = await call(self.ec2.describe_network_acls, Filters=[
            {"Name": "association.subnet-id", "Values": [subnet_id]},
        ])
        for acl in result.get("NetworkAcls", []):
            for assoc in acl.get("Associations", []):
                if assoc.get("SubnetId") == subnet_id:
                    return assoc
        raise NotFoundError(f"No ACL association found for subnet {subnet_id}")

    async def find_for_subnet(self, subnet_id: str) -> Optional[str]:
        """The ACL currently guarding ``subnet_id``."""
        try:
            assoc = await self._association(subnet_id)
        except NotFoundError:
            return None
        return assoc["NetworkAclId"]

    async def associate(self, acl_id: str, subnet_id: str) -> str:
        """Move the subnet from its current ACL to ``acl_id``."""
        assoc = await self._association(subnet_id)
        replaced = await call(self.ec2.replace_network_acl_association,
                              AssociationId=assoc["NetworkAclAssociationId"],
                              NetworkAclId=acl_id)
        return replaced["NewAssociationId"]

    async def destroy(self, acl_id: str) -> None:
        await call(self.ec2.delete_network_acl, NetworkAclId=acl_id)


class Subnets:
    def __init__(self, ec2, vpc_id: str, prefix: int = 24):
        self.ec2 = ec2
        self.vpc_id = vpc_id
        self.prefix = prefix

    async def describe(self) -> List[Dict[str, object]]:
        """All managed subnets of the VPC."""
        result = await call(self.ec2.describe_subnets, Filters=[
            {"Name": "vpc-id", "Values": [self.vpc_id]},
            {"Name": f"tag:{T.MANAGED_TAG}", "Values": ["true"]},
        ])
        return result.get("Subnets", [])

    async def find(self, project_id: str) -> Dict[str, object]:
        """
        Raises:
            NotFoundError: If the project has no subnet yet
        """
        result = await call(self.ec2.describe_subnets, Filters=[
            {"Name": "vpc-id", "Values": [self.vpc_id]},
            *T.tag_filters(T.project_tags(project_id)),
        ])
        subnets = result.get("Subnets", [])
        if not subnets:
            raise NotFoundError(f"No subnet for project {project_id}")
        return subnets[0]

    async def next_cidr(self) -> str:
        """First block of the configured size not used by any subnet of the VPC."""
        vpc = await call(self.ec2.describe_vpcs, VpcIds=[self.vpc_id])
        network = ipaddress.ip_network(vpc["Vpcs"][0]["CidrBlock"])
        result = await call(self.ec2.describe_subnets,
                            Filters=[{"Name": "vpc-id", "Values": [self.vpc_id]}])
        used = [ipaddress.ip_network(s["CidrBlock"]) for s in result.get("Subnets", [])]
        for candidate in network.subnets(new_prefix=self.prefix):
            if not any(candidate.overlaps(u) for u in used):
                return str(candidate)
        raise AlreadyExistsError(f"No free /{self.prefix} block left in {self.vpc_id}")

    async def create(self, project_id: str) -> Dict[str, object]:
        cidr = await self.next_cidr()
        result = await call(self.ec2.create_subnet, VpcId=self.vpc_id, CidrBlock=cidr,
                            TagSpecifications=tag_specifications(
                                "subnet", T.project_tags(project_id)))
        subnet = result["Subnet"]
        logger.info(f"Created subnet {subnet['SubnetId']} ({cidr}) for project {project_id}")
        return subnet

    async def destroy(self, subnet_id: str) -> None:
        await call(self.ec2.delete_subnet, SubnetId=subnet_id)


class SecurityGroups:
    def __init__(self, ec2, vpc_id: str, release_attempts: int = 30, release_delay: float = 10.0):
        self.ec2 = ec2
        self.vpc_id = vpc_id
        self.release_attempts = release_attempts
        self.release_delay = release_delay

    async def find(self, name: str) -> Optional[str]:
        result = await call(self.ec2.describe_security_groups, Filters=[
            {"Name": "vpc-id", "Values": [self.vpc_id]},
            {"Name": "group-name", "Values": [name]},
        ])
        groups = result.get("SecurityGroups", [])
        return groups[0]["GroupId"] if groups else None

    async def describe_tagged(self, filters: List[Dict[str, object]]) -> List[Dict[str, object]]:
        """Groups in the VPC matching the given tag filters."""
        return await paginate(self.ec2, "describe_security_groups", "SecurityGroups", Filters=[
            {"Name": "vpc-id", "Values": [self.vpc_id]},
            *filters,
        ])

    async def create(self, name: str, tags: Dict[str, str],
                     ports=DEFAULT_INGRESS_PORTS) -> str:
        """Find-or-create the security group called ``name``."""
        existing = await self.find(name)
        if existing:
            return existing
        try:
            result = await call(self.ec2.create_security_group, GroupName=name,
                                Description=f"envstack {name}", VpcId=self.vpc_id,
                                TagSpecifications=tag_specifications("security-group", tags))
        except AlreadyExistsError:
            existing = await self.find(name)
            if existing:
                return existing
            raise
        group_id = result["GroupId"]
        await call(self.ec2.authorize_security_group_ingress, GroupId=group_id,
                   IpPermissions=[{
                       "IpProtocol": "tcp", "FromPort": port, "ToPort": port,
                       "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                   } for port in ports])
        logger.info(f"Created security group {group_id} ({name})")
        return group_id

    async def wait_until_unused(self, group_id: str) -> bool:
        """
        Poll until no network interface references the group.

        A deleted classic load balancer releases its interfaces some time
        after the delete call returns; deleting the group before that fails
        with DependencyViolation.
        """
        for attempt in range(self.release_attempts):
            result = await call(self.ec2.describe_network_interfaces, Filters=[
                {"Name": "group-id", "Values": [group_id]},
            ])
            in_use = result.get("NetworkInterfaces", [])
            if not in_use:
                return True
            logger.debug(f"Security group {group_id} still used by {len(in_use)} interface(s)")
            if attempt + 1 < self.release_attempts:
                await asyncio.sleep(self.release_delay)
        logger.warning(f"Security group {group_id} still in use after "
                       f"{self.release_attempts} checks")
        return False

    async def destroy(self, name: str) -> bool:
        """Delete the group called ``name``; False when there was nothing to delete."""
        group_id = await self.find(name)
        if not group_id:
            return False
        await self.wait_until_unused(group_id)
        await call(self.ec2.delete_security_group, GroupId=group_id)
        logger.info(f"Deleted security group {group_id} ({name})")
        return True


class Instances:
    def __init__(self, ec2):
        self.ec2 = ec2

    async def describe(self, filters: List[Dict[str, object]]) -> List[Dict[str, object]]:
        """Live (not terminated) instances matching ``filters``."""
        reservations = await paginate(self.ec2, "describe_instances", "Reservations", Filters=[
            *filters,
            {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES},
        ])
        return [i for r in reservations for i in r.get("Instances", [])]

    async def launch(self, *, image_id: str, instance_type: str, count: int,
                     subnet_id: str, group_id: str, user_data: str,
                     tags: Dict[str, str], key_name: Optional[str] = None,
                     instance_profile: Optional[str] = None) -> List[str]:
        params = {
            "ImageId": image_id,
            "InstanceType": instance_type,
            "MinCount": count,
            "MaxCount": count,
            # botocore base64-encodes UserData for RunInstances
            "UserData": user_data,
            "NetworkInterfaces": [{
                "DeviceIndex": 0,
                "SubnetId": subnet_id,
                "Groups": [group_id],
                "AssociatePublicIpAddress": True,
            }],
            "TagSpecifications": tag_specifications("instance", tags),
        }
        if key_name:
            params["KeyName"] = key_name
        if instance_profile:
            params["IamInstanceProfile"] = {"Name": instance_profile}

        result = await call(self.ec2.run_instances, **params)
        instance_ids = [i["InstanceId"] for i in result.get("Instances", [])]
        await wait(self.ec2, "instance_running", InstanceIds=instance_ids)
        logger.info(f"Launched instances {instance_ids}")
        return instance_ids

    async def terminate(self, instance_ids: List[str]) -> None:
        if not instance_ids:
            return
        await call(self.ec2.terminate_instances, InstanceIds=instance_ids)
        await wait(self.ec2, "instance_terminated", InstanceIds=instance_ids)
        logger.info(f"Terminated instances {instance_ids}")
