"""
Account-wide bootstrap: discover the managed VPC and hosted zone once, then
build every manager bound to them.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .aws import (
    Acls, AwsClients, Ecs, Elb, Instances, Route53, RouteTables, SecurityGroups, Subnets, Vpc,
)
from .compute import ComputeStackProvisioner
from .config import Settings, get_home
from .dns import DnsBindingManager
from .errors import BootstrapError
from .network import NetworkScaffoldManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BootstrapState:
    vpc_id: str
    zone_id: str
    network: NetworkScaffoldManager
    compute: ComputeStackProvisioner
    dns: DnsBindingManager


class EnvironmentContext:
    """
    Process-wide context: settings, AWS clients and the bootstrap cache.

    Build one at process start and hand it to the orchestrator and reaper.
    The cache is written only after a successful discovery; a failed
    discovery leaves it empty so the next call retries.
    """

    def __init__(self, settings: Settings, clients: AwsClients):
        self.settings = settings
        self.clients = clients
        self.instances = Instances(clients.ec2)
        self._state: Optional[BootstrapState] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "EnvironmentContext":
        return cls(settings, AwsClients.from_region(settings.region))

    @property
    def home(self):
        return get_home(self.settings)

    async def state(self) -> BootstrapState:
        """
        Cached account context.

        Raises:
            BootstrapError: If the VPC or hosted zone cannot be discovered
        """
        if self._state is not None:
            return self._state

        vpc, zone_id = await asyncio.gather(
            Vpc(self.clients.ec2).find_managed(),
            Route53(self.clients.route53).find_managed_zone_id(),
            return_exceptions=True,
        )
        for result in (vpc, zone_id):
            if isinstance(result, BaseException):
                raise BootstrapError(f"Account discovery failed: {result}") from result

        self._state = self._build(vpc["VpcId"], zone_id)
        logger.info(f"Bootstrapped: vpc={self._state.vpc_id} zone={self._state.zone_id}")
        return self._state

    def _build(self, vpc_id: str, zone_id: str) -> BootstrapState:
        ec2 = self.clients.ec2
        network = NetworkScaffoldManager(
            vpc_id,
            Subnets(ec2, vpc_id, self.settings.subnet_prefix),
            Acls(ec2, vpc_id),
            RouteTables(ec2, vpc_id),
            self.instances,
        )
        compute = ComputeStackProvisioner(
            self.settings,
            SecurityGroups(ec2, vpc_id),
            Ecs(self.clients.ecs),
            self.instances,
            Elb(self.clients.elb),
        )
        dns = DnsBindingManager(Route53(self.clients.route53), zone_id,
                                tld=self.settings.tld, ttl=self.settings.record_ttl)
        return BootstrapState(vpc_id, zone_id, network, compute, dns)
