"""
Shared fixtures: an in-memory stand-in for the AWS facades.

Every facade is a spec'd Mock attached to one recorder, so tests can assert
on the order of provider calls across facades.
"""

from unittest.mock import Mock

import pytest

from envstack import tags as T
from envstack.aws import (
    Acls, AwsClients, Ecs, Elb, Instances, Route53, RouteTables, SecurityGroups, Subnets,
)
from envstack.bootstrap import BootstrapState, EnvironmentContext
from envstack.compute import ComputeStackProvisioner
from envstack.config import Settings
from envstack.dns import DnsBindingManager
from envstack.network import NetworkScaffoldManager
from envstack.orchestrator import StackOrchestrator

ELB_DNS = "es-elb-1.us-east-1.elb.amazonaws.com"


class FakeCloud:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.recorder = Mock()

        self.subnets = self._attach("subnets", Subnets)
        self.acls = self._attach("acls", Acls)
        self.routes = self._attach("routes", RouteTables)
        self.instances = self._attach("instances", Instances)
        self.security_groups = self._attach("security_groups", SecurityGroups)
        self.ecs = self._attach("ecs", Ecs)
        self.elb = self._attach("elb", Elb)
        self.route53 = self._attach("route53", Route53)

        # an existing project scaffold, no environments yet
        self.subnets.find.return_value = {"SubnetId": "subnet-1"}
        self.subnets.describe.return_value = []
        self.acls.find_for_subnet.return_value = "acl-1"
        self.routes.find_default.return_value = "rtb-1"
        self.live = []
        self.instances.describe.side_effect = self._describe_instances
        self.instances.launch.return_value = ["i-new"]
        self.instances.terminate.return_value = None
        self.security_groups.create.return_value = "sg-1"
        self.security_groups.destroy.return_value = True
        self.security_groups.describe_tagged.return_value = []
        self.ecs.create_cluster.return_value = "arn:aws:ecs:cluster/c"
        self.ecs.list_container_instances.return_value = []
        self.ecs.register_task_definition.return_value = "arn:aws:ecs:task-definition/t:1"
        self.ecs.create_or_update_service.return_value = "arn:aws:ecs:service/s"
        self.ecs.deregister_task_definitions.return_value = 1
        self.elb.create.return_value = ELB_DNS
        self.elb.describe.return_value = {"DNSName": ELB_DNS}
        self.route53.zone_name.return_value = "example.com."
        self.route53.find_record.return_value = None
        self.route53.change.return_value = "change-1"

    async def _describe_instances(self, filters):
        """Live instances matching every tag filter, like DescribeInstances."""
        wanted = {f["Name"][len("tag:"):]: f["Values"] for f in filters if f["Name"].startswith("tag:")}
        return [i for i in self.live
                if all(T.from_aws(i["Tags"]).get(k) in values for k, values in wanted.items())]

    def _attach(self, name, cls):
        facade = Mock(spec=cls)
        self.recorder.attach_mock(facade, name)
        return facade

    def calls(self):
        """Names of every facade call, in call order."""
        return [name for name, _args, _kwargs in self.recorder.mock_calls]

    def network(self) -> NetworkScaffoldManager:
        return NetworkScaffoldManager("vpc-1", self.subnets, self.acls, self.routes, self.instances)

    def compute(self) -> ComputeStackProvisioner:
        return ComputeStackProvisioner(self.settings, self.security_groups, self.ecs,
                                       self.instances, self.elb)

    def dns(self) -> DnsBindingManager:
        return DnsBindingManager(self.route53, "Z1")

    def state(self) -> BootstrapState:
        return BootstrapState("vpc-1", "Z1", self.network(), self.compute(), self.dns())

    def context(self) -> EnvironmentContext:
        context = EnvironmentContext(self.settings, AwsClients(Mock(), Mock(), Mock(), Mock()))
        context._state = self.state()
        return context


def make_instance(instance_id, env, stack=None, expires_at=None):
    """A describe_instances entry tagged for ``env``."""
    tags = T.base_tags(env)
    if stack:
        tags[T.STACK_TAG] = stack
    if expires_at:
        tags[T.EXPIRES_TAG] = expires_at
    return {"InstanceId": instance_id, "Tags": T.to_aws(tags)}


@pytest.fixture
def settings(tmp_path):
    return Settings(image_id="ami-123", home=str(tmp_path))


@pytest.fixture
def cloud(settings):
    return FakeCloud(settings)


@pytest.fixture
def orchestrator(cloud):
    return StackOrchestrator(cloud.context())


@pytest.fixture
def instance():
    return make_instance
