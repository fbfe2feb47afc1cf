"""
Tests for the per-project network scaffold.
"""

import asyncio

import pytest

from envstack.errors import AlreadyExistsError, NotFoundError, ProjectInUseError, ProvisionError, ValidationError
from envstack.models import Environment, ScaffoldDescriptor


def absent_then_present(cloud):
    """Subnet lookup fails until a subnet has been created."""
    created = []

    async def find(project_id):
        if not created:
            raise NotFoundError(f"No subnet for project {project_id}")
        return created[0]

    async def create(project_id):
        subnet = {"SubnetId": "subnet-new"}
        created.append(subnet)
        return subnet

    cloud.subnets.find.side_effect = find
    cloud.subnets.create.side_effect = create


class TestFindOrCreate:
    def test_existing_scaffold(self, cloud):
        """Test an existing scaffold is returned."""
        scaffold = asyncio.run(cloud.network().find_or_create("proj1"))

        assert scaffold == ScaffoldDescriptor("proj1", "vpc-1", "subnet-1", "acl-1", "rtb-1")
        cloud.subnets.create.assert_not_called()
        cloud.acls.create.assert_not_called()

    def test_creates_then_reuses(self, cloud):
        """Test a missing scaffold is created once."""
        absent_then_present(cloud)
        cloud.acls.create.return_value = "acl-new"
        network = cloud.network()

        first = asyncio.run(network.find_or_create("proj1"))
        assert first.subnet_id == "subnet-new"
        assert first.acl_id == "acl-new"
        cloud.routes.associate.assert_awaited_once_with("rtb-1", "subnet-new")
        cloud.acls.associate.assert_awaited_once_with("acl-new", "subnet-new")

        cloud.recorder.reset_mock()
        second = asyncio.run(network.find_or_create("proj1"))

        assert second.subnet_id == first.subnet_id
        creates = [c for c in cloud.calls() if "create" in c or "associate" in c]
        assert creates == []

    def test_race_adopts_winner(self, cloud):
        """Test a lost creation race adopts the existing scaffold."""
        cloud.subnets.find.side_effect = [NotFoundError("none yet"), {"SubnetId": "subnet-winner"}]
        cloud.subnets.create.side_effect = AlreadyExistsError("create_subnet: InvalidSubnet.Conflict")
        cloud.acls.create.return_value = "acl-loser"
        cloud.acls.find_for_subnet.return_value = "acl-winner"

        scaffold = asyncio.run(cloud.network().find_or_create("proj1"))

        assert scaffold.subnet_id == "subnet-winner"
        assert scaffold.acl_id == "acl-winner"
        cloud.acls.destroy.assert_awaited_once_with("acl-loser")
        cloud.acls.associate.assert_not_called()

    def test_subnet_failure_discards_acl(self, cloud):
        """Test a failed subnet create discards the new ACL."""
        cloud.subnets.find.side_effect = NotFoundError("none")
        cloud.subnets.create.side_effect = RuntimeError("quota")
        cloud.acls.create.return_value = "acl-new"

        with pytest.raises(ProvisionError) as excinfo:
            asyncio.run(cloud.network().find_or_create("proj1"))

        assert excinfo.value.step == "scaffold-subnet"
        cloud.acls.destroy.assert_awaited_once_with("acl-new")

    def test_acl_failure(self, cloud):
        """Test an ACL failure aborts scaffold creation."""
        cloud.subnets.find.side_effect = NotFoundError("none")
        cloud.acls.create.side_effect = RuntimeError("limit")

        with pytest.raises(ProvisionError) as excinfo:
            asyncio.run(cloud.network().find_or_create("proj1"))

        assert excinfo.value.step == "scaffold-acl"
        cloud.subnets.create.assert_not_called()

    def test_requires_project_id(self, cloud):
        """Test an empty project id is rejected."""
        with pytest.raises(ValidationError):
            asyncio.run(cloud.network().find_or_create(""))
        assert cloud.calls() == []


class TestDestroy:
    def test_refused_while_in_use(self, cloud, instance):
        """Test destroy is refused while environments exist."""
        cloud.live = [instance("i-1", Environment("proj1", "main"))]

        with pytest.raises(ProjectInUseError):
            asyncio.run(cloud.network().destroy("proj1"))
        cloud.subnets.destroy.assert_not_called()

    def test_destroys_subnet_then_acl(self, cloud):
        """Test destroy removes the subnet before the ACL."""
        assert asyncio.run(cloud.network().destroy("proj1")) is True

        calls = cloud.calls()
        assert calls.index("subnets.destroy") < calls.index("acls.destroy")
        cloud.acls.destroy.assert_awaited_once_with("acl-1")

    def test_nothing_to_destroy(self, cloud):
        """Test destroying a missing scaffold."""
        cloud.subnets.find.side_effect = NotFoundError("none")
        assert asyncio.run(cloud.network().destroy("proj1")) is False


def test_list_projects(cloud):
    cloud.subnets.describe.return_value = [
        {"SubnetId": "s1", "Tags": [{"Key": "envstack:project", "Value": "proj1"}]},
        {"SubnetId": "s2", "Tags": [{"Key": "envstack:project", "Value": "proj2"}]},
        {"SubnetId": "s3", "Tags": []},
    ]
    assert asyncio.run(cloud.network().list_projects()) == ["proj1", "proj2"]
