"""
Tests for DNS bindings and Route53 change builders.
"""

import asyncio

import pytest

from envstack import rid
from envstack.aws.route53 import change_params, pluck_id, qualify, record_set
from envstack.dns import DnsBindingManager
from envstack.errors import NotFoundError
from envstack.models import Environment


class TestBuilders:
    def test_qualify(self):
        """Test record names are fully qualified."""
        assert qualify("feature-x-proj1", "example.com") == "feature-x-proj1.example.com."
        assert qualify("feature-x-proj1", "example.com.") == "feature-x-proj1.example.com."

    def test_record_set(self):
        """Test building a record set."""
        assert record_set("a.example.com.", "CNAME", "elb.aws.com", 300) == {
            "Name": "a.example.com.",
            "Type": "CNAME",
            "TTL": 300,
            "ResourceRecords": [{"Value": "elb.aws.com"}],
        }

    @pytest.mark.parametrize("name,record_type,value", [
        ("a.example.com.", "MX", "x"),
        ("", "CNAME", "x"),
        ("a.example.com.", "CNAME", ""),
    ])
    def test_record_set_invalid(self, name, record_type, value):
        """Test invalid record sets are rejected."""
        with pytest.raises(ValueError):
            record_set(name, record_type, value, 300)

    def test_change_params(self):
        """Test the change batch parameters."""
        rrset = record_set("a.example.com.", "CNAME", "elb", 60)
        params = change_params("UPSERT", "Z1", rrset, comment="deploy")
        assert params["HostedZoneId"] == "Z1"
        assert params["ChangeBatch"]["Comment"] == "deploy"
        assert params["ChangeBatch"]["Changes"] == [{"Action": "UPSERT", "ResourceRecordSet": rrset}]

        with pytest.raises(ValueError):
            change_params("REPLACE", "Z1", rrset)

    def test_pluck_id(self):
        """Test extracting ids from Route53 paths."""
        assert pluck_id({"Id": "/hostedzone/Z123"}) == "Z123"


class TestDnsBindingManager:
    def test_bind(self, cloud):
        """Test binding upserts a CNAME."""
        dns = cloud.dns()
        domain = asyncio.run(dns.bind(Environment("proj1", "feature-x"), "elb.aws.com"))

        assert domain == "feature-x-proj1.example.com"
        cloud.route53.change.assert_awaited_once_with("UPSERT", "Z1", {
            "Name": "feature-x-proj1.example.com.",
            "Type": "CNAME",
            "TTL": 300,
            "ResourceRecords": [{"Value": "elb.aws.com"}],
        })

    def test_zone_name_looked_up_once(self, cloud):
        """Test the zone name is looked up once."""
        dns = cloud.dns()
        asyncio.run(dns.domain_for(Environment("proj1", "a")))
        asyncio.run(dns.domain_for(Environment("proj1", "b")))
        assert cloud.route53.zone_name.await_count == 1

    def test_configured_tld(self, cloud):
        """Test a configured tld overrides the zone name."""
        dns = DnsBindingManager(cloud.route53, "Z1", tld="dev.example.org.")
        domain = asyncio.run(dns.domain_for(Environment("proj1", "7", rid.PULL_REQUEST)))
        assert domain == "pr-7-proj1.dev.example.org"
        cloud.route53.zone_name.assert_not_called()

    def test_unbind(self, cloud):
        """Test unbinding deletes the record."""
        rrset = record_set("feature-x-proj1.example.com.", "CNAME", "elb", 300)
        cloud.route53.find_record.return_value = rrset

        assert asyncio.run(cloud.dns().unbind(Environment("proj1", "feature-x"))) is True
        cloud.route53.change.assert_awaited_once_with("DELETE", "Z1", rrset)

    def test_unbind_missing_record(self, cloud):
        """Test unbinding without a record succeeds."""
        assert asyncio.run(cloud.dns().unbind(Environment("proj1", "feature-x"))) is False
        cloud.route53.change.assert_not_called()

    def test_unbind_record_vanished(self, cloud):
        """Test a record deleted concurrently counts as unbound."""
        cloud.route53.find_record.return_value = record_set("x.example.com.", "CNAME", "elb", 300)
        cloud.route53.change.side_effect = NotFoundError("gone")
        assert asyncio.run(cloud.dns().unbind(Environment("proj1", "x"))) is False
