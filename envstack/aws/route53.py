"""
Route53 facade and record-change request builders.
"""

import logging
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from .. import tags as T
from ..errors import NotFoundError
from .common import call, error_code, paginate

logger = logging.getLogger(__name__)

CHANGE_ACTIONS = ("CREATE", "DELETE", "UPSERT")
RECORD_TYPES = ("A", "CNAME")

# ListTagsForResources accepts at most 10 ids per call
TAG_BATCH = 10


def pluck_id(zone: Dict[str, Any]) -> str:
    """'/hostedzone/Z123' -> 'Z123'"""
    return zone["Id"].split("/")[-1]


def qualify(name: str, tld: str) -> str:
    """Fully qualified record name, always with the trailing dot Route53 reports."""
    return f"{name}.{tld.rstrip('.')}."


def record_set(name: str, record_type: str, value: str, ttl: int) -> Dict[str, Any]:
    if record_type not in RECORD_TYPES:
        raise ValueError(f"route53: invalid record type {record_type}, must be one of {RECORD_TYPES}")
    if not name:
        raise ValueError("route53: record set requires a name")
    if not value:
        raise ValueError("route53: record set requires a value")
    return {
        "Name": name,
        "Type": record_type,
        "TTL": ttl,
        "ResourceRecords": [{"Value": value}],
    }


def change_params(action: str, zone_id: str, rrset: Dict[str, Any],
                  comment: Optional[str] = None) -> Dict[str, Any]:
    if action not in CHANGE_ACTIONS:
        raise ValueError(f"route53: invalid change action {action}, must be one of {CHANGE_ACTIONS}")
    batch: Dict[str, Any] = {"Changes": [{"Action": action, "ResourceRecordSet": rrset}]}
    if comment:
        batch["Comment"] = comment
    return {"HostedZoneId": zone_id, "ChangeBatch": batch}


class Route53:
    def __init__(self, route53):
        self.route53 = route53

    async def find_managed_zone_id(self) -> str:
        """
        Id of the first hosted zone carrying the managed tag.

        Raises:
            NotFoundError: If there are no hosted zones or none is managed
        """
        zones = await paginate(self.route53, "list_hosted_zones", "HostedZones")
        if not zones:
            raise NotFoundError("Route53: no hosted zones found")
        ids = [pluck_id(z) for z in zones]
        for start in range(0, len(ids), TAG_BATCH):
            result = await call(self.route53.list_tags_for_resources,
                                ResourceType="hostedzone",
                                ResourceIds=ids[start:start + TAG_BATCH])
            for tag_set in result.get("ResourceTagSets", []):
                if T.is_managed(T.from_aws(tag_set.get("Tags"))):
                    return tag_set["ResourceId"]
        raise NotFoundError(f"Route53: no hosted zone tagged {T.MANAGED_TAG}=true")

    async def zone_name(self, zone_id: str) -> str:
        result = await call(self.route53.get_hosted_zone, Id=zone_id)
        return result["HostedZone"]["Name"]

    async def find_record(self, zone_id: str, name: str,
                          record_type: str = "CNAME") -> Optional[Dict[str, Any]]:
        result = await call(self.route53.list_resource_record_sets, HostedZoneId=zone_id,
                            StartRecordName=name, StartRecordType=record_type, MaxItems="1")
        for rrset in result.get("ResourceRecordSets", []):
            if rrset["Name"] == name and rrset["Type"] == record_type:
                return rrset
        return None

    async def change(self, action: str, zone_id: str, rrset: Dict[str, Any]) -> str:
        """
        Submit one record change; returns the change id.

        Raises:
            NotFoundError: DELETE of a record that does not exist
        """
        try:
            result = await call(self.route53.change_resource_record_sets,
                                **change_params(action, zone_id, rrset))
        except ClientError as e:
            # deleting a missing record is reported as an invalid batch
            if action == "DELETE" and error_code(e) == "InvalidChangeBatch" and "not found" in str(e):
                raise NotFoundError(f"Route53: record {rrset['Name']} not found") from e
            raise
        return result["ChangeInfo"]["Id"]

