"""
Classic Elastic Load Balancer facade.
"""

import logging
from typing import Dict, List, Optional

from .. import tags as T
from .common import call

logger = logging.getLogger(__name__)


def listeners(instance_port: int, ssl_certificate_id: Optional[str] = None) -> List[Dict[str, object]]:
    result = [{
        "Protocol": "HTTP",
        "LoadBalancerPort": 80,
        "InstanceProtocol": "HTTP",
        "InstancePort": instance_port,
    }]
    if ssl_certificate_id:
        result.append({
            "Protocol": "HTTPS",
            "LoadBalancerPort": 443,
            "InstanceProtocol": "HTTP",
            "InstancePort": instance_port,
            "SSLCertificateId": ssl_certificate_id,
        })
    return result


class Elb:
    def __init__(self, elb):
        self.elb = elb

    async def create(self, name: str, subnet_id: str, group_id: str, tags: Dict[str, str],
                     instance_port: int = 80, ssl_certificate_id: Optional[str] = None) -> str:
        """
        Create the load balancer; returns its DNS name.

        CreateLoadBalancer is idempotent for an identical configuration.
        """
        result = await call(self.elb.create_load_balancer,
                            LoadBalancerName=name,
                            Listeners=listeners(instance_port, ssl_certificate_id),
                            Subnets=[subnet_id],
                            SecurityGroups=[group_id],
                            Tags=T.to_aws(tags))
        logger.info(f"Created load balancer {name}")
        return result["DNSName"]

    async def describe(self, name: str) -> Dict[str, object]:
        """
        Raises:
            NotFoundError: If there is no load balancer called ``name``
        """
        result = await call(self.elb.describe_load_balancers, LoadBalancerNames=[name])
        return result["LoadBalancerDescriptions"][0]

    async def delete(self, name: str) -> None:
        await call(self.elb.delete_load_balancer, LoadBalancerName=name)
        logger.info(f"Deleted load balancer {name}")

    async def register(self, name: str, instance_ids: List[str]) -> None:
        await call(self.elb.register_instances_with_load_balancer, LoadBalancerName=name,
                   Instances=[{"InstanceId": i} for i in instance_ids])

    async def deregister(self, name: str, instance_ids: List[str]) -> None:
        if not instance_ids:
            return
        await call(self.elb.deregister_instances_from_load_balancer, LoadBalancerName=name,
                   Instances=[{"InstanceId": i} for i in instance_ids])
