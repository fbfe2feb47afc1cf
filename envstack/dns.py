"""
DNS bindings: the CNAME mapping an environment's subdomain to its load balancer.
"""

import logging
from typing import Optional

from .aws import Route53
from .aws.route53 import qualify, record_set
from .errors import NotFoundError
from .models import Environment

logger = logging.getLogger(__name__)


class DnsBindingManager:
    def __init__(self, route53: Route53, zone_id: str, tld: Optional[str] = None,
                 ttl: int = 300):
        self.route53 = route53
        self.zone_id = zone_id
        self.ttl = ttl
        self._tld = tld.rstrip(".") if tld else None

    async def tld(self) -> str:
        """Top-level domain of the hosted zone, looked up once."""
        if self._tld is None:
            name = await self.route53.zone_name(self.zone_id)
            self._tld = name.rstrip(".")
        return self._tld

    async def domain_for(self, env: Environment) -> str:
        return f"{env.subdomain}.{await self.tld()}"

    async def bind(self, env: Environment, target: str) -> str:
        """
        Point the environment's subdomain at ``target``.

        Returns:
            The environment's domain name
        """
        tld = await self.tld()
        rrset = record_set(qualify(env.subdomain, tld), "CNAME", target, self.ttl)
        await self.route53.change("UPSERT", self.zone_id, rrset)
        domain = f"{env.subdomain}.{tld}"
        logger.info(f"Bound {domain} -> {target}")
        return domain

    async def unbind(self, env: Environment) -> bool:
        """Delete the environment's record; False when there was none."""
        name = qualify(env.subdomain, await self.tld())
        rrset = await self.route53.find_record(self.zone_id, name, "CNAME")
        if rrset is None:
            logger.info(f"No DNS record {name} to delete")
            return False
        try:
            await self.route53.change("DELETE", self.zone_id, rrset)
        except NotFoundError:
            return False
        logger.info(f"Deleted DNS record {name}")
        return True
