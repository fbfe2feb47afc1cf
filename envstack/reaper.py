"""
Expiry reaper: destroy Pull-Request environments whose expiry marker has passed.

Expiry lives in the ``envstack:expires-at`` tag written at creation, so a
sweep needs nothing but the tag index. Security groups are scanned as well
as instances; a PR whose instances are gone but whose teardown left a group
behind is picked up again on the next pass.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from . import rid
from . import tags as T
from .errors import EnvStackError
from .models import Environment

logger = logging.getLogger(__name__)


class ExpiryReaper:
    def __init__(self, orchestrator):
        self.orchestrator = orchestrator

    async def _tagged(self, project_id: Optional[str]) -> List[Dict[str, object]]:
        wanted = {T.MANAGED_TAG: "true", T.ENV_TYPE_TAG: rid.PULL_REQUEST}
        if project_id:
            wanted[T.PROJECT_TAG] = project_id
        filters = T.tag_filters(wanted)

        state = await self.orchestrator.context.state()
        instances, groups = await asyncio.gather(
            state.compute.instances.describe(filters),
            state.compute.security_groups.describe_tagged(filters),
        )
        return [*instances, *groups]

    async def pending(self, now: Optional[datetime] = None,
                      project_id: Optional[str] = None) -> List[Tuple[Environment, datetime, bool]]:
        """
        PR environments carrying an expiry marker, soonest first, each with
        whether it had expired at ``now``.

        An environment whose resources disagree on expiry takes the earliest.
        """
        now = now or datetime.now(timezone.utc)
        found: Dict[Environment, datetime] = {}
        for resource in await self._tagged(project_id):
            tags = T.from_aws(resource.get("Tags"))
            env = T.env_from_tags(tags)
            expires_at = T.get_expiry(tags)
            if env is None or expires_at is None:
                continue
            if env not in found or expires_at < found[env]:
                found[env] = expires_at
        return [(env, expires_at, expires_at < now)
                for env, expires_at in sorted(found.items(), key=lambda item: item[1])]

    async def sweep(self, now: Optional[datetime] = None,
                    project_id: Optional[str] = None) -> List[Environment]:
        """
        Destroy every PR environment that expired before ``now``.

        Destroys run concurrently. A failed destroy is logged and the
        environment is left for the next sweep.

        Returns:
            Environments destroyed by this sweep
        """
        now = now or datetime.now(timezone.utc)
        expired = [env for env, _, is_expired in await self.pending(now, project_id) if is_expired]
        if not expired:
            logger.debug("Expiry sweep: nothing to destroy")
            return []

        logger.info(f"Expiry sweep: destroying {len(expired)} environment(s)")
        results = await asyncio.gather(
            *(self.orchestrator.destroy_pr(env.project_id, env.name) for env in expired),
            return_exceptions=True,
        )

        destroyed = []
        for env, result in zip(expired, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to destroy expired environment {env.binding_name}: {result}")
            else:
                destroyed.append(env)
        logger.info(f"Expiry sweep: {len(destroyed)} destroyed, {len(expired) - len(destroyed)} failed")
        return destroyed

    async def run(self, interval: float, iterations: Optional[int] = None,
                  project_id: Optional[str] = None) -> int:
        """
        Sweep every ``interval`` seconds.

        Args:
            interval: Seconds between sweeps
            iterations: Stop after this many sweeps (forever when None)
            project_id: Only sweep this project

        Returns:
            Total number of environments destroyed
        """
        total = 0
        count = 0
        while iterations is None or count < iterations:
            try:
                total += len(await self.sweep(project_id=project_id))
            except (EnvStackError, ClientError, BotoCoreError) as e:
                logger.error(f"Expiry sweep failed: {e}")
            count += 1
            if iterations is None or count < iterations:
                await asyncio.sleep(interval)
        return total
