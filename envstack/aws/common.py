"""
Shared plumbing for the AWS facades.

Every boto3 call goes through ``call`` which runs it in a worker thread and
translates botocore error codes into NotFoundError / AlreadyExistsError.
Retries and backoff are left to botocore's retry configuration.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from ..errors import AlreadyExistsError, NotFoundError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {
    "ClusterNotFoundException",
    "ServiceNotFoundException",
    "ServiceNotActiveException",
    "LoadBalancerNotFound",
    "AccessPointNotFound",
    "NoSuchHostedZone",
}

ALREADY_EXISTS_CODES = {
    "InvalidSubnet.Conflict",
    "DuplicateLoadBalancerName",
    "DuplicateAccessPointName",
    "ResourceAlreadyExistsException",
}

BOTO_CONFIG = Config(retries={"max_attempts": 10, "mode": "standard"})


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def is_not_found(code: str) -> bool:
    return code in NOT_FOUND_CODES or code.endswith(".NotFound")


def is_already_exists(code: str) -> bool:
    return code in ALREADY_EXISTS_CODES or code.endswith(".Duplicate")


async def call(fn: Callable[..., Any], **kwargs) -> Any:
    """
    Run one boto3 client method off the event loop.

    Raises:
        NotFoundError: The addressed resource does not exist
        AlreadyExistsError: A create collided with an existing resource
        ClientError: Any other AWS failure
    """
    try:
        return await asyncio.to_thread(fn, **kwargs)
    except ClientError as e:
        code = error_code(e)
        name = getattr(fn, "__name__", "aws call")
        if is_not_found(code):
            raise NotFoundError(f"{name}: {code}") from e
        if is_already_exists(code):
            raise AlreadyExistsError(f"{name}: {code}") from e
        raise


async def wait(client, waiter_name: str, **kwargs) -> None:
    """Block (in a worker thread) on a boto3 waiter."""
    waiter = client.get_waiter(waiter_name)
    await call(waiter.wait, **kwargs)


def flatten_pages(client, operation: str, key: str, **kwargs) -> list:
    """Collect ``key`` from every page of a paginated operation (blocking)."""
    items = []
    paginator = client.get_paginator(operation)
    for page in paginator.paginate(**kwargs):
        items.extend(page.get(key, []))
    return items


async def paginate(client, operation: str, key: str, **kwargs) -> list:
    return await call(flatten_pages, client=client, operation=operation, key=key, **kwargs)


@dataclass
class AwsClients:
    """The boto3 clients one orchestrator works with."""
    ec2: Any
    ecs: Any
    elb: Any
    route53: Any

    @classmethod
    def from_region(cls, region: str, session=None) -> "AwsClients":
        session = session or boto3.session.Session(region_name=region)
        logger.debug(f"Creating AWS clients for region {region}")
        return cls(
            ec2=session.client("ec2", region_name=region, config=BOTO_CONFIG),
            ecs=session.client("ecs", region_name=region, config=BOTO_CONFIG),
            elb=session.client("elb", region_name=region, config=BOTO_CONFIG),
            route53=session.client("route53", config=BOTO_CONFIG),
        )
