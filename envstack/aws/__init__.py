"""
Async facades over the boto3 clients the orchestrator needs.
"""

from .common import AwsClients, call
from .ec2 import Acls, Instances, RouteTables, SecurityGroups, Subnets, Vpc
from .ecs import Ecs
from .elb import Elb
from .route53 import Route53

__all__ = [
    "AwsClients",
    "call",
    "Acls",
    "Instances",
    "RouteTables",
    "SecurityGroups",
    "Subnets",
    "Vpc",
    "Ecs",
    "Elb",
    "Route53",
]
