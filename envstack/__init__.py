"""
envstack - ephemeral per-branch and per-pull-request environments on AWS.

Each environment is an ECS cluster on EC2 instances behind a classic load
balancer, reachable through a Route53 CNAME. State is never stored locally:
it is re-derived from resource tags on every operation.
"""

__version__ = "0.1.0"
