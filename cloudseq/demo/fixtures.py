"""
Demo plans for the simulated cloud.

VPC_TUTORIAL mirrors the "VPC with public and private subnets" walkthrough:
VPC, two subnets created together, internet gateway, route table, security
group, NAT gateway and an instance in the private subnet.
"""

from dataclasses import replace
from typing import Callable, List, Optional

from cloudseq.demo.simulator import SimulatedCloud
from cloudseq.naming import resource_name, resource_prefix
from cloudseq.provisioning.steps import PlanItem, PollPolicy, Ref, Step, StepGroup

# (name, kind, ready_state, failure_state, waits_for_readiness)
VPC_TUTORIAL = [
    ("vpc", "vpc", "available", "failed", True),
    ("public-subnet", "subnet", "available", "failed", True),
    ("private-subnet", "subnet", "available", "failed", True),
    ("internet-gateway", "internet-gateway", "attached", "failed", False),
    ("route-table", "route-table", "active", "failed", False),
    ("security-group", "security-group", "active", "failed", False),
    ("nat-gateway", "nat-gateway", "available", "failed", True),
    ("instance", "ec2-instance", "running", "terminated", True),
]

VPC_TUTORIAL_STEP_NAMES = [name for name, *_ in VPC_TUTORIAL]


def demo_policy(
    kind: str,
    interval_seconds: float,
    policy_lookup: Optional[Callable[[str], PollPolicy]] = None,
) -> PollPolicy:
    """The configured policy for a kind, with a demo-friendly interval."""
    if policy_lookup is None:
        from config.poll_policies import get_policy

        policy_lookup = get_policy
    return replace(policy_lookup(kind), interval_seconds=interval_seconds)


def vpc_tutorial_plan(
    cloud: SimulatedCloud,
    interval_seconds: float = 0.5,
    prefix: Optional[str] = None,
    policy_lookup: Optional[Callable[[str], PollPolicy]] = None,
) -> List[PlanItem]:
    """
    Build the VPC walkthrough as a provisioning plan.

    Args:
        cloud: Simulated cloud backing every provider
        interval_seconds: Poll interval override for the demo
        prefix: Name prefix (random "vpc-demo-xxxxxxxx" if omitted)
        policy_lookup: kind -> PollPolicy (configured policies by default)
    """
    prefix = prefix or resource_prefix("vpc-demo")
    steps = {}

    for name, kind, ready_state, failure_state, waits in VPC_TUTORIAL:
        provider = cloud.provider(kind, ready_state=ready_state, failure_state=failure_state)
        policy = demo_policy(kind, interval_seconds, policy_lookup) if waits else None
        params = _params_for(name, prefix)
        steps[name] = Step.from_provider(
            kind,
            provider,
            params=params,
            name=name,
            depends_on_readiness=waits,
            policy=policy,
        )

    return [
        steps["vpc"],
        StepGroup([steps["public-subnet"], steps["private-subnet"]]),
        steps["internet-gateway"],
        steps["route-table"],
        steps["security-group"],
        steps["nat-gateway"],
        steps["instance"],
    ]


def _params_for(name: str, prefix: str) -> dict:
    tag = {"Name": resource_name(prefix, name)}
    if name == "vpc":
        return {"cidr_block": "10.0.0.0/16", "tags": tag}
    if name == "public-subnet":
        return {"vpc_id": Ref("vpc"), "cidr_block": "10.0.0.0/24", "tags": tag}
    if name == "private-subnet":
        return {"vpc_id": Ref("vpc"), "cidr_block": "10.0.1.0/24", "tags": tag}
    if name == "internet-gateway":
        return {"vpc_id": Ref("vpc"), "tags": tag}
    if name == "route-table":
        return {
            "vpc_id": Ref("vpc"),
            "routes": [{"destination": "0.0.0.0/0", "gateway_id": Ref("internet-gateway")}],
            "associations": [Ref("public-subnet")],
            "tags": tag,
        }
    if name == "security-group":
        return {"vpc_id": Ref("vpc"), "group_name": resource_name(prefix, "sg"), "tags": tag}
    if name == "nat-gateway":
        return {"subnet_id": Ref("public-subnet"), "tags": tag}
    if name == "instance":
        return {
            "subnet_id": Ref("private-subnet"),
            "security_group_ids": [Ref("security-group")],
            "instance_type": "t3.micro",
            "tags": tag,
        }
    return {"tags": tag}
