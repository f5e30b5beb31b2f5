"""In-memory simulated cloud for demos and tests."""

from cloudseq.demo.simulator import FailurePlan, SimulatedAPIError, SimulatedCloud
from cloudseq.demo.fixtures import VPC_TUTORIAL_STEP_NAMES, vpc_tutorial_plan

__all__ = [
    "FailurePlan",
    "SimulatedAPIError",
    "SimulatedCloud",
    "VPC_TUTORIAL_STEP_NAMES",
    "vpc_tutorial_plan",
]
