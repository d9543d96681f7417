"""Plan files: the intent for one device, plus what is known about its hardware."""

import random
from pathlib import Path
from typing import List, Optional

from omegaconf import OmegaConf
from omegaconf.errors import OmegaConfBaseException
from pydantic import BaseModel, Field, ValidationError

from .errors import PlanError
from .network import EthernetPort, NetDevice
from .planner import MeshIntent, SectionInfo, TopologyPlanner
from .store import UCIStore


class PlanConfig(BaseModel):
    """Contents of a plan file."""

    intent: MeshIntent
    section_info: Optional[SectionInfo] = Field(
        default=None, description="Wireless section names; read from the config when absent"
    )
    ethernet_ports: List[EthernetPort] = Field(default_factory=list)
    net_devices: List[NetDevice] = Field(
        default_factory=list, description="Devices as enumerated on the target (for the bridge MAC)"
    )
    seed: Optional[int] = Field(default=None, description="Seed for reproducible random choices")

    def make_rng(self) -> random.Random:
        return random.Random(self.seed)

    def planner_for(self, store: UCIStore) -> TopologyPlanner:
        """Build a planner for ``store`` from this plan."""
        info = self.section_info or SectionInfo.from_store(store)
        return TopologyPlanner(store, info, self.ethernet_ports, self.net_devices, self.make_rng())


def parse_plan(yaml_str: str) -> PlanConfig:
    """
    Parse plan YAML.

    Uses OmegaConf for variable interpolation, e.g. ``${oc.env:MESH_KEY}``
    or references to other keys in the file.

    Raises:
        PlanError: if the YAML can't be resolved or doesn't describe a plan
    """
    try:
        omega_conf = OmegaConf.create(yaml_str)
        data = OmegaConf.to_container(omega_conf, resolve=True)
    except OmegaConfBaseException as e:
        raise PlanError(f"Cannot read plan: {e}") from e

    if not isinstance(data, dict):
        raise PlanError("Plan file must be a YAML dictionary")

    try:
        return PlanConfig.model_validate(data)
    except ValidationError as e:
        raise PlanError(f"Invalid plan: {e}") from e


def load_plan(plan_file: str) -> PlanConfig:
    """
    Load a plan file.

    Args:
        plan_file: Path to the plan YAML file

    Returns:
        PlanConfig instance
    """
    plan_path = Path(plan_file)
    if not plan_path.exists():
        raise PlanError(f"Plan file not found: {plan_file}")

    with open(plan_path, "r") as f:
        return parse_plan(f.read())
