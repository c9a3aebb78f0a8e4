"""
Loading simulation settings from YAML.

Lookup order: an explicit path, then the ``CRDTSIM_CONFIG`` environment
variable, then ``config.yaml`` at the project root.
"""

import os
from pathlib import Path
from typing import Optional

import yaml

from .simulation.config import SimulationConfig

CONFIG_ENV_VAR = "CRDTSIM_CONFIG"


def _default_config_path() -> Path:
    """Find config.yaml at the project root (parent of crdtsim/ package)."""
    return Path(__file__).resolve().parent.parent / "config.yaml"


def resolve_config_path(config_path: Optional[str] = None) -> Path:
    if config_path:
        return Path(config_path)
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return _default_config_path()


def load_config(config_path: Optional[str] = None) -> SimulationConfig:
    """Read a ``SimulationConfig`` from YAML.

    Args:
        config_path: Explicit file to read.

    Returns:
        The parsed configuration.

    Raises:
        FileNotFoundError: If no configuration file exists at the resolved path.
        ValueError: If the file's contents are not a valid configuration.
    """
    resolved_path = resolve_config_path(config_path)
    if not resolved_path.exists():
        raise FileNotFoundError(
            f"Missing simulation config at {resolved_path}. "
            f"Pass a path, set {CONFIG_ENV_VAR}, or create config.yaml."
        )

    with resolved_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {resolved_path}")

    # An empty "simulation:" key parses as None
    section = data.get("simulation", data) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Expected a mapping under 'simulation' in {resolved_path}")

    return SimulationConfig.from_dict(section)
