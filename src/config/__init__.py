"""Topology configuration package."""

from .settings import TopologyConfig, load_topology_config

__all__ = ["TopologyConfig", "load_topology_config"]
