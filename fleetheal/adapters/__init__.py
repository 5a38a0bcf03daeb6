"""
Fixture-backed implementations of the probe, actuator and scope contracts.
"""

from .fixture import FixtureActuator, FixtureFleet, FixtureNode, FixtureProbe

__all__ = ["FixtureFleet", "FixtureNode", "FixtureProbe", "FixtureActuator"]
