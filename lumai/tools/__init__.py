from lumai.tools.registry import Capability, CapabilityRegistry
from lumai.tools.wellness import WellnessDataSource, build_wellness_registry
from lumai.tools.fixture_source import FixtureWellnessSource

__all__ = [
    "Capability",
    "CapabilityRegistry",
    "WellnessDataSource",
    "FixtureWellnessSource",
    "build_wellness_registry",
]
