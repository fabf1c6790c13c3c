"""Spec discovery and dependency ordering."""

from spec_coordinator.specs.discovery import LoadedSpec, load_spec, load_specs
from spec_coordinator.specs.ordering import (
    MissingSpecDependencyError,
    SpecCycleError,
    SpecDependencyError,
    order_specs,
)

__all__ = [
    "LoadedSpec",
    "MissingSpecDependencyError",
    "SpecCycleError",
    "SpecDependencyError",
    "load_spec",
    "load_specs",
    "order_specs",
]
