"""
Core module for the Hazard Risk Engine.
Contains the risk taxonomy, data models, normalization and the provider fallback chain.
"""

from core.taxonomy import RiskLevel, compare, max_level
from core.models import (
    AdminUnit,
    Attempt,
    AttemptTrace,
    Coordinate,
    HazardKind,
    HazardRequest,
    InvalidCoordinateError,
    Outcome,
    RawIndicator,
    RiskResult,
    Scale,
)
from core.config import ConfigError, EngineConfig
from core.fallback import AttemptBudget, DataSource, ProviderChain, SourceOutcome

__all__ = [
    # Taxonomy
    "RiskLevel",
    "compare",
    "max_level",
    # Models
    "AdminUnit",
    "Attempt",
    "AttemptTrace",
    "Coordinate",
    "HazardKind",
    "HazardRequest",
    "InvalidCoordinateError",
    "Outcome",
    "RawIndicator",
    "RiskResult",
    "Scale",
    # Config
    "ConfigError",
    "EngineConfig",
    # Fallback
    "AttemptBudget",
    "DataSource",
    "ProviderChain",
    "SourceOutcome",
]
