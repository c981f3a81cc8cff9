"""Climate, hydrology, and biome generation package."""

from .config import PipelineConfig, SemanticParams
from .errors import (
    ConfigurationError,
    GenerationCancelled,
    NumericalDivergence,
    ResourceExhaustion,
    UpstreamContractViolation,
    WorldGenError,
)
from .foundation import ElevationThresholds, TerrainFoundation
from .pipeline import WorldResult, generate_world

__all__ = [
    "PipelineConfig",
    "SemanticParams",
    "ElevationThresholds",
    "TerrainFoundation",
    "WorldResult",
    "generate_world",
    "WorldGenError",
    "ConfigurationError",
    "UpstreamContractViolation",
    "NumericalDivergence",
    "ResourceExhaustion",
    "GenerationCancelled",
]
