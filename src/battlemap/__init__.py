"""Deterministic, layered generation of tactical battle maps."""

from battlemap.errors import DomainError
from battlemap.gridmap import GridMap
from battlemap.pipeline import MapGenerationPipeline, generate_map
from battlemap.request import MapGenerationRequest
from battlemap.seed import Seed

__all__ = [
    "DomainError",
    "GridMap",
    "MapGenerationPipeline",
    "MapGenerationRequest",
    "Seed",
    "generate_map",
]
