"""Generation layers, run in order by the pipeline."""

from battlemap.layers.base import GenerationContext, GenerationLayer, LayerOutput
from battlemap.layers.features import FeaturePlacementLayer
from battlemap.layers.geology import GeologyLayer
from battlemap.layers.hydrology import HydrologyLayer
from battlemap.layers.structures import StructureLayer
from battlemap.layers.topography import TopographyLayer
from battlemap.layers.vegetation import VegetationLayer

__all__ = [
    "GenerationContext",
    "GenerationLayer",
    "LayerOutput",
    "FeaturePlacementLayer",
    "GeologyLayer",
    "HydrologyLayer",
    "StructureLayer",
    "TopographyLayer",
    "VegetationLayer",
]
