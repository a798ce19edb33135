"""Map feature variants: relief, water, vegetation and structures."""

from battlemap.features.base import MapFeature, ReliefFeature, feature_id
from battlemap.features.structures import (
    Bridge,
    Building,
    BuildingFootprint,
    BuildingMaterial,
    Floor,
    Road,
    Room,
)
from battlemap.features.vegetation import Forest, Grassland, Plant, Tree
from battlemap.features.water import Lake, River, RiverPoint, Spring, Wetland

__all__ = [
    "MapFeature",
    "ReliefFeature",
    "feature_id",
    "Bridge",
    "Building",
    "BuildingFootprint",
    "BuildingMaterial",
    "Floor",
    "Road",
    "Room",
    "Forest",
    "Grassland",
    "Plant",
    "Tree",
    "Lake",
    "River",
    "RiverPoint",
    "Spring",
    "Wetland",
]
