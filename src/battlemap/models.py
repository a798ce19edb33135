"""Enumerations shared across layers, features and the map aggregate."""

from enum import StrEnum


class Biome(StrEnum):
    """Biome of the generated area."""

    TEMPERATE_FOREST = "temperate_forest"
    BOREAL_FOREST = "boreal_forest"
    TROPICAL_RAINFOREST = "tropical_rainforest"
    TEMPERATE_GRASSLAND = "temperate_grassland"
    DESERT = "desert"
    TUNDRA = "tundra"
    WETLAND = "wetland"
    MOUNTAIN = "mountain"
    COASTAL = "coastal"


class TerrainType(StrEnum):
    """Surface terrain of a tile."""

    GRASS = "grass"
    DIRT = "dirt"
    SAND = "sand"
    ROCK = "rock"
    SNOW = "snow"
    MUD = "mud"
    SHALLOW_WATER = "shallow_water"
    DEEP_WATER = "deep_water"
    FOREST_FLOOR = "forest_floor"
    ROAD = "road"
    BUILDING = "building"


class FeatureCategory(StrEnum):
    """Broad category of a map feature."""

    RELIEF = "relief"
    NATURAL = "natural"
    ARTIFICIAL = "artificial"
    CULTURAL = "cultural"


class FeatureKind(StrEnum):
    """Variant tag of a map feature."""

    HILL = "hill"
    RIDGE = "ridge"
    VALLEY = "valley"
    CLIFF = "cliff"
    RIVER = "river"
    LAKE = "lake"
    SPRING = "spring"
    WETLAND = "wetland"
    FOREST = "forest"
    GRASSLAND = "grassland"
    BUILDING = "building"
    ROAD = "road"
    BRIDGE = "bridge"


CATEGORY_BY_KIND: dict[FeatureKind, FeatureCategory] = {
    FeatureKind.HILL: FeatureCategory.RELIEF,
    FeatureKind.RIDGE: FeatureCategory.RELIEF,
    FeatureKind.VALLEY: FeatureCategory.RELIEF,
    FeatureKind.CLIFF: FeatureCategory.RELIEF,
    FeatureKind.RIVER: FeatureCategory.NATURAL,
    FeatureKind.LAKE: FeatureCategory.NATURAL,
    FeatureKind.SPRING: FeatureCategory.NATURAL,
    FeatureKind.WETLAND: FeatureCategory.NATURAL,
    FeatureKind.FOREST: FeatureCategory.NATURAL,
    FeatureKind.GRASSLAND: FeatureCategory.NATURAL,
    FeatureKind.BUILDING: FeatureCategory.ARTIFICIAL,
    FeatureKind.ROAD: FeatureCategory.ARTIFICIAL,
    FeatureKind.BRIDGE: FeatureCategory.ARTIFICIAL,
}


class CoverLevel(StrEnum):
    """Protection a tile offers against ranged attacks."""

    NONE = "none"
    QUARTER = "quarter"
    HALF = "half"
    THREE_QUARTERS = "three_quarters"
    TOTAL = "total"

    @property
    def rank(self) -> int:
        return list(CoverLevel).index(self)


class ConcealmentLevel(StrEnum):
    """How well a tile hides an occupant."""

    NONE = "none"
    LIGHT = "light"
    HEAVY = "heavy"

    @property
    def rank(self) -> int:
        return list(ConcealmentLevel).index(self)


class LineOfSight(StrEnum):
    """Whether a tile blocks sight lines."""

    CLEAR = "clear"
    OBSTRUCTED = "obstructed"
    BLOCKED = "blocked"

    @property
    def rank(self) -> int:
        return list(LineOfSight).index(self)


class Compatibility(StrEnum):
    """Outcome of mixing two features on one tile."""

    COMPATIBLE = "compatible"
    SYNERGISTIC = "synergistic"
    NEUTRAL = "neutral"
    INCOMPATIBLE = "incompatible"


class TacticalAspect(StrEnum):
    """Aspects of a tile a feature can dominate."""

    TERRAIN = "terrain"
    HEIGHT = "height"
    MOVEMENT = "movement"
    BLOCKING = "blocking"
    VISUAL = "visual"
