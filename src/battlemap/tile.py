"""Per-tile records written by the layer generators."""

from dataclasses import asdict, dataclass, field
from typing import Any

from battlemap.models import ConcealmentLevel, CoverLevel, LineOfSight, TerrainType


@dataclass
class GeologyData:
    """Bedrock and soil under one tile."""

    bedrock: str = "granite"
    soil_depth: float = 0.0  # feet
    permeability: float = 0.0
    fracturing: float = 0.0
    feature: str | None = None  # cave, sinkhole or outcrop
    transition: bool = False


@dataclass
class TopographyData:
    elevation: float = 0.0  # feet
    slope: float = 0.0  # degrees
    aspect: float = 0.0  # degrees clockwise from north
    relative_elevation: float = 0.0


@dataclass
class HydrologyData:
    """Flow routing and standing water on one tile."""

    flow_direction: int = -1  # index into the D8 neighbor order, -1 for sinks
    flow_accumulation: float = 1.0
    water_depth: float = 0.0  # feet
    moisture: float = 0.0
    is_spring: bool = False
    is_stream: bool = False
    is_pool: bool = False
    stream_order: int = 0


@dataclass
class VegetationData:
    canopy: float = 0.0
    light: float = 1.0
    ground_cover: float = 0.0
    tree_count: int = 0
    understory_count: int = 0
    dominant_species: str | None = None


@dataclass
class StructureData:
    building_id: str | None = None
    road_id: str | None = None
    bridge_id: str | None = None
    material: str | None = None


@dataclass
class TacticalProperties:
    """Combat-relevant properties resolved by the mixing engine."""

    movement_cost: float = 1.0
    cover: CoverLevel = CoverLevel.NONE
    concealment: ConcealmentLevel = ConcealmentLevel.NONE
    line_of_sight: LineOfSight = LineOfSight.CLEAR
    hazard_level: float = 0.0
    elevation_advantage: float = 0.0
    feature_height: float = 0.0  # feet added by the dominant feature, negative for water

    def defense_bonus(self) -> int:
        """Armor-class style bonus from cover and concealment."""
        cover_bonus = {
            CoverLevel.NONE: 0,
            CoverLevel.QUARTER: 1,
            CoverLevel.HALF: 2,
            CoverLevel.THREE_QUARTERS: 5,
            CoverLevel.TOTAL: 10,
        }[self.cover]
        return cover_bonus + self.concealment.rank + (1 if self.elevation_advantage >= 10 else 0)


@dataclass
class Tile:
    """One grid cell of a map."""

    x: int
    y: int
    terrain: TerrainType = TerrainType.GRASS
    height_multiplier: float = 1.0
    passable: bool = True
    geology: GeologyData = field(default_factory=GeologyData)
    topography: TopographyData = field(default_factory=TopographyData)
    hydrology: HydrologyData = field(default_factory=HydrologyData)
    vegetation: VegetationData = field(default_factory=VegetationData)
    structure: StructureData = field(default_factory=StructureData)
    primary_feature_id: str | None = None
    mixed_feature_ids: set[str] = field(default_factory=set)
    tactical: TacticalProperties = field(default_factory=TacticalProperties)

    @property
    def coord(self) -> tuple[int, int]:
        return self.x, self.y

    @property
    def feature_ids(self) -> list[str]:
        ids = sorted(self.mixed_feature_ids)
        if self.primary_feature_id is not None:
            ids.insert(0, self.primary_feature_id)
        return ids

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mixed_feature_ids"] = sorted(self.mixed_feature_ids)
        return data


def empty_grid(width: int, height: int) -> list[list[Tile]]:
    """Fresh ``height`` rows of ``width`` tiles, indexed ``grid[y][x]``."""
    return [[Tile(x, y) for x in range(width)] for y in range(height)]
