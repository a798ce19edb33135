"""Water features: rivers, lakes, springs and wetlands.

Widths and depths are in feet; positions are in tile units. A river's
``cell_size`` converts between the two when testing whether a position
falls inside the channel.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import StrEnum

from shapely.errors import GEOSException
from shapely.geometry import Polygon, box
from shapely.ops import unary_union

from battlemap import errors
from battlemap.features.base import MapFeature
from battlemap.geometry import Position
from battlemap.models import FeatureKind
from battlemap.seed import SeededRandom

logger = logging.getLogger(__name__)

SQ_FT_PER_ACRE = 43_560.0


class SegmentType(StrEnum):
    """Character of the channel at a river point."""

    SOURCE = "source"
    STRAIGHT = "straight"
    CURVE = "curve"
    MEANDER = "meander"
    RAPIDS = "rapids"
    CONFLUENCE = "confluence"
    DELTA = "delta"
    MOUTH = "mouth"


@dataclass(frozen=True)
class RiverPoint:
    """One sample along a river's centerline."""

    position: Position
    width: float
    depth: float
    flow_direction: float  # degrees clockwise from north
    segment_type: SegmentType = SegmentType.STRAIGHT
    velocity: float = 1.0  # ft/s

    def __post_init__(self) -> None:
        if self.width <= 0:
            raise errors.river_point_invalid_width(self.width)
        if self.depth < 0:
            raise errors.river_point_invalid_depth(self.depth)

    @property
    def is_navigable(self) -> bool:
        return self.segment_type != SegmentType.RAPIDS and self.depth >= 2 and self.width >= 10

    @property
    def is_crossable(self) -> bool:
        """Can be forded on foot."""
        return self.width < 25 and self.depth < 3


def _segment_distance(p: Position, a: Position, b: Position) -> float:
    dx, dy = b.x - a.x, b.y - a.y
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return p.distance_to(a)
    t = max(0.0, min(1.0, ((p.x - a.x) * dx + (p.y - a.y) * dy) / length_sq))
    return p.distance_to(Position(a.x + t * dx, a.y + t * dy))


@dataclass(kw_only=True)
class River(MapFeature):
    """A river as an ordered centerline, source first."""

    kind: FeatureKind = field(default=FeatureKind.RIVER, init=False)
    average_width: float
    cell_size: float = 5.0
    path: list[RiverPoint] = field(default_factory=list)
    tributary_ids: list[str] = field(default_factory=list)
    parent_id: str | None = None
    terminus: str = "sink"  # edge, lake, confluence or sink
    stream_order: int = 1

    def __post_init__(self) -> None:
        if self.average_width <= 0:
            raise errors.river_invalid_width(self.average_width)
        super().__post_init__()

    def add_path_point(self, point: RiverPoint, index: int | None = None) -> None:
        """Append (or insert at ``index``) a point that lies inside the river's area."""
        if not self.area.contains(point.position):
            raise errors.river_point_out_of_bounds(self.id, point.position.x, point.position.y)
        if index is None:
            self.path.append(point)
        else:
            self.path.insert(index, point)

    def add_tributary(self, tributary: "River") -> Position:
        """Attach ``tributary`` and record the confluence on this river's path.

        The two areas must intersect. Re-attaching the same tributary only
        refreshes the reference.
        """
        overlap = self.area.intersection(tributary.area)
        if overlap is None:
            raise errors.river_tributary_no_confluence(self.id, tributary.id)

        confluence = overlap.center
        if tributary.path and overlap.contains(tributary.path[-1].position):
            confluence = tributary.path[-1].position

        if tributary.id not in self.tributary_ids:
            self.tributary_ids.append(tributary.id)
        tributary.parent_id = self.id
        tributary.terminus = "confluence"

        has_confluence = any(
            p.segment_type == SegmentType.CONFLUENCE and p.position.distance_to(confluence) < 1
            for p in self.path
        )
        if not has_confluence:
            nearest = self.nearest_index(confluence)
            if nearest is not None and self.path[nearest].position == confluence:
                point = self.path[nearest]
                self.path[nearest] = replace(
                    point, width=point.width * 1.2, depth=point.depth * 1.1, segment_type=SegmentType.CONFLUENCE
                )
                return confluence
            self.add_path_point(
                RiverPoint(
                    position=confluence,
                    width=self.average_width * 1.2,
                    depth=self.average_depth * 1.1 if self.path else 1.0,
                    flow_direction=self.flow_direction_at(confluence),
                    segment_type=SegmentType.CONFLUENCE,
                ),
                index=None if nearest is None else nearest + 1,
            )
        return confluence

    @property
    def length(self) -> float:
        """Centerline length in tiles."""
        return sum(a.position.distance_to(b.position) for a, b in zip(self.path, self.path[1:]))

    @property
    def average_depth(self) -> float:
        if not self.path:
            return 0.0
        return sum(p.depth for p in self.path) / len(self.path)

    @property
    def has_rapids(self) -> bool:
        return any(p.segment_type == SegmentType.RAPIDS for p in self.path)

    @property
    def has_meanders(self) -> bool:
        return any(p.segment_type in (SegmentType.MEANDER, SegmentType.CURVE) for p in self.path)

    def nearest_index(self, position: Position) -> int | None:
        if not self.path:
            return None
        return min(range(len(self.path)), key=lambda i: (self.path[i].position.distance_to(position), i))

    def nearest_point(self, position: Position) -> RiverPoint | None:
        index = self.nearest_index(position)
        return None if index is None else self.path[index]

    def width_at(self, position: Position) -> float:
        point = self.nearest_point(position)
        return self.average_width if point is None else point.width

    def depth_at(self, position: Position) -> float:
        point = self.nearest_point(position)
        return 0.0 if point is None else point.depth

    def flow_direction_at(self, position: Position) -> float:
        point = self.nearest_point(position)
        return 0.0 if point is None else point.flow_direction

    def contains_position(self, position: Position) -> bool:
        """Whether ``position`` lies within the channel."""
        if not self.path:
            return False
        if len(self.path) == 1:
            return position.distance_to(self.path[0].position) <= self._half_width_tiles(self.path[0])
        for a, b in zip(self.path, self.path[1:]):
            half_width = max(self._half_width_tiles(a), self._half_width_tiles(b))
            if _segment_distance(position, a.position, b.position) <= half_width:
                return True
        return False

    def _half_width_tiles(self, point: RiverPoint) -> float:
        return max(point.width / self.cell_size / 2, 0.5)

    def crossing_points(self) -> list[Position]:
        return [p.position for p in self.path if p.is_crossable and p.segment_type != SegmentType.RAPIDS]


class LakeFormation(StrEnum):
    """How a lake basin formed."""

    NATURAL = "natural"
    VOLCANIC = "volcanic"
    ARTIFICIAL = "artificial"
    OXBOW = "oxbow"
    GLACIAL = "glacial"
    KARST = "karst"


class ShoreType(StrEnum):
    """Material of the shore at a shoreline point."""

    SANDY = "sandy"
    ROCKY = "rocky"
    MARSHY = "marshy"
    WOODED = "wooded"
    GRASSY = "grassy"
    MUDDY = "muddy"

    @property
    def accessibility(self) -> float:
        return SHORE_ACCESSIBILITY[self]


SHORE_ACCESSIBILITY: dict[ShoreType, float] = {
    ShoreType.SANDY: 0.9,
    ShoreType.GRASSY: 0.8,
    ShoreType.MUDDY: 0.5,
    ShoreType.ROCKY: 0.4,
    ShoreType.WOODED: 0.3,
    ShoreType.MARSHY: 0.2,
}

SHORE_CANDIDATES: dict[LakeFormation, list[ShoreType]] = {
    LakeFormation.VOLCANIC: [ShoreType.ROCKY, ShoreType.SANDY],
    LakeFormation.GLACIAL: [ShoreType.ROCKY, ShoreType.SANDY, ShoreType.GRASSY],
    LakeFormation.KARST: [ShoreType.ROCKY, ShoreType.GRASSY],
    LakeFormation.OXBOW: [ShoreType.MUDDY, ShoreType.MARSHY, ShoreType.GRASSY],
    LakeFormation.ARTIFICIAL: [ShoreType.ROCKY, ShoreType.GRASSY],
    LakeFormation.NATURAL: [ShoreType.SANDY, ShoreType.GRASSY, ShoreType.WOODED],
}


class LakeSize(StrEnum):
    """Size class by surface acres."""

    POND = "pond"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    GREAT = "great"

    @classmethod
    def from_acres(cls, acres: float) -> "LakeSize":
        if acres < 0.5:
            return cls.POND
        if acres < 5:
            return cls.SMALL
        if acres < 50:
            return cls.MEDIUM
        if acres < 500:
            return cls.LARGE
        return cls.GREAT


@dataclass(frozen=True)
class ShorelinePoint:
    """A point on a lake's shoreline ring."""

    position: Position
    shore_type: ShoreType
    depth: float = 0.5
    accessibility: float = -1.0

    def __post_init__(self) -> None:
        if self.depth < 0:
            raise errors.lake_invalid_depth(self.depth, self.depth)
        if self.accessibility < 0:
            object.__setattr__(self, "accessibility", self.shore_type.accessibility)
        if not 0.0 <= self.accessibility <= 1.0:
            raise errors.invalid_geometry("ShorelinePoint", "accessibility must be in [0, 1]")


def cells_to_polygon(cells: list[tuple[int, int]]) -> Polygon | None:
    """Union of unit tile squares, largest part only."""
    if not cells:
        return None
    try:
        merged = unary_union([box(x, y, x + 1, y + 1) for x, y in cells])
    except GEOSException as e:
        logger.warning("Failed to merge %d lake cells: %s", len(cells), e)
        return None
    if isinstance(merged, Polygon):
        return merged
    parts = sorted(getattr(merged, "geoms", []), key=lambda g: (-g.area, g.bounds))
    return parts[0] if parts else None


def island_centers(cells: list[tuple[int, int]]) -> list[Position]:
    """A point inside each dry hole enclosed by the water cells, top to bottom."""
    outline = cells_to_polygon(cells)
    if outline is None:
        return []
    centers = []
    for ring in outline.interiors:
        point = Polygon(ring).representative_point()
        centers.append(Position(point.x, point.y))
    return sorted(centers, key=lambda p: (p.y, p.x))


@dataclass(kw_only=True)
class Lake(MapFeature):
    """A standing body of water with a shoreline ring."""

    kind: FeatureKind = field(default=FeatureKind.LAKE, init=False)
    formation: LakeFormation = LakeFormation.NATURAL
    max_depth: float
    average_depth: float | None = None
    cell_size: float = 5.0
    shoreline: list[ShorelinePoint] = field(default_factory=list)
    islands: list[Position] = field(default_factory=list)
    inlets: list[Position] = field(default_factory=list)
    outlets: list[Position] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.average_depth is None:
            self.average_depth = self.max_depth * 0.6
        if self.max_depth <= 0 or self.average_depth < 0 or self.average_depth > self.max_depth:
            raise errors.lake_invalid_depth(self.max_depth, self.average_depth)
        super().__post_init__()

    @property
    def surface_acres(self) -> float:
        return len(self.claimed_cells()) * self.cell_size**2 / SQ_FT_PER_ACRE

    @property
    def size(self) -> LakeSize:
        return LakeSize.from_acres(self.surface_acres)

    @property
    def shoreline_length(self) -> float:
        """Ring length in tiles."""
        ring = self.shoreline
        if len(ring) < 2:
            return 0.0
        return sum(ring[i].position.distance_to(ring[(i + 1) % len(ring)].position) for i in range(len(ring)))

    @property
    def dominant_shore_type(self) -> ShoreType | None:
        if not self.shoreline:
            return None
        counts = Counter(p.shore_type for p in self.shoreline)
        # ties resolve in ShoreType declaration order
        return max(ShoreType, key=lambda t: (counts.get(t, 0), -list(ShoreType).index(t)))

    def add_island(self, position: Position) -> None:
        if not self.area.contains(position):
            raise errors.lake_island_out_of_bounds(self.id, position.x, position.y)
        self.islands.append(position)

    def build_shoreline(self, rng: SeededRandom, point_count: int = 16) -> list[ShorelinePoint]:
        """Sample ``point_count`` points around the water outline.

        Shore types are drawn from the candidates for this lake's formation.
        """
        polygon = cells_to_polygon(self.claimed_cells())
        if polygon is None:
            return []
        ring = polygon.exterior
        candidates = SHORE_CANDIDATES.get(self.formation, SHORE_CANDIDATES[LakeFormation.NATURAL])
        points = []
        for i in range(point_count):
            where = ring.interpolate(ring.length * i / point_count)
            points.append(
                ShorelinePoint(
                    position=Position(round(where.x, 4), round(where.y, 4)),
                    shore_type=rng.choice(candidates),
                    depth=round(rng.uniform(0.2, 1.5), 2),
                )
            )
        self.shoreline = points
        return points


class SpringType(StrEnum):
    """Source of a spring's water."""

    ARTESIAN = "artesian"
    GRAVITY = "gravity"
    THERMAL = "thermal"
    MINERAL = "mineral"
    SEASONAL = "seasonal"


@dataclass(kw_only=True)
class Spring(MapFeature):
    """Groundwater emerging at a single tile."""

    kind: FeatureKind = field(default=FeatureKind.SPRING, init=False)
    spring_type: SpringType = SpringType.GRAVITY
    flow_rate: float = 5.0  # gallons per minute
    temperature: float = 55.0  # Fahrenheit

    @property
    def is_hot_spring(self) -> bool:
        return self.spring_type == SpringType.THERMAL and self.temperature > 100

    @property
    def is_seasonal(self) -> bool:
        return self.spring_type == SpringType.SEASONAL

    @property
    def daily_output(self) -> float:
        """Gallons per day."""
        return self.flow_rate * 60 * 24


class WetlandType(StrEnum):
    """Wetland classification."""

    MARSH = "marsh"
    SWAMP = "swamp"
    BOG = "bog"
    FEN = "fen"


@dataclass(kw_only=True)
class Wetland(MapFeature):
    """Saturated ground with standing water in places."""

    kind: FeatureKind = field(default=FeatureKind.WETLAND, init=False)
    wetland_type: WetlandType = WetlandType.MARSH
    water_depth: float = 0.5
    vegetation_density: float = 0.6

    @property
    def is_traversable(self) -> bool:
        if self.wetland_type == WetlandType.MARSH:
            return self.vegetation_density < 0.8 and self.water_depth < 2
        if self.wetland_type == WetlandType.SWAMP:
            return False
        if self.wetland_type == WetlandType.BOG:
            return self.water_depth < 1
        return self.water_depth < 1.5
