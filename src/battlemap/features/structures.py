"""Artificial structures: buildings with floors and rooms, roads and bridges.

Footprints are in tile units and backed by shapely polygons. Floors and
rooms are immutable records; every change goes through a ``with_*`` method
that returns a new value, and room-to-room connectivity is kept as ids.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import NamedTuple

from shapely.errors import GEOSException
from shapely.geometry import LineString, Polygon
from shapely.geometry import Point as ShapelyPoint

from battlemap import errors
from battlemap.features.base import MapFeature
from battlemap.geometry import Position, SpatialBounds
from battlemap.models import FeatureKind
from battlemap.seed import SeededRandom

logger = logging.getLogger(__name__)

MIN_FOOTPRINT_TILES = 1
MAX_FOOTPRINT_TILES = 40


class Point(NamedTuple):
    """A 2D vertex in tile units."""

    x: float
    y: float


@dataclass(frozen=True)
class BuildingFootprint:
    """Ground plan of a building."""

    vertices: tuple[Point, ...]
    is_rectangle: bool = False

    @classmethod
    def from_rectangle(cls, x: float, y: float, width: float, height: float) -> "BuildingFootprint":
        if width < MIN_FOOTPRINT_TILES or height < MIN_FOOTPRINT_TILES:
            raise errors.footprint_too_small(width, height, MIN_FOOTPRINT_TILES)
        if width > MAX_FOOTPRINT_TILES or height > MAX_FOOTPRINT_TILES:
            raise errors.footprint_too_large(width, height, MAX_FOOTPRINT_TILES)
        vertices = (Point(x, y), Point(x + width, y), Point(x + width, y + height), Point(x, y + height))
        return cls(vertices=vertices, is_rectangle=True)

    @classmethod
    def from_polygon(cls, points: list[tuple[float, float]]) -> "BuildingFootprint":
        if len(points) < 3:
            raise errors.footprint_invalid_polygon(len(points))
        footprint = cls(vertices=tuple(Point(px, py) for px, py in points))
        min_x, min_y, max_x, max_y = footprint.extent
        if max_x - min_x > MAX_FOOTPRINT_TILES or max_y - min_y > MAX_FOOTPRINT_TILES:
            raise errors.footprint_too_large(max_x - min_x, max_y - min_y, MAX_FOOTPRINT_TILES)
        return footprint

    @property
    def polygon(self) -> Polygon:
        return Polygon(self.vertices)

    @property
    def extent(self) -> tuple[float, float, float, float]:
        xs = [v.x for v in self.vertices]
        ys = [v.y for v in self.vertices]
        return min(xs), min(ys), max(xs), max(ys)

    @property
    def area(self) -> float:
        """Area in square tiles."""
        return self.polygon.area

    @property
    def perimeter(self) -> float:
        return self.polygon.length

    @property
    def center(self) -> Position:
        c = self.polygon.centroid
        return Position(c.x, c.y)

    @property
    def bounds(self) -> SpatialBounds:
        """Smallest integer tile bounds covering the footprint."""
        min_x, min_y, max_x, max_y = self.extent
        left, top = int(min_x // 1), int(min_y // 1)
        right, bottom = -int(-max_x // 1), -int(-max_y // 1)
        return SpatialBounds(left, top, max(right - left, 1), max(bottom - top, 1))

    def overlaps(self, other: "BuildingFootprint") -> bool:
        """Axis-aligned bounding box test; touching edges do not overlap."""
        a_min_x, a_min_y, a_max_x, a_max_y = self.extent
        b_min_x, b_min_y, b_max_x, b_max_y = other.extent
        return not (a_max_x <= b_min_x or b_max_x <= a_min_x or a_max_y <= b_min_y or b_max_y <= a_min_y)

    def intersects_polygon(self, other: "BuildingFootprint") -> bool:
        """Exact test for non-rectangular footprints."""
        if not self.overlaps(other):
            return False
        return self.polygon.intersection(other.polygon).area > 0

    def distance_to(self, other: "BuildingFootprint") -> float:
        return self.polygon.distance(other.polygon)

    def shared_wall(self, other: "BuildingFootprint") -> LineString | None:
        """Common boundary segment with ``other``, if they touch along an edge."""
        try:
            shared = self.polygon.boundary.intersection(other.polygon.boundary)
        except GEOSException as e:
            logger.warning("Shared wall check failed: %s", e)
            return None
        parts = [g for g in getattr(shared, "geoms", [shared]) if isinstance(g, LineString) and g.length > 0]
        if not parts:
            return None
        return max(parts, key=lambda g: (g.length, g.bounds))

    def cells(self) -> list[tuple[int, int]]:
        """Tiles whose centers fall inside the footprint."""
        if self.is_rectangle:
            return list(self.bounds.tiles())
        polygon = self.polygon
        return [(x, y) for x, y in self.bounds.tiles() if polygon.contains(ShapelyPoint(x + 0.5, y + 0.5))]

    def outline(self) -> list[Position]:
        return [Position(v.x, v.y) for v in self.vertices]


@dataclass(frozen=True)
class BuildingMaterial:
    """Wall construction with its physical and economic properties."""

    name: str
    wall_thickness: float  # feet
    durability: float
    weather_resistance: float
    cost: float
    biomes: frozenset[str]

    def suits(self, setting: str) -> bool:
        return setting in self.biomes

    def can_support_floors(self, floors: int) -> bool:
        if self.durability < 0.5:
            return floors <= 1
        return True


MATERIALS: dict[str, BuildingMaterial] = {
    m.name: m
    for m in (
        BuildingMaterial("mud_brick", 1.0, 0.3, 0.2, 0.1, frozenset({"desert", "plains", "swamp"})),
        BuildingMaterial("wattle_daub", 0.5, 0.4, 0.3, 0.2, frozenset({"forest", "plains", "rural"})),
        BuildingMaterial("wood_plank", 0.5, 0.6, 0.5, 0.4, frozenset({"forest", "mountain", "coastal"})),
        BuildingMaterial("wood_log", 1.5, 0.7, 0.6, 0.5, frozenset({"forest", "mountain"})),
        BuildingMaterial("stone_rubble", 1.5, 0.8, 0.8, 0.6, frozenset({"mountain", "coastal", "plains"})),
        BuildingMaterial("stone_cut", 2.0, 0.9, 0.9, 0.8, frozenset({"mountain", "urban", "castle"})),
        BuildingMaterial("stone_fortified", 3.0, 1.0, 1.0, 1.0, frozenset({"castle", "fortification"})),
    )
}


def select_material(wealth: float, setting: str, rng: SeededRandom) -> BuildingMaterial:
    """Pick the material whose cost best matches ``wealth`` among those suited to ``setting``.

    Materials within 0.15 of the best match are equally likely.
    """
    candidates = [m for m in MATERIALS.values() if m.suits(setting)] or list(MATERIALS.values())
    best = min(abs(m.cost - wealth) for m in candidates)
    near = [m for m in candidates if abs(m.cost - wealth) <= best + 0.15]
    return rng.choice(near)


class RoomType(StrEnum):
    """Purpose of a room."""

    HALL = "hall"
    KITCHEN = "kitchen"
    BEDROOM = "bedroom"
    STORAGE = "storage"
    PANTRY = "pantry"
    CLOSET = "closet"
    WORKSHOP = "workshop"
    SHRINE = "shrine"
    BARRACKS = "barracks"
    OFFICE = "office"


MIN_ROOM_AREA: dict[RoomType, float] = {
    RoomType.HALL: 200,
    RoomType.KITCHEN: 120,
    RoomType.BEDROOM: 80,
    RoomType.STORAGE: 40,
    RoomType.PANTRY: 50,
    RoomType.CLOSET: 25,
    RoomType.WORKSHOP: 150,
    RoomType.SHRINE: 100,
    RoomType.BARRACKS: 250,
    RoomType.OFFICE: 80,
}


def room_id(seed: int, x: float, y: float) -> str:
    return f"room_{seed}_{int(x)}_{int(y)}"


@dataclass(frozen=True)
class Room:
    """A room on one floor; offsets and sizes in feet from the footprint corner."""

    id: str
    room_type: RoomType
    x: float
    y: float
    width: float
    length: float
    connected_to: tuple[str, ...] = ()
    features: tuple[str, ...] = ()

    @property
    def area(self) -> float:
        return self.width * self.length

    def connect_to(self, other_id: str) -> "Room":
        """Return a copy connected to ``other_id``; no-op if already connected."""
        if other_id == self.id or other_id in self.connected_to:
            return self
        return replace(self, connected_to=(*self.connected_to, other_id))


@dataclass(frozen=True)
class Floor:
    """One storey. Level 0 is the ground floor, negative levels are basements."""

    level: int
    footprint_area: float  # square feet
    ceiling_height: float = 10.0
    base_elevation: float = 0.0
    rooms: tuple[Room, ...] = ()

    @property
    def elevation(self) -> float:
        return self.base_elevation + self.level * self.ceiling_height

    @property
    def is_ground(self) -> bool:
        return self.level == 0

    @property
    def is_basement(self) -> bool:
        return self.level < 0

    @property
    def is_accessible(self) -> bool:
        """Reachable from outside without stairs."""
        return self.level == 0

    @property
    def used_area(self) -> float:
        return sum(r.area for r in self.rooms)

    @property
    def remaining_area(self) -> float:
        return self.footprint_area - self.used_area

    @property
    def utilization(self) -> float:
        return self.used_area / self.footprint_area if self.footprint_area else 0.0

    def room(self, room_id: str) -> Room | None:
        return next((r for r in self.rooms if r.id == room_id), None)

    def with_room(self, room: Room) -> "Floor":
        if self.used_area + room.area > self.footprint_area:
            raise errors.room_exceeds_floor_area(room.id, room.area, self.remaining_area)
        return replace(self, rooms=(*self.rooms, room))

    def with_connection(self, first_id: str, second_id: str) -> "Floor":
        """Connect two rooms both ways."""
        first, second = self.room(first_id), self.room(second_id)
        if first is None or second is None:
            raise errors.invalid_geometry("Floor", "cannot connect unknown rooms", first=first_id, second=second_id)
        rooms = []
        for r in self.rooms:
            if r.id == first_id:
                r = r.connect_to(second_id)
            elif r.id == second_id:
                r = r.connect_to(first_id)
            rooms.append(r)
        return replace(self, rooms=tuple(rooms))


class BuildingType(StrEnum):
    """Function of a building."""

    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    MILITARY = "military"
    RELIGIOUS = "religious"
    GOVERNMENTAL = "governmental"
    INDUSTRIAL = "industrial"
    AGRICULTURAL = "agricultural"
    RUINS = "ruins"


class BuildingSize(StrEnum):
    """Size class with its storey limit."""

    TINY = "tiny"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    HUGE = "huge"

    @property
    def max_stories(self) -> int:
        return {"tiny": 1, "small": 2, "medium": 4, "large": 8, "huge": 20}[self.value]

    @property
    def edge_range(self) -> tuple[int, int]:
        """Footprint edge length range in tiles."""
        return {"tiny": (2, 3), "small": (3, 5), "medium": (5, 8), "large": (8, 12), "huge": (12, 20)}[self.value]


@dataclass(kw_only=True)
class Building(MapFeature):
    """A building with its footprint, floors and construction."""

    kind: FeatureKind = field(default=FeatureKind.BUILDING, init=False)
    building_type: BuildingType = BuildingType.RESIDENTIAL
    size: BuildingSize = BuildingSize.SMALL
    footprint: BuildingFootprint
    material: BuildingMaterial
    floors: tuple[Floor, ...] = ()
    condition: float = 1.0
    age: int = 0
    orientation: int = 0  # degrees, multiple of 90
    entrances: list[Position] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not 0.0 <= self.condition <= 1.0:
            raise errors.invalid_geometry("Building", "condition must be in [0, 1]", condition=self.condition)
        super().__post_init__()

    @property
    def stories(self) -> int:
        return sum(1 for f in self.floors if f.level >= 0)

    @property
    def total_floor_area(self) -> float:
        return sum(f.footprint_area for f in self.floors)

    def floor(self, level: int) -> Floor | None:
        return next((f for f in self.floors if f.level == level), None)

    def add_floor(self, floor: Floor) -> None:
        """Add a floor, respecting the size class and the material's load limit."""
        above_ground = self.stories + (1 if floor.level >= 0 else 0)
        if self.floor(floor.level) is not None:
            raise errors.invalid_geometry("Building", "floor level already exists", level=floor.level)
        if floor.level >= 0 and above_ground > self.size.max_stories:
            raise errors.structure_terrain_unsuitable(
                self.id, f"{self.size} buildings have at most {self.size.max_stories} stories"
            )
        if floor.level >= 0 and not self.material.can_support_floors(above_ground):
            raise errors.structure_terrain_unsuitable(
                self.id, f"{self.material.name} cannot carry {above_ground} stories"
            )
        self.floors = tuple(sorted((*self.floors, floor), key=lambda f: f.level))

    def add_entrance(self, position: Position, tolerance: float = 1e-6) -> None:
        """Entrances must sit on the footprint's perimeter."""
        if self.footprint.polygon.exterior.distance(ShapelyPoint(position.x, position.y)) > tolerance:
            raise errors.invalid_geometry("Building", "entrance must be on the perimeter", x=position.x, y=position.y)
        self.entrances.append(position)

    @property
    def defensive_value(self) -> float:
        """0..1 estimate of how well the building shelters defenders."""
        value = self.material.durability * 0.6 + self.material.wall_thickness / 3.0 * 0.2
        value += min(self.stories, 4) * 0.05
        if self.building_type == BuildingType.MILITARY:
            value += 0.2
        return round(min(1.0, value * self.condition), 4)


class RoadSurface(StrEnum):
    """Road surface material."""

    DIRT = "dirt"
    GRAVEL = "gravel"
    COBBLESTONE = "cobblestone"
    PAVED = "paved"
    WOODEN = "wooden"


ROAD_SPEED_FACTOR: dict[RoadSurface, float] = {
    RoadSurface.DIRT: 0.9,
    RoadSurface.GRAVEL: 0.8,
    RoadSurface.COBBLESTONE: 0.75,
    RoadSurface.PAVED: 0.7,
    RoadSurface.WOODEN: 0.8,
}


@dataclass(kw_only=True)
class Road(MapFeature):
    """A road as an ordered list of tile centers."""

    kind: FeatureKind = field(default=FeatureKind.ROAD, init=False)
    surface: RoadSurface = RoadSurface.DIRT
    width: float = 10.0  # feet
    quality: float = 0.5
    maintenance: float = 0.5
    path: list[Position] = field(default_factory=list)
    bridge_ids: list[str] = field(default_factory=list)
    connects: list[str] = field(default_factory=list)

    @property
    def length(self) -> float:
        return sum(a.distance_to(b) for a, b in zip(self.path, self.path[1:]))

    @property
    def movement_factor(self) -> float:
        """Multiplier on movement cost for travel along the road."""
        return ROAD_SPEED_FACTOR[self.surface] + (1.0 - self.quality) * 0.1


class BridgeMaterial(StrEnum):
    """Deck material."""

    WOOD = "wood"
    STONE = "stone"
    ROPE = "rope"


class BridgeStructure(StrEnum):
    """Structural design."""

    BEAM = "beam"
    ARCH = "arch"
    SUSPENSION = "suspension"


@dataclass(kw_only=True)
class Bridge(MapFeature):
    """A span carrying a road over water."""

    kind: FeatureKind = field(default=FeatureKind.BRIDGE, init=False)
    material: BridgeMaterial = BridgeMaterial.WOOD
    structure: BridgeStructure = BridgeStructure.BEAM
    length: float = 10.0  # feet
    width: float = 10.0  # feet
    max_weight: float = 5.0  # tons
    road_id: str | None = None
    crosses_id: str | None = None

    @classmethod
    def design_for_span(cls, span_ft: float, wealth: float) -> tuple[BridgeMaterial, BridgeStructure, float]:
        """Material, structure and load limit for a span of ``span_ft`` feet."""
        if span_ft > 60:
            return BridgeMaterial.ROPE, BridgeStructure.SUSPENSION, 1.0
        if span_ft > 25 or wealth >= 0.6:
            return BridgeMaterial.STONE, BridgeStructure.ARCH, 20.0
        return BridgeMaterial.WOOD, BridgeStructure.BEAM, 5.0
