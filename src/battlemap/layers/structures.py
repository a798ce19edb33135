"""Structure layer: buildings with interiors, roads to the map edge and bridges.

Buildings are placed one at a time on flat, dry, open ground. Each
candidate site is validated against the slope limit, the tile in front of
its door and every footprint committed so far; a rejected candidate is
retried at another site, up to a fixed number of attempts per building. Roads are routed from each
building's entrance to a map edge (or an earlier road) with a cheapest-path
search that treats lakes and buildings as impassable and charges extra for
crossing streams, where bridges are built.
"""

import heapq
import logging
import math
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from battlemap import errors
from battlemap.errors import DomainRuleError
from battlemap.features.base import MapFeature, feature_id
from battlemap.features.structures import (
    MIN_ROOM_AREA,
    Bridge,
    Building,
    BuildingFootprint,
    BuildingSize,
    BuildingType,
    Floor,
    Road,
    RoadSurface,
    RoomType,
    Room,
    room_id,
    select_material,
)
from battlemap.geometry import Position, SpatialBounds
from battlemap.gridmap import GridMap
from battlemap.layers.base import GenerationContext, GenerationLayer, LayerOutput
from battlemap.layers.geology import GeologicalFeature, GeologyOutput
from battlemap.layers.hydrology import HydrologyOutput
from battlemap.layers.topography import CLIFF_SLOPE, TopographyOutput, mean_slope
from battlemap.layers.vegetation import VegetationOutput
from battlemap.models import FeatureKind, TerrainType
from battlemap.raster import neighbors4
from battlemap.seed import Seed, SeededRandom

logger = logging.getLogger(__name__)

MAX_SITE_SLOPE = 25.0
MAX_FOUNDATION_SLOPE = 15.0
MAX_PLACEMENT_ATTEMPTS = 10
MAX_ROAD_ATTEMPTS = 4
MAX_BRIDGE_SPAN_FT = 100.0
STREAM_CROSSING_COST = 6.0
ROOM_GRID_FT = 5.0
MAX_PLANNED_STORIES = 3

SIZE_WEIGHTS: dict[BuildingSize, tuple[float, float]] = {
    # (base weight, extra weight per unit of wealth)
    BuildingSize.TINY: (0.35, -0.2),
    BuildingSize.SMALL: (0.4, 0.0),
    BuildingSize.MEDIUM: (0.2, 0.2),
    BuildingSize.LARGE: (0.03, 0.12),
    BuildingSize.HUGE: (0.0, 0.02),
}

TYPE_WEIGHTS: dict[BuildingType, tuple[float, float]] = {
    BuildingType.RESIDENTIAL: (0.55, -0.1),
    BuildingType.AGRICULTURAL: (0.2, -0.1),
    BuildingType.COMMERCIAL: (0.1, 0.1),
    BuildingType.INDUSTRIAL: (0.08, 0.0),
    BuildingType.RELIGIOUS: (0.04, 0.04),
    BuildingType.MILITARY: (0.02, 0.08),
    BuildingType.GOVERNMENTAL: (0.01, 0.06),
}

ROOM_PLANS: dict[BuildingType, tuple[RoomType, ...]] = {
    BuildingType.RESIDENTIAL: (RoomType.HALL, RoomType.KITCHEN, RoomType.BEDROOM, RoomType.PANTRY, RoomType.CLOSET),
    BuildingType.COMMERCIAL: (RoomType.HALL, RoomType.OFFICE, RoomType.STORAGE),
    BuildingType.MILITARY: (RoomType.BARRACKS, RoomType.HALL, RoomType.OFFICE, RoomType.STORAGE),
    BuildingType.RELIGIOUS: (RoomType.SHRINE, RoomType.HALL, RoomType.STORAGE),
    BuildingType.GOVERNMENTAL: (RoomType.HALL, RoomType.OFFICE, RoomType.OFFICE, RoomType.STORAGE),
    BuildingType.INDUSTRIAL: (RoomType.WORKSHOP, RoomType.STORAGE, RoomType.STORAGE),
    BuildingType.AGRICULTURAL: (RoomType.STORAGE, RoomType.HALL, RoomType.STORAGE),
    BuildingType.RUINS: (),
}

UPPER_FLOOR_PLAN = (RoomType.BEDROOM, RoomType.BEDROOM, RoomType.STORAGE, RoomType.CLOSET)
BASEMENT_PLAN = (RoomType.STORAGE, RoomType.PANTRY, RoomType.STORAGE)

# orientation -> unit vector pointing out of the front wall
FACING: dict[int, tuple[int, int]] = {0: (0, -1), 90: (1, 0), 180: (0, 1), 270: (-1, 0)}


@dataclass
class StructureOutput(LayerOutput):
    """Buildings, roads and bridges placed on the map."""

    buildings: list[Building] = field(default_factory=list)
    roads: list[Road] = field(default_factory=list)
    bridges: list[Bridge] = field(default_factory=list)

    def commit(self, grid: GridMap) -> None:
        for building in self.buildings:
            for x, y in building.claimed_cells():
                tile = grid.tiles[y][x]
                tile.terrain = TerrainType.BUILDING
                tile.passable = False
                tile.structure.building_id = building.id
                tile.structure.material = building.material.name
        for road in self.roads:
            for x, y in road.claimed_cells():
                tile = grid.tiles[y][x]
                tile.terrain = TerrainType.ROAD
                tile.passable = True
                tile.structure.road_id = road.id
        for bridge in self.bridges:
            for x, y in bridge.claimed_cells():
                tile = grid.tiles[y][x]
                tile.passable = True
                tile.structure.bridge_id = bridge.id
                tile.structure.road_id = bridge.road_id
        for feature in [*self.buildings, *self.roads, *self.bridges]:
            grid.add_feature(feature)

    def summary(self) -> dict[str, int]:
        return {"buildings": len(self.buildings), "roads": len(self.roads), "bridges": len(self.bridges)}


def plan_rooms(building_type: BuildingType, level: int) -> tuple[RoomType, ...]:
    if level < 0:
        return BASEMENT_PLAN
    if level > 0:
        return UPPER_FLOOR_PLAN
    return ROOM_PLANS[building_type]


def pack_rooms(floor: Floor, room_types: tuple[RoomType, ...], width_ft: float, depth_ft: float, seed: int) -> Floor:
    """Greedily lay rooms out as full-depth strips, largest minimum area first.

    A room type that no longer fits in the remaining strip is skipped.
    Consecutive strips share a wall and are connected by a door.
    """
    cursor = 0.0
    previous: Room | None = None
    for room_type in sorted(room_types, key=lambda t: -MIN_ROOM_AREA[t]):
        needed = MIN_ROOM_AREA[room_type]
        if needed > floor.remaining_area:
            continue
        strip = math.ceil(needed / depth_ft / ROOM_GRID_FT) * ROOM_GRID_FT
        if cursor + strip > width_ft:
            continue
        room = Room(
            id=room_id(seed, cursor, floor.level),
            room_type=room_type,
            x=cursor,
            y=0.0,
            width=strip,
            length=depth_ft,
        )
        floor = floor.with_room(room)
        if previous is not None:
            floor = floor.with_connection(previous.id, room.id)
        previous = room
        cursor += strip
    return floor


def route(
    cost: NDArray[np.float64],
    start: tuple[int, int],
    goals: set[tuple[int, int]],
) -> list[tuple[int, int]] | None:
    """Cheapest 4-connected path from ``start`` to any goal; inf cost cells are walls."""
    h, w = cost.shape
    best = {start: 0.0}
    came_from: dict[tuple[int, int], tuple[int, int]] = {}
    # (cost, y, x) keeps ties in row-major order
    frontier = [(0.0, start[1], start[0])]
    while frontier:
        spent, y, x = heapq.heappop(frontier)
        if spent > best.get((x, y), math.inf):
            continue
        if (x, y) in goals:
            path = [(x, y)]
            while path[-1] != start:
                path.append(came_from[path[-1]])
            return path[::-1]
        for nx, ny in neighbors4(x, y, w, h):
            step = cost[ny, nx]
            if not math.isfinite(step):
                continue
            total = spent + step
            if total < best.get((nx, ny), math.inf):
                best[(nx, ny)] = total
                came_from[(nx, ny)] = (x, y)
                heapq.heappush(frontier, (total, ny, nx))
    return None


def edge_cells(side: str, width: int, height: int) -> set[tuple[int, int]]:
    if side == "north":
        return {(x, 0) for x in range(width)}
    if side == "south":
        return {(x, height - 1) for x in range(width)}
    if side == "west":
        return {(0, y) for y in range(height)}
    return {(width - 1, y) for y in range(height)}


def nearest_edges(x: int, y: int, width: int, height: int) -> list[str]:
    distances = {"north": y, "south": height - 1 - y, "west": x, "east": width - 1 - x}
    return sorted(distances, key=lambda side: (distances[side], side))


def door_position(footprint: BuildingFootprint, orientation: int) -> Position:
    """Middle of the front wall for a building facing ``orientation``."""
    min_x, min_y, max_x, max_y = footprint.extent
    dx, dy = FACING[orientation]
    cx, cy = (min_x + max_x) / 2, (min_y + max_y) / 2
    return Position(
        max_x if dx > 0 else min_x if dx < 0 else cx,
        max_y if dy > 0 else min_y if dy < 0 else cy,
    )


def front_cell(door: Position, orientation: int) -> tuple[int, int]:
    """Tile just outside ``door``."""
    dx, dy = FACING[orientation]
    return math.floor(door.x + dx * 0.5), math.floor(door.y + dy * 0.5)


def road_costs(
    slope: NDArray[np.float64], hydro: HydrologyOutput, blocked: list[MapFeature]
) -> NDArray[np.float64]:
    """Per-tile routing cost; lakes, cliffs and ``blocked`` features are walls.

    Stream tiles cost extra, but half as much where a river can be forded.
    """
    cost = 1.0 + slope / 10.0
    cost = np.where(hydro.is_stream, cost + STREAM_CROSSING_COST, cost)
    fords = {(math.floor(p.x), math.floor(p.y)) for river in hydro.rivers for p in river.crossing_points()}
    for x, y in sorted(fords):
        if hydro.is_stream[y, x]:
            cost[y, x] -= STREAM_CROSSING_COST / 2
    cost = np.where((hydro.water_depth > 0) & ~hydro.is_stream, math.inf, cost)
    cost = np.where(slope >= CLIFF_SLOPE, math.inf, cost)
    for feature in blocked:
        for x, y in feature.claimed_cells():
            cost[y, x] = math.inf
    return cost


class StructureLayer(GenerationLayer):
    """Places buildings on suitable sites and connects them with roads."""

    name = "structures"
    requires = ("geology", "topography", "hydrology", "vegetation")

    def generate(self, ctx: GenerationContext) -> StructureOutput:
        geology = ctx.require("geology", self.name, GeologyOutput)
        topo = ctx.require("topography", self.name, TopographyOutput)
        hydro = ctx.require("hydrology", self.name, HydrologyOutput)
        vegetation = ctx.require("vegetation", self.name, VegetationOutput)
        cfg = ctx.request.structures
        output = StructureOutput()

        if cfg.generate_buildings and cfg.target_buildings > 0:
            suitable = self._suitable_sites(ctx, geology, topo, hydro, vegetation)
            self._place_buildings(ctx, suitable, topo, output)
        if cfg.generate_roads:
            self._place_roads(ctx, topo, hydro, output)
        return output

    @staticmethod
    def _suitable_sites(
        ctx: GenerationContext,
        geology: GeologyOutput,
        topo: TopographyOutput,
        hydro: HydrologyOutput,
        vegetation: VegetationOutput,
    ) -> NDArray[np.bool_]:
        suitable = (topo.slope < MAX_SITE_SLOPE) & (hydro.water_depth == 0) & ~hydro.is_stream
        wet = {cell for wetland in hydro.wetlands for cell in wetland.claimed_cells()}
        wooded = {cell for forest in vegetation.forests for cell in forest.claimed_cells()}
        rocky = {cell for cell, kind in geology.features.items() if kind != GeologicalFeature.CAVE}
        for x, y in wet | wooded | rocky:
            suitable[y, x] = False
        return suitable

    def _place_buildings(
        self,
        ctx: GenerationContext,
        suitable: NDArray[np.bool_],
        topo: TopographyOutput,
        output: StructureOutput,
    ) -> None:
        cfg = ctx.request.structures
        seed = ctx.layer_seed(self.name).derive("buildings")
        rng = seed.rng()
        sites = [(int(x), int(y)) for y, x in zip(*np.nonzero(suitable))]
        if not sites:
            logger.info("[Structures] No suitable building sites")
            return

        for index in range(cfg.target_buildings):
            for attempt in range(MAX_PLACEMENT_ATTEMPTS):
                candidate = self._candidate(ctx, rng, seed, sites, index)
                if candidate is None:
                    continue
                try:
                    self._validate_site(candidate, suitable, topo, output.buildings)
                except DomainRuleError as e:
                    logger.debug("Rejected site for %s (attempt %d): %s", candidate.id, attempt + 1, e.code)
                    continue
                self._furnish(candidate, rng, seed, ctx.cell_size, topo)
                output.buildings.append(candidate)
                break
            else:
                logger.debug("Gave up placing building %d after %d attempts", index, MAX_PLACEMENT_ATTEMPTS)

    def _candidate(
        self,
        ctx: GenerationContext,
        rng: SeededRandom,
        seed: Seed,
        sites: list[tuple[int, int]],
        index: int,
    ) -> Building | None:
        wealth = ctx.request.structures.wealth
        sizes = list(SIZE_WEIGHTS)
        size = rng.pick_weighted(sizes, [max(0.0, base + per * wealth) for base, per in SIZE_WEIGHTS.values()])
        low, high = size.edge_range
        width, height = rng.randint(low, high), rng.randint(low, high)
        x, y = rng.choice(sites)
        if x + width > ctx.width or y + height > ctx.height:
            return None

        types = list(TYPE_WEIGHTS)
        building_type = rng.pick_weighted(types, [max(0.0, base + per * wealth) for base, per in TYPE_WEIGHTS.values()])
        condition = round(rng.uniform(0.4, 1.0) * (0.5 + 0.5 * wealth), 3)
        if condition < 0.35:
            building_type = BuildingType.RUINS
        footprint = BuildingFootprint.from_rectangle(x, y, width, height)
        building_id = feature_id(seed, FeatureKind.BUILDING, x, y, index)
        return Building(
            id=building_id,
            name=f"{building_type.value.title()} {index + 1}",
            area=footprint.bounds,
            cells=footprint.cells(),
            building_type=building_type,
            size=size,
            footprint=footprint,
            material=select_material(wealth, ctx.profile.material_setting, rng),
            condition=condition,
            age=rng.randint(1, 150),
            orientation=rng.choice(tuple(FACING)),
        )

    @staticmethod
    def _validate_site(
        candidate: Building,
        suitable: NDArray[np.bool_],
        topo: TopographyOutput,
        placed: list[Building],
    ) -> None:
        """Raise if the candidate sits on unsuitable ground or collides with a placed building."""
        cells = candidate.claimed_cells()
        if not all(suitable[y, x] for x, y in cells):
            raise errors.structure_terrain_unsuitable(candidate.id, "footprint covers water, forest or rock")
        slope = mean_slope(topo.slope, cells)
        if slope > MAX_FOUNDATION_SLOPE:
            raise errors.structure_terrain_unsuitable(
                candidate.id, f"mean slope {slope:.1f} too steep for a foundation"
            )
        fx, fy = front_cell(door_position(candidate.footprint, candidate.orientation), candidate.orientation)
        h, w = suitable.shape
        if not (0 <= fx < w and 0 <= fy < h):
            raise errors.structure_placement_conflict(
                candidate.building_type.value, fx, fy, "entrance faces the map edge"
            )
        if topo.slope[fy, fx] >= CLIFF_SLOPE:
            raise errors.structure_placement_conflict(candidate.building_type.value, fx, fy, "entrance faces a cliff")
        min_x, min_y, max_x, max_y = candidate.footprint.extent
        # keep a one-tile lane between buildings
        padded = BuildingFootprint.from_rectangle(min_x - 1, min_y - 1, max_x - min_x + 2, max_y - min_y + 2)
        for other in placed:
            if padded.intersects_polygon(other.footprint):
                raise errors.structure_collision(candidate.id, other.id)

    @staticmethod
    def _furnish(building: Building, rng: SeededRandom, seed: Seed, cell_size: float, topo: TopographyOutput) -> None:
        """Add floors with packed rooms and the front entrance."""
        min_x, min_y, max_x, max_y = building.footprint.extent
        width_ft, depth_ft = (max_x - min_x) * cell_size, (max_y - min_y) * cell_size
        floor_area = building.footprint.area * cell_size * cell_size
        base = max(float(topo.elevation[y, x]) for x, y in building.claimed_cells())
        room_seed = seed.derive(building.id).value

        stories = 1 if building.building_type == BuildingType.RUINS else rng.randint(
            1, min(building.size.max_stories, MAX_PLANNED_STORIES)
        )
        while stories > 1 and not building.material.can_support_floors(stories):
            stories -= 1
        levels = list(range(stories))
        if building.material.durability >= 0.8 and rng.chance(0.3):
            levels.insert(0, -1)

        for level in levels:
            floor = Floor(level=level, footprint_area=floor_area, base_elevation=round(base, 2))
            floor = pack_rooms(floor, plan_rooms(building.building_type, level), width_ft, depth_ft, room_seed)
            building.add_floor(floor)

        building.add_entrance(door_position(building.footprint, building.orientation))

    def _place_roads(
        self, ctx: GenerationContext, topo: TopographyOutput, hydro: HydrologyOutput, output: StructureOutput
    ) -> None:
        seed = ctx.layer_seed(self.name).derive("roads")
        wealth = ctx.request.structures.wealth
        cost = road_costs(topo.slope, hydro, [*hydro.lakes, *output.buildings])

        river_at = {cell: river.id for river in hydro.rivers for cell in river.claimed_cells()}
        road_cells: set[tuple[int, int]] = set()

        starts: list[tuple[tuple[int, int], str | None]] = []
        for building in output.buildings:
            start = front_cell(building.entrances[0], building.orientation)
            starts.append((start, building.id))
        if not output.buildings:
            # a through road from the west edge at a seeded row
            row = seed.rng().randrange(ctx.height)
            starts.append(((0, row), None))

        for index, (start, building_id) in enumerate(starts):
            existing = next((r for r in output.roads if start in {(int(p.x), int(p.y)) for p in r.path}), None)
            if existing is not None and building_id is not None:
                existing.connects.append(building_id)
                continue
            try:
                road = self._build_road(
                    ctx,
                    seed,
                    cost,
                    start,
                    road_cells,
                    river_at,
                    hydro,
                    index,
                    wealth,
                    output,
                    through=building_id is None,
                )
            except DomainRuleError as e:
                logger.warning("Skipping road from %s: %s", building_id or start, e.message, extra=e.to_log_data())
                continue
            if building_id is not None:
                road.connects.append(building_id)
            road_cells.update((int(p.x), int(p.y)) for p in road.path)
            output.roads.append(road)

    def _build_road(
        self,
        ctx: GenerationContext,
        seed: Seed,
        cost: NDArray[np.float64],
        start: tuple[int, int],
        road_cells: set[tuple[int, int]],
        river_at: dict[tuple[int, int], str],
        hydro: HydrologyOutput,
        index: int,
        wealth: float,
        output: StructureOutput,
        through: bool = False,
    ) -> Road:
        x, y = start
        if not (0 <= x < ctx.width and 0 <= y < ctx.height) or not math.isfinite(cost[y, x]):
            raise errors.road_generation_failed("entrance opens onto impassable ground", 0)

        sides = ["east"] if through else nearest_edges(x, y, ctx.width, ctx.height)
        reason = "no passable route"
        attempts = 0
        for side in sides[:MAX_ROAD_ATTEMPTS]:
            attempts += 1
            path = route(cost, start, edge_cells(side, ctx.width, ctx.height) | road_cells)
            if path is None:
                continue
            try:
                spans = self._crossings([c for c in path if c not in road_cells], hydro, ctx.cell_size)
            except DomainRuleError as e:
                reason = e.message
                continue
            return self._assemble(ctx, seed, path, spans, road_cells, river_at, index, wealth, output)
        raise errors.road_generation_failed(reason, attempts)

    @staticmethod
    def _crossings(
        path: list[tuple[int, int]], hydro: HydrologyOutput, cell_size: float
    ) -> list[list[tuple[int, int]]]:
        """Runs of consecutive stream cells along the path; each becomes a bridge."""
        spans: list[list[tuple[int, int]]] = []
        current: list[tuple[int, int]] = []
        for x, y in path:
            if hydro.is_stream[y, x]:
                current.append((x, y))
            elif current:
                spans.append(current)
                current = []
        if current:
            spans.append(current)
        for span in spans:
            if len(span) * cell_size > MAX_BRIDGE_SPAN_FT:
                span_ft = len(span) * cell_size
                raise errors.bridge_generation_failed(f"span of {span_ft:.0f} ft exceeds {MAX_BRIDGE_SPAN_FT:.0f} ft")
        return spans

    def _assemble(
        self,
        ctx: GenerationContext,
        seed: Seed,
        path: list[tuple[int, int]],
        spans: list[list[tuple[int, int]]],
        road_cells: set[tuple[int, int]],
        river_at: dict[tuple[int, int], str],
        index: int,
        wealth: float,
        output: StructureOutput,
    ) -> Road:
        sx, sy = path[0]
        road_id = feature_id(seed, FeatureKind.ROAD, sx, sy, index)
        bridged = {cell for span in spans for cell in span}
        # cells already paved by an earlier road stay with that road
        own = [cell for cell in path if cell not in bridged and cell not in road_cells]
        road = Road(
            id=road_id,
            name=f"Road {index + 1}",
            area=SpatialBounds.around(path),
            cells=own or [path[0]],
            surface=self._surface(wealth),
            width=10.0 if wealth < 0.6 else 15.0,
            quality=round(wealth, 2),
            maintenance=round(0.3 + 0.6 * wealth, 2),
            path=[Position(x + 0.5, y + 0.5) for x, y in path],
        )
        for ordinal, span in enumerate(spans):
            span_ft = len(span) * ctx.cell_size
            material, structure, max_weight = Bridge.design_for_span(span_ft, wealth)
            bridge = Bridge(
                id=feature_id(seed, FeatureKind.BRIDGE, span[0][0], span[0][1], index * 100 + ordinal),
                name=f"Bridge {len(output.bridges) + 1}",
                area=SpatialBounds.around(span),
                cells=span,
                material=material,
                structure=structure,
                length=span_ft,
                width=road.width,
                max_weight=max_weight,
                road_id=road_id,
                crosses_id=next((river_at[c] for c in span if c in river_at), None),
            )
            road.bridge_ids.append(bridge.id)
            output.bridges.append(bridge)
        return road

    @staticmethod
    def _surface(wealth: float) -> RoadSurface:
        if wealth < 0.3:
            return RoadSurface.DIRT
        if wealth < 0.6:
            return RoadSurface.GRAVEL
        if wealth < 0.85:
            return RoadSurface.COBBLESTONE
        return RoadSurface.PAVED
