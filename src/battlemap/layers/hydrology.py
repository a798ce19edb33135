"""Hydrology layer: flow routing, rivers, lakes, springs, pools and wetlands.

Flow uses D8 steepest descent. Equally steep descents are resolved by a
neighbor priority order: the clockwise D8 order rotated by an offset taken
from the layer seed, so the choice never depends on container iteration
order. Accumulation walks tiles from highest to lowest (ties by row, then
column), pushing each tile's flow to its downstream neighbor.
"""

import logging
import math
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from battlemap import errors
from battlemap.features.base import feature_id
from battlemap.features.water import (
    Lake,
    LakeFormation,
    River,
    RiverPoint,
    SegmentType,
    Spring,
    SpringType,
    Wetland,
    WetlandType,
    island_centers,
)
from battlemap.geometry import Position, SpatialBounds
from battlemap.gridmap import GridMap
from battlemap.layers.base import GenerationContext, GenerationLayer, LayerOutput
from battlemap.layers.geology import BedrockType, GeologicalFeature, GeologyOutput
from battlemap.layers.topography import LOW_GROUND, TopographyOutput, slope_degrees_between
from battlemap.models import Biome, FeatureKind, TerrainType
from battlemap.noise import SeededNoise
from battlemap.raster import (
    D8_DISTANCES,
    D8_OFFSETS,
    NO_FLOW,
    connected_regions,
    flood_fill,
    in_bounds,
    neighbors4,
)
from battlemap.seed import Seed

logger = logging.getLogger(__name__)

MIN_RIVER_TILES = 4
RAPIDS_SLOPE = 12.0
LAKE_FILL_FT = 2.0
MAX_LAKE_SHARE = 0.05
DEEP_WATER_FT = 3.0
SPRING_SLOPE = 15.0
POOL_SLOPE = 5.0
WETLAND_MOISTURE = 0.85
MIN_WETLAND_TILES = 6


@dataclass
class HydrologyOutput(LayerOutput):
    """Per-tile flow and water grids plus the water features."""

    flow_direction: NDArray[np.int8]
    flow_accumulation: NDArray[np.float64]
    stream_order: NDArray[np.int16]
    is_stream: NDArray[np.bool_]
    water_depth: NDArray[np.float64]
    moisture: NDArray[np.float64]
    is_spring: NDArray[np.bool_]
    is_pool: NDArray[np.bool_]
    rivers: list[River] = field(default_factory=list)
    lakes: list[Lake] = field(default_factory=list)
    springs: list[Spring] = field(default_factory=list)
    wetlands: list[Wetland] = field(default_factory=list)

    @property
    def features(self) -> list:
        return [*self.lakes, *self.rivers, *self.springs, *self.wetlands]

    def has_water(self, x: int, y: int) -> bool:
        return bool(self.water_depth[y, x] > 0)

    def commit(self, grid: GridMap) -> None:
        wetland_cells = {cell for w in self.wetlands for cell in w.claimed_cells()}
        for tile in grid.iter_tiles():
            x, y = tile.x, tile.y
            hydro = tile.hydrology
            hydro.flow_direction = int(self.flow_direction[y, x])
            hydro.flow_accumulation = float(self.flow_accumulation[y, x])
            hydro.stream_order = int(self.stream_order[y, x])
            hydro.is_stream = bool(self.is_stream[y, x])
            hydro.water_depth = round(float(self.water_depth[y, x]), 4)
            hydro.moisture = round(float(self.moisture[y, x]), 4)
            hydro.is_spring = bool(self.is_spring[y, x])
            hydro.is_pool = bool(self.is_pool[y, x])
            if hydro.water_depth >= DEEP_WATER_FT:
                tile.terrain = TerrainType.DEEP_WATER
                tile.passable = False
            elif hydro.water_depth > 0:
                tile.terrain = TerrainType.SHALLOW_WATER
            elif (x, y) in wetland_cells:
                tile.terrain = TerrainType.MUD
        for feature in self.features:
            grid.add_feature(feature)

    def summary(self) -> dict[str, int]:
        return {
            "rivers": len(self.rivers),
            "lakes": len(self.lakes),
            "springs": len(self.springs),
            "wetlands": len(self.wetlands),
            "pools": int(self.is_pool.sum()),
        }


def neighbor_priority(seed: Seed) -> list[int]:
    """D8 direction indices in tie-break order for this seed."""
    offset = seed.derive("streams").value % len(D8_OFFSETS)
    return [(offset + i) % len(D8_OFFSETS) for i in range(len(D8_OFFSETS))]


def descending_order(elevation: NDArray[np.float64]) -> list[tuple[int, int]]:
    """All (x, y) tiles from highest to lowest, ties by row then column."""
    h, w = elevation.shape
    return sorted(((x, y) for y in range(h) for x in range(w)), key=lambda c: (-elevation[c[1], c[0]], c[1], c[0]))


def flow_directions(elevation: NDArray[np.float64], priority: list[int]) -> NDArray[np.int8]:
    """Steepest-descent D8 direction per tile, NO_FLOW where no neighbor is lower."""
    if not np.all(np.isfinite(elevation)):
        raise errors.water_flow_calculation_failed("elevation contains non-finite values")
    h, w = elevation.shape
    directions = np.full((h, w), NO_FLOW, dtype=np.int8)
    for y in range(h):
        for x in range(w):
            best_drop = 0.0
            for d in priority:
                dx, dy = D8_OFFSETS[d]
                nx, ny = x + dx, y + dy
                if not in_bounds(nx, ny, w, h):
                    continue
                drop = (elevation[y, x] - elevation[ny, nx]) / D8_DISTANCES[d]
                if drop > best_drop:
                    best_drop = drop
                    directions[y, x] = d
    return directions


def flow_accumulation(
    order: list[tuple[int, int]], directions: NDArray[np.int8]
) -> NDArray[np.float64]:
    """Upstream contributing tiles per tile, counting the tile itself."""
    flow = np.ones(directions.shape, dtype=np.float64)
    for x, y in order:
        d = int(directions[y, x])
        if d == NO_FLOW:
            continue
        dx, dy = D8_OFFSETS[d]
        flow[y + dy, x + dx] += flow[y, x]
    return flow


def downstream(x: int, y: int, directions: NDArray[np.int8]) -> tuple[int, int] | None:
    d = int(directions[y, x])
    if d == NO_FLOW:
        return None
    dx, dy = D8_OFFSETS[d]
    return x + dx, y + dy


def strahler_order(
    order: list[tuple[int, int]], directions: NDArray[np.int8], is_stream: NDArray[np.bool_]
) -> NDArray[np.int16]:
    """Strahler stream order; rises only where two tributaries of equal highest order meet."""
    h, w = is_stream.shape
    inflow: dict[tuple[int, int], list[int]] = {}
    result = np.zeros((h, w), dtype=np.int16)
    for x, y in order:
        if not is_stream[y, x]:
            continue
        upstream = inflow.get((x, y), [])
        if upstream:
            highest = max(upstream)
            result[y, x] = highest + 1 if upstream.count(highest) >= 2 else highest
        else:
            result[y, x] = 1
        target = downstream(x, y, directions)
        if target is not None and is_stream[target[1], target[0]]:
            inflow.setdefault(target, []).append(int(result[y, x]))
    return result


def on_edge(x: int, y: int, width: int, height: int) -> bool:
    return x == 0 or y == 0 or x == width - 1 or y == height - 1


class HydrologyLayer(GenerationLayer):
    """Routes water over the committed elevation field."""

    name = "hydrology"
    requires = ("geology", "topography")

    def generate(self, ctx: GenerationContext) -> HydrologyOutput:
        geology = ctx.require("geology", self.name, GeologyOutput)
        topo = ctx.require("topography", self.name, TopographyOutput)
        cfg = ctx.request.hydrology
        seed = ctx.layer_seed(self.name)
        w, h = ctx.width, ctx.height
        elevation = topo.elevation

        order = descending_order(elevation)
        directions = flow_directions(elevation, neighbor_priority(seed))
        accumulation = flow_accumulation(order, directions)

        threshold = ctx.profile.stream_threshold * cfg.stream_threshold_multiplier
        if cfg.generate_rivers:
            is_stream = accumulation >= threshold
        else:
            is_stream = np.zeros((h, w), dtype=bool)
        stream_order = strahler_order(order, directions, is_stream)

        water_depth = np.zeros((h, w), dtype=np.float64)
        output = HydrologyOutput(
            flow_direction=directions,
            flow_accumulation=accumulation,
            stream_order=stream_order,
            is_stream=is_stream,
            water_depth=water_depth,
            moisture=np.zeros((h, w), dtype=np.float64),
            is_spring=np.zeros((h, w), dtype=bool),
            is_pool=np.zeros((h, w), dtype=bool),
        )

        lake_cells = self._place_lakes(ctx, geology, topo, output)
        if cfg.generate_rivers:
            self._trace_rivers(ctx, topo, output, lake_cells, threshold)
        if not output.rivers and not output.lakes and cfg.water_abundance >= 1.0:
            # a default-or-wetter map always shows some water: fill the lowest basin
            lowest = order[-1]
            self._place_lake(ctx, geology, topo, output, lowest, ordinal=len(output.lakes))

        self._place_springs(ctx, geology, topo, output)
        self._place_pools(ctx, topo, output)
        self._compute_moisture(ctx, geology, output)
        self._place_wetlands(ctx, topo, output)

        logger.debug("Stream threshold %.1f, %d stream tiles", threshold, int(is_stream.sum()))
        return output

    # --- lakes ------------------------------------------------------------

    def _place_lakes(
        self, ctx: GenerationContext, geology: GeologyOutput, topo: TopographyOutput, output: HydrologyOutput
    ) -> set[tuple[int, int]]:
        w, h = ctx.width, ctx.height
        sinks = [
            (x, y)
            for y in range(1, h - 1)
            for x in range(1, w - 1)
            if output.flow_direction[y, x] == NO_FLOW
        ]
        claimed: set[tuple[int, int]] = set()
        for x, y in sinks:
            if (x, y) in claimed:
                continue
            lake = self._place_lake(ctx, geology, topo, output, (x, y), ordinal=len(output.lakes))
            claimed.update(lake.claimed_cells())
        return claimed

    def _place_lake(
        self,
        ctx: GenerationContext,
        geology: GeologyOutput,
        topo: TopographyOutput,
        output: HydrologyOutput,
        sink: tuple[int, int],
        ordinal: int,
    ) -> Lake:
        elevation = topo.elevation
        sx, sy = sink
        base = float(elevation[sy, sx])
        max_cells = max(4, int(ctx.width * ctx.height * MAX_LAKE_SHARE))
        fill = LAKE_FILL_FT * ctx.request.hydrology.water_abundance

        cells: list[tuple[int, int]] = []
        while fill > 0.05:
            mask = (elevation <= base + fill) & (output.water_depth == 0)
            region = flood_fill(mask, np.zeros_like(mask), sx, sy)
            if 0 < len(region) <= max_cells:
                cells = region
                break
            fill /= 2
        if not cells:
            cells = [sink]
            fill = 0.5

        surface = base + fill
        depths = [max(surface - float(elevation[y, x]), 0.5) for x, y in cells]
        for (x, y), depth in zip(cells, depths):
            output.water_depth[y, x] = depth

        seed = ctx.layer_seed(self.name)
        lake = Lake(
            id=feature_id(seed, FeatureKind.LAKE, sx, sy, ordinal),
            name=f"Lake {ordinal + 1}",
            area=SpatialBounds.around(cells),
            cells=cells,
            formation=self._lake_formation(ctx, geology.bedrock[sy][sx]),
            max_depth=round(max(depths), 2),
            average_depth=round(sum(depths) / len(depths), 2),
            cell_size=ctx.cell_size,
        )
        lake.build_shoreline(seed.derive("lake", ordinal).rng())
        for center in island_centers(cells):
            lake.add_island(center)
        outlet = self._spill_point(cells, elevation)
        if outlet is not None:
            lake.outlets.append(outlet)
        output.lakes.append(lake)
        return lake

    @staticmethod
    def _lake_formation(ctx: GenerationContext, rock: BedrockType) -> LakeFormation:
        if rock == BedrockType.LIMESTONE:
            return LakeFormation.KARST
        if rock == BedrockType.BASALT:
            return LakeFormation.VOLCANIC
        if ctx.request.biome in (Biome.MOUNTAIN, Biome.TUNDRA, Biome.BOREAL_FOREST):
            return LakeFormation.GLACIAL
        return LakeFormation.NATURAL

    @staticmethod
    def _spill_point(cells: list[tuple[int, int]], elevation: NDArray[np.float64]) -> Position | None:
        """Lowest tile bordering the lake, where it would overflow."""
        h, w = elevation.shape
        members = set(cells)
        rim = {
            (nx, ny)
            for x, y in cells
            for nx, ny in neighbors4(x, y, w, h)
            if (nx, ny) not in members
        }
        if not rim:
            return None
        x, y = min(rim, key=lambda c: (elevation[c[1], c[0]], c[1], c[0]))
        return Position(x + 0.5, y + 0.5)

    # --- rivers -----------------------------------------------------------

    def _trace_rivers(
        self,
        ctx: GenerationContext,
        topo: TopographyOutput,
        output: HydrologyOutput,
        lake_cells: set[tuple[int, int]],
        threshold: float,
    ) -> None:
        w, h = ctx.width, ctx.height
        is_stream = output.is_stream
        directions = output.flow_direction

        has_inflow = np.zeros((h, w), dtype=bool)
        for y in range(h):
            for x in range(w):
                if not is_stream[y, x] or (x, y) in lake_cells:
                    continue
                target = downstream(x, y, directions)
                if target is not None:
                    has_inflow[target[1], target[0]] = True
        # sources: stream heads, highest first so main stems are traced before tributaries
        sources = sorted(
            ((x, y) for y in range(h) for x in range(w) if is_stream[y, x] and not has_inflow[y, x]),
            key=lambda c: (-topo.elevation[c[1], c[0]], c[1], c[0]),
        )

        owner: dict[tuple[int, int], River] = {}
        lakes_by_cell = {cell: lake for lake in output.lakes for cell in lake.claimed_cells()}
        noise = SeededNoise(ctx.layer_seed(self.name).derive("depth"))

        for sx, sy in sources:
            if (sx, sy) in owner or (sx, sy) in lake_cells:
                continue
            cells: list[tuple[int, int]] = []
            terminus = "sink"
            joins: River | None = None
            current: tuple[int, int] | None = (sx, sy)
            while current is not None:
                if current in owner:
                    terminus = "confluence"
                    joins = owner[current]
                    cells.append(current)
                    break
                if current in lake_cells:
                    terminus = "lake"
                    cells.append(current)
                    break
                cells.append(current)
                nxt = downstream(current[0], current[1], directions)
                if nxt is None:
                    terminus = "edge" if on_edge(current[0], current[1], w, h) else "sink"
                    break
                current = nxt

            own_cells = cells[:-1] if terminus in ("confluence", "lake") else cells
            if len(own_cells) < MIN_RIVER_TILES:
                continue

            river = self._build_river(ctx, topo, output, cells, terminus, noise, threshold, len(output.rivers))
            for cell in own_cells:
                owner[cell] = river
                depth = river.depth_at(Position(cell[0] + 0.5, cell[1] + 0.5))
                output.water_depth[cell[1], cell[0]] = max(output.water_depth[cell[1], cell[0]], depth)
            output.rivers.append(river)

            if joins is not None:
                joins.add_tributary(river)
                joins.stream_order = max(joins.stream_order, river.stream_order)
            elif terminus == "lake":
                lake = lakes_by_cell[cells[-1]]
                lake.inlets.append(river.path[-1].position)
                river.properties["lake_id"] = lake.id
            river.terminus = "confluence" if joins is not None else terminus

    def _build_river(
        self,
        ctx: GenerationContext,
        topo: TopographyOutput,
        output: HydrologyOutput,
        cells: list[tuple[int, int]],
        terminus: str,
        noise: SeededNoise,
        threshold: float,
        ordinal: int,
    ) -> River:
        elevation = topo.elevation
        relative = topo.relative
        abundance = ctx.request.hydrology.water_abundance
        sx, sy = cells[0]
        points: list[RiverPoint] = []
        for i, (x, y) in enumerate(cells):
            order = max(int(output.stream_order[y, x]), 1)
            flow = float(output.flow_accumulation[y, x])
            width = 3.0 + 4.0 * math.log1p(flow / threshold)
            depth = 0.5 * order * (0.8 + 0.4 * noise.unit(x, y, 0.3)) * abundance
            if relative[y, x] <= LOW_GROUND:
                depth *= 1.5

            if i + 1 < len(cells):
                nx, ny = cells[i + 1]
            else:
                nx, ny = x, y
            prev_x, prev_y = cells[i - 1] if i > 0 else (x, y)
            heading = self._bearing(prev_x, prev_y, x, y) if i > 0 else self._bearing(x, y, nx, ny)
            run = math.hypot(nx - prev_x, ny - prev_y) * ctx.cell_size
            slope = slope_degrees_between(elevation[prev_y, prev_x], elevation[ny, nx], run) if run else 0.0

            segment = self._classify(i, cells, terminus, slope)
            points.append(
                RiverPoint(
                    position=Position(x + 0.5, y + 0.5),
                    width=round(width, 2),
                    depth=round(depth, 2),
                    flow_direction=heading,
                    segment_type=segment,
                    velocity=round(1.0 + slope / 10.0, 2),
                )
            )

        seed = ctx.layer_seed(self.name)
        river = River(
            id=feature_id(seed, FeatureKind.RIVER, sx, sy, ordinal),
            name=f"River {ordinal + 1}",
            area=SpatialBounds.around(cells),
            cells=list(dict.fromkeys(cells)),
            average_width=round(sum(p.width for p in points) / len(points), 2),
            cell_size=ctx.cell_size,
            terminus=terminus,
            stream_order=max(int(output.stream_order[y, x]) for x, y in cells),
        )
        for point in points:
            river.add_path_point(point)
        return river

    @staticmethod
    def _bearing(x0: int, y0: int, x1: int, y1: int) -> float:
        if (x0, y0) == (x1, y1):
            return 0.0
        return math.degrees(math.atan2(x1 - x0, -(y1 - y0))) % 360.0

    @staticmethod
    def _classify(i: int, cells: list[tuple[int, int]], terminus: str, slope: float) -> SegmentType:
        if i == 0:
            return SegmentType.SOURCE
        if i == len(cells) - 1:
            return {
                "edge": SegmentType.MOUTH,
                "lake": SegmentType.DELTA,
                "confluence": SegmentType.CONFLUENCE,
            }.get(terminus, SegmentType.STRAIGHT)
        if slope > RAPIDS_SLOPE:
            return SegmentType.RAPIDS
        (ax, ay), (bx, by), (cx, cy) = cells[i - 1], cells[i], cells[i + 1]
        turn = abs(math.degrees(math.atan2(cy - by, cx - bx) - math.atan2(by - ay, bx - ax)))
        turn = min(turn, 360.0 - turn)
        if turn >= 90:
            return SegmentType.MEANDER
        if turn >= 45:
            return SegmentType.CURVE
        return SegmentType.STRAIGHT

    # --- springs and pools --------------------------------------------------

    def _place_springs(
        self, ctx: GenerationContext, geology: GeologyOutput, topo: TopographyOutput, output: HydrologyOutput
    ) -> None:
        cfg = ctx.request.hydrology
        seed = ctx.layer_seed(self.name).derive("springs")
        noise = SeededNoise(seed)
        candidates = sorted(
            cell
            for cell in geology.transitions | {c for c, f in geology.features.items() if f == GeologicalFeature.CAVE}
            if geology.formation_at(*cell).can_have_springs
        )
        for x, y in sorted(candidates, key=lambda c: (c[1], c[0])):
            if output.has_water(x, y):
                continue
            chance = noise.unit(x * 0.5, y * 0.5)
            if topo.slope[y, x] > SPRING_SLOPE:
                chance += cfg.slope_spring_bonus
            if chance <= cfg.spring_threshold:
                continue
            rng = seed.for_tile(x, y).rng()
            rock = geology.bedrock[y][x]
            if rock == BedrockType.BASALT:
                spring_type, temperature = SpringType.THERMAL, rng.uniform(100.0, 140.0)
            elif rock == BedrockType.LIMESTONE:
                spring_type, temperature = SpringType.ARTESIAN, rng.uniform(50.0, 60.0)
            elif cfg.water_abundance < 1.0 and rng.chance(0.5):
                spring_type, temperature = SpringType.SEASONAL, rng.uniform(45.0, 60.0)
            else:
                spring_type, temperature = SpringType.GRAVITY, rng.uniform(45.0, 60.0)
            output.is_spring[y, x] = True
            output.springs.append(
                Spring(
                    id=feature_id(seed, FeatureKind.SPRING, x, y),
                    name=f"Spring {len(output.springs) + 1}",
                    area=SpatialBounds(x, y, 1, 1),
                    spring_type=spring_type,
                    flow_rate=round(rng.uniform(1.0, 20.0) * cfg.water_abundance, 2),
                    temperature=round(temperature, 1),
                )
            )

    def _place_pools(self, ctx: GenerationContext, topo: TopographyOutput, output: HydrologyOutput) -> None:
        """Shallow standing water on low, flat ground."""
        if ctx.request.biome == Biome.DESERT:
            return
        cfg = ctx.request.hydrology
        noise = SeededNoise(ctx.layer_seed(self.name).derive("pools"))
        relative = topo.relative
        for y in range(ctx.height):
            for x in range(ctx.width):
                if output.has_water(x, y) or relative[y, x] > 0.3 or topo.slope[y, x] >= POOL_SLOPE:
                    continue
                chance = noise.unit(x, y, 0.2)
                if chance > cfg.pool_threshold:
                    output.is_pool[y, x] = True
                    output.water_depth[y, x] = round(1.0 + chance * 2.0, 2)

    # --- moisture and wetlands ----------------------------------------------

    def _compute_moisture(self, ctx: GenerationContext, geology: GeologyOutput, output: HydrologyOutput) -> None:
        w, h = ctx.width, ctx.height
        abundance = ctx.request.hydrology.water_abundance
        wet = output.water_depth > 0
        near_water = np.zeros((h, w), dtype=bool)
        for y, x in zip(*np.nonzero(wet)):
            near_water[max(0, y - 2) : y + 3, max(0, x - 2) : x + 3] = True

        moisture = np.full((h, w), ctx.profile.base_moisture, dtype=np.float64)
        moisture += np.where(output.flow_accumulation > 20, 0.3, np.where(output.flow_accumulation > 10, 0.15, 0.0))
        moisture += np.where(near_water, 0.2, 0.0)
        moisture += np.where(geology.permeability <= 0.15, 0.1, np.where(geology.permeability >= 0.6, -0.1, 0.0))
        moisture *= 0.75 + 0.25 * abundance
        moisture[wet] = 1.0
        output.moisture = np.clip(moisture, 0.0, 1.0)

    def _place_wetlands(self, ctx: GenerationContext, topo: TopographyOutput, output: HydrologyOutput) -> None:
        mask = (output.moisture >= WETLAND_MOISTURE) & (output.water_depth == 0) & (topo.slope < POOL_SLOPE)
        if ctx.request.biome == Biome.WETLAND:
            wetland_type = WetlandType.SWAMP
        elif ctx.request.biome in (Biome.TUNDRA, Biome.BOREAL_FOREST):
            wetland_type = WetlandType.BOG
        else:
            wetland_type = WetlandType.MARSH
        seed = ctx.layer_seed(self.name).derive("wetlands")
        abundance = ctx.request.hydrology.water_abundance
        for ordinal, cells in enumerate(connected_regions(mask, MIN_WETLAND_TILES)):
            x, y = cells[0]
            density = sum(float(output.moisture[cy, cx]) for cx, cy in cells) / len(cells)
            output.wetlands.append(
                Wetland(
                    id=feature_id(seed, FeatureKind.WETLAND, x, y, ordinal),
                    name=f"{wetland_type.value.title()} {ordinal + 1}",
                    area=SpatialBounds.around(cells),
                    cells=cells,
                    wetland_type=wetland_type,
                    water_depth=round(0.5 * abundance, 2),
                    vegetation_density=round(min(1.0, density * 0.8), 2),
                )
            )
