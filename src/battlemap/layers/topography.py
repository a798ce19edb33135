"""Topography layer: elevation, slope, aspect and relief features.

Elevation combines three noise fields: a broad gradient (which part of a
larger slope the map shows), tactical undulations whose octaves and
persistence follow the ruggedness setting, and a fine texture weighted by
bedrock hardness.
"""

import logging
import math
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from battlemap.features.base import ReliefFeature, feature_id
from battlemap.geometry import SpatialBounds
from battlemap.gridmap import GridMap
from battlemap.layers.base import GenerationContext, GenerationLayer, LayerOutput
from battlemap.layers.geology import GeologyOutput
from battlemap.models import FeatureKind
from battlemap.noise import generate_field
from battlemap.raster import connected_regions, normalize

logger = logging.getLogger(__name__)

MACRO_SCALE = 0.01
TACTICAL_BASE_SCALE = 0.015
TEXTURE_BASE_SCALE = 0.02

HIGH_GROUND = 0.75
LOW_GROUND = 0.2
CLIFF_SLOPE = 35.0
MIN_RELIEF_TILES = 4


@dataclass
class TopographyOutput(LayerOutput):
    """Elevation (feet), slope and aspect (degrees) grids plus relief features."""

    elevation: NDArray[np.float64]
    slope: NDArray[np.float64]
    aspect: NDArray[np.float64]
    features: list[ReliefFeature] = field(default_factory=list)

    @property
    def min_elevation(self) -> float:
        return float(self.elevation.min())

    @property
    def max_elevation(self) -> float:
        return float(self.elevation.max())

    @property
    def relative(self) -> NDArray[np.float64]:
        return normalize(self.elevation)

    def commit(self, grid: GridMap) -> None:
        relative = self.relative
        low = self.min_elevation
        for tile in grid.iter_tiles():
            x, y = tile.x, tile.y
            topo = tile.topography
            topo.elevation = round(float(self.elevation[y, x]), 4)
            topo.slope = round(float(self.slope[y, x]), 4)
            topo.aspect = round(float(self.aspect[y, x]), 4)
            topo.relative_elevation = round(float(relative[y, x]), 4)
            tile.height_multiplier = round(1.0 + (topo.elevation - low) / 100.0, 4)
            tile.tactical.elevation_advantage = round(topo.elevation - low, 4)
        for feature in self.features:
            grid.add_feature(feature)

    def summary(self) -> dict[str, int]:
        return {"relief_features": len(self.features)}


def slope_and_aspect(
    elevation: NDArray[np.float64], cell_size: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Slope in degrees (0..90) and downslope aspect in degrees clockwise from north."""
    dz_dy, dz_dx = np.gradient(elevation, cell_size)
    slope = np.degrees(np.arctan(np.hypot(dz_dx, dz_dy)))
    # north is -y on the grid
    aspect = np.degrees(np.arctan2(-dz_dx, dz_dy)) % 360.0
    aspect[(dz_dx == 0) & (dz_dy == 0)] = 0.0
    return np.minimum(slope, 90.0), aspect


def smooth(field: NDArray[np.float64], strength: float) -> NDArray[np.float64]:
    """Blend each cell toward its 3x3 neighborhood mean."""
    padded = np.pad(field, 1, mode="edge")
    h, w = field.shape
    mean = sum(padded[dy : dy + h, dx : dx + w] for dy in range(3) for dx in range(3)) / 9.0
    return field * (1.0 - strength) + mean * strength


class TopographyLayer(GenerationLayer):
    """Derives elevation, slope and aspect from noise modulated by geology."""

    name = "topography"
    requires = ("geology",)

    def generate(self, ctx: GenerationContext) -> TopographyOutput:
        geology = ctx.require("geology", self.name, GeologyOutput)
        cfg = ctx.request.topography
        seed = ctx.layer_seed(self.name)
        w, h = ctx.width, ctx.height
        r = cfg.ruggedness

        elevation_range = min(w, h) * ctx.cell_size * cfg.relief * (0.4 + 0.6 * r)

        macro = normalize(generate_field(seed.derive("macro"), w, h, octaves=2, persistence=0.6, scale=MACRO_SCALE))
        tactical = normalize(
            generate_field(
                seed.derive("tactical"),
                w,
                h,
                octaves=cfg.octaves,
                persistence=cfg.persistence,
                scale=TACTICAL_BASE_SCALE * (0.7 + 0.6 * r),
            )
        )
        texture = generate_field(
            seed.derive("texture"), w, h, octaves=2, persistence=0.5, scale=TEXTURE_BASE_SCALE * (0.5 + 0.75 * r) * 4
        )

        texture_weight = 0.02 + (r - 0.5) * 0.053
        hardness = geology.hardness
        combined = 0.4 * macro + 0.6 * tactical + (texture - 0.5) * texture_weight * (0.5 + hardness)
        # hard rock stands higher, soft rock erodes down
        combined *= 0.8 + 0.4 * hardness

        elevation = np.maximum(normalize(combined) * elevation_range, 0.0)
        elevation = smooth(elevation, strength=0.25 / r)
        slope, aspect = slope_and_aspect(elevation, ctx.cell_size)

        output = TopographyOutput(elevation=elevation, slope=slope, aspect=aspect)
        output.features = self._relief_features(ctx, output)
        logger.debug("Elevation range %.1f ft over %dx%d tiles", elevation_range, w, h)
        return output

    def _relief_features(self, ctx: GenerationContext, topo: TopographyOutput) -> list[ReliefFeature]:
        seed = ctx.layer_seed(self.name)
        relative = topo.relative
        features: list[ReliefFeature] = []

        candidates: list[tuple[FeatureKind, list[tuple[int, int]]]] = []
        for cells in connected_regions(relative >= HIGH_GROUND, MIN_RELIEF_TILES):
            bounds = SpatialBounds.around(cells)
            long_edge, short_edge = max(bounds.width, bounds.height), min(bounds.width, bounds.height)
            kind = FeatureKind.RIDGE if long_edge >= 2 * short_edge and len(cells) >= 6 else FeatureKind.HILL
            candidates.append((kind, cells))
        for cells in connected_regions(relative <= LOW_GROUND, MIN_RELIEF_TILES):
            candidates.append((FeatureKind.VALLEY, cells))
        for cells in connected_regions(topo.slope >= CLIFF_SLOPE, 2):
            candidates.append((FeatureKind.CLIFF, cells))

        ordinals: dict[FeatureKind, int] = {}
        for kind, cells in candidates:
            ordinal = ordinals.get(kind, 0)
            ordinals[kind] = ordinal + 1
            values = [float(topo.elevation[y, x]) for x, y in cells]
            prominence = (max(values) - min(values)) if kind == FeatureKind.CLIFF else abs(
                float(np.mean(values)) - float(topo.elevation.mean())
            )
            anchor_x, anchor_y = cells[0]
            features.append(
                ReliefFeature(
                    id=feature_id(seed, kind, anchor_x, anchor_y, ordinal),
                    name=f"{kind.value.title()} {ordinal + 1}",
                    kind=kind,
                    area=SpatialBounds.around(cells),
                    cells=cells,
                    prominence=round(prominence, 2),
                    properties={"tiles": len(cells), "peak": round(max(values), 2)},
                )
            )
        return features


def mean_slope(slope: NDArray[np.float64], cells: list[tuple[int, int]]) -> float:
    if not cells:
        return 0.0
    return float(sum(slope[y, x] for x, y in cells) / len(cells))


def slope_degrees_between(elevation_a: float, elevation_b: float, distance_ft: float) -> float:
    """Slope of the line between two elevations, in degrees."""
    if distance_ft <= 0:
        return 90.0
    return min(90.0, math.degrees(math.atan(abs(elevation_b - elevation_a) / distance_ft)))
