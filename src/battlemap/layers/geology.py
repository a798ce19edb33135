"""Geology layer: bedrock formations, soil, surface terrain and point geological features."""

import logging
from dataclasses import dataclass, field
from enum import StrEnum

import numpy as np
from numpy.typing import NDArray

from battlemap.gridmap import GridMap
from battlemap.layers.base import GenerationContext, GenerationLayer, LayerOutput
from battlemap.models import TerrainType
from battlemap.noise import SeededNoise
from battlemap.raster import neighbors4

logger = logging.getLogger(__name__)


class BedrockType(StrEnum):
    """Rock formations the generator knows."""

    GRANITE = "granite"
    LIMESTONE = "limestone"
    SANDSTONE = "sandstone"
    SHALE = "shale"
    BASALT = "basalt"
    SLATE = "slate"


@dataclass(frozen=True)
class FormationProperties:
    hardness: float
    permeability: float
    weathering_rate: float
    soil_factor: float
    joint_spacing: float  # feet between fractures
    can_have_springs: bool


FORMATIONS: dict[BedrockType, FormationProperties] = {
    BedrockType.GRANITE: FormationProperties(0.9, 0.1, 0.2, 0.6, 10.0, False),
    BedrockType.LIMESTONE: FormationProperties(0.5, 0.7, 0.6, 1.0, 3.0, True),
    BedrockType.SANDSTONE: FormationProperties(0.4, 0.6, 0.7, 1.2, 4.0, True),
    BedrockType.SHALE: FormationProperties(0.3, 0.2, 0.8, 1.3, 1.0, False),
    BedrockType.BASALT: FormationProperties(0.8, 0.4, 0.3, 0.8, 2.0, True),
    BedrockType.SLATE: FormationProperties(0.7, 0.1, 0.3, 0.7, 1.0, False),
}

SECONDARY_FORMATION_CHANCE = 0.3
FORMATION_SCALE = 0.05
SOIL_SCALE = 0.2
FEATURE_SCALE = 0.15
TERRAIN_SCALE = 0.08
TERRAIN_JITTER = 0.1


class GeologicalFeature(StrEnum):
    CAVE = "cave"
    SINKHOLE = "sinkhole"
    OUTCROP = "outcrop"


def select_terrain(distribution: dict[TerrainType, float], roll: float) -> TerrainType | None:
    """First terrain, in declaration order, whose cumulative weight reaches ``roll``.

    Rounding can leave the total just below 1, so a roll past the end picks
    the last terrain in the distribution. Returns None for an empty one.
    """
    chosen = None
    cumulative = 0.0
    for terrain in TerrainType:
        if terrain not in distribution:
            continue
        chosen = terrain
        cumulative += distribution[terrain]
        if roll <= cumulative:
            break
    return chosen


@dataclass
class GeologyOutput(LayerOutput):
    """Per-tile bedrock and soil grids."""

    bedrock: list[list[BedrockType]]
    ground: list[list[TerrainType]]
    soil_depth: NDArray[np.float64]
    permeability: NDArray[np.float64]
    fracturing: NDArray[np.float64]
    hardness: NDArray[np.float64]
    features: dict[tuple[int, int], GeologicalFeature] = field(default_factory=dict)
    transitions: set[tuple[int, int]] = field(default_factory=set)
    primary: BedrockType = BedrockType.GRANITE
    secondary: BedrockType | None = None

    def formation_at(self, x: int, y: int) -> FormationProperties:
        return FORMATIONS[self.bedrock[y][x]]

    def commit(self, grid: GridMap) -> None:
        for tile in grid.iter_tiles():
            x, y = tile.x, tile.y
            geo = tile.geology
            geo.bedrock = self.bedrock[y][x].value
            geo.soil_depth = round(float(self.soil_depth[y, x]), 4)
            geo.permeability = round(float(self.permeability[y, x]), 4)
            geo.fracturing = round(float(self.fracturing[y, x]), 4)
            feature = self.features.get((x, y))
            geo.feature = feature.value if feature else None
            geo.transition = (x, y) in self.transitions
            tile.terrain = self.ground[y][x]
            if feature == GeologicalFeature.OUTCROP:
                tile.terrain = TerrainType.ROCK

    def summary(self) -> dict[str, int]:
        counts = {kind.value: 0 for kind in GeologicalFeature}
        for kind in self.features.values():
            counts[kind.value] += 1
        return {"transitions": len(self.transitions), **counts}


class GeologyLayer(GenerationLayer):
    """Assigns bedrock, soil depth, permeability and geological features."""

    name = "geology"

    def generate(self, ctx: GenerationContext) -> GeologyOutput:
        seed = ctx.layer_seed(self.name)
        w, h = ctx.width, ctx.height

        primary, secondary = self._select_formations(ctx)
        bedrock = self._bedrock_pattern(w, h, primary, secondary, SeededNoise(seed.derive("formations")))

        soil_noise = SeededNoise(seed.derive("weathering"))
        feature_noise = SeededNoise(seed.derive("erosion"))

        soil_depth = np.zeros((h, w), dtype=np.float64)
        permeability = np.zeros((h, w), dtype=np.float64)
        fracturing = np.zeros((h, w), dtype=np.float64)
        hardness = np.zeros((h, w), dtype=np.float64)
        features: dict[tuple[int, int], GeologicalFeature] = {}

        for y in range(h):
            for x in range(w):
                props = FORMATIONS[bedrock[y][x]]
                fracture = 1.0 / (props.joint_spacing + 1.0)
                depth = (1.0 + soil_noise.unit(x, y, SOIL_SCALE) * 2.0) * props.soil_factor

                feature = self._point_feature(bedrock[y][x], props, fracture, feature_noise.unit(x, y, FEATURE_SCALE))
                if feature == GeologicalFeature.OUTCROP:
                    depth = 0.5
                elif feature == GeologicalFeature.SINKHOLE:
                    depth += 5.0
                if feature is not None:
                    features[(x, y)] = feature

                soil_depth[y, x] = max(0.0, depth)
                permeability[y, x] = props.permeability
                fracturing[y, x] = fracture
                hardness[y, x] = props.hardness

        transitions = {
            (x, y)
            for y in range(h)
            for x in range(w)
            if any(bedrock[ny][nx] != bedrock[y][x] for nx, ny in neighbors4(x, y, w, h))
        }

        logger.debug(
            "Bedrock %s/%s with %d transition tiles",
            primary.value,
            secondary.value if secondary else "-",
            len(transitions),
        )
        return GeologyOutput(
            bedrock=bedrock,
            ground=self._ground(ctx, w, h),
            soil_depth=soil_depth,
            permeability=permeability,
            fracturing=fracturing,
            hardness=hardness,
            features=features,
            transitions=transitions,
            primary=primary,
            secondary=secondary,
        )

    def _select_formations(self, ctx: GenerationContext) -> tuple[BedrockType, BedrockType | None]:
        candidates = [BedrockType(name) for name in ctx.profile.formations]
        rng = ctx.layer_seed(self.name).derive("formations").rng()
        index = rng.randrange(len(candidates))
        secondary = None
        if len(candidates) > 1 and rng.chance(SECONDARY_FORMATION_CHANCE):
            secondary = candidates[(index + 1) % len(candidates)]
        return candidates[index], secondary

    def _ground(self, ctx: GenerationContext, width: int, height: int) -> list[list[TerrainType]]:
        """Surface terrain drawn from the requested distribution, or the biome's ground."""
        distribution = ctx.request.normalized_distribution()
        if not distribution:
            return [[ctx.profile.ground] * width for _ in range(height)]
        seed = ctx.layer_seed(self.name).derive("terrain")
        noise = SeededNoise(seed)
        ground = []
        for y in range(height):
            row = []
            for x in range(width):
                jitter = seed.for_tile(x, y).rng().uniform(-TERRAIN_JITTER, TERRAIN_JITTER)
                roll = min(max(noise.unit(x, y, TERRAIN_SCALE) + jitter, 0.0), 1.0)
                row.append(select_terrain(distribution, roll) or ctx.profile.ground)
            ground.append(row)
        return ground

    @staticmethod
    def _bedrock_pattern(
        width: int, height: int, primary: BedrockType, secondary: BedrockType | None, noise: SeededNoise
    ) -> list[list[BedrockType]]:
        if secondary is None:
            return [[primary] * width for _ in range(height)]
        return [
            [
                primary if noise.sample_2d(x * FORMATION_SCALE, y * FORMATION_SCALE) > 0 else secondary
                for x in range(width)
            ]
            for y in range(height)
        ]

    @staticmethod
    def _point_feature(
        rock: BedrockType, props: FormationProperties, fracture: float, roll: float
    ) -> GeologicalFeature | None:
        if rock == BedrockType.LIMESTONE:
            if roll > 0.82:
                return GeologicalFeature.SINKHOLE
            if roll > 0.75 and fracture > 0.2:
                return GeologicalFeature.CAVE
            return None
        if props.hardness >= 0.8 and roll > 0.78:
            return GeologicalFeature.OUTCROP
        return None
