"""Generation request and per-layer configuration models.

Every multiplier is validated against a documented range on construction
and mapped to the generator's internal parameters through monotonic
piecewise-linear interpolation between a low, default and high anchor.
Values outside the range are clamped by the mappings themselves, so the
derived parameters are always safe even for unvalidated copies.
"""

import math
from typing import Any, ClassVar, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from battlemap import errors
from battlemap.models import Biome, TerrainType
from battlemap.seed import Seed

MIN_MAP_SIZE = 10
MAX_MAP_SIZE = 200

# terrains a map may be seeded with; water and built terrain come from later layers
GROUND_TERRAIN = frozenset(
    {
        TerrainType.GRASS,
        TerrainType.DIRT,
        TerrainType.SAND,
        TerrainType.ROCK,
        TerrainType.SNOW,
        TerrainType.MUD,
        TerrainType.FOREST_FLOOR,
    }
)


def piecewise(value: float, anchors: tuple[float, float, float], outputs: tuple[float, float, float]) -> float:
    """Interpolate ``value`` through (low, default, high) anchors, clamped."""
    low, mid, high = anchors
    out_low, out_mid, out_high = outputs
    value = min(max(value, low), high)
    if value <= mid:
        t = (value - low) / (mid - low)
        return out_low + t * (out_mid - out_low)
    t = (value - mid) / (high - mid)
    return out_mid + t * (out_high - out_mid)


def _check_range(
    code_prefix: str, component: str, parameter: str, value: float, min_value: float, max_value: float
) -> None:
    if not min_value <= value <= max_value:
        raise errors.config_out_of_range(code_prefix, component, parameter, value, min_value, max_value)


class TopographyConfig(BaseModel):
    """Ruggedness and elevation variance multipliers."""

    model_config = ConfigDict(frozen=True)

    NOISE_SCALE: ClassVar[float] = 0.02

    ruggedness: float = 1.0
    elevation_variance: float = 1.0

    @model_validator(mode="after")
    def check_ranges(self) -> Self:
        _check_range(
            "TOPOGRAPHY_CONFIG_INVALID_RUGGEDNESS", "TopographyConfig", "ruggedness", self.ruggedness, 0.5, 2.0
        )
        _check_range(
            "TOPOGRAPHY_CONFIG_INVALID_VARIANCE",
            "TopographyConfig",
            "elevation_variance",
            self.elevation_variance,
            0.5,
            2.0,
        )
        return self

    @property
    def octaves(self) -> int:
        return round(piecewise(self.ruggedness, (0.5, 1.0, 2.0), (2, 4, 6)))

    @property
    def persistence(self) -> float:
        return piecewise(self.ruggedness, (0.5, 1.0, 2.0), (0.4, 0.6, 0.8))

    @property
    def relief(self) -> float:
        """Fraction of the map's extent used as elevation range."""
        return piecewise(self.elevation_variance, (0.5, 1.0, 2.0), (0.2, 0.4, 0.8))


class HydrologyConfig(BaseModel):
    """Water abundance multiplier and river toggle."""

    model_config = ConfigDict(frozen=True)

    water_abundance: float = 1.0
    generate_rivers: bool = True

    @model_validator(mode="after")
    def check_ranges(self) -> Self:
        _check_range(
            "HYDROLOGY_CONFIG_INVALID_ABUNDANCE",
            "HydrologyConfig",
            "water_abundance",
            self.water_abundance,
            0.5,
            2.0,
        )
        return self

    @property
    def stream_threshold_multiplier(self) -> float:
        return max(0.5, 2.0 - self.water_abundance)

    @property
    def spring_threshold(self) -> float:
        return piecewise(self.water_abundance, (0.5, 1.0, 2.0), (0.95, 0.80, 0.65))

    @property
    def pool_threshold(self) -> float:
        return piecewise(self.water_abundance, (0.5, 1.0, 2.0), (0.85, 0.70, 0.55))

    @property
    def slope_spring_bonus(self) -> float:
        return 0.3 * self.water_abundance


# Forestry constants (basal area in sq ft per acre)
BASAL_AREA_SPARSE = 50.0
BASAL_AREA_MODERATE = 100.0
BASAL_AREA_DENSE = 150.0
BASAL_AREA_MAXIMUM = 200.0
SQ_FT_PER_ACRE = 43_560.0
AVG_TREE_DIAMETER_FT = 1.0
SURVEY_RADIUS_TILES = 3


class VegetationConfig(BaseModel):
    """Vegetation density/diversity multipliers and forest toggle."""

    model_config = ConfigDict(frozen=True)

    density: float = 1.0
    diversity: float = 0.5
    generate_forests: bool = True

    @model_validator(mode="after")
    def check_ranges(self) -> Self:
        _check_range("VEGETATION_CONFIG_INVALID_DENSITY", "VegetationConfig", "density", self.density, 0.0, 2.0)
        _check_range(
            "VEGETATION_CONFIG_INVALID_DIVERSITY", "VegetationConfig", "diversity", self.diversity, 0.0, 1.0
        )
        return self

    @property
    def normalized_density(self) -> float:
        return min(max(self.density, 0.0) / 2.0, 1.0)

    @property
    def basal_area(self) -> float:
        return BASAL_AREA_SPARSE + (BASAL_AREA_MAXIMUM - BASAL_AREA_SPARSE) * self.normalized_density

    def tree_probability(self, cell_size: float = 5.0) -> float:
        """Chance that a forested tile of ``cell_size`` feet holds a tree trunk."""
        tree_basal_area = math.pi * (AVG_TREE_DIAMETER_FT / 2) ** 2
        trees_per_acre = self.basal_area / tree_basal_area
        tiles_per_acre = SQ_FT_PER_ACRE / (cell_size * cell_size)
        return min(max(trees_per_acre / tiles_per_acre, 0.0), 1.0)

    @property
    def forest_coverage(self) -> float:
        return 0.2 + 0.6 * self.normalized_density

    @property
    def understory_probability(self) -> float:
        return min(0.4 * min(max(self.density, 0.0), 2.0), 1.0)

    @property
    def ground_cover(self) -> float:
        return min(0.8 * min(max(self.density, 0.0), 1.5), 1.0)

    @property
    def species_count(self) -> int:
        """Number of tree species drawn from the biome pool."""
        return 1 + round(self.diversity * 4)

    @staticmethod
    def classify_density(basal_area: float) -> str:
        if basal_area >= BASAL_AREA_DENSE:
            return "dense"
        if basal_area >= BASAL_AREA_MODERATE:
            return "moderate"
        if basal_area >= BASAL_AREA_SPARSE:
            return "sparse"
        return "none"


class StructureConfig(BaseModel):
    """Building and road toggles."""

    model_config = ConfigDict(frozen=True)

    generate_buildings: bool = True
    generate_roads: bool = True
    building_density: float = 1.0
    wealth: float = 0.5
    max_buildings: int = Field(default=12, ge=0)

    @model_validator(mode="after")
    def check_ranges(self) -> Self:
        _check_range(
            "STRUCTURE_CONFIG_INVALID_DENSITY",
            "StructureConfig",
            "building_density",
            self.building_density,
            0.0,
            2.0,
        )
        _check_range("STRUCTURE_CONFIG_INVALID_WEALTH", "StructureConfig", "wealth", self.wealth, 0.0, 1.0)
        return self

    @property
    def target_buildings(self) -> int:
        return min(self.max_buildings, round(6 * self.building_density))


class MapGenerationRequest(BaseModel):
    """Everything needed to generate one map."""

    model_config = ConfigDict(frozen=True)

    name: str = "Untitled Map"
    width: int = 50
    height: int = 40
    cell_size: float = Field(default=5.0, gt=0)
    seed: int | str = Seed.DEFAULT_VALUE
    biome: Biome = Biome.TEMPERATE_FOREST
    terrain_distribution: dict[TerrainType, float] = Field(default_factory=dict)
    topography: TopographyConfig = Field(default_factory=TopographyConfig)
    hydrology: HydrologyConfig = Field(default_factory=HydrologyConfig)
    vegetation: VegetationConfig = Field(default_factory=VegetationConfig)
    structures: StructureConfig = Field(default_factory=StructureConfig)
    author: str = "battlemap"
    description: str = ""
    tags: list[str] = Field(default_factory=list)

    @field_validator("seed", mode="before")
    @classmethod
    def check_seed_type(cls, value: Any) -> Any:
        """Accept strings, whole numbers and Seeds; anything else is MAP_INVALID_SEED."""
        if isinstance(value, Seed):
            return value.value
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise errors.map_invalid_seed(value)
        if isinstance(value, float):
            return Seed.from_number(value).value
        return value

    @field_validator("biome", mode="before")
    @classmethod
    def normalize_biome(cls, value: Any) -> Any:
        """Accept hyphenated and capitalized names such as "Temperate-Forest"."""
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_").replace(" ", "_")
        return value

    @model_validator(mode="after")
    def check_request(self) -> Self:
        validate_dimensions(self.width, self.height)
        self.resolved_seed()
        for terrain, weight in self.terrain_distribution.items():
            if terrain not in GROUND_TERRAIN:
                raise errors.map_invalid_terrain_distribution(terrain.value, "only ground terrain can be requested")
            if not math.isfinite(weight) or weight < 0:
                raise errors.map_invalid_terrain_distribution(
                    terrain.value, f"weight {weight} must be a finite number >= 0"
                )
        return self

    def resolved_seed(self) -> Seed:
        return Seed.from_input(self.seed)

    def normalized_distribution(self) -> dict[TerrainType, float]:
        """Terrain weights scaled to sum to 1, ignoring non-positive entries."""
        weights = {k: v for k, v in self.terrain_distribution.items() if v > 0}
        total = sum(weights.values())
        if total <= 0:
            return {}
        return {k: v / total for k, v in weights.items()}


def validate_dimensions(width: int, height: int) -> None:
    """Raise MAP_INVALID_DIMENSIONS unless both edges are in [10, 200]."""
    if not (MIN_MAP_SIZE <= width <= MAX_MAP_SIZE and MIN_MAP_SIZE <= height <= MAX_MAP_SIZE):
        raise errors.map_invalid_dimensions(width, height, MIN_MAP_SIZE, MAX_MAP_SIZE)
