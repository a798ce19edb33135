"""Vegetation layer: forests with individual trees and understory, and grasslands.

Trees go in first. Their crowns are projected onto a canopy map, and the
understory is only placed where enough light reaches the ground. Adjacent
compatible trees then graft, which merges the donor's canopy into the
receiver.
"""

import logging
import math
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from battlemap import errors
from battlemap.features.base import feature_id
from battlemap.features.vegetation import (
    SHADE_TOLERANCE,
    Forest,
    Grassland,
    Plant,
    PlantCategory,
    PlantSize,
    PlantSpecies,
    SPECIES_PROFILES,
    Tree,
)
from battlemap.geometry import SubTilePosition, SpatialBounds
from battlemap.gridmap import GridMap
from battlemap.layers.base import GenerationContext, GenerationLayer, LayerOutput
from battlemap.layers.geology import GeologicalFeature, GeologyOutput
from battlemap.layers.hydrology import HydrologyOutput
from battlemap.layers.topography import TopographyOutput
from battlemap.models import FeatureKind, TerrainType
from battlemap.noise import generate_field
from battlemap.raster import connected_regions
from battlemap.seed import Seed, SeededRandom

logger = logging.getLogger(__name__)

FOREST_SCALE = 0.08
MAX_FOREST_SLOPE = 35.0
MAX_GRASS_SLOPE = 30.0
MIN_FOREST_TILES = 6
MIN_GRASSLAND_TILES = 12

SIZE_AGES: dict[PlantSize, tuple[float, float]] = {
    PlantSize.TINY: (1, 4),
    PlantSize.SMALL: (4, 15),
    PlantSize.MEDIUM: (15, 40),
    PlantSize.LARGE: (40, 90),
    PlantSize.HUGE: (90, 160),
    PlantSize.MASSIVE: (160, 300),
}

UNDERSTORY_BY_LIGHT: list[tuple[float, tuple[PlantSpecies, ...]]] = [
    (0.5, (PlantSpecies.HAZEL, PlantSpecies.BRAMBLE, PlantSpecies.JUNIPER)),
    (0.2, (PlantSpecies.FERN, PlantSpecies.WILDFLOWER)),
    (0.0, (PlantSpecies.MOSS,)),
]


@dataclass
class VegetationOutput(LayerOutput):
    """Canopy, light and ground cover grids plus forests and grasslands."""

    canopy: NDArray[np.float64]
    ground_cover: NDArray[np.float64]
    forests: list[Forest] = field(default_factory=list)
    grasslands: list[Grassland] = field(default_factory=list)

    @property
    def light(self) -> NDArray[np.float64]:
        return 1.0 - self.canopy

    @property
    def tree_count(self) -> int:
        return sum(len(f.trees) for f in self.forests)

    @property
    def graft_count(self) -> int:
        return sum(len(t.grafted_with) for f in self.forests for t in f.trees)

    def commit(self, grid: GridMap) -> None:
        light = self.light
        trees_at: dict[tuple[int, int], int] = {}
        understory_at: dict[tuple[int, int], int] = {}
        dominant: dict[tuple[int, int], str | None] = {}
        for forest in self.forests:
            for tree in forest.trees:
                key = (tree.position.tile_x, tree.position.tile_y)
                trees_at[key] = trees_at.get(key, 0) + 1
            for plant in forest.understory:
                key = (plant.position.tile_x, plant.position.tile_y)
                understory_at[key] = understory_at.get(key, 0) + 1
            species = forest.dominant_species
            for cell in forest.claimed_cells():
                dominant[cell] = species.value if species else None

        for tile in grid.iter_tiles():
            x, y = tile.x, tile.y
            veg = tile.vegetation
            veg.canopy = round(float(self.canopy[y, x]), 4)
            veg.light = round(float(light[y, x]), 4)
            veg.ground_cover = round(float(self.ground_cover[y, x]), 4)
            veg.tree_count = trees_at.get((x, y), 0)
            veg.understory_count = understory_at.get((x, y), 0)
            veg.dominant_species = dominant.get((x, y))
            if (x, y) in dominant and tile.terrain in (TerrainType.GRASS, TerrainType.DIRT, TerrainType.SAND):
                tile.terrain = TerrainType.FOREST_FLOOR
        for feature in [*self.forests, *self.grasslands]:
            grid.add_feature(feature)

    def summary(self) -> dict[str, int]:
        return {
            "forests": len(self.forests),
            "trees": self.tree_count,
            "grafts": self.graft_count,
            "grasslands": len(self.grasslands),
        }


def project_canopy(trees: list[Tree], width: int, height: int, cell_size: float) -> NDArray[np.float64]:
    """Fraction of each tile shaded by tree crowns, capped at 1."""
    canopy = np.zeros((height, width), dtype=np.float64)
    for tree in trees:
        center = tree.position.absolute
        radius = tree.coverage_radius / cell_size
        reach = math.ceil(radius)
        for ty in range(max(0, center.tile()[1] - reach), min(height, center.tile()[1] + reach + 1)):
            for tx in range(max(0, center.tile()[0] - reach), min(width, center.tile()[0] + reach + 1)):
                distance = math.hypot(tx + 0.5 - center.x, ty + 0.5 - center.y)
                if distance <= radius:
                    # denser under the trunk, thinning toward the crown's edge
                    canopy[ty, tx] += tree.canopy_density * (1.0 - 0.5 * distance / max(radius, 1e-9))
    return np.minimum(canopy, 1.0)


def graft_adjacent(trees: list[Tree], cell_size: float) -> int:
    """Graft each tree into the first earlier compatible neighbor. Returns the number of grafts."""
    grafts = 0
    for i, donor in enumerate(trees):
        if donor.grafted_into is not None or donor.grafted_with:
            continue
        for receiver in trees[:i]:
            if receiver.grafted_into is not None:
                continue
            if receiver.graft(donor, cell_size):
                grafts += 1
                break
    return grafts


class VegetationLayer(GenerationLayer):
    """Places forests and grasslands on dry, not too steep ground."""

    name = "vegetation"
    requires = ("geology", "topography", "hydrology")

    def generate(self, ctx: GenerationContext) -> VegetationOutput:
        geology = ctx.require("geology", self.name, GeologyOutput)
        topo = ctx.require("topography", self.name, TopographyOutput)
        hydro = ctx.require("hydrology", self.name, HydrologyOutput)
        cfg = ctx.request.vegetation
        seed = ctx.layer_seed(self.name)
        w, h = ctx.width, ctx.height

        noise = generate_field(seed.derive("trees"), w, h, octaves=3, persistence=0.5, scale=FOREST_SCALE)
        potential = 0.6 * noise + 0.4 * hydro.moisture
        if not np.all(np.isfinite(potential)):
            raise errors.vegetation_distribution_failed("growth potential contains non-finite values")

        dry = hydro.water_depth == 0
        bare = np.zeros((h, w), dtype=bool)
        for (x, y), feature in geology.features.items():
            bare[y, x] = feature == GeologicalFeature.OUTCROP
        growable = dry & ~bare

        ground_cover = np.where(growable, cfg.ground_cover * np.clip(potential + 0.3, 0.0, 1.0), 0.0)
        output = VegetationOutput(canopy=np.zeros((h, w), dtype=np.float64), ground_cover=ground_cover)

        forest_mask = np.zeros((h, w), dtype=bool)
        if cfg.generate_forests and cfg.density > 0:
            forest_mask = self._forest_mask(potential, growable & (topo.slope < MAX_FOREST_SLOPE), ctx)
            self._place_forests(ctx, forest_mask, potential, hydro, output)

        open_ground = growable & ~forest_mask & (topo.slope < MAX_GRASS_SLOPE)
        self._place_grasslands(ctx, open_ground, output)

        logger.debug(
            "Vegetation: basal area %.0f sq ft/acre (%s), tree probability %.3f",
            cfg.basal_area,
            cfg.classify_density(cfg.basal_area),
            cfg.tree_probability(ctx.cell_size),
        )
        return output

    @staticmethod
    def _forest_mask(
        potential: NDArray[np.float64], eligible: NDArray[np.bool_], ctx: GenerationContext
    ) -> NDArray[np.bool_]:
        """Top-potential eligible tiles, enough to reach the target coverage."""
        coverage = min(1.0, ctx.request.vegetation.forest_coverage * ctx.profile.forest_affinity)
        cells = [(x, y) for y, x in zip(*np.nonzero(eligible))]
        cells.sort(key=lambda c: (-potential[c[1], c[0]], c[1], c[0]))
        target = int(len(cells) * coverage)
        mask = np.zeros_like(eligible)
        for x, y in cells[:target]:
            mask[y, x] = True
        return mask

    def _place_forests(
        self,
        ctx: GenerationContext,
        mask: NDArray[np.bool_],
        potential: NDArray[np.float64],
        hydro: HydrologyOutput,
        output: VegetationOutput,
    ) -> None:
        cfg = ctx.request.vegetation
        seed = ctx.layer_seed(self.name)
        tree_seed = seed.derive("trees")
        species_pool = [PlantSpecies(name) for name in ctx.profile.tree_species[: cfg.species_count]]
        weights = [1.0 / (i + 1) for i in range(len(species_pool))]
        tree_chance = cfg.tree_probability(ctx.cell_size)

        for ordinal, cells in enumerate(connected_regions(mask, MIN_FOREST_TILES)):
            ax, ay = cells[0]
            forest = Forest(
                id=feature_id(seed, FeatureKind.FOREST, ax, ay, ordinal),
                name=f"Forest {ordinal + 1}",
                area=SpatialBounds.around(cells),
                cells=cells,
                underbrush_density=round(min(1.0, cfg.understory_probability), 2),
                cell_size=ctx.cell_size,
            )
            for x, y in cells:
                rng = tree_seed.for_tile(x, y).rng()
                if not rng.chance(tree_chance):
                    continue
                forest.add_tree(self._make_tree(rng, tree_seed, x, y, species_pool, weights, potential[y, x]))
            output.forests.append(forest)

        all_trees = [t for f in output.forests for t in f.trees]
        for forest in output.forests:
            graft_adjacent(forest.trees, ctx.cell_size)
        output.canopy = project_canopy(all_trees, ctx.width, ctx.height, ctx.cell_size)

        undergrowth_seed = seed.derive("undergrowth")
        light = output.light
        for forest in output.forests:
            for x, y in forest.claimed_cells():
                rng = undergrowth_seed.for_tile(x, y).rng()
                if not rng.chance(cfg.understory_probability * float(light[y, x] + 0.2)):
                    continue
                plant = self._make_understory(rng, undergrowth_seed, x, y, float(light[y, x]))
                if plant is not None:
                    forest.add_understory(plant)

    @staticmethod
    def _make_tree(
        rng: SeededRandom,
        tree_seed: Seed,
        x: int,
        y: int,
        species_pool: list[PlantSpecies],
        weights: list[float],
        potential: float,
    ) -> Tree:
        species = rng.pick_weighted(species_pool, weights)
        size_value = rng.random() * min(1.0, potential + 0.3)
        if size_value > 0.8:
            size = PlantSize.HUGE
        elif size_value > 0.6:
            size = PlantSize.LARGE
        elif size_value > 0.4:
            size = PlantSize.MEDIUM
        elif size_value > 0.2:
            size = PlantSize.SMALL
        else:
            size = PlantSize.TINY
        low, high = SIZE_AGES[size]
        age = round(rng.uniform(low, high), 1)
        health = 0.2 if species == PlantSpecies.DEAD else round(rng.uniform(0.5, 1.0), 3)
        return Tree(
            id=f"tree_{tree_seed.for_tile(x, y).value:08x}",
            species=species,
            position=SubTilePosition(x, y, round(rng.uniform(0.1, 0.9), 3), round(rng.uniform(0.1, 0.9), 3)),
            size=size,
            health=health,
            age=age,
            diameter=round(max(0.2, age / SPECIES_PROFILES[species].maturity_age * 1.5), 2),
        )

    @staticmethod
    def _make_understory(rng: SeededRandom, seed: Seed, x: int, y: int, light: float) -> Plant | None:
        canopy = 1.0 - light
        options = next(opts for min_light, opts in UNDERSTORY_BY_LIGHT if light >= min_light)
        species = rng.choice(options)
        category = SPECIES_PROFILES[species].category
        if canopy >= SHADE_TOLERANCE.get(category, 1.0) and category != PlantCategory.MOSS:
            return None
        return Plant(
            id=f"plant_{seed.for_tile(x, y).value:08x}",
            species=species,
            position=SubTilePosition(x, y, round(rng.uniform(0.0, 0.95), 3), round(rng.uniform(0.0, 0.95), 3)),
            size=PlantSize.SMALL,
            health=round(rng.uniform(0.4, 1.0), 3),
            age=round(rng.uniform(1.0, 8.0), 1),
        )

    def _place_grasslands(self, ctx: GenerationContext, mask: NDArray[np.bool_], output: VegetationOutput) -> None:
        cfg = ctx.request.vegetation
        seed = ctx.layer_seed(self.name).derive("grassland")
        grass_height = ctx.profile.grass_height * (0.5 + 0.5 * min(cfg.density, 2.0))
        for ordinal, cells in enumerate(connected_regions(mask, MIN_GRASSLAND_TILES)):
            ax, ay = cells[0]
            rng = seed.derive(ordinal).rng()
            grassland = Grassland(
                id=feature_id(seed, FeatureKind.GRASSLAND, ax, ay, ordinal),
                name=f"Grassland {ordinal + 1}",
                area=SpatialBounds.around(cells),
                cells=cells,
                grass_height=round(grass_height, 2),
                flower_density=round(rng.uniform(0.05, 0.4) * cfg.ground_cover, 3),
            )
            for x, y in cells:
                plant_rng = seed.for_tile(x, y).rng()
                if plant_rng.chance(0.05 * cfg.ground_cover):
                    species = plant_rng.choice((PlantSpecies.WILDFLOWER, PlantSpecies.TALL_GRASS))
                    grassland.plants.append(
                        Plant(
                            id=f"plant_{seed.for_tile(x, y).value:08x}",
                            species=species,
                            position=SubTilePosition(x, y, 0.5, 0.5),
                            size=PlantSize.SMALL,
                            age=1.0,
                        )
                    )
            output.grasslands.append(grassland)
