"""Vegetation features: individual plants, forests and grasslands."""

import math
from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum

from battlemap import errors
from battlemap.features.base import MapFeature
from battlemap.geometry import Position, SubTilePosition
from battlemap.models import FeatureKind


class PlantCategory(StrEnum):
    """Broad plant category."""

    TREE = "tree"
    SHRUB = "shrub"
    HERBACEOUS = "herbaceous"
    MOSS = "moss"


class PlantSize(StrEnum):
    """Size class."""

    TINY = "tiny"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    HUGE = "huge"
    MASSIVE = "massive"


class PlantSpecies(StrEnum):
    """Species the generator knows how to place."""

    OAK = "oak"
    PINE = "pine"
    BIRCH = "birch"
    MAPLE = "maple"
    CEDAR = "cedar"
    WILLOW = "willow"
    FRUIT = "fruit"
    DEAD = "dead"
    HAZEL = "hazel"
    BRAMBLE = "bramble"
    JUNIPER = "juniper"
    FERN = "fern"
    WILDFLOWER = "wildflower"
    TALL_GRASS = "tall_grass"
    MOSS = "moss"


@dataclass(frozen=True)
class SpeciesProfile:
    """Mature dimensions of a species, in feet and years."""

    category: PlantCategory
    max_height: float
    max_width: float
    maturity_age: float
    canopy_density: float = 0.0
    group: str = ""


SPECIES_PROFILES: dict[PlantSpecies, SpeciesProfile] = {
    PlantSpecies.OAK: SpeciesProfile(PlantCategory.TREE, 70, 30, 80, 0.8, "deciduous"),
    PlantSpecies.PINE: SpeciesProfile(PlantCategory.TREE, 80, 20, 60, 0.6, "coniferous"),
    PlantSpecies.BIRCH: SpeciesProfile(PlantCategory.TREE, 50, 15, 40, 0.5, "deciduous"),
    PlantSpecies.MAPLE: SpeciesProfile(PlantCategory.TREE, 60, 25, 60, 0.85, "deciduous"),
    PlantSpecies.CEDAR: SpeciesProfile(PlantCategory.TREE, 60, 20, 70, 0.7, "coniferous"),
    PlantSpecies.WILLOW: SpeciesProfile(PlantCategory.TREE, 40, 30, 30, 0.6, "deciduous"),
    PlantSpecies.FRUIT: SpeciesProfile(PlantCategory.TREE, 20, 15, 15, 0.5, "deciduous"),
    PlantSpecies.DEAD: SpeciesProfile(PlantCategory.TREE, 40, 10, 1, 0.1, "dead"),
    PlantSpecies.HAZEL: SpeciesProfile(PlantCategory.SHRUB, 12, 10, 8, 0.4),
    PlantSpecies.BRAMBLE: SpeciesProfile(PlantCategory.SHRUB, 5, 8, 3, 0.3),
    PlantSpecies.JUNIPER: SpeciesProfile(PlantCategory.SHRUB, 8, 6, 10, 0.5),
    PlantSpecies.FERN: SpeciesProfile(PlantCategory.HERBACEOUS, 3, 3, 2),
    PlantSpecies.WILDFLOWER: SpeciesProfile(PlantCategory.HERBACEOUS, 2, 1, 1),
    PlantSpecies.TALL_GRASS: SpeciesProfile(PlantCategory.HERBACEOUS, 4, 1, 1),
    PlantSpecies.MOSS: SpeciesProfile(PlantCategory.MOSS, 0.2, 1, 3),
}

# Shade levels above which an understory plant cannot survive
SHADE_TOLERANCE: dict[PlantCategory, float] = {
    PlantCategory.SHRUB: 0.8,
    PlantCategory.HERBACEOUS: 0.9,
    PlantCategory.MOSS: 1.0,
}

GRAFT_MIN_HEALTH = 0.7
GRAFT_HEALTH_BOOST = 0.1


@dataclass(kw_only=True)
class Plant:
    """A single plant at a sub-tile position."""

    id: str
    species: PlantSpecies
    position: SubTilePosition
    size: PlantSize = PlantSize.MEDIUM
    health: float = 1.0
    age: float = 10.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.health <= 1.0:
            raise errors.plant_invalid_health(self.health)
        if self.age < 0:
            raise errors.invalid_geometry("Plant", "age cannot be negative", age=self.age)

    @property
    def profile(self) -> SpeciesProfile:
        return SPECIES_PROFILES[self.species]

    @property
    def category(self) -> PlantCategory:
        return self.profile.category

    @property
    def height(self) -> float:
        """Current height in feet."""
        growth = min(1.0, self.age / self.profile.maturity_age)
        return self.profile.max_height * growth * self.health

    @property
    def coverage_radius(self) -> float:
        """Crown radius in feet."""
        growth = min(1.0, self.age / self.profile.maturity_age)
        return self.profile.max_width * max(growth, 0.2) / 2

    def distance_to(self, other: "Plant", cell_size: float = 5.0) -> float:
        """Distance between stems in feet."""
        return self.position.distance_to(other.position) * cell_size

    def can_coexist_with(self, other: "Plant", canopy: float = 0.0, cell_size: float = 5.0) -> bool:
        """Whether ``other`` may grow here given the local ``canopy`` cover."""
        if self.category == PlantCategory.TREE and other.category == PlantCategory.TREE:
            min_distance = (self.coverage_radius + other.coverage_radius) * 0.7
            return self.distance_to(other, cell_size) > min_distance
        understory = other if self.category == PlantCategory.TREE else self
        return canopy < SHADE_TOLERANCE.get(understory.category, 1.0)


@dataclass(kw_only=True)
class Tree(Plant):
    """A tree; the only plant that casts canopy and can graft."""

    diameter: float = 1.0  # trunk diameter at breast height, feet
    grafted_with: list[str] = field(default_factory=list)
    grafted_into: str | None = None

    @property
    def canopy_density(self) -> float:
        return self.profile.canopy_density * self.health

    @property
    def is_grafted(self) -> bool:
        return bool(self.grafted_with) or self.grafted_into is not None

    def is_graft_compatible(self, other: "Tree") -> bool:
        if PlantSpecies.DEAD in (self.species, other.species):
            return False
        return self.species == other.species or self.profile.group == other.profile.group

    def can_graft(self, other: "Tree", cell_size: float = 5.0) -> bool:
        """Healthy, compatible trees whose crowns touch."""
        if other.id == self.id:
            return False
        if self.health <= GRAFT_MIN_HEALTH or other.health <= GRAFT_MIN_HEALTH:
            return False
        if not self.is_graft_compatible(other):
            return False
        return self.distance_to(other, cell_size) <= self.coverage_radius + other.coverage_radius

    def graft(self, donor: "Tree", cell_size: float = 5.0) -> bool:
        """Merge ``donor``'s canopy into this tree.

        One-directional: this tree records the donor and gains health, the
        donor records where it went. Grafting an already grafted pair, in
        either direction, changes nothing and returns False.
        """
        if donor.id in self.grafted_with or self.id in donor.grafted_with:
            return False
        if not self.can_graft(donor, cell_size):
            return False
        self.grafted_with.append(donor.id)
        donor.grafted_into = self.id
        self.health = min(1.0, self.health + GRAFT_HEALTH_BOOST)
        return True


class ForestDensity(StrEnum):
    """Trees per tile class."""

    SPARSE = "sparse"
    MODERATE = "moderate"
    DENSE = "dense"
    VERY_DENSE = "very_dense"


@dataclass(kw_only=True)
class Forest(MapFeature):
    """A stand of trees with its understory."""

    kind: FeatureKind = field(default=FeatureKind.FOREST, init=False)
    trees: list[Tree] = field(default_factory=list)
    understory: list[Plant] = field(default_factory=list)
    underbrush_density: float = 0.5
    cell_size: float = 5.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.underbrush_density <= 1.0:
            raise errors.forest_invalid_underbrush(self.underbrush_density)
        super().__post_init__()

    def add_tree(self, tree: Tree) -> None:
        if not self.area.contains(tree.position.absolute):
            raise errors.tree_out_of_bounds(self.id, tree.id)
        self.trees.append(tree)

    def add_understory(self, plant: Plant) -> None:
        if not self.area.contains(plant.position.absolute):
            raise errors.tree_out_of_bounds(self.id, plant.id)
        self.understory.append(plant)

    def tree_by_id(self, tree_id: str) -> Tree | None:
        return next((t for t in self.trees if t.id == tree_id), None)

    def species_distribution(self) -> dict[PlantSpecies, float]:
        if not self.trees:
            return {}
        counts = Counter(t.species for t in self.trees)
        return {species: counts[species] / len(self.trees) for species in sorted(counts)}

    @property
    def dominant_species(self) -> PlantSpecies | None:
        """Most common species if it holds more than 20% of the trees."""
        distribution = self.species_distribution()
        if not distribution:
            return None
        species, share = max(distribution.items(), key=lambda item: (item[1], -list(PlantSpecies).index(item[0])))
        return species if share > 0.2 else None

    @property
    def average_health(self) -> float:
        if not self.trees:
            return 0.0
        return sum(t.health for t in self.trees) / len(self.trees)

    @property
    def canopy_coverage(self) -> float:
        """Fraction of the claimed ground under some crown, capped at 1."""
        cells = len(self.claimed_cells())
        if cells == 0:
            return 0.0
        crown_area = sum(math.pi * (t.coverage_radius / self.cell_size) ** 2 for t in self.trees)
        return min(1.0, crown_area / cells)

    @property
    def density(self) -> ForestDensity:
        cells = len(self.claimed_cells())
        per_tile = len(self.trees) / cells if cells else 0.0
        if per_tile < 0.3:
            return ForestDensity.SPARSE
        if per_tile < 0.6:
            return ForestDensity.MODERATE
        if per_tile < 0.9:
            return ForestDensity.DENSE
        return ForestDensity.VERY_DENSE

    def create_clearing(self, center: Position, radius: float) -> list[str]:
        """Remove every tree and understory plant within ``radius`` tiles."""
        removed = [t.id for t in self.trees if t.position.absolute.distance_to(center) <= radius]
        self.trees = [t for t in self.trees if t.id not in removed]
        self.understory = [p for p in self.understory if p.position.absolute.distance_to(center) > radius]
        return removed


@dataclass(kw_only=True)
class Grassland(MapFeature):
    """Open ground dominated by grasses and flowers."""

    kind: FeatureKind = field(default=FeatureKind.GRASSLAND, init=False)
    grass_height: float = 1.5  # feet
    flower_density: float = 0.2
    plants: list[Plant] = field(default_factory=list)

    @property
    def provides_concealment(self) -> bool:
        """Tall grass hides a crouching figure."""
        return self.grass_height >= 3
