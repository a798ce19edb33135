"""Tests for plants, trees, forests and canopy projection."""

import pytest

from battlemap.errors import DomainRuleError, ValidationError
from battlemap.features.vegetation import (
    Forest,
    ForestDensity,
    Grassland,
    Plant,
    PlantCategory,
    PlantSpecies,
    Tree,
)
from battlemap.geometry import Position, SpatialBounds, SubTilePosition
from battlemap.layers.vegetation import graft_adjacent, project_canopy


def tree(tree_id: str, x: int, y: int, species: PlantSpecies = PlantSpecies.OAK, **kwargs) -> Tree:
    return Tree(id=tree_id, species=species, position=SubTilePosition(x, y), **kwargs)


class TestPlant:
    """Tests for plant growth and coexistence."""

    def test_rejects_invalid_health(self):
        """Health above 1 raises PLANT_INVALID_HEALTH."""
        with pytest.raises(ValidationError) as exc:
            Plant(id="p", species=PlantSpecies.FERN, position=SubTilePosition(0, 0), health=1.5)

        assert exc.value.code == "PLANT_INVALID_HEALTH"

    def test_height_grows_to_maturity(self):
        """Plants grow until they reach their species height."""
        young = Plant(id="a", species=PlantSpecies.BIRCH, position=SubTilePosition(0, 0), age=10)
        mature = Plant(id="b", species=PlantSpecies.BIRCH, position=SubTilePosition(0, 0), age=80)

        assert young.height < mature.height == 50

    def test_understory_needs_light(self):
        """Herbaceous plants only grow under an open canopy."""
        oak = tree("t", 0, 0)
        fern = Plant(id="f", species=PlantSpecies.FERN, position=SubTilePosition(0, 0))

        assert fern.category == PlantCategory.HERBACEOUS
        assert oak.can_coexist_with(fern, canopy=0.5)
        assert not oak.can_coexist_with(fern, canopy=0.95)


class TestGrafting:
    """Tests for tree grafting."""

    def test_adjacent_compatible_trees_graft(self):
        """Grafting records the donor and where it went."""
        receiver, donor = tree("a", 0, 0), tree("b", 1, 0)

        assert receiver.graft(donor)
        assert receiver.grafted_with == ["b"]
        assert donor.grafted_into == "a"
        assert receiver.is_grafted and donor.is_grafted

    def test_graft_is_idempotent(self):
        """A grafted pair cannot be grafted again in either direction."""
        receiver, donor = tree("a", 0, 0), tree("b", 1, 0)
        receiver.graft(donor)

        assert not receiver.graft(donor)
        assert not donor.graft(receiver)
        assert receiver.grafted_with == ["b"]

    def test_incompatible_groups_do_not_graft(self):
        """Broadleaf and conifer trees do not graft."""
        oak, pine = tree("a", 0, 0), tree("b", 1, 0, species=PlantSpecies.PINE)

        assert not oak.graft(pine)

    def test_same_group_grafts(self):
        """Trees of one graft group are compatible."""
        oak, maple = tree("a", 0, 0), tree("b", 1, 0, species=PlantSpecies.MAPLE)

        assert oak.is_graft_compatible(maple)

    def test_unhealthy_trees_do_not_graft(self):
        """A sickly donor is refused."""
        receiver, donor = tree("a", 0, 0), tree("b", 1, 0, health=0.5)

        assert not receiver.graft(donor)

    def test_distant_trees_do_not_graft(self):
        """Trees farther apart than the graft reach are refused."""
        receiver, donor = tree("a", 0, 0), tree("b", 5, 0)

        assert not receiver.graft(donor)

    def test_dead_trees_do_not_graft(self):
        """Dead trees never graft."""
        receiver, donor = tree("a", 0, 0, species=PlantSpecies.DEAD), tree("b", 1, 0, species=PlantSpecies.DEAD)

        assert not receiver.graft(donor)

    def test_graft_adjacent_counts_grafts(self):
        """Each tree joins at most one graft in a row of three."""
        trees = [tree("a", 0, 0), tree("b", 1, 0), tree("c", 2, 0)]

        assert graft_adjacent(trees, cell_size=5.0) == 1
        assert trees[1].grafted_into == "a"
        assert trees[2].grafted_into is None


class TestForest:
    """Tests for Forest composition."""

    @pytest.fixture
    def forest(self):
        return Forest(id="forest_1", name="Old Wood", area=SpatialBounds(0, 0, 4, 4))

    def test_rejects_tree_outside_area(self, forest):
        """Trees outside the forest bounds raise TREE_OUT_OF_BOUNDS."""
        with pytest.raises(DomainRuleError) as exc:
            forest.add_tree(tree("far", 10, 10))

        assert exc.value.code == "TREE_OUT_OF_BOUNDS"

    def test_rejects_invalid_underbrush(self):
        """Underbrush density above 1 raises FOREST_INVALID_UNDERBRUSH."""
        with pytest.raises(ValidationError) as exc:
            Forest(id="f", name="f", area=SpatialBounds(0, 0, 2, 2), underbrush_density=1.5)

        assert exc.value.code == "FOREST_INVALID_UNDERBRUSH"

    def test_dominant_species(self, forest):
        """A species with most of the trees dominates."""
        for i, species in enumerate([PlantSpecies.OAK, PlantSpecies.OAK, PlantSpecies.OAK, PlantSpecies.PINE]):
            forest.add_tree(tree(f"t{i}", i, 0, species=species))

        assert forest.dominant_species == PlantSpecies.OAK
        assert forest.species_distribution()[PlantSpecies.PINE] == pytest.approx(0.25)

    def test_no_dominant_species_when_evenly_mixed(self, forest):
        """No species dominates an even mix."""
        species = [PlantSpecies.OAK, PlantSpecies.PINE, PlantSpecies.BIRCH, PlantSpecies.MAPLE, PlantSpecies.CEDAR]
        for i, s in enumerate(species):
            forest.add_tree(tree(f"t{i}", i % 4, i // 4, species=s))

        assert forest.dominant_species is None

    def test_empty_forest(self, forest):
        """An empty forest is sparse with no canopy."""
        assert forest.dominant_species is None
        assert forest.density == ForestDensity.SPARSE
        assert forest.canopy_coverage == 0.0

    def test_create_clearing(self, forest):
        """A clearing removes the trees inside its radius."""
        forest.add_tree(tree("a", 0, 0))
        forest.add_tree(tree("b", 3, 3))

        removed = forest.create_clearing(Position(0.5, 0.5), radius=1.0)

        assert removed == ["a"]
        assert [t.id for t in forest.trees] == ["b"]


class TestCanopy:
    """Tests for canopy projection."""

    def test_canopy_under_trunk(self):
        """Canopy is densest over the trunk and absent far away."""
        canopy = project_canopy([tree("a", 2, 2)], width=5, height=5, cell_size=5.0)

        assert canopy[2, 2] == pytest.approx(0.8)
        assert canopy[0, 0] == 0.0

    def test_canopy_capped(self):
        """Overlapping crowns cap canopy at full cover."""
        trees = [tree(f"t{i}", 2, 2) for i in range(5)]
        canopy = project_canopy(trees, width=5, height=5, cell_size=5.0)

        assert canopy.max() == 1.0

    def test_tall_grass_conceals(self):
        """Grass three feet or taller provides concealment."""
        tall = Grassland(id="g", name="g", area=SpatialBounds(0, 0, 3, 3), grass_height=3.5)

        assert tall.provides_concealment
