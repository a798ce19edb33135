"""Tests for the individual generation layers."""

import numpy as np
import pytest

from battlemap.errors import DomainRuleError, InfrastructureError
from battlemap.layers import (
    FeaturePlacementLayer,
    GenerationContext,
    GeologyLayer,
    HydrologyLayer,
    StructureLayer,
    TopographyLayer,
    VegetationLayer,
)
from battlemap.layers.geology import select_terrain
from battlemap.layers.hydrology import (
    HydrologyOutput,
    descending_order,
    flow_accumulation,
    flow_directions,
    neighbor_priority,
    strahler_order,
)
from battlemap.layers.topography import TopographyOutput
from battlemap.models import Biome, FeatureKind, TerrainType
from battlemap.raster import NO_FLOW
from battlemap.request import MapGenerationRequest, StructureConfig, VegetationConfig

ALL_LAYERS = [GeologyLayer, TopographyLayer, HydrologyLayer, VegetationLayer, StructureLayer, FeaturePlacementLayer]


def run_layers(request: MapGenerationRequest, count: int) -> GenerationContext:
    """Generate and commit the first ``count`` layers."""
    ctx = GenerationContext.create_empty(request)
    for layer_cls in ALL_LAYERS[:count]:
        layer = layer_cls()
        layer.check_dependencies(ctx)
        ctx.record(layer.name, layer.generate(ctx))
    return ctx


def empty_hydrology(width: int, height: int) -> HydrologyOutput:
    """Dry grids with no flow, for driving single hydrology steps."""
    zeros = np.zeros((height, width))
    return HydrologyOutput(
        flow_direction=np.full((height, width), NO_FLOW, dtype=np.int8),
        flow_accumulation=np.ones((height, width)),
        stream_order=np.zeros((height, width), dtype=np.int16),
        is_stream=np.zeros((height, width), dtype=bool),
        water_depth=zeros.copy(),
        moisture=zeros.copy(),
        is_spring=np.zeros((height, width), dtype=bool),
        is_pool=np.zeros((height, width), dtype=bool),
    )


class TestDependencies:
    """Tests for layer dependency checks."""

    @pytest.mark.parametrize("layer_cls", ALL_LAYERS[1:])
    def test_missing_dependency(self, empty_context, layer_cls):
        """Every layer after geology refuses to run on an empty context."""
        with pytest.raises(DomainRuleError) as exc:
            layer_cls().check_dependencies(empty_context)

        assert exc.value.code == "INVALID_LAYER_DEPENDENCY"

    def test_generate_without_dependency(self, empty_context):
        """Layers also refuse to read outputs that were never committed."""
        with pytest.raises(DomainRuleError) as exc:
            TopographyLayer().generate(empty_context)

        assert exc.value.code == "INVALID_LAYER_DEPENDENCY"
        assert exc.value.context.metadata["missing"] == "geology"

    def test_geology_has_no_dependencies(self, empty_context):
        """Geology is the first stage and needs nothing."""
        GeologyLayer().check_dependencies(empty_context)


class TestGeologyLayer:
    """Tests for bedrock, soil and ground terrain generation."""

    def test_generate_does_not_touch_map(self, empty_context):
        """Generating without recording leaves the map and outputs untouched."""
        GeologyLayer().generate(empty_context)

        assert all(tile.geology.soil_depth == 0.0 for tile in empty_context.map.iter_tiles())
        assert empty_context.outputs == {}

    def test_bedrock_from_biome(self, small_request):
        """Bedrock comes from the biome's formations and soil is never negative."""
        ctx = run_layers(small_request, 1)
        formations = set(ctx.profile.formations)

        assert all(tile.geology.bedrock in formations for tile in ctx.map.iter_tiles())
        assert all(tile.geology.soil_depth >= 0 for tile in ctx.map.iter_tiles())

    def test_outcrops_are_rock(self, small_request):
        """Outcrop tiles are committed as rock terrain."""
        ctx = run_layers(small_request, 1)

        for tile in ctx.map.iter_tiles():
            if tile.geology.feature == "outcrop":
                assert tile.terrain == TerrainType.ROCK

    def test_deterministic(self, small_request):
        """Two runs on the same request produce identical grids."""
        a = GeologyLayer().generate(GenerationContext.create_empty(small_request))
        b = GeologyLayer().generate(GenerationContext.create_empty(small_request))

        np.testing.assert_array_equal(a.soil_depth, b.soil_depth)
        assert a.features == b.features
        assert a.transitions == b.transitions

    def test_default_ground_is_biome_ground(self):
        """Without a distribution every tile starts as the biome's ground terrain."""
        ctx = run_layers(MapGenerationRequest(width=16, height=12, seed="dunes", biome=Biome.DESERT), 1)

        for tile in ctx.map.iter_tiles():
            if tile.geology.feature != "outcrop":
                assert tile.terrain == TerrainType.SAND

    def test_requested_terrain_is_used(self, small_request):
        """A rock-only distribution turns the whole map to rock."""
        request = small_request.model_copy(update={"terrain_distribution": {TerrainType.ROCK: 1.0}})

        ctx = run_layers(request, 1)

        assert {tile.terrain for tile in ctx.map.iter_tiles()} == {TerrainType.ROCK}

    def test_mixed_distribution_uses_each_terrain(self):
        """Both halves of an even grass and sand split appear on a large map."""
        request = MapGenerationRequest(
            width=40,
            height=40,
            seed="mixed",
            terrain_distribution={TerrainType.GRASS: 1.0, TerrainType.SAND: 1.0},
        )

        ctx = run_layers(request, 1)
        terrain = {tile.terrain for tile in ctx.map.iter_tiles() if tile.geology.feature != "outcrop"}

        assert terrain == {TerrainType.GRASS, TerrainType.SAND}

    def test_ground_is_deterministic(self):
        """The same request lays out the same ground."""
        request = MapGenerationRequest(width=20, height=20, terrain_distribution={"dirt": 1.0, "grass": 2.0})

        a = GeologyLayer().generate(GenerationContext.create_empty(request))
        b = GeologyLayer().generate(GenerationContext.create_empty(request))

        assert a.ground == b.ground


class TestSelectTerrain:
    """Tests for picking a terrain from a cumulative distribution."""

    def test_cumulative_walk(self):
        """Rolls fall into the band of the terrain whose cumulative weight they reach."""
        distribution = {TerrainType.GRASS: 0.75, TerrainType.DIRT: 0.25}

        assert select_terrain(distribution, 0.0) == TerrainType.GRASS
        assert select_terrain(distribution, 0.75) == TerrainType.GRASS
        assert select_terrain(distribution, 0.8) == TerrainType.DIRT

    def test_declaration_order_not_insertion_order(self):
        """Bands are laid out in terrain declaration order."""
        distribution = {TerrainType.DIRT: 0.5, TerrainType.GRASS: 0.5}

        assert select_terrain(distribution, 0.2) == TerrainType.GRASS

    def test_roll_past_rounded_total(self):
        """A roll beyond a total that rounded below 1 picks the last terrain."""
        distribution = {TerrainType.GRASS: 1 / 3, TerrainType.SAND: 1 / 3, TerrainType.ROCK: 0.3333}

        assert select_terrain(distribution, 1.0) == TerrainType.ROCK

    def test_empty(self):
        """An empty distribution selects nothing."""
        assert select_terrain({}, 0.5) is None



class TestTopographyLayer:
    """Tests for elevation, slope and aspect."""

    def test_ranges(self, small_request):
        """Elevation is non-negative, slope is in [0, 90] and aspect in [0, 360)."""
        ctx = run_layers(small_request, 2)
        topo = ctx.outputs["topography"]

        assert topo.min_elevation >= 0.0
        assert np.all((topo.slope >= 0) & (topo.slope <= 90))
        assert np.all((topo.aspect >= 0) & (topo.aspect < 360))

    def test_relief_features_committed(self, small_request):
        """Relief features are registered on the map with relief kinds."""
        ctx = run_layers(small_request, 2)
        topo = ctx.outputs["topography"]

        for feature in topo.features:
            assert feature.id in ctx.map.features
            assert feature.kind in (FeatureKind.HILL, FeatureKind.RIDGE, FeatureKind.VALLEY, FeatureKind.CLIFF)

    def test_elevation_advantage_relative_to_lowest(self, small_request):
        """The lowest tile has no elevation advantage."""
        ctx = run_layers(small_request, 2)
        advantages = [tile.tactical.elevation_advantage for tile in ctx.map.iter_tiles()]

        assert min(advantages) == 0.0

    def test_ruggedness_increases_relief(self):
        """Higher ruggedness yields higher peaks."""
        calm = run_layers(MapGenerationRequest(width=20, height=20, topography={"ruggedness": 0.5}), 2)
        rough = run_layers(MapGenerationRequest(width=20, height=20, topography={"ruggedness": 2.0}), 2)

        assert rough.outputs["topography"].max_elevation > calm.outputs["topography"].max_elevation


class TestFlowRouting:
    """Tests for D8 flow direction and accumulation."""

    def test_ramp_flows_west(self):
        """Every tile on a west-facing ramp drains west; the low edge has no outflow."""
        elevation = np.tile(np.arange(4, dtype=np.float64), (3, 1))
        directions = flow_directions(elevation, list(range(8)))

        assert np.all(directions[:, 1:] == 6)
        assert np.all(directions[:, 0] == NO_FLOW)

    def test_accumulation_counts_upstream_tiles(self):
        """Accumulation counts the tile itself plus everything upstream."""
        elevation = np.tile(np.arange(4, dtype=np.float64), (3, 1))
        directions = flow_directions(elevation, list(range(8)))
        accumulation = flow_accumulation(descending_order(elevation), directions)

        assert accumulation[:, 0].tolist() == [4.0, 4.0, 4.0]
        assert accumulation[:, 3].tolist() == [1.0, 1.0, 1.0]

    def test_non_finite_elevation_fails(self):
        """NaN elevation raises WATER_FLOW_CALCULATION_FAILED."""
        elevation = np.zeros((3, 3))
        elevation[1, 1] = np.nan

        with pytest.raises(InfrastructureError) as exc:
            flow_directions(elevation, list(range(8)))

        assert exc.value.code == "WATER_FLOW_CALCULATION_FAILED"

    def test_descending_order_ties_by_row_then_column(self):
        """Equal elevations are visited in row-major order."""
        elevation = np.array([[1.0, 1.0], [2.0, 0.0]])

        assert descending_order(elevation) == [(0, 1), (0, 0), (1, 0), (1, 1)]

    def test_neighbor_priority_is_rotation(self, seed):
        """The seeded neighbour order is a rotation of the eight directions."""
        priority = neighbor_priority(seed)

        assert sorted(priority) == list(range(8))
        assert all((b - a) % 8 == 1 for a, b in zip(priority, priority[1:]))

    def test_strahler_order_rises_at_equal_confluence(self):
        """Two first-order streams meeting make a second-order stream."""
        directions = np.full((3, 3), NO_FLOW, dtype=np.int8)
        directions[0, 0] = 3  # SE
        directions[0, 2] = 5  # SW
        directions[1, 1] = 4  # S
        is_stream = np.zeros((3, 3), dtype=bool)
        for x, y in [(0, 0), (2, 0), (1, 1), (1, 2)]:
            is_stream[y, x] = True

        order = strahler_order([(0, 0), (2, 0), (1, 1), (1, 2)], directions, is_stream)

        assert order[0, 0] == 1 and order[0, 2] == 1
        assert order[1, 1] == 2
        assert order[2, 1] == 2


class TestHydrologyLayer:
    """Tests for water features."""

    def test_water_exists_at_default_abundance(self, small_request):
        """At default abundance or above the map always has a river or lake."""
        ctx = run_layers(small_request, 3)
        hydro = ctx.outputs["hydrology"]

        assert hydro.rivers or hydro.lakes

    def test_grids_are_consistent(self, small_request):
        """Depth, moisture, accumulation and stream order stay in range."""
        ctx = run_layers(small_request, 3)
        hydro = ctx.outputs["hydrology"]

        assert np.all(hydro.water_depth >= 0)
        assert np.all((hydro.moisture >= 0) & (hydro.moisture <= 1))
        assert np.all(hydro.flow_accumulation >= 1)
        assert np.all(hydro.stream_order[~hydro.is_stream] == 0)

    def test_deep_water_is_impassable(self, small_request):
        """Deep water tiles cannot be walked."""
        ctx = run_layers(small_request, 3)

        for tile in ctx.map.iter_tiles():
            if tile.terrain == TerrainType.DEEP_WATER:
                assert not tile.passable

    def test_river_paths_stay_in_area(self, small_request):
        """River path points lie inside the river's bounds."""
        ctx = run_layers(small_request, 3)

        for river in ctx.outputs["hydrology"].rivers:
            assert all(river.area.contains(p.position) for p in river.path)

    def test_lake_around_raised_centre_has_island(self):
        """A basin with a dry knoll in the middle fills around it and records an island."""
        request = MapGenerationRequest(width=40, height=40, seed="atoll")
        ctx = GenerationContext.create_empty(request)
        geology = GeologyLayer().generate(ctx)
        elevation = np.full((40, 40), 100.0)
        elevation[18:23, 18:23] = 10.0
        elevation[20, 20] = 50.0
        flat = np.zeros((40, 40))
        topo = TopographyOutput(elevation=elevation, slope=flat.copy(), aspect=flat.copy())
        hydro = empty_hydrology(40, 40)

        lake = HydrologyLayer()._place_lake(ctx, geology, topo, hydro, (18, 18), ordinal=0)

        assert len(lake.claimed_cells()) == 24
        assert hydro.water_depth[20, 20] == 0.0
        assert len(lake.islands) == 1
        assert (int(lake.islands[0].x), int(lake.islands[0].y)) == (20, 20)

    def test_lake_without_knoll_has_no_island(self):
        """A flat-bottomed basin fills completely."""
        request = MapGenerationRequest(width=40, height=40, seed="pond")
        ctx = GenerationContext.create_empty(request)
        geology = GeologyLayer().generate(ctx)
        elevation = np.full((40, 40), 100.0)
        elevation[18:23, 18:23] = 10.0
        flat = np.zeros((40, 40))
        topo = TopographyOutput(elevation=elevation, slope=flat.copy(), aspect=flat.copy())

        lake = HydrologyLayer()._place_lake(ctx, geology, topo, empty_hydrology(40, 40), (18, 18), ordinal=0)

        assert len(lake.claimed_cells()) == 25
        assert lake.islands == []



class TestVegetationLayer:
    """Tests for forests and grasslands."""

    def test_trees_inside_their_forest(self):
        """Every tree stands on one of its forest's tiles."""
        ctx = run_layers(MapGenerationRequest(width=30, height=30, seed="forest"), 4)

        for forest in ctx.outputs["vegetation"].forests:
            cells = set(forest.claimed_cells())
            assert all((t.position.tile_x, t.position.tile_y) in cells for t in forest.trees)

    def test_canopy_and_light(self, small_request):
        """Canopy is a fraction and light is its complement."""
        ctx = run_layers(small_request, 4)
        vegetation = ctx.outputs["vegetation"]

        assert np.all((vegetation.canopy >= 0) & (vegetation.canopy <= 1))
        np.testing.assert_allclose(vegetation.canopy + vegetation.light, 1.0)

    def test_no_forests_when_disabled(self):
        """Disabling forests leaves no forest features."""
        request = MapGenerationRequest(width=20, height=20, vegetation=VegetationConfig(generate_forests=False))
        ctx = run_layers(request, 4)

        assert ctx.outputs["vegetation"].forests == []
        assert not ctx.map.features_of(FeatureKind.FOREST)

    def test_no_vegetation_on_open_water(self, small_request):
        """Forests never claim water tiles."""
        ctx = run_layers(small_request, 4)
        hydro = ctx.outputs["hydrology"]

        for forest in ctx.outputs["vegetation"].forests:
            assert all(not hydro.has_water(x, y) for x, y in forest.claimed_cells())


class TestStructureLayer:
    """Tests for buildings, roads and bridges."""

    @pytest.fixture(scope="class")
    def village(self):
        request = MapGenerationRequest(
            width=40, height=30, seed="village", biome=Biome.TEMPERATE_GRASSLAND, structures={"building_density": 1.5}
        )
        return run_layers(request, 5)

    def test_buildings_do_not_overlap(self, village):
        """Placed buildings never share ground."""
        buildings = village.outputs["structures"].buildings

        for i, a in enumerate(buildings):
            for b in buildings[i + 1 :]:
                assert not a.footprint.overlaps(b.footprint)

    def test_buildings_on_dry_ground(self, village):
        """No building stands in water."""
        hydro = village.outputs["hydrology"]

        for building in village.outputs["structures"].buildings:
            assert all(not hydro.has_water(x, y) for x, y in building.claimed_cells())

    def test_buildings_have_ground_floor_and_entrance(self, village):
        """Each building has a ground floor and one entrance."""
        for building in village.outputs["structures"].buildings:
            assert building.floor(0) is not None
            assert len(building.entrances) == 1

    def test_building_tiles_committed(self, village):
        """Building tiles are impassable and point at their building."""
        for building in village.outputs["structures"].buildings:
            for x, y in building.claimed_cells():
                tile = village.map.tiles[y][x]
                assert tile.terrain == TerrainType.BUILDING
                assert not tile.passable
                assert tile.structure.building_id == building.id

    def test_roads_avoid_lakes_and_buildings(self, village):
        """Roads never run through lakes or buildings."""
        blocked = {cell for lake in village.outputs["hydrology"].lakes for cell in lake.claimed_cells()}
        blocked |= {cell for b in village.outputs["structures"].buildings for cell in b.claimed_cells()}

        for road in village.outputs["structures"].roads:
            assert not blocked & set(road.claimed_cells())

    def test_bridges_reference_their_road(self, village):
        """Each bridge is listed on the road it carries."""
        roads = {road.id: road for road in village.outputs["structures"].roads}

        for bridge in village.outputs["structures"].bridges:
            assert bridge.id in roads[bridge.road_id].bridge_ids

    def test_no_buildings_when_disabled(self):
        """Disabling buildings leaves at most the through road."""
        request = MapGenerationRequest(width=20, height=20, structures=StructureConfig(generate_buildings=False))
        ctx = run_layers(request, 5)
        output = ctx.outputs["structures"]

        assert output.buildings == []
        assert len(output.roads) <= 1


class TestFeaturePlacementLayer:
    """Tests for per-tile feature resolution."""

    def test_every_reference_resolves(self, small_request):
        """Every feature id on a tile names a registered feature."""
        ctx = run_layers(small_request, 6)

        assert ctx.map.referenced_feature_ids <= set(ctx.map.features)

    def test_claimed_tiles_have_a_primary(self, small_request):
        """Each claimed tile resolves a primary feature."""
        ctx = run_layers(small_request, 6)

        for feature in ctx.map.features.values():
            for x, y in feature.claimed_cells():
                assert ctx.map.tiles[y][x].primary_feature_id is not None

    def test_primary_is_not_also_mixed(self, small_request):
        """The primary feature is not repeated among the mixed ones."""
        ctx = run_layers(small_request, 6)

        for tile in ctx.map.iter_tiles():
            assert tile.primary_feature_id not in tile.mixed_feature_ids
