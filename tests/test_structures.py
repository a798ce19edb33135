"""Tests for buildings, floors, rooms, roads and bridges."""

import math
from types import SimpleNamespace

import numpy as np
import pytest

from battlemap.errors import DomainRuleError, ValidationError
from battlemap.features.structures import (
    MATERIALS,
    Bridge,
    BridgeMaterial,
    BridgeStructure,
    Building,
    BuildingFootprint,
    BuildingSize,
    BuildingType,
    Floor,
    Road,
    RoadSurface,
    Room,
    RoomType,
    select_material,
)
from battlemap.features.water import River, RiverPoint
from battlemap.geometry import Position, SpatialBounds
from battlemap.layers.structures import (
    StructureLayer,
    door_position,
    edge_cells,
    front_cell,
    nearest_edges,
    pack_rooms,
    plan_rooms,
    road_costs,
    route,
)
from battlemap.layers.topography import TopographyOutput
from battlemap.seed import SeededRandom


def building(
    size: BuildingSize = BuildingSize.SMALL,
    material: str = "stone_cut",
    footprint: BuildingFootprint | None = None,
    orientation: int = 0,
    building_id: str = "building_1",
) -> Building:
    footprint = footprint or BuildingFootprint.from_rectangle(2, 2, 4, 3)
    return Building(
        id=building_id,
        name="Cottage",
        area=footprint.bounds,
        cells=footprint.cells(),
        footprint=footprint,
        material=MATERIALS[material],
        size=size,
        orientation=orientation,
    )


def flat_topography(width: int = 10, height: int = 10) -> TopographyOutput:
    zeros = np.zeros((height, width), dtype=np.float64)
    return TopographyOutput(elevation=zeros.copy(), slope=zeros.copy(), aspect=zeros.copy())


class TestBuildingFootprint:
    """Tests for footprint construction and overlap."""

    def test_rectangle(self):
        """A 4x3 rectangle covers 12 tiles."""
        footprint = BuildingFootprint.from_rectangle(1, 2, 4, 3)

        assert footprint.area == 12
        assert footprint.extent == (1, 2, 5, 5)
        assert len(footprint.cells()) == 12

    def test_too_small(self):
        """Edges under one tile raise BUILDING_FOOTPRINT_TOO_SMALL."""
        with pytest.raises(ValidationError) as exc:
            BuildingFootprint.from_rectangle(0, 0, 0.5, 2)

        assert exc.value.code == "BUILDING_FOOTPRINT_TOO_SMALL"

    def test_too_large(self):
        """Edges over 40 tiles raise BUILDING_FOOTPRINT_TOO_LARGE."""
        with pytest.raises(ValidationError) as exc:
            BuildingFootprint.from_rectangle(0, 0, 41, 2)

        assert exc.value.code == "BUILDING_FOOTPRINT_TOO_LARGE"

    def test_polygon_needs_three_points(self):
        """Two points do not make a footprint."""
        with pytest.raises(ValidationError) as exc:
            BuildingFootprint.from_polygon([(0, 0), (1, 1)])

        assert exc.value.code == "BUILDING_FOOTPRINT_INVALID_POLYGON"

    def test_touching_footprints_do_not_overlap(self):
        """Footprints sharing an edge touch without overlapping."""
        a = BuildingFootprint.from_rectangle(0, 0, 3, 3)
        b = BuildingFootprint.from_rectangle(3, 0, 3, 3)
        c = BuildingFootprint.from_rectangle(2, 2, 3, 3)

        assert not a.overlaps(b)
        assert a.overlaps(c)
        assert a.shared_wall(b) is not None

    def test_triangle_cells(self):
        """Only tiles whose centres fall inside the triangle are covered."""
        footprint = BuildingFootprint.from_polygon([(0, 0), (4, 0), (0, 4)])

        assert footprint.area == 8
        assert (0, 0) in footprint.cells()
        assert (3, 3) not in footprint.cells()

    def test_l_shaped_area(self):
        """Concave footprints report the enclosed area, not the bounding box."""
        footprint = BuildingFootprint.from_polygon([(0, 0), (4, 0), (4, 1), (1, 1), (1, 3), (0, 3)])

        assert footprint.area == pytest.approx(6.0)

    def test_area_ignores_winding(self):
        """Clockwise and counter-clockwise outlines have the same area."""
        ccw = BuildingFootprint.from_polygon([(0, 0), (3, 0), (3, 2), (0, 2)])
        cw = BuildingFootprint.from_polygon([(0, 0), (0, 2), (3, 2), (3, 0)])

        assert ccw.area == cw.area == pytest.approx(6.0)

    def test_intersects_polygon_is_exact(self):
        """Overlapping bounding boxes are not enough for polygons to intersect."""
        square = BuildingFootprint.from_rectangle(1, 1, 6, 5)
        corner = BuildingFootprint.from_polygon([(6, 0), (10, 0), (10, 4)])
        across = BuildingFootprint.from_polygon([(4, 0), (10, 0), (10, 4)])

        assert square.overlaps(corner)
        assert not square.intersects_polygon(corner)
        assert square.intersects_polygon(across)


class TestFloor:
    """Tests for immutable floors and room connectivity."""

    @pytest.fixture
    def floor(self):
        return (
            Floor(level=0, footprint_area=400)
            .with_room(Room(id="hall", room_type=RoomType.HALL, x=0, y=0, width=10, length=20))
            .with_room(Room(id="kitchen", room_type=RoomType.KITCHEN, x=10, y=0, width=6, length=20))
        )

    def test_room_exceeds_floor_area(self, floor):
        """A room larger than the remaining area raises ROOM_EXCEEDS_FLOOR_AREA."""
        with pytest.raises(DomainRuleError) as exc:
            floor.with_room(Room(id="barracks", room_type=RoomType.BARRACKS, x=16, y=0, width=10, length=25))

        assert exc.value.code == "ROOM_EXCEEDS_FLOOR_AREA"

    def test_with_room_returns_new_floor(self, floor):
        """Adding a room leaves the original floor unchanged."""
        bigger = floor.with_room(Room(id="closet", room_type=RoomType.CLOSET, x=16, y=0, width=5, length=5))

        assert len(floor.rooms) == 2
        assert len(bigger.rooms) == 3

    def test_connection_is_bidirectional(self, floor):
        """Connecting two rooms records the link on both."""
        connected = floor.with_connection("hall", "kitchen")

        assert connected.room("hall").connected_to == ("kitchen",)
        assert connected.room("kitchen").connected_to == ("hall",)

    def test_connection_is_idempotent(self, floor):
        """Connecting the same pair again in either order changes nothing."""
        once = floor.with_connection("hall", "kitchen")
        twice = once.with_connection("kitchen", "hall")

        assert twice == once

    def test_unknown_room_connection(self, floor):
        """Rooms must exist on the floor to be connected."""
        with pytest.raises(ValidationError):
            floor.with_connection("hall", "attic")

    def test_utilization(self, floor):
        """Used area is the sum of room areas."""
        assert floor.used_area == 320
        assert floor.utilization == pytest.approx(0.8)
        assert floor.is_ground and floor.is_accessible


class TestRoomPacking:
    """Tests for the greedy room layout."""

    def test_pack_residential_ground_floor(self):
        """Rooms are laid out largest first and chained by doors."""
        plan = plan_rooms(BuildingType.RESIDENTIAL, 0)
        floor = pack_rooms(Floor(level=0, footprint_area=600), plan, 30, 20, seed=7)
        types = [r.room_type for r in floor.rooms]

        assert types == [RoomType.HALL, RoomType.KITCHEN, RoomType.BEDROOM, RoomType.PANTRY]
        assert floor.used_area <= floor.footprint_area
        assert floor.room(floor.rooms[0].id).connected_to == (floor.rooms[1].id,)
        assert len(floor.rooms[1].connected_to) == 2

    def test_rooms_that_do_not_fit_are_skipped(self):
        """A small floor drops the rooms it cannot hold."""
        plan = plan_rooms(BuildingType.RESIDENTIAL, 0)
        floor = pack_rooms(Floor(level=0, footprint_area=100), plan, 10, 10, seed=7)

        assert RoomType.HALL not in [r.room_type for r in floor.rooms]
        assert floor.used_area <= 100

    def test_ruins_have_no_rooms(self):
        """Ruins keep only their basement plan."""
        assert plan_rooms(BuildingType.RUINS, 0) == ()
        assert plan_rooms(BuildingType.RUINS, -1) != ()


class TestBuilding:
    """Tests for floors, entrances and load limits."""

    def test_add_floors(self):
        """Floors are kept sorted by level and basements are not stories."""
        b = building()
        b.add_floor(Floor(level=1, footprint_area=300))
        b.add_floor(Floor(level=0, footprint_area=300))
        b.add_floor(Floor(level=-1, footprint_area=300))

        assert [f.level for f in b.floors] == [-1, 0, 1]
        assert b.stories == 2
        assert b.total_floor_area == 900

    def test_duplicate_level_rejected(self):
        """Each level holds at most one floor."""
        b = building()
        b.add_floor(Floor(level=0, footprint_area=300))

        with pytest.raises(ValidationError):
            b.add_floor(Floor(level=0, footprint_area=300))

    def test_size_limits_stories(self):
        """Tiny buildings stop at one storey."""
        b = building(size=BuildingSize.TINY)
        b.add_floor(Floor(level=0, footprint_area=300))

        with pytest.raises(DomainRuleError):
            b.add_floor(Floor(level=1, footprint_area=300))

    def test_weak_material_limits_stories(self):
        """Mud brick cannot carry a second storey."""
        b = building(material="mud_brick")
        b.add_floor(Floor(level=0, footprint_area=300))

        with pytest.raises(DomainRuleError):
            b.add_floor(Floor(level=1, footprint_area=300))

    def test_entrance_on_perimeter(self):
        """Entrances off the outline are rejected."""
        b = building()
        b.add_entrance(Position(4, 2))

        assert b.entrances == [Position(4, 2)]
        with pytest.raises(ValidationError):
            b.add_entrance(Position(4, 3))

    def test_defensive_value_in_range(self):
        """Defensive value is a fraction in (0, 1]."""
        b = building()

        assert 0.0 < b.defensive_value <= 1.0


class TestDoors:
    """Tests for door placement on the front wall."""

    @pytest.mark.parametrize(
        "orientation,door,front",
        [
            (0, Position(4, 2), (4, 1)),
            (90, Position(6, 3.5), (6, 3)),
            (180, Position(4, 5), (4, 5)),
            (270, Position(2, 3.5), (1, 3)),
        ],
    )
    def test_door_and_front_cell(self, orientation, door, front):
        """The door sits mid-wall and the front cell is the tile beyond it."""
        footprint = BuildingFootprint.from_rectangle(2, 2, 4, 3)

        assert door_position(footprint, orientation) == door
        assert front_cell(door, orientation) == front

    def test_furnished_entrance_is_on_perimeter(self):
        """The computed door is accepted as an entrance."""
        b = building(orientation=90)
        b.add_entrance(door_position(b.footprint, b.orientation))

        assert b.entrances == [Position(6, 3.5)]


class TestSiteValidation:
    """Tests for rejecting candidate building sites."""

    def test_open_site_accepted(self):
        """A flat site with room in front of the door passes."""
        suitable = np.ones((10, 10), dtype=bool)

        StructureLayer._validate_site(building(), suitable, flat_topography(), [])

    def test_entrance_facing_map_edge(self):
        """A door opening off the map is a placement conflict."""
        candidate = building(footprint=BuildingFootprint.from_rectangle(2, 0, 4, 3), orientation=0)
        suitable = np.ones((10, 10), dtype=bool)

        with pytest.raises(DomainRuleError) as exc:
            StructureLayer._validate_site(candidate, suitable, flat_topography(), [])

        assert exc.value.code == "STRUCTURE_PLACEMENT_CONFLICT"
        assert exc.value.context.metadata["y"] == -1
        assert exc.value.can_retry

    def test_entrance_facing_cliff(self):
        """A door opening onto a cliff is a placement conflict."""
        topo = flat_topography()
        topo.slope[1, 4] = 60.0
        suitable = np.ones((10, 10), dtype=bool)

        with pytest.raises(DomainRuleError) as exc:
            StructureLayer._validate_site(building(), suitable, topo, [])

        assert exc.value.code == "STRUCTURE_PLACEMENT_CONFLICT"
        assert exc.value.context.metadata["reason"] == "entrance faces a cliff"

    def test_collision_uses_exact_outline(self):
        """A neighbour only inside the lane's bounding box does not collide."""
        corner = building(
            footprint=BuildingFootprint.from_polygon([(6, 0), (10, 0), (10, 4)]), building_id="building_2"
        )
        suitable = np.ones((10, 10), dtype=bool)

        StructureLayer._validate_site(building(), suitable, flat_topography(), [corner])

    def test_collision_with_placed_building(self):
        """A neighbour inside the one-tile lane raises STRUCTURE_COLLISION."""
        neighbour = building(footprint=BuildingFootprint.from_rectangle(6, 2, 2, 2), building_id="building_2")
        suitable = np.ones((10, 10), dtype=bool)

        with pytest.raises(DomainRuleError) as exc:
            StructureLayer._validate_site(building(), suitable, flat_topography(), [neighbour])

        assert exc.value.code == "STRUCTURE_COLLISION"


class TestMaterialsAndBridges:
    """Tests for material selection, bridge design and road speed."""

    def test_select_material_is_deterministic(self):
        """The same seed picks the same material."""
        a = select_material(0.5, "forest", SeededRandom(11))
        b = select_material(0.5, "forest", SeededRandom(11))

        assert a == b
        assert a.suits("forest")

    def test_select_material_matches_wealth(self):
        """Poor desert settlements build in mud brick."""
        assert select_material(0.1, "desert", SeededRandom(1)).name == "mud_brick"

    def test_unknown_setting_falls_back_to_all_materials(self):
        """An unknown setting draws from every material."""
        assert select_material(1.0, "moon", SeededRandom(1)).name == "stone_fortified"

    @pytest.mark.parametrize(
        "span,wealth,expected",
        [
            (70, 0.5, (BridgeMaterial.ROPE, BridgeStructure.SUSPENSION)),
            (30, 0.1, (BridgeMaterial.STONE, BridgeStructure.ARCH)),
            (10, 0.8, (BridgeMaterial.STONE, BridgeStructure.ARCH)),
            (10, 0.2, (BridgeMaterial.WOOD, BridgeStructure.BEAM)),
        ],
    )
    def test_design_for_span(self, span, wealth, expected):
        """Span length and wealth pick the bridge design."""
        material, structure, _ = Bridge.design_for_span(span, wealth)

        assert (material, structure) == expected

    def test_road_movement_factor(self):
        """Surface and quality set the road's movement factor."""
        road = Road(id="road_1", name="Lane", area=building().area, surface=RoadSurface.DIRT, quality=0.5)

        assert road.movement_factor == pytest.approx(0.95)


class TestRoadCosts:
    """Tests for the road routing cost grid."""

    @pytest.fixture
    def hydro(self):
        is_stream = np.zeros((6, 8), dtype=bool)
        is_stream[1, :] = True
        river = River(id="river_1", name="Brook", area=SpatialBounds(0, 1, 8, 1), average_width=10.0)
        river.add_path_point(RiverPoint(position=Position(0.5, 1.5), width=10, depth=2, flow_direction=90.0))
        river.add_path_point(RiverPoint(position=Position(2.5, 1.5), width=10, depth=5, flow_direction=90.0))
        return SimpleNamespace(is_stream=is_stream, water_depth=np.zeros((6, 8)), rivers=[river])

    def test_fords_are_cheaper_than_deep_crossings(self, hydro):
        """Stream tiles at a river's crossing points cost half the crossing surcharge."""
        cost = road_costs(np.zeros((6, 8)), hydro, [])

        assert cost[0, 0] == 1.0
        assert cost[1, 0] == 4.0
        assert cost[1, 2] == 7.0

    def test_shared_ford_discounted_once(self, hydro):
        """A ford on two rivers' paths gets the discount once."""
        other = River(id="river_2", name="Creek", area=SpatialBounds(0, 0, 2, 3), average_width=5.0)
        other.add_path_point(RiverPoint(position=Position(0.5, 1.5), width=5, depth=1, flow_direction=0.0))
        hydro.rivers.append(other)

        cost = road_costs(np.zeros((6, 8)), hydro, [])

        assert cost[1, 0] == 4.0

    def test_blocked_features_are_walls(self, hydro):
        """Tiles claimed by blocking features cannot be routed through."""
        cost = road_costs(np.zeros((6, 8)), hydro, [building()])

        assert math.isinf(cost[3, 3])
        assert math.isfinite(cost[0, 3])

    def test_cliffs_and_standing_water_are_walls(self, hydro):
        """Cliff slopes and non-stream water are impassable."""
        slope = np.zeros((6, 8))
        slope[5, 7] = 60.0
        hydro.water_depth[4, 0] = 2.0

        cost = road_costs(slope, hydro, [])

        assert math.isinf(cost[5, 7])
        assert math.isinf(cost[4, 0])


class TestRouting:
    """Tests for cheapest-path road routing."""

    def test_routes_around_walls(self):
        """The path detours around infinite-cost tiles in unit steps."""
        cost = np.ones((5, 5))
        cost[0:4, 2] = math.inf

        path = route(cost, (0, 0), {(4, 0)})

        assert path[0] == (0, 0)
        assert path[-1] == (4, 0)
        assert (2, 4) in path
        assert all(abs(ax - bx) + abs(ay - by) == 1 for (ax, ay), (bx, by) in zip(path, path[1:]))

    def test_unreachable_goal(self):
        """A goal behind a full wall yields no path."""
        cost = np.ones((5, 5))
        cost[:, 2] = math.inf

        assert route(cost, (0, 0), {(4, 0)}) is None

    def test_start_on_goal(self):
        """Starting on a goal returns the single tile."""
        assert route(np.ones((3, 3)), (1, 1), {(1, 1)}) == [(1, 1)]

    def test_edges(self):
        """Edges are ranked by distance and enumerate their tiles."""
        assert nearest_edges(1, 5, 10, 10)[0] == "west"
        assert edge_cells("south", 3, 4) == {(0, 3), (1, 3), (2, 3)}
