"""Tests for spatial primitives and noise fields."""

import math

import numpy as np
import pytest

from battlemap.errors import ValidationError
from battlemap.geometry import Dimensions, Position, SpatialBounds, SubTilePosition
from battlemap.noise import SeededNoise, generate_field
from battlemap.raster import connected_regions, neighbors4, neighbors8, normalize


class TestPosition:
    """Tests for continuous positions."""

    def test_rejects_non_finite(self):
        """NaN coordinates raise INVALID_GEOMETRY."""
        with pytest.raises(ValidationError) as exc:
            Position(math.nan, 0.0)

        assert exc.value.code == "INVALID_GEOMETRY"

    def test_distance(self):
        """Distance is Euclidean."""
        assert Position(0, 0).distance_to(Position(3, 4)) == 5.0

    def test_tile(self):
        """A position floors to the tile that contains it."""
        assert Position(2.7, 3.1).tile() == (2, 3)


class TestSubTilePosition:
    """Tests for sub-tile positions."""

    def test_offset_must_be_below_one(self):
        """Offsets of 1.0 belong to the next tile and are rejected."""
        with pytest.raises(ValidationError):
            SubTilePosition(0, 0, 1.0, 0.5)

    def test_from_absolute_round_trips_tile(self):
        """Splitting an absolute point keeps its tile and offset."""
        pos = SubTilePosition.from_absolute(4.25, 7.75)

        assert (pos.tile_x, pos.tile_y) == (4, 7)
        assert pos.absolute == Position(4.25, 7.75)

    def test_distance_uses_absolute_positions(self):
        """Distance is measured between absolute points."""
        a = SubTilePosition(0, 0, 0.5, 0.5)
        b = SubTilePosition(1, 0, 0.5, 0.5)

        assert a.distance_to(b) == pytest.approx(1.0)


class TestSpatialBounds:
    """Tests for half-open rectangles."""

    def test_rejects_empty(self):
        """Zero-width bounds are rejected."""
        with pytest.raises(ValidationError):
            SpatialBounds(0, 0, 0, 3)

    def test_right_and_bottom_edges_are_exclusive(self):
        """Bounds contain their left and top edges only."""
        bounds = SpatialBounds(2, 2, 3, 3)

        assert bounds.contains(Position(2, 2))
        assert not bounds.contains(Position(5, 2))
        assert bounds.contains_tile(4, 4)
        assert not bounds.contains_tile(4, 5)

    def test_touching_bounds_do_not_intersect(self):
        """Bounds sharing only an edge do not intersect."""
        a = SpatialBounds(0, 0, 2, 2)
        b = SpatialBounds(2, 0, 2, 2)

        assert not a.intersects(b)
        assert a.intersection(b) is None

    def test_intersection(self):
        """The intersection is the overlapping rectangle."""
        a = SpatialBounds(0, 0, 4, 4)
        b = SpatialBounds(2, 1, 4, 4)

        assert a.intersection(b) == SpatialBounds(2, 1, 2, 3)

    def test_around_is_inclusive(self):
        """Bounds around tiles include the last tile."""
        bounds = SpatialBounds.around([(1, 1), (3, 2)])

        assert bounds == SpatialBounds(1, 1, 3, 2)
        assert set(bounds.tiles()) >= {(1, 1), (3, 2)}

    def test_clamp_to_grid(self):
        """Clamping trims to the grid or drops bounds that fall outside it."""
        assert SpatialBounds(-2, -2, 4, 4).clamp_to(10, 10) == SpatialBounds(0, 0, 2, 2)
        assert SpatialBounds(20, 20, 2, 2).clamp_to(10, 10) is None

    def test_dimensions_must_be_positive(self):
        """A zero dimension is rejected."""
        with pytest.raises(ValidationError):
            Dimensions(0, 5)


class TestSeededNoise:
    """Tests for the SeededNoise class."""

    def test_deterministic_output(self):
        """Same seed + coordinates should produce same value."""
        a = SeededNoise(42)
        b = SeededNoise(42)

        assert a.octave_noise_2d(1.5, 2.5) == b.octave_noise_2d(1.5, 2.5)

    def test_different_seeds_differ(self):
        """Different seeds give different samples."""
        a = SeededNoise(1)
        b = SeededNoise(2)
        samples_a = [a.sample_2d(x * 0.37, x * 0.11) for x in range(20)]
        samples_b = [b.sample_2d(x * 0.37, x * 0.11) for x in range(20)]

        assert samples_a != samples_b

    def test_octave_noise_range(self):
        """Octave noise stays within [-1, 1]."""
        noise = SeededNoise(7)
        values = [noise.octave_noise_2d(x * 0.1, y * 0.1) for x in range(20) for y in range(20)]

        assert all(-1.0 <= v <= 1.0 for v in values)

    def test_field_shape_and_range(self):
        """Fields are rows by columns and normalized to [0, 1]."""
        field = generate_field(42, width=12, height=8)

        assert field.shape == (8, 12)
        assert field.min() >= 0.0
        assert field.max() <= 1.0

    def test_field_independent_of_map_size(self):
        """A tile's value does not depend on how large the field is."""
        small = generate_field(42, width=10, height=10)
        large = generate_field(42, width=30, height=20)

        np.testing.assert_array_equal(small, large[:10, :10])


class TestRaster:
    """Tests for grid helpers."""

    def test_neighbors_clip_at_corner(self):
        """Neighbours outside the grid are dropped."""
        assert sorted(neighbors4(0, 0, 5, 5)) == [(0, 1), (1, 0)]
        assert len(neighbors8(0, 0, 5, 5)) == 3

    def test_connected_regions(self):
        """Regions are 4-connected, ordered and filtered by size."""
        mask = np.array(
            [
                [1, 1, 0, 0],
                [0, 1, 0, 1],
                [0, 0, 0, 1],
            ],
            dtype=bool,
        )
        regions = connected_regions(mask)

        assert regions == [[(0, 0), (1, 0), (1, 1)], [(3, 1), (3, 2)]]
        assert connected_regions(mask, min_size=3) == [[(0, 0), (1, 0), (1, 1)]]

    def test_normalize_flat_field(self):
        """A flat field normalizes to zeros."""
        assert normalize(np.full((3, 3), 5.0)).max() == 0.0
