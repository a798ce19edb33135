"""Pytest configuration and fixtures for map generation tests."""

import pytest

from battlemap.gridmap import GridMap
from battlemap.layers.base import GenerationContext
from battlemap.pipeline import MapGenerationPipeline
from battlemap.request import MapGenerationRequest
from battlemap.seed import Seed


@pytest.fixture
def seed():
    """A fixed seed for unit tests."""
    return Seed(12345)


@pytest.fixture
def small_request():
    """Smallest legal map, fast enough to run the whole pipeline per test."""
    return MapGenerationRequest(name="Test Map", width=16, height=12, seed="unit-test")


@pytest.fixture
def empty_context(small_request):
    """A context with no committed layers."""
    return GenerationContext.create_empty(small_request)


@pytest.fixture(scope="session")
def valley_request():
    """The reference 50x40 temperate forest map."""
    return MapGenerationRequest(
        name="Epic Mountain Valley",
        width=50,
        height=40,
        seed="epic-mountain-valley",
        biome="temperate_forest",
    )


@pytest.fixture(scope="session")
def valley_map(valley_request) -> GridMap:
    """The reference map, generated once per test session."""
    return MapGenerationPipeline().generate(valley_request)
