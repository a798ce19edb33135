"""Noise fields for layer generation using OpenSimplex."""

import numpy as np
from numpy.typing import NDArray
from opensimplex import OpenSimplex

from battlemap.seed import Seed


class SeededNoise:
    """Deterministic noise generator with a fixed seed."""

    def __init__(self, seed: Seed | int) -> None:
        self.seed = int(seed)
        self._simplex = OpenSimplex(seed=self.seed)

    def sample_2d(self, x: float, y: float) -> float:
        """Sample 2D noise at the given coordinates. Returns value in [-1, 1]."""
        return self._simplex.noise2(x, y)

    def octave_noise_2d(
        self,
        x: float,
        y: float,
        octaves: int = 4,
        persistence: float = 0.6,
        lacunarity: float = 2.0,
        scale: float = 1.0,
    ) -> float:
        """Fractal Brownian motion: ``octaves`` layers, frequency x lacunarity each.

        Returns:
            Noise value approximately in [-1, 1]
        """
        total = 0.0
        amplitude = 1.0
        frequency = scale
        max_amplitude = 0.0

        for _ in range(octaves):
            total += amplitude * self.sample_2d(x * frequency, y * frequency)
            max_amplitude += amplitude
            amplitude *= persistence
            frequency *= lacunarity

        return total / max_amplitude

    def unit(self, x: float, y: float, scale: float = 1.0) -> float:
        """Single-octave noise mapped to [0, 1]."""
        return (self.sample_2d(x * scale, y * scale) + 1.0) / 2.0


def generate_field(
    seed: Seed | int,
    width: int,
    height: int,
    octaves: int = 4,
    persistence: float = 0.6,
    lacunarity: float = 2.0,
    scale: float = 0.02,
) -> NDArray[np.float64]:
    """Generate a ``height`` x ``width`` fBm field normalized to [0, 1].

    Rows are y, columns are x. Sampling happens on tile centers so the
    same seed yields the same value at a tile regardless of map size.
    """
    noise = SeededNoise(seed)
    field = np.zeros((height, width), dtype=np.float64)

    for y in range(height):
        for x in range(width):
            value = noise.octave_noise_2d(
                x + 0.5,
                y + 0.5,
                octaves=octaves,
                persistence=persistence,
                lacunarity=lacunarity,
                scale=scale,
            )
            field[y, x] = (value + 1.0) / 2.0

    return np.clip(field, 0.0, 1.0)
