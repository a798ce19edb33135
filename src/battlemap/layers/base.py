"""Layer interface and the state shared between pipeline stages.

A layer never writes to the map while it runs. ``generate`` reads the
committed outputs of earlier layers from the context and returns a new
``LayerOutput``; the pipeline calls ``commit`` only once the whole stage
has succeeded, so a failed stage leaves the map untouched.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import ClassVar, TypeVar

from battlemap import errors
from battlemap.biomes import BiomeProfile, profile_for
from battlemap.gridmap import GridMap
from battlemap.request import MapGenerationRequest
from battlemap.seed import Seed

O = TypeVar("O", bound="LayerOutput")


class LayerOutput(ABC):
    """Result of one stage, applied to the map on success."""

    @abstractmethod
    def commit(self, grid: GridMap) -> None:
        raise NotImplementedError

    def summary(self) -> dict[str, int]:
        """Counts reported in the stage's completion log line."""
        return {}


@dataclass
class GenerationContext:
    """Everything a layer may read: the request, seeds and committed outputs.

    Attributes:
        request: The validated generation request.
        seed: The run's root seed.
        profile: Tuning table for the requested biome.
        map: The map being built. Layers read it but only outputs write it.
        outputs: Committed layer outputs keyed by layer name.
    """

    request: MapGenerationRequest
    seed: Seed
    profile: BiomeProfile
    map: GridMap
    outputs: dict[str, LayerOutput] = field(default_factory=dict)

    @classmethod
    def create_empty(cls, request: MapGenerationRequest) -> "GenerationContext":
        seed = request.resolved_seed()
        grid = GridMap.create_empty(
            name=request.name,
            width=request.width,
            height=request.height,
            seed=seed,
            biome=request.biome,
            cell_size=request.cell_size,
            author=request.author,
            description=request.description,
            tags=request.tags,
        )
        return cls(request=request, seed=seed, profile=profile_for(request.biome), map=grid)

    @property
    def width(self) -> int:
        return self.request.width

    @property
    def height(self) -> int:
        return self.request.height

    @property
    def cell_size(self) -> float:
        return self.request.cell_size

    def layer_seed(self, name: str) -> Seed:
        return self.seed.derive(name)

    def require(self, layer: str, requester: str, output_type: type[O]) -> O:
        """Committed output of ``layer``, or INVALID_LAYER_DEPENDENCY."""
        output = self.outputs.get(layer)
        if output is None:
            raise errors.invalid_layer_dependency(requester, layer)
        if not isinstance(output, output_type):
            raise errors.invalid_layer_dependency(requester, layer)
        return output

    def record(self, layer: str, output: LayerOutput) -> None:
        """Commit ``output`` to the map and make it visible to later layers."""
        output.commit(self.map)
        self.outputs[layer] = output


class GenerationLayer(ABC):
    """One stage of the generation pipeline.

    Subclasses set ``name`` (which also selects the layer's derived seed)
    and ``requires``, and implement ``generate``.
    """

    name: ClassVar[str]
    requires: ClassVar[tuple[str, ...]] = ()

    def check_dependencies(self, ctx: GenerationContext) -> None:
        for dependency in self.requires:
            if dependency not in ctx.outputs:
                raise errors.invalid_layer_dependency(self.name, dependency)

    @abstractmethod
    def generate(self, ctx: GenerationContext) -> LayerOutput:
        """Compute this layer's output from the committed context.

        Must not mutate ``ctx.map``.
        """
        raise NotImplementedError
