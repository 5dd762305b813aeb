"""Per-run memoization of derived artifacts.

Computations are keyed by the computed artifact's name and its input
dependencies. Inputs are compared by structural equality, so two equal
devtools logs share one result even when they are different objects.
"""

import asyncio
import logging
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)


class ComputedArtifactCache:
    """Insert-if-absent store of in-flight and finished computations."""

    def __init__(self):
        self._entries: Dict[str, List[Tuple[Any, asyncio.Future]]] = {}

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    async def request(self, computed: "type[ComputedArtifact]", dependencies: Any, context: Any = None) -> Any:
        """Return the cached result for ``dependencies``, computing it once if needed.

        Concurrent requests for equal inputs await the same computation.

        Args:
            computed: ComputedArtifact subclass to evaluate
            dependencies: Input of the computation
            context: Passed through to ``compute``

        Returns:
            The computed value
        """
        name = computed.artifact_name()
        entries = self._entries.setdefault(name, [])

        for key, future in entries:
            if key is dependencies or key == dependencies:
                logger.debug(f"Computed artifact cache hit for {name}")
                return await future

        future = asyncio.ensure_future(computed.compute(dependencies, context))
        entries.append((dependencies, future))
        return await future

    def clear(self) -> None:
        """Drop every entry. Called when the run ends."""
        for entries in self._entries.values():
            for _, future in entries:
                if not future.done():
                    future.cancel()
        self._entries.clear()


class ComputedArtifact:
    """Base class for values derived from collected artifacts."""

    name: str = ""

    @classmethod
    def artifact_name(cls) -> str:
        return cls.name or cls.__name__

    @classmethod
    async def request(cls, dependencies: Any, context: Any) -> Any:
        """Compute through the run's cache.

        Args:
            dependencies: Input of the computation
            context: Object exposing ``computed_cache``
        """
        return await context.computed_cache.request(cls, dependencies, context)

    @classmethod
    async def compute(cls, dependencies: Any, context: Any) -> Any:
        raise NotImplementedError(f"compute() not implemented for computed artifact {cls.artifact_name()}")
