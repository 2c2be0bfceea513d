"""
Level coordinator: drives the tree walker once per dependency level.

Level k+1 dependencies are discovered while level k is being walked, so each
level must settle completely before the next one starts.
"""

import asyncio
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .dependency import Dependency, DependencyDiagram
from .diagrams import build_diagrams
from .error_handling import ConfigurationError
from .registry import DependencyRegistry, build_dependencies
from .structured_logging import (
    clear_context,
    get_search_logger,
    log_level_complete,
    log_search_complete,
    log_search_start,
)
from .walker import ErrorPolicy, FileFilter, TreeWalker, WalkError, WalkStats


@dataclass
class SearchOptions:
    """Inputs of one search run."""

    seeds: Sequence[str]
    root: str
    depth: int = 1
    include: Sequence[str] = ()
    exclude: Sequence[str] = ()
    max_workers: Optional[int] = None
    error_policy: ErrorPolicy = ErrorPolicy.ABORT

    def validate(self) -> None:
        """
        Check the options before any work is done.

        Raises:
            ConfigurationError: describing the first problem found
        """
        if not self.root:
            raise ConfigurationError("A search directory is required")
        if not os.path.isdir(self.root):
            raise ConfigurationError(f"Search directory does not exist: {self.root}")
        if not self.seeds:
            raise ConfigurationError("At least one seed dependency is required")
        if self.depth < 1:
            raise ConfigurationError("Depth must be at least 1")
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if self.include and self.exclude:
            raise ConfigurationError(
                "--include and --exclude cannot be used together"
            )


@dataclass
class SearchResult:
    """Everything a search run produced."""

    diagrams: List[DependencyDiagram]
    dependencies: List[Dependency]
    levels: List[WalkStats] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def errors(self) -> List[WalkError]:
        return [error for level in self.levels for error in level.errors]

    @property
    def files_searched(self) -> int:
        return sum(level.files_searched for level in self.levels)

    @property
    def levels_completed(self) -> int:
        return len(self.levels)

    @property
    def is_complete(self) -> bool:
        """False when paths were skipped and the results may be partial."""
        return not self.errors


LevelCallback = Callable[[WalkStats], None]


class DependencySearch:
    """
    Runs a multi-level search over a directory of repositories.

    Follows the RORO pattern: receives SearchOptions, returns a SearchResult.
    """

    def __init__(self, options: SearchOptions, on_level: Optional[LevelCallback] = None):
        options.validate()
        self.options = options
        self.on_level = on_level
        self.registry: DependencyRegistry = build_dependencies(options.seeds)
        self.walker = TreeWalker(
            self.registry,
            file_filter=FileFilter(include=options.include, exclude=options.exclude),
            max_workers=options.max_workers,
            error_policy=options.error_policy,
        )
        self.search_id = f"search_{uuid.uuid4().hex[:12]}"

    async def run(self) -> SearchResult:
        """Walk every level in turn, then build the diagrams."""
        logger = get_search_logger()
        start_time = time.monotonic()
        root = os.path.abspath(self.options.root)
        log_search_start(self.search_id, root, len(self.registry), self.options.depth)

        levels: List[WalkStats] = []
        try:
            for level in range(self.options.depth):
                if not self.registry.at_level(level):
                    logger.info("search_exhausted", search_level=level)
                    break

                logger.debug("level_started", search_level=level)
                stats = await self.walker.walk(root, level)
                levels.append(stats)
                log_level_complete(
                    level,
                    len(self.registry),
                    len(stats.new_dependencies),
                    stats.files_searched,
                    stats.duration_ms,
                )
                if self.on_level is not None:
                    self.on_level(stats)
        except BaseException:
            clear_context()
            raise

        diagrams = build_diagrams(self.registry)
        duration_ms = int((time.monotonic() - start_time) * 1000)
        result = SearchResult(
            diagrams=diagrams,
            dependencies=self.registry.snapshot(),
            levels=levels,
            duration_ms=duration_ms,
        )
        log_search_complete(self.search_id, duration_ms, len(diagrams), len(result.errors))
        return result


def run_search(options: SearchOptions, on_level: Optional[LevelCallback] = None) -> SearchResult:
    """Synchronous entry point: run a DependencySearch to completion."""
    search = DependencySearch(options, on_level=on_level)
    return asyncio.run(search.run())
