"""
Concurrent directory walker that searches file contents for dependencies.

A walk covers one search level. Work units (one per directory or file) are
queued and consumed by a fixed pool of asyncio workers, so the number of units
in flight never exceeds ``max_workers`` whatever the shape of the tree.
Blocking filesystem calls run in worker threads through asyncio.to_thread.

Symlinks are followed. A directory whose real path is already on the chain
of directories above it is a link cycle and is handled by the error policy.
"""

import asyncio
import errno
import fnmatch
import os
import stat
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Sequence, Tuple

from .dependency import Dependency, strip_extension
from .error_handling import (
    ConfigurationError,
    FileSystemAccessError,
    log_filesystem_error,
)
from .registry import DependencyRegistry
from .structured_logging import get_walker_logger, log_dependency_discovered

HIDDEN_PREFIX = "."
RESERVED_NAMES = frozenset({"bin", "obj"})


def default_max_workers() -> int:
    """Twice the number of available CPUs."""
    return 2 * (os.cpu_count() or 1)


def is_reserved(name: str) -> bool:
    """Hidden entries and build output directories are never walked."""
    return name.startswith(HIDDEN_PREFIX) or name in RESERVED_NAMES


class ErrorPolicy(Enum):
    """What to do when a path cannot be stat'ed, listed or read."""

    ABORT = "abort"
    SKIP = "skip"


class FileFilter:
    """
    Decides which files are searched, from include or exclude globs.

    Globs are matched against the file's name relative to its containing
    directory. Include and exclude globs are mutually exclusive.
    """

    def __init__(
        self,
        include: Optional[Sequence[str]] = None,
        exclude: Optional[Sequence[str]] = None,
    ):
        include = [glob for glob in (include or []) if glob]
        exclude = [glob for glob in (exclude or []) if glob]
        if include and exclude:
            raise ConfigurationError(
                "Include and exclude globs cannot be used together"
            )
        self.include: Tuple[str, ...] = tuple(include)
        self.exclude: Tuple[str, ...] = tuple(exclude)

    def should_search(self, path: str) -> bool:
        name = os.path.basename(path)
        if self.include:
            return any(fnmatch.fnmatch(name, glob) for glob in self.include)
        if self.exclude:
            return not any(fnmatch.fnmatch(name, glob) for glob in self.exclude)
        return True


@dataclass(frozen=True)
class WalkError:
    """A path that was skipped because it could not be accessed."""

    path: str
    operation: str
    message: str


@dataclass
class WalkStats:
    """Counters and skipped paths for one level's walk."""

    level: int
    directories: int = 0
    files_searched: int = 0
    files_filtered: int = 0
    new_dependencies: List[Dependency] = field(default_factory=list)
    errors: List[WalkError] = field(default_factory=list)
    duration_ms: int = 0


@dataclass(frozen=True)
class _WorkItem:
    path: str
    # None only for the search root; its children become repo boundaries.
    repo: Optional[str]
    # Real paths of the directories this unit was reached through.
    ancestors: FrozenSet[str] = frozenset()


class _WalkState:
    def __init__(self, level: int, dependencies: List[Dependency]):
        self.level = level
        self.dependencies = dependencies
        self.stats = WalkStats(level=level)
        self.failure: Optional[BaseException] = None


class TreeWalker:
    """
    Walks a search root once per level, recording matches in a registry.

    The registry and the walker are owned by a single run; nothing here is
    process-global.
    """

    def __init__(
        self,
        registry: DependencyRegistry,
        file_filter: Optional[FileFilter] = None,
        max_workers: Optional[int] = None,
        error_policy: ErrorPolicy = ErrorPolicy.ABORT,
    ):
        if max_workers is not None and max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        self.registry = registry
        self.file_filter = file_filter or FileFilter()
        self.max_workers = max_workers or default_max_workers()
        self.error_policy = error_policy
        self.logger = get_walker_logger()

    async def walk(self, root: str, level: int) -> WalkStats:
        """
        Search every file under ``root`` for dependencies at ``level``.

        Returns once every unit of work for the level has finished.

        Raises:
            FileSystemAccessError: under ErrorPolicy.ABORT, for the first
                path that could not be accessed
        """
        start_time = time.monotonic()
        dependencies = sorted(self.registry.at_level(level), key=lambda dep: dep.name)
        state = _WalkState(level, dependencies)
        queue: "asyncio.Queue[_WorkItem]" = asyncio.Queue()
        queue.put_nowait(_WorkItem(path=root, repo=None))

        workers = [
            asyncio.create_task(self._worker(queue, state))
            for _ in range(self.max_workers)
        ]
        try:
            await queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        state.stats.duration_ms = int((time.monotonic() - start_time) * 1000)
        if state.failure is not None:
            raise state.failure
        return state.stats

    async def _worker(self, queue: "asyncio.Queue[_WorkItem]", state: _WalkState) -> None:
        while True:
            item = await queue.get()
            try:
                # Once the level has failed, remaining units are drained unprocessed.
                if state.failure is None:
                    await self._process(item, queue, state)
            except FileSystemAccessError as e:
                self._handle_access_error(e, state)
            except Exception as e:
                if state.failure is None:
                    state.failure = e
            finally:
                queue.task_done()

    def _handle_access_error(self, error: FileSystemAccessError, state: _WalkState) -> None:
        if self.error_policy is ErrorPolicy.SKIP:
            log_filesystem_error(error, "walk", fatal=False)
            self.logger.warning(
                "path_skipped", path=error.path, operation=error.operation
            )
            state.stats.errors.append(
                WalkError(path=error.path, operation=error.operation, message=str(error))
            )
        elif state.failure is None:
            log_filesystem_error(error, "walk", fatal=True)
            state.failure = error

    async def _process(
        self, item: _WorkItem, queue: "asyncio.Queue[_WorkItem]", state: _WalkState
    ) -> None:
        is_directory = await asyncio.to_thread(_is_directory, item.path)
        if is_directory:
            real_path, children = await asyncio.to_thread(_open_directory, item.path)
            if real_path in item.ancestors:
                raise FileSystemAccessError(
                    item.path, "follow", OSError(errno.ELOOP, os.strerror(errno.ELOOP))
                )
            state.stats.directories += 1
            ancestors = item.ancestors | {real_path}
            for name in children:
                if is_reserved(name):
                    continue
                repo = item.repo if item.repo is not None else name
                queue.put_nowait(
                    _WorkItem(path=os.path.join(item.path, name), repo=repo, ancestors=ancestors)
                )
        elif not self.file_filter.should_search(item.path):
            state.stats.files_filtered += 1
        else:
            created = await asyncio.to_thread(
                self._search_file, item.path, item.repo or "", state
            )
            state.stats.files_searched += 1
            state.stats.new_dependencies.extend(created)

    def _search_file(self, path: str, repo: str, state: _WalkState) -> List[Dependency]:
        """Match one file against the level's dependencies. Runs in a thread."""
        text = _read_text(path)
        file_dependency = strip_extension(os.path.basename(path))
        created = []
        for dependency in state.dependencies:
            if dependency.name == file_dependency or not dependency.matches(text):
                continue
            dependency.add_repo(repo)
            if not file_dependency or self.registry.contains(file_dependency):
                continue
            child = Dependency(name=file_dependency, parent=dependency, level=state.level + 1)
            if self.registry.add_if_absent(child):
                created.append(child)
                log_dependency_discovered(
                    child.name, dependency.name, child.level, repo
                )
        return created


def _is_directory(path: str) -> bool:
    """Stat ``path``, following symlinks."""
    try:
        info = os.stat(path)
    except OSError as e:
        raise FileSystemAccessError(path, "stat", e) from e
    return stat.S_ISDIR(info.st_mode)


def _open_directory(path: str) -> Tuple[str, List[str]]:
    """Resolve a directory's real path and list its children."""
    return os.path.realpath(path), _list_children(path)


def _list_children(path: str) -> List[str]:
    try:
        with os.scandir(path) as entries:
            return sorted(entry.name for entry in entries)
    except OSError as e:
        raise FileSystemAccessError(path, "list", e) from e


def _read_text(path: str) -> str:
    try:
        with open(path, "rb") as fh:
            return fh.read().decode("utf-8", errors="replace")
    except OSError as e:
        raise FileSystemAccessError(path, "read", e) from e
