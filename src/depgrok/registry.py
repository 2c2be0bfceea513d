"""
Thread-safe collection of Dependency entities keyed by name.
"""

import threading
from typing import Dict, Iterable, List, Set, Union

from .dependency import Dependency
from .error_handling import ConfigurationError, DuplicateDependencyError


class DependencyRegistry:
    """
    Holds every Dependency of a run, at most one per name.

    The name->entity map and the membership set are guarded by the same lock
    and are always updated together.
    """

    def __init__(self) -> None:
        self._dependencies: Dict[str, Dependency] = {}
        self._membership: Set[str] = set()
        self._lock = threading.Lock()

    def add(self, dependency: Dependency) -> None:
        """
        Add a dependency to the registry.

        Raises:
            DuplicateDependencyError: if a dependency with the same name exists
        """
        with self._lock:
            if dependency.name in self._membership:
                raise DuplicateDependencyError(dependency.name)
            self._insert(dependency)

    def add_if_absent(self, dependency: Dependency) -> bool:
        """Add ``dependency`` unless its name is taken; return whether it was added."""
        with self._lock:
            if dependency.name in self._membership:
                return False
            self._insert(dependency)
            return True

    def _insert(self, dependency: Dependency) -> None:
        self._membership.add(dependency.name)
        self._dependencies[dependency.name] = dependency

    def contains(self, dependency: Union[Dependency, str]) -> bool:
        """Whether a dependency with the same name is present."""
        name = dependency if isinstance(dependency, str) else dependency.name
        with self._lock:
            return name in self._membership

    def __contains__(self, dependency: Union[Dependency, str]) -> bool:
        return self.contains(dependency)

    def get(self, name: str) -> Dependency:
        with self._lock:
            return self._dependencies[name]

    def snapshot(self) -> List[Dependency]:
        """Point-in-time list of dependencies in insertion order."""
        with self._lock:
            return list(self._dependencies.values())

    slice = snapshot

    def at_level(self, level: int) -> List[Dependency]:
        return [dep for dep in self.snapshot() if dep.level == level]

    def __len__(self) -> int:
        with self._lock:
            return len(self._dependencies)


def build_dependencies(names: Iterable[str]) -> DependencyRegistry:
    """
    Construct a registry of level-0 dependencies from seed names.

    Raises:
        ConfigurationError: if no names are given or a name is repeated
    """
    registry = DependencyRegistry()
    for name in names:
        try:
            registry.add(Dependency(name=name, level=0))
        except DuplicateDependencyError as e:
            raise ConfigurationError(f"Duplicate seed dependency: '{e.name}'") from e
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    if not len(registry):
        raise ConfigurationError("At least one seed dependency is required")
    return registry


def parse_seed_names(deps: str) -> List[str]:
    """Split a whitespace-separated list of seed dependency names."""
    return deps.split()
