"""
Turns a settled registry into the ordered list of diagrams shown to the user.
"""

from typing import Dict, Iterable, List, Tuple, Union

from .dependency import Dependency, DependencyDiagram
from .registry import DependencyRegistry

DiagramKey = Tuple[str, str, int]


def build_diagrams(
    dependencies: Union[DependencyRegistry, Iterable[Dependency]],
) -> List[DependencyDiagram]:
    """
    Build one diagram per (dependency, repo) pair, de-duplicated and sorted.

    Diagrams are keyed on (root dependency name, repo name, level). When two
    diagrams share a key the one built last is kept. The result is ordered by
    that key: grouped by root dependency, then alphabetically by repo, then
    shallower chains first.
    """
    if isinstance(dependencies, DependencyRegistry):
        dependencies = dependencies.snapshot()

    # Visit in name order so the surviving diagram does not depend on the
    # order in which concurrent workers registered dependencies.
    by_key: Dict[DiagramKey, DependencyDiagram] = {}
    for dep in sorted(dependencies, key=lambda d: (d.level, d.name)):
        for repo in dep.repo_names():
            diagram = dep.build_diagram(repo)
            by_key[diagram.sort_key] = diagram

    return [by_key[key] for key in sorted(by_key)]


def group_diagrams(
    diagrams: Iterable[DependencyDiagram],
) -> Dict[str, List[DependencyDiagram]]:
    """Group ordered diagrams by root dependency name, preserving order."""
    groups: Dict[str, List[DependencyDiagram]] = {}
    for diagram in diagrams:
        groups.setdefault(diagram.dependency_name, []).append(diagram)
    return groups
