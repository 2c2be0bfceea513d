"""
Dependency entity searched for during a depgrok run.

A Dependency is a name being searched for in file contents. Seeds supplied by
the operator sit at level 0; a file whose contents reference a level k
dependency becomes a level k+1 dependency named after the file, with the
matched dependency as its parent.
"""

import re
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Set

_EXTENSION_PATTERN = re.compile(r"\.[A-Za-z]+$")


def strip_extension(filename: str) -> str:
    """
    Remove exactly one trailing ``.<letters>`` suffix from a file name.

    >>> strip_extension("file.txt.txt")
    'file.txt'
    >>> strip_extension("file")
    'file'
    """
    return _EXTENSION_PATTERN.sub("", filename, count=1)


def compile_matcher(name: str) -> Pattern[str]:
    """Build a pattern matching ``name`` bounded by non-letters or text edges."""
    return re.compile(r"(?<![A-Za-z])" + re.escape(name) + r"(?![A-Za-z])")


@dataclass(frozen=True)
class DependencyDiagram:
    """A rendered chain from a repo to the root dependency it relates to."""

    text: str
    dependency_name: str
    repo_name: str
    level: int = 0

    @property
    def sort_key(self):
        return (self.dependency_name, self.repo_name, self.level)


@dataclass(eq=False)
class Dependency:
    """
    A name being searched for, related to the repos that reference it.

    ``name``, ``parent`` and ``level`` are fixed once the dependency is placed
    in a registry; only ``repos`` grows, through add_repo().
    """

    name: str
    parent: Optional["Dependency"] = None
    level: int = 0
    repos: Set[str] = field(default_factory=set)
    _repos_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )
    _matcher: Pattern[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Dependency name must not be empty")
        if self.level < 0:
            raise ValueError("Dependency level must not be negative")
        self._matcher = compile_matcher(self.name)

    def add_repo(self, repo: str) -> None:
        """Record that ``repo`` references this dependency."""
        with self._repos_lock:
            self.repos.add(repo)

    def repo_names(self) -> List[str]:
        """Sorted copy of the repos referencing this dependency."""
        with self._repos_lock:
            return sorted(self.repos)

    def matches(self, text: str) -> bool:
        """Whether ``text`` references this dependency's name as a whole word."""
        return self._matcher.search(text) is not None

    def root(self) -> "Dependency":
        """The level-0 ancestor this dependency ultimately traces back to."""
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def chain(self) -> List[str]:
        """Names from this dependency up to its root, inclusive."""
        names = []
        node: Optional[Dependency] = self
        while node is not None:
            names.append(node.name)
            node = node.parent
        return names

    def build_diagram(self, repo: str) -> DependencyDiagram:
        """
        Render ``repo -> name -> parent -> ... -> root`` for this dependency.

        The diagram is grouped under the root's name rather than this
        dependency's own name.
        """
        names = self.chain()
        return DependencyDiagram(
            text=" -> ".join([repo] + names),
            dependency_name=names[-1],
            repo_name=repo,
            level=self.level,
        )
