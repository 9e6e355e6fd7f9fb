"""
StackGraph - declared dependencies between stacks.

The graph is built once from the stack declarations and validated up
front: duplicate names, references to undeclared stacks and cycles are
configuration errors, raised before any command runs.

Apply order is a depth-first topological sort. Stacks (and each stack's
dependencies) are visited in declaration order, so the same declarations
always produce the same order. Destroy order is its exact reverse.
"""

import dataclasses
from typing import Iterable, Iterator, Optional

from stackorch.errors import ConfigurationError, CycleDetectedError
from stackorch.schemas import DependencyEdge, Stack, StackDeclaration


class StackGraph:
    """
    Dependency graph over declared stacks.

    Usage:
        graph = StackGraph.build(declarations)
        for name in graph.apply_order():
            ...
    """

    def __init__(self, stacks: dict[str, Stack], order: list[str]):
        self._stacks = stacks
        self._order = order
        self._dependents: dict[str, list[str]] = {name: [] for name in order}
        for name in order:
            for dep in stacks[name].dependencies:
                self._dependents[dep].append(name)

    @classmethod
    def build(cls, declarations: Iterable[StackDeclaration]) -> "StackGraph":
        """
        Build and validate a graph.

        Raises:
            ConfigurationError: On duplicate stack names or unknown dependencies
            CycleDetectedError: If the dependencies contain a cycle
        """
        stacks: dict[str, Stack] = {}
        for decl in declarations:
            if decl.name in stacks:
                raise ConfigurationError(f"Duplicate stack name: {decl.name}")
            stacks[decl.name] = Stack(decl)

        for stack in stacks.values():
            for dep in stack.dependencies:
                if dep not in stacks:
                    raise ConfigurationError(
                        f"Stack '{stack.name}' depends on undeclared stack '{dep}'"
                    )

        return cls(stacks, _topological_order(stacks))

    def apply_order(self) -> list[str]:
        """Stack names such that every dependency precedes its dependents."""
        return list(self._order)

    def destroy_order(self) -> list[str]:
        """Exact reverse of apply_order()."""
        return list(reversed(self._order))

    def dependents_of(self, name: str) -> list[str]:
        """All stacks that transitively depend on name, in apply order."""
        self._require(name)
        found: set[str] = set()
        pending = list(self._dependents[name])
        while pending:
            current = pending.pop()
            if current in found:
                continue
            found.add(current)
            pending.extend(self._dependents[current])
        return [n for n in self._order if n in found]

    def dependencies_of(self, name: str) -> list[str]:
        """All stacks name transitively depends on, in apply order."""
        self._require(name)
        found: set[str] = set()
        pending = list(self._stacks[name].dependencies)
        while pending:
            current = pending.pop()
            if current in found:
                continue
            found.add(current)
            pending.extend(self._stacks[current].dependencies)
        return [n for n in self._order if n in found]

    def direct_dependents(self, name: str) -> list[str]:
        """Stacks that list name as a dependency, in apply order."""
        self._require(name)
        return list(self._dependents[name])

    def subgraph(self, names: Iterable[str]) -> "StackGraph":
        """
        Graph restricted to the given stacks.

        Dependencies on stacks outside the selection are dropped. The new
        graph has fresh Stack objects in the unapplied state.
        """
        selected = set(names)
        for name in selected:
            self._require(name)
        declarations = []
        for name in self._order:
            if name not in selected:
                continue
            decl = self._stacks[name].declaration
            deps = tuple(d for d in decl.dependencies if d in selected)
            declarations.append(dataclasses.replace(decl, dependencies=deps))
        return StackGraph.build(declarations)

    def get(self, name: str) -> Optional[Stack]:
        return self._stacks.get(name)

    def stack(self, name: str) -> Stack:
        self._require(name)
        return self._stacks[name]

    def edges(self) -> list[DependencyEdge]:
        return [
            DependencyEdge(dep, name)
            for name in self._order
            for dep in self._stacks[name].dependencies
        ]

    def _require(self, name: str) -> None:
        if name not in self._stacks:
            raise KeyError(f"Unknown stack: {name}")

    def __contains__(self, name: object) -> bool:
        return name in self._stacks

    def __len__(self) -> int:
        return len(self._stacks)

    def __iter__(self) -> Iterator[Stack]:
        return (self._stacks[name] for name in self._order)

    def __repr__(self) -> str:
        return f"StackGraph(stacks={len(self._stacks)})"


def _topological_order(stacks: dict[str, Stack]) -> list[str]:
    """DFS post-order; cycle detection via recursion-stack membership."""
    order: list[str] = []
    done: set[str] = set()
    path: list[str] = []
    on_path: set[str] = set()

    def visit(name: str) -> None:
        if name in done:
            return
        if name in on_path:
            cycle = path[path.index(name):] + [name]
            raise CycleDetectedError(cycle)

        path.append(name)
        on_path.add(name)
        for dep in stacks[name].dependencies:
            visit(dep)
        path.pop()
        on_path.discard(name)

        done.add(name)
        order.append(name)

    for name in stacks:
        visit(name)
    return order
