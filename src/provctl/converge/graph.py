"""Dependency graph helpers for ordering resources within a run."""
from __future__ import annotations

import heapq
from collections.abc import Mapping, Sequence
from pathlib import PurePosixPath

from .models import Resource, ResourceKind, resource_key

# Kinds whose identity or ``path`` attribute is a filesystem path.
_PATH_KINDS = {
    ResourceKind.DIRECTORY,
    ResourceKind.FILE_CONTENT,
    ResourceKind.BINARY_RELEASE,
    ResourceKind.REPO_METADATA,
}
_PATH_ATTRIBUTE_KINDS = {
    ResourceKind.SERVICE_UNIT,
    ResourceKind.REPO_DEFINITION,
}
_OWNED_KINDS = {
    ResourceKind.DIRECTORY,
    ResourceKind.FILE_CONTENT,
    ResourceKind.BINARY_RELEASE,
}


def _resource_path(resource: Resource) -> PurePosixPath | None:
    if resource.kind in _PATH_KINDS:
        return PurePosixPath(resource.identity)
    if resource.kind in _PATH_ATTRIBUTE_KINDS:
        raw = resource.attr("path")
        if isinstance(raw, str) and raw:
            return PurePosixPath(raw)
    return None


def implicit_dependencies(
    resource: Resource,
    directories: Mapping[PurePosixPath, str],
    users: Mapping[str, str],
) -> list[str]:
    """Return dependency keys implied by ownership and filesystem nesting."""
    implied: list[str] = []
    if resource.kind in _OWNED_KINDS:
        for attribute in ("owner", "group"):
            name = resource.attr(attribute)
            if isinstance(name, str) and name in users:
                implied.append(users[name])

    path = _resource_path(resource)
    if path is not None:
        if resource.kind is ResourceKind.REPO_METADATA and path in directories:
            implied.append(directories[path])
        else:
            for parent in path.parents:
                if parent in directories:
                    implied.append(directories[parent])
                    break

    unique: list[str] = []
    for key in implied:
        if key != resource.key and key not in unique:
            unique.append(key)
    return unique


def build_dependency_graph(resources: Sequence[Resource]) -> dict[str, tuple[str, ...]]:
    """Return ``key -> dependency keys`` for explicit plus implicit edges.

    Explicit dependencies naming undeclared resources are kept as-is so that
    validation can report them.
    """
    directories = {
        PurePosixPath(resource.identity): resource.key
        for resource in resources
        if resource.kind is ResourceKind.DIRECTORY
    }
    users = {
        resource.identity: resource_key(ResourceKind.SYSTEM_USER, resource.identity)
        for resource in resources
        if resource.kind is ResourceKind.SYSTEM_USER
    }
    graph: dict[str, tuple[str, ...]] = {}
    for resource in resources:
        deps = list(resource.depends_on)
        for key in implicit_dependencies(resource, directories, users):
            if key not in deps:
                deps.append(key)
        graph[resource.key] = tuple(deps)
    return graph


def find_cycles(graph: Mapping[str, Sequence[str]]) -> list[list[str]]:
    """Return each dependency cycle found in *graph* (as a list of keys)."""
    visiting: set[str] = set()
    done: set[str] = set()
    stack: list[str] = []
    cycles: list[list[str]] = []

    def _visit(node: str) -> None:
        visiting.add(node)
        stack.append(node)
        for dep in graph.get(node, ()):
            if dep not in graph or dep == node:
                continue
            if dep in visiting:
                cycles.append(stack[stack.index(dep) :] + [dep])
            elif dep not in done:
                _visit(dep)
        stack.pop()
        visiting.discard(node)
        done.add(node)

    for node in graph:
        if node not in done:
            _visit(node)
    return cycles


def topological_order(
    resources: Sequence[Resource],
    graph: Mapping[str, Sequence[str]],
) -> list[Resource]:
    """Order *resources* so dependencies come first, ties in declaration order.

    The graph must be acyclic; validation guarantees this before ordering.
    """
    by_key = {resource.key: resource for resource in resources}
    position = {resource.key: index for index, resource in enumerate(resources)}
    pending = {key: {dep for dep in graph.get(key, ()) if dep in by_key} for key in by_key}
    dependents: dict[str, list[str]] = {key: [] for key in by_key}
    for key, deps in pending.items():
        for dep in deps:
            dependents[dep].append(key)

    ready = [(position[key], key) for key, deps in pending.items() if not deps]
    heapq.heapify(ready)
    ordered: list[Resource] = []
    while ready:
        _, key = heapq.heappop(ready)
        ordered.append(by_key[key])
        for dependent in dependents[key]:
            remaining = pending[dependent]
            remaining.discard(key)
            if not remaining:
                heapq.heappush(ready, (position[dependent], dependent))
    return ordered


__all__ = [
    "build_dependency_graph",
    "find_cycles",
    "implicit_dependencies",
    "topological_order",
]
