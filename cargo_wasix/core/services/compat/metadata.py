"""
Dependency graph from ``cargo metadata``.

Runs ``cargo metadata --format-version=1 --filter-platform <triple>``
and walks the resolve graph from the root package.  Edges that are
build-only (build scripts and proc-macro build deps) are skipped; they
run on the host, not inside the WASIX module.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from cargo_wasix.adapters.base import ProcessExecutor
from cargo_wasix.core.errors import UnderlyingToolFailure
from cargo_wasix.core.models.compat import Dependency, DependencyGraph

logger = logging.getLogger(__name__)


def _is_build_only(dep: dict) -> bool:
    kinds = dep.get("dep_kinds")
    if not kinds:
        return False
    return not any(k.get("kind") in (None, "dev") for k in kinds)


def graph_from_metadata(metadata: dict) -> DependencyGraph:
    """Build the reachable dependency set from parsed metadata JSON.

    Raises:
        ValueError: If the document has no resolve graph.
    """
    resolve = metadata.get("resolve")
    if not isinstance(resolve, dict):
        raise ValueError("`cargo metadata` output has no resolve graph")

    packages = {p["id"]: p for p in metadata.get("packages", []) if "id" in p}
    nodes = {n["id"]: n for n in resolve.get("nodes", []) if "id" in n}

    root = resolve.get("root")
    # A virtual workspace has no root package; start from every member.
    to_visit = [root] if root else list(metadata.get("workspace_members", []))
    roots = set(to_visit)
    seen: set[str] = set(to_visit)
    while to_visit:
        node = nodes.get(to_visit.pop())
        if node is None:
            continue
        for dep in node.get("deps", []):
            if _is_build_only(dep):
                continue
            pkg_id = dep.get("pkg")
            if pkg_id and pkg_id not in seen:
                seen.add(pkg_id)
                to_visit.append(pkg_id)

    dependencies = []
    for pkg_id in sorted(seen - roots):
        pkg = packages.get(pkg_id)
        if pkg is None:
            continue
        dependencies.append(
            Dependency(name=pkg["name"], version=pkg["version"], source=pkg.get("source"))
        )

    root_name = packages.get(root, {}).get("name", "") if root else ""
    return DependencyGraph(root=root_name, dependencies=dependencies)


def read_dependency_graph(
    executor: ProcessExecutor,
    triple: str,
    *,
    cwd: Path | None = None,
    extra_args: list[str] | None = None,
) -> DependencyGraph:
    """Run ``cargo metadata`` and return the dependency graph.

    Raises:
        UnderlyingToolFailure: ``cargo metadata`` exited non-zero.
        ValueError: Its output could not be understood.
    """
    command = [
        "cargo",
        "metadata",
        "--format-version=1",
        "--filter-platform",
        triple,
        *(extra_args or []),
    ]
    result = executor.run(command, cwd=cwd, capture=True, capture_stderr=True)
    if result.failed:
        raise UnderlyingToolFailure(command, result.returncode, "", result.stderr)
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ValueError(f"failed to deserialize `cargo metadata`: {e}") from e
    graph = graph_from_metadata(data)
    logger.debug("Dependency graph of %s: %d packages", graph.root or "<workspace>", len(graph))
    return graph
