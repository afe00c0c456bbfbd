"""
Dependency Scanner
==================
Reads the resolved NuGet dependency set from ``obj/project.assets.json``.

Two explicit steps:
    scan_dependencies(repo)                 -> [(name, version)]
    persist_dependency_graph(repo, graph)   -> path of dependency-graph.json

``build_dependency_graph`` derives the graph from the same assets file.
Nothing is written as a side effect of scanning.
"""
import os
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from secfix.core.constants import DEPENDENCY_GRAPH_FILE
from secfix.models.dependency_graph import DependencyGraph

logger = logging.getLogger(__name__)

ASSETS_FILE = os.path.join("obj", "project.assets.json")

_SKIP_DIRS = {".git", "bin", "node_modules", "packages", ".vs"}


def find_assets_file(repo_path: str) -> Optional[str]:
    """``obj/project.assets.json`` at the repo root, else the first one found below it."""
    candidate = os.path.join(repo_path, ASSETS_FILE)
    if os.path.isfile(candidate):
        return candidate
    for dirpath, dirnames, _ in os.walk(repo_path):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        candidate = os.path.join(dirpath, ASSETS_FILE)
        if os.path.isfile(candidate):
            return candidate
    return None


def _load_assets(repo_path: str) -> Optional[Dict[str, Any]]:
    path = find_assets_file(repo_path)
    if path is None:
        logger.warning("No %s found under %s (run `dotnet restore` first)", ASSETS_FILE, repo_path)
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Could not read %s: %s", path, e)
        return None


def _iter_libraries(assets: Dict[str, Any]):
    """Yield (name, version, entry) for every package library in every target."""
    for libraries in (assets.get("targets") or {}).values():
        for name_version, entry in (libraries or {}).items():
            name, _, version = name_version.partition("/")
            if not name or not version:
                continue
            if (entry or {}).get("type", "package") != "package":
                continue
            yield name, version, entry or {}


def scan_dependencies(repo_path: str) -> List[Tuple[str, str]]:
    """Distinct (name, version) pairs of all resolved packages, sorted by name."""
    assets = _load_assets(repo_path)
    if assets is None:
        return []
    packages = {(name, version) for name, version, _ in _iter_libraries(assets)}
    result = sorted(packages, key=lambda p: (p[0].lower(), p[1]))
    logger.info("Found %d resolved package(s)", len(result))
    return result


def _range_floor(version_range: str) -> str:
    """Lower bound of a NuGet range: ``[1.2.0, )`` → ``1.2.0``; plain versions pass through."""
    text = version_range.strip().lstrip("[(").split(",")[0].rstrip("])").strip()
    return text or "0.0.0"


def build_dependency_graph(repo_path: str) -> DependencyGraph:
    graph = DependencyGraph()
    assets = _load_assets(repo_path)
    if assets is None:
        return graph

    libraries = list(_iter_libraries(assets))
    resolved = {name.lower(): version for name, version, _ in libraries}

    for name, version, _ in libraries:
        graph.add_node(name, version)

    for name, version, entry in libraries:
        deps = entry.get("dependencies") or {}
        for dep_name, dep_range in deps.items():
            dep_version = resolved.get(dep_name.lower()) or _range_floor(str(dep_range))
            graph.add_dependency(name, version, dep_name, dep_version)
            meta = graph.metadata[f"{name}@{version}"]
            declared = f"{dep_name} {dep_range}"
            if declared not in meta.declared_dependencies:
                meta.declared_dependencies.append(declared)
    return graph


def persist_dependency_graph(repo_path: str, graph: DependencyGraph) -> str:
    """Write the graph to ``dependency-graph.json`` at the repo root. Raises OSError on failure."""
    path = os.path.join(repo_path, DEPENDENCY_GRAPH_FILE)
    with open(path, "w", encoding="utf-8") as f:
        f.write(graph.to_json())
        f.write("\n")
    logger.info("Dependency graph written to %s (%d nodes)", path, len(graph.nodes))
    return path
