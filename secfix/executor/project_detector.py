"""
Project Detector
================
Locates .NET project manifests inside a working copy.

Detection is deterministic: same directory contents always give the same
result. No LLM is used. Pure filesystem matching only.
"""
import os
import logging
import xml.etree.ElementTree as ET
from typing import Optional

logger = logging.getLogger(__name__)


PROJECT_EXTENSIONS = (".csproj", ".fsproj", ".vbproj")

# Directories to skip when scanning for projects
_SKIP_DIRS = {
    ".git", "bin", "obj", "node_modules", "packages", ".vs", ".idea",
    "TestResults", "artifacts",
}


def find_project_files(repo_path: str, max_depth: int = 3) -> list[str]:
    """
    Return absolute paths of project manifests under ``repo_path``.

    Ordered by depth then alphabetically, so a root-level project comes first.
    """
    if not os.path.isdir(repo_path):
        return []

    found: list[tuple[int, str]] = []
    root_depth = os.path.abspath(repo_path).rstrip(os.sep).count(os.sep)

    for dirpath, dirnames, filenames in os.walk(repo_path):
        depth = dirpath.rstrip(os.sep).count(os.sep) - root_depth
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS and not d.startswith("."))
        if depth >= max_depth:
            dirnames[:] = []
        for name in filenames:
            if name.endswith(PROJECT_EXTENSIONS):
                found.append((depth, os.path.join(dirpath, name)))

    found.sort(key=lambda item: (item[0], item[1]))
    return [os.path.abspath(path) for _, path in found]


def find_primary_project(repo_path: str) -> Optional[str]:
    """First project manifest in the repo, or None."""
    projects = find_project_files(repo_path)
    return projects[0] if projects else None


def _local_name(tag: str) -> str:
    # Old-style projects carry the msbuild namespace on every element
    return tag.rsplit("}", 1)[-1]


def read_project_property(project_path: str, name: str) -> Optional[str]:
    """
    Return the first value of MSBuild property ``name`` in the manifest.

    Returns None when the file is unreadable or the property is absent.
    """
    try:
        root = ET.parse(project_path).getroot()
    except (OSError, ET.ParseError) as e:
        logger.debug("Could not parse %s: %s", project_path, e)
        return None

    for group in root:
        if _local_name(group.tag) != "PropertyGroup":
            continue
        for prop in group:
            if _local_name(prop.tag) == name and prop.text is not None:
                return prop.text.strip()
    return None


def get_target_framework(project_path: Optional[str]) -> str:
    """TargetFramework (or TargetFrameworks) of a manifest, "unknown" if not found."""
    if not project_path:
        return "unknown"
    return (
        read_project_property(project_path, "TargetFramework")
        or read_project_property(project_path, "TargetFrameworks")
        or "unknown"
    )
