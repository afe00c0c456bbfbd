"""
Dependency Graph Model
======================
The graph persisted to ``dependency-graph.json`` at the repository root.

All maps are keyed by ``name@version``. JSON keys are camelCase so files
written by earlier tooling stay readable.
"""
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DependencyNode(_CamelModel):
    package_name: str = Field(alias="packageName")
    version: str
    direct_dependents: List[str] = Field(default_factory=list, alias="directDependents")


class PackageMetadata(_CamelModel):
    package_name: str = Field(alias="packageName")
    version: str
    declared_dependencies: List[str] = Field(default_factory=list, alias="declaredDependencies")


class DependencyGraph(_CamelModel):
    nodes: Dict[str, DependencyNode] = Field(default_factory=dict)
    reverse_dependencies: Dict[str, List[str]] = Field(default_factory=dict, alias="reverseDependencies")
    metadata: Dict[str, PackageMetadata] = Field(default_factory=dict)

    def add_node(self, name: str, version: str) -> str:
        key = f"{name}@{version}"
        if key not in self.nodes:
            self.nodes[key] = DependencyNode(package_name=name, version=version)
            self.reverse_dependencies.setdefault(key, [])
            self.metadata.setdefault(key, PackageMetadata(package_name=name, version=version))
        return key

    def add_dependency(self, name: str, version: str, dep_name: str, dep_version: str) -> None:
        """Record that name@version depends on dep_name@dep_version."""
        dependent = self.add_node(name, version)
        dependency = self.add_node(dep_name, dep_version)
        if dependent not in self.nodes[dependency].direct_dependents:
            self.nodes[dependency].direct_dependents.append(dependent)
        if dependency not in self.reverse_dependencies[dependent]:
            self.reverse_dependencies[dependent].append(dependency)

    def direct_dependents(self, name: str, version: str) -> List[str]:
        node = self.nodes.get(f"{name}@{version}")
        return list(node.direct_dependents) if node else []

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
