import json
import pytest

from secfix.services.dependency_scanner import (
    build_dependency_graph,
    find_assets_file,
    persist_dependency_graph,
    scan_dependencies,
)

ASSETS = {
    "version": 3,
    "targets": {
        "net8.0": {
            "Newtonsoft.Json/12.0.1": {"type": "package"},
            "Serilog.Sinks.Console/5.0.0": {
                "type": "package",
                "dependencies": {"Serilog": "3.1.1"},
            },
            "Serilog/3.1.1": {"type": "package"},
            "MyLib/1.0.0": {"type": "project"},
        },
        "net8.0/linux-x64": {
            "Newtonsoft.Json/12.0.1": {"type": "package"},
        },
    },
}


@pytest.fixture
def repo(tmp_path):
    obj = tmp_path / "src" / "App" / "obj"
    obj.mkdir(parents=True)
    (obj / "project.assets.json").write_text(json.dumps(ASSETS), encoding="utf-8")
    return tmp_path


def test_find_assets_file_below_root(repo):
    assert find_assets_file(str(repo)).endswith("project.assets.json")


def test_scan_returns_distinct_sorted_packages(repo):
    assert scan_dependencies(str(repo)) == [
        ("Newtonsoft.Json", "12.0.1"),
        ("Serilog", "3.1.1"),
        ("Serilog.Sinks.Console", "5.0.0"),
    ]


def test_scan_without_assets_is_empty(tmp_path):
    assert scan_dependencies(str(tmp_path)) == []


def test_scan_does_not_write_graph(repo):
    scan_dependencies(str(repo))
    assert not (repo / "dependency-graph.json").exists()


def test_graph_links_dependents(repo):
    graph = build_dependency_graph(str(repo))
    assert graph.direct_dependents("Serilog", "3.1.1") == ["Serilog.Sinks.Console@5.0.0"]
    assert graph.metadata["Serilog.Sinks.Console@5.0.0"].declared_dependencies == ["Serilog 3.1.1"]
    assert "MyLib@1.0.0" not in graph.nodes


def test_persist_writes_camel_case_json(repo):
    path = persist_dependency_graph(str(repo), build_dependency_graph(str(repo)))
    data = json.loads(open(path, encoding="utf-8").read())
    assert path.endswith("dependency-graph.json")
    assert data["nodes"]["Serilog@3.1.1"]["directDependents"] == ["Serilog.Sinks.Console@5.0.0"]
    assert "reverseDependencies" in data
