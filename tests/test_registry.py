"""Tests for StackRegistry (stack declaration loading)."""

import json

import pytest
import yaml

from stackorch.errors import ConfigurationError, CycleDetectedError
from stackorch.registry import StackRegistry


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture
def stacks_file(tmp_path):
    return write_yaml(tmp_path / "stacks.yaml", {
        "stacks": [
            {"name": "vpc", "path": "1-Infrastructure/vpc"},
            {"name": "eks-cluster", "path": "1-Infrastructure/eks-cluster", "dependencies": ["vpc"]},
            {
                "name": "argocd",
                "path": "/opt/platform/argocd",
                "dependencies": ["eks-cluster"],
                "apply_command": ["helmfile", "sync"],
                "env": {"ARGOCD_VERSION": "2.10"},
            },
        ]
    })


class TestLoad:
    def test_declarations_in_file_order(self, stacks_file):
        declarations = StackRegistry(stacks_file).load()
        assert [d.name for d in declarations] == ["vpc", "eks-cluster", "argocd"]
        assert declarations[1].dependencies == ("vpc",)
        assert declarations[2].apply_command == ("helmfile", "sync")
        assert declarations[2].env == {"ARGOCD_VERSION": "2.10"}

    def test_relative_paths_resolved_against_file(self, stacks_file, tmp_path):
        declarations = StackRegistry(stacks_file).load()
        assert declarations[0].path == str(tmp_path / "1-Infrastructure" / "vpc")
        assert declarations[2].path == "/opt/platform/argocd"

    def test_missing_path_stays_none(self, tmp_path):
        path = write_yaml(tmp_path / "stacks.yaml", {"stacks": [{"name": "vpc"}]})
        assert StackRegistry(path).load()[0].path is None

    def test_json(self, tmp_path):
        path = tmp_path / "stacks.json"
        path.write_text(json.dumps({"stacks": [{"name": "vpc"}, {"name": "eks", "dependencies": ["vpc"]}]}))
        assert [d.name for d in StackRegistry(path).load()] == ["vpc", "eks"]

    def test_cached(self, stacks_file):
        registry = StackRegistry(stacks_file)
        first = registry.load()
        stacks_file.write_text("stacks: []")
        assert registry.load() == first

    def test_graph(self, stacks_file):
        graph = StackRegistry(stacks_file).graph()
        assert graph.apply_order() == ["vpc", "eks-cluster", "argocd"]


class TestInvalid:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            StackRegistry(tmp_path / "nope.yaml").load()

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "stacks.toml"
        path.write_text("")
        with pytest.raises(ConfigurationError, match="Unsupported file format"):
            StackRegistry(path).load()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "stacks.yaml"
        path.write_text("stacks: [unclosed")
        with pytest.raises(ConfigurationError):
            StackRegistry(path).load()

    @pytest.mark.parametrize("data", [
        {},
        {"stacks": {"name": "vpc"}},
        ["vpc"],
    ])
    def test_no_stacks_list(self, tmp_path, data):
        path = write_yaml(tmp_path / "stacks.yaml", data)
        with pytest.raises(ConfigurationError, match="'stacks' list"):
            StackRegistry(path).load()

    def test_entry_without_name(self, tmp_path):
        path = write_yaml(tmp_path / "stacks.yaml", {"stacks": [{"path": "vpc"}]})
        with pytest.raises(ConfigurationError, match="stack #1"):
            StackRegistry(path).load()

    def test_dependencies_not_a_list(self, tmp_path):
        path = write_yaml(tmp_path / "stacks.yaml", {"stacks": [{"name": "eks", "dependencies": "vpc"}]})
        with pytest.raises(ConfigurationError, match="must be a list"):
            StackRegistry(path).load()

    def test_empty_command(self, tmp_path):
        path = write_yaml(tmp_path / "stacks.yaml", {"stacks": [{"name": "vpc", "apply_command": []}]})
        with pytest.raises(ConfigurationError, match="apply_command"):
            StackRegistry(path).load()

    def test_self_dependency(self, tmp_path):
        path = write_yaml(tmp_path / "stacks.yaml", {"stacks": [{"name": "vpc", "dependencies": ["vpc"]}]})
        with pytest.raises(CycleDetectedError) as excinfo:
            StackRegistry(path).graph()
        assert excinfo.value.cycle == ["vpc", "vpc"]

    def test_cycle(self, tmp_path):
        path = write_yaml(tmp_path / "stacks.yaml", {"stacks": [
            {"name": "a", "dependencies": ["c"]},
            {"name": "b", "dependencies": ["a"]},
            {"name": "c", "dependencies": ["b"]},
        ]})
        with pytest.raises(CycleDetectedError):
            StackRegistry(path).graph()

    def test_unknown_dependency(self, tmp_path):
        path = write_yaml(tmp_path / "stacks.yaml", {"stacks": [{"name": "eks", "dependencies": ["vpc"]}]})
        with pytest.raises(ConfigurationError, match="undeclared"):
            StackRegistry(path).graph()
