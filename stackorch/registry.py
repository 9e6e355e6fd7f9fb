"""
StackRegistry - Load stack declarations from a YAML or JSON file.

Declaration file layout:

    stacks:
      - name: vpc
        path: 1-Infrastructure/vpc
      - name: eks-cluster
        path: 1-Infrastructure/eks-cluster
        dependencies: [vpc]

Relative stack paths are resolved against the directory containing the
declaration file, so the file can be used from any working directory.
"""

import json
from pathlib import Path
from typing import Any, Optional

import yaml

from stackorch.errors import ConfigurationError
from stackorch.graph import StackGraph
from stackorch.schemas import StackDeclaration


class StackRegistry:
    """
    Loads and caches the stack declarations of one file.

    Usage:
        registry = StackRegistry("stacks.yaml")
        graph = registry.graph()
    """

    def __init__(self, stacks_file: Path | str):
        self._stacks_file = Path(stacks_file).expanduser()
        self._declarations: Optional[list[StackDeclaration]] = None

    @property
    def stacks_file(self) -> Path:
        return self._stacks_file

    def load(self) -> list[StackDeclaration]:
        """
        Load declarations in file order.

        Raises:
            ConfigurationError: If the file is missing, unparsable or malformed
        """
        if self._declarations is not None:
            return list(self._declarations)

        if not self._stacks_file.exists():
            raise ConfigurationError(f"Stack declarations not found: {self._stacks_file}")

        try:
            data = self._load_file(self._stacks_file)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load {self._stacks_file}: {e}")

        entries = data.get("stacks") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise ConfigurationError(f"{self._stacks_file}: expected a top-level 'stacks' list")

        base_dir = self._stacks_file.parent
        declarations = []
        for index, entry in enumerate(entries):
            declarations.append(self._parse_entry(entry, index, base_dir))

        self._declarations = declarations
        return list(declarations)

    def graph(self) -> StackGraph:
        """Build the validated dependency graph for the declared stacks."""
        return StackGraph.build(self.load())

    def _parse_entry(self, entry: Any, index: int, base_dir: Path) -> StackDeclaration:
        if not isinstance(entry, dict) or "name" not in entry:
            raise ConfigurationError(f"{self._stacks_file}: stack #{index + 1} must be a mapping with a 'name'")

        dependencies = entry.get("dependencies") or []
        if not isinstance(dependencies, list):
            raise ConfigurationError(f"Stack '{entry['name']}': 'dependencies' must be a list")

        for key in ("apply_command", "destroy_command"):
            value = entry.get(key)
            if value is not None and (not isinstance(value, list) or not value):
                raise ConfigurationError(f"Stack '{entry['name']}': '{key}' must be a non-empty list")

        env = entry.get("env") or {}
        if not isinstance(env, dict):
            raise ConfigurationError(f"Stack '{entry['name']}': 'env' must be a mapping")

        data = dict(entry)
        data["name"] = str(entry["name"])
        data["dependencies"] = [str(d) for d in dependencies]
        if entry.get("path") is not None:
            path = Path(str(entry["path"])).expanduser()
            data["path"] = str(path if path.is_absolute() else base_dir / path)

        try:
            return StackDeclaration.from_dict(data)
        except ValueError as e:
            raise ConfigurationError(f"{self._stacks_file}: {e}")

    def _load_file(self, path: Path) -> Any:
        suffix = path.suffix.lower()
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                return yaml.safe_load(f)
            elif suffix == ".json":
                return json.load(f)
            else:
                raise ValueError(f"Unsupported file format: {suffix}")
