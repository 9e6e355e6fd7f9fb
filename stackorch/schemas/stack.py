"""
Stack schemas - declared stacks and their lifecycle state.

A StackDeclaration is what the operator writes in stacks.yaml.
A Stack is the runtime object the orchestrator transitions through
its lifecycle during a run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class StackState(str, Enum):
    """Lifecycle state of a stack."""
    UNAPPLIED = "unapplied"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class StackDeclaration:
    """
    A stack as declared in configuration.

    Attributes:
        name: Unique stack identifier
        dependencies: Names of stacks that must be applied first, in declared order
        path: Working directory of the stack (passed to the provisioning command)
        apply_command: Optional argument list overriding the default apply command
        destroy_command: Optional argument list overriding the default destroy command
        env: Extra environment variables for the provisioning command
    """
    name: str
    dependencies: tuple[str, ...] = ()
    path: Optional[str] = None
    apply_command: Optional[tuple[str, ...]] = None
    destroy_command: Optional[tuple[str, ...]] = None
    env: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Stack name must not be empty")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for YAML/JSON output."""
        result: dict[str, Any] = {"name": self.name}
        if self.dependencies:
            result["dependencies"] = list(self.dependencies)
        if self.path is not None:
            result["path"] = self.path
        if self.apply_command is not None:
            result["apply_command"] = list(self.apply_command)
        if self.destroy_command is not None:
            result["destroy_command"] = list(self.destroy_command)
        if self.env:
            result["env"] = dict(self.env)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StackDeclaration":
        """Deserialize from dictionary."""
        apply_command = data.get("apply_command")
        destroy_command = data.get("destroy_command")
        return cls(
            name=data["name"],
            dependencies=tuple(data.get("dependencies") or ()),
            path=data.get("path"),
            apply_command=tuple(apply_command) if apply_command else None,
            destroy_command=tuple(destroy_command) if destroy_command else None,
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        )


@dataclass
class Stack:
    """
    Runtime view of a declared stack.

    Stacks are never removed from a graph; the orchestrator only moves
    them between states.
    """
    declaration: StackDeclaration
    state: StackState = StackState.UNAPPLIED

    @property
    def name(self) -> str:
        return self.declaration.name

    @property
    def dependencies(self) -> tuple[str, ...]:
        return self.declaration.dependencies

    def transition(self, state: StackState) -> None:
        self.state = state

    def __repr__(self) -> str:
        return f"Stack(name={self.name}, state={self.state.value})"


@dataclass(frozen=True)
class DependencyEdge:
    """from_stack must reach APPLIED before to_stack may start applying."""
    from_stack: str
    to_stack: str
