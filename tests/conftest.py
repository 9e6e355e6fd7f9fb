from datetime import datetime, timedelta, timezone

import pytest

from stackorch.schemas import RetryPolicy, StackDeclaration


@pytest.fixture(autouse=True)
def stackorch_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.config/stackorch."""
    home = tmp_path / "stackorch_home"
    monkeypatch.setenv("STACKORCH_HOME", str(home))
    return home


class ScriptedRunner:
    """
    Command runner replaying scripted (exit_status, output) responses.

    Responses are keyed by the command's cwd (stack path). Each call pops the
    next response; the last one repeats once the script runs out. Unscripted
    commands succeed.
    """

    def __init__(self, script=None, default=(0, "Apply complete!")):
        self.script = {key: list(responses) for key, responses in (script or {}).items()}
        self.default = default
        self.calls = []

    def __call__(self, command):
        self.calls.append(command)
        responses = self.script.get(command.cwd)
        if not responses:
            return self.default
        if len(responses) > 1:
            return responses.pop(0)
        return responses[0]

    def called(self, cwd):
        return [c for c in self.calls if c.cwd == cwd]

    @property
    def order(self):
        return [c.cwd for c in self.calls]


class FakeClock:
    """Clock advancing one second per call."""

    def __init__(self, start=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def scripted_runner():
    return ScriptedRunner


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def no_wait_policy():
    return RetryPolicy(max_attempts=3, base_delay=0)


def _decl(name, *deps):
    # path doubles as the key ScriptedRunner uses to pick responses
    return StackDeclaration(name=name, dependencies=tuple(deps), path=name)


@pytest.fixture
def chain_declarations():
    """vpc -> eks -> nodegroup."""
    return [
        _decl("vpc"),
        _decl("eks", "vpc"),
        _decl("nodegroup", "eks"),
    ]


@pytest.fixture
def eks_declarations():
    """
    The EKS platform layout plus an independent ecr stack.

    Apply order: vpc, eks-cluster, node-groups, eks-addons, argocd, ecr
    """
    return [
        _decl("vpc"),
        _decl("eks-cluster", "vpc"),
        _decl("node-groups", "eks-cluster"),
        _decl("eks-addons", "eks-cluster", "node-groups"),
        _decl("argocd", "eks-addons"),
        _decl("ecr"),
    ]
