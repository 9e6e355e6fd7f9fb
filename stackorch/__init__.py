"""
stackorch - Dependency-ordered orchestrator for infrastructure stacks

Applies and destroys Terragrunt stacks in dependency order with bounded
retries on transient errors, and cleans up stale Terraform state locks.
"""

__version__ = "0.1.0"


__all__ = [
    "StackorchConfig",
    "load_config",
    "get_stackorch_home",
    "StackGraph",
    "ErrorClassifier",
    "RetryExecutor",
    "LockManager",
    "StackOrchestrator",
]

from .config import StackorchConfig, load_config, get_stackorch_home
from .graph import StackGraph
from .classifier import ErrorClassifier
from .executor import RetryExecutor
from .locks import LockManager
from .orchestrator import StackOrchestrator
