"""
Configuration management for stackorch.

Configuration lives in $STACKORCH_HOME/config.yaml (default
~/.config/stackorch/config.yaml). Every key is optional; defaults match
the retry and lock-cleanup behaviour the operational scripts used:
five attempts ten seconds apart, locks older than three hours are stale.

Example config.yaml:

    stacks_file: stacks.yaml
    env_file: ~/.config/stackorch/.env
    retry:
      max_attempts: 5
      base_delay: 10
      backoff: fixed          # or exponential
      max_delay: 300
      patterns:               # appended to the built-in retry patterns
        - "Error: timeout while waiting for state to become 'ACTIVE'"
    locks:
      table: terraform-locks
      region: us-east-1
      max_age_seconds: 10800
    commands:
      apply: [terragrunt, apply, -auto-approve, --terragrunt-non-interactive]
      destroy: [terragrunt, destroy, -auto-approve, --terragrunt-non-interactive]
    logging:
      level: INFO
      format: pretty          # or structured
      file: ~/.config/stackorch/stackorch.log
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from stackorch.classifier import ErrorClassifier
from stackorch.errors import ConfigurationError
from stackorch.schemas import RetryPolicy

DEFAULT_APPLY_COMMAND = ("terragrunt", "apply", "-auto-approve", "--terragrunt-non-interactive")
DEFAULT_DESTROY_COMMAND = ("terragrunt", "destroy", "-auto-approve", "--terragrunt-non-interactive")

DEFAULT_LOCK_TABLE = "terraform-locks"
DEFAULT_LOCK_REGION = "us-east-1"
DEFAULT_LOCK_MAX_AGE_SECONDS = 3 * 3600


def get_stackorch_home() -> Path:
    """Directory holding config.yaml, .env and run reports."""
    return Path(os.environ.get("STACKORCH_HOME", "~/.config/stackorch")).expanduser()


@dataclass
class StackorchConfig:
    """Resolved stackorch configuration."""
    stacks_file: str = "stacks.yaml"
    runs_dir: Optional[str] = None
    env_file: Optional[str] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    retry_patterns: list[str] = field(default_factory=list)
    replace_default_patterns: bool = False
    lock_table: str = DEFAULT_LOCK_TABLE
    lock_region: str = DEFAULT_LOCK_REGION
    lock_max_age_seconds: int = DEFAULT_LOCK_MAX_AGE_SECONDS
    apply_command: tuple[str, ...] = DEFAULT_APPLY_COMMAND
    destroy_command: tuple[str, ...] = DEFAULT_DESTROY_COMMAND
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None

    def classifier(self) -> ErrorClassifier:
        """ErrorClassifier built from the configured patterns."""
        if self.replace_default_patterns:
            return ErrorClassifier(self.retry_patterns)
        return ErrorClassifier.with_extra_patterns(self.retry_patterns)

    def resolve_runs_dir(self) -> Path:
        if self.runs_dir:
            return Path(self.runs_dir).expanduser()
        return get_stackorch_home() / "runs"

    def resolve_log_file(self) -> Optional[Path]:
        return Path(self.log_file).expanduser() if self.log_file else None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StackorchConfig":
        """
        Build a config from parsed YAML.

        Raises:
            ConfigurationError: If a section has the wrong shape or an invalid value
        """
        retry = _section(data, "retry")
        locks = _section(data, "locks")
        commands = _section(data, "commands")
        logging_cfg = _section(data, "logging")

        try:
            policy = RetryPolicy.from_dict(retry)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid retry settings: {e}")

        patterns = retry.get("patterns") or []
        if not isinstance(patterns, list):
            raise ConfigurationError("retry.patterns must be a list of strings")

        try:
            max_age = int(locks.get("max_age_seconds", DEFAULT_LOCK_MAX_AGE_SECONDS))
        except (TypeError, ValueError):
            raise ConfigurationError("locks.max_age_seconds must be an integer")

        log_format = logging_cfg.get("format", "pretty")
        if log_format not in ("pretty", "structured"):
            raise ConfigurationError(f"logging.format must be 'pretty' or 'structured', got: {log_format}")

        return cls(
            stacks_file=str(data.get("stacks_file", "stacks.yaml")),
            runs_dir=data.get("runs_dir"),
            env_file=data.get("env_file"),
            retry=policy,
            retry_patterns=[str(p) for p in patterns],
            replace_default_patterns=bool(retry.get("replace_default_patterns", False)),
            lock_table=str(locks.get("table", DEFAULT_LOCK_TABLE)),
            lock_region=str(locks.get("region", DEFAULT_LOCK_REGION)),
            lock_max_age_seconds=max_age,
            apply_command=_command(commands, "apply", DEFAULT_APPLY_COMMAND),
            destroy_command=_command(commands, "destroy", DEFAULT_DESTROY_COMMAND),
            log_level=str(logging_cfg.get("level", "INFO")).upper(),
            log_format=log_format,
            log_file=logging_cfg.get("file"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the config.yaml layout."""
        return {
            "stacks_file": self.stacks_file,
            "runs_dir": self.runs_dir,
            "env_file": self.env_file,
            "retry": {
                **self.retry.to_dict(),
                "patterns": list(self.retry_patterns),
                "replace_default_patterns": self.replace_default_patterns,
            },
            "locks": {
                "table": self.lock_table,
                "region": self.lock_region,
                "max_age_seconds": self.lock_max_age_seconds,
            },
            "commands": {
                "apply": list(self.apply_command),
                "destroy": list(self.destroy_command),
            },
            "logging": {
                "level": self.log_level,
                "format": self.log_format,
                "file": self.log_file,
            },
        }


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' must be a mapping")
    return value


def _command(commands: dict[str, Any], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = commands.get(key)
    if value is None:
        return default
    if not isinstance(value, list) or not value:
        raise ConfigurationError(f"commands.{key} must be a non-empty list of arguments")
    return tuple(str(v) for v in value)


def load_config(config_path: Optional[Path] = None) -> StackorchConfig:
    """
    Load stackorch configuration.

    Args:
        config_path: Explicit config file. Defaults to $STACKORCH_HOME/config.yaml;
                     when that default file does not exist, built-in defaults are used.

    Returns:
        StackorchConfig instance

    Raises:
        ConfigurationError: If an explicit file is missing or any file is invalid
    """
    home = get_stackorch_home()
    if config_path is None:
        config_path = home / "config.yaml"
        if not config_path.exists():
            _load_env_file(home / ".env")
            return StackorchConfig()
    elif not config_path.exists():
        raise ConfigurationError(f"stackorch config not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")

    config = StackorchConfig.from_dict(data)

    env_file = Path(config.env_file).expanduser() if config.env_file else home / ".env"
    _load_env_file(env_file)

    return config


def _load_env_file(path: Path) -> None:
    if path.exists():
        load_dotenv(path)
