"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variable overrides (NSF_*)
- Configuration initialization and display
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nsf.core.exceptions import ConfigurationError
from nsf.core.validation import MAX_CHAIN_NAME_LENGTH


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/nsf/config.yaml")
DEFAULT_AUDIT_LOG_PATH = Path("/var/log/nsf/audit.log")
DEFAULT_LOCK_DIR = Path("/run/nsf/locks")

RUNTIME_KINDS = ("docker", "containerd")


class IptablesConfig(BaseModel):
    """Filter tool settings."""

    binary: str = "iptables"
    wait_seconds: int = 5  # xtables lock wait, 0 waits forever
    chain_prefix: str = "CHAOS"
    command_timeout: int = 30

    @field_validator("wait_seconds")
    @classmethod
    def validate_wait(cls, v: int) -> int:
        if v < 0:
            raise ValueError("wait_seconds cannot be negative")
        return v

    @field_validator("command_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("command_timeout must be positive")
        return v

    @field_validator("chain_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not v or any(c.isspace() for c in v) or v.startswith("-"):
            raise ValueError("chain_prefix must be a non-empty name without whitespace")
        # Longest umbrella chain is <prefix>-OUTPUT
        if len(v) + len("-OUTPUT") > MAX_CHAIN_NAME_LENGTH:
            raise ValueError(
                f"chain_prefix too long: umbrella chains are limited to "
                f"{MAX_CHAIN_NAME_LENGTH} characters"
            )
        return v


class NamespaceConfig(BaseModel):
    """How commands are attached to a network namespace."""

    nsenter_binary: str = "nsenter"
    proc_root: Path = Path("/proc")
    lock: bool = True
    lock_dir: Path = DEFAULT_LOCK_DIR


class RuntimeConfig(BaseModel):
    """Container runtime used to resolve container ids to pids."""

    kind: str = "docker"
    docker_binary: str = "docker"
    crictl_binary: str = "crictl"

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        v = v.lower()
        if v not in RUNTIME_KINDS:
            raise ValueError(f"Runtime kind must be one of: {list(RUNTIME_KINDS)}")
        return v


class AuditConfig(BaseModel):
    """Audit log configuration."""

    enabled: bool = True
    log_path: Path = DEFAULT_AUDIT_LOG_PATH


class NSFConfig(BaseModel):
    """Root configuration model.

    Loaded from /etc/nsf/config.yaml. Every section has defaults, so an
    absent file is a valid configuration.
    """

    iptables: IptablesConfig = Field(default_factory=IptablesConfig)
    namespace: NamespaceConfig = Field(default_factory=NamespaceConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @classmethod
    def load(cls, path: Path) -> "NSFConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: nsf config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "NSFConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class EnvOverrides(BaseSettings):
    """Overrides read from the environment.

    Applied on top of the config file so a host can swap binaries
    without editing it.
    """

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    iptables_binary: Optional[str] = Field(None, alias="NSF_IPTABLES_BINARY")
    nsenter_binary: Optional[str] = Field(None, alias="NSF_NSENTER_BINARY")
    runtime_kind: Optional[str] = Field(None, alias="NSF_RUNTIME_KIND")
    audit_log_path: Optional[Path] = Field(None, alias="NSF_AUDIT_LOG_PATH")

    def active(self) -> dict[str, str]:
        """Return the overrides that are set, keyed by env variable."""
        return {
            field.alias: str(getattr(self, name))
            for name, field in type(self).model_fields.items()
            if getattr(self, name) is not None
        }


class AppConfig:
    """Application configuration combining config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[NSFConfig] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or NSFConfig.load_or_default(self.config_path)
        self._env = EnvOverrides()
        self._apply_overrides()

    def _apply_overrides(self) -> None:
        env = self._env
        try:
            if env.iptables_binary:
                self._config.iptables.binary = env.iptables_binary
            if env.nsenter_binary:
                self._config.namespace.nsenter_binary = env.nsenter_binary
            if env.runtime_kind:
                self._config.runtime = RuntimeConfig(
                    **{**self._config.runtime.model_dump(), "kind": env.runtime_kind}
                )
            if env.audit_log_path:
                self._config.audit.log_path = env.audit_log_path
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid environment override: {e}",
                details=[f"{k}={v}" for k, v in env.active().items()],
            ) from e

    @property
    def config(self) -> NSFConfig:
        """Get the full configuration."""
        return self._config

    @property
    def env(self) -> EnvOverrides:
        """Get the environment overrides."""
        return self._env

    @property
    def iptables(self) -> IptablesConfig:
        """Shortcut to filter tool config."""
        return self._config.iptables

    @property
    def namespace(self) -> NamespaceConfig:
        """Shortcut to namespace config."""
        return self._config.namespace

    @property
    def runtime(self) -> RuntimeConfig:
        """Shortcut to container runtime config."""
        return self._config.runtime

    @property
    def audit(self) -> AuditConfig:
        """Shortcut to audit config."""
        return self._config.audit


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# Namespace firewall configuration
# Environment overrides: NSF_IPTABLES_BINARY, NSF_NSENTER_BINARY,
#   NSF_RUNTIME_KIND, NSF_AUDIT_LOG_PATH

# Filter tool
iptables:
  binary: iptables
  wait_seconds: 5       # xtables lock wait (-w), 0 waits forever
  chain_prefix: CHAOS   # umbrella chains: CHAOS-INPUT, CHAOS-OUTPUT
  command_timeout: 30   # seconds per external command

# Namespace attachment
namespace:
  nsenter_binary: nsenter
  proc_root: /proc
  lock: true            # serialize reconciliations per namespace
  lock_dir: /run/nsf/locks

# Container runtime used by --container
runtime:
  kind: docker          # docker, containerd
  docker_binary: docker
  crictl_binary: crictl

# Audit trail
audit:
  enabled: true
  log_path: /var/log/nsf/audit.log
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Args:
        path: Path to create config file
        force: Overwrite if exists

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o644)
