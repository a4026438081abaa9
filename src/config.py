"""
Configuration module for the Emitter Operator.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_MANIFEST_PATH = "manifests/emitter-deployment.yaml"


def _env_bool(name: str) -> Optional[bool]:
    """Parse a tri-state boolean env var (unset means auto-detect)."""
    value = os.getenv(name, "").strip().lower()
    if not value:
        return None
    return value in ("1", "true", "yes")


@dataclass
class KubernetesConfig:
    """Kubernetes API access and Emitter CRD coordinates."""

    in_cluster: Optional[bool] = None  # None = try in-cluster, then kubeconfig
    kubeconfig: Optional[str] = None
    namespace: str = ""  # empty = watch all namespaces
    group: str = "webapp.hello.operator.com"
    version: str = "v1"
    plural: str = "emitters"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            in_cluster=_env_bool("KUBE_IN_CLUSTER"),
            kubeconfig=os.getenv("KUBECONFIG") or None,
            namespace=os.getenv("WATCH_NAMESPACE", ""),
            group=os.getenv("EMITTER_GROUP", "webapp.hello.operator.com"),
            version=os.getenv("EMITTER_VERSION", "v1"),
            plural=os.getenv("EMITTER_PLURAL", "emitters"),
        )


@dataclass
class ControllerConfig:
    """Controller work queue configuration."""

    max_concurrent_reconciles: int = 5
    resync_interval: int = 0  # seconds, 0 disables periodic resync
    watch_retry_delay: int = 5  # seconds
    manifest_path: str = DEFAULT_MANIFEST_PATH

    # Exponential backoff configuration
    backoff_base_delay: float = 1.0  # base delay in seconds
    backoff_max_delay: float = 300.0  # max delay in seconds (5 minutes)
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            resync_interval=int(os.getenv("RESYNC_INTERVAL", "0")),
            watch_retry_delay=int(os.getenv("WATCH_RETRY_DELAY", "5")),
            manifest_path=os.getenv("MANIFEST_PATH", DEFAULT_MANIFEST_PATH),
            backoff_base_delay=float(os.getenv("BACKOFF_BASE_DELAY", "1")),
            backoff_max_delay=float(os.getenv("BACKOFF_MAX_DELAY", "300")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    kubernetes: KubernetesConfig
    controller: ControllerConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            kubernetes=KubernetesConfig.from_env(),
            controller=ControllerConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            kubernetes=KubernetesConfig(),
            controller=ControllerConfig(),
            logging=LoggingConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
