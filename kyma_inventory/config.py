"""Configuration objects for kyma-inventory."""

from dataclasses import dataclass, field

from .manifest import API_VERSION, KYMA_KIND

OWNER_INDEX_FIELD = ".metadata.controller"


@dataclass(frozen=True)
class IndexConfig:
    """Configuration for the index from HelmComponents to their owning Kyma."""

    field: str = OWNER_INDEX_FIELD
    """Name of the indexed field used when listing children."""

    owner_api_version: str = API_VERSION
    """Only owner references with this apiVersion are indexed."""

    owner_kind: str = KYMA_KIND
    """Only owner references of this kind are indexed."""


@dataclass
class RateLimiterConfig:
    """Configuration for the retry policy of a controller."""

    base_delay: float = 1.0
    """Delay in seconds after the first failure of a key."""

    max_delay: float = 1000.0
    """Upper bound in seconds of the per key exponential delay."""

    qps: float = 30.0
    """Sustained number of keys processed per second across all keys."""

    burst: int = 200
    """Number of keys that may be processed immediately before qps applies."""


@dataclass
class ControllerConfig:
    """Options shared by all controllers."""

    max_concurrent_reconciles: int = 10
    """Maximum number of keys reconciled in parallel."""

    reconcile_timeout: float | None = None
    """Deadline in seconds for a single reconcile pass, or None for no deadline."""

    rate_limiter: RateLimiterConfig = field(default_factory=RateLimiterConfig)


@dataclass
class ComponentControllerConfig(ControllerConfig):
    """Configuration for the HelmComponent controller."""

    requeue_scale: float = 1.0
    """Multiplier applied to every lifecycle requeue delay."""


@dataclass
class KymaControllerConfig(ControllerConfig):
    """Configuration for the Kyma controller."""

    create_retry_delay: float = 5.0
    """Delay in seconds before retrying a pass after a failed create."""


@dataclass
class ManagerConfig:
    """Configuration for the manager running all controllers."""

    index: IndexConfig = field(default_factory=IndexConfig)
    kyma_controller: KymaControllerConfig = field(default_factory=KymaControllerConfig)
    component_controller: ComponentControllerConfig = field(
        default_factory=ComponentControllerConfig
    )
