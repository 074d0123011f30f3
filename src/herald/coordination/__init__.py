"""Election coordinators for Herald.

Provides lease-based leader election over:
- Kubernetes `coordination.k8s.io/v1` Lease objects
- A Redis key (SET NX with TTL)

Example:
    from herald.coordination import ElectionConfig, KubernetesLeaseCoordinator

    coordinator = KubernetesLeaseCoordinator(config, callbacks, coordination_api)
    await coordinator.verify()
    await coordinator.run()
"""

from herald.coordination.base import (
    ElectionCallbacks,
    ElectionConfig,
    LeaseCoordinator,
)
from herald.coordination.kubernetes import KubernetesLeaseCoordinator, load_api_client
from herald.coordination.redis import RedisLeaseCoordinator

__all__ = [
    "ElectionCallbacks",
    "ElectionConfig",
    "KubernetesLeaseCoordinator",
    "LeaseCoordinator",
    "RedisLeaseCoordinator",
    "load_api_client",
]
