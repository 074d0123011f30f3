"""Election over `coordination.k8s.io/v1` Lease objects.

The lease record is the Lease spec:
- holderIdentity: identity of the current leader
- leaseDurationSeconds: how long the record stays valid without renewal
- acquireTime / renewTime: when the holder took and last renewed it
- leaseTransitions: number of times the holder changed

Expiry is judged against the local clock: a record is expired once it has
not changed for `leaseDurationSeconds` since this instance first observed
it, so clock skew between nodes does not matter. Concurrent writers are
arbitrated by the API server through `resourceVersion` (HTTP 409).
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from herald.coordination.base import ElectionCallbacks, ElectionConfig, LeaseCoordinator
from herald.errors import ConfigurationError, CoordinatorConnectError

logger = logging.getLogger(__name__)


def load_api_client(kubeconfig: str | None = None) -> client.ApiClient:
    """Build an API client from in-cluster config, falling back to `kubeconfig`.

    Raises:
        ConfigurationError: If neither configuration can be loaded
    """
    try:
        config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
    except config.ConfigException:
        if not kubeconfig:
            raise ConfigurationError(
                "Failed to load in-cluster config and KUBECONFIG is not set"
            ) from None
        try:
            config.load_kube_config(config_file=kubeconfig)
        except (config.ConfigException, OSError) as e:
            raise ConfigurationError(f"Failed to load kubeconfig {kubeconfig}: {e}") from e
        logger.info(f"Using Kubernetes configuration from {kubeconfig}")
    return client.ApiClient()


def _micro_time(value: datetime) -> str:
    # MicroTime requires exactly six fractional digits
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class KubernetesLeaseCoordinator(LeaseCoordinator):
    """Lease election against the Kubernetes API.

    Args:
        config: Lease and timing configuration
        callbacks: Receiver of the election notifications
        coordination_api: `kubernetes.client.CoordinationV1Api` instance
        request_timeout: Seconds each API request may take (defaults to
            `config.retry_period`)
    """

    backend = "kubernetes"

    def __init__(
        self,
        config: ElectionConfig,
        callbacks: ElectionCallbacks,
        coordination_api: Any,
        request_timeout: float | None = None,
    ) -> None:
        super().__init__(config, callbacks)
        self.api = coordination_api
        # Requests run in worker threads and must end on their own
        self.request_timeout = request_timeout or config.retry_period

        self._observed_record: tuple[Any, ...] | None = None
        self._observed_at = 0.0

    async def _ping(self) -> None:
        try:
            await asyncio.to_thread(self._read_lease)
        except ApiException as e:
            raise CoordinatorConnectError(
                f"Cannot read lease {self.lease_ref}: {e.status} {e.reason}"
            ) from e
        except HTTPError as e:
            raise CoordinatorConnectError(f"Cannot reach the Kubernetes API: {e}") from e

    async def _try_acquire_or_renew(self) -> str | None:
        return await asyncio.to_thread(self._try_acquire_or_renew_sync)

    async def _release(self) -> None:
        await asyncio.to_thread(self._release_sync)

    def _read_lease(self) -> Any | None:
        try:
            return self.api.read_namespaced_lease(
                self.config.lease_name,
                self.config.namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def _body(self, resource_version: str | None, spec: dict[str, Any]) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "name": self.config.lease_name,
            "namespace": self.config.namespace,
        }
        if resource_version:
            metadata["resourceVersion"] = resource_version
        return {
            "apiVersion": "coordination.k8s.io/v1",
            "kind": "Lease",
            "metadata": metadata,
            "spec": spec,
        }

    def _spec(
        self,
        now: datetime,
        acquire_time: datetime,
        transitions: int,
    ) -> dict[str, Any]:
        return {
            "holderIdentity": self.identity,
            "leaseDurationSeconds": int(self.config.lease_duration),
            "acquireTime": _micro_time(acquire_time),
            "renewTime": _micro_time(now),
            "leaseTransitions": transitions,
        }

    def _try_acquire_or_renew_sync(self) -> str | None:
        now = datetime.now(timezone.utc)
        lease = self._read_lease()

        if lease is None:
            body = self._body(None, self._spec(now, acquire_time=now, transitions=0))
            try:
                self.api.create_namespaced_lease(
                    self.config.namespace, body, _request_timeout=self.request_timeout
                )
            except ApiException as e:
                if e.status == 409:
                    # Another instance created it first
                    return None
                raise
            logger.info(f"Created lease {self.lease_ref}")
            return self.identity

        spec = lease.spec
        holder = spec.holder_identity if spec else None
        duration = (spec.lease_duration_seconds if spec else None) or self.config.lease_duration

        record = (
            holder,
            spec.renew_time if spec else None,
            spec.lease_transitions if spec else None,
        )
        monotonic_now = time.monotonic()
        if record != self._observed_record:
            self._observed_record = record
            self._observed_at = monotonic_now

        if holder and holder != self.identity and monotonic_now - self._observed_at < duration:
            return holder

        transitions = (spec.lease_transitions if spec else None) or 0
        acquire_time = spec.acquire_time if spec and spec.acquire_time else now
        if holder != self.identity:
            transitions += 1
            acquire_time = now

        body = self._body(
            lease.metadata.resource_version,
            self._spec(now, acquire_time=acquire_time, transitions=transitions),
        )
        try:
            self.api.replace_namespaced_lease(
                self.config.lease_name,
                self.config.namespace,
                body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 409:
                # Lost the race for this resourceVersion
                return holder if holder != self.identity else None
            raise
        return self.identity

    def _release_sync(self) -> None:
        lease = self._read_lease()
        if lease is None or lease.spec is None or lease.spec.holder_identity != self.identity:
            return

        now = datetime.now(timezone.utc)
        spec = {
            "holderIdentity": None,
            "leaseDurationSeconds": 1,
            "acquireTime": _micro_time(now),
            "renewTime": _micro_time(now),
            "leaseTransitions": lease.spec.lease_transitions or 0,
        }
        body = self._body(lease.metadata.resource_version, spec)
        self.api.replace_namespaced_lease(
            self.config.lease_name,
            self.config.namespace,
            body,
            _request_timeout=self.request_timeout,
        )
