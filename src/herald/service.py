"""Process wiring for the sidecar.

Builds the collaborators from settings and runs them until SIGTERM/SIGINT:
- marker store in the status directory
- role state machine fed by the election callbacks
- election coordinator for the configured backend
- optional pod role labeler
- health server

Startup is all-or-nothing: configuration and backend connectivity are
checked before anything runs, so a fatal error leaves no task behind.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any

from kubernetes import client

from herald.api import HealthServer, create_app
from herald.config import ElectionBackend, Settings
from herald.coordination import (
    ElectionConfig,
    KubernetesLeaseCoordinator,
    LeaseCoordinator,
    RedisLeaseCoordinator,
    load_api_client,
)
from herald.errors import ConfigurationError
from herald.labeler import ClusterLabeler, KubernetesPodLabeler
from herald.observability.logging import LogContext, bind_role_source, unbind_role_source
from herald.observability.metrics import MetricsRegistry
from herald.status import MarkerStore, RoleEventDispatcher, RoleStateMachine

logger = logging.getLogger(__name__)


def election_config(settings: Settings) -> ElectionConfig:
    return ElectionConfig(
        lease_name=settings.lease_name,
        namespace=settings.namespace,
        identity=settings.identity,
        lease_duration=settings.lease_duration,
        renew_deadline=settings.renew_deadline,
        retry_period=settings.retry_period,
    )


class Sidecar:
    """Runs the election and publishes its outcome as marker files.

    Args:
        settings: Process settings
        api_client: Kubernetes API client (loaded from the environment if
            None and the Kubernetes backend or pod labeling is used)
        redis_client: Redis client for the redis backend
    """

    def __init__(
        self,
        settings: Settings,
        api_client: Any | None = None,
        redis_client: Any | None = None,
    ) -> None:
        self.settings = settings
        self.metrics = MetricsRegistry()
        self.metrics.initialize(enabled=settings.enable_metrics)
        self.store = MarkerStore(settings.status_dir)

        self._api_client = api_client
        self._redis_client = redis_client
        self._shutdown_event = asyncio.Event()

        self.machine: RoleStateMachine | None = None
        self.coordinator: LeaseCoordinator | None = None
        self.health: HealthServer | None = None

    def _kubernetes_client(self) -> Any:
        if self._api_client is None:
            self._api_client = load_api_client(self.settings.kubeconfig)
        return self._api_client

    def build_labeler(self) -> ClusterLabeler | None:
        if not self.settings.label_pod_role:
            return None
        core_api = client.CoreV1Api(self._kubernetes_client())
        return KubernetesPodLabeler(core_api, self.settings.namespace)

    def build_coordinator(self, machine: RoleStateMachine) -> LeaseCoordinator:
        callbacks = RoleEventDispatcher(machine)
        config = election_config(self.settings)

        if self.settings.election_backend is ElectionBackend.REDIS:
            return RedisLeaseCoordinator(
                config,
                callbacks,
                redis_client=self._redis_client,
                redis_url=self.settings.redis_url,
            )

        coordination_api = client.CoordinationV1Api(self._kubernetes_client())
        return KubernetesLeaseCoordinator(config, callbacks, coordination_api)

    async def setup(self) -> None:
        """Build and verify every collaborator without starting any.

        Raises:
            ConfigurationError: If the status directory or cluster access
                cannot be set up
            CoordinatorConnectError: If the election backend is unreachable
        """
        try:
            self.store.ensure_directory()
        except OSError as e:
            raise ConfigurationError(
                f"Failed to create status directory {self.settings.status_dir}: {e}"
            ) from e

        self.machine = RoleStateMachine(
            self.store,
            self.settings.identity,
            refresh_interval=self.settings.refresh_interval,
            labeler=self.build_labeler(),
            label_resource=self.settings.pod_name,
            metrics=self.metrics,
        )
        self.coordinator = self.build_coordinator(self.machine)
        try:
            await self.coordinator.verify()
        except Exception:
            await self.coordinator.close()
            raise

        self.health = HealthServer(
            create_app(self.metrics),
            host=self.settings.health_host,
            port=self.settings.health_port,
        )

    async def run(self) -> None:
        """Run until a shutdown signal is received."""
        with LogContext(identity=self.settings.identity):
            await self.setup()
            if self.machine is None or self.coordinator is None or self.health is None:
                raise RuntimeError("Sidecar setup did not complete")

            machine = self.machine
            role_filter = bind_role_source(lambda: machine.current_role.value)

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._signal_handler)

            logger.info(
                f"Starting sidecar as {self.settings.identity} "
                f"(lease {self.settings.namespace}/{self.settings.lease_name}, "
                f"backend {self.settings.election_backend.value}, "
                f"status dir {self.settings.status_dir})"
            )

            try:
                await self.health.start()
                await self.machine.start()
                await self.coordinator.start()
                await self._shutdown_event.wait()
            finally:
                try:
                    await self.shutdown()
                finally:
                    unbind_role_source(role_filter)

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _signal_handler(self) -> None:
        """Handle shutdown signals."""
        logger.info("Received shutdown signal")
        self.request_shutdown()

    async def shutdown(self) -> None:
        """Stop the election, the refresh task and the health server.

        Markers are left in place for the next process to overwrite.
        """
        logger.info("Shutting down sidecar")
        if self.coordinator is not None:
            await self.coordinator.stop()
        if self.machine is not None:
            await self.machine.stop()
        if self.health is not None:
            await self.health.stop()
        logger.info("Sidecar stopped")
