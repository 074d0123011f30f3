"""Cluster metadata labeling.

Mirrors the role into metadata that cluster tooling can query, e.g. a
`role=leader` pod label usable in Service selectors. Labeling is a side
channel: callers log failures and never let them affect local state.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from herald.errors import LabelPatchError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 5.0  # Seconds


class ClusterLabeler(ABC):
    """Abstract labeler interface."""

    @abstractmethod
    async def set_label(self, resource: str, key: str, value: str) -> None:
        """Set label `key=value` on `resource`.

        Raises:
            LabelPatchError: If the label could not be applied
        """
        pass


class KubernetesPodLabeler(ClusterLabeler):
    """Labels pods through the Kubernetes API.

    The patch only touches the given label key, leaving other labels and
    the rest of the pod untouched. The blocking client call runs in a
    worker thread.

    Args:
        core_api: `kubernetes.client.CoreV1Api` instance
        namespace: Namespace of the pods to label
        request_timeout: Seconds the patch request may take
    """

    def __init__(
        self,
        core_api: Any,
        namespace: str,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.core_api = core_api
        self.namespace = namespace
        self.request_timeout = request_timeout

    async def set_label(self, resource: str, key: str, value: str) -> None:
        body = {"metadata": {"labels": {key: value}}}
        try:
            await asyncio.to_thread(
                self.core_api.patch_namespaced_pod,
                resource,
                self.namespace,
                body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise LabelPatchError(
                f"pod {self.namespace}/{resource}", value, f"{e.status} {e.reason}"
            ) from e
        except HTTPError as e:
            raise LabelPatchError(f"pod {self.namespace}/{resource}", value, str(e)) from e

        logger.info(f"Labeled pod {self.namespace}/{resource} with {key}={value}")
