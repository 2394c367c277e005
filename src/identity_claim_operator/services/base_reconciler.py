"""
Shared reconcile pass plumbing.

``BaseReconciler.reconcile`` wraps a subclass's ``do_reconcile`` with the
pass correlation ID, start and finish log lines, Prometheus timing, and the
translation of any failure into a retryable kopf error.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..errors import (
    KubernetesAPIError,
    OperatorError,
    TemporaryError,
)
from ..observability.logging import OperatorLogger


@dataclass
class ReconcileResult:
    """
    When the next pass should run after a successful one.

    Attributes:
        requeue: Run again without waiting
        requeue_after: Run again after this many seconds
    """

    requeue: bool = False
    requeue_after: float | None = None

    @property
    def delay(self) -> float | None:
        """Seconds until the next pass, None when nothing is pending."""
        if self.requeue_after is not None:
            return self.requeue_after
        return 0.0 if self.requeue else None


def as_operator_error(error: Exception, name: str, namespace: str) -> OperatorError:
    """Map an exception escaping a pass onto the operator's error types."""
    if isinstance(error, OperatorError):
        return error
    if isinstance(error, ApiException):
        return KubernetesAPIError(
            message=f"call for {namespace}/{name} failed",
            reason=error.reason,
            status_code=error.status,
            cause=error,
        )
    return TemporaryError(f"{type(error).__name__} while reconciling: {error}")


class BaseReconciler(ABC):
    """Template for reconcilers driven by a per-resource kopf daemon."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Args:
            k8s_client: API client to use, created lazily when omitted
        """
        self.k8s_client = k8s_client
        self.logger = OperatorLogger(self.__class__.__name__)

    @property
    def kubernetes_client(self) -> client.ApiClient:
        if self.k8s_client is None:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    @property
    def resource_type(self) -> str:
        """Lowercase resource name derived from the class name."""
        return self.__class__.__name__.removesuffix("Reconciler").lower()

    async def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        """
        Run one pass for a resource.

        Args:
            name: Resource name
            namespace: Resource namespace

        Returns:
            When the next pass should run

        Raises:
            kopf.TemporaryError: The pass failed. The original error is
                chained as ``__cause__`` and ``delay`` holds the backoff.
        """
        from ..observability.metrics import metrics_collector

        kind = self.resource_type
        started = time.time()
        self.logger.log_reconciliation_start(
            resource_type=kind, resource_name=name, namespace=namespace
        )

        try:
            async with metrics_collector.track_reconciliation(
                resource_type=kind, namespace=namespace
            ):
                try:
                    result = await self.do_reconcile(name, namespace)
                except Exception as e:
                    error = as_operator_error(e, name, namespace)
                    if error is e:
                        raise
                    raise error from e
        except OperatorError as e:
            self.logger.log_reconciliation_error(
                resource_type=kind,
                resource_name=name,
                namespace=namespace,
                error=e,
                duration=time.time() - started,
            )
            raise e.as_kopf_error() from e

        self.logger.log_reconciliation_success(
            resource_type=kind,
            resource_name=name,
            namespace=namespace,
            duration=time.time() - started,
            requeue_after=result.delay,
        )
        return result

    @abstractmethod
    async def do_reconcile(self, name: str, namespace: str) -> ReconcileResult:
        """
        Converge the resource one step towards its desired state.

        Implementations read the resource fresh on every call.
        """
        raise NotImplementedError
