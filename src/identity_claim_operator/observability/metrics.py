"""
Prometheus instrumentation and the /metrics endpoint.

Metrics live in a private registry so the default process collectors do
not mix with the operator's series. Per-claim series (phase, certificate
expiry) are dropped again when the claim is deleted.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from identity_claim_operator.constants import (
    PHASE_FAILED,
    PHASE_ISSUING,
    PHASE_PENDING,
    PHASE_READY,
)

logger = logging.getLogger(__name__)

PREFIX = "identity_operator"

RECONCILIATION_TOTAL = Counter(
    f"{PREFIX}_reconciliation_total",
    "Reconcile passes by outcome",
    ["resource_type", "namespace", "result"],
    registry=None,
)
RECONCILIATION_DURATION = Histogram(
    f"{PREFIX}_reconciliation_duration_seconds",
    "Wall time of a reconcile pass",
    ["resource_type", "namespace"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=None,
)
RECONCILIATION_ERRORS = Counter(
    f"{PREFIX}_reconciliation_errors_total",
    "Reconcile passes that raised, by exception type",
    ["resource_type", "namespace", "error_type", "retryable"],
    registry=None,
)
CLAIM_PHASE = Gauge(
    f"{PREFIX}_claim_phase",
    "1 for the phase an IdentityClaim is in, 0 for the others",
    ["namespace", "name", "phase"],
    registry=None,
)
CERTIFICATE_EXPIRES_TIMESTAMP = Gauge(
    f"{PREFIX}_certificate_expires_timestamp",
    "notAfter of the claim's issued certificate as a unix timestamp",
    ["namespace", "name"],
    registry=None,
)

PHASES = (PHASE_PENDING, PHASE_ISSUING, PHASE_READY, PHASE_FAILED)

_registry: CollectorRegistry | None = None


def get_metrics_registry() -> CollectorRegistry:
    """The operator's registry, created and populated on first use."""
    global _registry
    if _registry is None:
        registry = CollectorRegistry()
        registry.register(RECONCILIATION_TOTAL)
        registry.register(RECONCILIATION_DURATION)
        registry.register(RECONCILIATION_ERRORS)
        registry.register(CLAIM_PHASE)
        registry.register(CERTIFICATE_EXPIRES_TIMESTAMP)
        _registry = registry
    return _registry


class MetricsCollector:
    """Records reconcile outcomes and per-claim state."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(
        self, resource_type: str, namespace: str
    ) -> AsyncIterator[None]:
        """Time the enclosed pass and count it as success or error."""
        started = time.time()
        outcome = "success"
        try:
            yield
        except Exception as e:
            outcome = "error"
            RECONCILIATION_ERRORS.labels(
                resource_type=resource_type,
                namespace=namespace,
                error_type=type(e).__name__,
                retryable=str(bool(getattr(e, "retryable", False))).lower(),
            ).inc()
            raise
        finally:
            RECONCILIATION_TOTAL.labels(
                resource_type=resource_type, namespace=namespace, result=outcome
            ).inc()
            RECONCILIATION_DURATION.labels(
                resource_type=resource_type, namespace=namespace
            ).observe(time.time() - started)

    def update_claim_phase(self, namespace: str, name: str, phase: str | None) -> None:
        """Set the phase series of a claim, all zero when phase is None."""
        for candidate in PHASES:
            CLAIM_PHASE.labels(namespace=namespace, name=name, phase=candidate).set(
                int(candidate == phase)
            )

    def update_certificate_expiry(
        self, namespace: str, name: str, expires_at: float
    ) -> None:
        CERTIFICATE_EXPIRES_TIMESTAMP.labels(namespace=namespace, name=name).set(
            expires_at
        )

    def forget_claim(self, namespace: str, name: str) -> None:
        """Remove every series of a deleted claim."""
        for candidate in PHASES:
            with suppress(KeyError):
                CLAIM_PHASE.remove(namespace, name, candidate)
        with suppress(KeyError):
            CERTIFICATE_EXPIRES_TIMESTAMP.remove(namespace, name)


class MetricsServer:
    """aiohttp app serving /metrics for Prometheus and a plain /healthz."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self.app = Application()
        self.app.router.add_get("/metrics", self._serve_metrics)
        self.app.router.add_get("/healthz", self._serve_healthz)

    async def _serve_metrics(self, request: Request) -> Response:
        try:
            payload = generate_latest(get_metrics_registry())
        except Exception as e:
            logger.error(f"Rendering metrics failed: {e}")
            return Response(text=f"metrics unavailable: {type(e).__name__}", status=500)
        # CONTENT_TYPE_LATEST carries a charset, which content_type= rejects
        return Response(body=payload, headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def _serve_healthz(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        self.runner = AppRunner(self.app)
        await self.runner.setup()
        self.site = TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(f"Serving metrics on http://{self.host}:{self.port}/metrics")

    async def stop(self) -> None:
        if self.site is not None:
            await self.site.stop()
            self.site = None
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None


metrics_collector = MetricsCollector()
