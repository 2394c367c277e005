#!/usr/bin/env python3
"""
Entry point of the IdentityClaim operator.

Every IdentityClaim selects a group of pods in its namespace and receives a
cert-manager Certificate whose URI SAN is the claim's SPIFFE ID. A daemon per
claim keeps the Certificate in line with the claim's spec and wakes up again
shortly before the issued certificate expires.

Run it with either of:
    identity-claim-operator
    kopf run -m identity_claim_operator.operator --all-namespaces

Configuration is read from the environment, see ``settings.Settings``.
"""

import logging
import random
import sys
from typing import Any

import kopf
from kubernetes import config

# Handler modules register themselves with kopf on import
from identity_claim_operator.handlers import (  # noqa: F401
    certificate,
    identity_claim,
)
from identity_claim_operator.observability.logging import setup_structured_logging
from identity_claim_operator.observability.metrics import MetricsServer
from identity_claim_operator.settings import settings as operator_settings
from identity_claim_operator.utils.requeue import WakeupRegistry

logger = logging.getLogger(__name__)

LIVENESS_ENDPOINT = "http://0.0.0.0:8080/healthz"


def configure_logging() -> None:
    """Install structured logging as configured by the environment."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
        log_health_probes=operator_settings.log_health_probes,
    )


def get_watched_namespaces() -> list[str] | None:
    """Namespaces to watch, or None when the operator runs cluster-wide."""
    return operator_settings.watched_namespaces


def load_kubernetes_config() -> None:
    """Load in-cluster credentials, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Using in-cluster service account credentials")
        return
    except config.ConfigException:
        logger.debug("Not running in a cluster, trying kubeconfig")
    config.load_kube_config()
    logger.info("Using credentials from kubeconfig")


def run_scope() -> dict[str, Any]:
    """Keyword arguments selecting the namespaces ``kopf.run`` watches."""
    namespaces = get_watched_namespaces()
    if namespaces:
        return {"namespaces": namespaces}
    return {"clusterwide": True}


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Prepare kopf, the Kubernetes client and the metrics endpoint.

    Replicas share a peering object named after the operator. The random
    priority decides which replica is active.
    """
    settings.watching.reconnect_backoff = 1.0
    settings.peering.name = operator_settings.operator_name
    settings.peering.priority = random.randint(0, 32767)
    logger.info(
        f"Starting {operator_settings.operator_name} "
        f"with peering priority {settings.peering.priority}"
    )

    namespaces = get_watched_namespaces()
    if namespaces:
        logger.info(f"Watching namespaces: {', '.join(namespaces)}")
    else:
        logger.info("Watching IdentityClaims in all namespaces")

    try:
        load_kubernetes_config()
    except config.ConfigException:
        logger.error("No usable Kubernetes credentials found")
        raise

    logger.info(
        f"Trust domain {operator_settings.trust_domain}, default issuer "
        f"{operator_settings.default_issuer_kind}/{operator_settings.default_issuer_name}"
    )

    server = MetricsServer(
        port=operator_settings.metrics_port, host=operator_settings.metrics_host
    )
    try:
        await server.start()
        memo.metrics_server = server
    except OSError as e:
        # Metrics are optional, claims are still reconciled without them
        logger.warning(f"Metrics endpoint unavailable: {e}")
        memo.metrics_server = None

    memo.wakeups = WakeupRegistry()


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """Stop the metrics endpoint on shutdown."""
    logger.info(f"Stopping {operator_settings.operator_name}")

    server = memo.get("metrics_server")
    if server is None:
        return
    try:
        await server.stop()
    except Exception as e:
        logger.error(f"Metrics endpoint did not stop cleanly: {e}")
    memo.metrics_server = None


@kopf.on.probe(id="healthz")
async def health_check(memo: kopf.Memo, **_) -> dict[str, str | int]:
    """Liveness payload, including the number of running claim daemons."""
    wakeups = memo.get("wakeups")
    return {
        "status": "healthy",
        "operator": operator_settings.operator_name,
        "active_claims": len(wakeups) if wakeups is not None else 0,
    }


def main() -> None:
    configure_logging()

    try:
        kopf.run(liveness_endpoint=LIVENESS_ENDPOINT, **run_scope())
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Operator exited with an error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
