"""
Certificate handlers - Routes cert-manager events to the owning claim.

cert-manager updates a Certificate's status when it issues or renews it.
A claim waiting in the Issuing phase should not sit out its full requeue
delay once that happens, so every event on a claim-owned Certificate wakes
the claim's reconcile loop.
"""

import logging
from typing import Any

import kopf

from identity_claim_operator.constants import (
    CERT_MANAGER_GROUP,
    CERT_MANAGER_VERSION,
    CERTIFICATE_PLURAL,
)
from identity_claim_operator.utils.handler_logging import log_handler_entry
from identity_claim_operator.utils.ownership import find_claim_owner

logger = logging.getLogger(__name__)


@kopf.on.event(
    CERTIFICATE_PLURAL, group=CERT_MANAGER_GROUP, version=CERT_MANAGER_VERSION
)
async def wake_owning_claim(
    body: kopf.Body,
    name: str,
    namespace: str,
    memo: kopf.Memo,
    type: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Wake the IdentityClaim controlling a Certificate.

    Certificates without an IdentityClaim controller are ignored.

    Args:
        body: The Certificate as seen in the watch event
        name: Name of the Certificate
        namespace: Namespace of the Certificate
        memo: Operator memo holding the wakeup registry
        type: Watch event type (ADDED, MODIFIED, DELETED, or None on listing)
    """
    claim_name = find_claim_owner(body)
    if claim_name is None:
        return

    log_handler_entry(
        "event",
        "certificate",
        name,
        namespace,
        extra={"event_type": type, "owner": claim_name},
    )

    wakeups = memo.get("wakeups")
    if wakeups is None or not wakeups.wake(namespace, claim_name):
        logger.debug(
            f"No reconcile loop running for IdentityClaim {namespace}/{claim_name}"
        )
