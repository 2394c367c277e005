"""
IdentityClaim handlers - Drives each claim through its reconcile loop.

Every claim gets one long-running kopf daemon that calls the reconciler,
sleeps for the delay it asks for and starts over. Passes of a claim run
under its lock in the wakeup registry, so the daemon and the deletion
handler never overlap, while distinct claims proceed in parallel.

Other handlers only shorten the sleep:
- a spec edit wakes the claim's daemon immediately
- deletion runs a final pass that removes the Certificate and finalizer
"""

import logging
from typing import Any

import kopf

from identity_claim_operator.constants import (
    API_GROUP,
    API_VERSION,
    IDENTITY_CLAIM_PLURAL,
    RENEWAL_HEARTBEAT_SECONDS,
)
from identity_claim_operator.services import IdentityClaimReconciler
from identity_claim_operator.utils.handler_logging import log_handler_entry
from identity_claim_operator.utils.requeue import WakeupRegistry

logger = logging.getLogger(__name__)


def _wakeups(memo: kopf.Memo) -> WakeupRegistry:
    """Return the shared wakeup registry, creating it on first use."""
    if "wakeups" not in memo:
        memo.wakeups = WakeupRegistry()
    return memo.wakeups


@kopf.daemon(
    IDENTITY_CLAIM_PLURAL,
    group=API_GROUP,
    version=API_VERSION,
    cancellation_timeout=1.0,
)
async def run_identity_claim(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    stopped: kopf.DaemonStopped,
    **kwargs: Any,
) -> None:
    """
    Reconcile loop of a single IdentityClaim.

    Runs for as long as the claim exists. Failed passes are retried after
    the delay carried by the error; successful passes after the delay the
    reconciler requested, or the renewal heartbeat when it asked for none.

    Args:
        name: Name of the IdentityClaim
        namespace: Namespace of the IdentityClaim
        memo: Operator memo holding the wakeup registry
        stopped: Flag set by kopf when the daemon must exit
    """
    log_handler_entry("daemon", "identityclaim", name, namespace)

    wakeups = _wakeups(memo)
    wakeups.register(namespace, name)
    reconciler = IdentityClaimReconciler()

    try:
        while not stopped:
            try:
                result = await wakeups.run_exclusive(
                    namespace,
                    name,
                    lambda: reconciler.reconcile(name=name, namespace=namespace),
                )
                delay = result.delay
            except kopf.TemporaryError as e:
                delay = e.delay

            if delay is None:
                delay = RENEWAL_HEARTBEAT_SECONDS
            if delay > 0:
                woken = await wakeups.sleep(namespace, name, delay)
                if woken:
                    logger.debug(
                        f"Reconcile loop for IdentityClaim {namespace}/{name} woken early"
                    )
    finally:
        wakeups.unregister(namespace, name)
        logger.debug(f"Reconcile loop for IdentityClaim {namespace}/{name} stopped")


@kopf.on.update(
    IDENTITY_CLAIM_PLURAL, group=API_GROUP, version=API_VERSION, field="spec"
)
async def wake_on_spec_change(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Start a new pass right away when the claim's spec is edited."""
    log_handler_entry("spec-change", "identityclaim", name, namespace)
    _wakeups(memo).wake(namespace, name)


@kopf.on.delete(
    IDENTITY_CLAIM_PLURAL, group=API_GROUP, version=API_VERSION, optional=True
)
async def delete_identity_claim(
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Handle IdentityClaim deletion.

    kopf signals the claim's daemon to stop but does not wait for it, so
    the pass here first takes the claim's lock. It then notices the
    deletion timestamp, removes the Certificate and releases the
    operator's finalizer.

    Args:
        name: Name of the IdentityClaim
        namespace: Namespace of the IdentityClaim
        memo: Operator memo holding the wakeup registry
    """
    log_handler_entry("delete", "identityclaim", name, namespace)

    wakeups = _wakeups(memo)
    reconciler = IdentityClaimReconciler()
    await wakeups.run_exclusive(
        namespace,
        name,
        lambda: reconciler.reconcile(name=name, namespace=namespace),
    )
    wakeups.forget(namespace, name)
