"""Tests for the IdentityClaim kopf handlers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import kopf
import pytest

from identity_claim_operator.handlers.identity_claim import (
    delete_identity_claim,
    run_identity_claim,
    wake_on_spec_change,
)
from identity_claim_operator.services import ReconcileResult
from identity_claim_operator.utils.requeue import WakeupRegistry

RECONCILER = "identity_claim_operator.handlers.identity_claim.IdentityClaimReconciler"


class StopFlag:
    """Stand-in for kopf.DaemonStopped."""

    def __init__(self):
        self.stopped = False

    def __bool__(self):
        return self.stopped


def memo_with(wakeups: WakeupRegistry) -> kopf.Memo:
    memo = kopf.Memo()
    memo.wakeups = wakeups
    return memo


def stopping_sleep(stop: StopFlag) -> AsyncMock:
    """An AsyncMock for WakeupRegistry.sleep that stops the daemon."""

    async def sleep(namespace, name, delay):
        stop.stopped = True
        return False

    return AsyncMock(side_effect=sleep)


class TestReconcileDaemon:
    @pytest.mark.asyncio
    async def test_sleeps_for_requested_delay(self):
        wakeups = WakeupRegistry()
        stop = StopFlag()
        wakeups.sleep = stopping_sleep(stop)
        reconciler = MagicMock()
        reconciler.reconcile = AsyncMock(
            return_value=ReconcileResult(requeue_after=30)
        )

        with patch(RECONCILER, return_value=reconciler):
            await run_identity_claim(
                name="web", namespace="default", memo=memo_with(wakeups), stopped=stop
            )

        reconciler.reconcile.assert_awaited_once_with(name="web", namespace="default")
        wakeups.sleep.assert_awaited_once_with("default", "web", 30)
        assert len(wakeups) == 0

    @pytest.mark.asyncio
    async def test_immediate_requeue_skips_sleep(self):
        wakeups = WakeupRegistry()
        stop = StopFlag()
        wakeups.sleep = stopping_sleep(stop)
        reconciler = MagicMock()
        reconciler.reconcile = AsyncMock(
            side_effect=[
                ReconcileResult(requeue=True),
                ReconcileResult(requeue=True),
                ReconcileResult(requeue_after=5),
            ]
        )

        with patch(RECONCILER, return_value=reconciler):
            await run_identity_claim(
                name="web", namespace="default", memo=memo_with(wakeups), stopped=stop
            )

        assert reconciler.reconcile.await_count == 3
        wakeups.sleep.assert_awaited_once_with("default", "web", 5)

    @pytest.mark.asyncio
    async def test_failed_pass_waits_for_error_delay(self):
        wakeups = WakeupRegistry()
        stop = StopFlag()
        wakeups.sleep = stopping_sleep(stop)
        reconciler = MagicMock()
        reconciler.reconcile = AsyncMock(
            side_effect=kopf.TemporaryError("selector broken", delay=30)
        )

        with patch(RECONCILER, return_value=reconciler):
            await run_identity_claim(
                name="web", namespace="default", memo=memo_with(wakeups), stopped=stop
            )

        wakeups.sleep.assert_awaited_once_with("default", "web", 30)

    @pytest.mark.asyncio
    async def test_done_pass_falls_back_to_heartbeat(self):
        wakeups = WakeupRegistry()
        stop = StopFlag()
        wakeups.sleep = stopping_sleep(stop)
        reconciler = MagicMock()
        reconciler.reconcile = AsyncMock(return_value=ReconcileResult())

        with patch(RECONCILER, return_value=reconciler):
            await run_identity_claim(
                name="web", namespace="default", memo=memo_with(wakeups), stopped=stop
            )

        wakeups.sleep.assert_awaited_once_with("default", "web", 1800)

    @pytest.mark.asyncio
    async def test_stopped_daemon_does_not_reconcile(self):
        wakeups = WakeupRegistry()
        stop = StopFlag()
        stop.stopped = True
        reconciler = MagicMock()
        reconciler.reconcile = AsyncMock()

        with patch(RECONCILER, return_value=reconciler):
            await run_identity_claim(
                name="web", namespace="default", memo=memo_with(wakeups), stopped=stop
            )

        reconciler.reconcile.assert_not_awaited()
        assert len(wakeups) == 0


@pytest.mark.asyncio
async def test_spec_change_wakes_daemon():
    wakeups = WakeupRegistry()
    event = wakeups.register("default", "web")

    await wake_on_spec_change(name="web", namespace="default", memo=memo_with(wakeups))

    assert event.is_set()


@pytest.mark.asyncio
async def test_spec_change_creates_registry_when_missing():
    memo = kopf.Memo()

    await wake_on_spec_change(name="web", namespace="default", memo=memo)

    assert isinstance(memo.wakeups, WakeupRegistry)


@pytest.mark.asyncio
async def test_delete_runs_reconcile_pass():
    wakeups = WakeupRegistry()
    reconciler = MagicMock()
    reconciler.reconcile = AsyncMock(return_value=ReconcileResult())

    with patch(RECONCILER, return_value=reconciler):
        await delete_identity_claim(
            name="web", namespace="default", memo=memo_with(wakeups)
        )

    reconciler.reconcile.assert_awaited_once_with(name="web", namespace="default")
    assert not wakeups.lock("default", "web").locked()


@pytest.mark.asyncio
async def test_delete_propagates_retryable_errors():
    reconciler = MagicMock()
    reconciler.reconcile = AsyncMock(side_effect=kopf.TemporaryError("later", delay=5))

    with patch(RECONCILER, return_value=reconciler):
        with pytest.raises(kopf.TemporaryError):
            await delete_identity_claim(
                name="web", namespace="default", memo=memo_with(WakeupRegistry())
            )


@pytest.mark.asyncio
async def test_delete_waits_for_daemon_pass_in_flight():
    wakeups = WakeupRegistry()
    started = asyncio.Event()
    release = asyncio.Event()
    order = []

    async def daemon_pass():
        order.append("daemon started")
        started.set()
        await release.wait()
        order.append("daemon finished")
        return ReconcileResult()

    async def deletion_pass(name, namespace):
        order.append("delete")
        return ReconcileResult()

    in_flight = asyncio.create_task(
        wakeups.run_exclusive("default", "web", daemon_pass)
    )
    await started.wait()
    reconciler = MagicMock()
    reconciler.reconcile = AsyncMock(side_effect=deletion_pass)

    with patch(RECONCILER, return_value=reconciler):
        deleting = asyncio.create_task(
            delete_identity_claim(name="web", namespace="default", memo=memo_with(wakeups))
        )
        await asyncio.sleep(0.01)
        assert order == ["daemon started"]

        release.set()
        await asyncio.wait_for(deleting, timeout=1)

    await in_flight
    assert order == ["daemon started", "daemon finished", "delete"]


@pytest.mark.asyncio
async def test_delete_waits_for_pass_of_cancelled_daemon():
    wakeups = WakeupRegistry()
    stop = StopFlag()
    started = asyncio.Event()
    release = asyncio.Event()
    order = []

    async def daemon_pass(name, namespace):
        order.append("daemon started")
        started.set()
        await release.wait()
        order.append("daemon finished")
        return ReconcileResult()

    daemon_reconciler = MagicMock()
    daemon_reconciler.reconcile = AsyncMock(side_effect=daemon_pass)
    with patch(RECONCILER, return_value=daemon_reconciler):
        daemon = asyncio.create_task(
            run_identity_claim(
                name="web", namespace="default", memo=memo_with(wakeups), stopped=stop
            )
        )
        await started.wait()

    # kopf cancels the daemon once its cancellation timeout runs out
    daemon.cancel()
    with pytest.raises(asyncio.CancelledError):
        await daemon

    async def deletion_pass(name, namespace):
        order.append("delete")
        return ReconcileResult()

    delete_reconciler = MagicMock()
    delete_reconciler.reconcile = AsyncMock(side_effect=deletion_pass)
    with patch(RECONCILER, return_value=delete_reconciler):
        deleting = asyncio.create_task(
            delete_identity_claim(name="web", namespace="default", memo=memo_with(wakeups))
        )
        await asyncio.sleep(0.01)
        assert order == ["daemon started"]

        release.set()
        await asyncio.wait_for(deleting, timeout=1)

    assert order == ["daemon started", "daemon finished", "delete"]
