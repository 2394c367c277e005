"""
IdentityClaim reconciler - drives a claim to a ready, renewable identity.

Each pass reads the claim fresh and moves it one step along:

    finalizer -> Pending -> pods verified -> Certificate upserted
              -> Issuing (waiting for cert-manager) -> Ready

and then schedules the next pass shortly before the certificate expires.
No state is kept between passes; everything is derived from the claim,
its pods and its Certificate as observed in this pass.
"""

import asyncio
import json
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    CONDITION_CERTIFICATE_ISSUED,
    CONDITION_FALSE,
    CONDITION_PODS_VERIFIED,
    CONDITION_READY,
    CONDITION_TRUE,
    IDENTITY_CLAIM_FINALIZER,
    ISSUING_REQUEUE_SECONDS,
    NO_PODS_REQUEUE_SECONDS,
    PHASE_FAILED,
    PHASE_ISSUING,
    PHASE_PENDING,
    PHASE_READY,
    REASON_CERTIFICATE_FAILED,
    REASON_ISSUED,
    REASON_ISSUING,
    REASON_NO_PODS,
    REASON_PODS_FOUND,
    REASON_READY,
    REASON_SELECTOR_ERROR,
    RENEWAL_HEARTBEAT_SECONDS,
    RENEWAL_MARGIN_SECONDS,
)
from ..errors import (
    CertificateIssuanceError,
    KubernetesAPIError,
    SelectorError,
)
from ..models.certificate import CertificateIssuerRef, CertificateStatus
from ..models.identity_claim import IdentityClaim, IdentityClaimStatus
from ..observability.metrics import metrics_collector
from ..settings import settings
from ..utils.conditions import upsert_condition, utcnow
from ..utils.kubernetes import (
    create_or_update_certificate,
    delete_certificate,
    get_certificate,
    get_identity_claim,
    patch_identity_claim_finalizers,
    replace_identity_claim_status,
)
from ..utils.ownership import set_controller_reference
from ..utils.selectors import count_matching_pods
from .base_reconciler import BaseReconciler, ReconcileResult
from .certificate_builder import (
    apply_certificate_spec,
    build_certificate_spec,
    certificate_name,
    identity_uri,
)


class IdentityClaimReconciler(BaseReconciler):
    """
    Reconciler for IdentityClaim resources.

    Handles the full lifecycle of a claim including:
    - Finalizer management and status initialization
    - Verifying that the selector matches running pods
    - Creating and updating the owned cert-manager Certificate
    - Tracking issuance and scheduling renewal checks
    - Removing the Certificate when the claim is deleted
    """

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        trust_domain: str | None = None,
        default_issuer: CertificateIssuerRef | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize IdentityClaim reconciler.

        Args:
            k8s_client: Kubernetes API client
            trust_domain: Trust domain for identity URIs (defaults to settings)
            default_issuer: Issuer for claims without issuerRef (defaults to settings)
            clock: Source of the current time, overridable in tests
        """
        super().__init__(k8s_client)
        self.trust_domain = trust_domain or settings.trust_domain
        self.default_issuer = default_issuer or CertificateIssuerRef(
            name=settings.default_issuer_name,
            kind=settings.default_issuer_kind,
            group=settings.default_issuer_group,
        )
        self.clock = clock or utcnow

    async def do_reconcile(self, name: str, namespace: str) -> ReconcileResult:
        """
        Run one reconcile pass for a claim.

        Args:
            name: Name of the IdentityClaim
            namespace: Namespace of the IdentityClaim

        Returns:
            When the next pass should run

        Raises:
            SelectorError: If the claim's selector is malformed
            CertificateIssuanceError: If the Certificate could not be written
            KubernetesAPIError: On transient API failures
        """
        claim = await asyncio.to_thread(
            get_identity_claim, name, namespace, self.kubernetes_client
        )
        if claim is None:
            self.logger.debug(f"IdentityClaim {namespace}/{name} no longer exists")
            return ReconcileResult()

        if claim.is_being_deleted:
            return await self.reconcile_delete(claim)

        if not claim.has_finalizer:
            await self._add_finalizer(claim)
            return ReconcileResult(requeue=True)

        if claim.status.phase is None:
            await self._initialize_status(claim)
            return ReconcileResult(requeue=True)

        observed = claim.status.model_copy(deep=True)
        now = self.clock()

        pod_count = await self._verify_pods(claim, observed, now)
        if pod_count == 0:
            await self._persist_status(claim, observed)
            return ReconcileResult(requeue_after=NO_PODS_REQUEUE_SECONDS)

        await self._ensure_certificate(claim, observed, now)

        certificate_status = await self._read_certificate_status(claim)
        if certificate_status is None or not certificate_status.is_ready:
            self._set_issuing(claim, now)
            await self._persist_status(claim, observed)
            return ReconcileResult(requeue_after=ISSUING_REQUEUE_SECONDS)

        self._set_ready(claim, certificate_status, now)
        await self._persist_status(claim, observed)
        return ReconcileResult(requeue_after=self._renewal_delay(claim, now))

    async def reconcile_delete(self, claim: IdentityClaim) -> ReconcileResult:
        """
        Clean up after a claim that is being deleted.

        The managed Certificate is deleted first (a Certificate that is
        already gone counts as deleted), then the finalizer is released so
        the API server can remove the claim.

        Args:
            claim: The claim carrying a deletion timestamp

        Returns:
            An empty result; the claim needs no further passes

        Raises:
            KubernetesAPIError: If the Certificate or finalizer write failed
        """
        namespace = claim.namespace
        certificate_ref = claim.status.certificate_ref

        if certificate_ref:
            try:
                deleted = await asyncio.to_thread(
                    delete_certificate,
                    certificate_ref,
                    namespace,
                    self.kubernetes_client,
                )
            except ApiException as e:
                raise KubernetesAPIError(
                    f"Failed to delete Certificate {namespace}/{certificate_ref}",
                    reason=e.reason,
                    status_code=e.status,
                    cause=e,
                ) from e
            if deleted:
                self.logger.info(
                    f"Deleted Certificate {namespace}/{certificate_ref}",
                    certificate=certificate_ref,
                )
            else:
                self.logger.debug(
                    f"Certificate {namespace}/{certificate_ref} was already gone"
                )

        if claim.has_finalizer:
            finalizers = [
                f
                for f in claim.metadata.finalizers or []
                if f != IDENTITY_CLAIM_FINALIZER
            ]
            await self._patch_finalizers(claim, finalizers)
            self.logger.info(
                f"Removed finalizer from IdentityClaim {namespace}/{claim.name}"
            )

        metrics_collector.forget_claim(namespace, claim.name)
        return ReconcileResult()

    async def _add_finalizer(self, claim: IdentityClaim) -> None:
        finalizers = list(claim.metadata.finalizers or [])
        finalizers.append(IDENTITY_CLAIM_FINALIZER)
        await self._patch_finalizers(claim, finalizers)
        self.logger.info(
            f"Added finalizer to IdentityClaim {claim.namespace}/{claim.name}"
        )

    async def _patch_finalizers(
        self, claim: IdentityClaim, finalizers: list[str]
    ) -> None:
        try:
            await asyncio.to_thread(
                patch_identity_claim_finalizers,
                claim,
                finalizers,
                self.kubernetes_client,
            )
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to update finalizers of IdentityClaim "
                f"{claim.namespace}/{claim.name}",
                reason=e.reason,
                status_code=e.status,
                cause=e,
            ) from e

    async def _initialize_status(self, claim: IdentityClaim) -> None:
        """Assign the identity URI and Certificate name, phase Pending."""
        observed = claim.status.model_copy(deep=True)
        status = claim.status
        status.phase = PHASE_PENDING
        # Both are immutable once assigned
        status.identity_uri = status.identity_uri or identity_uri(
            self.trust_domain, claim.namespace, claim.name
        )
        status.certificate_ref = status.certificate_ref or certificate_name(
            claim.name
        )
        await self._persist_status(claim, observed)
        self.logger.info(
            f"Initialized IdentityClaim {claim.namespace}/{claim.name} "
            f"with identity {status.identity_uri}",
            phase=PHASE_PENDING,
        )

    async def _verify_pods(
        self, claim: IdentityClaim, observed: IdentityClaimStatus, now: datetime
    ) -> int:
        """
        Count pods matching the claim's selector and record the result.

        Raises:
            SelectorError: After recording the claim as Failed
            KubernetesAPIError: If pods could not be listed
        """
        status = claim.status
        try:
            pod_count = await asyncio.to_thread(
                count_matching_pods,
                claim.namespace,
                claim.spec.selector,
                self.kubernetes_client,
            )
        except SelectorError as e:
            self.logger.warning(
                f"IdentityClaim {claim.namespace}/{claim.name} has an invalid "
                f"selector: {e.message}"
            )
            status.phase = PHASE_FAILED
            self._upsert(
                claim,
                CONDITION_PODS_VERIFIED,
                CONDITION_FALSE,
                REASON_SELECTOR_ERROR,
                e.message,
                now,
            )
            self._upsert(
                claim,
                CONDITION_READY,
                CONDITION_FALSE,
                REASON_SELECTOR_ERROR,
                e.message,
                now,
            )
            await self._persist_status(claim, observed)
            raise
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to list pods in namespace {claim.namespace}",
                reason=e.reason,
                status_code=e.status,
                cause=e,
            ) from e

        if pod_count == 0:
            self._upsert(
                claim,
                CONDITION_PODS_VERIFIED,
                CONDITION_FALSE,
                REASON_NO_PODS,
                "No pods match the selector",
                now,
            )
            self.logger.info(
                f"No pods match IdentityClaim {claim.namespace}/{claim.name}, "
                f"checking again in {NO_PODS_REQUEUE_SECONDS}s"
            )
        else:
            self._upsert(
                claim,
                CONDITION_PODS_VERIFIED,
                CONDITION_TRUE,
                REASON_PODS_FOUND,
                f"Found {pod_count} matching pod(s)",
                now,
            )
        return pod_count

    async def _ensure_certificate(
        self, claim: IdentityClaim, observed: IdentityClaimStatus, now: datetime
    ) -> None:
        """
        Create or update the Certificate owned by the claim.

        Raises:
            CertificateIssuanceError: After recording the claim as Failed
        """
        namespace = claim.namespace
        name = claim.status.certificate_ref or certificate_name(claim.name)

        def mutate(body: dict[str, Any]) -> None:
            set_controller_reference(body, claim)
            apply_certificate_spec(body, desired)

        try:
            desired = build_certificate_spec(claim, self.default_issuer)
            result = await asyncio.to_thread(
                create_or_update_certificate,
                name,
                namespace,
                mutate,
                self.kubernetes_client,
            )
        except (ValueError, ApiException, CertificateIssuanceError) as e:
            message = _error_text(e)
            self.logger.error(
                f"Failed to reconcile Certificate {namespace}/{name}: {message}",
                certificate=name,
            )
            claim.status.phase = PHASE_FAILED
            self._upsert(
                claim,
                CONDITION_CERTIFICATE_ISSUED,
                CONDITION_FALSE,
                REASON_CERTIFICATE_FAILED,
                message,
                now,
            )
            self._upsert(
                claim,
                CONDITION_READY,
                CONDITION_FALSE,
                REASON_CERTIFICATE_FAILED,
                message,
                now,
            )
            try:
                await self._persist_status(claim, observed)
            except KubernetesAPIError as persist_error:
                self.logger.warning(
                    f"Could not record certificate failure on IdentityClaim "
                    f"{namespace}/{claim.name}: {persist_error.message}"
                )
            if isinstance(e, CertificateIssuanceError):
                raise
            raise CertificateIssuanceError(
                f"Failed to reconcile Certificate {namespace}/{name}: {message}",
                cause=e,
            ) from e

        self.logger.debug(
            f"Certificate {namespace}/{name} reconciled: {result.value}",
            certificate=name,
        )

    async def _read_certificate_status(
        self, claim: IdentityClaim
    ) -> CertificateStatus | None:
        name = claim.status.certificate_ref or certificate_name(claim.name)
        try:
            certificate = await asyncio.to_thread(
                get_certificate, name, claim.namespace, self.kubernetes_client
            )
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to read Certificate {claim.namespace}/{name}",
                reason=e.reason,
                status_code=e.status,
                cause=e,
            ) from e
        if certificate is None:
            return None
        return CertificateStatus.model_validate(certificate.get("status") or {})

    def _set_issuing(self, claim: IdentityClaim, now: datetime) -> None:
        claim.status.phase = PHASE_ISSUING
        self._upsert(
            claim,
            CONDITION_CERTIFICATE_ISSUED,
            CONDITION_FALSE,
            REASON_ISSUING,
            "Waiting for the certificate to be issued",
            now,
        )
        self._upsert(
            claim,
            CONDITION_READY,
            CONDITION_FALSE,
            REASON_ISSUING,
            "Waiting for the certificate to be issued",
            now,
        )

    def _set_ready(
        self,
        claim: IdentityClaim,
        certificate_status: CertificateStatus,
        now: datetime,
    ) -> None:
        status = claim.status
        status.phase = PHASE_READY
        if certificate_status.not_after is not None:
            status.expires_at = certificate_status.not_after
        self._upsert(
            claim,
            CONDITION_CERTIFICATE_ISSUED,
            CONDITION_TRUE,
            REASON_ISSUED,
            "Certificate has been issued",
            now,
        )
        self._upsert(
            claim,
            CONDITION_READY,
            CONDITION_TRUE,
            REASON_READY,
            "Identity is ready",
            now,
        )
        if status.expires_at is not None:
            metrics_collector.update_certificate_expiry(
                claim.namespace, claim.name, status.expires_at.timestamp()
            )

    def _renewal_delay(self, claim: IdentityClaim, now: datetime) -> float:
        """
        Seconds until the renewal check of a ready claim.

        The check runs shortly before expiry; when that moment has passed
        (or the expiry is unknown) a periodic heartbeat is used instead.
        """
        expires_at = claim.status.expires_at
        if expires_at is None:
            return RENEWAL_HEARTBEAT_SECONDS

        renew_at = expires_at - timedelta(seconds=RENEWAL_MARGIN_SECONDS)
        if renew_at > now:
            return (renew_at - now).total_seconds()
        return RENEWAL_HEARTBEAT_SECONDS

    def _upsert(
        self,
        claim: IdentityClaim,
        condition_type: str,
        status: str,
        reason: str,
        message: str,
        now: datetime,
    ) -> None:
        upsert_condition(
            claim.status.conditions,
            condition_type,
            status,
            reason,
            message,
            observed_generation=claim.generation,
            now=now,
        )

    async def _persist_status(
        self, claim: IdentityClaim, observed: IdentityClaimStatus
    ) -> bool:
        """
        Write the claim's status if it differs from what was read.

        Returns:
            True if a write was made

        Raises:
            KubernetesAPIError: If the write was rejected
        """
        if claim.status == observed:
            self.logger.debug(
                f"Status of IdentityClaim {claim.namespace}/{claim.name} unchanged"
            )
            return False

        try:
            await asyncio.to_thread(
                replace_identity_claim_status, claim, self.kubernetes_client
            )
        except ApiException as e:
            raise KubernetesAPIError(
                f"Failed to update status of IdentityClaim "
                f"{claim.namespace}/{claim.name}",
                reason=e.reason,
                status_code=e.status,
                cause=e,
            ) from e

        metrics_collector.update_claim_phase(
            claim.namespace, claim.name, claim.status.phase
        )
        return True


def _error_text(error: Exception) -> str:
    """Short, single-line description of a failure for status messages."""
    if isinstance(error, ApiException):
        return _api_error_message(error)
    if isinstance(error, CertificateIssuanceError):
        return error.message
    return str(error)


def _api_error_message(error: ApiException) -> str:
    """Message of the Status object the API server rejected a call with."""
    fallback = f"{error.status} {error.reason}".strip()
    if not error.body:
        return fallback
    try:
        body = json.loads(error.body)
    except (TypeError, ValueError):
        return fallback
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return fallback
