"""
API access for IdentityClaims and their cert-manager Certificates.

All calls are synchronous kubernetes client calls. Reads of a missing
object return None. Any other ApiException propagates to the reconciler,
which decides how the pass fails.
"""

import copy
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from identity_claim_operator.constants import (
    API_GROUP,
    API_VERSION,
    CERT_MANAGER_GROUP,
    CERT_MANAGER_VERSION,
    CERTIFICATE_KIND,
    CERTIFICATE_PLURAL,
    IDENTITY_CLAIM_PLURAL,
)
from identity_claim_operator.models.identity_claim import IdentityClaim

logger = logging.getLogger(__name__)

CLAIMS = {"group": API_GROUP, "version": API_VERSION, "plural": IDENTITY_CLAIM_PLURAL}
CERTIFICATES = {
    "group": CERT_MANAGER_GROUP,
    "version": CERT_MANAGER_VERSION,
    "plural": CERTIFICATE_PLURAL,
}


class OperationResult(str, Enum):
    """What create_or_update_certificate did."""

    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"


def get_kubernetes_client() -> client.ApiClient:
    """Build an API client from in-cluster credentials or the kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        try:
            config.load_kube_config()
        except config.ConfigException as e:
            logger.error(f"No Kubernetes credentials available: {e}")
            raise
    return client.ApiClient()


def _not_found(error: ApiException) -> bool:
    return error.status == 404


def get_identity_claim(
    name: str, namespace: str, k8s_client: client.ApiClient
) -> IdentityClaim | None:
    """Fetch and parse a claim, None when it is gone."""
    api = client.CustomObjectsApi(k8s_client)
    try:
        body = api.get_namespaced_custom_object(
            namespace=namespace, name=name, **CLAIMS
        )
    except ApiException as e:
        if _not_found(e):
            return None
        raise
    return IdentityClaim.model_validate(body)


def patch_identity_claim_finalizers(
    claim: IdentityClaim, finalizers: list[str], k8s_client: client.ApiClient
) -> dict[str, Any]:
    """
    Set the finalizers of a claim.

    The resourceVersion read at the start of the pass goes with the patch,
    so an interleaved write fails it with 409 Conflict.
    """
    patch = {
        "metadata": {
            "finalizers": finalizers,
            "resourceVersion": claim.metadata.resource_version,
        }
    }
    return client.CustomObjectsApi(k8s_client).patch_namespaced_custom_object(
        namespace=claim.namespace, name=claim.name, body=patch, **CLAIMS
    )


def replace_identity_claim_status(
    claim: IdentityClaim, k8s_client: client.ApiClient
) -> dict[str, Any]:
    """
    Write the status sub-resource of a claim.

    The full object is sent. The status endpoint keeps only its status and
    checks its resourceVersion.
    """
    return client.CustomObjectsApi(k8s_client).replace_namespaced_custom_object_status(
        namespace=claim.namespace, name=claim.name, body=claim.to_resource(), **CLAIMS
    )


def get_certificate(
    name: str, namespace: str, k8s_client: client.ApiClient
) -> dict[str, Any] | None:
    """Raw Certificate body, None when it does not exist."""
    api = client.CustomObjectsApi(k8s_client)
    try:
        return api.get_namespaced_custom_object(
            namespace=namespace, name=name, **CERTIFICATES
        )
    except ApiException as e:
        if _not_found(e):
            return None
        raise


def create_or_update_certificate(
    name: str,
    namespace: str,
    mutate: Callable[[dict[str, Any]], None],
    k8s_client: client.ApiClient,
) -> OperationResult:
    """
    Converge a Certificate through a mutate callback.

    ``mutate`` edits the object in place. It gets the live object, or a
    skeleton holding only apiVersion, kind and metadata when none exists.
    A live object is written back only if the callback changed it, and the
    write carries the resourceVersion that was read.

    Args:
        name: Certificate name
        namespace: Certificate namespace
        mutate: Applies the desired state to the object
        k8s_client: Kubernetes API client

    Returns:
        Whether the Certificate was created, updated or left as it was
    """
    api = client.CustomObjectsApi(k8s_client)
    current = get_certificate(name, namespace, k8s_client)

    if current is None:
        fresh: dict[str, Any] = {
            "apiVersion": f"{CERT_MANAGER_GROUP}/{CERT_MANAGER_VERSION}",
            "kind": CERTIFICATE_KIND,
            "metadata": {"name": name, "namespace": namespace},
        }
        mutate(fresh)
        api.create_namespaced_custom_object(
            namespace=namespace, body=fresh, **CERTIFICATES
        )
        logger.info(f"Created Certificate {namespace}/{name}")
        return OperationResult.CREATED

    desired = copy.deepcopy(current)
    mutate(desired)
    if desired == current:
        return OperationResult.UNCHANGED

    api.replace_namespaced_custom_object(
        namespace=namespace, name=name, body=desired, **CERTIFICATES
    )
    logger.info(f"Updated Certificate {namespace}/{name}")
    return OperationResult.UPDATED


def delete_certificate(
    name: str, namespace: str, k8s_client: client.ApiClient
) -> bool:
    """Delete a Certificate. Returns False when it was already absent."""
    try:
        client.CustomObjectsApi(k8s_client).delete_namespaced_custom_object(
            namespace=namespace, name=name, **CERTIFICATES
        )
    except ApiException as e:
        if _not_found(e):
            return False
        raise
    return True
