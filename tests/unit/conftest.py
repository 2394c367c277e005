"""Shared pytest fixtures: an in-memory Kubernetes API for reconciler tests."""

import copy
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from identity_claim_operator.constants import (
    API_GROUP,
    API_VERSION,
    CERT_MANAGER_GROUP,
    CERT_MANAGER_VERSION,
    CERTIFICATE_KIND,
    CERTIFICATE_PLURAL,
    IDENTITY_CLAIM_FINALIZER,
    IDENTITY_CLAIM_KIND,
    IDENTITY_CLAIM_PLURAL,
)
from identity_claim_operator.models.certificate import CertificateIssuerRef
from identity_claim_operator.services.identity_claim_reconciler import (
    IdentityClaimReconciler,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
NAMESPACE = "default"
CLAIM_NAME = "web"
CLAIM_UID = "0f5c6a2e-claim-uid"

DEFAULT_ISSUER = CertificateIssuerRef(
    name="selfsigned-issuer", kind="ClusterIssuer", group="cert-manager.io"
)


class FakeCluster:
    """
    In-memory stand-in for CustomObjectsApi.

    Objects are stored per (plural, namespace, name). Writes bump
    resourceVersion and honour optimistic concurrency like the API server:
    a write carrying a stale resourceVersion is rejected with 409.
    """

    def __init__(self):
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.failures: dict[str, ApiException] = {}
        self._version = 100

    # -- helpers used by tests -------------------------------------------

    def add(self, plural: str, body: dict[str, Any]) -> dict[str, Any]:
        body = copy.deepcopy(body)
        metadata = body.setdefault("metadata", {})
        metadata["resourceVersion"] = self._next_version()
        self.objects[(plural, metadata["namespace"], metadata["name"])] = body
        return body

    def get(self, plural: str, name: str, namespace: str = NAMESPACE):
        return self.objects.get((plural, namespace, name))

    def claim(self, name: str = CLAIM_NAME) -> dict[str, Any] | None:
        return self.get(IDENTITY_CLAIM_PLURAL, name)

    def certificate(self, name: str) -> dict[str, Any] | None:
        return self.get(CERTIFICATE_PLURAL, name)

    def count(self, method: str, plural: str | None = None) -> int:
        return sum(
            1
            for call_method, call_plural, _ in self.calls
            if call_method == method and (plural is None or call_plural == plural)
        )

    def fail_next(self, method: str, error: ApiException) -> None:
        self.failures[method] = error

    def mark_certificate_ready(self, name: str, not_after: str | None) -> None:
        body = self.objects[(CERTIFICATE_PLURAL, NAMESPACE, name)]
        body["status"] = {
            "conditions": [{"type": "Ready", "status": "True", "reason": "Ready"}],
        }
        if not_after is not None:
            body["status"]["notAfter"] = not_after
        body["metadata"]["resourceVersion"] = self._next_version()

    # -- CustomObjectsApi surface ----------------------------------------

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        self._record("get", plural, name)
        return copy.deepcopy(self._existing(plural, namespace, name))

    def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        name = body["metadata"]["name"]
        self._record("create", plural, name)
        if (plural, namespace, name) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        stored = copy.deepcopy(body)
        stored["metadata"]["uid"] = f"{name}-uid"
        stored["metadata"]["generation"] = 1
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.objects[(plural, namespace, name)] = stored
        return copy.deepcopy(stored)

    def replace_namespaced_custom_object(
        self, group, version, namespace, plural, name, body
    ):
        self._record("replace", plural, name)
        current = self._existing(plural, namespace, name)
        self._check_version(current, body)
        stored = copy.deepcopy(body)
        stored["status"] = copy.deepcopy(current.get("status"))
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.objects[(plural, namespace, name)] = stored
        return copy.deepcopy(stored)

    def replace_namespaced_custom_object_status(
        self, group, version, namespace, plural, name, body
    ):
        self._record("replace_status", plural, name)
        current = self._existing(plural, namespace, name)
        self._check_version(current, body)
        current["status"] = copy.deepcopy(body.get("status"))
        current["metadata"]["resourceVersion"] = self._next_version()
        return copy.deepcopy(current)

    def patch_namespaced_custom_object(
        self, group, version, namespace, plural, name, body
    ):
        self._record("patch", plural, name)
        current = self._existing(plural, namespace, name)
        self._check_version(current, body)
        metadata = current["metadata"]
        if "finalizers" in body.get("metadata", {}):
            metadata["finalizers"] = list(body["metadata"]["finalizers"])
        metadata["resourceVersion"] = self._next_version()
        # The API server removes a deleted object once its last finalizer is gone
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            del self.objects[(plural, namespace, name)]
        return copy.deepcopy(current)

    def delete_namespaced_custom_object(self, group, version, namespace, plural, name):
        self._record("delete", plural, name)
        self._existing(plural, namespace, name)
        del self.objects[(plural, namespace, name)]
        return {"status": "Success"}

    # -- internals --------------------------------------------------------

    def _record(self, method: str, plural: str, name: str) -> None:
        self.calls.append((method, plural, name))
        error = self.failures.pop(method, None)
        if error is not None:
            raise error

    def _existing(self, plural, namespace, name) -> dict[str, Any]:
        body = self.objects.get((plural, namespace, name))
        if body is None:
            raise ApiException(status=404, reason="Not Found")
        return body

    def _check_version(self, current, body) -> None:
        sent = body.get("metadata", {}).get("resourceVersion")
        if sent is not None and sent != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)


class FakePods:
    """In-memory stand-in for CoreV1Api.list_namespaced_pod."""

    def __init__(self, count: int = 1):
        self.count = count
        self.selectors: list[str] = []
        self.error: ApiException | None = None

    def list_namespaced_pod(self, namespace, label_selector=""):
        self.selectors.append(label_selector)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            items=[SimpleNamespace(name=f"pod-{i}") for i in range(self.count)]
        )


def make_claim(
    name: str = CLAIM_NAME,
    namespace: str = NAMESPACE,
    selector: dict[str, Any] | None = None,
    ttl: str | None = None,
    issuer_ref: dict[str, Any] | None = None,
    finalizers: list[str] | None = None,
    status: dict[str, Any] | None = None,
    deletion_timestamp: str | None = None,
    uid: str = CLAIM_UID,
) -> dict[str, Any]:
    """Build an IdentityClaim body as the API server would return it."""
    spec: dict[str, Any] = {
        "selector": selector
        if selector is not None
        else {"matchLabels": {"app": name}}
    }
    if ttl is not None:
        spec["ttl"] = ttl
    if issuer_ref is not None:
        spec["issuerRef"] = issuer_ref

    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "uid": uid,
        "generation": 1,
    }
    if finalizers is not None:
        metadata["finalizers"] = finalizers
    if deletion_timestamp is not None:
        metadata["deletionTimestamp"] = deletion_timestamp

    body: dict[str, Any] = {
        "apiVersion": f"{API_GROUP}/{API_VERSION}",
        "kind": IDENTITY_CLAIM_KIND,
        "metadata": metadata,
        "spec": spec,
    }
    if status is not None:
        body["status"] = status
    return body


def initialized_status(name: str = CLAIM_NAME) -> dict[str, Any]:
    """Status of a claim that has passed initialization."""
    return {
        "phase": "Pending",
        "identityURI": f"spiffe://cluster.local/ns/{NAMESPACE}/ic/{name}",
        "certificateRef": f"{name}-identity",
    }


def make_certificate(
    name: str, owner_uid: str, owner_kind: str = IDENTITY_CLAIM_KIND
) -> dict[str, Any]:
    """Build a Certificate body controlled by the given owner."""
    return {
        "apiVersion": f"{CERT_MANAGER_GROUP}/{CERT_MANAGER_VERSION}",
        "kind": CERTIFICATE_KIND,
        "metadata": {
            "name": name,
            "namespace": NAMESPACE,
            "ownerReferences": [
                {
                    "apiVersion": f"{API_GROUP}/{API_VERSION}",
                    "kind": owner_kind,
                    "name": "someone-else",
                    "uid": owner_uid,
                    "controller": True,
                }
            ],
        },
        "spec": {"secretName": name},
    }


@pytest.fixture
def cluster():
    """Patch CustomObjectsApi with an in-memory cluster."""
    fake = FakeCluster()
    with patch(
        "identity_claim_operator.utils.kubernetes.client.CustomObjectsApi",
        return_value=fake,
    ):
        yield fake


@pytest.fixture
def pods():
    """Patch CoreV1Api with a configurable pod lister."""
    fake = FakePods(count=2)
    with patch(
        "identity_claim_operator.utils.selectors.client.CoreV1Api",
        return_value=fake,
    ):
        yield fake


@pytest.fixture
def reconciler(cluster, pods):
    """IdentityClaimReconciler wired to the fakes with a frozen clock."""
    return IdentityClaimReconciler(
        k8s_client=MagicMock(),
        trust_domain="cluster.local",
        default_issuer=DEFAULT_ISSUER,
        clock=lambda: NOW,
    )


@pytest.fixture
def finalized_claim(cluster):
    """A claim carrying the operator finalizer and an initialized status."""
    return cluster.add(
        IDENTITY_CLAIM_PLURAL,
        make_claim(
            finalizers=[IDENTITY_CLAIM_FINALIZER], status=initialized_status()
        ),
    )
