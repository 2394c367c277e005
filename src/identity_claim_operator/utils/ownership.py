"""
Ownership tracking utilities for managed Certificates.

A managed Certificate carries a controller owner reference to its
IdentityClaim, so the garbage collector removes it together with the claim
and events on the Certificate can be routed back to the owning claim.
"""

from typing import Any

from identity_claim_operator.constants import (
    API_GROUP,
    API_VERSION,
    IDENTITY_CLAIM_KIND,
)
from identity_claim_operator.errors import CertificateOwnershipError
from identity_claim_operator.models.identity_claim import IdentityClaim

CLAIM_API_VERSION = f"{API_GROUP}/{API_VERSION}"


def build_owner_reference(claim: IdentityClaim) -> dict[str, Any]:
    """
    Create the controller owner reference pointing at a claim.

    Args:
        claim: The owning IdentityClaim (must have a UID)

    Returns:
        Owner reference dict in API server (camelCase) form
    """
    return {
        "apiVersion": CLAIM_API_VERSION,
        "kind": IDENTITY_CLAIM_KIND,
        "name": claim.name,
        "uid": claim.metadata.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def get_controller_reference(obj: dict[str, Any]) -> dict[str, Any] | None:
    """Return the controller owner reference of an object, if any."""
    for ref in obj.get("metadata", {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


def set_controller_reference(obj: dict[str, Any], claim: IdentityClaim) -> None:
    """
    Mark an object as controlled by a claim.

    An existing reference to the same claim is refreshed in place. A
    controller reference to anything else is a conflict: a Certificate is
    never shared between claims.

    Args:
        obj: Object (dict form) to modify in place
        claim: The owning IdentityClaim

    Raises:
        CertificateOwnershipError: If another object already controls obj
    """
    metadata = obj.setdefault("metadata", {})
    references = list(metadata.get("ownerReferences") or [])
    owner_ref = build_owner_reference(claim)

    controller = get_controller_reference(obj)
    if controller is not None and controller.get("uid") != owner_ref["uid"]:
        raise CertificateOwnershipError(
            certificate=metadata.get("name", ""),
            namespace=metadata.get("namespace", claim.namespace),
            owner=f"{controller.get('kind')}/{controller.get('name')}",
        )

    for index, ref in enumerate(references):
        if ref.get("uid") == owner_ref["uid"]:
            references[index] = owner_ref
            break
    else:
        references.append(owner_ref)
    metadata["ownerReferences"] = references


def find_claim_owner(obj: dict[str, Any]) -> str | None:
    """
    Find the name of the IdentityClaim controlling an object.

    Args:
        obj: Object body, e.g. a Certificate from a watch event

    Returns:
        The claim name, or None if the object is not controlled by a claim
    """
    controller = get_controller_reference(obj)
    if controller is None:
        return None
    if controller.get("kind") != IDENTITY_CLAIM_KIND:
        return None
    if not str(controller.get("apiVersion", "")).startswith(f"{API_GROUP}/"):
        return None
    return controller.get("name")
