"""
Desired cert-manager Certificate for an IdentityClaim.

Everything here is a pure function of the claim and the operator
configuration: the same claim always yields the same Certificate spec, so
repeated passes do not cause spurious writes.
"""

from datetime import timedelta
from typing import Any

from identity_claim_operator.constants import (
    CERTIFICATE_NAME_SUFFIX,
    DEFAULT_CERTIFICATE_DURATION_SECONDS,
    IDENTITY_URI_SCHEME,
    RENEW_BEFORE_DIVISOR,
)
from identity_claim_operator.models.certificate import (
    CertificateIssuerRef,
    CertificatePrivateKey,
    CertificateSpec,
)
from identity_claim_operator.models.identity_claim import IdentityClaim
from identity_claim_operator.utils.duration import format_duration, parse_duration


def certificate_name(claim_name: str) -> str:
    """Name of the Certificate (and its Secret) managed for a claim."""
    return f"{claim_name}{CERTIFICATE_NAME_SUFFIX}"


def identity_uri(trust_domain: str, namespace: str, name: str) -> str:
    """SPIFFE identity of a claim: spiffe://<trust-domain>/ns/<ns>/ic/<name>."""
    return f"{IDENTITY_URI_SCHEME}://{trust_domain}/ns/{namespace}/ic/{name}"


def certificate_duration(ttl: str | None) -> timedelta:
    """
    Resolve the validity period requested by a claim.

    Args:
        ttl: Duration string from spec.ttl, may be unset

    Returns:
        The parsed TTL, or one hour when unset or zero

    Raises:
        ValueError: If the TTL cannot be parsed or is negative
    """
    if not ttl:
        return timedelta(seconds=DEFAULT_CERTIFICATE_DURATION_SECONDS)

    duration = parse_duration(ttl)
    if duration < timedelta(0):
        raise ValueError(f"ttl must not be negative, got {ttl!r}")
    if duration == timedelta(0):
        return timedelta(seconds=DEFAULT_CERTIFICATE_DURATION_SECONDS)
    return duration


def build_certificate_spec(
    claim: IdentityClaim, default_issuer: CertificateIssuerRef
) -> CertificateSpec:
    """
    Build the desired Certificate spec for a claim.

    The certificate carries the claim's identity URI as its only URI SAN,
    renews at two thirds of its lifetime and always uses an ECDSA P-256 key.

    Args:
        claim: The IdentityClaim; status.identityURI and
            status.certificateRef are used when already assigned
        default_issuer: Issuer used when the claim does not name one

    Returns:
        The desired CertificateSpec

    Raises:
        ValueError: If the claim's TTL is invalid
    """
    duration = certificate_duration(claim.spec.ttl)
    renew_before = duration / RENEW_BEFORE_DIVISOR

    name = claim.status.certificate_ref or certificate_name(claim.name)
    uri = claim.status.identity_uri
    if not uri:
        raise ValueError(
            f"IdentityClaim {claim.namespace}/{claim.name} has no identity URI"
        )

    if claim.spec.issuer_ref is not None:
        issuer = CertificateIssuerRef(
            name=claim.spec.issuer_ref.name,
            kind=claim.spec.issuer_ref.kind,
            group=claim.spec.issuer_ref.group,
        )
    else:
        issuer = default_issuer

    return CertificateSpec(
        secret_name=name,
        duration=format_duration(duration),
        renew_before=format_duration(renew_before),
        uris=[uri],
        common_name=claim.name,
        issuer_ref=issuer,
        private_key=CertificatePrivateKey(),
    )


def apply_certificate_spec(body: dict[str, Any], spec: CertificateSpec) -> None:
    """
    Write a desired spec into a Certificate body in place.

    Only the fields the operator owns are set; anything else under spec
    (defaults filled in by cert-manager) is left untouched.
    """
    current = body.setdefault("spec", {})
    current.update(spec.model_dump(by_alias=True, mode="json"))
