"""
Pydantic models for cert-manager Certificate resources.

Only the fields the operator writes (desired spec) or reads (Ready
condition and expiry) are modelled. Extra fields returned by the API
server are ignored on read.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from identity_claim_operator.constants import (
    CONDITION_READY,
    CONDITION_TRUE,
    PRIVATE_KEY_ALGORITHM,
    PRIVATE_KEY_SIZE,
)


class CertificateIssuerRef(BaseModel):
    """Issuer reference written into Certificate.spec.issuerRef."""

    name: str
    kind: str
    group: str


class CertificatePrivateKey(BaseModel):
    """Private key parameters; fixed to ECDSA P-256."""

    algorithm: str = PRIVATE_KEY_ALGORITHM
    size: int = PRIVATE_KEY_SIZE


class CertificateSpec(BaseModel):
    """Desired state of the managed Certificate."""

    model_config = ConfigDict(populate_by_name=True)

    secret_name: str = Field(..., alias="secretName")
    duration: str = Field(..., description="Total validity, Go duration string")
    renew_before: str = Field(
        ..., alias="renewBefore", description="Renewal lead time, Go duration string"
    )
    uris: list[str] = Field(..., description="Subject URI SANs")
    common_name: str = Field(..., alias="commonName")
    issuer_ref: CertificateIssuerRef = Field(..., alias="issuerRef")
    private_key: CertificatePrivateKey = Field(
        default_factory=CertificatePrivateKey, alias="privateKey"
    )


class CertificateCondition(BaseModel):
    """Condition reported by cert-manager on a Certificate."""

    type: str
    status: str
    reason: str | None = None
    message: str | None = None


class CertificateStatus(BaseModel):
    """Observed state of a Certificate, produced by cert-manager."""

    model_config = ConfigDict(populate_by_name=True)

    conditions: list[CertificateCondition] = Field(default_factory=list)
    not_after: datetime | None = Field(None, alias="notAfter")

    @property
    def is_ready(self) -> bool:
        """True when the Ready condition is True."""
        return any(
            c.type == CONDITION_READY and c.status == CONDITION_TRUE
            for c in self.conditions
        )
