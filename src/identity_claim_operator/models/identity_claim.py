"""
Pydantic models for IdentityClaim resources.

This module defines type-safe data models for the IdentityClaim custom
resource: the user-owned spec (label selector, TTL, optional issuer) and
the operator-owned status (phase, identity URI, certificate reference,
expiry and conditions).
"""

from datetime import datetime
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)

from identity_claim_operator.constants import (
    API_GROUP,
    API_VERSION,
    CERT_MANAGER_GROUP,
    IDENTITY_CLAIM_FINALIZER,
    IDENTITY_CLAIM_KIND,
    ISSUER_REF_DEFAULT_KIND,
)

from .common import Condition, ObjectMeta


class LabelSelectorRequirement(BaseModel):
    """A set-based selector requirement (key, operator, values)."""

    key: str = Field(..., description="Label key the requirement applies to")
    # Kept as a plain string: operator validation belongs to the selector
    # evaluator so that a bad operator surfaces as a SelectorError.
    operator: str = Field(..., description="In, NotIn, Exists or DoesNotExist")
    values: list[str] = Field(default_factory=list, description="Values to match")

    @field_validator("values", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v


class LabelSelector(BaseModel):
    """Label query over pods (metav1.LabelSelector)."""

    model_config = ConfigDict(populate_by_name=True)

    match_labels: dict[str, str] = Field(
        default_factory=dict,
        alias="matchLabels",
        description="Label equality terms",
    )
    match_expressions: list[LabelSelectorRequirement] = Field(
        default_factory=list,
        alias="matchExpressions",
        description="Set-based requirements",
    )

    @field_validator("match_labels", "match_expressions", mode="before")
    @classmethod
    def none_as_empty(cls, v, info):
        if v is None:
            return {} if info.field_name == "match_labels" else []
        return v


class IssuerRef(BaseModel):
    """Reference to a cert-manager Issuer or ClusterIssuer."""

    name: str = Field(..., description="Name of the issuer")
    kind: str = Field(ISSUER_REF_DEFAULT_KIND, description="Issuer or ClusterIssuer")
    group: str = Field(CERT_MANAGER_GROUP, description="API group of the issuer")


class IdentityClaimSpec(BaseModel):
    """
    Desired state of an IdentityClaim.

    TTL bounds are enforced by the CRD schema at admission time; the
    operator only parses the duration string.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    selector: LabelSelector = Field(
        default_factory=LabelSelector,
        description="Pods that should receive the identity",
    )
    ttl: str | None = Field(
        None, description="Certificate validity as a duration string, e.g. '1h'"
    )
    issuer_ref: IssuerRef | None = Field(
        None,
        alias="issuerRef",
        description="Issuer for the certificate (defaults to the cluster issuer)",
    )


class IdentityClaimStatus(BaseModel):
    """
    Observed state of an IdentityClaim.

    Conditions are held as a map keyed by condition type, in insertion
    order, and serialized to the list form Kubernetes expects.
    """

    model_config = ConfigDict(populate_by_name=True)

    phase: str | None = Field(None, description="Pending, Issuing, Ready or Failed")
    identity_uri: str | None = Field(
        None, alias="identityURI", description="SPIFFE identity assigned to the claim"
    )
    certificate_ref: str | None = Field(
        None,
        alias="certificateRef",
        description="Name of the managed Certificate and its Secret",
    )
    expires_at: datetime | None = Field(
        None, alias="expiresAt", description="Expiry of the current certificate"
    )
    conditions: dict[str, Condition] = Field(
        default_factory=dict, description="Status conditions keyed by type"
    )

    @field_validator("conditions", mode="before")
    @classmethod
    def index_conditions(cls, v):
        if v is None:
            return {}
        if isinstance(v, dict):
            return v
        indexed: dict[str, Any] = {}
        for item in v:
            condition_type = (
                item.get("type") if isinstance(item, dict) else item.type
            )
            indexed[condition_type] = item
        return indexed

    @field_serializer("conditions")
    def serialize_conditions(self, conditions: dict[str, Condition]) -> list[Condition]:
        return list(conditions.values())


class IdentityClaim(BaseModel):
    """A complete IdentityClaim resource as read from the API server."""

    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(f"{API_GROUP}/{API_VERSION}", alias="apiVersion")
    kind: str = Field(IDENTITY_CLAIM_KIND)
    metadata: ObjectMeta
    spec: IdentityClaimSpec = Field(default_factory=IdentityClaimSpec)
    status: IdentityClaimStatus = Field(default_factory=IdentityClaimStatus)

    @field_validator("status", "spec", mode="before")
    @classmethod
    def none_as_default(cls, v):
        return {} if v is None else v

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace or "default"

    @property
    def generation(self) -> int | None:
        return self.metadata.generation

    @property
    def is_being_deleted(self) -> bool:
        return bool(self.metadata.deletion_timestamp)

    @property
    def has_finalizer(self) -> bool:
        return IDENTITY_CLAIM_FINALIZER in (self.metadata.finalizers or [])

    def to_resource(self) -> dict[str, Any]:
        """Serialize back to the camelCase dict the API server expects."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
