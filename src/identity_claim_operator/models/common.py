"""
Common models shared across different resource types.

This module defines shared data structures used by the IdentityClaim and
Certificate models: trimmed object metadata and status conditions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ObjectMeta(BaseModel):
    """
    Subset of Kubernetes object metadata read by the operator.

    Unknown keys (labels, annotations, managedFields, ...) are kept so a
    full-object write sends back what the API server returned.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = Field(..., description="Object name")
    namespace: str | None = Field(None, description="Object namespace")
    uid: str | None = Field(None, description="Object UID")
    generation: int | None = Field(None, description="Spec generation")
    resource_version: str | None = Field(
        None, alias="resourceVersion", description="Optimistic concurrency token"
    )
    finalizers: list[str] | None = Field(None, description="Deletion guards")
    deletion_timestamp: str | None = Field(
        None,
        alias="deletionTimestamp",
        description="Set by the API server once deletion was requested",
    )
    owner_references: list[dict[str, Any]] | None = Field(
        None, alias="ownerReferences", description="Owning objects"
    )


class Condition(BaseModel):
    """A typed, timestamped status condition (metav1.Condition)."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., description="Condition type, unique per status")
    status: str = Field(..., description="True, False or Unknown")
    reason: str = Field("", description="Machine-readable CamelCase reason")
    message: str = Field("", description="Human-readable details")
    observed_generation: int | None = Field(
        None,
        alias="observedGeneration",
        description="Spec generation the condition was computed from",
    )
    last_transition_time: datetime = Field(
        ...,
        alias="lastTransitionTime",
        description="Last time the status value changed",
    )
