"""
Service layer for the IdentityClaim operator.

This module provides reconciler services that handle the business logic
for managing IdentityClaims, separated from the kopf handler layer.
"""

from .base_reconciler import BaseReconciler, ReconcileResult
from .identity_claim_reconciler import IdentityClaimReconciler

__all__ = [
    "BaseReconciler",
    "ReconcileResult",
    "IdentityClaimReconciler",
]
