"""
Handlers package - Contains all Kopf event handlers of the operator.

This package organizes handlers by resource type:
- identity_claim.py: IdentityClaim reconcile loop, spec changes and deletion
- certificate.py: cert-manager Certificate events routed to the owning claim
"""
