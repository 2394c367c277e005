"""
IdentityClaim Operator - SPIFFE workload identities for Kubernetes pods.

This operator turns declarative IdentityClaim resources into cert-manager
Certificates carrying a SPIFFE identity URI, with:
- Label-selector based workload verification
- Level-triggered reconciliation with explicit requeue scheduling
- Renewal re-checks before certificate expiry
- Finalizer-guarded cleanup of managed certificates
"""

__version__ = "0.1.0"
