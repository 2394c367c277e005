"""
Constants used throughout the IdentityClaim operator.

This module defines all constant values used by the operator including:
- API coordinates for IdentityClaims and cert-manager Certificates
- Finalizer names for cleanup coordination
- Status phases, condition types and condition reasons
- Requeue intervals for the reconciliation loop
"""

import logging
import os

# IdentityClaim custom resource coordinates
API_GROUP = "identity.cluster.local"
API_VERSION = "v1alpha1"
IDENTITY_CLAIM_KIND = "IdentityClaim"
IDENTITY_CLAIM_PLURAL = "identityclaims"

# cert-manager Certificate coordinates
CERT_MANAGER_GROUP = "cert-manager.io"
CERT_MANAGER_VERSION = "v1"
CERTIFICATE_KIND = "Certificate"
CERTIFICATE_PLURAL = "certificates"

# Finalizer preventing claim removal until the managed certificate is gone
IDENTITY_CLAIM_FINALIZER = "identity.cluster.local/finalizer"

# Identity construction
IDENTITY_URI_SCHEME = "spiffe"
DEFAULT_TRUST_DOMAIN = "cluster.local"
CERTIFICATE_NAME_SUFFIX = "-identity"

# Status phase constants
PHASE_PENDING = "Pending"
PHASE_ISSUING = "Issuing"
PHASE_READY = "Ready"
PHASE_FAILED = "Failed"

# Condition type constants
CONDITION_READY = "Ready"
CONDITION_CERTIFICATE_ISSUED = "CertificateIssued"
CONDITION_PODS_VERIFIED = "PodsVerified"

# Condition status constants
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

# Condition reasons
REASON_PODS_FOUND = "PodsFound"
REASON_NO_PODS = "NoPods"
REASON_SELECTOR_ERROR = "SelectorError"
REASON_CERTIFICATE_FAILED = "CertificateFailed"
REASON_ISSUING = "Issuing"
REASON_ISSUED = "Issued"
REASON_READY = "Ready"

# Certificate defaults
DEFAULT_CERTIFICATE_DURATION_SECONDS = 3600  # 1h
RENEW_BEFORE_DIVISOR = 3
DEFAULT_ISSUER_NAME = "selfsigned-issuer"
DEFAULT_ISSUER_KIND = "ClusterIssuer"
DEFAULT_ISSUER_GROUP = CERT_MANAGER_GROUP
ISSUER_REF_DEFAULT_KIND = "Issuer"
PRIVATE_KEY_ALGORITHM = "ECDSA"
PRIVATE_KEY_SIZE = 256

# Requeue intervals (in seconds)
NO_PODS_REQUEUE_SECONDS = 30
ISSUING_REQUEUE_SECONDS = 5
RENEWAL_MARGIN_SECONDS = 600  # re-check 10 minutes before expiry
RENEWAL_HEARTBEAT_SECONDS = 1800  # 30 minutes

# Retry delays for failed passes (in seconds)
DEFAULT_RETRY_DELAY = 30
CONFLICT_RETRY_DELAY = 5

# Label selector operators (metav1.LabelSelectorOperator)
SELECTOR_OP_IN = "In"
SELECTOR_OP_NOT_IN = "NotIn"
SELECTOR_OP_EXISTS = "Exists"
SELECTOR_OP_DOES_NOT_EXIST = "DoesNotExist"

# Handler entry logging level (INFO by default, DEBUG to reduce noise)
HANDLER_ENTRY_LOG_LEVEL = getattr(
    logging, os.getenv("HANDLER_ENTRY_LOG_LEVEL", "INFO").upper(), logging.INFO
)
