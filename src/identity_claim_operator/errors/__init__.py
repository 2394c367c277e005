"""
Error handling module for the IdentityClaim operator.

This module provides an error hierarchy that integrates with kopf
and provides clear categorization for different types of failures.
"""

from .operator_errors import (
    CertificateIssuanceError,
    CertificateOwnershipError,
    ConfigurationError,
    KubernetesAPIError,
    OperatorError,
    SelectorError,
    TemporaryError,
)

__all__ = [
    "OperatorError",
    "TemporaryError",
    "KubernetesAPIError",
    "SelectorError",
    "CertificateIssuanceError",
    "CertificateOwnershipError",
    "ConfigurationError",
]
