"""
Errors raised while reconciling IdentityClaims.

Each error carries a category, a retry delay and an optional hint for the
claim owner. ``as_kopf_error`` turns it into the exception kopf understands.
Reconcile passes only raise retryable errors, so a broken claim is looked at
again after it has been edited.
"""

import kopf

from identity_claim_operator.constants import (
    CONFLICT_RETRY_DELAY,
    DEFAULT_RETRY_DELAY,
)


class OperatorError(Exception):
    """
    Root of the operator's exceptions.

    Args:
        message: What went wrong
        category: validation, api, issuance, configuration or temporary
        retryable: Ask kopf to retry instead of giving up
        delay: Seconds kopf should wait before the retry
        user_action: Hint appended to the message for the claim owner
        cause: Lower level exception this error wraps
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = DEFAULT_RETRY_DELAY,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self) -> kopf.TemporaryError | kopf.PermanentError:
        if not self.retryable:
            return kopf.PermanentError(str(self))
        return kopf.TemporaryError(str(self), delay=self.delay)

    def __str__(self) -> str:
        if not self.user_action:
            return self.message
        return f"{self.message}\nAction required: {self.user_action}"


class TemporaryError(OperatorError):
    """Transient failure, retried after ``delay`` seconds."""

    def __init__(
        self,
        message: str,
        delay: int = DEFAULT_RETRY_DELAY,
        user_action: str | None = None,
    ):
        super().__init__(
            message=message,
            category="temporary",
            delay=delay,
            user_action=user_action or "None, the operator retries on its own",
        )


class KubernetesAPIError(OperatorError):
    """
    A request to the API server failed.

    Covers write conflicts and connectivity problems. These never move a
    claim to Failed. A 409 is retried sooner since a fresh read resolves it.
    """

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        detail = f"{message} (reason: {reason})" if reason else message
        super().__init__(
            message=f"Kubernetes API error: {detail}",
            category="api",
            delay=CONFLICT_RETRY_DELAY if status_code == 409 else DEFAULT_RETRY_DELAY,
            user_action="Verify the operator's RBAC and its access to the API server",
            cause=cause,
        )
        self.reason = reason
        self.status_code = status_code


class SelectorError(OperatorError):
    """spec.selector of a claim cannot be turned into a label selector."""

    def __init__(self, message: str, field: str | None = None):
        if field:
            message = f"Invalid selector in field '{field}': {message}"
        super().__init__(
            message=message,
            category="validation",
            user_action="Correct spec.selector of the IdentityClaim",
        )
        self.field = field


class CertificateIssuanceError(OperatorError):
    """Writing the claim's Certificate failed."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message=message, category="issuance", cause=cause)


class CertificateOwnershipError(CertificateIssuanceError):
    """The Certificate name is taken by an object another controller owns."""

    def __init__(self, certificate: str, namespace: str, owner: str):
        super().__init__(
            f"Certificate {namespace}/{certificate} is already controlled by {owner}"
        )
        self.certificate = certificate
        self.owner = owner


class ConfigurationError(OperatorError):
    """The operator itself is misconfigured."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Fix the operator's environment settings",
        )
