"""Entry logging shared by the kopf handlers."""

import logging
from typing import Any

from identity_claim_operator.constants import HANDLER_ENTRY_LOG_LEVEL

logger = logging.getLogger(__name__)


def log_handler_entry(
    handler_type: str,
    resource_type: str,
    name: str,
    namespace: str,
    extra: dict[str, Any] | None = None,
) -> None:
    """Record that a handler fired for a resource.

    Entry lines are logged at HANDLER_ENTRY_LOG_LEVEL so busy clusters can
    push them down to DEBUG.

    Args:
        handler_type: daemon, spec-change, delete or event
        resource_type: identityclaim or certificate
        name: Name of the resource the handler fired for
        namespace: Namespace of that resource
        extra: Further structured fields for the record
    """
    fields = {
        "handler_type": handler_type,
        "resource_type": resource_type,
        "resource_name": name,
        "namespace": namespace,
        **(extra or {}),
    }
    logger.log(
        HANDLER_ENTRY_LOG_LEVEL,
        f"{handler_type} handler fired for {resource_type} {namespace}/{name}",
        extra=fields,
    )
