"""
Label selector evaluation for IdentityClaims.

Compiles a metav1.LabelSelector into the string form accepted by the
Kubernetes list API and counts the pods it matches. A structurally invalid
selector raises SelectorError; it is never reported as zero matches.
"""

import logging
import re

from kubernetes import client

from identity_claim_operator.constants import (
    SELECTOR_OP_DOES_NOT_EXIST,
    SELECTOR_OP_EXISTS,
    SELECTOR_OP_IN,
    SELECTOR_OP_NOT_IN,
)
from identity_claim_operator.errors import SelectorError
from identity_claim_operator.models.identity_claim import LabelSelector

logger = logging.getLogger(__name__)

# Qualified name segment: alphanumeric at both ends, -_. inside, max 63 chars
_NAME_PATTERN = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]$")
# DNS-1123 subdomain used as an optional key prefix
_PREFIX_PATTERN = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)
_MAX_NAME_LENGTH = 63
_MAX_PREFIX_LENGTH = 253


def validate_label_key(key: str) -> None:
    """
    Validate a label key ([prefix/]name).

    Raises:
        SelectorError: If the key is not a valid qualified name
    """
    prefix, _, name = key.rpartition("/")
    if "/" in key and not prefix:
        raise SelectorError(f"label key {key!r} has an empty prefix")
    if prefix:
        if len(prefix) > _MAX_PREFIX_LENGTH or not _PREFIX_PATTERN.match(prefix):
            raise SelectorError(
                f"label key {key!r} prefix must be a DNS-1123 subdomain"
            )
    if not name or len(name) > _MAX_NAME_LENGTH or not _NAME_PATTERN.match(name):
        raise SelectorError(
            f"label key {key!r} is invalid: name part must be 1-63 characters, "
            "alphanumeric at both ends with '-', '_' or '.' in between"
        )


def validate_label_value(key: str, value: str) -> None:
    """
    Validate a label value; empty values are allowed.

    Raises:
        SelectorError: If the value is not a valid label value
    """
    if not value:
        return
    if len(value) > _MAX_NAME_LENGTH or not _NAME_PATTERN.match(value):
        raise SelectorError(
            f"value {value!r} for label {key!r} is invalid: must be at most 63 "
            "characters, alphanumeric at both ends with '-', '_' or '.' in between"
        )


def compile_label_selector(selector: LabelSelector) -> str:
    """
    Compile a LabelSelector into a label-selector query string.

    Requirements are sorted by key, as the API machinery does. An empty
    selector compiles to "" and matches every pod.

    Args:
        selector: The claim's label selector

    Returns:
        Selector string such as "app=web,tier in (backend,cache)"

    Raises:
        SelectorError: On an unknown operator, wrong value arity, or an
            invalid label key or value
    """
    requirements: list[tuple[str, str]] = []

    for key, value in selector.match_labels.items():
        validate_label_key(key)
        validate_label_value(key, value)
        requirements.append((key, f"{key}={value}"))

    for index, expression in enumerate(selector.match_expressions):
        field = f"matchExpressions[{index}]"
        key = expression.key
        validate_label_key(key)
        values = expression.values

        if expression.operator in (SELECTOR_OP_IN, SELECTOR_OP_NOT_IN):
            if not values:
                raise SelectorError(
                    f"values must be non-empty for operator {expression.operator}",
                    field=field,
                )
            for value in values:
                validate_label_value(key, value)
            keyword = "in" if expression.operator == SELECTOR_OP_IN else "notin"
            joined = ",".join(sorted(set(values)))
            requirements.append((key, f"{key} {keyword} ({joined})"))
        elif expression.operator in (SELECTOR_OP_EXISTS, SELECTOR_OP_DOES_NOT_EXIST):
            if values:
                raise SelectorError(
                    f"values must be empty for operator {expression.operator}",
                    field=field,
                )
            prefix = "" if expression.operator == SELECTOR_OP_EXISTS else "!"
            requirements.append((key, f"{prefix}{key}"))
        else:
            raise SelectorError(
                f"{expression.operator!r} is not a valid label selector operator",
                field=field,
            )

    requirements.sort(key=lambda item: item[0])
    return ",".join(term for _, term in requirements)


def count_matching_pods(
    namespace: str, selector: LabelSelector, k8s_client: client.ApiClient
) -> int:
    """
    Count pods in a namespace matching a label selector.

    Args:
        namespace: Namespace of the claim
        selector: The claim's label selector
        k8s_client: Kubernetes API client

    Returns:
        Number of matching pods in the observed snapshot

    Raises:
        SelectorError: If the selector cannot be compiled
        ApiException: If listing pods fails
    """
    label_selector = compile_label_selector(selector)
    core_api = client.CoreV1Api(k8s_client)
    pods = core_api.list_namespaced_pod(
        namespace=namespace, label_selector=label_selector
    )
    count = len(pods.items)
    logger.debug(
        f"Selector '{label_selector}' matched {count} pod(s) in namespace {namespace}"
    )
    return count
