"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_CONFIGURATION_INVALID,
    COND_IMMUTABILITY_FAILED,
    COND_PROVISIONING_FAILED,
    COND_READY,
    COND_ROTATION_FAILED,
)

FAILURE_CONDITIONS = (
    COND_PROVISIONING_FAILED,
    COND_IMMUTABILITY_FAILED,
    COND_ROTATION_FAILED,
    COND_CONFIGURATION_INVALID,
)


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    lastTransitionTime only moves when the status of the condition changes.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        observed_generation: Generation when condition was observed

    Returns:
        Updated list of conditions
    """
    now = datetime.now(timezone.utc).isoformat()

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }
    if observed_generation is not None:
        new_condition["observedGeneration"] = observed_generation

    for idx, existing in enumerate(conditions):
        if existing.get("type") == condition_type:
            if existing.get("status") == status:
                new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
            conditions[idx] = new_condition
            return conditions

    conditions.append(new_condition)
    return conditions


def set_ready_condition(
    conditions: list[dict[str, Any]],
    status: bool,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Ready condition."""
    return update_condition(
        conditions,
        COND_READY,
        "True" if status else "False",
        "Ready" if status else "NotReady",
        message,
        observed_generation,
    )


def clear_failure_conditions(
    conditions: list[dict[str, Any]],
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Flip every failure condition that is currently True back to False."""
    for condition_type in FAILURE_CONDITIONS:
        if any(c.get("type") == condition_type and c.get("status") == "True" for c in conditions):
            conditions = update_condition(
                conditions, condition_type, "False", "Resolved", "Resolved", observed_generation
            )
    return conditions


def _set_failure(
    conditions: list[dict[str, Any]],
    condition_type: str,
    message: str,
    observed_generation: int | None,
) -> list[dict[str, Any]]:
    return update_condition(conditions, condition_type, "True", condition_type, message, observed_generation)


def set_provisioning_failed_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the ProvisioningFailed condition."""
    return _set_failure(conditions, COND_PROVISIONING_FAILED, message, observed_generation)


def set_immutability_failed_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the ImmutabilityFailed condition."""
    return _set_failure(conditions, COND_IMMUTABILITY_FAILED, message, observed_generation)


def set_rotation_failed_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the RotationFailed condition."""
    return _set_failure(conditions, COND_ROTATION_FAILED, message, observed_generation)


def set_configuration_invalid_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the ConfigurationInvalid condition."""
    return _set_failure(conditions, COND_CONFIGURATION_INVALID, message, observed_generation)
