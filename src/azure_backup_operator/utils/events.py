"""Kubernetes events posted on BackupBucket resources."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_BUCKET_DELETED,
    EVENT_REASON_BUCKET_PROVISIONED,
    EVENT_REASON_KEY_ROTATED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_RECONCILE_SUCCEEDED,
    EVENT_REASON_VALIDATE_FAILED,
)

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


def emit_event(meta: dict[str, Any], reason: str, message: str, type_: str = EVENT_TYPE_NORMAL) -> None:
    """Post an event on the object described by ``meta``.

    ``type_`` is either ``Normal`` or ``Warning``.
    """
    kopf.event(meta, reason=reason, message=message, type=type_)


def emit_reconcile_started(meta: dict[str, Any]) -> None:
    emit_event(meta, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_succeeded(meta: dict[str, Any]) -> None:
    emit_event(meta, EVENT_REASON_RECONCILE_SUCCEEDED, "Reconciliation succeeded")


def emit_reconcile_failed(meta: dict[str, Any], message: str) -> None:
    """Warn that a reconcile failed; ``message`` must already be sanitized."""
    emit_event(meta, EVENT_REASON_RECONCILE_FAILED, message, type_=EVENT_TYPE_WARNING)


def emit_validate_failed(meta: dict[str, Any], message: str) -> None:
    emit_event(meta, EVENT_REASON_VALIDATE_FAILED, message, type_=EVENT_TYPE_WARNING)


def emit_bucket_provisioned(meta: dict[str, Any], storage_account: str) -> None:
    emit_event(meta, EVENT_REASON_BUCKET_PROVISIONED, f"Storage account {storage_account} provisioned")


def emit_bucket_deleted(meta: dict[str, Any], bucket_name: str) -> None:
    emit_event(meta, EVENT_REASON_BUCKET_DELETED, f"Backup bucket {bucket_name} deleted")


def emit_key_rotated(meta: dict[str, Any], storage_account: str, trigger: str | None) -> None:
    """Report a storage key rotation and what triggered it (age or signal)."""
    emit_event(meta, EVENT_REASON_KEY_ROTATED, f"Storage key of account {storage_account} rotated ({trigger})")
