"""Common plumbing shared by the operator's kopf handlers."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import kopf

from .. import metrics
from ..constants import CONTROLLER_NAME, FINALIZER
from ..logging import log_resource_event
from ..tracing import trace_span
from ..utils.conditions import set_configuration_invalid_condition, set_ready_condition
from ..utils.errors import determine_error_codes, sanitize_exception
from ..utils.events import emit_reconcile_failed, emit_reconcile_started, emit_validate_failed

ConditionSetter = Callable[..., list[dict[str, Any]]]


class BaseHandler:
    """Logging, status and finalizer helpers for one custom resource kind."""

    def __init__(self, kind: str):
        self.kind = kind
        self.logger = logging.getLogger(__name__)

    def _get_resource_context(self, meta: dict[str, Any]) -> dict[str, Any]:
        # BackupBuckets are cluster-scoped, so the namespace is usually empty
        return {
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace", ""),
            "uid": meta.get("uid", "unknown"),
        }

    def _log(self, level: int, meta: dict[str, Any], message: str, event: str, reason: str, **fields: Any) -> None:
        ctx = self._get_resource_context(meta)
        log_resource_event(
            self.logger,
            controller=CONTROLLER_NAME,
            resource_kind=self.kind,
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=event,
            reason=reason,
            message=message,
            level=level,
            **fields,
        )

    def log_info(
        self, meta: dict[str, Any], message: str, event: str = "info", reason: str = "Info", **fields: Any
    ) -> None:
        self._log(logging.INFO, meta, message, event, reason, **fields)

    def log_warning(
        self, meta: dict[str, Any], message: str, event: str = "warning", reason: str = "Warning", **fields: Any
    ) -> None:
        self._log(logging.WARNING, meta, message, event, reason, **fields)

    def log_error(
        self,
        meta: dict[str, Any],
        message: str,
        error: Exception | None = None,
        event: str = "error",
        reason: str = "Error",
        **fields: Any,
    ) -> None:
        """Log an error for a resource.

        When ``error`` is given, its sanitized text and type are added to the
        record; the raw exception message never reaches the log.
        """
        if error is not None:
            fields = {**fields, "error": sanitize_exception(error), "error_type": type(error).__name__}
        self._log(logging.ERROR, meta, message, event, reason, **fields)

    def record_failure(
        self,
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
        error: Exception,
        set_condition: ConditionSetter,
    ) -> tuple[str, list[str]]:
        """Write a failure to the resource status.

        Sets the given failure condition and Ready=False, and stores the
        sanitized message and its error codes in ``status.lastError``.

        Returns:
            The sanitized message and the error codes
        """
        description = sanitize_exception(error)
        codes = determine_error_codes(error)
        generation = meta.get("generation", 0)

        conditions = set_condition(status.get("conditions", []), description, generation)
        conditions = set_ready_condition(conditions, False, description, generation)
        patch.status.update({
            "conditions": conditions,
            "observedGeneration": generation,
            "lastError": {"description": description, "codes": codes},
        })
        return description, codes

    def handle_validation_error(
        self,
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
        error: Exception,
    ) -> None:
        """Mark the resource's configuration invalid and stop retrying.

        Raises:
            kopf.PermanentError: Always; only a change to the resource can fix it
        """
        description, _ = self.record_failure(meta, status, patch, error, set_configuration_invalid_condition)
        self.log_error(meta, f"Invalid configuration: {description}", reason="ValidationFailed")
        emit_validate_failed(meta, description)
        metrics.error_total.labels(kind=self.kind, error_type=type(error).__name__).inc()
        raise kopf.PermanentError(description)

    def ensure_finalizer(self, meta: dict[str, Any], patch: kopf.Patch) -> None:
        finalizers = list(meta.get("finalizers", []))
        if FINALIZER in finalizers:
            return
        patch.metadata["finalizers"] = [*finalizers, FINALIZER]

    def remove_finalizer(self, meta: dict[str, Any], patch: kopf.Patch) -> None:
        remaining = [f for f in meta.get("finalizers", []) if f != FINALIZER]
        if len(remaining) != len(meta.get("finalizers", [])):
            patch.metadata["finalizers"] = remaining or None

    def reconcile_with_metrics(self, meta: dict[str, Any], reconcile_fn: Callable[[], None]) -> None:
        """Run a reconcile inside a trace span, counting and timing it.

        Failures are logged and reported as a Warning event, then re-raised
        so kopf can decide on the retry.
        """
        emit_reconcile_started(meta)
        metrics.reconcile_total.labels(kind=self.kind, result="started").inc()
        started = time.monotonic()

        with trace_span(f"handle_{self.kind.lower()}", kind=self.kind, attributes={"resource.name": meta.get("name", "unknown")}):
            try:
                reconcile_fn()
            except Exception as e:
                metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
                metrics.reconcile_total.labels(kind=self.kind, result="error").inc()
                self.log_error(meta, "Reconciliation failed", error=e, reason="ReconciliationFailed")
                emit_reconcile_failed(meta, f"Reconciliation failed: {sanitize_exception(e)}")
                raise
            else:
                metrics.reconcile_total.labels(kind=self.kind, result="success").inc()
            finally:
                metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(time.monotonic() - started)
