"""Handler for BackupBucket CRD."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any

import kopf
from kubernetes import client

from ..backupbucket.reconciler import (
    STEP_CONTAINER,
    STEP_DELETE,
    STEP_IMMUTABILITY,
    STEP_PROVISION,
    STEP_ROTATION,
    LifecycleReconciler,
    ReconcileResult,
)
from ..builders.bucket import create_bucket_request_from_resource
from ..builders.provider import create_azure_provider_from_secret
from ..constants import (
    ANNOTATION_ROTATE,
    API_GROUP,
    API_GROUP_VERSION,
    API_VERSION,
    DEFAULT_GENERATED_SECRET_NAMESPACE,
    KIND_BACKUP_BUCKET,
    PLURAL_BACKUP_BUCKETS,
)
from ..models import BucketRequest, SecretReference
from ..utils.conditions import (
    clear_failure_conditions,
    set_immutability_failed_condition,
    set_provisioning_failed_condition,
    set_ready_condition,
    set_rotation_failed_condition,
)
from ..utils.errors import (
    NON_RETRYABLE_CODES,
    InvalidConfigurationError,
    ReconcileCancelledError,
)
from ..utils.events import (
    emit_bucket_deleted,
    emit_bucket_provisioned,
    emit_key_rotated,
    emit_reconcile_succeeded,
)
from ..utils.rate_limit import rate_limit_k8s
from ..utils.secrets import KubernetesSecretStore
from .base import BaseHandler
from .shared import get_core_client, get_k8s_client

STEP_CONDITIONS = {
    STEP_PROVISION: set_provisioning_failed_condition,
    STEP_CONTAINER: set_provisioning_failed_condition,
    STEP_IMMUTABILITY: set_immutability_failed_condition,
    STEP_ROTATION: set_rotation_failed_condition,
    STEP_DELETE: set_provisioning_failed_condition,
}


class KubernetesBucketStatusStore:
    """Writes reconcile bookkeeping straight to the BackupBucket resource.

    These writes cannot wait for the handler's status patch: the generated
    secret reference must be stored before the reconcile continues.
    """

    def __init__(self, api: client.CustomObjectsApi):
        self.api = api

    @rate_limit_k8s
    def persist_generated_secret_ref(self, request: BucketRequest, ref: SecretReference) -> None:
        self.api.patch_cluster_custom_object_status(
            group=API_GROUP,
            version=API_VERSION,
            plural=PLURAL_BACKUP_BUCKETS,
            name=request.name,
            body={"status": {"generatedSecretRef": ref.to_dict()}},
        )

    @rate_limit_k8s
    def clear_rotation_signal(self, request: BucketRequest) -> None:
        self.api.patch_cluster_custom_object(
            group=API_GROUP,
            version=API_VERSION,
            plural=PLURAL_BACKUP_BUCKETS,
            name=request.name,
            body={"metadata": {"annotations": {ANNOTATION_ROTATE: None}}},
        )


class BackupBucketHandler(BaseHandler):
    """Handler for BackupBucket resources."""

    def __init__(self):
        super().__init__(KIND_BACKUP_BUCKET)

    def _build_request(
        self,
        spec: dict[str, Any],
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
    ) -> BucketRequest:
        try:
            return create_bucket_request_from_resource(spec, meta, status)
        except InvalidConfigurationError as e:
            self.handle_validation_error(meta, status, patch, e)
            raise

    def _build_reconciler(self, spec: dict[str, Any], request: BucketRequest) -> LifecycleReconciler:
        core_api = get_core_client()
        cloud = create_azure_provider_from_secret(core_api, spec.get("secretRef") or {}, request.cloud_configuration)
        return LifecycleReconciler(
            cloud,
            KubernetesSecretStore(core_api),
            KubernetesBucketStatusStore(get_k8s_client()),
            secret_namespace=os.getenv("GENERATED_SECRET_NAMESPACE", DEFAULT_GENERATED_SECRET_NAMESPACE),
        )

    def _handle_failure(
        self,
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
        error: Exception,
        step: str | None,
        allow_permanent: bool = True,
    ) -> None:
        """Record a failed reconcile on the resource and hand the retry decision to kopf.

        Raises:
            kopf.PermanentError: If allowed and the error codes show a retry cannot succeed
            kopf.TemporaryError: Otherwise
        """
        condition_fn = STEP_CONDITIONS.get(step, set_provisioning_failed_condition)
        error_msg, codes = self.record_failure(meta, status, patch, error, condition_fn)

        if allow_permanent and any(code in NON_RETRYABLE_CODES for code in codes):
            raise kopf.PermanentError(error_msg) from error
        raise kopf.TemporaryError(error_msg) from error

    def reconcile(
        self,
        spec: dict[str, Any],
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
        stopped: Any = None,
    ) -> None:
        """Reconcile BackupBucket resource."""
        request = self._build_request(spec, meta, status, patch)
        if request.deletion_requested:
            self.log_info(meta, "Deletion in progress, skipping reconcile", reason="DeletionPending")
            return

        reconciler = None
        try:
            reconciler = self._build_reconciler(spec, request)
            result = reconciler.reconcile(request, stopped)
        except InvalidConfigurationError as e:
            self.handle_validation_error(meta, status, patch, e)
            raise
        except ReconcileCancelledError as e:
            self.log_warning(meta, str(e), reason="ReconcileCancelled")
            raise kopf.TemporaryError(str(e)) from e
        except Exception as e:
            self._handle_failure(meta, status, patch, e, reconciler.step if reconciler is not None else None)
            raise

        self._record_success(meta, status, patch, request, result)

    def _record_success(
        self,
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
        request: BucketRequest,
        result: ReconcileResult,
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        generation = meta.get("generation", 0)

        if result.provisioned:
            emit_bucket_provisioned(meta, result.storage_account_name)
            self.log_info(
                meta,
                f"Provisioned storage account {result.storage_account_name}",
                reason="BucketProvisioned",
                storage_account=result.storage_account_name,
            )
        if result.rotated:
            emit_key_rotated(meta, result.storage_account_name, result.rotation_trigger)
            self.log_info(
                meta,
                f"Rotated storage key of account {result.storage_account_name}",
                reason="KeyRotated",
                trigger=result.rotation_trigger,
            )

        conditions = clear_failure_conditions(status.get("conditions", []), generation)
        conditions = set_ready_condition(conditions, True, f"Backup bucket {request.name} is ready", generation)

        status_update: dict[str, Any] = {
            "conditions": conditions,
            "observedGeneration": generation,
            "storageAccountName": result.storage_account_name,
            "immutabilityAction": result.immutability_action.value,
            "lastError": None,
            "lastSyncTime": now,
        }
        if request.generated_secret_ref is not None:
            status_update["generatedSecretRef"] = request.generated_secret_ref.to_dict()
        if result.rotated:
            status_update["lastRotationTime"] = now

        emit_reconcile_succeeded(meta)
        patch.status.update(status_update)

    def delete(
        self,
        spec: dict[str, Any],
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
    ) -> None:
        """Handle BackupBucket resource deletion.

        The provider configuration is not validated here: a resource whose
        configuration became invalid must still be deletable.
        """
        name = meta.get("name", "unknown")
        ref = (status or {}).get("generatedSecretRef") or {}
        if not ref.get("name"):
            self.log_info(meta, f"Backup bucket {name} was never provisioned", event="deletion", reason="NotProvisioned")
            self.remove_finalizer(meta, patch)
            return

        cloud_configuration = ((spec.get("providerConfig") or {}).get("cloudConfiguration") or {}).get("name")
        request = BucketRequest(
            name=name,
            region=spec.get("region", ""),
            deletion_requested=True,
            generated_secret_ref=SecretReference(name=ref["name"], namespace=ref.get("namespace", "")),
        )
        if cloud_configuration:
            request.cloud_configuration = cloud_configuration

        self.log_info(meta, f"Backup bucket {name} is being deleted", event="deletion", reason="Deletion")
        reconciler = None
        try:
            reconciler = self._build_reconciler(spec, request)
            reconciler.delete(request)
        except Exception as e:
            self.log_error(meta, f"Failed to delete backup bucket {name}", error=e, reason="DeletionFailed")
            # Deletion is retried until it succeeds so that no cloud resource is leaked.
            step = reconciler.step if reconciler is not None else None
            self._handle_failure(meta, status, patch, e, step, allow_permanent=False)

        emit_bucket_deleted(meta, name)
        self.log_info(meta, f"Deleted backup bucket {name}", event="deletion", reason="BucketDeleted")
        self.remove_finalizer(meta, patch)


# Global handler instance
_handler = BackupBucketHandler()


@kopf.on.create(API_GROUP_VERSION, KIND_BACKUP_BUCKET)
@kopf.on.update(API_GROUP_VERSION, KIND_BACKUP_BUCKET)
@kopf.on.resume(API_GROUP_VERSION, KIND_BACKUP_BUCKET)
@kopf.timer(API_GROUP_VERSION, KIND_BACKUP_BUCKET, interval=int(os.getenv("RESYNC_INTERVAL_SECONDS", "300")))
def handle_backup_bucket(
    spec: dict[str, Any],
    meta: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    **kwargs: Any,
) -> None:
    """Handle BackupBucket resource reconciliation."""
    _handler.ensure_finalizer(meta, patch)
    _handler.reconcile_with_metrics(
        meta,
        lambda: _handler.reconcile(spec, meta, status, patch, kwargs.get("stopped")),
    )


@kopf.on.delete(API_GROUP_VERSION, KIND_BACKUP_BUCKET)
def handle_backup_bucket_delete(
    spec: dict[str, Any],
    meta: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    **kwargs: Any,
) -> None:
    """Handle BackupBucket resource deletion."""
    _handler.delete(spec, meta, status, patch)
