"""Lifecycle reconciliation of backup buckets.

The reconciler drives a bucket through provisioning, container creation,
immutability policy reconciliation and key rotation, and keeps the generated
secret in sync with the storage account keys. It performs no locking and no
retries: the caller must serialise calls per bucket name and requeue on error.
Every step re-reads cloud state, so a failed reconcile is simply repeated.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..constants import BLOB_STORAGE_DOMAINS, DEFAULT_GENERATED_SECRET_NAMESPACE, KIND_BACKUP_BUCKET
from ..models import BucketRequest, GeneratedSecret
from ..services.cloud.base import CloudResourceClient
from ..tracing import add_span_attribute, trace_span
from ..utils.errors import InvalidConfigurationError, ReconcileCancelledError
from ..utils.secrets import SecretStore
from .immutability import ImmutabilityAction, ImmutabilityPolicyEngine
from .provisioner import ResourceProvisioner, storage_account_name
from .publisher import BucketStatusStore, CredentialPublisher
from .rotation import KeyRotationEngine, utcnow

logger = logging.getLogger(__name__)

# Reconcile steps, reported by LifecycleReconciler.step
STEP_PROVISION = "provision"
STEP_CONTAINER = "container"
STEP_IMMUTABILITY = "immutability"
STEP_ROTATION = "rotation"
STEP_DELETE = "delete"


def blob_storage_domain(cloud_configuration: str) -> str:
    """Return the blob storage domain of an Azure cloud."""
    try:
        return BLOB_STORAGE_DOMAINS[cloud_configuration]
    except KeyError:
        raise InvalidConfigurationError(f"unknown cloud configuration {cloud_configuration!r}") from None


@dataclass
class ReconcileResult:
    """What a reconcile changed."""

    storage_account_name: str
    provisioned: bool = False
    container_created: bool = False
    immutability_action: ImmutabilityAction = ImmutabilityAction.NONE
    rotated: bool = False
    rotation_trigger: str | None = None
    secret_updated: bool = False
    signal_cleared: bool = False


class LifecycleReconciler:
    """Reconciles and deletes backup buckets."""

    def __init__(
        self,
        cloud: CloudResourceClient,
        secrets: SecretStore,
        status_store: BucketStatusStore,
        secret_namespace: str = DEFAULT_GENERATED_SECRET_NAMESPACE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cloud = cloud
        self.status_store = status_store
        self.provisioner = ResourceProvisioner(cloud)
        self.publisher = CredentialPublisher(secrets, status_store, secret_namespace)
        self.immutability = ImmutabilityPolicyEngine(cloud)
        self.rotation = KeyRotationEngine(cloud, clock)
        self.step: str | None = None

    @staticmethod
    def _check_cancelled(cancel: threading.Event | None, request: BucketRequest) -> None:
        if cancel is not None and cancel.is_set():
            raise ReconcileCancelledError(f"reconcile of backup bucket {request.name} was cancelled")

    def generated_secret(self, request: BucketRequest) -> GeneratedSecret | None:
        """Return the credential currently published for a bucket, if any."""
        if request.generated_secret_ref is None:
            return None
        return self.publisher.get(request.generated_secret_ref)

    def reconcile(self, request: BucketRequest, cancel: threading.Event | None = None) -> ReconcileResult:
        """Drive the bucket's cloud resources and generated secret into the desired state.

        Args:
            request: Desired state of the bucket
            cancel: Optional token; when set, the reconcile stops before the next cloud call

        Returns:
            Summary of what changed
        """
        self.step = None
        account = storage_account_name(request.name)
        domain = blob_storage_domain(request.cloud_configuration)
        result = ReconcileResult(storage_account_name=account)

        with trace_span("reconcile_backup_bucket", kind=KIND_BACKUP_BUCKET, attributes={"bucket.name": request.name}):
            add_span_attribute("bucket.storage_account", account)
            if request.generated_secret_ref is None:
                self.step = STEP_PROVISION
                with trace_span("provision_backup_bucket", kind=KIND_BACKUP_BUCKET):
                    self._check_cancelled(cancel, request)
                    self.provisioner.ensure_resource_group_and_account(request)
                    self._check_cancelled(cancel, request)
                    keys = self.cloud.list_keys(request.name, account)
                    self._check_cancelled(cancel, request)
                    self.publisher.create(request, account, keys.newest.value, domain)
                result.provisioned = True

            self.step = STEP_CONTAINER
            secret = self.publisher.get(request.generated_secret_ref)

            self._check_cancelled(cancel, request)
            result.container_created = self.provisioner.ensure_container(request)

            self.step = STEP_IMMUTABILITY
            with trace_span("reconcile_immutability", kind=KIND_BACKUP_BUCKET):
                self._check_cancelled(cancel, request)
                observed = self.immutability.fetch(request)
                self._check_cancelled(cancel, request)
                result.immutability_action = self.immutability.reconcile(request, observed).action

            self.step = STEP_ROTATION
            with trace_span("reconcile_key_rotation", kind=KIND_BACKUP_BUCKET):
                self._check_cancelled(cancel, request)
                keys = self.cloud.list_keys(request.name, account)
                signal_was_set = request.rotate_now_signal
                published_key = secret.storage_key if secret is not None else None
                self._check_cancelled(cancel, request)
                rotation = self.rotation.maybe_rotate(keys, request, published_key)
                result.rotated = rotation.rotated
                result.rotation_trigger = rotation.trigger
                add_span_attribute("bucket.key_rotated", rotation.rotated)

                # Cleared before publishing: a failed secret write must not rotate again on retry
                if signal_was_set and not request.rotate_now_signal:
                    self.status_store.clear_rotation_signal(request)
                    result.signal_cleared = True

                if rotation.rotated or self._needs_republish(secret, account, domain, rotation.keys):
                    self._publish(request, secret, account, rotation.keys.newest.value, domain)
                    result.secret_updated = True

        logger.info(
            f"Reconciled backup bucket {request.name}: provisioned={result.provisioned} "
            f"container_created={result.container_created} immutability={result.immutability_action.value} "
            f"rotated={result.rotated} secret_updated={result.secret_updated}"
        )
        return result

    @staticmethod
    def _needs_republish(secret: GeneratedSecret | None, account: str, domain: str, keys) -> bool:
        """Return whether the published credential no longer grants access."""
        if secret is None:
            return True
        return (
            secret.storage_account_name != account
            or secret.domain != domain
            or not keys.contains_value(secret.storage_key)
        )

    def _publish(
        self,
        request: BucketRequest,
        secret: GeneratedSecret | None,
        account: str,
        key: str,
        domain: str,
    ) -> None:
        if secret is None:
            # The secret vanished after its reference was stored; recreate it.
            self.publisher.create(request, account, key, domain)
        else:
            self.publisher.update(request.generated_secret_ref, account, key, domain)

    def delete(self, request: BucketRequest, cancel: threading.Event | None = None) -> None:
        """Remove the bucket's container, resource group and generated secret.

        A bucket that was never provisioned is left alone without any cloud call.
        """
        if request.generated_secret_ref is None:
            logger.info(f"Backup bucket {request.name} was never provisioned, nothing to delete")
            return

        self.step = STEP_DELETE
        with trace_span("delete_backup_bucket", kind=KIND_BACKUP_BUCKET, attributes={"bucket.name": request.name}):
            self._check_cancelled(cancel, request)
            self.provisioner.delete_container(request)
            self._check_cancelled(cancel, request)
            self.provisioner.delete_resource_group(request)
            self._check_cancelled(cancel, request)
            self.publisher.delete(request.generated_secret_ref)

        logger.info(f"Deleted backup bucket {request.name}")
