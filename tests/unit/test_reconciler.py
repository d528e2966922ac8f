"""Tests for the backup bucket lifecycle reconciler."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest
from conftest import NOW, FakeCloudClient, FakeSecretStore, FakeStatusStore
from kubernetes import client

from azure_backup_operator.backupbucket.immutability import ImmutabilityAction
from azure_backup_operator.backupbucket.provisioner import storage_account_name
from azure_backup_operator.backupbucket.reconciler import (
    STEP_IMMUTABILITY,
    STEP_ROTATION,
    LifecycleReconciler,
    blob_storage_domain,
)
from azure_backup_operator.models import (
    BucketRequest,
    GeneratedSecret,
    ImmutabilityConfig,
    RotationConfig,
    SecretReference,
)
from azure_backup_operator.utils.errors import (
    CloudConflictError,
    InvalidConfigurationError,
    ReconcileCancelledError,
)

BUCKET = "shoot--dev--backup"
ACCOUNT = storage_account_name(BUCKET)
DOMAIN = "blob.core.windows.net"
REF = SecretReference(name=f"generated-bucket-{BUCKET}", namespace="garden")


@pytest.fixture
def reconciler(cloud, secret_store, status_store) -> LifecycleReconciler:
    return LifecycleReconciler(cloud, secret_store, status_store, secret_namespace="garden", clock=lambda: NOW)


def _provisioned(
    cloud: FakeCloudClient,
    secret_store: FakeSecretStore,
    newest_age: timedelta = timedelta(days=1),
    published: str = "newest",
) -> None:
    """Seed an already provisioned bucket whose secret holds the given key."""
    cloud.seed_account(BUCKET, ACCOUNT, key_ages=(timedelta(days=10), newest_age))
    cloud.seed_container(ACCOUNT, BUCKET)
    keys = cloud.list_keys(BUCKET, ACCOUNT)
    value = keys.newest.value if published == "newest" else keys.oldest.value
    secret_store.secrets[(REF.namespace, REF.name)] = {
        "storageAccount": ACCOUNT,
        "storageKey": value,
        "domain": DOMAIN,
    }
    cloud.calls.clear()


def _request(**kwargs) -> BucketRequest:
    return BucketRequest(name=BUCKET, region="westeurope", **kwargs)


class TestReconcile:
    """Test cases for LifecycleReconciler.reconcile."""

    def test_fresh_bucket(self, reconciler, cloud, secret_store, status_store) -> None:
        """Test that a fresh bucket gets group, account, container and a secret with the initial key."""
        request = _request()

        result = reconciler.reconcile(request)

        assert result.provisioned is True
        assert result.container_created is True
        assert cloud.mutation_names() == [
            "create_or_update_resource_group",
            "create_or_update_storage_account",
            "create_container",
        ]
        newest = cloud.list_keys(BUCKET, ACCOUNT).newest.value
        assert secret_store.secrets[(REF.namespace, REF.name)] == {
            "storageAccount": ACCOUNT,
            "storageKey": newest,
            "domain": DOMAIN,
        }
        assert status_store.persisted_refs == [(BUCKET, REF)]
        assert request.generated_secret_ref == REF

    def test_second_reconcile_is_idempotent(self, reconciler, cloud, secret_store) -> None:
        """Test that a second reconcile issues no mutating call."""
        request = _request()
        reconciler.reconcile(request)
        mutations = len(cloud.mutations)
        writes = len(secret_store.writes)

        result = reconciler.reconcile(request)

        assert len(cloud.mutations) == mutations
        assert len(secret_store.writes) == writes
        assert result.provisioned is False
        assert result.secret_updated is False

    def test_idempotent_with_immutability_and_rotation(self, reconciler, cloud, secret_store) -> None:
        """Test idempotence with every feature enabled."""
        request = _request(
            immutability=ImmutabilityConfig(retention_period=timedelta(days=2), locked=True),
            rotation=RotationConfig(rotation_period=timedelta(days=2), key_expiration_period=timedelta(days=5)),
        )
        reconciler.reconcile(request)
        mutations = len(cloud.mutations)

        reconciler.reconcile(request)

        assert len(cloud.mutations) == mutations

    def test_account_created_before_reference_persisted(self, cloud, secret_store, status_store) -> None:
        """Test that a failed account creation leaves no reference and no secret."""
        cloud.failures["create_or_update_storage_account"] = CloudConflictError("StorageAccountAlreadyTaken")
        reconciler = LifecycleReconciler(cloud, secret_store, status_store)
        request = _request()

        with pytest.raises(CloudConflictError):
            reconciler.reconcile(request)

        assert request.generated_secret_ref is None
        assert status_store.persisted_refs == []
        assert secret_store.secrets == {}
        assert reconciler.step == "provision"

    def test_create_unlocked_policy(self, reconciler, cloud, secret_store) -> None:
        """Test that 24h retention with no existing policy creates a one-day policy."""
        _provisioned(cloud, secret_store)
        request = _request(
            immutability=ImmutabilityConfig(retention_period=timedelta(hours=24)),
            generated_secret_ref=REF,
        )

        result = reconciler.reconcile(request)

        assert result.immutability_action == ImmutabilityAction.CREATE
        assert cloud.mutations == [
            ("create_or_update_immutability_policy", (BUCKET, ACCOUNT, BUCKET, 1, None)),
        ]

    def test_extend_locked_policy(self, reconciler, cloud, secret_store) -> None:
        """Test that a locked one-day policy is extended to three days and not locked again."""
        _provisioned(cloud, secret_store)
        cloud.seed_policy(ACCOUNT, BUCKET, days=1, locked=True)
        request = _request(
            immutability=ImmutabilityConfig(retention_period=timedelta(hours=72), locked=True),
            generated_secret_ref=REF,
        )

        reconciler.reconcile(request)

        assert cloud.mutation_names() == ["extend_immutability_policy"]
        assert cloud.mutations[0][1][3] == 3

    def test_weakening_locked_policy_is_a_no_op(self, reconciler, cloud, secret_store) -> None:
        """Test that a locked two-day policy is untouched when one day is desired."""
        _provisioned(cloud, secret_store)
        cloud.seed_policy(ACCOUNT, BUCKET, days=2, locked=True)
        request = _request(
            immutability=ImmutabilityConfig(retention_period=timedelta(hours=24), locked=True),
            generated_secret_ref=REF,
        )

        result = reconciler.reconcile(request)

        assert result.immutability_action == ImmutabilityAction.NONE
        assert cloud.mutations == []

    def test_age_rotation_updates_secret(self, reconciler, cloud, secret_store) -> None:
        """Test that an expired key is rotated once and the secret gets the fresh key."""
        _provisioned(cloud, secret_store, newest_age=timedelta(days=3))
        previous_newest = cloud.list_keys(BUCKET, ACCOUNT).newest
        request = _request(rotation=RotationConfig(rotation_period=timedelta(days=2)), generated_secret_ref=REF)

        result = reconciler.reconcile(request)

        assert result.rotated is True
        assert cloud.mutation_names() == ["rotate_key"]
        keys = cloud.list_keys(BUCKET, ACCOUNT)
        assert len(keys) == 2
        assert keys.contains_value(previous_newest.value)
        assert keys.newest.name != previous_newest.name
        published = secret_store.secrets[(REF.namespace, REF.name)]["storageKey"]
        assert published == keys.newest.value

    def test_signal_rotation_clears_signal(self, reconciler, cloud, secret_store, status_store) -> None:
        """Test that a signal-triggered rotation clears the signal on the resource."""
        _provisioned(cloud, secret_store, published="oldest")
        request = _request(
            rotation=RotationConfig(rotation_period=timedelta(days=2)),
            rotate_now_signal=True,
            generated_secret_ref=REF,
        )

        result = reconciler.reconcile(request)

        assert result.rotated is True
        assert result.signal_cleared is True
        assert status_store.cleared_signals == [BUCKET]
        assert request.rotate_now_signal is False

    def test_signal_skipped_when_already_rotated(self, reconciler, cloud, secret_store, status_store) -> None:
        """Test that a stuck signal causes no rotation when the published key is the newest."""
        _provisioned(cloud, secret_store, published="newest")
        request = _request(
            rotation=RotationConfig(rotation_period=timedelta(days=2)),
            rotate_now_signal=True,
            generated_secret_ref=REF,
        )

        result = reconciler.reconcile(request)

        assert result.rotated is False
        assert "rotate_key" not in cloud.mutation_names()
        assert status_store.cleared_signals == [BUCKET]

    def test_rotation_failure_keeps_signal(self, reconciler, cloud, secret_store, status_store) -> None:
        """Test that a failed rotation leaves the signal and the secret untouched."""
        _provisioned(cloud, secret_store, published="oldest")
        before = dict(secret_store.secrets[(REF.namespace, REF.name)])
        cloud.failures["rotate_key"] = CloudConflictError("busy")
        request = _request(
            rotation=RotationConfig(rotation_period=timedelta(days=2)),
            rotate_now_signal=True,
            generated_secret_ref=REF,
        )

        with pytest.raises(CloudConflictError):
            reconciler.reconcile(request)

        assert request.rotate_now_signal is True
        assert status_store.cleared_signals == []
        assert secret_store.secrets[(REF.namespace, REF.name)] == before
        assert reconciler.step == STEP_ROTATION

    def test_failed_secret_write_after_signal_rotation_does_not_rotate_again(
        self, reconciler, cloud, secret_store, status_store
    ) -> None:
        """Test that a signal rotation whose secret write fails is republished, not rotated twice."""
        _provisioned(cloud, secret_store, published="oldest")
        secret_store.fail_update = client.exceptions.ApiException(status=500)
        rotation = RotationConfig(rotation_period=timedelta(days=2))
        request = _request(rotation=rotation, rotate_now_signal=True, generated_secret_ref=REF)

        with pytest.raises(client.exceptions.ApiException):
            reconciler.reconcile(request)

        assert status_store.cleared_signals == [BUCKET]

        secret_store.fail_update = None
        retry = _request(
            rotation=rotation,
            rotate_now_signal=BUCKET not in status_store.cleared_signals,
            generated_secret_ref=REF,
        )
        result = reconciler.reconcile(retry)

        assert result.rotated is False
        assert result.secret_updated is True
        assert cloud.mutation_names().count("rotate_key") == 1
        assert status_store.cleared_signals == [BUCKET]
        published = secret_store.secrets[(REF.namespace, REF.name)]["storageKey"]
        assert published == cloud.list_keys(BUCKET, ACCOUNT).newest.value

    def test_republishes_when_published_key_is_gone(self, reconciler, cloud, secret_store) -> None:
        """Test that a secret holding a key the account no longer has is repaired."""
        _provisioned(cloud, secret_store)
        secret_store.secrets[(REF.namespace, REF.name)]["storageKey"] = "revoked"
        request = _request(generated_secret_ref=REF)

        result = reconciler.reconcile(request)

        assert result.secret_updated is True
        newest = cloud.list_keys(BUCKET, ACCOUNT).newest.value
        assert secret_store.secrets[(REF.namespace, REF.name)]["storageKey"] == newest

    def test_recreates_deleted_secret(self, reconciler, cloud, secret_store) -> None:
        """Test that a secret deleted behind the reconciler's back is recreated."""
        _provisioned(cloud, secret_store)
        del secret_store.secrets[(REF.namespace, REF.name)]

        reconciler.reconcile(_request(generated_secret_ref=REF))

        assert (REF.namespace, REF.name) in secret_store.secrets

    def test_container_recreated(self, reconciler, cloud, secret_store) -> None:
        """Test that a missing container is recreated on an already provisioned bucket."""
        _provisioned(cloud, secret_store)
        cloud.containers.clear()

        result = reconciler.reconcile(_request(generated_secret_ref=REF))

        assert result.container_created is True
        assert cloud.mutation_names() == ["create_container"]

    def test_immutability_failure_reports_step(self, reconciler, cloud, secret_store) -> None:
        """Test that the failing step is recorded."""
        _provisioned(cloud, secret_store)
        cloud.failures["get_immutability_policy"] = CloudConflictError("boom")

        with pytest.raises(CloudConflictError):
            reconciler.reconcile(_request(generated_secret_ref=REF))

        assert reconciler.step == STEP_IMMUTABILITY

    def test_cancelled_before_first_call(self, reconciler, cloud) -> None:
        """Test that a set cancellation token stops the reconcile before any cloud call."""
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ReconcileCancelledError):
            reconciler.reconcile(_request(), cancel)

        assert cloud.calls == []

    def test_unknown_cloud_configuration(self, reconciler, cloud) -> None:
        """Test that an unknown cloud is rejected before any cloud call."""
        with pytest.raises(InvalidConfigurationError):
            reconciler.reconcile(_request(cloud_configuration="AzureMars"))
        assert cloud.calls == []

    def test_generated_secret_accessor(self, reconciler, cloud, secret_store) -> None:
        """Test reading the published credential."""
        assert reconciler.generated_secret(_request()) is None

        request = _request()
        reconciler.reconcile(request)

        secret = reconciler.generated_secret(request)
        assert isinstance(secret, GeneratedSecret)
        assert secret.storage_account_name == ACCOUNT
        assert secret.domain == DOMAIN


class TestDelete:
    """Test cases for LifecycleReconciler.delete."""

    def test_never_provisioned_is_a_no_op(self, reconciler, cloud, secret_store) -> None:
        """Test that deleting an unprovisioned bucket makes no call at all."""
        reconciler.delete(_request())

        assert cloud.calls == []
        assert secret_store.writes == []

    def test_delete_removes_everything(self, reconciler, cloud, secret_store) -> None:
        """Test that container, resource group and secret are removed in order."""
        request = _request()
        reconciler.reconcile(request)
        cloud.calls.clear()

        reconciler.delete(request)

        assert cloud.mutation_names() == ["delete_container", "delete_resource_group"]
        assert BUCKET not in cloud.resource_groups
        assert secret_store.secrets == {}

    def test_delete_is_idempotent(self, reconciler, cloud, secret_store) -> None:
        """Test that deleting twice succeeds."""
        request = _request()
        reconciler.reconcile(request)

        reconciler.delete(request)
        reconciler.delete(request)

        assert cloud.resource_groups == {}


class TestBlobStorageDomain:
    """Test cases for blob_storage_domain."""

    @pytest.mark.parametrize(
        "cloud_configuration,domain",
        [
            ("AzurePublic", "blob.core.windows.net"),
            ("AzureChina", "blob.core.chinacloudapi.cn"),
            ("AzureGovernment", "blob.core.usgovcloudapi.net"),
        ],
    )
    def test_known_clouds(self, cloud_configuration, domain) -> None:
        assert blob_storage_domain(cloud_configuration) == domain
