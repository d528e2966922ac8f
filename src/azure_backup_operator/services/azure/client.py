"""Azure storage client implementation."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator

from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.storage.models import (
    BlobContainer,
    ImmutabilityPolicy,
    KeyPolicy,
    Sku,
    StorageAccountCreateParameters,
    StorageAccountRegenerateKeyParameters,
)

from ... import metrics
from ...models import AccountKey, AccountKeySet, ObservedImmutabilityPolicy
from ...utils.errors import CloudConflictError, CloudNotFoundError
from ...utils.rate_limit import rate_limit_azure

logger = logging.getLogger(__name__)

IMMUTABILITY_STATE_LOCKED = "Locked"


def _to_key_set(response: Any) -> AccountKeySet:
    keys = [
        AccountKey(name=key.key_name, value=key.value, creation_time=getattr(key, "creation_time", None))
        for key in (response.keys or [])
    ]
    if len(keys) != 2:
        raise HttpResponseError(message=f"expected exactly 2 storage account keys, got {len(keys)}")
    return AccountKeySet.from_keys(keys)


class AzureProvider:
    """Azure implementation of the cloud resource client."""

    def __init__(
        self,
        resource_client: ResourceManagementClient,
        storage_client: StorageManagementClient,
        timeout: float = 60.0,
    ) -> None:
        """Initialize Azure provider.

        Args:
            resource_client: Management client for resource groups
            storage_client: Management client for storage accounts and blob containers
            timeout: Timeout in seconds applied to every Azure call
        """
        self.resource_client = resource_client
        self.storage_client = storage_client
        self.timeout = timeout

    @contextmanager
    def _call(self, operation: str, resource: str) -> Iterator[None]:
        """Record metrics for an Azure call and translate its errors."""
        start_time = time.time()
        try:
            yield
            metrics.api_call_total.labels(api_type="azure", operation=operation, result="success").inc()
        except ResourceNotFoundError as e:
            metrics.api_call_total.labels(api_type="azure", operation=operation, result="not_found").inc()
            raise CloudNotFoundError(resource, f"{resource} not found: {e.message}") from e
        except (ResourceModifiedError, ResourceExistsError) as e:
            metrics.api_call_total.labels(api_type="azure", operation=operation, result="conflict").inc()
            raise CloudConflictError(f"{operation} on {resource} conflicted: {e.message}") from e
        except HttpResponseError as e:
            if e.status_code == 412:
                metrics.api_call_total.labels(api_type="azure", operation=operation, result="conflict").inc()
                raise CloudConflictError(f"{operation} on {resource} failed precondition: {e.message}") from e
            metrics.api_call_total.labels(api_type="azure", operation=operation, result="error").inc()
            logger.error(f"Azure call {operation} on {resource} failed: {e.message}")
            raise
        finally:
            duration = time.time() - start_time
            metrics.api_call_duration_seconds.labels(api_type="azure", operation=operation).observe(duration)

    @rate_limit_azure
    def create_or_update_resource_group(self, name: str, region: str) -> None:
        """Create a resource group or leave an identical one unchanged."""
        with self._call("create_resource_group", f"resource group {name}"):
            self.resource_client.resource_groups.create_or_update(
                name,
                {"location": region},
                timeout=self.timeout,
            )

    @rate_limit_azure
    def delete_resource_group(self, name: str) -> None:
        """Delete a resource group, waiting for the deletion to complete."""
        with self._call("delete_resource_group", f"resource group {name}"):
            poller = self.resource_client.resource_groups.begin_delete(name, timeout=self.timeout)
            poller.result(timeout=self.timeout)

    @rate_limit_azure
    def create_or_update_storage_account(
        self,
        group: str,
        account: str,
        region: str,
        key_expiration_days: int | None = None,
    ) -> None:
        """Create a storage account for backups.

        The account is a cool-tier StorageV2 account with HTTPS only, no public
        blob access and TLS 1.2 as the minimum version.
        """
        parameters = StorageAccountCreateParameters(
            sku=Sku(name="Standard_LRS"),
            kind="StorageV2",
            location=region,
            access_tier="Cool",
            enable_https_traffic_only=True,
            allow_blob_public_access=False,
            minimum_tls_version="TLS1_2",
        )
        if key_expiration_days:
            parameters.key_policy = KeyPolicy(key_expiration_period_in_days=key_expiration_days)

        with self._call("create_storage_account", f"storage account {account}"):
            poller = self.storage_client.storage_accounts.begin_create(
                group,
                account,
                parameters,
                timeout=self.timeout,
            )
            poller.result(timeout=self.timeout)

    @rate_limit_azure
    def list_keys(self, group: str, account: str) -> AccountKeySet:
        """List the two access keys of a storage account, newest first."""
        with self._call("list_keys", f"storage account {account}"):
            response = self.storage_client.storage_accounts.list_keys(group, account, timeout=self.timeout)
        return _to_key_set(response)

    @rate_limit_azure
    def rotate_key(self, group: str, account: str, key_name: str) -> AccountKeySet:
        """Regenerate the named access key and return the refreshed key set."""
        with self._call("rotate_key", f"storage account {account}"):
            response = self.storage_client.storage_accounts.regenerate_key(
                group,
                account,
                StorageAccountRegenerateKeyParameters(key_name=key_name),
                timeout=self.timeout,
            )
        logger.info(f"Regenerated key {key_name} of storage account {account}")
        return _to_key_set(response)

    @rate_limit_azure
    def get_container(self, group: str, account: str, container: str) -> None:
        """Check that a blob container exists."""
        with self._call("get_container", f"container {container}"):
            self.storage_client.blob_containers.get(group, account, container, timeout=self.timeout)

    @rate_limit_azure
    def create_container(self, group: str, account: str, container: str) -> None:
        """Create a private blob container."""
        with self._call("create_container", f"container {container}"):
            self.storage_client.blob_containers.create(
                group,
                account,
                container,
                BlobContainer(public_access="None"),
                timeout=self.timeout,
            )

    @rate_limit_azure
    def delete_container(self, group: str, account: str, container: str) -> None:
        """Delete a blob container.

        Containers with an immutability policy can only be deleted once they
        are empty.
        """
        with self._call("delete_container", f"container {container}"):
            self.storage_client.blob_containers.delete(group, account, container, timeout=self.timeout)

    @rate_limit_azure
    def get_immutability_policy(self, group: str, account: str, container: str) -> ObservedImmutabilityPolicy:
        """Fetch the container's immutability policy.

        A policy without a state is reported as absent.
        """
        with self._call("get_immutability_policy", f"immutability policy of container {container}"):
            policy = self.storage_client.blob_containers.get_immutability_policy(
                group,
                account,
                container,
                timeout=self.timeout,
            )
        if policy is None or policy.state is None:
            return ObservedImmutabilityPolicy()
        return ObservedImmutabilityPolicy(
            present=True,
            retention_days=policy.immutability_period_since_creation_in_days or 0,
            locked=policy.state == IMMUTABILITY_STATE_LOCKED,
            etag=policy.etag,
        )

    @staticmethod
    def _policy_parameters(days: int) -> ImmutabilityPolicy:
        return ImmutabilityPolicy(
            immutability_period_since_creation_in_days=days,
            allow_protected_append_writes=False,
            allow_protected_append_writes_all=False,
        )

    @rate_limit_azure
    def create_or_update_immutability_policy(
        self,
        group: str,
        account: str,
        container: str,
        days: int,
        etag: str | None = None,
    ) -> str | None:
        """Create or update an unlocked immutability policy; returns the new etag."""
        with self._call("create_or_update_immutability_policy", f"immutability policy of container {container}"):
            policy = self.storage_client.blob_containers.create_or_update_immutability_policy(
                group,
                account,
                container,
                if_match=etag,
                parameters=self._policy_parameters(days),
                timeout=self.timeout,
            )
        return policy.etag if policy is not None else None

    @rate_limit_azure
    def extend_immutability_policy(self, group: str, account: str, container: str, days: int, etag: str) -> str | None:
        """Extend the retention period of a locked immutability policy."""
        with self._call("extend_immutability_policy", f"immutability policy of container {container}"):
            policy = self.storage_client.blob_containers.extend_immutability_policy(
                group,
                account,
                container,
                if_match=etag,
                parameters=self._policy_parameters(days),
                timeout=self.timeout,
            )
        return policy.etag if policy is not None else None

    @rate_limit_azure
    def delete_immutability_policy(self, group: str, account: str, container: str, etag: str) -> None:
        """Delete an unlocked immutability policy."""
        with self._call("delete_immutability_policy", f"immutability policy of container {container}"):
            self.storage_client.blob_containers.delete_immutability_policy(
                group,
                account,
                container,
                if_match=etag,
                timeout=self.timeout,
            )

    @rate_limit_azure
    def lock_immutability_policy(self, group: str, account: str, container: str, etag: str) -> str | None:
        """Lock an unlocked immutability policy. Locking cannot be undone."""
        with self._call("lock_immutability_policy", f"immutability policy of container {container}"):
            policy = self.storage_client.blob_containers.lock_immutability_policy(
                group,
                account,
                container,
                if_match=etag,
                timeout=self.timeout,
            )
        return policy.etag if policy is not None else None
