"""Provisioning of the resource group, storage account and container of a backup bucket."""

from __future__ import annotations

import hashlib
import logging

from .. import metrics
from ..constants import STORAGE_ACCOUNT_HASH_LENGTH, STORAGE_ACCOUNT_PREFIX
from ..models import BucketRequest
from ..services.cloud.base import CloudResourceClient
from ..utils.errors import CloudNotFoundError

logger = logging.getLogger(__name__)


def storage_account_name(bucket_name: str) -> str:
    """Derive the storage account name of a backup bucket.

    The name is ``bkp`` followed by the first 15 hex characters of the
    SHA-256 digest of the bucket name, which satisfies Azure's 3-24 lowercase
    alphanumeric constraint.
    """
    digest = hashlib.sha256(bucket_name.encode("utf-8")).hexdigest()
    return f"{STORAGE_ACCOUNT_PREFIX}{digest[:STORAGE_ACCOUNT_HASH_LENGTH]}"


def key_expiration_days(request: BucketRequest) -> int | None:
    """Return the configured key expiration period in whole days, if any."""
    if request.rotation is None or request.rotation.key_expiration_period is None:
        return None
    days = int(request.rotation.key_expiration_period.total_seconds() // 86400)
    return days or None


class ResourceProvisioner:
    """Ensures the cloud resources backing a backup bucket exist."""

    def __init__(self, cloud: CloudResourceClient):
        self.cloud = cloud

    def ensure_resource_group_and_account(self, request: BucketRequest) -> str:
        """Upsert the resource group and the storage account.

        Returns:
            The storage account name
        """
        account = storage_account_name(request.name)

        self.cloud.create_or_update_resource_group(request.name, request.region)
        metrics.bucket_operations_total.labels(operation="ensure_resource_group", result="success").inc()

        self.cloud.create_or_update_storage_account(
            request.name,
            account,
            request.region,
            key_expiration_days(request),
        )
        metrics.bucket_operations_total.labels(operation="ensure_storage_account", result="success").inc()
        logger.info(f"Ensured resource group {request.name} and storage account {account} in {request.region}")
        return account

    def ensure_container(self, request: BucketRequest) -> bool:
        """Create the blob container if the cloud reports it missing.

        Returns:
            True if the container was created
        """
        account = storage_account_name(request.name)
        try:
            self.cloud.get_container(request.name, account, request.name)
            return False
        except CloudNotFoundError:
            pass

        self.cloud.create_container(request.name, account, request.name)
        metrics.bucket_operations_total.labels(operation="create_container", result="success").inc()
        logger.info(f"Created container {request.name} in storage account {account}")
        return True

    def delete_container(self, request: BucketRequest) -> None:
        """Delete the blob container; a missing container or account is not an error."""
        account = storage_account_name(request.name)
        try:
            self.cloud.delete_container(request.name, account, request.name)
            metrics.bucket_operations_total.labels(operation="delete_container", result="success").inc()
        except CloudNotFoundError:
            logger.info(f"Container {request.name} already gone")

    def delete_resource_group(self, request: BucketRequest) -> None:
        """Delete the resource group, which removes the storage account with it."""
        try:
            self.cloud.delete_resource_group(request.name)
            metrics.bucket_operations_total.labels(operation="delete_resource_group", result="success").inc()
        except CloudNotFoundError:
            logger.info(f"Resource group {request.name} already gone")
