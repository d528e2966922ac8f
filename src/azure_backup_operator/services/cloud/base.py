"""Base cloud resource client interface."""

from __future__ import annotations

from typing import Protocol

from ...models import AccountKeySet, ObservedImmutabilityPolicy


class CloudResourceClient(Protocol):
    """Protocol defining the cloud operations needed to manage a backup bucket.

    Implementations raise ``CloudNotFoundError`` when a resource is missing and
    ``CloudConflictError`` when a request carries a stale etag.
    """

    def create_or_update_resource_group(self, name: str, region: str) -> None:
        """Create a resource group or leave an identical one unchanged."""
        ...

    def delete_resource_group(self, name: str) -> None:
        """Delete a resource group and everything in it."""
        ...

    def create_or_update_storage_account(
        self,
        group: str,
        account: str,
        region: str,
        key_expiration_days: int | None = None,
    ) -> None:
        """Create a storage account or leave an identical one unchanged."""
        ...

    def list_keys(self, group: str, account: str) -> AccountKeySet:
        """List the two access keys of a storage account."""
        ...

    def rotate_key(self, group: str, account: str, key_name: str) -> AccountKeySet:
        """Regenerate one access key and return the refreshed key set."""
        ...

    def get_container(self, group: str, account: str, container: str) -> None:
        """Check that a blob container exists."""
        ...

    def create_container(self, group: str, account: str, container: str) -> None:
        """Create a private blob container."""
        ...

    def delete_container(self, group: str, account: str, container: str) -> None:
        """Delete a blob container."""
        ...

    def get_immutability_policy(self, group: str, account: str, container: str) -> ObservedImmutabilityPolicy:
        """Fetch the container's immutability policy."""
        ...

    def create_or_update_immutability_policy(
        self,
        group: str,
        account: str,
        container: str,
        days: int,
        etag: str | None = None,
    ) -> str | None:
        """Create or update an unlocked immutability policy; returns the new etag."""
        ...

    def extend_immutability_policy(self, group: str, account: str, container: str, days: int, etag: str) -> str | None:
        """Extend the retention of a locked immutability policy; returns the new etag."""
        ...

    def delete_immutability_policy(self, group: str, account: str, container: str, etag: str) -> None:
        """Delete an unlocked immutability policy."""
        ...

    def lock_immutability_policy(self, group: str, account: str, container: str, etag: str) -> str | None:
        """Lock an unlocked immutability policy; returns the new etag."""
        ...
