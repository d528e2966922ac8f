"""Shared in-memory fakes for the backup bucket tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from kubernetes import client

from azure_backup_operator.models import (
    ABSENT_POLICY,
    AccountKey,
    AccountKeySet,
    ObservedImmutabilityPolicy,
)
from azure_backup_operator.utils import rate_limit
from azure_backup_operator.utils.errors import CloudConflictError, CloudNotFoundError
from azure_backup_operator.utils.secrets import SecretAlreadyExistsError

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

MUTATING_OPERATIONS = {
    "create_or_update_resource_group",
    "delete_resource_group",
    "create_or_update_storage_account",
    "rotate_key",
    "create_container",
    "delete_container",
    "create_or_update_immutability_policy",
    "extend_immutability_policy",
    "delete_immutability_policy",
    "lock_immutability_policy",
}


class FakeCloudClient:
    """In-memory cloud with etag checks on immutability policies."""

    def __init__(self, now: datetime = NOW):
        self.now = now
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.failures: dict[str, Exception] = {}
        self.resource_groups: dict[str, str] = {}
        self.accounts: dict[str, dict[str, Any]] = {}
        self.keys: dict[str, list[AccountKey]] = {}
        self.containers: set[tuple[str, str]] = set()
        self.policies: dict[tuple[str, str], dict[str, Any]] = {}
        self._etag_counter = 0
        self._key_counter = 0

    @property
    def mutations(self) -> list[tuple[str, tuple[Any, ...]]]:
        return [call for call in self.calls if call[0] in MUTATING_OPERATIONS]

    def mutation_names(self) -> list[str]:
        return [name for name, _ in self.mutations]

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        if operation in self.failures:
            raise self.failures[operation]

    def _next_etag(self) -> str:
        self._etag_counter += 1
        return f"etag-{self._etag_counter}"

    # Seeding helpers

    def seed_account(self, group: str, account: str, key_ages: tuple[timedelta, timedelta] | None = None) -> None:
        """Create an account directly, bypassing call recording."""
        self.resource_groups[group] = "westeurope"
        self.accounts[account] = {"group": group, "region": "westeurope", "key_expiration_days": None}
        ages = key_ages or (timedelta(days=10), timedelta(days=5))
        self.keys[account] = [
            AccountKey(name="key1", value=f"{account}-key1-v0", creation_time=self.now - ages[0]),
            AccountKey(name="key2", value=f"{account}-key2-v0", creation_time=self.now - ages[1]),
        ]

    def seed_container(self, account: str, container: str) -> None:
        self.containers.add((account, container))

    def seed_policy(self, account: str, container: str, days: int, locked: bool) -> None:
        self.policies[(account, container)] = {"days": days, "locked": locked, "etag": self._next_etag()}

    # Resource groups and accounts

    def create_or_update_resource_group(self, name: str, region: str) -> None:
        self._record("create_or_update_resource_group", name, region)
        self.resource_groups[name] = region

    def delete_resource_group(self, name: str) -> None:
        self._record("delete_resource_group", name)
        if name not in self.resource_groups:
            raise CloudNotFoundError(f"resource group {name}")
        del self.resource_groups[name]
        for account in [a for a, v in self.accounts.items() if v["group"] == name]:
            del self.accounts[account]
            self.keys.pop(account, None)

    def create_or_update_storage_account(
        self, group: str, account: str, region: str, key_expiration_days: int | None = None
    ) -> None:
        self._record("create_or_update_storage_account", group, account, region, key_expiration_days)
        if group not in self.resource_groups:
            raise CloudNotFoundError(f"resource group {group}")
        self.accounts[account] = {"group": group, "region": region, "key_expiration_days": key_expiration_days}
        if account not in self.keys:
            self.keys[account] = [
                AccountKey(name="key1", value=f"{account}-key1-v0", creation_time=self.now - timedelta(minutes=2)),
                AccountKey(name="key2", value=f"{account}-key2-v0", creation_time=self.now - timedelta(minutes=1)),
            ]

    def list_keys(self, group: str, account: str) -> AccountKeySet:
        self._record("list_keys", group, account)
        if account not in self.accounts:
            raise CloudNotFoundError(f"storage account {account}")
        return AccountKeySet.from_keys(self.keys[account])

    def rotate_key(self, group: str, account: str, key_name: str) -> AccountKeySet:
        self._record("rotate_key", group, account, key_name)
        if account not in self.accounts:
            raise CloudNotFoundError(f"storage account {account}")
        self._key_counter += 1
        self.keys[account] = [
            AccountKey(name=key.name, value=f"{account}-{key_name}-v{self._key_counter}", creation_time=self.now)
            if key.name == key_name
            else key
            for key in self.keys[account]
        ]
        return AccountKeySet.from_keys(self.keys[account])

    # Containers

    def get_container(self, group: str, account: str, container: str) -> None:
        self._record("get_container", group, account, container)
        if (account, container) not in self.containers:
            raise CloudNotFoundError(f"container {container}")

    def create_container(self, group: str, account: str, container: str) -> None:
        self._record("create_container", group, account, container)
        self.containers.add((account, container))

    def delete_container(self, group: str, account: str, container: str) -> None:
        self._record("delete_container", group, account, container)
        if (account, container) not in self.containers:
            raise CloudNotFoundError(f"container {container}")
        self.containers.discard((account, container))

    # Immutability policies

    def get_immutability_policy(self, group: str, account: str, container: str) -> ObservedImmutabilityPolicy:
        self._record("get_immutability_policy", group, account, container)
        policy = self.policies.get((account, container))
        if policy is None:
            return ABSENT_POLICY
        return ObservedImmutabilityPolicy(
            present=True, retention_days=policy["days"], locked=policy["locked"], etag=policy["etag"]
        )

    def _check_etag(self, account: str, container: str, etag: str | None) -> dict[str, Any]:
        policy = self.policies.get((account, container))
        if policy is None:
            raise CloudNotFoundError(f"immutability policy of container {container}")
        if etag != policy["etag"]:
            raise CloudConflictError(f"stale etag {etag}, current {policy['etag']}")
        return policy

    def create_or_update_immutability_policy(
        self, group: str, account: str, container: str, days: int, etag: str | None = None
    ) -> str | None:
        self._record("create_or_update_immutability_policy", group, account, container, days, etag)
        policy = self.policies.get((account, container))
        if policy is not None:
            if policy["locked"]:
                raise CloudConflictError("policy is locked")
            if etag is not None and etag != policy["etag"]:
                raise CloudConflictError(f"stale etag {etag}")
        new_etag = self._next_etag()
        self.policies[(account, container)] = {"days": days, "locked": False, "etag": new_etag}
        return new_etag

    def extend_immutability_policy(self, group: str, account: str, container: str, days: int, etag: str) -> str | None:
        self._record("extend_immutability_policy", group, account, container, days, etag)
        policy = self._check_etag(account, container, etag)
        if not policy["locked"] or days <= policy["days"]:
            raise CloudConflictError("only locked policies can be extended")
        policy.update(days=days, etag=self._next_etag())
        return policy["etag"]

    def delete_immutability_policy(self, group: str, account: str, container: str, etag: str) -> None:
        self._record("delete_immutability_policy", group, account, container, etag)
        policy = self._check_etag(account, container, etag)
        if policy["locked"]:
            raise CloudConflictError("locked policies cannot be deleted")
        del self.policies[(account, container)]

    def lock_immutability_policy(self, group: str, account: str, container: str, etag: str) -> str | None:
        self._record("lock_immutability_policy", group, account, container, etag)
        policy = self._check_etag(account, container, etag)
        policy.update(locked=True, etag=self._next_etag())
        return policy["etag"]


class FakeSecretStore:
    """In-memory secret store keyed by (namespace, name)."""

    def __init__(self):
        self.secrets: dict[tuple[str, str], dict[str, str]] = {}
        self.writes: list[tuple[str, str, str]] = []
        self.fail_update: Exception | None = None

    def create(self, namespace: str, name: str, data: dict[str, str], labels: dict[str, str] | None = None) -> None:
        if (namespace, name) in self.secrets:
            raise SecretAlreadyExistsError(f"{namespace}/{name} already exists")
        self.writes.append(("create", namespace, name))
        self.secrets[(namespace, name)] = dict(data)

    def get(self, namespace: str, name: str) -> dict[str, str] | None:
        data = self.secrets.get((namespace, name))
        return dict(data) if data is not None else None

    def update(self, namespace: str, name: str, data: dict[str, str]) -> None:
        if self.fail_update is not None:
            raise self.fail_update
        if (namespace, name) not in self.secrets:
            raise client.exceptions.ApiException(status=404)
        self.writes.append(("update", namespace, name))
        self.secrets[(namespace, name)] = dict(data)

    def delete(self, namespace: str, name: str) -> None:
        self.writes.append(("delete", namespace, name))
        self.secrets.pop((namespace, name), None)


class FakeStatusStore:
    """Records writes to the backup bucket resource."""

    def __init__(self):
        self.persisted_refs: list[tuple[str, Any]] = []
        self.cleared_signals: list[str] = []
        self.fail_persist: Exception | None = None

    def persist_generated_secret_ref(self, request: Any, ref: Any) -> None:
        if self.fail_persist is not None:
            raise self.fail_persist
        self.persisted_refs.append((request.name, ref))

    def clear_rotation_signal(self, request: Any) -> None:
        self.cleared_signals.append(request.name)


@pytest.fixture(autouse=True)
def no_throttle(monkeypatch):
    """Disable API throttling so tests never sleep."""
    monkeypatch.setattr(rate_limit._k8s_throttle, "min_interval", 0.0)
    monkeypatch.setattr(rate_limit._azure_throttle, "min_interval", 0.0)


@pytest.fixture
def cloud() -> FakeCloudClient:
    return FakeCloudClient()


@pytest.fixture
def secret_store() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def status_store() -> FakeStatusStore:
    return FakeStatusStore()
