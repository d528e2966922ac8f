"""Models for backup bucket reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .constants import CLOUD_AZURE_PUBLIC


@dataclass(frozen=True)
class ImmutabilityConfig:
    """Desired immutability policy of the backup container."""

    retention_period: timedelta
    locked: bool = False


@dataclass(frozen=True)
class RotationConfig:
    """Desired storage account key rotation policy."""

    rotation_period: timedelta
    key_expiration_period: timedelta | None = None


@dataclass(frozen=True)
class SecretReference:
    """Reference to a Kubernetes secret."""

    name: str
    namespace: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "namespace": self.namespace}


@dataclass
class BucketRequest:
    """Desired state of a backup bucket for one reconcile call.

    Only ``rotate_now_signal`` and ``generated_secret_ref`` change during a
    reconcile; both mirror writes made through the status store.
    """

    name: str
    region: str
    immutability: ImmutabilityConfig | None = None
    rotation: RotationConfig | None = None
    rotate_now_signal: bool = False
    deletion_requested: bool = False
    cloud_configuration: str = CLOUD_AZURE_PUBLIC
    generated_secret_ref: SecretReference | None = None


@dataclass(frozen=True)
class ObservedImmutabilityPolicy:
    """Immutability policy as currently reported by the cloud."""

    present: bool = False
    retention_days: int = 0
    locked: bool = False
    etag: str | None = None


ABSENT_POLICY = ObservedImmutabilityPolicy()


@dataclass(frozen=True)
class AccountKey:
    """A single storage account access key."""

    name: str
    value: str
    creation_time: datetime | None = None


@dataclass(frozen=True)
class AccountKeySet:
    """The two access keys of a storage account, newest first."""

    keys: tuple[AccountKey, ...] = field(default_factory=tuple)

    @classmethod
    def from_keys(cls, keys: list[AccountKey] | tuple[AccountKey, ...]) -> AccountKeySet:
        """Build a key set ordered newest-first; keys without creation time sort as oldest."""
        ordered = sorted(
            keys,
            key=lambda k: (k.creation_time is not None, k.creation_time or datetime.min),
            reverse=True,
        )
        return cls(tuple(ordered))

    @property
    def newest(self) -> AccountKey:
        return self.keys[0]

    @property
    def oldest(self) -> AccountKey:
        return self.keys[-1]

    def contains_value(self, value: str | None) -> bool:
        return value is not None and any(k.value == value for k in self.keys)

    def __len__(self) -> int:
        return len(self.keys)


@dataclass(frozen=True)
class GeneratedSecret:
    """The published credential for a backup bucket."""

    storage_account_name: str
    storage_key: str
    domain: str
