"""Storage account key rotation.

A storage account always has exactly two keys. Rotation regenerates the older
one, so the previously newest key stays valid as the fallback while consumers
pick up the fresh key from the generated secret.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from .. import metrics
from ..models import AccountKeySet, BucketRequest
from ..services.cloud.base import CloudResourceClient
from .provisioner import storage_account_name

logger = logging.getLogger(__name__)

TRIGGER_AGE = "age"
TRIGGER_SIGNAL = "signal"


@dataclass(frozen=True)
class RotationResult:
    keys: AccountKeySet
    rotated: bool = False
    trigger: str | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyRotationEngine:
    """Decides whether the storage account keys are due for rotation and rotates them."""

    def __init__(self, cloud: CloudResourceClient, clock: Callable[[], datetime] = utcnow):
        self.cloud = cloud
        self.clock = clock

    def rotation_enabled(self, request: BucketRequest) -> bool:
        """Return whether rotation is configured with a usable period."""
        if request.rotation is None:
            return False
        if not request.rotation.rotation_period:
            logger.warning(
                f"Key rotation is configured for bucket {request.name} but the rotation period is zero; "
                "skipping rotation"
            )
            return False
        return True

    def is_expired(self, keys: AccountKeySet, request: BucketRequest) -> bool:
        """Return whether the newest key is older than the rotation period.

        A newest key without creation time is never considered expired.
        """
        created = keys.newest.creation_time
        if created is None:
            logger.info(f"Newest key of bucket {request.name} has no creation time; age-based rotation skipped")
            return False
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return self.clock() - created > request.rotation.rotation_period

    def maybe_rotate(self, keys: AccountKeySet, request: BucketRequest, published_key: str | None) -> RotationResult:
        """Rotate the older key if the newest key is too old or a rotation was requested.

        On success a pending rotate-now signal is cleared on ``request``. If the
        published key already equals the newest key, a signal is treated as
        already honoured: it is cleared without rotating. On failure both the
        key set and the signal are left untouched.

        Args:
            keys: Freshly listed key set, newest first
            request: Desired state of the bucket
            published_key: Storage key currently held by the generated secret

        Returns:
            Rotation result with the (possibly refreshed) key set
        """
        if not self.rotation_enabled(request):
            if request.rotate_now_signal:
                logger.info(f"Ignoring rotation signal for bucket {request.name}: key rotation is not configured")
            return RotationResult(keys)

        trigger = None
        if self.is_expired(keys, request):
            trigger = TRIGGER_AGE
        elif request.rotate_now_signal:
            if published_key is not None and published_key == keys.newest.value:
                logger.info(
                    f"Rotation signal for bucket {request.name} already honoured; published key is the newest key"
                )
                metrics.key_rotations_total.labels(trigger=TRIGGER_SIGNAL, result="skipped").inc()
                request.rotate_now_signal = False
                return RotationResult(keys)
            trigger = TRIGGER_SIGNAL

        if trigger is None:
            return RotationResult(keys)

        account = storage_account_name(request.name)
        key_name = keys.oldest.name
        logger.info(f"Rotating key {key_name} of storage account {account} (trigger: {trigger})")
        try:
            rotated_keys = self.cloud.rotate_key(request.name, account, key_name)
        except Exception:
            metrics.key_rotations_total.labels(trigger=trigger, result="failed").inc()
            raise

        metrics.key_rotations_total.labels(trigger=trigger, result="success").inc()
        request.rotate_now_signal = False
        return RotationResult(rotated_keys, rotated=True, trigger=trigger)
