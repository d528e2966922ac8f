"""Builder for backup bucket requests."""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Any

from ..constants import (
    ANNOTATION_ROTATE,
    BLOB_STORAGE_DOMAINS,
    CLOUD_AZURE_PUBLIC,
    RETENTION_TYPE_BUCKET,
)
from ..models import BucketRequest, ImmutabilityConfig, RotationConfig, SecretReference
from ..utils.errors import InvalidConfigurationError

_DURATION_UNITS = {
    "ns": timedelta(microseconds=0.001),
    "us": timedelta(microseconds=1),
    "µs": timedelta(microseconds=1),
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

ONE_DAY = timedelta(hours=24)


def _mapping(value: Any, field: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidConfigurationError(f"{field} must be an object, got {type(value).__name__}")
    return value


def _days(value: Any, field: str) -> int:
    """Convert a whole number of days given as a number or numeric string."""
    if isinstance(value, bool):
        raise InvalidConfigurationError(f"{field} {value!r} is not a whole number of days")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationError(f"{field} {value!r} is not a whole number of days") from e


def parse_duration(value: str | int | float) -> timedelta:
    """Parse a duration such as ``24h``, ``72h0m0s`` or ``1.5h``.

    Plain numbers are taken as seconds.

    Raises:
        InvalidConfigurationError: If the value is not a valid duration
    """
    if isinstance(value, bool):
        raise InvalidConfigurationError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise InvalidConfigurationError(f"invalid duration {value!r}")

    text = value.strip()
    negative = text.startswith("-")
    if text[:1] in "+-":
        text = text[1:]
    if text == "0":
        return timedelta(0)

    total = timedelta(0)
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if not text or pos != len(text):
        raise InvalidConfigurationError(f"invalid duration {value!r}")
    return -total if negative else total


def _build_immutability(config: Any) -> ImmutabilityConfig | None:
    config = _mapping(config, "immutability")
    if not config:
        return None

    retention_type = config.get("retentionType", RETENTION_TYPE_BUCKET)
    if retention_type != RETENTION_TYPE_BUCKET:
        raise InvalidConfigurationError(
            f"immutability.retentionType {retention_type!r} is not supported, must be '{RETENTION_TYPE_BUCKET}'"
        )

    raw_period = config.get("retentionPeriod")
    if raw_period is None:
        raise InvalidConfigurationError("immutability.retentionPeriod is required")
    period = parse_duration(raw_period)

    # Azure sets the immutability period in whole days only
    if period < ONE_DAY:
        raise InvalidConfigurationError(f"immutability.retentionPeriod {raw_period} must be at least 24h")
    if period % ONE_DAY:
        raise InvalidConfigurationError(
            f"immutability.retentionPeriod {raw_period} must be a positive integer multiple of 24h"
        )

    return ImmutabilityConfig(retention_period=period, locked=bool(config.get("locked", False)))


def _build_rotation(config: Any) -> RotationConfig | None:
    if config is None:
        return None
    config = _mapping(config, "rotationConfig")

    rotation_days = _days(config.get("rotationPeriodDays", 0), "rotationConfig.rotationPeriodDays")
    if rotation_days == 0:
        # Disabled rotation, reported by the rotation engine
        return RotationConfig(rotation_period=timedelta(0))
    if rotation_days < 2:
        raise InvalidConfigurationError(
            f"rotationConfig.rotationPeriodDays {rotation_days} must be equal or greater than 2 days"
        )

    expiration = None
    expiration_days = config.get("expirationPeriodDays")
    if expiration_days is not None:
        expiration_days = _days(expiration_days, "rotationConfig.expirationPeriodDays")
        if expiration_days <= rotation_days:
            raise InvalidConfigurationError(
                f"rotationConfig.expirationPeriodDays {expiration_days} must be greater than the rotation period"
            )
        expiration = timedelta(days=expiration_days)

    return RotationConfig(rotation_period=timedelta(days=rotation_days), key_expiration_period=expiration)


def _build_secret_ref(ref: dict[str, Any] | None) -> SecretReference | None:
    if not ref or not ref.get("name"):
        return None
    return SecretReference(name=ref["name"], namespace=ref.get("namespace", ""))


def create_bucket_request_from_resource(
    spec: dict[str, Any],
    meta: dict[str, Any],
    status: dict[str, Any] | None = None,
) -> BucketRequest:
    """Create a bucket request from a BackupBucket resource.

    Args:
        spec: BackupBucket spec
        meta: BackupBucket metadata
        status: BackupBucket status

    Returns:
        Desired state for one reconcile call

    Raises:
        InvalidConfigurationError: If the resource carries an invalid configuration
    """
    name = meta.get("name")
    if not name:
        raise InvalidConfigurationError("metadata.name is required")

    region = spec.get("region")
    if not region:
        raise InvalidConfigurationError("spec.region is required")

    provider_config = _mapping(spec.get("providerConfig"), "providerConfig")
    cloud_configuration = (
        _mapping(provider_config.get("cloudConfiguration"), "cloudConfiguration").get("name") or CLOUD_AZURE_PUBLIC
    )
    if not isinstance(cloud_configuration, str) or cloud_configuration not in BLOB_STORAGE_DOMAINS:
        raise InvalidConfigurationError(
            f"cloudConfiguration.name {cloud_configuration!r} is not one of {sorted(BLOB_STORAGE_DOMAINS)}"
        )

    annotations = meta.get("annotations") or {}
    status = status or {}

    return BucketRequest(
        name=name,
        region=region,
        immutability=_build_immutability(provider_config.get("immutability")),
        rotation=_build_rotation(provider_config.get("rotationConfig")),
        rotate_now_signal=annotations.get(ANNOTATION_ROTATE) == "true",
        deletion_requested=meta.get("deletionTimestamp") is not None,
        cloud_configuration=cloud_configuration,
        generated_secret_ref=_build_secret_ref(status.get("generatedSecretRef")),
    )
