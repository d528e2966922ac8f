"""Error types, classification and sanitization utilities."""

from __future__ import annotations

import re
from typing import Any


class BackupBucketError(Exception):
    """Base class for all errors raised by the backup bucket reconciler."""


class CloudNotFoundError(BackupBucketError):
    """A cloud resource does not exist."""

    def __init__(self, resource: str, message: str | None = None):
        self.resource = resource
        super().__init__(message or f"{resource} not found")


class CloudConflictError(BackupBucketError):
    """The cloud rejected a request because of a conflict or a stale etag."""


class InvalidConfigurationError(BackupBucketError):
    """The desired configuration is malformed; retrying without a change cannot succeed."""


class ReconcileCancelledError(BackupBucketError):
    """The reconcile was cancelled by the caller."""


# Error codes reported on the resource status
ERR_INFRA_UNAUTHENTICATED = "ERR_INFRA_UNAUTHENTICATED"
ERR_INFRA_UNAUTHORIZED = "ERR_INFRA_UNAUTHORIZED"
ERR_INFRA_QUOTA_EXCEEDED = "ERR_INFRA_QUOTA_EXCEEDED"
ERR_INFRA_RATE_LIMITS_EXCEEDED = "ERR_INFRA_RATE_LIMITS_EXCEEDED"
ERR_INFRA_DEPENDENCIES = "ERR_INFRA_DEPENDENCIES"
ERR_RETRYABLE_INFRA_DEPENDENCIES = "ERR_RETRYABLE_INFRA_DEPENDENCIES"
ERR_INFRA_RESOURCES_DEPLETED = "ERR_INFRA_RESOURCES_DEPLETED"
ERR_CONFIGURATION_PROBLEM = "ERR_CONFIGURATION_PROBLEM"
ERR_RETRYABLE_CONFIGURATION_PROBLEM = "ERR_RETRYABLE_CONFIGURATION_PROBLEM"

# Codes that cannot be fixed by retrying
NON_RETRYABLE_CODES = {
    ERR_INFRA_UNAUTHENTICATED,
    ERR_INFRA_UNAUTHORIZED,
    ERR_CONFIGURATION_PROBLEM,
}

KNOWN_CODES: dict[str, re.Pattern[str]] = {
    ERR_INFRA_UNAUTHENTICATED: re.compile(
        r"(InvalidAuthenticationTokenTenant|Authentication failed|invalid_client|"
        r"cannot fetch token|InvalidSubscriptionId|AADSTS\d+)",
        re.IGNORECASE,
    ),
    ERR_INFRA_UNAUTHORIZED: re.compile(
        r"(Unauthorized|AuthorizationFailed|invalid_grant|Authorization Profile was not found|"
        r"no active subscriptions|not authorized|AccessDenied|OperationNotAllowed)",
        re.IGNORECASE,
    ),
    ERR_INFRA_QUOTA_EXCEEDED: re.compile(
        r"(Quotas|Quota.*exceeded|exceeded quota|Quota has been met|QUOTA_EXCEEDED|"
        r"StorageAccountCountLimitExceeded)",
        re.IGNORECASE,
    ),
    ERR_INFRA_RATE_LIMITS_EXCEEDED: re.compile(
        r"(RequestLimitExceeded|Throttling|Too many requests|TooManyRequests)",
        re.IGNORECASE,
    ),
    ERR_INFRA_DEPENDENCIES: re.compile(
        r"(PendingVerification|DependencyViolation|Conflict|inactive billing state|"
        r"ReadOnlyDisabledSubscription|is already being used|InternalServerError|"
        r"internal server error|StorageAccountAlreadyTaken|ContainerBeingDeleted)",
        re.IGNORECASE,
    ),
    ERR_RETRYABLE_INFRA_DEPENDENCIES: re.compile(r"(RetryableError|ConditionNotMet|PreconditionFailed)", re.IGNORECASE),
    ERR_INFRA_RESOURCES_DEPLETED: re.compile(
        r"(not available in the current hardware cluster|SkuNotAvailable|out of stock)",
        re.IGNORECASE,
    ),
    ERR_CONFIGURATION_PROBLEM: re.compile(
        r"(InvalidParameter|Invalid value|violates constraint|LocationNotAvailableForResourceType|"
        r"AccountNameInvalid|InvalidResourceLocation|ImmutabilityPolicy.*Invalid)",
        re.IGNORECASE,
    ),
    ERR_RETRYABLE_CONFIGURATION_PROBLEM: re.compile(
        r"(The requested configuration is currently not supported)",
        re.IGNORECASE,
    ),
}


def determine_error_codes(error: Exception | str) -> list[str]:
    """Classify an error into the known error codes by matching its message.

    Args:
        error: Exception or error message

    Returns:
        List of matching error codes in declaration order (may be empty)
    """
    if isinstance(error, InvalidConfigurationError):
        return [ERR_CONFIGURATION_PROBLEM]

    message = str(error)
    return [code for code, pattern in KNOWN_CODES.items() if pattern.search(message)]


def is_retryable(error: Exception) -> bool:
    """Return whether an error may succeed when the reconcile is retried."""
    codes = determine_error_codes(error)
    return not any(code in NON_RETRYABLE_CODES for code in codes)


# Patterns that might expose sensitive information
SENSITIVE_PATTERNS = [
    r"client[_\s]?secret[:=\s]+([^\s,;\)]+)",
    r"account[_\s]?key[:=\s]+([A-Za-z0-9/+=]{20,})",
    r"AccountKey=([A-Za-z0-9/+=]+)",
    r"sig=([A-Za-z0-9%/+=]+)",
    r"bearer\s+([A-Za-z0-9\-\._~\+/]+=*)",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "client_secret",
    "clientsecret",
    "storage_key",
    "storagekey",
    "account_key",
    "password",
    "secret",
    "credentials",
    "token",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(
            pattern,
            lambda m: m.group(0).replace(m.group(1), "[REDACTED]"),
            sanitized,
            flags=re.IGNORECASE,
        )

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"{field}[:=\s]+([^\s,;\)]+)",
            rf"{field}: [REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: Exception) -> str:
    """Sanitize exception message."""
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    all_sensitive = SENSITIVE_FIELDS | (sensitive_keys or set())
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in all_sensitive):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value

    return sanitized
