"""Utility functions for the Azure Backup Operator."""

from .conditions import set_ready_condition, update_condition
from .errors import determine_error_codes, is_retryable, sanitize_exception
from .events import emit_event
from .rate_limit import rate_limit_azure, rate_limit_k8s
from .secrets import KubernetesSecretStore, get_secret_value

__all__ = [
    "update_condition",
    "set_ready_condition",
    "determine_error_codes",
    "is_retryable",
    "sanitize_exception",
    "emit_event",
    "rate_limit_k8s",
    "rate_limit_azure",
    "get_secret_value",
    "KubernetesSecretStore",
]
