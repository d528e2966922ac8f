"""Prometheus metrics for the Azure Backup Operator."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "azure_backup_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "azure_backup_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

error_total = Counter(
    "azure_backup_operator_error_total",
    "Total number of reconciliation errors",
    ["kind", "error_type"],
)

# Backup bucket operation metrics
bucket_operations_total = Counter(
    "azure_backup_operator_bucket_operations_total",
    "Total number of backup bucket resource operations",
    ["operation", "result"],
)

immutability_operations_total = Counter(
    "azure_backup_operator_immutability_operations_total",
    "Total number of immutability policy operations",
    ["action", "result"],
)

key_rotations_total = Counter(
    "azure_backup_operator_key_rotations_total",
    "Total number of storage account key rotations",
    ["trigger", "result"],
)

# API call metrics
api_call_total = Counter(
    "azure_backup_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "azure_backup_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 30.0, 120.0],
)

rate_limit_hits_total = Counter(
    "azure_backup_operator_rate_limit_hits_total",
    "Total number of rate limit hits",
    ["api_type"],
)
