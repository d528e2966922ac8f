"""Constants for the Azure Backup Operator."""

# API Group
API_GROUP = "backup.azure.cloud37.dev"
API_VERSION = "v1alpha1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Resource Kinds
KIND_BACKUP_BUCKET = "BackupBucket"
PLURAL_BACKUP_BUCKETS = "backupbuckets"

# Labels
LABEL_MANAGED_BY = f"{API_GROUP}/managed-by"
LABEL_BACKUP_BUCKET_NAME = f"{API_GROUP}/backup-bucket-name"

# Annotations
ANNOTATION_ROTATE = f"{API_GROUP}/rotate"

# Finalizers
FINALIZER = f"{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "azure-backup-operator"
CONTROLLER_NAME = "azure-backup-operator"

# Generated secret
GENERATED_SECRET_PREFIX = "generated-bucket-"
DEFAULT_GENERATED_SECRET_NAMESPACE = "garden"
SECRET_KEY_STORAGE_ACCOUNT = "storageAccount"
SECRET_KEY_STORAGE_KEY = "storageKey"
SECRET_KEY_DOMAIN = "domain"

# Cloud credentials secret keys
SECRET_KEY_SUBSCRIPTION_ID = "subscriptionID"
SECRET_KEY_TENANT_ID = "tenantID"
SECRET_KEY_CLIENT_ID = "clientID"
SECRET_KEY_CLIENT_SECRET = "clientSecret"

# Storage account naming
STORAGE_ACCOUNT_PREFIX = "bkp"
STORAGE_ACCOUNT_HASH_LENGTH = 15

# Cloud configurations and their blob storage domains
CLOUD_AZURE_PUBLIC = "AzurePublic"
CLOUD_AZURE_CHINA = "AzureChina"
CLOUD_AZURE_GOVERNMENT = "AzureGovernment"
BLOB_STORAGE_DOMAINS = {
    CLOUD_AZURE_PUBLIC: "blob.core.windows.net",
    CLOUD_AZURE_CHINA: "blob.core.chinacloudapi.cn",
    CLOUD_AZURE_GOVERNMENT: "blob.core.usgovcloudapi.net",
}

# Immutability
RETENTION_TYPE_BUCKET = "bucket"

# Condition Types
COND_READY = "Ready"
COND_PROVISIONING_FAILED = "ProvisioningFailed"
COND_IMMUTABILITY_FAILED = "ImmutabilityFailed"
COND_ROTATION_FAILED = "RotationFailed"
COND_CONFIGURATION_INVALID = "ConfigurationInvalid"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_SUCCEEDED = "ReconcileSucceeded"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_VALIDATE_FAILED = "ValidateFailed"
EVENT_REASON_BUCKET_PROVISIONED = "BucketProvisioned"
EVENT_REASON_BUCKET_DELETED = "BucketDeleted"
EVENT_REASON_KEY_ROTATED = "StorageKeyRotated"
