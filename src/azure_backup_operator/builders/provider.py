"""Builder for Azure cloud clients."""

from __future__ import annotations

import os
from typing import Any

from azure.identity import AzureAuthorityHosts, ClientSecretCredential
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.storage import StorageManagementClient
from kubernetes import client

from ..constants import (
    CLOUD_AZURE_CHINA,
    CLOUD_AZURE_GOVERNMENT,
    CLOUD_AZURE_PUBLIC,
    SECRET_KEY_CLIENT_ID,
    SECRET_KEY_CLIENT_SECRET,
    SECRET_KEY_SUBSCRIPTION_ID,
    SECRET_KEY_TENANT_ID,
)
from ..models import SecretReference
from ..services.azure.client import AzureProvider
from ..utils.errors import InvalidConfigurationError
from ..utils.secrets import get_secret_value

# Authority host and resource manager endpoint per cloud
CLOUD_ENDPOINTS = {
    CLOUD_AZURE_PUBLIC: (AzureAuthorityHosts.AZURE_PUBLIC_CLOUD, "https://management.azure.com"),
    CLOUD_AZURE_CHINA: (AzureAuthorityHosts.AZURE_CHINA, "https://management.chinacloudapi.cn"),
    CLOUD_AZURE_GOVERNMENT: (AzureAuthorityHosts.AZURE_GOVERNMENT, "https://management.usgovcloudapi.net"),
}


def create_azure_provider_from_secret(
    core_api: client.CoreV1Api,
    secret_ref: dict[str, Any] | SecretReference,
    cloud_configuration: str = CLOUD_AZURE_PUBLIC,
) -> AzureProvider:
    """Create an Azure provider from a credentials secret.

    The secret must hold the keys subscriptionID, tenantID, clientID and
    clientSecret of a service principal. The SDK clients do not retry: retries
    are driven by the operator's requeue.

    Args:
        core_api: Kubernetes CoreV1Api client
        secret_ref: Reference to the credentials secret
        cloud_configuration: Azure cloud the credentials belong to

    Returns:
        Configured Azure provider

    Raises:
        InvalidConfigurationError: If the reference or the cloud configuration is invalid
        ValueError: If the secret or one of its keys is missing
    """
    if isinstance(secret_ref, SecretReference):
        secret_name, secret_ns = secret_ref.name, secret_ref.namespace
    else:
        secret_name, secret_ns = secret_ref.get("name"), secret_ref.get("namespace")
    if not secret_name or not secret_ns:
        raise InvalidConfigurationError("spec.secretRef.name and spec.secretRef.namespace are required")

    try:
        authority, management_endpoint = CLOUD_ENDPOINTS[cloud_configuration]
    except KeyError:
        raise InvalidConfigurationError(f"unknown cloud configuration {cloud_configuration!r}") from None

    subscription_id = get_secret_value(core_api, secret_ns, secret_name, SECRET_KEY_SUBSCRIPTION_ID)
    tenant_id = get_secret_value(core_api, secret_ns, secret_name, SECRET_KEY_TENANT_ID)
    client_id = get_secret_value(core_api, secret_ns, secret_name, SECRET_KEY_CLIENT_ID)
    client_secret = get_secret_value(core_api, secret_ns, secret_name, SECRET_KEY_CLIENT_SECRET)

    credential = ClientSecretCredential(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
        authority=authority,
    )
    client_kwargs = {
        "base_url": management_endpoint,
        "credential_scopes": [f"{management_endpoint}/.default"],
        "retry_total": 0,
    }

    timeout = float(os.getenv("AZURE_API_TIMEOUT_SECONDS", "60"))
    return AzureProvider(
        resource_client=ResourceManagementClient(credential, subscription_id, **client_kwargs),
        storage_client=StorageManagementClient(credential, subscription_id, **client_kwargs),
        timeout=timeout,
    )
