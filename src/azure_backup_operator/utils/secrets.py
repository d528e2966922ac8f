"""Utilities for managing Kubernetes secrets."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Protocol

from kubernetes import client

from ..constants import FIELD_MANAGER, LABEL_MANAGED_BY
from .rate_limit import rate_limit_k8s


class SecretStore(Protocol):
    """Key/value secret storage keyed by name and namespace."""

    def create(self, namespace: str, name: str, data: dict[str, str], labels: dict[str, str] | None = None) -> None:
        """Create a secret; raises if it already exists."""
        ...

    def get(self, namespace: str, name: str) -> dict[str, str] | None:
        """Return the decoded secret data, or None if the secret does not exist."""
        ...

    def update(self, namespace: str, name: str, data: dict[str, str]) -> None:
        """Overwrite the data of an existing secret."""
        ...

    def delete(self, namespace: str, name: str) -> None:
        """Delete a secret; a missing secret is not an error."""
        ...


class SecretAlreadyExistsError(Exception):
    """Raised when creating a secret that already exists."""


def _decode_value(value: str | bytes) -> str:
    # Handle both string and bytes (different versions of kubernetes client)
    if isinstance(value, bytes):
        return value.decode("utf-8")
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value


def _encode_data(data: dict[str, str]) -> dict[str, str]:
    return {k: base64.b64encode(v.encode("utf-8")).decode("utf-8") for k, v in data.items()}


def get_secret_value(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
    key: str,
) -> str:
    """Get a value from a Kubernetes secret.

    Args:
        api: Kubernetes API client
        namespace: Namespace of the secret
        secret_name: Name of the secret
        key: Key in the secret

    Returns:
        Secret value

    Raises:
        ValueError: If secret or key not found
    """
    data = read_secret_data(api, namespace, secret_name)
    if data is None:
        raise ValueError(f"Secret '{secret_name}' not found in namespace '{namespace}'")
    if key not in data:
        raise ValueError(f"Key '{key}' not found in secret '{secret_name}'")
    return data[key]


@rate_limit_k8s
def read_secret_data(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
) -> dict[str, str] | None:
    """Read all data from a Kubernetes secret.

    Returns:
        Dictionary of decoded secret data, or None if the secret does not exist
    """
    try:
        secret = api.read_namespaced_secret(name=secret_name, namespace=namespace)
    except client.exceptions.ApiException as e:
        if e.status == 404:
            return None
        raise
    return {key: _decode_value(value) for key, value in (secret.data or {}).items()}


@rate_limit_k8s
def create_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
    data: dict[str, str],
    labels: dict[str, str] | None = None,
) -> None:
    """Create a Kubernetes secret.

    Raises:
        SecretAlreadyExistsError: If a secret with this name already exists
    """
    secret = client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=secret_name,
            namespace=namespace,
            labels={LABEL_MANAGED_BY: FIELD_MANAGER, **(labels or {})},
        ),
        type="Opaque",
        data=_encode_data(data),
    )

    try:
        api.create_namespaced_secret(
            namespace=namespace,
            body=secret,
            field_manager=FIELD_MANAGER,
        )
    except client.exceptions.ApiException as e:
        if e.status == 409:
            raise SecretAlreadyExistsError(f"Secret '{secret_name}' already exists in namespace '{namespace}'") from e
        raise


@rate_limit_k8s
def update_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
    data: dict[str, str],
) -> None:
    """Replace the data of a Kubernetes secret."""
    body: dict[str, Any] = {"data": _encode_data(data)}
    api.patch_namespaced_secret(
        name=secret_name,
        namespace=namespace,
        body=body,
        field_manager=FIELD_MANAGER,
    )


@rate_limit_k8s
def delete_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
) -> None:
    """Delete a Kubernetes secret; a missing secret is not an error."""
    try:
        api.delete_namespaced_secret(name=secret_name, namespace=namespace)
    except client.exceptions.ApiException as e:
        if e.status != 404:
            raise


class KubernetesSecretStore:
    """Secret store backed by the Kubernetes core API."""

    def __init__(self, api: client.CoreV1Api):
        self.api = api

    def create(self, namespace: str, name: str, data: dict[str, str], labels: dict[str, str] | None = None) -> None:
        create_secret(self.api, namespace, name, data, labels)

    def get(self, namespace: str, name: str) -> dict[str, str] | None:
        return read_secret_data(self.api, namespace, name)

    def update(self, namespace: str, name: str, data: dict[str, str]) -> None:
        update_secret(self.api, namespace, name, data)

    def delete(self, namespace: str, name: str) -> None:
        delete_secret(self.api, namespace, name)
