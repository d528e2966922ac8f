"""Publishing of the generated backup bucket credential."""

from __future__ import annotations

import logging
from typing import Protocol

from ..constants import (
    DEFAULT_GENERATED_SECRET_NAMESPACE,
    GENERATED_SECRET_PREFIX,
    LABEL_BACKUP_BUCKET_NAME,
    SECRET_KEY_DOMAIN,
    SECRET_KEY_STORAGE_ACCOUNT,
    SECRET_KEY_STORAGE_KEY,
)
from ..models import BucketRequest, GeneratedSecret, SecretReference
from ..utils.secrets import SecretAlreadyExistsError, SecretStore

logger = logging.getLogger(__name__)


class BucketStatusStore(Protocol):
    """Persists reconcile bookkeeping on the backup bucket resource."""

    def persist_generated_secret_ref(self, request: BucketRequest, ref: SecretReference) -> None:
        """Store the generated secret reference on the resource status."""
        ...

    def clear_rotation_signal(self, request: BucketRequest) -> None:
        """Remove the rotate-now signal from the resource."""
        ...


def _secret_data(storage_account: str, key: str, domain: str) -> dict[str, str]:
    return {
        SECRET_KEY_STORAGE_ACCOUNT: storage_account,
        SECRET_KEY_STORAGE_KEY: key,
        SECRET_KEY_DOMAIN: domain,
    }


class CredentialPublisher:
    """Sole writer of the generated secret and its reference."""

    def __init__(
        self,
        secrets: SecretStore,
        status_store: BucketStatusStore,
        namespace: str = DEFAULT_GENERATED_SECRET_NAMESPACE,
    ):
        self.secrets = secrets
        self.status_store = status_store
        self.namespace = namespace

    def secret_reference(self, request: BucketRequest) -> SecretReference:
        """Return the well-known location of a bucket's generated secret."""
        return SecretReference(name=f"{GENERATED_SECRET_PREFIX}{request.name}", namespace=self.namespace)

    def create(self, request: BucketRequest, storage_account: str, key: str, domain: str) -> SecretReference:
        """Write the secret data, then persist the reference on the bucket.

        A secret left behind by an earlier attempt whose reference write failed
        is overwritten rather than treated as an error.
        """
        ref = self.secret_reference(request)
        data = _secret_data(storage_account, key, domain)
        try:
            self.secrets.create(ref.namespace, ref.name, data, labels={LABEL_BACKUP_BUCKET_NAME: request.name})
            logger.info(f"Created generated secret {ref.namespace}/{ref.name}")
        except SecretAlreadyExistsError:
            logger.info(f"Generated secret {ref.namespace}/{ref.name} already exists, overwriting")
            self.secrets.update(ref.namespace, ref.name, data)

        self.status_store.persist_generated_secret_ref(request, ref)
        request.generated_secret_ref = ref
        return ref

    def update(self, ref: SecretReference, storage_account: str, key: str, domain: str) -> None:
        """Overwrite the secret data in place."""
        self.secrets.update(ref.namespace, ref.name, _secret_data(storage_account, key, domain))
        logger.info(f"Updated generated secret {ref.namespace}/{ref.name}")

    def delete(self, ref: SecretReference) -> None:
        """Delete the secret; a missing secret is not an error."""
        self.secrets.delete(ref.namespace, ref.name)
        logger.info(f"Deleted generated secret {ref.namespace}/{ref.name}")

    def get(self, ref: SecretReference) -> GeneratedSecret | None:
        """Load the published credential, or None if the secret does not exist."""
        data = self.secrets.get(ref.namespace, ref.name)
        if data is None:
            return None
        return GeneratedSecret(
            storage_account_name=data.get(SECRET_KEY_STORAGE_ACCOUNT, ""),
            storage_key=data.get(SECRET_KEY_STORAGE_KEY, ""),
            domain=data.get(SECRET_KEY_DOMAIN, ""),
        )
