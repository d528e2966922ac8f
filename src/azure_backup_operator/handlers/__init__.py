"""Handler modules for CRD resources."""

# Handlers register themselves via @kopf decorators on import
from . import backup_bucket  # noqa: F401
