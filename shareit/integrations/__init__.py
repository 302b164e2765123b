"""ShareIt integration clients.

Clients implement ``BaseIntegration``; they fall back to local or logging-only
behaviour when no real credentials are configured.
"""

from shareit.integrations.base import BaseIntegration
from shareit.integrations.storage import EvidenceStorageClient, StoredFile

__all__ = [
    "BaseIntegration",
    "EvidenceStorageClient",
    "StoredFile",
]
