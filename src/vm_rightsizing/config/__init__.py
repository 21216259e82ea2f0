from .settings import AISettings, AzureSettings, CollectionSettings, JobSettings, Settings, StorageBackend

__all__ = [
    "AISettings",
    "AzureSettings",
    "CollectionSettings",
    "JobSettings",
    "Settings",
    "StorageBackend",
]
