from .google_client import GooglePhotosClient
from .interfaces import RemoteClient, TokenProvider

__all__ = ["GooglePhotosClient", "RemoteClient", "TokenProvider"]
