"""
Remote datastore adapters.

The sync engine depends only on RemoteDatastore; RestRemote is the
aiohttp implementation for the hosted backend.
"""

from .base import RemoteDatastore
from .rest import RestRemote

__all__ = [
    "RemoteDatastore",
    "RestRemote",
]
