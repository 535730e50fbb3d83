"""
HTTP surface of the content store.
This module exposes the REST API and a client for it.
"""

from .api_server import APIHandler, create_app
from .client import ClientError, StoreClient

__all__ = ['APIHandler', 'create_app', 'ClientError', 'StoreClient']
