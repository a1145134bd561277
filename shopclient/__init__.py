"""
Storefront API Client.

Authenticated asyncio client for the storefront API with transparent,
single-flight renewal of the short-lived access credential.
"""

from shopclient.api_client import AuthenticatedClient
from shopclient.config import ClientConfiguration

__all__ = ['AuthenticatedClient', 'ClientConfiguration']
