from pickup_client.client import AuthenticatedClient, TokenStore
from pickup_client.settings import ClientSettings
from pickup_client.shared.auth import TokenPair

__all__ = ["AuthenticatedClient", "ClientSettings", "TokenPair", "TokenStore"]
