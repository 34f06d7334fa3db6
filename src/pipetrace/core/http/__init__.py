from .client import BackendClient, get_http_client
from .errors import BackendUnavailable

__all__ = ["BackendClient", "BackendUnavailable", "get_http_client"]
