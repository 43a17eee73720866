from .gateway import AccountCredential, ApiResult, FetchParams, FetchWindow, Gateway
from .rest_gateway import RestGateway

__all__ = [
    "AccountCredential",
    "ApiResult",
    "FetchParams",
    "FetchWindow",
    "Gateway",
    "RestGateway",
]
