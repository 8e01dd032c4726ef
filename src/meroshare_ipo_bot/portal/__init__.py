from .client import (
    ApplyButtonError,
    LoginFailedError,
    LoginFormNotFoundError,
    MeroShareClient,
    NavigationError,
    PortalCredentials,
)

__all__ = [
    "MeroShareClient",
    "PortalCredentials",
    "LoginFormNotFoundError",
    "LoginFailedError",
    "NavigationError",
    "ApplyButtonError",
]
