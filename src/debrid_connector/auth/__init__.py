"""Authentication package."""

from .device_flow import (
    AuthorizedToken,
    DeviceAuthFlow,
    DeviceAuthSession,
    DeviceAuthState,
    format_user_code
)

__all__ = [
    "AuthorizedToken",
    "DeviceAuthFlow",
    "DeviceAuthSession",
    "DeviceAuthState",
    "format_user_code"
]
