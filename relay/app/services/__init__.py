"""Services package for outbound platform calls."""

from relay.app.services.api_caller import PlatformApiCaller

__all__ = ["PlatformApiCaller"]
