"""
FastAPI dependency utilities for injecting configuration and request context.
"""

from functools import lru_cache

from fastapi import Depends, Request

from oauth_proxy.core.config import AppSettings, get_settings


@lru_cache()
def _settings_singleton() -> AppSettings:
    """Ensure configuration is created once per process."""
    return get_settings()


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return _settings_singleton()


def get_public_base_url(
    request: Request, settings: AppSettings = Depends(get_app_settings)
) -> str:
    """Origin the proxy is reachable at, without a trailing slash.

    ``PUBLIC_BASE_URL`` wins so deployments behind a proxy advertise the
    external origin; otherwise the request's own origin is used.
    """
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


SettingsDependency = Depends(get_app_settings)
BaseUrlDependency = Depends(get_public_base_url)

__all__ = [
    "BaseUrlDependency",
    "SettingsDependency",
    "get_app_settings",
    "get_public_base_url",
]
