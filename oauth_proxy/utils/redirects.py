"""Validation of client redirect URIs against the configured allowlist."""

from __future__ import annotations

import logging
from typing import Iterable
from urllib.parse import urlsplit

from oauth_proxy.core.errors import InvalidRequestError

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


class RedirectValidator:
    """Decide whether a client redirect URI may receive an authorization code.

    Disallowed URIs are replaced by ``default_redirect_uri`` unless ``strict``
    is set, in which case they are rejected with ``invalid_request``.
    """

    def __init__(
        self,
        *,
        default_redirect_uri: str,
        allowlist: Iterable[str] = (),
        development: bool = False,
        allow_all: bool = False,
        strict: bool = False,
    ) -> None:
        self._default = default_redirect_uri
        self._allowed = {entry for entry in allowlist if entry}
        if default_redirect_uri:
            self._allowed.add(default_redirect_uri)
        self._development = development
        self._allow_all = allow_all
        self._strict = strict

    @property
    def default_redirect_uri(self) -> str:
        return self._default

    def is_allowed(self, uri: str) -> bool:
        if not uri:
            return False
        try:
            parts = urlsplit(uri)
            hostname = parts.hostname
        except ValueError:
            return False
        if not parts.scheme:
            return False

        if self._development and hostname in LOOPBACK_HOSTS:
            return True
        if self._allow_all:
            return True

        # urlsplit keeps IPv6 brackets in netloc, matching the literal form.
        without_query = f"{parts.scheme}://{parts.netloc}{parts.path}"
        return without_query in self._allowed or uri in self._allowed

    def resolve(self, uri: str | None) -> str:
        """Return ``uri`` when allowed, otherwise the default (or raise in strict mode)."""
        candidate = uri or self._default
        if self.is_allowed(candidate):
            return candidate
        if self._strict:
            raise InvalidRequestError("redirect_uri is not registered")
        logger.warning(
            "Redirect URI %s not allowlisted; falling back to default %s",
            candidate,
            self._default,
        )
        return self._default


__all__ = ["LOOPBACK_HOSTS", "RedirectValidator"]
