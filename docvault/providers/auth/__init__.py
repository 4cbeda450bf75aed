"""Authorizer adapters."""

from docvault.providers.auth.static_authorizer import StaticAuthorizer

__all__ = ["StaticAuthorizer"]
