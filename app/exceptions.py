"""Errors raised by the registration layer."""

from __future__ import annotations


class UserNotFoundError(KeyError):
    """The requested user id is not registered."""


class CatalogNotFoundError(KeyError):
    """The catalog does not exist or belongs to another user."""


class UserExistsError(ValueError):
    """A user with the requested id already exists."""


class DuplicateCatalogError(ValueError):
    """The user already registered this manifest URL."""


class InvalidManifestError(ValueError):
    """An upstream manifest could not be fetched or is not a catalog addon."""
