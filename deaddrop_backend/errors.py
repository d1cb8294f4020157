"""Typed failures raised by the stores and mapped to HTTP responses by server.py."""
from __future__ import annotations


class StoreError(Exception):
    status_code = 500
    default_message = "Storage error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class NotFound(StoreError):
    status_code = 404
    default_message = "Not found"


class AlreadyExists(StoreError):
    status_code = 400
    default_message = "Already exists"


class InvalidToken(StoreError):
    status_code = 400
    default_message = "Invalid token"


class InvalidName(StoreError):
    status_code = 400
    default_message = "Invalid name"


class StorageUnavailable(StoreError):
    status_code = 500
    default_message = "Storage unavailable"


class CatalogUnreadable(StorageUnavailable):
    default_message = "Catalog unreadable"
