"""Error taxonomy shared by the store, the policies and the HTTP layer."""

from __future__ import annotations

from typing import Any, List, Sequence


class CatalogError(Exception):
    """Base class for every error the catalog raises on purpose."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class BadRequest(CatalogError):
    """A malformed identifier was supplied to a lookup."""

    status_code = 400


class InvalidIdentifier(BadRequest):
    def __init__(self, identifier: Any) -> None:
        super().__init__(f"Invalid identifier: {identifier!r}")
        self.identifier = identifier


class NotFound(CatalogError):
    status_code = 404


class ValidationFailed(CatalogError):
    """One or more field rules were violated.

    Recoverable by showing the form again; the pipeline never lets it escape.
    """

    status_code = 422

    def __init__(self, errors: Sequence[Any]) -> None:
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in errors))
        self.errors: List[Any] = list(errors)


class IntegrityBlocked(CatalogError):
    """Delete refused because other entities still reference the target."""

    status_code = 409

    def __init__(self, kind: str, identifier: str, dependents: Sequence[Any]) -> None:
        super().__init__(f"{kind} {identifier} has {len(dependents)} dependent(s)")
        self.kind = kind
        self.identifier = identifier
        self.dependents = list(dependents)


class StoreUnavailable(CatalogError):
    """The underlying persistence layer failed."""

    status_code = 500
