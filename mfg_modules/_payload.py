"""
Shared payload parsing for module request objects.

Used by ``mfg_modules/*/models.py`` to turn the loose dicts handed over by
the API layer into typed request dataclasses.  Field problems are collected
and raised together as one ValidationError naming every bad field.

Architecture: Modules layer.  Imports only from mfg_kernel.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from mfg_kernel.db.types import to_quantity
from mfg_kernel.exceptions import ValidationError

_MISSING = object()


class PayloadReader:
    """Typed accessors over a payload mapping that record field errors."""

    def __init__(self, payload: Any, prefix: str = ""):
        if not isinstance(payload, Mapping):
            raise ValidationError(
                f"Payload must be a mapping, got {type(payload).__name__}",
                [prefix.rstrip(".") or "payload"],
            )
        self._payload = payload
        self._prefix = prefix
        self.errors: list[str] = []

    def _name(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _get(self, key: str, required: bool) -> Any:
        value = self._payload.get(key, _MISSING)
        if value is _MISSING or value is None or value == "":
            if required:
                self.errors.append(self._name(key))
            return _MISSING
        return value

    def text(self, key: str, required: bool = True, default: str | None = None) -> str | None:
        value = self._get(key, required)
        if value is _MISSING:
            return default
        if not isinstance(value, str):
            self.errors.append(self._name(key))
            return default
        return value.strip()

    def decimal(self, key: str, required: bool = True, default: Decimal | None = None) -> Decimal | None:
        value = self._get(key, required)
        if value is _MISSING:
            return default
        try:
            return to_quantity(value, key)
        except ValueError:
            self.errors.append(self._name(key))
            return default

    def uuid(self, key: str, required: bool = True) -> UUID | None:
        value = self._get(key, required)
        if value is _MISSING:
            return None
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            self.errors.append(self._name(key))
            return None

    def date(self, key: str, required: bool = True) -> date | None:
        value = self._get(key, required)
        if value is _MISSING:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value))
        except ValueError:
            self.errors.append(self._name(key))
            return None

    def boolean(self, key: str, default: bool = False) -> bool:
        value = self._payload.get(key, default)
        if not isinstance(value, bool):
            self.errors.append(self._name(key))
            return default
        return value

    def items(self, key: str, required: bool = False) -> list[Any]:
        value = self._get(key, required)
        if value is _MISSING:
            return []
        if not isinstance(value, (list, tuple)):
            self.errors.append(self._name(key))
            return []
        return list(value)

    def child(self, payload: Any, prefix: str) -> PayloadReader:
        """Reader for a nested payload whose errors land in this reader."""
        try:
            reader = PayloadReader(payload, self._prefix + prefix)
        except ValidationError as exc:
            self.errors.extend(exc.field_errors)
            return PayloadReader({}, self._prefix + prefix)
        reader.errors = self.errors
        return reader

    def raise_if_errors(self, what: str) -> None:
        if self.errors:
            raise ValidationError(f"Invalid {what} payload", list(self.errors))


def positive_quantity(value: Any, field: str = "quantity") -> Decimal:
    """Coerce a service argument to a strictly positive Decimal."""
    try:
        quantity = to_quantity(value, field)
    except ValueError as exc:
        raise ValidationError(str(exc), [field]) from exc
    if quantity <= 0:
        raise ValidationError(f"{field} must be positive, got {quantity}", [field])
    return quantity
