"""Validation of raw payloads before they are turned into arena models.

Persisted battles come back from disk as plain mappings.  Each model that can be
restored registers a :class:`ModelValidator` subclass describing the fields it
requires; :func:`load_model` runs that validator and then the model's
``from_mapping`` factory.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from numbers import Real
from typing import Any, ClassVar, Type, TypeVar

T = TypeVar("T")


class ModelValidationError(ValueError):
    """Raised when a payload cannot be used to build a model."""

    def __init__(self, model: type[Any], errors: Sequence[str]) -> None:
        self.model = model
        self.errors = list(errors)
        message = "; ".join(self.errors) if self.errors else "invalid payload"
        super().__init__(f"{model.__name__} payload rejected: {message}")


@dataclass(frozen=True)
class FieldSpec:
    expected: Any
    description: str
    required: bool = True
    allow_none: bool = False


@dataclass(frozen=True)
class ListOf:
    item: Any


def is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_id(value: Any) -> bool:
    """Accept string or integer identifiers; snowflakes often arrive as ints."""

    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return is_non_empty_str(value)


def is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _matches(value: Any, expected: Any) -> bool:
    if expected is Any:
        return True
    if isinstance(expected, ListOf):
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            return False
        return all(_matches(item, expected.item) for item in value)
    if isinstance(expected, tuple):
        return any(_matches(value, option) for option in expected)
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if expected is float:
        return is_number(value)
    if isinstance(expected, type):
        return isinstance(value, expected)
    if callable(expected):
        try:
            return bool(expected(value))
        except (TypeError, ValueError):
            return False
    return True


class ModelValidator:
    """Declarative field checks for one model."""

    model: ClassVar[type[Any]]
    fields: ClassVar[Mapping[str, FieldSpec]]

    @classmethod
    def validate(cls, data: Any) -> dict[str, Any]:
        if not isinstance(data, Mapping):
            raise ModelValidationError(cls.model, ["payload must be a mapping"])

        errors: list[str] = []
        for name, spec in cls.fields.items():
            if name not in data:
                if spec.required:
                    errors.append(f"missing '{name}' ({spec.description})")
                continue
            value = data[name]
            if value is None:
                if not spec.allow_none:
                    errors.append(f"'{name}' cannot be null")
                continue
            if not _matches(value, spec.expected):
                errors.append(
                    f"'{name}' expected {spec.description}, got {type(value).__name__}"
                )
        if errors:
            raise ModelValidationError(cls.model, errors)
        return dict(data)


def load_model(cls: Type[T], data: Any) -> T:
    """Validate ``data`` against ``cls.validator`` and build the model."""

    validator: type[ModelValidator] | None = getattr(cls, "validator", None)
    payload = validator.validate(data) if validator is not None else dict(data)
    return cls.from_mapping(payload)  # type: ignore[attr-defined]


__all__ = [
    "ModelValidationError",
    "FieldSpec",
    "ListOf",
    "ModelValidator",
    "is_id",
    "is_non_empty_str",
    "is_number",
    "load_model",
]
