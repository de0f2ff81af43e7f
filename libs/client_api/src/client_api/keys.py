"""Typed entity keys used to address REST resources.

A primary key identifies an item inside its own collection, a location key
identifies one ancestor in the containment hierarchy, and a composite key is a
primary key plus its ancestors. Composite key locations are always ordered from
the immediate parent to the most distant ancestor (child -> parent).
"""

from collections.abc import Mapping, Sequence
from typing import Any, TypeGuard

from pydantic import BaseModel, ConfigDict, Field, field_validator

Identifier = str | int


class _KeyModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    @field_validator("id", check_fields=False)
    @classmethod
    def validate_id(cls, value: Identifier) -> Identifier:
        """Reject blank string identifiers."""
        if isinstance(value, str) and not value.strip():
            raise ValueError("Key identifier must not be empty")
        return value


class PriKey(_KeyModel):
    """Primary key of an item within its immediate collection."""

    key_type: str = Field(alias="kt", min_length=1)
    id: Identifier = Field(alias="pk")

    def to_wire(self) -> dict[str, Any]:
        """Return the key in its JSON wire shape (``{"kt", "pk"}``)."""
        return self.model_dump(by_alias=True)


class LocKey(_KeyModel):
    """Location key addressing one ancestor resource."""

    key_type: str = Field(alias="kt", min_length=1)
    id: Identifier = Field(alias="lk")

    def to_wire(self) -> dict[str, Any]:
        """Return the key in its JSON wire shape (``{"kt", "lk"}``)."""
        return self.model_dump(by_alias=True)


class ComKey(_KeyModel):
    """Composite key: a primary key plus its child -> parent ordered locations."""

    key_type: str = Field(alias="kt", min_length=1)
    id: Identifier = Field(alias="pk")
    locations: tuple[LocKey, ...] = Field(alias="loc", default=())

    def to_wire(self) -> dict[str, Any]:
        """Return the key in its JSON wire shape (``{"kt", "pk", "loc"}``)."""
        return {
            "kt": self.key_type,
            "pk": self.id,
            "loc": [location.to_wire() for location in self.locations],
        }

    def pri_key(self) -> PriKey:
        """Return the primary part of this key."""
        return PriKey(key_type=self.key_type, id=self.id)


ItemKey = PriKey | ComKey
LocKeyArray = Sequence[LocKey]


def is_pri_key(key: Any) -> TypeGuard[PriKey]:
    """Return whether ``key`` is a plain primary key."""
    return isinstance(key, PriKey)


def is_com_key(key: Any) -> TypeGuard[ComKey]:
    """Return whether ``key`` is a composite key."""
    return isinstance(key, ComKey)


def is_loc_key_array(value: Any) -> TypeGuard[LocKeyArray]:
    """Return whether ``value`` is a (possibly empty) sequence of location keys."""
    return isinstance(value, list | tuple) and all(
        isinstance(item, LocKey) for item in value
    )


def key_from_wire(data: Mapping[str, Any]) -> ItemKey:
    """Decode a server ``key`` object into a :class:`PriKey` or :class:`ComKey`.

    Args:
        data: Mapping with ``kt`` and ``pk`` and, for contained items, ``loc``.

    Returns:
        A :class:`ComKey` when ``loc`` is present and non-empty, otherwise a
        :class:`PriKey`.
    """
    locations = data.get("loc") or []
    if locations:
        return ComKey.model_validate(
            {"kt": data["kt"], "pk": data["pk"], "loc": list(locations)}
        )
    return PriKey.model_validate({"kt": data["kt"], "pk": data["pk"]})


def generate_key_array(key: ItemKey | LocKeyArray) -> list[PriKey | LocKey]:
    """Flatten a key into ``[primary?, *locations]`` in child -> parent order.

    A new list is always returned so callers never alias the key's own tuple.
    """
    if isinstance(key, ComKey):
        return [key.pri_key(), *key.locations]
    if isinstance(key, PriKey):
        return [key]
    if is_loc_key_array(key):
        return list(key)
    raise TypeError(f"Unsupported key value: {key!r}")
