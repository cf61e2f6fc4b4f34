"""Typed device property values returned by the cloud service."""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Mapping

from dacloud.core.errors import IncorrectPropertyTypeError

_NOT_BOOLEAN = "Property is not convertible to a boolean."
_NOT_INTEGER = "Property is not convertible to an int."


class DataType(IntEnum):
    BOOLEAN = 0
    BYTE = 1
    SHORT = 2
    INTEGER = 3
    LONG = 4
    FLOAT = 5
    DOUBLE = 6
    STRING = 7
    UNKNOWN = 8

    @property
    def label(self) -> str:
        return self.name.capitalize()


def data_type_of(value: Any) -> DataType:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return DataType.BOOLEAN
    if isinstance(value, int):
        return DataType.INTEGER
    if isinstance(value, float):
        return DataType.DOUBLE
    return DataType.STRING


class Property:
    """A single property value together with its data type."""

    __slots__ = ("value", "data_type", "is_collection")

    def __init__(self, value: Any, data_type: DataType, is_collection: bool = False) -> None:
        self.value = value
        self.data_type = data_type
        self.is_collection = is_collection

    def __str__(self) -> str:
        if isinstance(self.value, bool):
            return "1" if self.value else "0"
        if self.is_collection:
            return ",".join(str(item) for item in self.value)
        return str(self.value)

    def __repr__(self) -> str:
        return f"Property({self.value!r}, {self.data_type.label})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Property):
            return NotImplemented
        return (
            self.data_type == other.data_type
            and self.is_collection == other.is_collection
            and self.value == other.value
        )

    def __hash__(self) -> int:
        value = tuple(self.value) if self.is_collection else self.value
        return hash((value, self.data_type, self.is_collection))

    def as_string(self) -> str:
        return str(self)

    def as_boolean(self) -> bool:
        if self.data_type != DataType.BOOLEAN or not isinstance(self.value, bool):
            raise IncorrectPropertyTypeError(_NOT_BOOLEAN)
        return self.value

    def as_integer(self) -> int:
        if self.data_type not in (DataType.INTEGER, DataType.BYTE, DataType.SHORT):
            raise IncorrectPropertyTypeError(_NOT_INTEGER)
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise IncorrectPropertyTypeError(_NOT_INTEGER)
        return self.value

    def as_set(self) -> set[Any]:
        if self.is_collection:
            return set(self.value)
        return {self.value}


class Properties(dict):
    """Mapping of property name to :class:`Property`."""

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Properties":
        properties = cls()
        properties.put_map(raw)
        return properties

    def put_map(self, raw: Mapping[str, Any]) -> None:
        for name, value in raw.items():
            self[str(name)] = Property(value, data_type_of(value))

    def contains(self, name: str, expected: Any) -> bool:
        """Loosely compare a property with ``expected``.

        Values of the same Python type are compared directly. Boolean
        properties also accept 0 and 1; everything else is compared by its
        string form.
        """
        prop = self.get(name)
        if prop is None or expected is None:
            return False

        if type(prop.value) is type(expected):
            return prop.value == expected

        if prop.data_type == DataType.BOOLEAN:
            if isinstance(expected, int) and not isinstance(expected, bool):
                return (prop.value and expected == 1) or (not prop.value and expected == 0)
            return False

        return prop.as_string() == str(expected)
