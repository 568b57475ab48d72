"""
Data type to widget classification.

The rendering layer picks a control from the ``WidgetKind``; the assembler
uses the same table to decide whether a collected value is a scalar or a
sub-path map, and asks the kind's ``WidgetHandler`` to normalise each item.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .schemas import FieldDescriptor

logger = logging.getLogger(__name__)


class WidgetKind(str, Enum):
    TEXT = "Text"
    CODED_CHOICE = "CodedChoice"
    BOOLEAN_CHOICE = "BooleanChoice"
    NUMBER = "Number"
    DATE = "Date"
    DATE_TIME = "DateTime"
    COMPOSITE_NAME = "CompositeName"
    COMPOSITE_ADDRESS = "CompositeAddress"
    COMPOSITE_IDENTIFIER = "CompositeIdentifier"
    COMPOSITE_PERIOD = "CompositePeriod"
    COMPOSITE_CONTACT = "CompositeContact"


@dataclass(frozen=True)
class WidgetSpec:
    kind: WidgetKind
    sub_fields: Tuple[str, ...] = ()
    repeatable: bool = False

    @property
    def composite(self) -> bool:
        return bool(self.sub_fields)


CODED_TYPES = frozenset({"code", "CodeableConcept", "Coding"})
INTEGER_TYPES = frozenset({"integer", "positiveInt", "unsignedInt", "integer64"})

_TYPE_TABLE: Dict[str, WidgetKind] = {
    "string": WidgetKind.TEXT,
    "code": WidgetKind.TEXT,
    "id": WidgetKind.TEXT,
    "markdown": WidgetKind.TEXT,
    "boolean": WidgetKind.BOOLEAN_CHOICE,
    "integer": WidgetKind.NUMBER,
    "positiveInt": WidgetKind.NUMBER,
    "unsignedInt": WidgetKind.NUMBER,
    "integer64": WidgetKind.NUMBER,
    "decimal": WidgetKind.NUMBER,
    "date": WidgetKind.DATE,
    "dateTime": WidgetKind.DATE_TIME,
    "HumanName": WidgetKind.COMPOSITE_NAME,
    "Address": WidgetKind.COMPOSITE_ADDRESS,
    "Identifier": WidgetKind.COMPOSITE_IDENTIFIER,
    "Period": WidgetKind.COMPOSITE_PERIOD,
    "ContactPoint": WidgetKind.COMPOSITE_CONTACT,
}

_SPECS: Dict[WidgetKind, WidgetSpec] = {
    WidgetKind.COMPOSITE_NAME: WidgetSpec(WidgetKind.COMPOSITE_NAME, ("use", "text", "family", "given")),
    WidgetKind.COMPOSITE_ADDRESS: WidgetSpec(
        WidgetKind.COMPOSITE_ADDRESS,
        ("use", "text", "line", "city", "state", "postalCode", "country"),
    ),
    WidgetKind.COMPOSITE_IDENTIFIER: WidgetSpec(
        WidgetKind.COMPOSITE_IDENTIFIER, ("use", "type", "system", "value"), repeatable=True
    ),
    WidgetKind.COMPOSITE_PERIOD: WidgetSpec(WidgetKind.COMPOSITE_PERIOD, ("start", "end")),
    WidgetKind.COMPOSITE_CONTACT: WidgetSpec(WidgetKind.COMPOSITE_CONTACT, ("system", "value", "use", "rank")),
}


def classify(data_type: Optional[str], has_binding: bool = False) -> WidgetKind:
    """Map a FHIR data type code to a widget kind. Unknown codes map to TEXT."""
    if has_binding and data_type in CODED_TYPES:
        return WidgetKind.CODED_CHOICE
    if data_type is None:
        return WidgetKind.TEXT
    return _TYPE_TABLE.get(data_type, WidgetKind.TEXT)


def spec_for(kind: WidgetKind) -> WidgetSpec:
    return _SPECS.get(kind) or WidgetSpec(kind)


def widget_for(field: FieldDescriptor) -> WidgetSpec:
    return spec_for(classify(field.data_type, field.binding_value_set is not None))


class WidgetHandler:
    """Normalises one collected item for a widget kind."""

    def normalize(self, field: FieldDescriptor, value: Any) -> Any:
        return value


class TextHandler(WidgetHandler):
    pass


class NumberHandler(WidgetHandler):
    def normalize(self, field: FieldDescriptor, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        text = value.strip()
        try:
            if field.data_type in INTEGER_TYPES:
                return int(text)
            # Decimal keeps the entered precision: "1.50" stays 1.50
            number = Decimal(text)
        except (ValueError, InvalidOperation):
            logger.debug("Leaving non-numeric value for %s unchanged", field.key)
            return value
        if not number.is_finite():
            logger.debug("Leaving non-finite value for %s unchanged", field.key)
            return value
        return number


class BooleanHandler(WidgetHandler):
    TRUE_VALUES = ("true", "on", "yes", "1")
    FALSE_VALUES = ("false", "off", "no", "0")

    def normalize(self, field: FieldDescriptor, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in self.TRUE_VALUES:
                return True
            if lowered in self.FALSE_VALUES:
                return False
        return value


class CodedChoiceHandler(WidgetHandler):
    def normalize(self, field: FieldDescriptor, value: Any) -> Any:
        if isinstance(value, Mapping) or not isinstance(value, str):
            return value
        if field.data_type == "Coding":
            return {"code": value}
        if field.data_type == "CodeableConcept":
            return {"coding": [{"code": value}]}
        return value


class CompositeHandler(WidgetHandler):
    def normalize(self, field: FieldDescriptor, value: Any) -> Any:
        if isinstance(value, Mapping):
            return dict(value)
        logger.warning(
            "Composite field received a scalar value",
            extra={"field": field.key, "data_type": field.data_type},
        )
        return value


_HANDLERS: Dict[WidgetKind, WidgetHandler] = {
    WidgetKind.TEXT: TextHandler(),
    WidgetKind.DATE: TextHandler(),
    WidgetKind.DATE_TIME: TextHandler(),
    WidgetKind.NUMBER: NumberHandler(),
    WidgetKind.BOOLEAN_CHOICE: BooleanHandler(),
    WidgetKind.CODED_CHOICE: CodedChoiceHandler(),
    WidgetKind.COMPOSITE_NAME: CompositeHandler(),
    WidgetKind.COMPOSITE_ADDRESS: CompositeHandler(),
    WidgetKind.COMPOSITE_IDENTIFIER: CompositeHandler(),
    WidgetKind.COMPOSITE_PERIOD: CompositeHandler(),
    WidgetKind.COMPOSITE_CONTACT: CompositeHandler(),
}


def handler_for(kind: WidgetKind) -> WidgetHandler:
    return _HANDLERS[kind]
