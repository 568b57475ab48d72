"""
Collected form values -> FHIR resource JSON.

Values are keyed by ``FieldDescriptor.key``. Fields with no value are left
out of the resource entirely. A scalar supplied for a repeating field is
handled by the cardinality policy: ``coerce`` wraps it in a one-element
list, ``reject`` raises ``AssemblyCardinalityError``.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import ErrorDetail, required_missing
from .exceptions import AssemblyCardinalityError, FieldDescriptorContractError
from .schema_compiler import CHOICE_MARKER
from .schemas import FieldDescriptor
from .widgets import classify, handler_for

logger = logging.getLogger(__name__)

COERCE = "coerce"
REJECT = "reject"


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, Mapping)):
        return len(value) == 0
    return False


def property_name(segment: str, data_type: Optional[str]) -> str:
    """JSON property for a key segment: drops slice names, expands choice types."""
    base = segment.split(":", 1)[0].split("#", 1)[0]
    if base.endswith(CHOICE_MARKER):
        base = base[: -len(CHOICE_MARKER)]
        if data_type:
            base += data_type[0].upper() + data_type[1:]
    return base


class ResourceAssembler:
    def __init__(self, cardinality_policy: str = COERCE) -> None:
        if cardinality_policy not in (COERCE, REJECT):
            raise ValueError(f"Unknown cardinality policy: {cardinality_policy}")
        self.cardinality_policy = cardinality_policy

    def assemble(
        self,
        resource_type_name: str,
        descriptors: Sequence[FieldDescriptor],
        collected_values: Mapping[str, Any],
    ) -> Dict[str, Any]:
        descriptors = list(descriptors)
        resource: Dict[str, Any] = {"resourceType": resource_type_name}

        for field in descriptors:
            if not isinstance(field, FieldDescriptor):
                raise FieldDescriptorContractError(
                    f"assemble() expects FieldDescriptor items, got {type(field).__name__}"
                )
        by_key = {f.key: f for f in descriptors}
        # parent key -> element object created here for a repeating parent
        created: Dict[str, Dict[str, Any]] = {}

        for field in descriptors:
            if field.is_root or field.key not in collected_values:
                continue
            raw = collected_values[field.key]
            if is_empty(raw):
                continue

            value = self._shape(field, copy.deepcopy(raw))
            if is_empty(value):
                continue
            self._place(resource, field, value, by_key, created)

        return resource

    def missing_required(
        self,
        descriptors: Sequence[FieldDescriptor],
        collected_values: Mapping[str, Any],
    ) -> List[ErrorDetail]:
        """Required fields without a value; child fields count only when their parent has one."""
        issues: List[ErrorDetail] = []
        for field in descriptors:
            if field.is_root or not field.required:
                continue
            parent = field.parent_key
            if parent is not None and is_empty(collected_values.get(parent)):
                continue
            if is_empty(collected_values.get(field.key)):
                issues.append(required_missing(field.path, field.key))
        return issues

    def _shape(self, field: FieldDescriptor, raw: Any) -> Any:
        handler = handler_for(classify(field.data_type, field.binding_value_set is not None))
        is_sequence = isinstance(raw, (list, tuple))

        if field.multiple:
            if not is_sequence:
                if self.cardinality_policy == REJECT:
                    raise AssemblyCardinalityError(
                        f"Field '{field.key}' repeats but received a single value", key=field.key
                    )
                logger.debug("Coercing scalar into list for %s", field.key)
                raw = [raw]
            return [handler.normalize(field, item) for item in raw]

        if is_sequence:
            # Multi-value widgets can submit a list for a single-valued field
            return handler.normalize(field, raw[0])
        return handler.normalize(field, raw)

    def _place(
        self,
        resource: Dict[str, Any],
        field: FieldDescriptor,
        value: Any,
        by_key: Mapping[str, FieldDescriptor],
        created: Dict[str, Dict[str, Any]],
    ) -> None:
        """
        Put ``value`` at the field's position, creating parent objects on the way.

        A parent created for a repeating element is a one-element list, and
        sibling values land in that same element. A parent list supplied by
        the caller is never guessed into.
        """
        segments = field.key.split(".")
        target = resource
        for depth, segment in enumerate(segments[:-1]):
            parent_key = ".".join(segments[: depth + 1])
            slot_name = property_name(segment, None)
            slot = created.get(parent_key)
            if slot is None:
                slot = target.get(slot_name)
            if slot is None:
                slot = {}
                parent = by_key.get(parent_key)
                if parent is not None and parent.multiple:
                    target[slot_name] = [slot]
                    created[parent_key] = slot
                else:
                    target[slot_name] = slot
            if not isinstance(slot, dict):
                logger.warning(
                    "Skipping nested value: parent slot is not an object",
                    extra={"field": field.key, "slot": slot_name},
                )
                return
            target = slot

        prop = property_name(segments[-1], field.data_type)
        existing = target.get(prop)
        if existing is None:
            target[prop] = value
        elif isinstance(existing, list) and isinstance(value, list):
            existing.extend(value)
        elif isinstance(existing, dict) and isinstance(value, dict):
            existing.update(value)
        else:
            logger.warning(
                "Skipping value: property already set by another field",
                extra={"field": field.key, "property": prop},
            )
