from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .assembler import ResourceAssembler
from .errors import ErrorDetail
from .exceptions import UnknownResourceTypeError
from .schema_compiler import SchemaCompiler
from .schemas import FieldDescriptor
from .valueset_resolver import ValueSetResolver
from .widgets import widget_for

logger = logging.getLogger(__name__)


class FormValues:
    """
    Collected values keyed by field key.

    Every change goes through one of the update functions below, so a field
    is only ever written at its own key.
    """

    def __init__(self, fields: Sequence[FieldDescriptor]) -> None:
        self._fields: Dict[str, FieldDescriptor] = {f.key: f for f in fields}
        self._values: Dict[str, Any] = {}

    def _field(self, key: str) -> FieldDescriptor:
        try:
            return self._fields[key]
        except KeyError:
            raise KeyError(f"No field with key '{key}'") from None

    def get(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self._values.get(key, default))

    def set(self, key: str, value: Any) -> None:
        self._field(key)
        self._values[key] = copy.deepcopy(value)

    def set_component(self, key: str, component: str, value: Any) -> None:
        """Set one sub-field (``family``, ``city``) of a composite field."""
        spec = widget_for(self._field(key))
        if not spec.composite:
            raise ValueError(f"Field '{key}' is not a composite field")
        if component not in spec.sub_fields:
            raise ValueError(f"'{component}' is not a sub-field of {spec.kind.value}")
        current = self._values.get(key)
        updated = dict(current) if isinstance(current, Mapping) else {}
        updated[component] = value
        self._values[key] = updated

    def append(self, key: str, value: Any) -> None:
        self._field(key)
        current = self._values.get(key)
        items = list(current) if isinstance(current, list) else []
        items.append(copy.deepcopy(value))
        self._values[key] = items

    def remove(self, key: str, index: int) -> None:
        self._field(key)
        current = self._values.get(key)
        if not isinstance(current, list):
            raise IndexError(f"Field '{key}' holds no list")
        items = list(current)
        del items[index]
        self._values[key] = items

    def clear(self, key: str) -> None:
        self._field(key)
        self._values.pop(key, None)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)


class FormSession:
    """
    One user's editing session.

    Selecting a resource type recompiles the fields, resets the values and
    starts a new generation. Option lookups started under an older
    generation are dropped when they complete.
    """

    def __init__(
        self,
        schema_bundle: Mapping[str, Any],
        compiler: SchemaCompiler,
        resolver: ValueSetResolver,
        assembler: ResourceAssembler,
    ) -> None:
        self.schema_bundle = schema_bundle
        self.compiler = compiler
        self.resolver = resolver
        self.assembler = assembler
        self.generation = 0
        self.resource_type: Optional[str] = None
        self.fields: List[FieldDescriptor] = []
        self.issues: List[ErrorDetail] = []
        self.values = FormValues([])
        self.options: Dict[str, List[str]] = {}

    def resource_types(self) -> List[str]:
        return self.compiler.list_resource_types(self.schema_bundle)

    def select_resource_type(self, resource_type: str) -> List[FieldDescriptor]:
        if resource_type not in self.resource_types():
            raise UnknownResourceTypeError(resource_type)
        self.generation += 1
        result = self.compiler.compile_report(self.schema_bundle, resource_type)
        self.resource_type = resource_type
        self.fields = result.fields
        self.issues = result.issues
        self.values = FormValues(self.fields)
        self.options = {}
        logger.info(
            "Resource type selected",
            extra={"resource_type": resource_type, "generation": self.generation, "fields": len(self.fields)},
        )
        return self.fields

    def field(self, key: str) -> FieldDescriptor:
        for f in self.fields:
            if f.key == key:
                return f
        raise KeyError(f"No field with key '{key}'")

    async def load_options(self, field: FieldDescriptor) -> Optional[List[str]]:
        """
        Resolve the codes for a bound field.

        Returns None, and stores nothing, when the resource type changed
        while the lookup was in flight.
        """
        generation = self.generation
        codes = await self.resolver.resolve(field.binding_value_set)
        if generation != self.generation:
            logger.debug(
                "Dropping stale value set result",
                extra={"field": field.key, "generation": generation, "current": self.generation},
            )
            return None
        self.options[field.key] = codes
        return codes

    async def load_all_options(self) -> Dict[str, List[str]]:
        bound = [f for f in self.fields if f.binding_value_set]
        await asyncio.gather(*(self.load_options(f) for f in bound))
        return dict(self.options)

    def missing_required(self) -> List[ErrorDetail]:
        return self.assembler.missing_required(self.fields, self.values.snapshot())

    def submit(self) -> Dict[str, Any]:
        if self.resource_type is None:
            raise RuntimeError("No resource type selected")
        return self.assembler.assemble(self.resource_type, self.fields, self.values.snapshot())
