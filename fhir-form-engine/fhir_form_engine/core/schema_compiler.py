"""
StructureDefinition bundle -> flat list of FieldDescriptors.

Compilation is fail-soft: malformed elements are skipped and reported as
issues, the rest of the form still compiles.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import ErrorDetail, FormErrorCode, schema_issue
from .schemas import CompilationResult, FieldDescriptor

logger = logging.getLogger(__name__)

STRUCTURE_DEFINITION = "StructureDefinition"
UNBOUNDED = "*"
CHOICE_MARKER = "[x]"

# Primitive ``.value``/``.id`` elements are typed with FHIRPath system types.
FHIRPATH_SYSTEM_TYPES = {
    "http://hl7.org/fhirpath/System.String": "string",
    "http://hl7.org/fhirpath/System.Boolean": "boolean",
    "http://hl7.org/fhirpath/System.Integer": "integer",
    "http://hl7.org/fhirpath/System.Decimal": "decimal",
    "http://hl7.org/fhirpath/System.Date": "date",
    "http://hl7.org/fhirpath/System.DateTime": "dateTime",
    "http://hl7.org/fhirpath/System.Time": "time",
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _structure_definitions(bundle: Optional[Mapping[str, Any]]) -> Iterator[Mapping[str, Any]]:
    if not isinstance(bundle, Mapping):
        return
    entries = bundle.get("entry")
    if not isinstance(entries, list):
        return
    for entry in entries:
        resource = entry.get("resource") if isinstance(entry, Mapping) else None
        if isinstance(resource, Mapping) and resource.get("resourceType") == STRUCTURE_DEFINITION:
            yield resource


def field_label(name: str) -> str:
    """``birthDate`` -> ``Birth Date``; the ``[x]`` choice marker is dropped."""
    base = name.replace(CHOICE_MARKER, "")
    if not base:
        return name
    words = _CAMEL_BOUNDARY.sub(" ", base)
    return words[0].upper() + words[1:]


def is_multiple(max_value: Any) -> bool:
    if max_value is None:
        return False
    text = str(max_value).strip()
    if text == UNBOUNDED:
        return True
    return int(text) > 1


def _first_type_code(element: Mapping[str, Any]) -> Optional[str]:
    types = element.get("type")
    if not isinstance(types, list) or not types:
        return None
    first = types[0]
    code = first.get("code") if isinstance(first, Mapping) else None
    if not code:
        return None
    return FHIRPATH_SYSTEM_TYPES.get(code, code)


def _binding_value_set(element: Mapping[str, Any]) -> Optional[str]:
    binding = element.get("binding")
    if isinstance(binding, Mapping):
        value_set = binding.get("valueSet")
        if isinstance(value_set, str) and value_set:
            return value_set
    return None


def _element_key(element: Mapping[str, Any], path: str) -> str:
    element_id = element.get("id")
    identity = element_id if isinstance(element_id, str) and element_id else path
    if "." not in identity:
        return identity
    return identity.split(".", 1)[1]


class SchemaCompiler:
    """Compiles StructureDefinitions into ordered field descriptors."""

    def list_resource_types(self, bundle: Optional[Mapping[str, Any]]) -> List[str]:
        names: Dict[str, None] = {}
        for sd in _structure_definitions(bundle):
            name = sd.get("name")
            if name:
                names.setdefault(name, None)
        return list(names)

    def compile(self, bundle: Optional[Mapping[str, Any]], resource_type_name: Optional[str] = None) -> List[FieldDescriptor]:
        return self.compile_report(bundle, resource_type_name).fields

    def compile_report(
        self, bundle: Optional[Mapping[str, Any]], resource_type_name: Optional[str] = None
    ) -> CompilationResult:
        fields: List[FieldDescriptor] = []
        issues: List[ErrorDetail] = []

        for sd in _structure_definitions(bundle):
            sd_name = sd.get("name")
            if resource_type_name and sd_name != resource_type_name:
                continue
            snapshot = sd.get("snapshot")
            elements = snapshot.get("element") if isinstance(snapshot, Mapping) else None
            if not isinstance(elements, list):
                issues.append(
                    schema_issue(
                        FormErrorCode.SCHEMA_MISSING_SNAPSHOT,
                        f"StructureDefinition '{sd_name}' has no snapshot elements",
                        context={"structure_definition": sd_name},
                    )
                )
                continue
            sd_fields, sd_issues = self._compile_elements(str(sd_name or ""), elements)
            fields.extend(sd_fields)
            issues.extend(sd_issues)

        if issues:
            logger.warning(
                "Schema compiled with issues",
                extra={"resource_type": resource_type_name, "issues": [i.to_dict() for i in issues]},
            )
        logger.debug("Compiled %d fields for %s", len(fields), resource_type_name or "<all>")
        return CompilationResult(resource_type=resource_type_name or None, fields=fields, issues=issues)

    def _compile_elements(
        self, sd_name: str, elements: List[Any]
    ) -> Tuple[List[FieldDescriptor], List[ErrorDetail]]:
        fields: List[FieldDescriptor] = []
        issues: List[ErrorDetail] = []
        seen: Dict[str, int] = {}

        for index, element in enumerate(elements):
            if not isinstance(element, Mapping):
                issues.append(
                    schema_issue(
                        FormErrorCode.SCHEMA_INVALID_ELEMENT,
                        f"Element #{index} of '{sd_name}' is not an object",
                    )
                )
                continue
            path = element.get("path")
            if not isinstance(path, str) or not path.strip():
                issues.append(
                    schema_issue(
                        FormErrorCode.SCHEMA_MISSING_PATH,
                        f"Element #{index} of '{sd_name}' has no path; skipped",
                        context={"element_id": element.get("id")},
                    )
                )
                continue
            path = path.strip()
            name = path.split(".")[-1]
            if not name:
                issues.append(
                    schema_issue(
                        FormErrorCode.SCHEMA_MISSING_PATH,
                        f"Element path '{path}' ends with an empty segment; skipped",
                        path=path,
                    )
                )
                continue

            min_value = element.get("min", 0)
            try:
                min_count = int(min_value or 0)
            except (TypeError, ValueError):
                issues.append(
                    schema_issue(
                        FormErrorCode.SCHEMA_INVALID_CARDINALITY,
                        f"Unreadable min '{min_value}', treated as 0",
                        path=path,
                    )
                )
                min_count = 0

            max_value = element.get("max")
            try:
                multiple = is_multiple(max_value)
            except (TypeError, ValueError):
                issues.append(
                    schema_issue(
                        FormErrorCode.SCHEMA_INVALID_CARDINALITY,
                        f"Unreadable max '{max_value}', treated as single-valued",
                        path=path,
                    )
                )
                multiple = False

            key = _element_key(element, path)
            occurrences = seen.get(key, 0) + 1
            seen[key] = occurrences
            if occurrences > 1:
                original = key
                key = f"{key}#{occurrences}"
                issues.append(
                    schema_issue(
                        FormErrorCode.SCHEMA_DUPLICATE_FIELD,
                        f"Field '{original}' appears more than once; kept as '{key}'",
                        path=path,
                    )
                )

            short = element.get("short")
            fields.append(
                FieldDescriptor(
                    resource_type=sd_name,
                    path=path,
                    key=key,
                    name=name,
                    label=field_label(name),
                    data_type=_first_type_code(element),
                    required=min_count > 0,
                    multiple=multiple,
                    description=short if isinstance(short, str) else None,
                    binding_value_set=_binding_value_set(element),
                    min=min_count,
                    max=None if max_value is None else str(max_value),
                )
            )
        return fields, issues
