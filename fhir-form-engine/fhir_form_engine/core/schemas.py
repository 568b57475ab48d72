from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import ErrorDetail


class FieldDescriptor(BaseModel):
    """
    One editable field compiled from an ElementDefinition.

    ``key`` is the field identity and the key the rendering layer uses in
    the collected value map. For top-level elements it equals ``name``.
    """
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    resource_type: str
    path: str
    key: str
    name: str
    label: str
    data_type: Optional[str] = None
    required: bool = False
    multiple: bool = False
    description: Optional[str] = None
    binding_value_set: Optional[str] = None
    min: int = 0
    max: Optional[str] = None

    @property
    def is_root(self) -> bool:
        """The element describing the resource itself, e.g. ``Patient``."""
        return "." not in self.path

    @property
    def parent_key(self) -> Optional[str]:
        if "." not in self.key or self.is_root:
            return None
        return self.key.rsplit(".", 1)[0]


class ValueSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    concepts: tuple[str, ...] = ()


class CompilationResult(BaseModel):
    resource_type: Optional[str] = None
    fields: List[FieldDescriptor] = Field(default_factory=list)
    issues: List[ErrorDetail] = Field(default_factory=list)


class WidgetView(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    kind: str
    sub_fields: List[str] = Field(default_factory=list)
    repeatable: bool = False
    composite: bool = False


class FieldView(BaseModel):
    """A field descriptor together with its widget classification."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    field: FieldDescriptor
    widget: WidgetView


class OperationOutcomeIssue(BaseModel):
    severity: Literal["fatal", "error", "warning", "information"] = "error"
    code: str = "invalid"
    diagnostics: str
    expression: Optional[List[str]] = None


class OperationOutcome(BaseModel):
    resourceType: Literal["OperationOutcome"] = "OperationOutcome"
    issue: List[OperationOutcomeIssue] = Field(default_factory=list)

    @classmethod
    def from_details(cls, details: List[ErrorDetail]) -> "OperationOutcome":
        return cls(issue=[OperationOutcomeIssue(**d.to_fhir_issue()) for d in details])


class FieldsResponse(BaseModel):
    resourceType: str
    fields: List[FieldView]
    outcome: OperationOutcome


class ValueSetCodesResponse(BaseModel):
    url: str
    codes: List[str]


class AssembleRequest(BaseModel):
    """
    Collected values keyed by field key.

    Composite fields carry a map from sub-field (``family``, ``use``) to
    value; multiple fields carry a list.
    """
    values: Dict[str, Any] = Field(
        default_factory=dict,
        description="Collected values keyed by field key",
        examples=[{"name": {"family": "Doe", "given": "Jane"}, "gender": "female", "birthDate": "1980-04-02"}],
    )


class AssembleResponse(BaseModel):
    resource: Dict[str, Any]
    outcome: OperationOutcome


class ProblemDetails(BaseModel):
    """
    RFC 7807 Problem Details for HTTP APIs.
    """
    type: Optional[str] = Field(
        "about:blank",
        description="A URI reference that identifies the problem type"
    )
    title: Optional[str] = Field(
        None,
        description="A short, human-readable summary of the problem type"
    )
    status: Optional[int] = Field(
        None,
        description="The HTTP status code"
    )
    detail: Optional[str] = Field(
        None,
        description="A human-readable explanation specific to this occurrence"
    )
    # FHIR OperationOutcome embedded for healthcare context
    operationOutcome: Optional[OperationOutcome] = Field(
        None,
        description="Embedded FHIR OperationOutcome for detailed error information"
    )
