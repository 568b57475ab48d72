"""
Structured error taxonomy for the FHIR form engine.

Compilation, terminology and assembly problems are reported as coded
``ErrorDetail`` records instead of exceptions wherever the pipeline is
fail-soft. Each detail renders as a FHIR OperationOutcome issue so the
rendering layer can surface it without knowing the engine's internals.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorCategory(str, Enum):
    """High-level error categories for the form engine."""
    SCHEMA = "SCHEMA"
    ASSEMBLY = "ASSEMBLY"


class ErrorSeverity(str, Enum):
    """Error severity levels."""
    INFO = "information"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class FormErrorCode(str, Enum):
    """
    Structured error codes.

    Format: {CATEGORY}_{SPECIFIC_CODE}
    """

    # Schema compilation (SCHEMA_xx)
    SCHEMA_MISSING_SNAPSHOT = "SCHEMA_001"
    SCHEMA_MISSING_PATH = "SCHEMA_002"
    SCHEMA_INVALID_CARDINALITY = "SCHEMA_003"
    SCHEMA_DUPLICATE_FIELD = "SCHEMA_004"
    SCHEMA_INVALID_ELEMENT = "SCHEMA_005"

    # Assembly (ASSEMBLY_xx)
    ASSEMBLY_CARDINALITY_MISMATCH = "ASSEMBLY_001"
    ASSEMBLY_REQUIRED_MISSING = "ASSEMBLY_002"
    ASSEMBLY_UNKNOWN_RESOURCE_TYPE = "ASSEMBLY_003"


class ErrorDetail(BaseModel):
    """
    Structured error detail following the FHIR OperationOutcome pattern.
    """
    code: FormErrorCode
    severity: ErrorSeverity
    message: str
    details: Optional[str] = None
    path: Optional[str] = None
    context: Dict[str, Any] = {}

    @property
    def category(self) -> ErrorCategory:
        """Extract error category from code."""
        return ErrorCategory(self.code.value.split("_")[0])

    def to_fhir_issue(self) -> Dict[str, Any]:
        """Convert to FHIR OperationOutcome.issue format."""
        if self.code == FormErrorCode.ASSEMBLY_REQUIRED_MISSING:
            issue_code = "required"
        elif self.severity in (ErrorSeverity.ERROR, ErrorSeverity.FATAL):
            issue_code = "invalid"
        else:
            issue_code = "informational"

        issue: Dict[str, Any] = {
            "severity": self.severity.value,
            "code": issue_code,
            "diagnostics": f"[{self.code.value}] {self.message}",
        }
        if self.details:
            issue["diagnostics"] += f" - {self.details}"
        if self.path:
            issue["expression"] = [self.path]
        return issue

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and API responses."""
        result: Dict[str, Any] = {
            "error_code": self.code.value,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.path:
            result["path"] = self.path
        if self.context:
            result["context"] = self.context
        return result


def schema_issue(
    code: FormErrorCode,
    message: str,
    path: Optional[str] = None,
    severity: ErrorSeverity = ErrorSeverity.WARNING,
    context: Optional[Dict[str, Any]] = None,
) -> ErrorDetail:
    """Create a schema compilation issue."""
    return ErrorDetail(
        code=code,
        severity=severity,
        message=message,
        path=path,
        context=context or {},
    )


def required_missing(path: str, key: str) -> ErrorDetail:
    """Create an issue for a required field without a collected value."""
    return ErrorDetail(
        code=FormErrorCode.ASSEMBLY_REQUIRED_MISSING,
        severity=ErrorSeverity.WARNING,
        message=f"Required field '{key}' has no value",
        path=path,
        context={"key": key},
    )
