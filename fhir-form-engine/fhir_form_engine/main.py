from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .api.deps import build_engine
from .api.routes import router
from .config import get_settings
from .core.bundle_loader import LoadedBundles
from .core.errors import ErrorDetail, ErrorSeverity, FormErrorCode
from .core.exceptions import AssemblyCardinalityError, UnknownResourceTypeError
from .core.schemas import OperationOutcome, ProblemDetails
from .logging_setup import setup_logging

PROBLEM_BASE = "https://fhir-form-engine.dev/problems"


def _problem_response(
    status: int, problem_type: str, title: str, detail: str, error: ErrorDetail
) -> JSONResponse:
    problem = ProblemDetails(
        type=f"{PROBLEM_BASE}/{problem_type}",
        title=title,
        status=status,
        detail=detail,
        operationOutcome=OperationOutcome.from_details([error]),
    )
    return JSONResponse(
        status_code=status,
        content=problem.model_dump(),
        headers={"Content-Type": "application/problem+json"},
    )


def create_app(
    bundles: Optional[LoadedBundles] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    setup_logging()
    logger = logging.getLogger(__name__)
    settings = get_settings()

    engine = build_engine(settings, bundles=bundles, transport=transport)
    logger.info(
        "Form engine ready",
        extra={
            "sources": engine.sources,
            "value_sets": len(engine.store),
            "remote_valuesets": settings.VALUESET_REMOTE_ENABLED,
            "cardinality_policy": settings.CARDINALITY_POLICY,
        },
    )

    app = FastAPI(
        title="FHIR Form Engine",
        description="""
        ## FHIR StructureDefinition form engine

        Compiles FHIR StructureDefinitions into editable field descriptors,
        resolves the value sets bound to coded fields and assembles
        collected form values back into FHIR resources.

        ### Pipeline:
        - **Schema compilation**: `/resource-types/{name}/fields`
        - **Value set resolution**: `/valuesets/codes?url=...`
        - **Resource assembly**: `/resource-types/{name}/assemble`
        """,
        version=__version__,
        tags_metadata=[
            {"name": "health", "description": "Health check and monitoring endpoints"},
            {"name": "schema", "description": "Resource types and compiled field descriptors"},
            {"name": "terminology", "description": "Value set resolution"},
            {"name": "assembly", "description": "Resource assembly from collected values"},
            {"name": "metrics", "description": "Prometheus metrics for monitoring"},
        ],
    )
    app.state.engine = engine

    @app.exception_handler(UnknownResourceTypeError)
    async def unknown_resource_type_handler(request: Request, exc: UnknownResourceTypeError):
        return _problem_response(
            404,
            "unknown-resource-type",
            "Unknown Resource Type",
            str(exc),
            ErrorDetail(
                code=FormErrorCode.ASSEMBLY_UNKNOWN_RESOURCE_TYPE,
                severity=ErrorSeverity.ERROR,
                message=str(exc),
                context={"resource_type": exc.resource_type},
            ),
        )

    @app.exception_handler(AssemblyCardinalityError)
    async def cardinality_error_handler(request: Request, exc: AssemblyCardinalityError):
        return _problem_response(
            422,
            "cardinality-mismatch",
            "Cardinality Mismatch",
            exc.detail,
            ErrorDetail(
                code=FormErrorCode.ASSEMBLY_CARDINALITY_MISMATCH,
                severity=ErrorSeverity.ERROR,
                message=exc.detail,
                path=exc.key,
            ),
        )

    app.include_router(router)
    return app


app = create_app()
