from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .. import __version__
from ..config import get_settings
from ..core.exceptions import AssemblyCardinalityError
from ..core.metrics import metrics as engine_metrics
from ..core.schemas import (
    AssembleRequest,
    AssembleResponse,
    FieldsResponse,
    FieldView,
    OperationOutcome,
    ValueSetCodesResponse,
    WidgetView,
)
from ..core.widgets import widget_for
from .deps import FormEngine, get_engine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/health",
    tags=["health"],
    summary="Health Check",
    description="Returns the health status of the form engine and the bundles it serves",
)
def health(engine: FormEngine = Depends(get_engine)) -> dict:
    """Health check endpoint to verify service availability."""
    return {
        "status": "healthy",
        "resourceTypes": len(engine.compiler.list_resource_types(engine.schema_bundle)),
        "valueSets": len(engine.store),
    }


@router.get(
    "/version",
    tags=["health"],
    summary="Service Version",
    description="Returns the service name and version information",
)
def version() -> dict:
    """Get service version and build information."""
    return {"service": get_settings().SERVICE_NAME, "version": __version__}


@router.get(
    "/metrics",
    tags=["metrics"],
    summary="Prometheus Metrics",
    description="Returns Prometheus-formatted metrics for compilation, terminology and assembly",
)
def metrics() -> Response:
    data = generate_latest(engine_metrics.registry)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@router.get(
    "/resource-types",
    response_model=List[str],
    tags=["schema"],
    summary="List Resource Types",
    description="Distinct StructureDefinition names in the loaded schema bundle, in bundle order",
)
def resource_types(engine: FormEngine = Depends(get_engine)) -> List[str]:
    return engine.compiler.list_resource_types(engine.schema_bundle)


@router.get(
    "/resource-types/{name}/fields",
    response_model=FieldsResponse,
    response_model_by_alias=True,
    tags=["schema"],
    summary="Compile Fields",
    description="""
    Compiles the named StructureDefinition into field descriptors, each with
    the widget classification the rendering layer should use. Elements that
    could not be compiled are reported in `outcome`.
    """,
)
def fields(name: str, engine: FormEngine = Depends(get_engine)) -> FieldsResponse:
    engine.require_resource_type(name)
    result = engine.compiler.compile_report(engine.schema_bundle, name)
    engine_metrics.record_compilation(name, [i.code.value for i in result.issues])

    views = []
    for field in result.fields:
        spec = widget_for(field)
        views.append(
            FieldView(
                field=field,
                widget=WidgetView(
                    kind=spec.kind.value,
                    sub_fields=list(spec.sub_fields),
                    repeatable=spec.repeatable,
                    composite=spec.composite,
                ),
            )
        )
    return FieldsResponse(
        resourceType=name,
        fields=views,
        outcome=OperationOutcome.from_details(result.issues),
    )


@router.get(
    "/valuesets/codes",
    response_model=ValueSetCodesResponse,
    tags=["terminology"],
    summary="Resolve Value Set",
    description="""
    Returns the codes of a value set. Local terminology bundles are searched
    first; unknown value sets are fetched once from their published FHIR
    document. An unresolvable value set yields an empty list.
    """,
)
async def valueset_codes(
    url: str = Query(..., description="Value set identifier, e.g. http://hl7.org/fhir/ValueSet/administrative-gender"),
    engine: FormEngine = Depends(get_engine),
) -> ValueSetCodesResponse:
    codes = await engine.resolver.resolve(url)
    return ValueSetCodesResponse(url=url, codes=codes)


@router.post(
    "/resource-types/{name}/assemble",
    response_model=AssembleResponse,
    tags=["assembly"],
    summary="Assemble Resource",
    description="""
    Builds a FHIR resource from collected form values keyed by field key.
    Missing required fields are reported as warnings in `outcome`; the
    resource is still returned.
    """,
)
def assemble(name: str, payload: AssembleRequest, engine: FormEngine = Depends(get_engine)) -> AssembleResponse:
    engine.require_resource_type(name)
    descriptors = engine.compiler.compile(engine.schema_bundle, name)
    try:
        resource = engine.assembler.assemble(name, descriptors, payload.values)
    except AssemblyCardinalityError:
        engine_metrics.record_assembly(name, "rejected")
        raise
    missing = engine.assembler.missing_required(descriptors, payload.values)
    engine_metrics.record_assembly(name, "incomplete" if missing else "complete")
    logger.info(
        "Resource assembled",
        extra={"resource_type": name, "fields": len(resource) - 1, "missing_required": len(missing)},
    )
    return AssembleResponse(resource=resource, outcome=OperationOutcome.from_details(missing))
