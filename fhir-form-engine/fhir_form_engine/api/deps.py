from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Request

from ..config import Settings
from ..core.assembler import ResourceAssembler
from ..core.bundle_loader import BundleLoader, LoadedBundles
from ..core.exceptions import UnknownResourceTypeError
from ..core.form_session import FormSession
from ..core.schema_compiler import SchemaCompiler
from ..core.valueset_resolver import ValueSetResolver
from ..core.valueset_store import ValueSetStore


@dataclass
class FormEngine:
    """The loaded bundles and the pipeline components that serve them."""
    schema_bundle: Dict[str, Any]
    compiler: SchemaCompiler
    store: ValueSetStore
    resolver: ValueSetResolver
    assembler: ResourceAssembler
    sources: List[str]

    def require_resource_type(self, name: str) -> None:
        if name not in self.compiler.list_resource_types(self.schema_bundle):
            raise UnknownResourceTypeError(name)

    def new_session(self) -> FormSession:
        return FormSession(self.schema_bundle, self.compiler, self.resolver, self.assembler)


def build_engine(
    settings: Settings,
    bundles: Optional[LoadedBundles] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FormEngine:
    if bundles is None:
        bundles = BundleLoader().load(settings.structure_definitions_path(), settings.terminology_paths())
    store = ValueSetStore.from_bundles(bundles.terminology_bundles)
    return FormEngine(
        schema_bundle=bundles.schema_bundle,
        compiler=SchemaCompiler(),
        store=store,
        resolver=ValueSetResolver(
            store,
            remote_enabled=settings.VALUESET_REMOTE_ENABLED,
            timeout=settings.VALUESET_REMOTE_TIMEOUT,
            transport=transport,
        ),
        assembler=ResourceAssembler(settings.CARDINALITY_POLICY),
        sources=bundles.sources,
    )


def get_engine(request: Request) -> FormEngine:
    return request.app.state.engine
