import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from fhir_form_engine.core.bundle_loader import BundleLoader
from fhir_form_engine.main import create_app

SAMPLES_DIR = Path(__file__).parent.parent / "fhir_form_engine" / "samples"


@pytest.fixture(scope="session", autouse=True)
def set_env():
    os.environ.setdefault("LOG_LEVEL", "INFO")
    os.environ.setdefault("STRUCTURE_DEFINITIONS_PATH", str(SAMPLES_DIR / "profiles-resources.json"))
    os.environ.setdefault("TERMINOLOGY_BUNDLE_PATHS", str(SAMPLES_DIR / "valuesets.json"))


def load_sample(name: str):
    p = SAMPLES_DIR / name
    return json.loads(p.read_text(encoding="utf-8"))


class RemoteValueSets:
    """Stand-in for the published FHIR value set documents."""

    def __init__(self) -> None:
        self.documents: Dict[str, tuple] = {}
        self.requests: List[str] = []

    def add(self, url: str, codes: Optional[List[str]] = None, status: int = 200, body: Any = None) -> None:
        if body is None:
            body = {
                "resourceType": "ValueSet",
                "compose": {"include": [{"concept": [{"code": c} for c in (codes or [])]}]},
            }
        self.documents[url] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url not in self.documents:
            return httpx.Response(404, json={"resourceType": "OperationOutcome"})
        status, body = self.documents[url]
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture()
def remote() -> RemoteValueSets:
    return RemoteValueSets()


@pytest.fixture()
def schema_bundle():
    return load_sample("profiles-resources.json")


@pytest.fixture()
def terminology_bundle():
    return load_sample("valuesets.json")


@pytest.fixture()
def client(remote):
    bundles = BundleLoader().load(
        SAMPLES_DIR / "profiles-resources.json", [SAMPLES_DIR / "valuesets.json"]
    )
    app = create_app(bundles=bundles, transport=remote.transport)
    return TestClient(app)
