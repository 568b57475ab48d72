from pathlib import Path

from fastapi.testclient import TestClient

from fhir_form_engine.core.bundle_loader import BundleLoader, LoadedBundles
from fhir_form_engine.main import create_app

SAMPLES_DIR = Path(__file__).parent.parent / "fhir_form_engine" / "samples"


def test_health_and_version(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy", "resourceTypes": 2, "valueSets": 3}
    v = client.get("/version")
    assert v.status_code == 200
    assert v.json()["service"] == "fhir-form-engine"


def test_resource_types(client: TestClient):
    r = client.get("/resource-types")
    assert r.status_code == 200
    assert r.json() == ["Patient", "Observation"]


def test_fields_carry_descriptor_and_widget(client: TestClient):
    r = client.get("/resource-types/Patient/fields")
    assert r.status_code == 200
    body = r.json()
    assert body["resourceType"] == "Patient"
    assert body["outcome"]["issue"] == []

    by_key = {f["field"]["key"]: f for f in body["fields"]}
    birth_date = by_key["birthDate"]
    assert birth_date["field"]["label"] == "Birth Date"
    assert birth_date["field"]["dataType"] == "date"
    assert birth_date["widget"]["kind"] == "Date"

    gender = by_key["gender"]
    assert gender["widget"]["kind"] == "CodedChoice"
    assert gender["field"]["bindingValueSet"].startswith("http://hl7.org/fhir/ValueSet/administrative-gender")

    identifier = by_key["identifier"]
    assert identifier["field"]["multiple"] is True
    assert identifier["widget"]["repeatable"] is True
    assert identifier["widget"]["subFields"] == ["use", "type", "system", "value"]


def test_unknown_resource_type_is_404_problem(client: TestClient):
    r = client.get("/resource-types/Medication/fields")
    assert r.status_code == 404
    body = r.json()
    assert body["title"] == "Unknown Resource Type"
    assert body["operationOutcome"]["resourceType"] == "OperationOutcome"
    assert "ASSEMBLY_003" in body["operationOutcome"]["issue"][0]["diagnostics"]


def test_valueset_codes_local(client: TestClient, remote):
    r = client.get("/valuesets/codes", params={"url": "http://hl7.org/fhir/ValueSet/administrative-gender"})
    assert r.status_code == 200
    assert r.json() == {
        "url": "http://hl7.org/fhir/ValueSet/administrative-gender",
        "codes": ["male", "female", "other", "unknown"],
    }
    assert remote.requests == []


def test_valueset_codes_remote_once(client: TestClient, remote):
    remote.add("https://hl7.org/fhir/ValueSet-marital-status.json", ["M", "S"])
    for _ in range(2):
        r = client.get("/valuesets/codes", params={"url": "http://hl7.org/fhir/ValueSet/marital-status"})
        assert r.json()["codes"] == ["M", "S"]
    assert remote.requests == ["https://hl7.org/fhir/ValueSet-marital-status.json"]


def test_valueset_codes_unresolved_is_empty(client: TestClient):
    r = client.get("/valuesets/codes", params={"url": "http://hl7.org/fhir/ValueSet/nope"})
    assert r.status_code == 200
    assert r.json()["codes"] == []


def test_assemble_patient(client: TestClient):
    payload = {
        "values": {
            "name": [{"family": "Doe", "given": "Jane"}],
            "gender": "female",
            "birthDate": "1980-04-02",
            "deceased[x]": "false",
            "telecom": "",
        }
    }
    r = client.post("/resource-types/Patient/assemble", json=payload)
    assert r.status_code == 200
    body = r.json()
    assert body["resource"] == {
        "resourceType": "Patient",
        "name": [{"family": "Doe", "given": "Jane"}],
        "gender": "female",
        "birthDate": "1980-04-02",
        "deceasedBoolean": False,
    }
    assert body["outcome"]["issue"] == []


def test_assemble_reports_missing_required(client: TestClient):
    r = client.post("/resource-types/Observation/assemble", json={"values": {"status": "final"}})
    assert r.status_code == 200
    issues = r.json()["outcome"]["issue"]
    assert [i["expression"] for i in issues] == [["Observation.code"]]
    assert issues[0]["severity"] == "warning"


def test_metrics_endpoint(client: TestClient):
    client.get("/resource-types/Patient/fields")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "form_engine_compilations_total" in r.text


def test_reject_policy_answers_422(monkeypatch, remote):
    monkeypatch.setenv("CARDINALITY_POLICY", "reject")
    bundles = BundleLoader().load(SAMPLES_DIR / "profiles-resources.json", [SAMPLES_DIR / "valuesets.json"])
    strict = TestClient(create_app(bundles=bundles, transport=remote.transport))

    r = strict.post("/resource-types/Patient/assemble", json={"values": {"name": {"family": "Doe"}}})
    assert r.status_code == 422
    body = r.json()
    assert body["title"] == "Cardinality Mismatch"
    issue = body["operationOutcome"]["issue"][0]
    assert issue["expression"] == ["name"]
    assert issue["diagnostics"].startswith("[ASSEMBLY_001]")


def test_assembled_decimals_are_never_null(remote):
    thing = {
        "resourceType": "StructureDefinition",
        "name": "Thing",
        "snapshot": {
            "element": [
                {"path": "Thing", "min": 0, "max": "*"},
                {"path": "Thing.amount", "min": 0, "max": "1", "type": [{"code": "decimal"}]},
            ]
        },
    }
    bundles = LoadedBundles(schema_bundle={"entry": [{"resource": thing}]})
    client = TestClient(create_app(bundles=bundles, transport=remote.transport))

    r = client.post("/resource-types/Thing/assemble", json={"values": {"amount": "nan"}})
    assert r.status_code == 200
    assert r.json()["resource"] == {"resourceType": "Thing", "amount": "nan"}

    r = client.post("/resource-types/Thing/assemble", json={"values": {"amount": "1.50"}})
    assert r.json()["resource"]["amount"] == "1.50"
