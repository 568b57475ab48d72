import pytest

from fhir_form_engine.core.assembler import ResourceAssembler, property_name
from fhir_form_engine.core.errors import FormErrorCode
from fhir_form_engine.core.exceptions import AssemblyCardinalityError, FieldDescriptorContractError
from fhir_form_engine.core.schema_compiler import SchemaCompiler
from fhir_form_engine.core.schemas import FieldDescriptor


def field(key, data_type="string", multiple=False, required=False, binding=None, resource_type="Patient"):
    return FieldDescriptor(
        resource_type=resource_type,
        path=f"{resource_type}.{key}",
        key=key,
        name=key.split(".")[-1],
        label=key,
        data_type=data_type,
        multiple=multiple,
        required=required,
        binding_value_set=binding,
    )


@pytest.fixture()
def patient_fields(schema_bundle):
    return SchemaCompiler().compile(schema_bundle, "Patient")


def test_single_string_field():
    resource = ResourceAssembler().assemble("Patient", [field("name")], {"name": "Jane"})
    assert resource == {"resourceType": "Patient", "name": "Jane"}


def test_absent_fields_are_omitted():
    resource = ResourceAssembler().assemble("Patient", [field("a"), field("b")], {"a": "x"})
    assert resource == {"resourceType": "Patient", "a": "x"}
    assert "b" not in resource


@pytest.mark.parametrize("empty", [None, "", [], {}])
def test_empty_values_are_omitted(empty):
    resource = ResourceAssembler().assemble("Patient", [field("a")], {"a": empty})
    assert resource == {"resourceType": "Patient"}


def test_multiple_values_keep_order_and_duplicates():
    resource = ResourceAssembler().assemble("Patient", [field("alias", multiple=True)], {"alias": ["a", "b", "a"]})
    assert resource["alias"] == ["a", "b", "a"]


def test_list_for_single_valued_field_takes_first_element():
    resource = ResourceAssembler().assemble("Patient", [field("nickname")], {"nickname": ["Jo", "Joanne"]})
    assert resource["nickname"] == "Jo"


def test_scalar_for_multiple_field_is_coerced_by_default():
    resource = ResourceAssembler().assemble("Patient", [field("alias", multiple=True)], {"alias": "Jo"})
    assert resource["alias"] == ["Jo"]


def test_scalar_for_multiple_field_is_rejected_under_reject_policy():
    assembler = ResourceAssembler(cardinality_policy="reject")
    with pytest.raises(AssemblyCardinalityError) as exc_info:
        assembler.assemble("Patient", [field("alias", multiple=True)], {"alias": "Jo"})
    assert exc_info.value.key == "alias"


def test_unknown_policy_is_refused():
    with pytest.raises(ValueError):
        ResourceAssembler(cardinality_policy="lenient")


def test_composite_values_are_nested_verbatim():
    name = {"use": "official", "family": "Doe", "given": "Jane"}
    period = {"start": "2020-01-01"}
    resource = ResourceAssembler().assemble(
        "Patient",
        [field("name", "HumanName", multiple=True), field("period", "Period")],
        {"name": [name], "period": period},
    )
    assert resource["name"] == [name]
    assert resource["period"] == period


def test_values_are_normalised_per_widget_kind():
    vs = "http://hl7.org/fhir/ValueSet/marital-status"
    resource = ResourceAssembler().assemble(
        "Patient",
        [
            field("active", "boolean"),
            field("multipleBirthInteger", "integer"),
            field("maritalStatus", "CodeableConcept", binding=vs),
            field("gender", "code", binding="http://hl7.org/fhir/ValueSet/administrative-gender"),
        ],
        {"active": "true", "multipleBirthInteger": "2", "maritalStatus": "M", "gender": "female"},
    )
    assert resource == {
        "resourceType": "Patient",
        "active": True,
        "multipleBirthInteger": 2,
        "maritalStatus": {"coding": [{"code": "M"}]},
        "gender": "female",
    }


def test_choice_elements_use_typed_property_names(patient_fields):
    resource = ResourceAssembler().assemble("Patient", patient_fields, {"deceased[x]": "false"})
    assert resource == {"resourceType": "Patient", "deceasedBoolean": False}


def test_nested_keys_build_parent_objects():
    resource = ResourceAssembler().assemble(
        "Patient",
        [field("contact", "BackboneElement"), field("contact.name", "HumanName")],
        {"contact.name": {"family": "Doe"}},
    )
    assert resource == {"resourceType": "Patient", "contact": {"name": {"family": "Doe"}}}


def test_nested_value_under_repeating_parent_is_skipped():
    resource = ResourceAssembler().assemble(
        "Patient",
        [field("contact", "BackboneElement", multiple=True), field("contact.name", "HumanName")],
        {"contact": [{"gender": "female"}], "contact.name": {"family": "Doe"}},
    )
    assert resource == {"resourceType": "Patient", "contact": [{"gender": "female"}]}


def test_nested_value_creates_repeating_parent_as_list():
    resource = ResourceAssembler().assemble(
        "Patient",
        [
            field("contact", "BackboneElement", multiple=True),
            field("contact.name", "HumanName"),
            field("contact.gender", "code"),
        ],
        {"contact.name": {"family": "Doe"}, "contact.gender": "female"},
    )
    assert resource == {"resourceType": "Patient", "contact": [{"name": {"family": "Doe"}, "gender": "female"}]}


def test_sample_contact_name_is_wrapped_in_contact_list(patient_fields):
    resource = ResourceAssembler().assemble("Patient", patient_fields, {"contact.name": {"family": "Doe"}})
    assert resource == {"resourceType": "Patient", "contact": [{"name": {"family": "Doe"}}]}


def test_decimal_values_keep_precision_and_non_finite_text_is_kept():
    resource = ResourceAssembler().assemble(
        "Thing",
        [field("amount", "decimal", resource_type="Thing"), field("ratio", "decimal", resource_type="Thing")],
        {"amount": "1.50", "ratio": "nan"},
    )
    assert str(resource["amount"]) == "1.50"
    assert resource["ratio"] == "nan"


def test_slices_merge_into_base_property():
    resource = ResourceAssembler().assemble(
        "Patient",
        [field("identifier", "Identifier", multiple=True), field("identifier:mrn", "Identifier", multiple=True)],
        {"identifier": [{"value": "1"}], "identifier:mrn": [{"system": "urn:mrn", "value": "2"}]},
    )
    assert resource["identifier"] == [{"value": "1"}, {"system": "urn:mrn", "value": "2"}]


def test_root_element_is_never_emitted(patient_fields):
    resource = ResourceAssembler().assemble("Patient", patient_fields, {"Patient": "anything", "birthDate": "1980-04-02"})
    assert resource == {"resourceType": "Patient", "birthDate": "1980-04-02"}


def test_inputs_are_not_mutated():
    values = {"name": [{"family": "Doe"}], "alias": "Jo"}
    descriptors = [field("name", "HumanName", multiple=True), field("alias", multiple=True)]
    resource = ResourceAssembler().assemble("Patient", descriptors, values)
    resource["name"][0]["family"] = "Changed"
    assert values == {"name": [{"family": "Doe"}], "alias": "Jo"}


def test_non_descriptor_items_are_a_contract_violation():
    with pytest.raises(FieldDescriptorContractError):
        ResourceAssembler().assemble("Patient", [{"key": "name"}], {"name": "Jane"})


def test_missing_required_reports_only_reachable_fields(schema_bundle):
    fields = SchemaCompiler().compile(schema_bundle, "Observation")
    issues = ResourceAssembler().missing_required(fields, {"status": "final"})
    assert [i.context["key"] for i in issues] == ["code"]
    assert issues[0].code == FormErrorCode.ASSEMBLY_REQUIRED_MISSING
    assert issues[0].to_fhir_issue()["code"] == "required"


def test_required_child_of_absent_parent_is_not_reported(patient_fields):
    assert ResourceAssembler().missing_required(patient_fields, {}) == []
    issues = ResourceAssembler().missing_required(patient_fields, {"communication": {"preferred": True}})
    assert [i.context["key"] for i in issues] == ["communication.language"]


@pytest.mark.parametrize(
    "segment,data_type,expected",
    [
        ("name", "HumanName", "name"),
        ("deceased[x]", "dateTime", "deceasedDateTime"),
        ("value[x]", None, "value"),
        ("identifier:mrn", "Identifier", "identifier"),
        ("code#2", "string", "code"),
    ],
)
def test_property_name(segment, data_type, expected):
    assert property_name(segment, data_type) == expected
