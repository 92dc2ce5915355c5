import pytest

from scimcore.data.attrs import String
from scimcore.data.document import Document, Missing
from scimcore.identifiers import AttrName, AttrRep, BoundedAttrRep, SchemaUri
from tests.conftest import ENTERPRISE_USER, USER


def test_keys_are_case_insensitive_and_keep_original_case():
    doc = Document({"userName": "bjensen", "Name": {"givenName": "Barbara"}})

    assert doc["USERNAME"] == "bjensen"
    assert doc["name"]["GIVENNAME"] == "Barbara"
    assert list(doc) == ["userName", "Name"]


def test_first_spelling_of_the_key_is_kept():
    doc = Document({"userName": "bjensen"})

    doc["USERNAME"] = "babs"

    assert doc.to_dict() == {"userName": "babs"}


def test_identifier_keys_are_stored_as_plain_strings():
    doc = Document()
    doc.set(AttrName("userName"), "bjensen")
    doc.set(SchemaUri(ENTERPRISE_USER), {"employeeNumber": "701984"})

    output = doc.to_dict()

    assert [type(key) for key in output] == [str, str]
    assert output["userName"] == "bjensen"
    assert output[ENTERPRISE_USER] == {"employeeNumber": "701984"}
    assert list(doc) == ["userName", ENTERPRISE_USER]


def test_order_of_keys_is_preserved():
    doc = Document()
    doc["b"] = 1
    doc["a"] = 2
    doc["c"] = 3

    assert list(doc) == ["b", "a", "c"]
    assert len(doc) == 3


def test_nested_values_can_be_accessed_with_dotted_path():
    doc = Document({"name": {"givenName": "Barbara"}})

    assert doc["name.givenName"] == "Barbara"
    assert "name.givenName" in doc
    assert "name.familyName" not in doc
    assert doc.get("name.familyName", Missing) is Missing


def test_setting_dotted_path_creates_parent():
    doc = Document()

    doc["name.givenName"] = "Barbara"

    assert doc.to_dict() == {"name": {"givenName": "Barbara"}}
    assert isinstance(doc["name"], Document)


def test_sub_attribute_of_multi_valued_attribute_is_list_of_item_values():
    doc = Document(
        {
            "emails": [
                {"value": "bjensen@example.com", "type": "work"},
                {"type": "home"},
                {"value": "babs@jensen.org"},
            ]
        }
    )

    assert doc["emails.value"] == ["bjensen@example.com", "babs@jensen.org"]
    assert "emails.display" not in doc


def test_removing_sub_attribute_of_multi_valued_attribute_removes_it_from_every_item():
    doc = Document({"emails": [{"value": "a@example.com", "type": "work"}, {"type": "home"}]})

    del doc["emails.type"]

    assert doc.to_dict() == {"emails": [{"value": "a@example.com"}, {}]}


def test_removing_missing_key_fails():
    doc = Document({"name": {"givenName": "Barbara"}})

    with pytest.raises(KeyError):
        del doc["userName"]
    with pytest.raises(KeyError):
        del doc["name.familyName"]
    with pytest.raises(KeyError):
        del doc["nickName.value"]


def test_keys_with_colon_are_not_split():
    doc = Document({ENTERPRISE_USER: {"employeeNumber": "701984"}})

    assert doc[ENTERPRISE_USER.upper()]["employeeNumber"] == "701984"


def test_extension_attributes_are_addressed_with_bounded_attr_rep():
    doc = Document({"userName": "bjensen", ENTERPRISE_USER: {"manager": {"value": "123"}}})
    user_name = BoundedAttrRep(USER, "userName")
    manager_value = BoundedAttrRep(ENTERPRISE_USER, "manager", "value", extension=True)

    assert doc[user_name] == "bjensen"
    assert doc[manager_value] == "123"

    doc[BoundedAttrRep(ENTERPRISE_USER, "employeeNumber", extension=True)] = "701984"

    assert doc.to_dict()[ENTERPRISE_USER] == {
        "manager": {"value": "123"},
        "employeeNumber": "701984",
    }


def test_unbounded_attr_rep_can_be_used_as_key():
    doc = Document({"name": {"givenName": "Barbara"}})

    assert doc[AttrRep("name", "givenName")] == "Barbara"


def test_non_string_key_is_rejected():
    with pytest.raises(TypeError):
        Document({1: "a"})
    with pytest.raises(KeyError):
        Document()[1]


def test_documents_are_compared_case_insensitively_by_keys_only():
    doc = Document({"userName": "bjensen", "name": {"givenName": "Barbara"}})

    assert doc == {"USERNAME": "bjensen", "NAME": {"GIVENNAME": "Barbara"}}
    assert doc != {"userName": "BJENSEN", "name": {"givenName": "Barbara"}}
    assert doc != ["userName"]


def test_copy_is_deep():
    doc = Document({"emails": [{"value": "a@example.com"}], "name": {"givenName": "Barbara"}})

    copy = doc.copy()
    copy["emails"][0]["value"] = "b@example.com"
    copy["name.givenName"] = "Babs"

    assert doc.to_dict() == {
        "emails": [{"value": "a@example.com"}],
        "name": {"givenName": "Barbara"},
    }


def test_values_can_be_tagged_with_attribute():
    attr = String("userName")
    doc = Document()

    doc.set("userName", "bjensen", attribute=attr)

    assert doc.attribute("USERNAME") is attr
    assert doc.copy().attribute("userName") is attr
    assert doc.attribute("name.givenName") is None


def test_to_dict_returns_plain_structures():
    data = {"emails": [{"value": "a@example.com"}], "name": {"givenName": "Barbara"}}

    output = Document(data).to_dict()

    assert output == data
    assert type(output["name"]) is dict
    assert type(output["emails"][0]) is dict
