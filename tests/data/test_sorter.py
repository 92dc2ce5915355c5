import pytest

from scimcore.data.sorter import Sorter
from scimcore.error import InvalidValueError
from scimcore.identifiers import AttrRep


def test_missing_values_are_placed_last_in_both_directions(user_rt):
    data = [{"userName": "b"}, {}, {"userName": "a"}, {"userName": None}, {"userName": "C"}]

    ascending = Sorter(AttrRep("userName"))(data, user_rt)
    descending = Sorter(AttrRep("userName"), asc=False)(data, user_rt)

    assert [item.get("userName") for item in ascending] == ["a", "b", "C", None, None]
    assert [item.get("userName") for item in descending] == ["C", "b", "a", None, None]
    assert ascending[-2:] == descending[-2:] == [{}, {"userName": None}]


def test_sorting_is_stable(user_rt):
    data = [
        {"id": "1", "title": "Guide"},
        {"id": "2", "title": "guide"},
        {"id": "3", "title": "Boss"},
        {"id": "4", "title": "GUIDE"},
    ]

    output = Sorter(AttrRep("title"))(data, user_rt)

    assert [item["id"] for item in output] == ["3", "1", "2", "4"]


def test_case_exact_values_are_sorted_case_sensitively(user_rt):
    data = [{"id": "b"}, {"id": "B"}, {"id": "a"}]

    assert Sorter(AttrRep("id"))(data, user_rt) == [{"id": "B"}, {"id": "a"}, {"id": "b"}]


def test_date_times_are_sorted_chronologically(user_rt):
    data = [
        {"meta": {"created": "2011-05-13T04:42:34Z"}},
        {"meta": {"created": "2011-05-13T05:42:34+02:00"}},
        {"meta": {"created": "2010-01-23T04:56:22Z"}},
    ]

    output = Sorter(AttrRep("meta", "created"))(data, user_rt)

    assert [item["meta"]["created"] for item in output] == [
        "2010-01-23T04:56:22Z",
        "2011-05-13T05:42:34+02:00",
        "2011-05-13T04:42:34Z",
    ]


def test_multi_valued_attribute_is_sorted_by_primary_value(user_rt):
    data = [
        {
            "id": "1",
            "emails": [{"value": "a@example.com"}, {"value": "z@example.com", "primary": True}],
        },
        {"id": "2", "emails": [{"value": "m@example.com"}]},
        {"id": "3", "emails": []},
    ]

    output = Sorter(AttrRep("emails"))(data, user_rt)

    assert [item["id"] for item in output] == ["2", "1", "3"]


def test_sub_attribute_of_multi_valued_attribute_is_sorted_by_first_value(user_rt):
    data = [
        {"id": "1", "emails": [{"type": "work", "value": "b@example.com"}]},
        {"id": "2", "emails": [{"type": "home", "value": "a@example.com"}]},
    ]

    output = Sorter(AttrRep("emails", "value"))(data, user_rt)

    assert [item["id"] for item in output] == ["2", "1"]


def test_extension_attribute_is_sorted(user_rt):
    enterprise = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"
    data = [{enterprise: {"employeeNumber": "2"}}, {}, {enterprise: {"employeeNumber": "1"}}]

    output = Sorter.from_query("employeeNumber", "descending", user_rt)(data, user_rt)

    assert output == [
        {enterprise: {"employeeNumber": "2"}},
        {enterprise: {"employeeNumber": "1"}},
        {},
    ]


@pytest.mark.parametrize(
    ("sort_order", "expected_asc"),
    ((None, True), ("ascending", True), ("DESCENDING", False)),
)
def test_sorter_is_created_from_query(user_rt, sort_order, expected_asc):
    sorter = Sorter.from_query("name.familyName", sort_order, user_rt)

    assert sorter.attr_rep == AttrRep("name", "familyName")
    assert sorter.asc is expected_asc


@pytest.mark.parametrize(
    ("sort_by", "sort_order"),
    (
        ("unknown", None),
        ("bad name", None),
        ("userName", "upwards"),
    ),
)
def test_bad_sort_query_is_rejected(user_rt, sort_by, sort_order):
    with pytest.raises(InvalidValueError):
        Sorter.from_query(sort_by, sort_order, user_rt)
