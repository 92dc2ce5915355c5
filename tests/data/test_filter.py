import decimal

import pytest

from scimcore.data.filter import Filter
from scimcore.data.operator import And, Contains, Equal, Not, Or, Present, ValuePath
from scimcore.error import InvalidFilterError
from scimcore.identifiers import AttrRep


@pytest.mark.parametrize(
    ("expression", "expected_code"),
    (
        ("", 105),
        ("   ", 105),
        ("()", 105),
        ('(userName eq "bjensen"', 100),
        ('userName eq "bjensen")', 100),
        ('emails[type eq "work"', 101),
        ('emails.value[type eq "work"]', 102),
        ("userName eq", 103),
        ('userName eq "bjensen" and', 103),
        ('userName eq "bjensen" or ', 103),
        ("not", 103),
        ('userName xx "bjensen"', 104),
        ('userName eq "bjensen" title pr', 106),
        ('emails[type eq "work"].value', 106),
        ('emails[type[value eq "x"] pr]', 107),
        ('emails[name.givenName eq "x"]', 107),
        ("emails[]", 108),
        ("userName eq bjensen", 109),
        ("1userName pr", 17),
    ),
)
def test_filter_syntax_is_validated(expression, expected_code):
    issues = Filter.validate(expression)

    assert issues.to_dict() == {"_errors": [{"code": expected_code}]}
    with pytest.raises(InvalidFilterError):
        Filter.deserialize(expression)


@pytest.mark.parametrize(
    ("expression", "expected"),
    (
        ('userName eq "bjensen"', Equal(AttrRep("userName"), "bjensen")),
        ("title pr", Present(AttrRep("title"))),
        (
            'userName eq "bjensen" and title pr or active eq true',
            Or(
                And(Equal(AttrRep("userName"), "bjensen"), Present(AttrRep("title"))),
                Equal(AttrRep("active"), True),
            ),
        ),
        (
            'userName eq "bjensen" and (title pr or active eq true)',
            And(
                Equal(AttrRep("userName"), "bjensen"),
                Or(Present(AttrRep("title")), Equal(AttrRep("active"), True)),
            ),
        ),
        ("NOT (title PR)", Not(Present(AttrRep("title")))),
        (
            'emails[type eq "work" and value co "@example.com"]',
            ValuePath(
                AttrRep("emails"),
                And(Equal(AttrRep("type"), "work"), Contains(AttrRep("value"), "@example.com")),
            ),
        ),
    ),
)
def test_filter_is_deserialized(expression, expected):
    assert Filter.deserialize(expression).operator == expected


@pytest.mark.parametrize(
    ("literal", "expected"),
    (
        ('"a \\"quoted\\" value"', 'a "quoted" value'),
        ("true", True),
        ("False", False),
        ("null", None),
        ("42", 42),
        ("-1.5", decimal.Decimal("-1.5")),
        ("1e3", decimal.Decimal("1e3")),
    ),
)
def test_filter_literals_are_deserialized(literal, expected):
    assert Filter.deserialize(f"attr eq {literal}").operator.value == expected


def test_filter_is_serialized_back_to_expression():
    expression = (
        'userName eq "bjensen" and (title pr or not (active eq true)) '
        'and emails[type eq "work"]'
    )

    assert Filter.deserialize(expression).serialize() == expression


@pytest.mark.parametrize(
    ("expression", "expected"),
    (
        ('userName eq "bjensen@example.com"', True),
        ('userName eq "BJENSEN@EXAMPLE.COM"', True),
        ('USERNAME sw "bjensen@"', True),
        ('userName ew "example.org"', False),
        ('name.familyName co "ens"', True),
        ('id eq "2819C223-7F76-453A-919D-413861904646"', False),
        ('id eq "2819c223-7f76-453a-919d-413861904646"', True),
        ('externalId eq "BJENSEN"', False),
        ("title pr", True),
        ("nickName pr and not (x509Certificates pr)", True),
        ('meta.lastModified gt "2011-05-13T04:42:34Z"', False),
        ('meta.lastModified ge "2011-05-13T04:42:34Z"', True),
        ('meta.lastModified eq "2011-05-13T06:42:34+02:00"', True),
        ('meta.created lt "2011-05-13T04:42:34Z"', True),
        ('emails[type eq "work" and value co "@example.com"]', True),
        ('emails[type eq "home" and value co "@example.com"]', False),
        ('emails eq "babs@jensen.org"', True),
        ('emails.type eq "home"', True),
        ('emails co "jensen.org"', True),
        ("emails[primary eq true]", True),
        ('addresses[type eq "work" and postalCode sw "916"]', True),
        ("active eq true", True),
        ("active eq false", False),
        ('employeeNumber eq "701984"', True),
        (
            'urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:manager.value '
            'eq "26118915-6090-4610-87e4-49d8ca9f808d"',
            True,
        ),
        ('title eq "Tour Guide" or userName eq "x"', True),
    ),
)
def test_filter_matches_resource(user_rt, stored_bjensen, expression, expected):
    filter_ = Filter.parse(expression, user_rt)

    assert filter_(stored_bjensen) is expected
    assert filter_(stored_bjensen.to_dict()) is expected


@pytest.mark.parametrize(
    "expression",
    (
        'title eq "x"',
        'title ne "x"',
        'title co "x"',
        'title gt "x"',
        'ims[type eq "aim"]',
        'ims.value ne "x"',
        "ims pr",
    ),
)
def test_missing_attribute_never_matches(user_rt, expression):
    assert Filter.parse(expression, user_rt)({"userName": "bjensen"}) is False


def test_negated_comparison_of_missing_attribute_matches(user_rt):
    assert Filter.parse('not (title eq "x")', user_rt)({"userName": "bjensen"}) is True


@pytest.mark.parametrize("value", ("", None, [], [{"value": ""}]))
def test_empty_value_is_not_present(user_rt, value):
    assert Filter.parse("emails pr", user_rt)({"emails": value}) is False


@pytest.mark.parametrize(
    "expression",
    (
        'unknown eq "x"',
        'name.unknown eq "x"',
        'emails[unknown eq "x"]',
        'userName[value eq "x"]',
        'active co "t"',
        'active eq "true"',
        "userName eq null",
        "userName eq 1",
        'meta.created gt "yesterday"',
        'name eq "x"',
        "emails.primary gt true",
    ),
)
def test_filter_incompatible_with_resource_type_is_rejected(user_rt, expression):
    with pytest.raises(InvalidFilterError):
        Filter.parse(expression, user_rt)


def test_filter_can_be_applied_to_complex_attribute_items(user_rt):
    filter_ = Filter.deserialize('type eq "WORK"')
    emails = user_rt.attrs.get("emails")

    assert filter_({"type": "work", "value": "a@example.com"}, emails) is True
    assert filter_({"type": "home", "value": "a@example.com"}, emails) is False


def test_unbound_filter_requires_context():
    with pytest.raises(ValueError):
        Filter.deserialize("title pr")({"title": "Tour Guide"})


def test_sub_attribute_comparison_respects_case_exactness(group_rt):
    filter_ = Filter.parse('members[value eq "ABC"]', group_rt)

    assert filter_({"members": [{"value": "abc"}]}) is True
    assert Filter.parse('members[$ref eq "https://x/Users/ABC"]', group_rt)(
        {"members": [{"$ref": "https://x/Users/abc"}]}
    ) is False


@pytest.mark.parametrize(
    ("expression", "expected"),
    (
        ('type eq "work"', {"type": "work"}),
        ('type eq "work" and primary eq true', {"type": "work", "primary": True}),
        ('type eq "work" or primary eq true', None),
        ('type eq "work" and value co "x"', None),
        ("not (primary eq true)", None),
    ),
)
def test_equality_terms(expression, expected):
    assert Filter.deserialize(expression).equality_terms() == expected


def test_filter_lists_top_level_attributes_it_refers_to():
    filter_ = Filter.deserialize(
        'userName eq "a" or emails[type eq "work"] or not (userName pr) or name.givenName pr'
    )

    assert filter_.attr_reps == [
        AttrRep("userName"),
        AttrRep("emails"),
        AttrRep("name", "givenName"),
    ]
