import pytest

from scimcore.error import ScimValidationError
from tests.conftest import USER


def _validate(user_rt, **data):
    return user_rt.validator.validate({"schemas": [USER], "userName": "bjensen", **data})


def _issues(user_rt, **data):
    with pytest.raises(ScimValidationError) as exc_info:
        _validate(user_rt, **data)
    return exc_info.value.issues.to_dict()


@pytest.mark.parametrize("value", ("en-US", "en", "da, en-GB;q=0.8, en;q=0.7"))
def test_correct_preferred_language_passes(user_rt, value):
    _validate(user_rt, preferredLanguage=value)


@pytest.mark.parametrize("value", ("english", "EN-us", "en-US;q=high"))
def test_bad_preferred_language_is_rejected(user_rt, value):
    assert _issues(user_rt, preferredLanguage=value) == {
        "preferredLanguage": {"_errors": [{"code": 1}]}
    }


@pytest.mark.parametrize("value", ("en-US", "en_US", "sr-Latn-RS", "es-419"))
def test_correct_locale_passes(user_rt, value):
    _validate(user_rt, locale=value)


def test_bad_locale_is_rejected(user_rt):
    assert _issues(user_rt, locale="English (US)") == {"locale": {"_errors": [{"code": 1}]}}


def test_correct_timezone_passes(user_rt):
    _validate(user_rt, timezone="Europe/Warsaw")


def test_unknown_timezone_is_rejected(user_rt):
    assert _issues(user_rt, timezone="Mars/Olympus_Mons") == {
        "timezone": {"_errors": [{"code": 4}]}
    }


def test_bad_email_is_rejected(user_rt):
    assert _issues(user_rt, emails=[{"value": "bjensen", "type": "work"}]) == {
        "emails": {"0": {"value": {"_errors": [{"code": 1}]}}}
    }


def test_bad_phone_number_produces_warning_only(user_rt):
    document = _validate(user_rt, phoneNumbers=[{"value": "call me maybe", "type": "work"}])

    assert document["phoneNumbers"][0]["value"] == "call me maybe"


def test_phone_number_validator_warns_about_unparseable_number(user_rt):
    validate = user_rt.get_attr("phoneNumbers.value").custom_validators[0]

    assert validate("tel:+1-201-555-0123").to_dict() == {}
    assert validate("call me maybe").to_dict() == {"_warnings": [{"code": 4}]}


@pytest.mark.parametrize(("value", "valid"), (("US", True), ("pl", True), ("XX", False)))
def test_country_is_validated(user_rt, value, valid):
    addresses = [{"country": value, "type": "home"}]

    if valid:
        _validate(user_rt, addresses=addresses)
    else:
        assert _issues(user_rt, addresses=addresses) == {
            "addresses": {"0": {"country": {"_errors": [{"code": 4}]}}}
        }


@pytest.mark.parametrize(
    ("attr", "value"),
    (
        ("emails", [{"value": "a@example.com", "type": "private"}]),
        ("phoneNumbers", [{"value": "+1 555-555-5555", "type": "cell"}]),
        ("addresses", [{"country": "US", "type": "office"}]),
    ),
)
def test_non_canonical_type_is_rejected(user_rt, attr, value):
    assert _issues(user_rt, **{attr: value}) == {attr: {"0": {"type": {"_errors": [{"code": 7}]}}}}


def test_groups_can_not_be_set_by_client(user_rt):
    document = _validate(user_rt, groups=[{"value": "e9e30dba-f08f-4109-8486-d5c6a331660a"}])

    assert "groups" not in document


def test_password_is_accepted_but_never_returned(user_rt):
    attr = user_rt.get_attr("password")

    assert _validate(user_rt, password="t1meMa$heen")["password"] == "t1meMa$heen"
    assert attr.returned == "never"
    assert attr.mutability == "writeOnly"
