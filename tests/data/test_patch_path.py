import pytest

from scimcore.data.attrs import Complex
from scimcore.data.patch_path import PatchPath
from scimcore.error import InvalidPathError
from scimcore.identifiers import BoundedAttrRep
from tests.conftest import ENTERPRISE_USER, USER


def test_simple_path_is_parsed(user_rt):
    path = PatchPath.parse("userName", user_rt)

    assert path.attr_rep == BoundedAttrRep(USER, "userName")
    assert path.attr is user_rt.attrs.get("userName")
    assert path.target_attr is path.attr
    assert not path.has_filter
    assert path.parent_attr is None
    assert str(path) == "userName"


def test_sub_attribute_path_refers_to_parent(user_rt):
    path = PatchPath.parse("name.givenName", user_rt)

    assert path.attr_rep == BoundedAttrRep(USER, "name", "givenName")
    assert path.parent_attr is user_rt.attrs.get("name")


def test_extension_path_is_parsed(user_rt):
    path = PatchPath.parse(f"{ENTERPRISE_USER}:manager.value", user_rt)

    assert path.attr_rep == BoundedAttrRep(ENTERPRISE_USER, "manager", "value")
    assert path.attr_rep.extension
    assert isinstance(path.parent_attr, Complex)


def test_path_with_value_filter_is_parsed(user_rt):
    path = PatchPath.parse('emails[type eq "work"]', user_rt)

    assert path.has_filter
    assert path.attr is user_rt.attrs.get("emails")
    assert path.sub_attr_name is None
    assert path.target_attr is path.attr
    assert path.value_path.match_item({"type": "WORK"}, path.attr)
    assert not path.value_path.match_item({"type": "home"}, path.attr)


def test_path_with_value_filter_and_sub_attribute_is_parsed(user_rt):
    path = PatchPath.parse('emails[type eq "work"].value', user_rt)

    assert path.sub_attr_name == "value"
    assert path.target_attr is user_rt.attrs.get("emails.value")
    assert path.parent_attr is user_rt.attrs.get("emails")
    assert str(path) == 'emails[type eq "work"].value'


@pytest.mark.parametrize(
    "path",
    (
        "",
        "   ",
        "unknown",
        "name.unknown",
        "bad name",
        'emails[type eq "work"',
        'emails[unknown eq "work"]',
        'emails[type eq "work"].unknown',
        'userName[value eq "x"]',
        'emails[type eq "work"] or userName pr',
        "urn:ietf:params:scim:schemas:core:2.0:Group:displayName",
    ),
)
def test_bad_path_is_rejected(user_rt, path):
    with pytest.raises(InvalidPathError):
        PatchPath.parse(path, user_rt)
