from dataclasses import replace

import pytest
from structlog.testing import capture_logs

from scimcore.data.document import Document
from scimcore.error import (
    InvalidPathError,
    InvalidSyntaxError,
    InvalidValueError,
    MutabilityError,
    NoTargetError,
    ScimValidationError,
)
from scimcore.patch import (
    PATCH_OP_SCHEMA,
    PatchEngine,
    PatchOperation,
    PatchWorkaround,
    parse_patch_request,
)
from tests.conftest import ENTERPRISE_USER, GROUP, USER


@pytest.fixture
def engine():
    return PatchEngine()


@pytest.fixture
def tour_guides():
    return Document(
        {
            "schemas": [GROUP],
            "id": "e9e30dba-f08f-4109-8486-d5c6a331660a",
            "displayName": "Tour Guides",
            "members": [
                {"value": "2819c223-7f76-453a-919d-413861904646", "type": "User"},
                {"value": "902c246b-6245-4190-8e05-00816be7344a", "type": "User"},
            ],
        }
    )


def test_value_of_filtered_item_is_replaced(engine, user_rt, stored_bjensen):
    operations = [
        {"op": "replace", "path": 'emails[type eq "work"].value', "value": "babs@example.com"}
    ]

    output = engine.apply(user_rt, stored_bjensen, operations)

    assert output["emails"] == [
        {"value": "babs@example.com", "type": "work", "primary": True},
        {"value": "babs@jensen.org", "type": "home"},
    ]
    assert stored_bjensen["emails"][0]["value"] == "bjensen@example.com"


def test_read_only_values_are_kept_after_patch(engine, user_rt, stored_bjensen):
    output = engine.apply(
        user_rt, stored_bjensen, [{"op": "replace", "path": "title", "value": "CEO"}]
    )

    assert output["title"] == "CEO"
    assert output["id"] == stored_bjensen["id"]
    assert output["meta"] == stored_bjensen["meta"]
    assert output["schemas"] == [USER, ENTERPRISE_USER]


def test_replacing_not_matching_filter_fails(engine, user_rt, stored_bjensen):
    operations = [
        {"op": "replace", "path": 'emails[type eq "other"].value', "value": "x@example.com"}
    ]

    with pytest.raises(NoTargetError):
        engine.apply(user_rt, stored_bjensen, operations)


def test_adding_to_not_matching_equality_filter_creates_item(user_rt, stored_bjensen):
    operations = [{"op": "add", "path": 'emails[type eq "other"]', "value": {"value": "x@y.com"}}]

    output = PatchEngine(workarounds=[]).apply(user_rt, stored_bjensen, operations)

    assert output["emails"][2] == {"type": "other", "value": "x@y.com"}


def test_adding_to_not_matching_non_equality_filter_fails(user_rt, stored_bjensen):
    operations = [
        {"op": "add", "path": 'emails[value co "example.org"]', "value": {"type": "other"}}
    ]

    with pytest.raises(NoTargetError):
        PatchEngine(workarounds=[]).apply(user_rt, stored_bjensen, operations)


def test_removing_filtered_items(engine, user_rt, stored_bjensen):
    output = engine.apply(
        user_rt, stored_bjensen, [{"op": "remove", "path": 'emails[type eq "home"]'}]
    )

    assert output["emails"] == [{"value": "bjensen@example.com", "type": "work", "primary": True}]


def test_removing_sub_attribute_of_filtered_items(engine, user_rt, stored_bjensen):
    output = engine.apply(
        user_rt, stored_bjensen, [{"op": "remove", "path": 'emails[type eq "work"].primary'}]
    )

    assert output["emails"][0] == {"value": "bjensen@example.com", "type": "work"}


def test_removing_all_items_removes_attribute(engine, user_rt, stored_bjensen):
    output = engine.apply(
        user_rt, stored_bjensen, [{"op": "remove", "path": 'emails[value ew ".com" or type pr]'}]
    )

    assert "emails" not in output


def test_removing_absent_attribute_does_nothing(engine, user_rt, stored_bjensen):
    output = engine.apply(user_rt, stored_bjensen, [{"op": "remove", "path": "ims"}])

    assert "ims" not in output
    assert output["userName"] == "bjensen@example.com"


def test_add_merges_sub_attributes_of_complex_attribute(engine, user_rt, stored_bjensen):
    output = engine.apply(
        user_rt, stored_bjensen, [{"op": "add", "path": "name", "value": {"givenName": "Babs"}}]
    )

    assert output["name.givenName"] == "Babs"
    assert output["name.familyName"] == "Jensen"


def test_add_appends_new_items_only(engine, user_rt, stored_bjensen):
    operations = [
        {
            "op": "add",
            "path": "emails",
            "value": [
                {"value": "babs@jensen.org", "type": "home"},
                {"value": "babs@example.org", "type": "other"},
            ],
        }
    ]

    output = engine.apply(user_rt, stored_bjensen, operations)

    assert [item["value"] for item in output["emails"]] == [
        "bjensen@example.com",
        "babs@jensen.org",
        "babs@example.org",
    ]


def test_replace_overwrites_multi_valued_attribute(engine, user_rt, stored_bjensen):
    operations = [
        {"op": "replace", "path": "phoneNumbers", "value": [{"value": "+48 600 600 600"}]}
    ]

    output = engine.apply(user_rt, stored_bjensen, operations)

    assert output["phoneNumbers"] == [{"value": "+48 600 600 600"}]


def test_operation_without_path_is_applied_to_every_attribute(engine, user_rt, stored_bjensen):
    operations = [
        {
            "op": "replace",
            "value": {
                "displayName": "Barbara",
                "name": {"givenName": "Babs"},
                ENTERPRISE_USER: {"employeeNumber": "1"},
            },
        }
    ]

    output = engine.apply(user_rt, stored_bjensen, operations)

    assert output["displayName"] == "Barbara"
    assert output["name.givenName"] == "Babs"
    assert output["name.familyName"] == "Jensen"
    assert output[ENTERPRISE_USER]["employeeNumber"] == "1"
    assert output[ENTERPRISE_USER]["costCenter"] == "4130"


def test_extension_attribute_is_addressed_with_full_path(engine, user_rt, stored_bjensen):
    operations = [{"op": "replace", "path": f"{ENTERPRISE_USER}:manager.value", "value": "123"}]

    output = engine.apply(user_rt, stored_bjensen, operations)

    assert output[ENTERPRISE_USER]["manager"] == {"value": "123"}


@pytest.mark.parametrize(
    "operation",
    (
        {"op": "replace", "path": "id", "value": "123"},
        {"op": "remove", "path": "meta"},
        {"op": "add", "path": "groups", "value": [{"value": "123"}]},
        {"op": "replace", "path": f"{ENTERPRISE_USER}:manager.displayName", "value": "John"},
        {"op": "remove", "path": "userName"},
    ),
)
def test_not_modifiable_attribute_is_rejected(engine, user_rt, stored_bjensen, operation):
    with pytest.raises(MutabilityError):
        engine.apply(user_rt, stored_bjensen, [operation])


def test_immutable_sub_attribute_of_existing_item_can_not_be_changed(engine, group_rt, tour_guides):
    operations = [
        {
            "op": "replace",
            "path": 'members[value eq "902c246b-6245-4190-8e05-00816be7344a"].value',
            "value": "123",
        }
    ]

    with pytest.raises(MutabilityError):
        engine.apply(group_rt, tour_guides, operations)


def test_members_are_added_and_removed(engine, group_rt, tour_guides):
    operations = [
        {"op": "add", "path": "members", "value": [{"value": "123", "type": "Group"}]},
        {"op": "remove", "path": 'members[value eq "902c246b-6245-4190-8e05-00816be7344a"]'},
    ]

    output = engine.apply(group_rt, tour_guides, operations)

    assert output["members"] == [
        {"value": "2819c223-7f76-453a-919d-413861904646", "type": "User"},
        {"value": "123", "type": "Group"},
    ]
    assert len(tour_guides["members"]) == 2


def test_patch_is_applied_entirely_or_not_at_all(engine, user_rt, stored_bjensen):
    operations = [
        {"op": "replace", "path": "title", "value": "CEO"},
        {"op": "replace", "path": 'emails[type eq "other"].value', "value": "x@example.com"},
    ]

    with pytest.raises(NoTargetError):
        engine.apply(user_rt, stored_bjensen, operations)
    assert stored_bjensen["title"] == "Tour Guide"


def test_patched_resource_is_validated(engine, user_rt, stored_bjensen):
    with pytest.raises(ScimValidationError) as exc_info:
        engine.apply(user_rt, stored_bjensen, [{"op": "replace", "path": "active", "value": "yes"}])

    assert exc_info.value.issues.to_dict() == {"active": {"_errors": [{"code": 2}]}}
    assert stored_bjensen["active"] is True


@pytest.mark.parametrize("path", ("unknown", "emails[type eq]", "name.givenName.x"))
def test_bad_path_is_rejected(engine, user_rt, stored_bjensen, path):
    with pytest.raises(InvalidPathError):
        engine.apply(user_rt, stored_bjensen, [{"op": "replace", "path": path, "value": "x"}])


def test_remove_with_value_is_rewritten_to_filter(engine, user_rt, stored_bjensen):
    operations = [{"op": "remove", "path": "emails", "value": [{"value": "babs@jensen.org"}]}]

    with capture_logs() as logs:
        output = engine.apply(user_rt, stored_bjensen, operations)

    assert output["emails"] == [{"value": "bjensen@example.com", "type": "work", "primary": True}]
    assert {
        "event": "patch_workaround_applied",
        "log_level": "debug",
        "workaround": "ms_azure_remove_with_value",
        "operation": operations[0],
        "fixed": {"op": "remove", "path": 'emails[value eq "babs@jensen.org"]'},
    } in logs


def test_remove_with_value_removes_whole_attribute_without_workarounds(user_rt, stored_bjensen):
    operations = [{"op": "remove", "path": "emails", "value": [{"value": "babs@jensen.org"}]}]

    output = PatchEngine(workarounds=[]).apply(user_rt, stored_bjensen, operations)

    assert "emails" not in output


def test_simple_value_of_complex_attribute_is_wrapped(engine, user_rt, stored_bjensen):
    output = engine.apply(
        user_rt, stored_bjensen, [{"op": "add", "path": "emails", "value": "babs@example.org"}]
    )

    assert output["emails"][2] == {"value": "babs@example.org"}


def test_filtered_add_of_absent_item_creates_it(engine, user_rt, stored_bjensen):
    operations = [
        {"op": "add", "path": 'emails[type eq "other"].value', "value": "babs@example.org"}
    ]

    output = engine.apply(user_rt, stored_bjensen, operations)

    assert output["emails"][2] == {"type": "other", "value": "babs@example.org"}


def test_filtered_add_of_existing_item_sets_sub_attribute(engine, user_rt, stored_bjensen):
    operations = [{"op": "add", "path": 'emails[type eq "home"].display', "value": "Home"}]

    output = engine.apply(user_rt, stored_bjensen, operations)

    assert output["emails"][1] == {"value": "babs@jensen.org", "type": "home", "display": "Home"}


def test_custom_workaround_is_applied(user_rt, stored_bjensen):
    engine = PatchEngine(workarounds=[])
    engine.register_workaround(
        PatchWorkaround(
            name="login_alias",
            predicate=lambda op, rt, doc: op.path == "login",
            transform=lambda op, rt, doc: replace(op, path="userName"),
        )
    )

    output = engine.apply(
        user_rt, stored_bjensen, [{"op": "replace", "path": "login", "value": "babs@example.com"}]
    )

    assert output["userName"] == "babs@example.com"
    assert [item.name for item in engine.workarounds] == ["login_alias"]


def test_workaround_can_stop_later_workarounds(user_rt, stored_bjensen):
    applied = []

    def _track(name, proceed):
        return PatchWorkaround(
            name=name,
            predicate=lambda op, rt, doc: True,
            transform=lambda op, rt, doc: applied.append(name) or op,
            proceed=proceed,
        )

    engine = PatchEngine(workarounds=[_track("a", True), _track("b", False), _track("c", True)])

    engine.apply(user_rt, stored_bjensen, [{"op": "replace", "path": "title", "value": "CEO"}])

    assert applied == ["a", "b"]


def test_patch_request_is_parsed():
    operations = parse_patch_request(
        {
            "schemas": [PATCH_OP_SCHEMA],
            "operations": [
                {"op": "Replace", "path": "title", "value": "CEO"},
                {"OP": "remove", "PATH": "nickName"},
            ],
        }
    )

    assert operations == [
        PatchOperation(op="replace", path="title", value="CEO"),
        PatchOperation(op="remove", path="nickName"),
    ]
    assert operations[1].to_dict() == {"op": "remove", "path": "nickName"}


@pytest.mark.parametrize(
    "body",
    (
        [],
        {"Operations": [{"op": "add", "value": {"title": "CEO"}}]},
        {"schemas": [USER], "Operations": [{"op": "add", "value": {"title": "CEO"}}]},
        {"schemas": [PATCH_OP_SCHEMA], "Operations": []},
        {"schemas": [PATCH_OP_SCHEMA]},
        {"schemas": [PATCH_OP_SCHEMA], "Operations": ["add"]},
        {"schemas": [PATCH_OP_SCHEMA], "Operations": [{"op": "move", "path": "title"}]},
        {"schemas": [PATCH_OP_SCHEMA], "Operations": [{"op": "add", "path": 1, "value": "x"}]},
    ),
)
def test_malformed_patch_request_is_rejected(body):
    with pytest.raises(InvalidSyntaxError):
        parse_patch_request(body)


def test_add_and_replace_require_value():
    with pytest.raises(InvalidValueError):
        PatchOperation.from_dict({"op": "add", "path": "title"})
    with pytest.raises(InvalidValueError):
        PatchOperation.from_dict({"op": "replace", "path": "title", "value": None})


def test_remove_requires_path():
    with pytest.raises(NoTargetError):
        PatchOperation.from_dict({"op": "remove"})
