import pytest
from structlog.testing import capture_logs

from scimcore.bulk import BULK_REQUEST_SCHEMA, BULK_RESPONSE_SCHEMA, BulkOrchestrator
from scimcore.config import ServiceProviderConfig
from scimcore.endpoint import ResourceEndpoint
from scimcore.handler import Context, TransactionScope
from tests.conftest import GROUP, USER, InMemoryHandler


def _bulk(endpoint, operations, **kwargs):
    return endpoint.handle(
        "POST", "/Bulk", {"schemas": [BULK_REQUEST_SCHEMA], "Operations": operations, **kwargs}
    )


def _create_user_operation(user_name, bulk_id=None):
    operation = {
        "method": "POST",
        "path": "/Users",
        "data": {"schemas": [USER], "userName": user_name},
    }
    if bulk_id is not None:
        operation["bulkId"] = bulk_id
    return operation


def test_created_resource_is_referenced_by_bulk_id(endpoint, user_handler, group_handler):
    response = _bulk(
        endpoint,
        [
            _create_user_operation("Alice", bulk_id="qwerty"),
            {
                "method": "POST",
                "path": "/Groups",
                "bulkId": "ytrewq",
                "data": {
                    "schemas": [GROUP],
                    "displayName": "Tour Guides",
                    "members": [{"type": "User", "value": "bulkId:qwerty"}],
                },
            },
        ],
    )

    assert response.status == 200
    assert response.body["schemas"] == [BULK_RESPONSE_SCHEMA]
    user_id = next(iter(user_handler.resources))
    group_id = next(iter(group_handler.resources))
    user_result, group_result = response.body["Operations"]
    assert user_result["method"] == "POST"
    assert user_result["bulkId"] == "qwerty"
    assert user_result["status"] == "201"
    assert user_result["location"] == f"/Users/{user_id}"
    assert user_result["version"].startswith('W/"')
    assert group_result == {
        "method": "POST",
        "bulkId": "ytrewq",
        "location": f"/Groups/{group_id}",
        "status": "201",
    }
    assert group_handler.resources[group_id]["members"] == [{"type": "User", "value": user_id}]


def test_operations_are_executed_in_request_order(endpoint, user_handler):
    response = _bulk(
        endpoint,
        [
            _create_user_operation("bjensen", bulk_id="babs"),
            {
                "method": "PATCH",
                "path": "/Users/bulkId:babs",
                "data": {
                    "schemas": ["urn:ietf:params:scim:api:messages:2.0:PatchOp"],
                    "Operations": [{"op": "replace", "path": "title", "value": "CEO"}],
                },
            },
            {"method": "DELETE", "path": "/Users/bulkId:babs"},
        ],
    )

    statuses = [item["status"] for item in response.body["Operations"]]
    assert statuses == ["201", "200", "204"]
    assert user_handler.calls == ["create", "get", "update", "get", "delete"]
    user_id = response.body["Operations"][0]["location"].rsplit("/", 1)[1]
    assert response.body["Operations"][2]["location"] == f"/Users/{user_id}"


def test_operation_without_bulk_id_gets_one_assigned(endpoint):
    response = _bulk(endpoint, [_create_user_operation("bjensen")])

    assert len(response.body["Operations"][0]["bulkId"]) == 36


def test_operations_after_too_many_failures_are_skipped(endpoint, user_handler):
    response = _bulk(
        endpoint,
        [
            {"method": "POST", "path": "/Users", "data": {"schemas": [USER]}},
            {"method": "POST", "path": "/Users", "data": {"schemas": [USER], "active": 1}},
            _create_user_operation("bjensen"),
        ],
        failOnErrors=1,
    )

    assert response.status == 200
    assert [item["status"] for item in response.body["Operations"]] == ["400", "400", "412"]
    assert response.body["Operations"][2]["response"]["status"] == "412"
    assert user_handler.resources == {}


@pytest.mark.parametrize("fail_on_errors", (0, -5))
def test_fail_on_errors_below_one_is_treated_as_one(endpoint, user_handler, fail_on_errors):
    response = _bulk(
        endpoint,
        [
            {"method": "POST", "path": "/Users", "data": {"schemas": [USER]}},
            {"method": "POST", "path": "/Users", "data": {"schemas": [USER], "active": 1}},
            _create_user_operation("bjensen"),
        ],
        failOnErrors=fail_on_errors,
    )

    assert response.status == 200
    assert [item["status"] for item in response.body["Operations"]] == ["400", "400", "412"]
    assert user_handler.resources == {}


def test_failures_do_not_stop_processing_without_fail_on_errors(endpoint, user_handler):
    response = _bulk(
        endpoint,
        [
            {"method": "POST", "path": "/Users", "data": {"schemas": [USER]}},
            _create_user_operation("bjensen"),
            _create_user_operation("BJENSEN"),
        ],
    )

    results = response.body["Operations"]
    assert [item["status"] for item in results] == ["400", "201", "409"]
    assert results[0]["response"]["scimType"] == "invalidValue"
    assert results[2]["response"]["scimType"] == "uniqueness"
    assert len(user_handler.resources) == 1


def test_reference_to_failed_operation_fails(endpoint, group_handler):
    response = _bulk(
        endpoint,
        [
            {"method": "POST", "path": "/Users", "bulkId": "a", "data": {"schemas": [USER]}},
            {
                "method": "POST",
                "path": "/Groups",
                "data": {
                    "schemas": [GROUP],
                    "displayName": "Admins",
                    "members": [{"value": "bulkId:a"}],
                },
            },
        ],
    )

    result = response.body["Operations"][1]
    assert result["status"] == "400"
    assert "has failed" in result["response"]["detail"]
    assert group_handler.resources == {}


def test_reference_to_unknown_operation_fails(endpoint):
    response = _bulk(endpoint, [{"method": "DELETE", "path": "/Users/bulkId:unknown"}])

    result = response.body["Operations"][0]
    assert result["status"] == "400"
    assert "is not resolved" in result["response"]["detail"]


@pytest.mark.parametrize(
    "operation",
    (
        "POST",
        {"method": "GET", "path": "/Users"},
        {"method": "POST", "path": "Users", "data": {}},
        {"method": "POST", "path": "/Users/1", "data": {}},
        {"method": "DELETE", "path": "/Users"},
        {"method": "PUT", "path": "/Users/1"},
        {"method": "POST", "path": "/Bulk", "data": {}},
        {"method": "PUT", "path": "/Users/1", "data": {}, "version": 1},
    ),
)
def test_malformed_operation_fails(endpoint, operation):
    response = _bulk(endpoint, [operation])

    result = response.body["Operations"][0]
    assert result["status"] == "400"
    assert result["response"]["scimType"] == "invalidSyntax"


def test_version_is_checked(endpoint, user_handler):
    response = _bulk(
        endpoint,
        [
            _create_user_operation("bjensen", bulk_id="babs"),
            {
                "method": "PUT",
                "path": "/Users/bulkId:babs",
                "version": 'W/"stale"',
                "data": {"schemas": [USER], "userName": "bjensen", "title": "CEO"},
            },
        ],
    )

    assert response.body["Operations"][1]["status"] == "412"
    assert "title" not in next(iter(user_handler.resources.values()))


def test_too_many_operations_are_rejected(endpoint):
    response = _bulk(endpoint, [_create_user_operation(f"user{i}") for i in range(11)])

    assert response.status == 413
    assert response.body["scimType"] == "tooMany"


def test_too_large_payload_is_rejected(registry, user_handler):
    config = ServiceProviderConfig.create(
        bulk={"supported": True, "max_operations": 10, "max_payload_size": 100}
    )
    endpoint = ResourceEndpoint(registry, {"User": user_handler}, config)

    response = _bulk(endpoint, [_create_user_operation("bjensen" * 10)])

    assert response.status == 413
    assert user_handler.resources == {}


@pytest.mark.parametrize(
    "body",
    (
        [],
        {"Operations": []},
        {"schemas": [USER], "Operations": []},
        {"schemas": [BULK_REQUEST_SCHEMA], "Operations": {}},
        {"schemas": [BULK_REQUEST_SCHEMA], "Operations": [], "failOnErrors": "1"},
        {"schemas": [BULK_REQUEST_SCHEMA], "Operations": [], "failOnErrors": True},
    ),
)
def test_malformed_bulk_request_is_rejected(endpoint, body):
    response = endpoint.handle("POST", "/Bulk", body)

    assert response.status == 400


class _CountingTransactionScope(TransactionScope):
    def __init__(self):
        self.runs = 0

    def run(self, call):
        self.runs += 1
        return call()


@pytest.mark.parametrize(("per_operation_transaction", "runs"), ((False, 1), (True, 2)))
def test_transaction_boundary_of_bulk_request(
    registry, config, user_handler, per_operation_transaction, runs
):
    transaction_scope = _CountingTransactionScope()
    endpoint = ResourceEndpoint(
        registry,
        {"User": user_handler},
        config,
        transaction_scope=transaction_scope,
        per_operation_transaction=per_operation_transaction,
    )

    _bulk(endpoint, [_create_user_operation("a"), _create_user_operation("b")])

    assert transaction_scope.runs == runs


def test_bulk_state_is_passed_to_handlers(registry, config):
    seen = []

    class Handler(InMemoryHandler):
        def create(self, resource, context):
            seen.append((context.bulk.current, dict(context.bulk.resolved)))
            return super().create(resource, context)

    endpoint = ResourceEndpoint(registry, {"User": Handler()}, config)
    orchestrator = BulkOrchestrator(endpoint, config)

    results = orchestrator.run(
        [_create_user_operation("a", bulk_id="1"), _create_user_operation("b", bulk_id="2")],
        context=Context(base_url="https://example.com"),
    )

    assert [item.status for item in results] == [201, 201]
    assert results[0].location.startswith("https://example.com/Users/")
    assert seen[0] == (0, {})
    assert seen[1][0] == 1
    assert list(seen[1][1]) == ["1"]


def test_bulk_request_is_logged(endpoint):
    with capture_logs() as logs:
        _bulk(
            endpoint,
            [{"method": "POST", "path": "/Users", "data": {"schemas": [USER]}}],
        )

    assert {
        "event": "bulk_request_completed",
        "log_level": "info",
        "operations": 1,
        "failures": 1,
    } in logs
