import json
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Optional

import structlog

from scimcore.config import ServiceProviderConfig
from scimcore.data.document import Document
from scimcore.error import (
    InvalidSyntaxError,
    InvalidValueError,
    PreconditionFailedError,
    ScimException,
    ScimNotImplementedError,
    TooManyError,
)
from scimcore.handler import Context

if TYPE_CHECKING:
    from scimcore.endpoint import ResourceEndpoint, ScimResponse

logger = structlog.get_logger()

BULK_REQUEST_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:BulkRequest"
BULK_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:BulkResponse"

_METHODS = ("POST", "PUT", "PATCH", "DELETE")
_BULK_ID_REF = re.compile(r"bulkId:([^\s\"/,\]]+)", re.IGNORECASE)


@dataclass
class BulkRequestContext:
    """
    State of a single bulk request, passed to handlers in `Context.bulk`.

    Attributes:
        resolved: Ids of the resources created by the operations, by their bulkIds.
        failed: BulkIds of the failed operations.
        current: Index of the currently executed operation.
        failure_count: Number of failed operations so far.
        fail_on_errors: Number of failures accepted before the remaining operations are
            skipped. Unlimited if not provided.
    """

    resolved: dict[str, str] = field(default_factory=dict)
    failed: set[str] = field(default_factory=set)
    current: int = 0
    failure_count: int = 0
    fail_on_errors: Optional[int] = None

    @property
    def exhausted(self) -> bool:
        return self.fail_on_errors is not None and self.failure_count > self.fail_on_errors


@dataclass
class BulkResponseOperation:
    method: str
    status: int
    bulk_id: Optional[str] = None
    location: Optional[str] = None
    version: Optional[str] = None
    response: Optional[dict[str, Any]] = None

    @property
    def failed(self) -> bool:
        return self.status >= 400

    def to_dict(self) -> dict[str, Any]:
        output: dict[str, Any] = {"method": self.method}
        if self.bulk_id is not None:
            output["bulkId"] = self.bulk_id
        if self.location is not None:
            output["location"] = self.location
        if self.version is not None:
            output["version"] = self.version
        if self.response is not None:
            output["response"] = self.response
        output["status"] = str(self.status)
        return output


@dataclass
class _Operation:
    method: str
    path: str
    bulk_id: str
    data: Any = None
    version: Optional[str] = None


class BulkOrchestrator:
    """
    Executes operations of a bulk request (RFC-7644, section 3.7) strictly in the request
    order, through the resource endpoint. Operations referring to resources created earlier
    in the same request (`bulkId:<id>`) have the references substituted with the ids of
    these resources.

    Args:
        endpoint: Resource endpoint executing the operations.
        config: Service provider configuration, limiting the number of operations and the
            payload size.
        per_operation_transaction: Whether every operation runs in its own transaction,
            instead of the whole request running in one.
    """

    def __init__(
        self,
        endpoint: "ResourceEndpoint",
        config: ServiceProviderConfig,
        per_operation_transaction: bool = False,
    ):
        self._endpoint = endpoint
        self._config = config
        self._per_operation_transaction = per_operation_transaction

    def handle(self, body: Any, context: Optional[Context] = None) -> dict[str, Any]:
        """
        Handles `BulkRequest` message and returns `BulkResponse` one.

        Raises:
            ScimNotImplementedError: If bulk operations are not supported.
            InvalidSyntaxError: If the message is malformed.
            TooManyError: If the request exceeds `maxOperations` or `maxPayloadSize`.
        """
        if not self._config.bulk.supported:
            raise ScimNotImplementedError("bulk operations are not supported")
        if not isinstance(body, Mapping):
            raise InvalidSyntaxError("bulk request body must be an object")
        max_payload_size = self._config.bulk.max_payload_size
        if max_payload_size and len(json.dumps(_plain(body), default=str)) > max_payload_size:
            raise TooManyError(f"bulk request exceeds {max_payload_size} bytes", status=413)
        body = Document(body)
        schemas = body.get("schemas")
        if not isinstance(schemas, list) or BULK_REQUEST_SCHEMA.lower() not in [
            str(item).lower() for item in schemas
        ]:
            raise InvalidSyntaxError(f"'schemas' must contain {BULK_REQUEST_SCHEMA!r}")
        operations = body.get("Operations")
        if not isinstance(operations, list):
            raise InvalidSyntaxError("'Operations' must be a list")
        fail_on_errors = body.get("failOnErrors")
        if fail_on_errors is not None:
            if isinstance(fail_on_errors, bool) or not isinstance(fail_on_errors, int):
                raise InvalidValueError("'failOnErrors' must be an integer")
            fail_on_errors = max(fail_on_errors, 1)
        results = self.run(operations, fail_on_errors=fail_on_errors, context=context)
        return {
            "schemas": [BULK_RESPONSE_SCHEMA],
            "Operations": [item.to_dict() for item in results],
        }

    def run(
        self,
        operations: list[Any],
        fail_on_errors: Optional[int] = None,
        context: Optional[Context] = None,
    ) -> list[BulkResponseOperation]:
        """
        Executes the operations and returns their results, in the request order. Once the
        number of failures exceeds `fail_on_errors`, the remaining operations are not
        executed, and are reported with 412 status.

        Raises:
            TooManyError: If the number of operations exceeds `maxOperations`.
        """
        max_operations = self._config.bulk.max_operations
        if max_operations and len(operations) > max_operations:
            raise TooManyError(f"number of operations exceeds {max_operations}", status=413)
        state = BulkRequestContext(fail_on_errors=fail_on_errors)
        context = replace(context or Context(), bulk=state)

        def execute() -> list[BulkResponseOperation]:
            return [self._run_one(i, item, state, context) for i, item in enumerate(operations)]

        if self._per_operation_transaction:
            results = execute()
        else:
            results = self._endpoint.transaction_scope.run(execute)
        logger.info(
            "bulk_request_completed",
            operations=len(results),
            failures=state.failure_count,
        )
        return results

    def _run_one(
        self, index: int, data: Any, state: BulkRequestContext, context: Context
    ) -> BulkResponseOperation:
        state.current = index
        method = str(data.get("method", "")).upper() if isinstance(data, Mapping) else ""
        bulk_id = _bulk_id(data)

        if state.exhausted:
            logger.info("bulk_operation_skipped", index=index, bulk_id=bulk_id)
            error = PreconditionFailedError(
                f"operation not executed, number of errors exceeded {state.fail_on_errors}"
            )
            return BulkResponseOperation(
                method=method, status=error.status, bulk_id=bulk_id, response=error.to_dict()
            )

        try:
            operation = _parse_operation(data, bulk_id)
            path = _substitute(operation.path, state)
            body = _substitute(operation.data, state)
        except ScimException as exc:
            return self._failed(method, bulk_id, exc.status, exc.to_dict(), state)

        headers = {"If-Match": operation.version} if operation.version else {}
        response = self._endpoint.dispatch(
            operation.method,
            path,
            body,
            headers=headers,
            context=context,
            transactional=self._per_operation_transaction,
        )
        if response.status >= 400:
            return self._failed(
                operation.method, operation.bulk_id, response.status, response.body, state
            )

        location, version = _location(operation.method, path, response, context)
        if operation.method == "POST":
            resource_id = (response.body or {}).get("id")
            if resource_id:
                state.resolved[operation.bulk_id] = resource_id
        return BulkResponseOperation(
            method=operation.method,
            status=response.status,
            bulk_id=operation.bulk_id,
            location=location,
            version=version,
        )

    @staticmethod
    def _failed(
        method: str,
        bulk_id: Optional[str],
        status: int,
        body: Optional[dict[str, Any]],
        state: BulkRequestContext,
    ) -> BulkResponseOperation:
        state.failure_count += 1
        if bulk_id:
            state.failed.add(bulk_id)
        logger.info("bulk_operation_failed", bulk_id=bulk_id, method=method, status=status)
        return BulkResponseOperation(method=method, status=status, bulk_id=bulk_id, response=body)


def _bulk_id(data: Any) -> str:
    if isinstance(data, Mapping):
        value = Document(data).get("bulkId")
        if isinstance(value, str) and value:
            return value
    return str(uuid.uuid4())


def _parse_operation(data: Any, bulk_id: str) -> _Operation:
    if not isinstance(data, Mapping):
        raise InvalidSyntaxError("bulk operation must be an object")
    data = Document(data)
    method = data.get("method")
    if not isinstance(method, str) or method.upper() not in _METHODS:
        raise InvalidSyntaxError(
            f"bad bulk operation method {method!r}, expected one of {_METHODS}"
        )
    method = method.upper()
    path = data.get("path")
    if not isinstance(path, str) or not path.startswith("/"):
        raise InvalidSyntaxError(f"bad bulk operation path {path!r}")
    if path.strip("/").split("/")[0].lower() == "bulk":
        raise InvalidSyntaxError("bulk operation can not refer to bulk endpoint")
    segments = [segment for segment in path.split("/") if segment]
    if method == "POST" and len(segments) != 1:
        raise InvalidSyntaxError(f"POST operation path must be resource endpoint, got {path!r}")
    if method != "POST" and len(segments) != 2:
        raise InvalidSyntaxError(f"{method} operation path must refer to resource, got {path!r}")
    body = data.get("data")
    if method != "DELETE" and not isinstance(body, Mapping):
        raise InvalidSyntaxError(f"'data' is required for {method} operation")
    version = data.get("version")
    if version is not None and not isinstance(version, str):
        raise InvalidSyntaxError("bulk operation version must be a string")
    return _Operation(
        method=method,
        path=path,
        bulk_id=bulk_id,
        data=_plain(body) if body is not None else None,
        version=version,
    )


def _substitute(value: Any, state: BulkRequestContext) -> Any:
    """
    Replaces `bulkId:<id>` references with ids of the created resources.

    Raises:
        InvalidValueError: If the referenced operation has not been executed or has failed.
    """
    if isinstance(value, str):

        def resolve(match: re.Match) -> str:
            bulk_id = match.group(1)
            if bulk_id not in state.resolved:
                reason = "has failed" if bulk_id in state.failed else "is not resolved"
                raise InvalidValueError(f"bulkId {bulk_id!r} {reason}")
            return state.resolved[bulk_id]

        return _BULK_ID_REF.sub(resolve, value)
    if isinstance(value, Mapping):
        return {key: _substitute(item, state) for key, item in value.items()}
    if isinstance(value, list):
        return [_substitute(item, state) for item in value]
    return value


def _location(
    method: str, path: str, response: "ScimResponse", context: Context
) -> tuple[Optional[str], Optional[str]]:
    body = response.body or {}
    meta = body.get("meta") or {}
    version = meta.get("version") or response.headers.get("ETag")
    location = meta.get("location") or response.headers.get("Location")
    if location is None:
        location = context.base_url.rstrip("/") + path
    return location, version


def _plain(value: Any) -> Any:
    if isinstance(value, Document):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value
