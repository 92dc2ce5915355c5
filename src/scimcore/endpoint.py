from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Optional, TypeVar

import structlog

from scimcore import etag
from scimcore.config import ServiceProviderConfig
from scimcore.data.document import Document
from scimcore.data.filter import Filter
from scimcore.data.schemas import ResourceType
from scimcore.data.sorter import Sorter
from scimcore.data.validator import Direction, ValidationContext
from scimcore.error import (
    InternalError,
    InvalidSyntaxError,
    InvalidValueError,
    NotFoundError,
    NotModified,
    ScimException,
    ScimNotImplementedError,
    ScimValidationError,
    ValidationIssues,
)
from scimcore.handler import (
    Context,
    Interceptor,
    ListQuery,
    PartialListResponse,
    ResourceHandler,
    TransactionScope,
)
from scimcore.patch import PatchEngine, parse_patch_request
from scimcore.registry import Registry

logger = structlog.get_logger()

LIST_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
CONTENT_TYPE = "application/scim+json"

T = TypeVar("T")


@dataclass
class ScimResponse:
    status: int
    body: Optional[dict[str, Any]] = None
    headers: dict[str, str] = field(default_factory=dict)


class ResourceEndpoint:
    """
    Dispatches SCIM protocol operations to the resource handlers. Every request goes through
    the same pipeline: the route is resolved, the request data is validated against the
    resource type, the handler is invoked, and its result is validated again, so only
    conformant resources are returned to the client.

    Args:
        registry: Registry of the resource types the endpoint serves.
        handlers: Resource handlers, by resource type names.
        config: Service provider configuration.
        patch_engine: Engine applying PATCH operations. Default one is used if not provided.
        interceptor: Called around every protocol operation.
        transaction_scope: Transaction boundary of every protocol operation.
        strict: Whether unknown attributes in requests are errors, instead of being ignored.
        per_operation_transaction: Whether every bulk operation runs in its own transaction,
            instead of the whole bulk request running in one.

    Examples:
        >>> endpoint = ResourceEndpoint(registry, {"User": UserHandler()}, config)
        >>> response = endpoint.handle("GET", "/Users", query={"filter": 'userName eq "bjensen"'})
        >>> response.status
        200
    """

    def __init__(
        self,
        registry: Registry,
        handlers: Mapping[str, ResourceHandler],
        config: Optional[ServiceProviderConfig] = None,
        patch_engine: Optional[PatchEngine] = None,
        interceptor: Optional[Interceptor] = None,
        transaction_scope: Optional[TransactionScope] = None,
        strict: bool = False,
        per_operation_transaction: bool = False,
    ):
        from scimcore.bulk import BulkOrchestrator

        for name in handlers:
            if registry.get_resource_type_by_name(name) is None:
                raise ValueError(f"handler for unknown resource type {name!r}")
        self._registry = registry
        self._handlers = dict(handlers)
        self._config = config or ServiceProviderConfig.create()
        self._patch_engine = patch_engine or PatchEngine()
        self._interceptor = interceptor or Interceptor()
        self._transaction_scope = transaction_scope or TransactionScope()
        self._strict = strict
        self._bulk = BulkOrchestrator(
            self, self._config, per_operation_transaction=per_operation_transaction
        )

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def config(self) -> ServiceProviderConfig:
        return self._config

    @property
    def interceptor(self) -> Interceptor:
        return self._interceptor

    @property
    def transaction_scope(self) -> TransactionScope:
        return self._transaction_scope

    def handle(
        self,
        method: str,
        path: str,
        body: Any = None,
        query: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        context: Optional[Context] = None,
    ) -> ScimResponse:
        """
        Handles the protocol operation. Never raises: every failure is rendered as SCIM error
        response.
        """
        return self.dispatch(method, path, body, query, headers, context)

    def dispatch(
        self,
        method: str,
        path: str,
        body: Any = None,
        query: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        context: Optional[Context] = None,
        transactional: bool = True,
    ) -> ScimResponse:
        context = context or Context()
        try:
            return self._route(
                method.upper(), path, body, query or {}, headers or {}, context, transactional
            )
        except NotModified:
            return ScimResponse(status=304)
        except ScimException as exc:
            logger.info(
                "scim_request_failed",
                method=method,
                path=path,
                status=exc.status,
                scim_type=exc.scim_type.value if exc.scim_type else None,
            )
            return _error_response(exc)
        except Exception:
            logger.exception("scim_request_crashed", method=method, path=path)
            return _error_response(InternalError())

    def _guarded(self, operation: str, call: Callable[[], T], transactional: bool) -> T:
        if transactional:
            return self._interceptor.around(
                operation, lambda: self._transaction_scope.run(call)
            )
        return self._interceptor.around(operation, call)

    def _route(
        self,
        method: str,
        path: str,
        body: Any,
        query: Mapping[str, Any],
        headers: Mapping[str, str],
        context: Context,
        transactional: bool,
    ) -> ScimResponse:
        segments = [segment for segment in path.split("?", 1)[0].split("/") if segment]
        if not segments:
            raise NotFoundError(f"no endpoint at {path!r}")
        root = segments[0].lower()
        if root in ("serviceproviderconfig", "resourcetypes", "schemas"):
            if method != "GET":
                raise ScimNotImplementedError(f"{method} is not supported for /{segments[0]}")
            return self._read_only(root, segments[1:])
        if root == "bulk":
            if method != "POST" or len(segments) != 1:
                raise ScimNotImplementedError(f"{method} is not supported for {path!r}")
            return self._guarded(
                "bulk",
                lambda: ScimResponse(
                    status=200, body=self._bulk.handle(body, context), headers=_headers()
                ),
                transactional=False,
            )

        resource_type = self._registry.get_resource_type_by_endpoint("/" + segments[0])
        if resource_type is None or resource_type.name not in self._handlers:
            raise NotFoundError(f"no endpoint at {path!r}")
        handler = self._handlers[resource_type.name]

        if len(segments) == 1:
            if method == "POST":
                operation = "create"
                call: Callable[[], ScimResponse] = partial(
                    self._create, resource_type, handler, body, query, context
                )
            elif method == "GET":
                operation = "list"
                call = partial(self._list, resource_type, handler, query, context)
            else:
                raise ScimNotImplementedError(f"{method} is not supported for {path!r}")
        elif len(segments) == 2 and segments[1].lower() == ".search":
            if method != "POST":
                raise ScimNotImplementedError(f"{method} is not supported for {path!r}")
            operation = "list"
            call = partial(self._list, resource_type, handler, _search_params(body), context)
        elif len(segments) == 2:
            resource_id = segments[1]
            if method == "GET":
                operation = "get"
                call = partial(
                    self._get, resource_type, handler, resource_id, query, headers, context
                )
            elif method == "PUT":
                operation = "update"
                call = partial(
                    self._update, resource_type, handler, resource_id, body, query, headers, context
                )
            elif method == "PATCH":
                operation = "patch"
                call = partial(
                    self._patch, resource_type, handler, resource_id, body, query, headers, context
                )
            elif method == "DELETE":
                operation = "delete"
                call = partial(self._delete, resource_type, handler, resource_id, headers, context)
            else:
                raise ScimNotImplementedError(f"{method} is not supported for {path!r}")
        else:
            raise NotFoundError(f"no endpoint at {path!r}")

        if not resource_type.features.is_enabled(operation):
            raise ScimNotImplementedError(
                f"operation {operation!r} is disabled for {resource_type.name!r}"
            )
        return self._guarded(f"{resource_type.name}:{operation}", call, transactional)

    def _read_only(self, root: str, rest: list[str]) -> ScimResponse:
        if root == "serviceproviderconfig":
            if rest:
                raise NotFoundError()
            return ScimResponse(status=200, body=self._config.to_dict(), headers=_headers())

        if root == "resourcetypes":
            resource_types = [
                resource_type
                for resource_type in self._registry.resource_types.values()
                if not resource_type.features.disabled
            ]
            if not rest:
                return _list_response([item.to_dict() for item in resource_types])
            for resource_type in resource_types:
                if resource_type.name.lower() == "/".join(rest).lower():
                    return ScimResponse(
                        status=200, body=resource_type.to_dict(), headers=_headers()
                    )
            raise NotFoundError(f"unknown resource type {'/'.join(rest)!r}")

        if not rest:
            return _list_response([item.to_dict() for item in self._registry.schemas.values()])
        schema = self._registry.get_schema_by_uri("/".join(rest))
        if schema is None:
            raise NotFoundError(f"unknown schema {'/'.join(rest)!r}")
        return ScimResponse(status=200, body=schema.to_dict(), headers=_headers())

    def _create(
        self,
        resource_type: ResourceType,
        handler: ResourceHandler,
        body: Any,
        query: Mapping[str, Any],
        context: Context,
    ) -> ScimResponse:
        data = resource_type.validator.validate(
            body,
            ValidationContext(direction=Direction.REQUEST, operation="create", strict=self._strict),
        )
        self._validate_request(handler, context, data)
        created = handler.create(data, context)
        response = self._respond(resource_type, created, query, context, status=201)
        location = (response.body or {}).get("meta", {}).get("location")
        if location:
            response.headers["Location"] = location
        logger.info(
            "resource_created",
            resource_type=resource_type.name,
            resource_id=(response.body or {}).get("id"),
        )
        return response

    def _get(
        self,
        resource_type: ResourceType,
        handler: ResourceHandler,
        resource_id: str,
        query: Mapping[str, Any],
        headers: Mapping[str, str],
        context: Context,
    ) -> ScimResponse:
        resource = self._fetch(resource_type, handler, resource_id, context, for_update=False)
        if etag.enabled(self._config, resource_type):
            etag.check_preconditions(headers, resource, safe=True)
        return self._respond(resource_type, resource, query, context)

    def _update(
        self,
        resource_type: ResourceType,
        handler: ResourceHandler,
        resource_id: str,
        body: Any,
        query: Mapping[str, Any],
        headers: Mapping[str, str],
        context: Context,
    ) -> ScimResponse:
        existing = self._fetch(resource_type, handler, resource_id, context)
        if etag.enabled(self._config, resource_type):
            etag.check_preconditions(headers, existing, safe=False)
        data = resource_type.validator.validate(
            body,
            ValidationContext(
                direction=Direction.REQUEST,
                operation="replace",
                strict=self._strict,
                existing=existing,
            ),
        )
        self._validate_request(handler, context, data, existing)
        updated = handler.update(resource_id, data, context)
        return self._respond(resource_type, updated, query, context)

    def _patch(
        self,
        resource_type: ResourceType,
        handler: ResourceHandler,
        resource_id: str,
        body: Any,
        query: Mapping[str, Any],
        headers: Mapping[str, str],
        context: Context,
    ) -> ScimResponse:
        if not self._config.patch.supported:
            raise ScimNotImplementedError("PATCH is not supported")
        operations = parse_patch_request(body)
        existing = self._fetch(resource_type, handler, resource_id, context)
        if etag.enabled(self._config, resource_type):
            etag.check_preconditions(headers, existing, safe=False)
        patched = self._patch_engine.apply(resource_type, existing, operations)
        self._validate_request(handler, context, patched, existing)
        updated = handler.update(resource_id, patched, context)
        return self._respond(resource_type, updated, query, context)

    def _delete(
        self,
        resource_type: ResourceType,
        handler: ResourceHandler,
        resource_id: str,
        headers: Mapping[str, str],
        context: Context,
    ) -> ScimResponse:
        if etag.enabled(self._config, resource_type):
            existing = self._fetch(resource_type, handler, resource_id, context)
            etag.check_preconditions(headers, existing, safe=False)
        handler.delete(resource_id, context)
        logger.info(
            "resource_deleted", resource_type=resource_type.name, resource_id=resource_id
        )
        return ScimResponse(status=204)

    def _list(
        self,
        resource_type: ResourceType,
        handler: ResourceHandler,
        params: Mapping[str, Any],
        context: Context,
    ) -> ScimResponse:
        query = self._list_query(resource_type, params)
        result = handler.list_resources(query, context)
        if not isinstance(result, PartialListResponse):
            result = PartialListResponse(resources=list(result))
        resources = [
            item if isinstance(item, Document) else Document(item) for item in result.resources
        ]
        features = resource_type.features

        if features.singleton and not params:
            if not resources:
                raise NotFoundError(f"no {resource_type.name!r} resource")
            return self._respond(resource_type, resources[0], params, context)

        automatic = False
        if query.filter is not None and features.auto_filtering:
            resources = [item for item in resources if query.filter(item)]
            automatic = True
        if query.sorter is not None and features.auto_sorting:
            resources = query.sorter(resources, resource_type)
            automatic = True
        if automatic:
            total_results = len(resources)
            resources = resources[query.start_index - 1 :]
        else:
            total_results = (
                result.total_results if result.total_results is not None else len(resources)
            )
        if query.count is not None:
            resources = resources[: query.count]

        rendered = [
            self._render(resource_type, item, query.attributes, query.excluded_attributes, context)
            for item in resources
        ]
        return _list_response(rendered, total_results, query.start_index)

    def _list_query(self, resource_type: ResourceType, params: Mapping[str, Any]) -> ListQuery:
        params = params if isinstance(params, Document) else Document(params)
        query = ListQuery(
            attributes=_names(params.get("attributes")),
            excluded_attributes=_names(params.get("excludedAttributes")),
        )
        if query.attributes and query.excluded_attributes:
            raise InvalidValueError(
                "'attributes' and 'excludedAttributes' can not be used together"
            )

        expression = params.get("filter")
        if expression is not None:
            if not self._config.filter.supported:
                raise ScimNotImplementedError("filtering is not supported")
            if not isinstance(expression, str):
                raise InvalidValueError("'filter' must be a string")
            query.filter = Filter.parse(expression, resource_type)

        sort_by = params.get("sortBy")
        if sort_by is not None:
            if not self._config.sort.supported:
                raise ScimNotImplementedError("sorting is not supported")
            query.sorter = Sorter.from_query(sort_by, params.get("sortOrder"), resource_type)

        query.start_index = max(_integer(params, "startIndex", 1), 1)
        count = params.get("count")
        max_results = self._config.filter.max_results
        if count is not None:
            query.count = max(_integer(params, "count", 0), 0)
        if max_results:
            query.count = min(query.count, max_results) if query.count is not None else max_results
        return query

    @staticmethod
    def _validate_request(
        handler: ResourceHandler,
        context: Context,
        resource: Document,
        existing: Optional[Document] = None,
    ) -> None:
        if handler.request_validator is None:
            return
        issues = ValidationIssues()
        if existing is None:
            handler.request_validator.validate_create(resource, issues, context)
        else:
            handler.request_validator.validate_update(existing, resource, issues, context)
        if issues.has_errors():
            raise ScimValidationError(issues)

    def _fetch(
        self,
        resource_type: ResourceType,
        handler: ResourceHandler,
        resource_id: str,
        context: Context,
        for_update: bool = True,
    ) -> Document:
        if for_update:
            resource = handler.get_for_update(resource_id, context)
        else:
            resource = handler.get(resource_id, context)
        if resource is None:
            raise NotFoundError(f"{resource_type.name} {resource_id!r} not found")
        document = resource if isinstance(resource, Document) else Document(resource)
        return self._with_meta(resource_type, document, context)

    def _with_meta(
        self, resource_type: ResourceType, resource: Document, context: Context
    ) -> Document:
        document = resource.copy()
        document["meta.resourceType"] = resource_type.name
        resource_id = document.get("id")
        if isinstance(resource_id, str) and resource_id:
            document["meta.location"] = context.location(resource_type, resource_id)
        return document

    def _render(
        self,
        resource_type: ResourceType,
        resource: Any,
        attributes: list[str],
        excluded_attributes: list[str],
        context: Context,
    ) -> dict[str, Any]:
        if not isinstance(resource, Mapping):
            logger.error("bad_handler_result", resource_type=resource_type.name)
            raise InternalError()
        document = resource if isinstance(resource, Document) else Document(resource)
        document = self._with_meta(resource_type, document, context)
        if etag.enabled(self._config, resource_type) and not document.get("meta.version"):
            document["meta.version"] = str(etag.compute(document))
        try:
            validated = resource_type.validator.validate(
                document,
                ValidationContext(
                    direction=Direction.RESPONSE,
                    attributes=attributes,
                    excluded_attributes=excluded_attributes,
                ),
            )
        except ScimValidationError as exc:
            logger.error(
                "response_validation_failed",
                resource_type=resource_type.name,
                errors=exc.issues.to_dict(msg=True),
            )
            raise InternalError()
        return validated.to_dict()

    def _respond(
        self,
        resource_type: ResourceType,
        resource: Any,
        params: Mapping[str, Any],
        context: Context,
        status: int = 200,
    ) -> ScimResponse:
        params = params if isinstance(params, Document) else Document(params)
        attributes = _names(params.get("attributes"))
        excluded_attributes = _names(params.get("excludedAttributes"))
        if attributes and excluded_attributes:
            raise InvalidValueError(
                "'attributes' and 'excludedAttributes' can not be used together"
            )
        body = self._render(resource_type, resource, attributes, excluded_attributes, context)
        headers = _headers()
        version = body.get("meta", {}).get("version")
        if version and etag.enabled(self._config, resource_type):
            headers["ETag"] = version
        return ScimResponse(status=status, body=body, headers=headers)


def _headers() -> dict[str, str]:
    return {"Content-Type": CONTENT_TYPE}


def _error_response(exc: ScimException) -> ScimResponse:
    return ScimResponse(status=exc.status, body=exc.to_dict(), headers=_headers())


def _list_response(
    resources: list[dict[str, Any]],
    total_results: Optional[int] = None,
    start_index: int = 1,
) -> ScimResponse:
    return ScimResponse(
        status=200,
        body={
            "schemas": [LIST_RESPONSE_SCHEMA],
            "totalResults": len(resources) if total_results is None else total_results,
            "itemsPerPage": len(resources),
            "startIndex": start_index,
            "Resources": resources,
        },
        headers=_headers(),
    )


def _search_params(body: Any) -> Mapping[str, Any]:
    if body is None:
        return {}
    if not isinstance(body, Mapping):
        raise InvalidSyntaxError("search request body must be an object")
    return {key: value for key, value in body.items() if key.lower() != "schemas"}


def _names(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise InvalidValueError(f"bad list of attribute names {value!r}")
    return [item.strip() for item in value if item.strip()]


def _integer(params: Mapping[str, Any], name: str, default: int) -> int:
    value = params.get(name)
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidValueError(f"{name!r} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidValueError(f"{name!r} must be an integer")
