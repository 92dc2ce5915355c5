import abc
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from scimcore.data.document import Document
from scimcore.data.filter import Filter
from scimcore.data.sorter import Sorter
from scimcore.error import ValidationIssues

if TYPE_CHECKING:
    from scimcore.bulk import BulkRequestContext
    from scimcore.data.schemas import ResourceType

T = TypeVar("T")


@dataclass(frozen=True)
class Authorization:
    """Authenticated client, as established by the embedder."""

    client_id: Optional[str] = None
    roles: frozenset[str] = frozenset()

    def has_role(self, role: str) -> bool:
        return role in self.roles


@dataclass
class Context:
    """
    Per-request context passed to every handler call.

    Attributes:
        authorization: The client performing the request.
        base_url: Base URL of the service provider, prepended to `meta.location`.
        bulk: State of the enclosing bulk request, if the operation is a part of one.
    """

    authorization: Authorization = field(default_factory=Authorization)
    base_url: str = ""
    bulk: Optional["BulkRequestContext"] = None

    def location(self, resource_type: "ResourceType", resource_id: str) -> str:
        return self.base_url.rstrip("/") + resource_type.location(resource_id)


@dataclass
class ListQuery:
    """
    Query parameters of list and search requests. `filter` and `sorter` are already
    resolved against the resource type, and `count` is capped by `maxResults`.
    """

    filter: Optional[Filter] = None
    sorter: Optional[Sorter] = None
    start_index: int = 1
    count: Optional[int] = None
    attributes: list[str] = field(default_factory=list)
    excluded_attributes: list[str] = field(default_factory=list)


@dataclass
class PartialListResponse:
    """
    Resources returned by `ResourceHandler.list_resources`. If `total_results` is not
    provided, the number of returned resources is used.
    """

    resources: list[Mapping[str, Any]] = field(default_factory=list)
    total_results: Optional[int] = None


class RequestValidator:
    """
    Custom validation of resources sent in `create`, `replace` and `update` requests, for
    conditions the schema can not express. Called after schema validation succeeds and before
    the resource reaches the handler. Errors added to `issues` are reported to the client
    as `400 Bad Request`, together with their locations.

    Examples:
        >>> class NoAdminValidator(RequestValidator):
        ...     def validate_create(self, resource, issues, context):
        ...         if resource.get("userName") == "admin":
        ...             issues.add_error(
        ...                 issue=ValidationError(1001, "invalidValue", "reserved name"),
        ...                 proceed=False,
        ...                 location=("userName",),
        ...             )
    """

    def validate_create(
        self, resource: Document, issues: ValidationIssues, context: Context
    ) -> None:
        pass

    def validate_update(
        self,
        existing: Document,
        resource: Document,
        issues: ValidationIssues,
        context: Context,
    ) -> None:
        """`resource` is the replacing representation, or the result of PATCH operations."""


class ResourceHandler(abc.ABC):
    """
    Storage of a single resource type, implemented by the embedder. Values received by the
    handler are already validated, and values it returns are validated before they are sent
    to the client.

    Role checks are up to the handler: `Context.authorization` carries the client roles, and
    `ForbiddenError` raised by any method is returned to the client as `403 Forbidden`.

    Attributes:
        request_validator: Custom validation of created and updated resources, if any.
    """

    request_validator: Optional[RequestValidator] = None

    @abc.abstractmethod
    def create(self, resource: Document, context: Context) -> Mapping[str, Any]:
        """Stores the resource and returns it with `id` and `meta` assigned."""

    @abc.abstractmethod
    def get(self, resource_id: str, context: Context) -> Optional[Mapping[str, Any]]:
        """Returns the resource, or `None` if there is no such resource."""

    @abc.abstractmethod
    def list_resources(self, query: ListQuery, context: Context) -> PartialListResponse:
        """
        Returns resources matching the query. If the resource type enables automatic
        filtering or sorting, the handler may return all the resources, which are then
        filtered, sorted and paginated by the endpoint.
        """

    @abc.abstractmethod
    def update(
        self, resource_id: str, resource: Document, context: Context
    ) -> Mapping[str, Any]:
        """Replaces the resource (also called for PATCH, with the patched resource)."""

    @abc.abstractmethod
    def delete(self, resource_id: str, context: Context) -> None:
        """
        Deletes the resource.

        Raises:
            NotFoundError: If there is no such resource.
        """

    def get_for_update(self, resource_id: str, context: Context) -> Optional[Mapping[str, Any]]:
        """Returns the resource that is about to be modified, e.g. with a row lock applied."""
        return self.get(resource_id, context)


class Interceptor:
    """Called around every protocol operation, e.g. for auditing or authorization."""

    def around(self, operation: str, call: Callable[[], T]) -> T:
        return call()


class TransactionScope:
    """Transaction boundary of a protocol operation (or whole bulk request)."""

    def run(self, call: Callable[[], T]) -> T:
        return call()
