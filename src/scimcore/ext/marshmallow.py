from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Iterable, Optional, Protocol

import marshmallow

from scimcore.data import attrs
from scimcore.data.attrs import Attribute, parse_datetime
from scimcore.data.document import Document
from scimcore.data.schemas import ResourceType
from scimcore.data.validator import Direction, ValidationContext
from scimcore.error import ScimValidationError


class DateTimeField(marshmallow.fields.DateTime):
    """`DateTime` field, which also dumps RFC-3339 strings, the way `Document` stores them."""

    def _serialize(self, value: Any, attr: Optional[str], obj: Any, **kwargs: Any) -> Any:
        if isinstance(value, str):
            parsed = parse_datetime(value)
            value = parsed if parsed is not None else value
        if isinstance(value, str):
            return value
        return super()._serialize(value, attr, obj, **kwargs)


_marshmallow_field_by_attr_type: dict[type[Attribute], type[marshmallow.fields.Field]] = {
    attrs.Any_: marshmallow.fields.Raw,
    attrs.Boolean: marshmallow.fields.Boolean,
    attrs.Integer: marshmallow.fields.Integer,
    attrs.Decimal: marshmallow.fields.Float,
    attrs.DateTime: DateTimeField,
    attrs.Binary: marshmallow.fields.String,
    attrs.Reference: marshmallow.fields.String,
    attrs.String: marshmallow.fields.String,
}
_initialized = False
_auto_initialized = False


@dataclass
class ResponseContext:
    """Attribute projection requested by the client, applied when responses are processed."""

    attributes: Optional[Collection[str]] = None
    excluded_attributes: Optional[Collection[str]] = None
    kwargs: dict[str, Any] = field(default_factory=dict)


class ResponseContextProvider(Protocol):
    def __call__(self) -> ResponseContext:
        """Returns `ResponseContext`."""


def initialize(
    fields_by_attrs: Optional[dict[type[Attribute], type[marshmallow.fields.Field]]] = None,
):
    """
    Initializes the `marshmallow` extension. Used to specify mapping of scimcore attributes to
    marshmallow fields, used during data (de)serialization.

    Default mapping is as follows:

        scimcore.data.Boolean   ---> marshmallow.fields.Boolean
        scimcore.data.Integer   ---> marshmallow.fields.Integer
        scimcore.data.Decimal   ---> marshmallow.fields.Float
        scimcore.data.DateTime  ---> scimcore.ext.marshmallow.DateTimeField
        scimcore.data.Binary    ---> marshmallow.fields.String
        scimcore.data.Reference ---> marshmallow.fields.String
        scimcore.data.String    ---> marshmallow.fields.String
        scimcore.data.Any_      ---> marshmallow.fields.Raw

    `scimcore.data.Complex` is always converted to `marshmallow.fields.Nested`.

    Raises:
        RuntimeError: When attempt to initialize the extension second time.
    """
    global _initialized
    if _auto_initialized:
        raise RuntimeError(
            "marshmallow extension has been automatically initialized with default field mapping; "
            "call scimcore.ext.marshmallow.initialize() before first call to extension"
        )
    if _initialized:
        raise RuntimeError("marshmallow extension has been already initialized")

    if fields_by_attrs is not None:
        _marshmallow_field_by_attr_type.update(fields_by_attrs)
    _initialized = True


def _ensure_initialized() -> None:
    global _auto_initialized
    if not _initialized:
        _auto_initialized = True


def _get_field(attr: Attribute) -> marshmallow.fields.Field:
    field_: marshmallow.fields.Field
    if isinstance(attr, attrs.Complex):
        field_ = marshmallow.fields.Nested(
            {str(name): _get_field(sub_attr) for name, sub_attr in attr.attrs}
        )
    else:
        field_ = _marshmallow_field_by_attr_type[type(attr)]()
    if attr.multi_valued:
        field_ = marshmallow.fields.List(field_)
    return field_


def _extension_field_name(uri: str) -> str:
    # marshmallow treats dots in field names as nesting, extension URIs go to `data_key`
    return str(uri).replace(".", "_")


def _get_fields(resource_type: ResourceType) -> dict[str, marshmallow.fields.Field]:
    fields_: dict[str, marshmallow.fields.Field] = {
        str(attr.name): _get_field(attr) for attr in resource_type.top_level_attrs()
    }
    for uri, (extension, _) in resource_type.extensions.items():
        fields_[_extension_field_name(uri)] = marshmallow.fields.Nested(
            {str(attr_rep.attr): _get_field(attr) for attr_rep, attr in extension.attrs},
            data_key=str(uri),
        )
    return fields_


def _transform_resource_data_for_loading(
    resource_type: ResourceType, data: Mapping[str, Any]
) -> Document:
    uris = {_extension_field_name(uri): str(uri) for uri in resource_type.extensions}
    return Document({uris.get(key, key): value for key, value in data.items()})


def _transform_resource_data_for_dumping(
    resource_type: ResourceType, data: Mapping[str, Any]
) -> dict[str, Any]:
    field_names = {
        str(uri).lower(): _extension_field_name(uri) for uri in resource_type.extensions
    }
    return {field_names.get(key.lower(), key): value for key, value in data.items()}


def _transform_errors_dict(input_dict: dict[str, Any]) -> dict[str, Any]:
    output_dict: dict = {}
    for key, value in input_dict.items():
        if key == "_warnings":
            continue
        if isinstance(value, dict):
            transformed_value = _transform_errors_dict(value)
            if "_errors" in transformed_value and len(transformed_value) == 1:
                output_dict[key] = [error["error"] for error in transformed_value["_errors"]]
            else:
                output_dict[key] = transformed_value
        else:
            output_dict[key] = value
    return output_dict


def _validate(
    resource_type: ResourceType, data: Any, context: ValidationContext
) -> dict[str, Any]:
    try:
        return resource_type.validator.validate(data, context).to_dict()
    except ScimValidationError as exc:
        raise marshmallow.ValidationError(
            message=_transform_errors_dict(exc.issues.to_dict(msg=True)),
        )


def _response_context(provider: Optional[ResponseContextProvider]) -> ValidationContext:
    response_context = provider() if provider is not None else ResponseContext()
    return ValidationContext(
        direction=Direction.RESPONSE,
        attributes=response_context.attributes,
        excluded_attributes=response_context.excluded_attributes,
    )


def _create_schema(
    resource_type: ResourceType,
    name: str,
    processors: dict[str, Callable],
) -> type[marshmallow.Schema]:
    _ensure_initialized()

    def _post_load(_, data: Mapping[str, Any], **__) -> Document:
        return _transform_resource_data_for_loading(resource_type, data)

    class Meta:
        unknown = marshmallow.EXCLUDE

    return type(
        name,
        (marshmallow.Schema,),
        {
            **_get_fields(resource_type),
            **processors,
            "_post_load": marshmallow.post_load(_post_load),
            "Meta": Meta,
        },
    )


def create_request_schema(
    resource_type: ResourceType, operation: str = "create", strict: bool = False
) -> type[marshmallow.Schema]:
    """
    Creates marshmallow schema for the resources of `resource_type`, sent by the clients
    in `create` or `replace` requests. Loaded data is validated, the way the resource
    endpoint validates it, and the result is `Document`.
    """

    def _pre_load(_, data: Any, **__) -> dict[str, Any]:
        return _validate(
            resource_type,
            data,
            ValidationContext(direction=Direction.REQUEST, operation=operation, strict=strict),
        )

    return _create_schema(
        resource_type,
        f"{resource_type.name}RequestSchema",
        {"_pre_load": marshmallow.pre_load(_pre_load)},
    )


def create_response_schema(
    resource_type: ResourceType,
    context_provider: Optional[ResponseContextProvider] = None,
) -> type[marshmallow.Schema]:
    """
    Creates marshmallow schema for the resources of `resource_type`, returned by the service
    provider. Both loaded and dumped data go through response validation, so attributes that
    are never returned (e.g. `password`) are dropped, and `attributes` / `excludedAttributes`
    provided by `context_provider` are applied.

    Examples:
        >>> schema_cls = create_response_schema(user_resource_type)
        >>> schema_cls().dump({"userName": "bjensen", "password": "t1meMa$heen", ...})
        {"userName": "bjensen", ...}
    """

    def _pre_load(_, data: Any, **__) -> dict[str, Any]:
        return _validate(resource_type, data, _response_context(context_provider))

    def _pre_dump(_, data: Any, **__) -> dict[str, Any]:
        return _transform_resource_data_for_dumping(
            resource_type, _validate(resource_type, data, _response_context(context_provider))
        )

    return _create_schema(
        resource_type,
        f"{resource_type.name}ResponseSchema",
        {
            "_pre_load": marshmallow.pre_load(_pre_load),
            "_pre_dump": marshmallow.pre_dump(_pre_dump),
        },
    )


def create_list_response_schema(
    resource_types: Iterable[ResourceType],
    context_provider: Optional[ResponseContextProvider] = None,
) -> type[marshmallow.Schema]:
    """
    Creates marshmallow schema for `ListResponse` messages, which `Resources` are dumped
    with the response schema of their resource types, recognized by the `schemas` attribute.
    """
    schemas_by_uri = {
        str(resource_type.schema.id).lower(): create_response_schema(
            resource_type, context_provider
        )
        for resource_type in resource_types
    }

    def _dump_resource(resource: Any) -> Any:
        schemas = Document(resource).get("schemas") or []
        for uri in schemas:
            schema_cls = schemas_by_uri.get(str(uri).lower())
            if schema_cls is not None:
                return schema_cls().dump(resource)
        return {}

    def _pre_dump(_, data: Any, **__) -> dict[str, Any]:
        data = Document(data).to_dict()
        data["Resources"] = [_dump_resource(item) for item in data.get("Resources", [])]
        return data

    class Meta:
        unknown = marshmallow.EXCLUDE

    _ensure_initialized()
    return type(
        "ListResponseSchema",
        (marshmallow.Schema,),
        {
            "schemas": marshmallow.fields.List(marshmallow.fields.String()),
            "totalResults": marshmallow.fields.Integer(),
            "startIndex": marshmallow.fields.Integer(),
            "itemsPerPage": marshmallow.fields.Integer(),
            "Resources": marshmallow.fields.List(marshmallow.fields.Raw()),
            "_pre_dump": marshmallow.pre_dump(_pre_dump),
            "Meta": Meta,
        },
    )
