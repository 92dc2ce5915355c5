from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Callable, Iterable, Optional, Union

import structlog

from scimcore.data.schemas import ResourceType, ResourceTypeFeatures, Schema
from scimcore.error import InvalidConfigError, ValidationIssues
from scimcore.identifiers import SchemaUri

logger = structlog.get_logger()

_Validator = Callable[[Any], ValidationIssues]


class Registry:
    """
    Schemas and resource types known to the service provider. Filled once, at startup, and
    only read afterwards, so it can be shared between threads handling requests.

    Examples:
        >>> registry = Registry()
        >>> user = registry.register_resource_type(
        >>>     USER_RESOURCE_TYPE, USER_SCHEMA, ENTERPRISE_USER_SCHEMA
        >>> )
    """

    def __init__(self) -> None:
        self._schemas: dict[SchemaUri, Schema] = {}
        self._resource_types: dict[str, ResourceType] = {}
        self._resource_types_by_endpoint: dict[str, ResourceType] = {}

    @property
    def schemas(self) -> Mapping[SchemaUri, Schema]:
        return MappingProxyType(self._schemas)

    @property
    def resource_types(self) -> Mapping[str, ResourceType]:
        return MappingProxyType(self._resource_types)

    def register_resource_type(
        self,
        resource_type_doc: Mapping[str, Any],
        schema_doc: Mapping[str, Any],
        *extension_docs: Mapping[str, Any],
        features: Optional[ResourceTypeFeatures] = None,
        validators: Optional[Mapping[str, Union[_Validator, Iterable[_Validator]]]] = None,
    ) -> ResourceType:
        """
        Registers resource type, described by RFC-7643 `ResourceType` representation, its
        primary schema and the schema extensions it refers to. Schemas registered before are
        reused, so the same extension can be shared by many resource types.

        Args:
            resource_type_doc: The resource type representation.
            schema_doc: The primary schema representation.
            extension_docs: Representations of the schema extensions.
            features: Feature flags of the resource type.
            validators: Custom validators, by full attribute names, e.g.
                `{"urn:ietf:params:scim:schemas:core:2.0:User:userName": validate_user_name}`.

        Raises:
            InvalidConfigError: If the resource type or schemas are inconsistent with themselves
                or with already registered ones.
        """
        name = resource_type_doc.get("name") or resource_type_doc.get("id")
        endpoint = resource_type_doc.get("endpoint")
        if not name or not isinstance(name, str):
            raise InvalidConfigError("resource type must have a name")
        if not endpoint or not isinstance(endpoint, str):
            raise InvalidConfigError(f"resource type {name!r} must have an endpoint")
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        if name.lower() in self._resource_types:
            raise InvalidConfigError(f"resource type {name!r} already registered")
        if endpoint.lower() in self._resource_types_by_endpoint:
            raise InvalidConfigError(f"endpoint {endpoint!r} already registered")

        schema = self._get_or_create_schema(schema_doc, extension=False)
        if resource_type_doc.get("schema") and schema.id != resource_type_doc["schema"]:
            raise InvalidConfigError(
                f"resource type {name!r} refers to schema {resource_type_doc['schema']!r}, "
                f"but {schema.id!r} was provided"
            )

        extension_docs_by_uri = {}
        for doc in extension_docs:
            try:
                extension_docs_by_uri[SchemaUri(doc.get("id", ""))] = doc
            except ValueError:
                raise InvalidConfigError(f"bad schema extension URI {doc.get('id')!r}")

        extensions: list[tuple[Schema, bool]] = []
        for item in resource_type_doc.get("schemaExtensions", []):
            try:
                uri = SchemaUri(item["schema"])
            except (KeyError, TypeError, ValueError):
                raise InvalidConfigError(f"bad schema extension {item!r} in {name!r}")
            if uri in extension_docs_by_uri:
                extension = self._get_or_create_schema(extension_docs_by_uri.pop(uri), True)
            elif uri in self._schemas:
                extension = self._schemas[uri]
            else:
                raise InvalidConfigError(f"unknown schema extension {uri!r} in {name!r}")
            extensions.append((extension, bool(item.get("required", False))))
        if extension_docs_by_uri:
            raise InvalidConfigError(
                f"schema extensions {list(extension_docs_by_uri)} are not used by {name!r}"
            )

        resource_type = ResourceType(
            name=name,
            endpoint=endpoint,
            schema=schema,
            extensions=extensions,
            description=resource_type_doc.get("description", ""),
            features=features,
        )
        for attr_name, attr_validators in (validators or {}).items():
            attr = resource_type.attrs.get(attr_name)
            if attr is None:
                raise InvalidConfigError(f"can not attach validator to unknown {attr_name!r}")
            if callable(attr_validators):
                attr_validators = [attr_validators]
            for validator in attr_validators:
                attr.add_validator(validator)

        for item in [schema, *(extension for extension, _ in extensions)]:
            self._schemas[item.id] = item
        self._resource_types[name.lower()] = resource_type
        self._resource_types_by_endpoint[endpoint.lower()] = resource_type
        logger.info(
            "resource_type_registered",
            resource_type=name,
            endpoint=endpoint,
            schemas=[str(uri) for uri in resource_type.schemas],
        )
        return resource_type

    def _get_or_create_schema(self, doc: Mapping[str, Any], extension: bool) -> Schema:
        if not isinstance(doc, Mapping):
            raise InvalidConfigError("schema document must be an object")
        try:
            uri = SchemaUri(doc.get("id", ""))
        except ValueError:
            raise InvalidConfigError(f"bad schema URI {doc.get('id')!r}")
        existing = self._schemas.get(uri)
        if existing is None:
            return Schema.from_dict(doc, extension=extension)
        if existing.name != (doc.get("name") or ""):
            raise InvalidConfigError(
                f"schema {uri!r} already registered with name {existing.name!r}"
            )
        if existing.extension != extension:
            raise InvalidConfigError(
                f"schema {uri!r} can not be used both as primary schema and extension"
            )
        return existing

    def get_resource_type_by_name(self, name: str) -> Optional[ResourceType]:
        return self._resource_types.get(name.lower())

    def get_resource_type_by_endpoint(self, endpoint: str) -> Optional[ResourceType]:
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return self._resource_types_by_endpoint.get(endpoint.lower())

    def get_schema_by_uri(self, uri: str) -> Optional[Schema]:
        try:
            return self._schemas.get(SchemaUri(uri))
        except ValueError:
            return None
