from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from scimcore.data.attrs import (
    Attribute,
    AttributeMutability,
    AttributeReturn,
    AttributeUniqueness,
    BoundedAttrs,
    Complex,
    DateTime,
    Reference,
    String,
    attribute_from_dict,
)
from scimcore.error import InvalidConfigError
from scimcore.identifiers import BoundedAttrRep, SchemaUri

if TYPE_CHECKING:
    from scimcore.data.validator import SchemaValidator

SCHEMA_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Schema"
RESOURCE_TYPE_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:ResourceType"

OPERATIONS = frozenset({"create", "get", "list", "update", "delete", "patch"})


class Schema:
    """
    SCIM schema: identifier URI, name, description and the ordered, name-unique collection
    of top-level attributes. Attributes are bound to the schema when it is created, and the
    schema is not supposed to be changed afterwards.

    Args:
        schema: The schema URI.
        name: The schema name.
        attrs: Top-level attributes of the schema.
        description: The schema description.
        extension: Whether the schema is used as a schema extension. Data of extensions is
            kept in own namespace, e.g. `{"urn:...:enterprise:2.0:User": {"manager": ...}}`.
    """

    def __init__(
        self,
        schema: str,
        name: str,
        attrs: Iterable[Attribute] = (),
        description: str = "",
        extension: bool = False,
    ):
        try:
            self._schema = SchemaUri(schema)
        except (TypeError, ValueError):
            raise InvalidConfigError(f"bad schema URI {schema!r}")
        self._name = name
        self._description = description
        self._extension = extension
        attrs = list(attrs)
        self._attrs = BoundedAttrs(self._schema, attrs, extension=extension)
        for attr in attrs:
            attr.bind(BoundedAttrRep(schema=self._schema, attr=attr.name, extension=extension))

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any], extension: bool = False) -> "Schema":
        """
        Creates the schema from its RFC-7643 representation (section 7).

        Raises:
            InvalidConfigError: If the document or any of its attributes is malformed.
        """
        if not isinstance(doc, Mapping):
            raise InvalidConfigError("schema document must be an object")
        attrs = doc.get("attributes", [])
        if not isinstance(attrs, list):
            raise InvalidConfigError(f"'attributes' of schema {doc.get('id')!r} must be a list")
        return cls(
            schema=doc.get("id", ""),
            name=doc.get("name") or "",
            attrs=[attribute_from_dict(item) for item in attrs],
            description=doc.get("description", ""),
            extension=extension,
        )

    @property
    def id(self) -> SchemaUri:
        return self._schema

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def extension(self) -> bool:
        return self._extension

    @property
    def attrs(self) -> BoundedAttrs:
        return self._attrs

    def __repr__(self) -> str:
        return f"Schema({self._schema})"

    def to_dict(self) -> dict[str, Any]:
        """Returns the schema representation, as served by the `/Schemas` endpoint."""
        return {
            "schemas": [SCHEMA_SCHEMA],
            "id": str(self._schema),
            "name": self._name,
            "description": self._description,
            "attributes": [attr.to_dict() for _, attr in self._attrs],
            "meta": {"resourceType": "Schema", "location": f"/Schemas/{self._schema}"},
        }


@dataclass(frozen=True)
class ResourceTypeFeatures:
    """
    Feature flags of a resource type.

    `auto_filtering` and `auto_sorting` make the endpoint filter and sort the resources
    returned by the handler's `list_resources`. Disabled operations, or all operations if
    the type is `disabled`, are rejected with 501.
    """

    auto_filtering: bool = False
    auto_sorting: bool = False
    singleton: bool = False
    etag_enabled: bool = False
    disabled: bool = False
    disabled_operations: frozenset[str] = frozenset()

    def __post_init__(self):
        unknown = set(self.disabled_operations) - OPERATIONS
        if unknown:
            raise ValueError(f"unknown operations {sorted(unknown)}, expected {sorted(OPERATIONS)}")
        object.__setattr__(self, "disabled_operations", frozenset(self.disabled_operations))

    def is_enabled(self, operation: str) -> bool:
        return not self.disabled and operation not in self.disabled_operations


def _common_attributes() -> list[Attribute]:
    return [
        String(
            "id",
            description="Unique identifier for the SCIM resource as defined by the service "
            "provider.",
            required=True,
            case_exact=True,
            mutability=AttributeMutability.READ_ONLY,
            returned=AttributeReturn.ALWAYS,
            uniqueness=AttributeUniqueness.SERVER,
        ),
        String(
            "externalId",
            description="Identifier of the resource, defined by the provisioning client.",
            case_exact=True,
        ),
        Complex(
            "meta",
            description="Resource metadata.",
            mutability=AttributeMutability.READ_ONLY,
            sub_attributes=[
                String(
                    "resourceType",
                    case_exact=True,
                    mutability=AttributeMutability.READ_ONLY,
                ),
                DateTime("created", mutability=AttributeMutability.READ_ONLY),
                DateTime("lastModified", mutability=AttributeMutability.READ_ONLY),
                Reference(
                    "location",
                    reference_types=["uri"],
                    mutability=AttributeMutability.READ_ONLY,
                ),
                String(
                    "version",
                    case_exact=True,
                    mutability=AttributeMutability.READ_ONLY,
                ),
            ],
        ),
    ]


def schemas_attribute() -> Attribute:
    """The `schemas` attribute, required in every resource."""
    return Reference(
        "schemas",
        description="URIs of the schemas used to define the attributes in the resource.",
        reference_types=["uri"],
        required=True,
        multi_valued=True,
        returned=AttributeReturn.ALWAYS,
    )


class ResourceType:
    """
    SCIM resource category, e.g. `User` or `Group`. Besides the primary schema and extensions,
    it owns the `BoundedAttrs` of all attributes its resources can contain (including `id`,
    `externalId`, `meta`, and `schemas`), and the `SchemaValidator` bound to them.

    Examples:
        >>> resource_type.attrs.userName
        BoundedAttrRep(urn:ietf:params:scim:schemas:core:2.0:User:userName)
        >>> resource_type.attrs.get("emails.value")
        String(value)
    """

    def __init__(
        self,
        name: str,
        endpoint: str,
        schema: Schema,
        extensions: Optional[Iterable[tuple[Schema, bool]]] = None,
        description: str = "",
        features: Optional[ResourceTypeFeatures] = None,
    ):
        from scimcore.data.validator import SchemaValidator

        if schema.extension:
            raise InvalidConfigError(f"{schema!r} is an extension and can not be primary schema")
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        self._name = name
        self._endpoint = endpoint
        self._schema = schema
        self._description = description
        self._features = features or ResourceTypeFeatures()
        self._extensions: dict[SchemaUri, tuple[Schema, bool]] = {}

        declared = {attr_rep.attr for attr_rep, _ in schema.attrs}
        common = [
            attr
            for attr in [schemas_attribute(), *_common_attributes()]
            if attr.name not in declared
        ]
        for attr in common:
            attr.bind(BoundedAttrRep(schema=schema.id, attr=attr.name))
        self._attrs = BoundedAttrs(schema.id, [*common, *(attr for _, attr in schema.attrs)])

        for extension, required in extensions or []:
            if not extension.extension:
                raise InvalidConfigError(f"{extension!r} is not an extension schema")
            if extension.id == schema.id or extension.id in self._extensions:
                raise InvalidConfigError(f"{extension!r} is used more than once in {name!r}")
            self._extensions[extension.id] = (extension, required)
            self._attrs.extend(extension.attrs)
        self._validator = SchemaValidator(self)

    @property
    def name(self) -> str:
        return self._name

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def description(self) -> str:
        return self._description

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def extensions(self) -> dict[SchemaUri, tuple[Schema, bool]]:
        return dict(self._extensions)

    @property
    def features(self) -> ResourceTypeFeatures:
        return self._features

    @property
    def attrs(self) -> BoundedAttrs:
        return self._attrs

    @property
    def validator(self) -> "SchemaValidator":
        return self._validator

    @property
    def schemas(self) -> list[SchemaUri]:
        """URIs of the primary schema and all extensions."""
        return [self._schema.id, *self._extensions]

    def __repr__(self) -> str:
        return f"ResourceType({self._name})"

    def get_extension(self, uri: str) -> Optional[Schema]:
        try:
            entry = self._extensions.get(SchemaUri(uri))
        except ValueError:
            return None
        return entry[0] if entry else None

    def get_attr(self, attr_rep: Union[str, BoundedAttrRep]) -> Optional[Attribute]:
        return self._attrs.get(attr_rep)

    def top_level_attrs(self, schema: Optional[SchemaUri] = None) -> list[Attribute]:
        """Top-level attributes of the given schema (primary schema and common ones by default)."""
        if schema is None or schema == self._schema.id:
            return [attr for attr_rep, attr in self._attrs if attr_rep.schema == self._schema.id]
        extension = self.get_extension(schema)
        return [attr for _, attr in extension.attrs] if extension else []

    def location(self, resource_id: str) -> str:
        return f"{self._endpoint}/{resource_id}"

    def to_dict(self) -> dict[str, Any]:
        """Returns the resource type representation, as served by `/ResourceTypes`."""
        output: dict[str, Any] = {
            "schemas": [RESOURCE_TYPE_SCHEMA],
            "id": self._name,
            "name": self._name,
            "endpoint": self._endpoint,
            "description": self._description,
            "schema": str(self._schema.id),
        }
        if self._extensions:
            output["schemaExtensions"] = [
                {"schema": str(uri), "required": required}
                for uri, (_, required) in self._extensions.items()
            ]
        output["meta"] = {
            "resourceType": "ResourceType",
            "location": f"/ResourceTypes/{self._name}",
        }
        return output
