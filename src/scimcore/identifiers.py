import re
from typing import Any, Optional, Union, cast

from scimcore.error import ValidationError, ValidationIssues

_ATTR_NAME = re.compile(r"([a-zA-Z][\w$-]*|\$ref)")
_URI_PREFIX = re.compile(r"(?:[\w.-]+:)*")
_ATTR_REP = re.compile(
    rf"({_URI_PREFIX.pattern})?({_ATTR_NAME.pattern}(\.([a-zA-Z][\w$-]*|\$ref))?)"
)


class AttrName(str):
    """
    Unbounded attribute name, conforming the RFC-7643 attribute name notation.
    Attribute names are case-insensitive.

    Raises:
        ValueError: If the provided value is not valid attribute name.
    """

    def __new__(cls, value: str) -> "AttrName":
        if not isinstance(value, AttrName) and not _ATTR_NAME.fullmatch(value):
            raise ValueError(f"{value!r} is not valid attr name")
        return cast(AttrName, str.__new__(cls, value))

    def __repr__(self):
        return f"AttrName({self})"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, str):
            return False
        return self.lower() == other.lower()

    def __ne__(self, other: Any) -> bool:
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self.lower())


class SchemaUri(str):
    """
    Schema URI. Schema URIs are case-insensitive.

    Raises:
        ValueError: If the provided value is not valid schema URI.
    """

    def __new__(cls, value: str) -> "SchemaUri":
        if not isinstance(value, SchemaUri) and (
            not value or not _URI_PREFIX.fullmatch(value + ":")
        ):
            raise ValueError(f"{value!r} is not a valid schema URI")
        return cast(SchemaUri, str.__new__(cls, value))

    def __repr__(self):
        return f"SchemaUri({self})"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, str):
            return False
        return self.lower() == other.lower()

    def __ne__(self, other: Any) -> bool:
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self.lower())


class AttrRep:
    """
    Representation of an unbounded attribute or sub-attribute (no schema association).
    """

    def __init__(self, attr: str, sub_attr: Optional[str] = None):
        attr = AttrName(attr)
        str_: str = attr
        if sub_attr is not None:
            sub_attr = AttrName(sub_attr)
            str_ += "." + sub_attr

        self._attr = attr
        self._sub_attr = sub_attr
        self._str = str_

    def __str__(self) -> str:
        return self._str

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self)})"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, AttrRep):
            return False
        return bool(self._attr == other._attr and self._sub_attr == other._sub_attr)

    def __hash__(self):
        return hash((self._attr, self._sub_attr))

    @property
    def attr(self) -> AttrName:
        return self._attr

    @property
    def sub_attr(self) -> AttrName:
        if self._sub_attr is None:
            raise AttributeError(f"{self!r} has no sub-attribute")
        return self._sub_attr

    @property
    def is_sub_attr(self) -> bool:
        return self._sub_attr is not None

    @property
    def parent(self) -> "AttrRep":
        """Representation of the top-level attribute."""
        return AttrRep(attr=self._attr)

    @property
    def location(self) -> tuple[str, ...]:
        if self._sub_attr:
            return self._attr, self._sub_attr
        return (self._attr,)


class BoundedAttrRep(AttrRep):
    """
    Representation of an attribute or sub-attribute bound to a schema. It is the key the
    document model and the validator use to address values, so no component needs to
    resolve bare names again. Attributes of extension schemas are kept in their own
    namespace in documents, which is what `extension` indicates.
    """

    def __init__(
        self,
        schema: str,
        attr: str,
        sub_attr: Optional[str] = None,
        extension: bool = False,
    ):
        super().__init__(attr, sub_attr)
        schema = SchemaUri(schema)
        self._str = f"{schema}:{self._str}"
        self._schema = schema
        self._extension = extension

    def __eq__(self, other: Any) -> bool:
        parent_equals = super().__eq__(other)
        if not isinstance(other, BoundedAttrRep):
            return parent_equals
        return parent_equals and self._schema == other._schema

    def __hash__(self):
        return hash((self._attr, self._schema, self._sub_attr))

    @property
    def schema(self) -> SchemaUri:
        return self._schema

    @property
    def extension(self) -> bool:
        return self._extension

    @property
    def parent(self) -> "BoundedAttrRep":
        return BoundedAttrRep(schema=self._schema, attr=self._attr, extension=self._extension)

    def child(self, sub_attr: str) -> "BoundedAttrRep":
        """Representation of `sub_attr` nested in this attribute."""
        return BoundedAttrRep(
            schema=self._schema, attr=self._attr, sub_attr=sub_attr, extension=self._extension
        )

    @property
    def location(self) -> tuple[str, ...]:
        return ((self._schema,) if self.extension else tuple()) + super().location


class AttrRepFactory:
    @classmethod
    def validate(cls, value: str) -> ValidationIssues:
        issues = ValidationIssues()
        if _ATTR_REP.fullmatch(value) is None:
            issues.add_error(
                issue=ValidationError.bad_attribute_name(value),
                proceed=False,
            )
        return issues

    @classmethod
    def deserialize(cls, value: str) -> Union[AttrRep, BoundedAttrRep]:
        """
        Deserializes attribute representation, e.g. `name.givenName` or
        `urn:ietf:params:scim:schemas:core:2.0:User:name.givenName`. The returned bounded
        representation is not resolved against any schema, so its `extension` flag is not set.

        Raises:
            ValueError: If the value is not valid attribute representation.
        """
        if isinstance(value, AttrName):
            return AttrRep(attr=value)

        match = _ATTR_REP.fullmatch(value)
        if match is None:
            raise ValueError(f"{value!r} is not valid attribute representation")

        schema, attr = match.group(1), match.group(2)
        schema = schema[:-1] if schema else ""
        sub_attr: Optional[str] = None
        if "." in attr:
            attr, sub_attr = attr.split(".", 1)
        if schema:
            return BoundedAttrRep(schema=schema, attr=attr, sub_attr=sub_attr)
        return AttrRep(attr=attr, sub_attr=sub_attr)
