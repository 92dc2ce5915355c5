from typing import TYPE_CHECKING, Optional

from scimcore.data.attrs import Attribute, Complex
from scimcore.data.filter import Filter
from scimcore.data.operator import ValuePath
from scimcore.error import InvalidFilterError, InvalidPathError
from scimcore.identifiers import AttrRepFactory, BoundedAttrRep

if TYPE_CHECKING:
    from scimcore.data.schemas import ResourceType


class PatchPath:
    """
    Target of PATCH operation, as specified in RFC-7644, section 3.5.2. Possible forms:

        - `userName`, `name.givenName`, `urn:...:enterprise:2.0:User:manager.value`,
        - `emails[type eq "work"]`, which targets the matching items,
        - `emails[type eq "work"].value`, which targets the sub-attribute of the matching items.

    Args:
        attr_rep: Bounded representation of the attribute the path refers to. If the path
            contains a value filter, it is the top-level (complex) attribute.
        attr: The attribute `attr_rep` refers to.
        value_path: The value filter, if any.
        expression: The original path expression.
        parent_attr: The complex attribute, if the path refers to its sub-attribute.
    """

    def __init__(
        self,
        attr_rep: BoundedAttrRep,
        attr: Attribute,
        value_path: Optional[ValuePath] = None,
        expression: str = "",
        parent_attr: Optional[Complex] = None,
    ):
        if value_path is not None and not isinstance(attr, Complex):
            raise ValueError("value filter can be used with complex attributes only")
        self._attr_rep = attr_rep
        self._attr = attr
        self._value_path = value_path
        self._expression = expression or str(attr_rep)
        if parent_attr is None and value_path is not None and value_path.sub_attr_name:
            parent_attr = attr  # type: ignore[assignment]
        self._parent_attr = parent_attr

    @classmethod
    def parse(cls, path: str, resource_type: "ResourceType") -> "PatchPath":
        """
        Parses the path and resolves it against the resource type.

        Raises:
            InvalidPathError: If the path is malformed or refers to unknown attribute.
        """
        if not isinstance(path, str) or not path.strip():
            raise InvalidPathError(f"bad path {path!r}")
        path = path.strip()
        if "[" in path:
            try:
                filter_ = Filter.parse(path, resource_type, allow_sub_attr=True)
            except InvalidFilterError as exc:
                raise InvalidPathError(f"bad path {path!r}: {exc.detail}")
            if not isinstance(filter_.operator, ValuePath):
                raise InvalidPathError(f"bad path {path!r}")
            attr = resource_type.get_attr(filter_.operator.attr_rep)
            return cls(attr.rep, attr, filter_.operator, path)  # type: ignore[union-attr]

        try:
            attr_rep = AttrRepFactory.deserialize(path)
        except ValueError:
            raise InvalidPathError(f"bad path {path!r}")
        attr = resource_type.get_attr(attr_rep)
        if attr is None:
            raise InvalidPathError(f"unknown attribute {path!r}")
        parent_attr = None
        if attr.rep.is_sub_attr:
            parent_attr = resource_type.get_attr(attr.rep.parent)
        return cls(attr.rep, attr, None, path, parent_attr)  # type: ignore[arg-type]

    @property
    def attr_rep(self) -> BoundedAttrRep:
        return self._attr_rep

    @property
    def attr(self) -> Attribute:
        return self._attr

    @property
    def value_path(self) -> Optional[ValuePath]:
        return self._value_path

    @property
    def has_filter(self) -> bool:
        return self._value_path is not None

    @property
    def sub_attr_name(self) -> Optional[str]:
        """Name of the sub-attribute of the items matching the value filter."""
        return self._value_path.sub_attr_name if self._value_path else None

    @property
    def target_attr(self) -> Attribute:
        """The attribute the operation value is set to or removed from."""
        if self._value_path is not None and self._value_path.sub_attr_name:
            return self._attr.attrs.get(self._value_path.sub_attr_name)  # type: ignore
        return self._attr

    @property
    def parent_attr(self) -> Optional[Attribute]:
        """The complex attribute, if the path refers to its sub-attribute."""
        return self._parent_attr

    def __str__(self) -> str:
        return self._expression

    def __repr__(self) -> str:
        return f"PatchPath({self._expression})"
