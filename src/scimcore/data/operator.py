import abc
import operator
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Iterator, Optional, Union

from scimcore.data.attrs import Attribute, Complex, ScimType
from scimcore.data.document import Document, Missing
from scimcore.identifiers import AttrRep

if TYPE_CHECKING:
    from scimcore.data.schemas import ResourceType

_Context = Union["ResourceType", Complex]


def resolve_attr(attr_rep: AttrRep, context: _Context) -> Optional[Attribute]:
    """Resolves attribute representation against the resource type or complex attribute."""
    return context.attrs.get(attr_rep)


def _get_value(value: Optional[Mapping], attr: Attribute, context: _Context) -> Any:
    if not isinstance(value, Mapping):
        return Missing
    if not isinstance(value, Document):
        value = Document(value)
    key = attr.name if isinstance(context, Complex) else attr.rep
    return value.get(key, Missing)


def _is_empty(value: Any) -> bool:
    if value is Missing or value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, Mapping)):
        items = value.values() if isinstance(value, Mapping) else value
        return all(_is_empty(item) for item in items)
    return False


class Operator(abc.ABC):
    """
    Base class for filter nodes. Nodes own their children; none of them keeps a reference
    to its parent, and the evaluation context is always passed explicitly.
    """

    @abc.abstractmethod
    def match(self, value: Optional[Mapping], context: _Context) -> bool:
        """
        Tests a given `value` against the operator and returns `True`
        if it matches, `False` otherwise.

        Args:
            value: The resource, or the item of complex attribute, to test.
            context: Resource type, or `Complex` attribute, that describes the value.
        """

    @abc.abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Converts the node (and its children) to dictionary."""

    @abc.abstractmethod
    def __str__(self) -> str:
        """Serializes the node back to filter expression."""

    def walk(self) -> Iterator["Operator"]:
        yield self

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Operator) and self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self})"


class LogicalOperator(Operator, abc.ABC):
    op: str

    def __init__(self, *sub_operators: Operator):
        self._sub_operators = list(sub_operators)

    @property
    def sub_operators(self) -> list[Operator]:
        return self._sub_operators

    def walk(self) -> Iterator[Operator]:
        yield self
        for sub_operator in self._sub_operators:
            yield from sub_operator.walk()

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "sub_ops": [item.to_dict() for item in self._sub_operators]}

    def __str__(self) -> str:
        parts = []
        for sub_operator in self._sub_operators:
            if isinstance(sub_operator, LogicalOperator) and not isinstance(sub_operator, Not):
                parts.append(f"({sub_operator})")
            else:
                parts.append(str(sub_operator))
        return f" {self.op} ".join(parts)


class And(LogicalOperator):
    """Represents `and` SCIM operator. Matches if all sub-operators match."""

    op = "and"

    def match(self, value: Optional[Mapping], context: _Context) -> bool:
        return all(sub_operator.match(value, context) for sub_operator in self._sub_operators)


class Or(LogicalOperator):
    """Represents `or` SCIM operator. Matches if any of sub-operators match."""

    op = "or"

    def match(self, value: Optional[Mapping], context: _Context) -> bool:
        return any(sub_operator.match(value, context) for sub_operator in self._sub_operators)


class Not(LogicalOperator):
    """Represents `not` SCIM operator. Matches if the sub-operator does not match."""

    op = "not"

    def __init__(self, sub_operator: Operator):
        super().__init__(sub_operator)

    def match(self, value: Optional[Mapping], context: _Context) -> bool:
        return not self._sub_operators[0].match(value, context)

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "sub_op": self._sub_operators[0].to_dict()}

    def __str__(self) -> str:
        return f"not ({self._sub_operators[0]})"


class AttributeOperator(Operator, abc.ABC):
    """
    Base class for all operators that involve attributes directly. Every subclass which is not
    an abstract must specify `op` and `supported_scim_types` class attributes.
    """

    op: str
    supported_scim_types: frozenset[ScimType]

    def __init__(self, attr_rep: AttrRep):
        self._attr_rep = attr_rep

    @property
    def attr_rep(self) -> AttrRep:
        """The representation of an attribute which value should be matched."""
        return self._attr_rep

    @classmethod
    def supports(cls, attr: Attribute) -> bool:
        return attr.scim_type() in cls.supported_scim_types


class Present(AttributeOperator):
    """Represents `pr` SCIM operator. Matches if the attribute has non-empty value."""

    op = "pr"
    supported_scim_types = frozenset(ScimType) - {ScimType.ANY}

    def match(self, value: Optional[Mapping], context: _Context) -> bool:
        attr = resolve_attr(self._attr_rep, context)
        if attr is None:
            return False
        return not _is_empty(_get_value(value, attr, context))

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "attr": str(self._attr_rep)}

    def __str__(self) -> str:
        return f"{self._attr_rep} pr"


class BinaryAttributeOperator(AttributeOperator, abc.ABC):
    """
    Base class for comparison operators. The attribute value (left operand) and the
    operator's value (right operand) are compared by their keys (see `Attribute.compare_key`),
    so strings honour case-exactness, date-times are compared as epoch milliseconds, and
    numbers as `decimal.Decimal`.
    """

    def __init__(self, attr_rep: AttrRep, value: Any):
        super().__init__(attr_rep=attr_rep)
        self._value = value

    @property
    def value(self) -> Any:
        return self._value

    @staticmethod
    @abc.abstractmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        """Implements operator's logic for matching the provided value."""

    @staticmethod
    def comparison_attr(attr: Attribute) -> Optional[Attribute]:
        """
        Returns the attribute which values are compared. For complex attributes, it is
        their `value` sub-attribute.
        """
        if isinstance(attr, Complex):
            return attr.attrs.get("value")
        return attr

    def accepts(self, attr: Attribute) -> bool:
        """Tells whether the operator and its value are compatible with the attribute."""
        if not self.supports(attr):
            return False
        compared = self.comparison_attr(attr)
        return compared is not None and compared.accepts_literal(self._value)

    def match(self, value: Optional[Mapping], context: _Context) -> bool:
        """
        Matches if the attribute value, or any of its items for multi-valued attributes,
        satisfies the operator. Missing attribute never matches.
        """
        attr = resolve_attr(self._attr_rep, context)
        if attr is None or not self.supports(attr):
            return False
        attr_value = _get_value(value, attr, context)
        if attr_value is Missing or attr_value is None:
            return False

        compared = self.comparison_attr(attr)
        if compared is None:
            return False
        if isinstance(attr, Complex):
            items = attr_value if isinstance(attr_value, list) else [attr_value]
            attr_value = [
                item.get("value") for item in items if isinstance(item, Mapping)
            ]
        op_key = compared.compare_key(self._value)
        if op_key is None:
            return False

        items = attr_value if isinstance(attr_value, list) else [attr_value]
        for item in items:
            item_key = compared.compare_key(item)
            if item_key is None:
                continue
            try:
                if self.operator(item_key, op_key):
                    return True
            except TypeError:
                continue
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "attr": str(self._attr_rep), "value": self._value}

    def __str__(self) -> str:
        return f"{self._attr_rep} {self.op} {_serialize_value(self._value)}"


def _serialize_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return str(value)


_ALL_COMPARABLE = frozenset(
    {
        ScimType.STRING,
        ScimType.DECIMAL,
        ScimType.DATETIME,
        ScimType.REFERENCE,
        ScimType.BOOLEAN,
        ScimType.BINARY,
        ScimType.INTEGER,
        ScimType.COMPLEX,
    }
)
_TEXT = frozenset({ScimType.STRING, ScimType.REFERENCE, ScimType.BINARY, ScimType.COMPLEX})
_ORDERED = frozenset(
    {
        ScimType.STRING,
        ScimType.DATETIME,
        ScimType.INTEGER,
        ScimType.DECIMAL,
        ScimType.COMPLEX,
    }
)


class Equal(BinaryAttributeOperator):
    op = "eq"
    supported_scim_types = _ALL_COMPARABLE

    @staticmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        return operator.eq(attr_value, op_value)


class NotEqual(BinaryAttributeOperator):
    op = "ne"
    supported_scim_types = _ALL_COMPARABLE

    @staticmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        return operator.ne(attr_value, op_value)


class Contains(BinaryAttributeOperator):
    op = "co"
    supported_scim_types = _TEXT

    @staticmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        return operator.contains(attr_value, op_value)


class StartsWith(BinaryAttributeOperator):
    op = "sw"
    supported_scim_types = _TEXT

    @staticmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        return attr_value.startswith(op_value)


class EndsWith(BinaryAttributeOperator):
    op = "ew"
    supported_scim_types = _TEXT

    @staticmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        return attr_value.endswith(op_value)


class GreaterThan(BinaryAttributeOperator):
    op = "gt"
    supported_scim_types = _ORDERED

    @staticmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        return operator.gt(attr_value, op_value)


class GreaterThanOrEqual(BinaryAttributeOperator):
    op = "ge"
    supported_scim_types = _ORDERED

    @staticmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        return operator.ge(attr_value, op_value)


class LesserThan(BinaryAttributeOperator):
    op = "lt"
    supported_scim_types = _ORDERED

    @staticmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        return operator.lt(attr_value, op_value)


class LesserThanOrEqual(BinaryAttributeOperator):
    op = "le"
    supported_scim_types = _ORDERED

    @staticmethod
    def operator(attr_value: Any, op_value: Any) -> bool:
        return operator.le(attr_value, op_value)


class ValuePath(Operator):
    """
    Value path (`attr[filter]`), matching if any item of the complex attribute matches the
    inner filter. The `sub_attr_name` is set when the path addresses a single sub-attribute
    of the matching items, e.g. `emails[type eq "work"].value` in PATCH paths.
    """

    op = "complex"

    def __init__(
        self,
        attr_rep: AttrRep,
        sub_operator: Operator,
        sub_attr_name: Optional[str] = None,
    ):
        self._attr_rep = attr_rep
        self._sub_operator = sub_operator
        self._sub_attr_name = sub_attr_name

    @property
    def attr_rep(self) -> AttrRep:
        return self._attr_rep

    @property
    def sub_operator(self) -> Operator:
        return self._sub_operator

    @property
    def sub_attr_name(self) -> Optional[str]:
        return self._sub_attr_name

    def walk(self) -> Iterator[Operator]:
        yield self
        yield from self._sub_operator.walk()

    def match(self, value: Optional[Mapping], context: _Context) -> bool:
        attr = resolve_attr(self._attr_rep, context)
        if not isinstance(attr, Complex):
            return False
        attr_value = _get_value(value, attr, context)
        if attr_value is Missing or attr_value is None:
            return False
        items = attr_value if isinstance(attr_value, list) else [attr_value]
        return any(self.match_item(item, attr) for item in items)

    def match_item(self, item: Any, attr: Complex) -> bool:
        """Tests single item of the complex attribute against the inner filter."""
        return isinstance(item, Mapping) and self._sub_operator.match(item, attr)

    def to_dict(self) -> dict[str, Any]:
        output = {
            "op": self.op,
            "attr": str(self._attr_rep),
            "sub_op": self._sub_operator.to_dict(),
        }
        if self._sub_attr_name:
            output["sub_attr"] = self._sub_attr_name
        return output

    def __str__(self) -> str:
        output = f"{self._attr_rep}[{self._sub_operator}]"
        if self._sub_attr_name:
            output += f".{self._sub_attr_name}"
        return output


BINARY_OPERATORS: dict[str, type[BinaryAttributeOperator]] = {
    operator_cls.op: operator_cls
    for operator_cls in (
        Equal,
        NotEqual,
        Contains,
        StartsWith,
        EndsWith,
        GreaterThan,
        GreaterThanOrEqual,
        LesserThan,
        LesserThanOrEqual,
    )
}
UNARY_OPERATORS: dict[str, type[AttributeOperator]] = {Present.op: Present}
