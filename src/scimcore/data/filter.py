import decimal
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Union

from scimcore.data.attrs import Attribute, Complex
from scimcore.data.operator import (
    BINARY_OPERATORS,
    UNARY_OPERATORS,
    And,
    AttributeOperator,
    BinaryAttributeOperator,
    Equal,
    Not,
    Operator,
    Or,
    ValuePath,
    resolve_attr,
)
from scimcore.error import InvalidFilterError, ValidationError, ValidationIssues
from scimcore.identifiers import AttrRep, AttrRepFactory, BoundedAttrRep

if TYPE_CHECKING:
    from scimcore.data.schemas import ResourceType

_TOKEN = re.compile(
    r"\s*(?:(?P<punct>[()\[\]])|(?P<string>\"(?:[^\"\\]|\\.)*\"?)|(?P<word>[^\s()\[\]\"]+))"
)
_NUMBER = re.compile(r"-?(0|[1-9]\d*)(\.\d+)?([eE][+-]?\d+)?")


@dataclass
class _Token:
    kind: str
    text: str
    start: int
    end: int


def _tokenize(expression: str) -> list[_Token]:
    tokens = []
    pos = 0
    while pos < len(expression):
        if expression[pos:].strip() == "":
            break
        match = _TOKEN.match(expression, pos)
        if match is None:
            raise _error(ValidationError.unknown_expression(expression[pos:]), expression[pos:])
        kind = match.lastgroup or "word"
        text = match.group(kind)
        tokens.append(_Token(kind, text, match.start(kind), match.end(kind)))
        pos = match.end()
    return tokens


def _error(issue: ValidationError, expression: str) -> InvalidFilterError:
    exc = InvalidFilterError(issue.message, expression=expression)
    exc.validation_error = issue  # type: ignore[attr-defined]
    return exc


class _Parser:
    """
    Recursive-descent parser of filter expressions (RFC-7644, section 3.4.2.2).

        filter    = or_expr
        or_expr   = and_expr *("or" and_expr)
        and_expr  = unary *("and" unary)
        unary     = "not" unary / "(" or_expr ")" / attr_expr / value_path
        attr_expr = attrPath "pr" / attrPath compareOp compValue
        value_path = attrPath "[" or_expr "]" ["." subAttr]
    """

    def __init__(self, expression: str, allow_sub_attr: bool = False):
        self._expression = expression
        self._tokens = _tokenize(expression)
        self._pos = 0
        self._in_value_path = False
        self._allow_sub_attr = allow_sub_attr

    def parse(self) -> Operator:
        if not self._tokens:
            raise _error(ValidationError.empty_filter_expression(), self._expression)
        operator = self._or()
        if self._pos < len(self._tokens):
            token = self._tokens[self._pos]
            if token.kind == "punct" and token.text in ")]":
                raise _error(ValidationError.bracket_not_opened_or_closed(), self._rest(token))
            raise _error(ValidationError.unknown_expression(self._rest(token)), self._rest(token))
        return operator

    def _rest(self, token: _Token) -> str:
        return self._expression[token.start :]

    def _peek(self) -> Optional[_Token]:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _next(self) -> Optional[_Token]:
        token = self._peek()
        if token is not None:
            self._pos += 1
        return token

    def _keyword(self, keyword: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == "word" and token.text.lower() == keyword:
            self._pos += 1
            return True
        return False

    def _or(self) -> Operator:
        operators = [self._and()]
        while self._keyword("or"):
            operators.append(self._operand("or"))
        return operators[0] if len(operators) == 1 else Or(*operators)

    def _and(self) -> Operator:
        operators = [self._unary()]
        while self._keyword("and"):
            operators.append(self._operand("and", and_level=True))
        return operators[0] if len(operators) == 1 else And(*operators)

    def _operand(self, operator: str, and_level: bool = False) -> Operator:
        token = self._peek()
        if token is None or (token.kind == "punct" and token.text in ")]"):
            previous = self._tokens[self._pos - 1]
            raise _error(
                ValidationError.missing_operand_for_operator(operator, self._expression),
                self._expression[previous.start :],
            )
        return self._unary() if and_level else self._and()

    def _unary(self) -> Operator:
        token = self._next()
        if token is None:
            raise _error(ValidationError.empty_filter_expression(), self._expression)
        if token.kind == "word" and token.text.lower() == "not":
            if self._peek() is None:
                raise _error(
                    ValidationError.missing_operand_for_operator("not", self._expression),
                    self._rest(token),
                )
            return Not(self._unary())
        if token.text == "(":
            if self._peek() is not None and self._peek().text == ")":  # type: ignore[union-attr]
                raise _error(ValidationError.empty_filter_expression(), self._rest(token))
            operator = self._or()
            closing = self._next()
            if closing is None or closing.text != ")":
                raise _error(ValidationError.bracket_not_opened_or_closed(), self._rest(token))
            return operator
        if token.kind != "word":
            if token.kind == "punct" and token.text in ")]":
                raise _error(ValidationError.bracket_not_opened_or_closed(), self._rest(token))
            raise _error(ValidationError.unknown_expression(self._rest(token)), self._rest(token))
        return self._attr_expression(token)

    def _attr_rep(self, token: _Token) -> AttrRep:
        try:
            attr_rep = AttrRepFactory.deserialize(token.text)
        except ValueError:
            raise _error(ValidationError.bad_attribute_name(token.text), token.text)
        if self._in_value_path and (
            attr_rep.is_sub_attr or isinstance(attr_rep, BoundedAttrRep)
        ):
            raise _error(
                ValidationError.inner_complex_attribute_or_square_bracket(), token.text
            )
        return attr_rep

    def _attr_expression(self, token: _Token) -> Operator:
        attr_rep = self._attr_rep(token)
        following = self._peek()
        if following is not None and following.text == "[":
            return self._value_path(token, attr_rep)

        op_token = self._next()
        if op_token is None or op_token.kind != "word":
            raise _error(
                ValidationError.unknown_expression(self._rest(token)), self._rest(token)
            )
        op = op_token.text.lower()
        if op in UNARY_OPERATORS:
            return UNARY_OPERATORS[op](attr_rep)
        if op not in BINARY_OPERATORS:
            raise _error(
                ValidationError.unknown_operator(op_token.text, self._rest(token)),
                self._rest(token),
            )
        value_token = self._next()
        if value_token is None or value_token.kind == "punct":
            raise _error(
                ValidationError.missing_operand_for_operator(op, self._rest(token)),
                self._rest(token),
            )
        return BINARY_OPERATORS[op](attr_rep, self._literal(value_token))

    def _literal(self, token: _Token) -> Any:
        if token.kind == "string":
            try:
                return json.loads(token.text)
            except ValueError:
                raise _error(ValidationError.bad_operand(token.text), token.text)
        lowered = token.text.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        if lowered == "null":
            return None
        if _NUMBER.fullmatch(token.text):
            if re.fullmatch(r"-?\d+", token.text):
                return int(token.text)
            return decimal.Decimal(token.text)
        raise _error(ValidationError.bad_operand(token.text), token.text)

    def _value_path(self, token: _Token, attr_rep: AttrRep) -> ValuePath:
        if self._in_value_path:
            raise _error(ValidationError.inner_complex_attribute_or_square_bracket(), token.text)
        if attr_rep.is_sub_attr:
            raise _error(
                ValidationError.complex_sub_attribute(attr_rep.attr, attr_rep.sub_attr),
                self._rest(token),
            )
        self._next()  # "["
        following = self._peek()
        if following is not None and following.text == "]":
            raise _error(
                ValidationError.empty_complex_attribute_expression(str(attr_rep)),
                self._rest(token),
            )
        self._in_value_path = True
        try:
            sub_operator = self._or()
        finally:
            self._in_value_path = False
        closing = self._next()
        if closing is None or closing.text != "]":
            raise _error(
                ValidationError.complex_attribute_bracket_not_opened_or_closed(), self._rest(token)
            )

        sub_attr_name = None
        following = self._peek()
        if (
            following is not None
            and following.kind == "word"
            and following.text.startswith(".")
            and following.start == closing.end
        ):
            if not self._allow_sub_attr:
                raise _error(
                    ValidationError.unknown_expression(self._rest(following)),
                    self._rest(following),
                )
            self._next()
            sub_attr_name = following.text[1:]
            try:
                AttrRep(attr_rep.attr, sub_attr_name)
            except ValueError:
                raise _error(ValidationError.bad_attribute_name(sub_attr_name), following.text)
        return ValuePath(attr_rep, sub_operator, sub_attr_name)


class Filter:
    """
    Parsed filter expression. Calling the filter tests the provided resource against it.

    Examples:
        >>> filter_ = Filter.parse('emails[type eq "work" and value co "@example.com"]', user)
        >>> filter_({"emails": [{"type": "work", "value": "bjensen@example.com"}]})
        True
    """

    def __init__(self, operator: Operator, resource_type: Optional["ResourceType"] = None):
        self._operator = operator
        self._resource_type = resource_type

    @property
    def operator(self) -> Operator:
        return self._operator

    @property
    def resource_type(self) -> Optional["ResourceType"]:
        return self._resource_type

    @property
    def attr_reps(self) -> list[AttrRep]:
        """Top-level representations of the attributes the filter refers to."""
        return _top_level_attr_reps(self._operator)

    @classmethod
    def validate(cls, expression: str) -> ValidationIssues:
        """Validates the syntax of the filter expression."""
        issues = ValidationIssues()
        try:
            _Parser(expression).parse()
        except InvalidFilterError as exc:
            issues.add_error(issue=exc.validation_error, proceed=False)  # type: ignore
        return issues

    @classmethod
    def deserialize(cls, expression: str, allow_sub_attr: bool = False) -> "Filter":
        """
        Parses the expression, checking its syntax only. Attribute names are not resolved.

        Raises:
            InvalidFilterError: If the expression is malformed.
        """
        if not isinstance(expression, str):
            raise InvalidFilterError(expression=str(expression))
        return cls(_Parser(expression, allow_sub_attr=allow_sub_attr).parse())

    @classmethod
    def parse(
        cls,
        expression: str,
        resource_type: "ResourceType",
        allow_sub_attr: bool = False,
    ) -> "Filter":
        """
        Parses the expression and resolves its attributes against `resource_type`. Operators
        must be supported by the attributes' types, and the literals compatible with them.

        Raises:
            InvalidFilterError: If the expression is malformed, refers to unknown attributes,
                or compares attributes with incompatible values.
        """
        filter_ = cls.deserialize(expression, allow_sub_attr=allow_sub_attr)
        _check(filter_.operator, resource_type)
        filter_._resource_type = resource_type
        return filter_

    def __call__(
        self,
        value: Mapping[str, Any],
        context: Optional[Union["ResourceType", Complex]] = None,
    ) -> bool:
        context = context or self._resource_type
        if context is None:
            raise ValueError("filter not bound to any resource type, context must be provided")
        return self._operator.match(value, context)

    def equality_terms(self) -> Optional[dict[str, Any]]:
        """
        Returns attribute-value pairs if the filter is a pure equality conjunction,
        e.g. `{"type": "work"}` for `type eq "work"`, `None` otherwise.
        """
        return equality_terms(self._operator)

    def to_dict(self) -> dict[str, Any]:
        return self._operator.to_dict()

    def serialize(self) -> str:
        return str(self._operator)

    def __str__(self) -> str:
        return self.serialize()

    def __repr__(self) -> str:
        return f"Filter({self.serialize()!r})"

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Filter) and self._operator == other._operator


def equality_terms(operator: Operator) -> Optional[dict[str, Any]]:
    if isinstance(operator, Equal):
        return {str(operator.attr_rep): operator.value}
    if isinstance(operator, And):
        output: dict[str, Any] = {}
        for sub_operator in operator.sub_operators:
            terms = equality_terms(sub_operator)
            if terms is None:
                return None
            output.update(terms)
        return output
    return None


def _check(operator: Operator, context: Union["ResourceType", Complex]) -> None:
    if isinstance(operator, (And, Or, Not)):
        for sub_operator in operator.sub_operators:
            _check(sub_operator, context)
        return

    if isinstance(operator, ValuePath):
        attr = resolve_attr(operator.attr_rep, context)
        if not isinstance(attr, Complex):
            raise _error(ValidationError.unknown_expression(str(operator)), str(operator))
        _check(operator.sub_operator, attr)
        if operator.sub_attr_name and attr.attrs.get(operator.sub_attr_name) is None:
            raise _error(ValidationError.bad_attribute_name(operator.sub_attr_name), str(operator))
        return

    if isinstance(operator, AttributeOperator):
        attr: Optional[Attribute] = resolve_attr(operator.attr_rep, context)
        if attr is None:
            raise _error(
                ValidationError.bad_attribute_name(str(operator.attr_rep)), str(operator)
            )
        if isinstance(operator, BinaryAttributeOperator):
            if not operator.supports(attr):
                raise _error(
                    ValidationError.non_compatible_operand(operator.value, operator.op),
                    str(operator),
                )
            if not operator.accepts(attr):
                raise _error(ValidationError.bad_operand(operator.value), str(operator))
        elif not operator.supports(attr):
            raise _error(
                ValidationError.non_compatible_operand(None, operator.op), str(operator)
            )


def _top_level_attr_reps(operator: Operator) -> list[AttrRep]:
    if isinstance(operator, (AttributeOperator, ValuePath)):
        return [operator.attr_rep]
    output: list[AttrRep] = []
    if isinstance(operator, (And, Or, Not)):
        for sub_operator in operator.sub_operators:
            for attr_rep in _top_level_attr_reps(sub_operator):
                if attr_rep not in output:
                    output.append(attr_rep)
    return output
