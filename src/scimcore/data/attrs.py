import abc
import base64
import binascii
import calendar
import decimal
import re
from collections import defaultdict
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import (
    Any,
    Callable,
    Collection,
    Iterable,
    Iterator,
    Optional,
    Union,
    final,
)
from urllib.parse import urlparse

import precis_i18n.profile
import structlog
from precis_i18n import get_profile

from scimcore.error import (
    InvalidConfigError,
    ValidationError,
    ValidationIssues,
    ValidationWarning,
)
from scimcore.identifiers import AttrName, AttrRep, AttrRepFactory, BoundedAttrRep, SchemaUri

logger = structlog.get_logger()


class ScimType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATETIME = "dateTime"
    REFERENCE = "reference"
    COMPLEX = "complex"
    BINARY = "binary"
    ANY = "any"

    def __str__(self) -> str:
        return self.value


class AttributeMutability(str, Enum):
    READ_WRITE = "readWrite"
    READ_ONLY = "readOnly"
    WRITE_ONLY = "writeOnly"
    IMMUTABLE = "immutable"


class AttributeReturn(str, Enum):
    DEFAULT = "default"
    ALWAYS = "always"
    NEVER = "never"
    REQUEST = "request"


class AttributeUniqueness(str, Enum):
    NONE = "none"
    SERVER = "server"
    GLOBAL = "global"


_AttributeValidator = Callable[[Any], ValidationIssues]

_DATETIME = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})?"
)


def parse_datetime(value: str) -> Optional[datetime]:
    """
    Parses RFC-3339 date-time (`xsd:dateTime` subset used by SCIM). Offset-less values are
    interpreted as UTC. Returns `None` if the value can not be parsed.
    """
    match = _DATETIME.fullmatch(value)
    if match is None:
        return None
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    tz = timezone.utc
    if offset and offset not in "Zz":
        sign = -1 if offset[0] == "-" else 1
        hours, minutes = offset[1:].split(":")
        tz = timezone(sign * timedelta(hours=int(hours), minutes=int(minutes)))
    try:
        return datetime(
            int(year),
            int(month),
            int(day),
            int(hour),
            int(minute),
            int(second),
            int((fraction or "0")[:6].ljust(6, "0")),
            tzinfo=tz,
        )
    except ValueError:
        return None


def epoch_millis(value: datetime) -> int:
    """Epoch milliseconds of an aware `datetime`, computed with integer arithmetic only."""
    return calendar.timegm(value.utctimetuple()) * 1000 + value.microsecond // 1000


class Attribute(abc.ABC):
    """
    Base class for all attributes (schema attribute metadata).

    Args:
        name: Name of the attribute. Must be valid attribute name, according to RFC-7643.
        description: Description of the attribute.
        required: Specifies if attribute is required, as per RFC-7643.
        multi_valued: Specifies if attribute is multivalued, as per RFC-7643.
        canonical_values: Specifies canonical values for the attribute, as per RFC-7643.
        restrict_canonical_values: flag that indicates whether validation error should be
            returned if provided value is not one of canonical values. If set to `False`,
            the validation warning is returned instead. Has no effect if there are no canonical
            values.
        mutability: Specifies attribute's mutability, as per RFC-7643.
        returned: Specifies attribute's `returned` characteristic, as per RFC-7643.
        uniqueness: Specifies attribute's uniqueness, as per RFC-7643.
        case_exact: Specifies whether string values are compared case-sensitively.
        constraints: Additional value constraints, e.g. `{"minLength": 3}`.
        validators: Additional validators, which are run, if the initial, built-in validation
            succeeds.
    """

    def __init__(
        self,
        name: str,
        *,
        description: str = "",
        required: bool = False,
        multi_valued: bool = False,
        canonical_values: Optional[Collection] = None,
        restrict_canonical_values: bool = True,
        mutability: AttributeMutability = AttributeMutability.READ_WRITE,
        returned: AttributeReturn = AttributeReturn.DEFAULT,
        uniqueness: AttributeUniqueness = AttributeUniqueness.NONE,
        case_exact: bool = False,
        constraints: Optional[Mapping[str, Any]] = None,
        validators: Optional[list[_AttributeValidator]] = None,
    ):
        self._name = AttrName(name)
        self._description = description
        self._required = required
        self._multi_valued = multi_valued
        self._canonical_values = list(canonical_values or [])
        self._restrict_canonical_values = restrict_canonical_values
        self._mutability = AttributeMutability(mutability)
        self._returned = AttributeReturn(returned)
        self._uniqueness = AttributeUniqueness(uniqueness)
        self._case_exact = case_exact
        self._constraints = dict(constraints or {})
        self._validators = list(validators or [])
        self._rep: Optional[BoundedAttrRep] = None

    @classmethod
    @abc.abstractmethod
    def scim_type(cls) -> ScimType:
        """Returns type of the attribute, as defined in RFC-7643."""

    @classmethod
    @abc.abstractmethod
    def base_types(cls) -> tuple[type, ...]:
        """Returns Python types, supported by the specific `Attribute` subclass."""

    @property
    def name(self) -> AttrName:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def required(self) -> bool:
        return self._required

    @property
    def multi_valued(self) -> bool:
        return self._multi_valued

    @property
    def canonical_values(self) -> list:
        return self._canonical_values

    @property
    def mutability(self) -> AttributeMutability:
        return self._mutability

    @property
    def returned(self) -> AttributeReturn:
        return self._returned

    @property
    def uniqueness(self) -> AttributeUniqueness:
        return self._uniqueness

    @property
    def case_exact(self) -> bool:
        return self._case_exact

    @property
    def constraints(self) -> dict[str, Any]:
        return dict(self._constraints)

    @property
    def custom_validators(self) -> list[_AttributeValidator]:
        return self._validators

    @property
    def rep(self) -> BoundedAttrRep:
        """
        Schema-bound representation of the attribute. Available once the attribute is
        bound to a schema.
        """
        if self._rep is None:
            raise AttributeError(f"{self!r} is not bound to any schema")
        return self._rep

    @property
    def full_name(self) -> str:
        """
        Fully-qualified name, e.g. `urn:ietf:params:scim:schemas:core:2.0:User:name.givenName`.
        """
        return str(self.rep)

    def bind(self, rep: BoundedAttrRep) -> None:
        """Binds the attribute to its schema. Called once, while the schema is being built."""
        if self._rep is not None:
            raise InvalidConfigError(f"{self!r} is already bound to {self._rep}")
        self._rep = rep

    def add_validator(self, validator: _AttributeValidator) -> None:
        self._validators.append(validator)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._name})"

    def _is_canonical(self, value: Any) -> bool:
        if not self._canonical_values:
            return True
        if isinstance(value, str) and not self._case_exact:
            return value.lower() in [str(item).lower() for item in self._canonical_values]
        return value in self._canonical_values

    def _validate_value_type(self, value: Any) -> ValidationIssues:
        issues = ValidationIssues()
        if not isinstance(value, self.base_types()) or (
            isinstance(value, bool) and bool not in self.base_types()
        ):
            issues.add_error(
                issue=ValidationError.bad_type(str(self.scim_type())),
                proceed=False,
            )
        return issues

    def validate(self, value: Any) -> ValidationIssues:
        """
        Validates the provided value according to attribute's specification: multiplicity,
        type, canonical values and constraints. If no validation issues, custom validators are
        run. `None` values are not validated.

        Sub-attributes of complex values are not validated here, see `SchemaValidator`.
        """
        issues = ValidationIssues()
        if value is None:
            return issues

        if self._multi_valued:
            if not isinstance(value, list):
                issues.add_error(issue=ValidationError.bad_type("list"), proceed=False)
                return issues
            for i, item in enumerate(value):
                item_issues = self._validate_value_type(item)
                if item_issues.can_proceed():
                    item_issues.merge(self._validate(item))
                issues.merge(item_issues, location=[i])
            issues.merge(self._validate_items(value))
        else:
            if isinstance(value, list):
                issues.add_error(
                    issue=ValidationError.bad_type(str(self.scim_type())),
                    proceed=False,
                )
                return issues
            issues.merge(self._validate_value_type(value))
            if not issues.can_proceed():
                return issues
            issues.merge(self._validate(value))

        if issues.has_errors():
            return issues
        for validator in self._validators:
            issues.merge(validator(value))
            if not issues.can_proceed():
                break
        return issues

    def _validate(self, value: Any) -> ValidationIssues:
        issues = ValidationIssues()
        if not self._is_canonical(value):
            if self._restrict_canonical_values:
                issues.add_error(
                    issue=ValidationError.must_be_one_of(self._canonical_values),
                    proceed=False,
                )
            else:
                issues.add_warning(
                    issue=ValidationWarning.should_be_one_of(self._canonical_values),
                )
        return issues

    def _validate_items(self, value: list) -> ValidationIssues:
        issues = ValidationIssues()
        min_items = self._constraints.get("minItems")
        max_items = self._constraints.get("maxItems")
        if min_items is not None and len(value) < min_items:
            issues.add_error(
                issue=ValidationError.constraint_violated(f"minItems={min_items}"),
                proceed=True,
            )
        if max_items is not None and len(value) > max_items:
            issues.add_error(
                issue=ValidationError.constraint_violated(f"maxItems={max_items}"),
                proceed=True,
            )
        return issues

    def compare_key(self, value: Any) -> Any:
        """
        Returns a key the value is compared with, when filtering and sorting. Values of
        incompatible type map to `None`.
        """
        if isinstance(value, self.base_types()) and not isinstance(value, bool):
            return value
        return None

    def accepts_literal(self, value: Any) -> bool:
        """Tells whether filter comparison literal `value` is compatible with the attribute."""
        return self.compare_key(value) is not None

    def to_dict(self) -> dict[str, Any]:
        """
        Converts the attribute to a dictionary. The contents meet the requirements
        of the schema definition, as per RFC-7643, section 7.
        """
        output: dict[str, Any] = {
            "name": str(self._name),
            "type": str(self.scim_type()),
            "multiValued": self._multi_valued,
            "description": self._description,
            "required": self._required,
            "caseExact": self._case_exact,
            "mutability": self._mutability.value,
            "returned": self._returned.value,
            "uniqueness": self._uniqueness.value,
        }
        if self._canonical_values:
            output["canonicalValues"] = list(self._canonical_values)
        output.update(self._constraints)
        return output


class _StringLike(Attribute, abc.ABC):
    def _validate(self, value: Any) -> ValidationIssues:
        issues = super()._validate(value)
        min_length = self._constraints.get("minLength")
        max_length = self._constraints.get("maxLength")
        pattern = self._constraints.get("pattern")
        if min_length is not None and len(value) < min_length:
            issues.add_error(
                issue=ValidationError.constraint_violated(f"minLength={min_length}"),
                proceed=True,
            )
        if max_length is not None and len(value) > max_length:
            issues.add_error(
                issue=ValidationError.constraint_violated(f"maxLength={max_length}"),
                proceed=True,
            )
        if pattern is not None and re.fullmatch(pattern, value) is None:
            issues.add_error(
                issue=ValidationError.constraint_violated(f"pattern={pattern}"),
                proceed=True,
            )
        return issues


@final
class String(_StringLike):
    """
    Represents **string** attribute, as specified in RFC-7643.

    Args:
        name: The name of the attribute
        precis: PRECIS profile that should be applied for the string attribute, when
            comparing values. By default, **OpaqueString** profile is used
        kwargs: The same keyword arguments base classes receive
    """

    def __init__(
        self,
        name: str,
        *,
        precis: precis_i18n.profile.Profile = get_profile("OpaqueString"),
        **kwargs: Any,
    ):
        super().__init__(name, **kwargs)
        self._precis = precis

    @classmethod
    def scim_type(cls) -> ScimType:
        return ScimType.STRING

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (str,)

    @property
    def precis(self) -> precis_i18n.profile.Profile:
        return self._precis

    def compare_key(self, value: Any) -> Any:
        if not isinstance(value, str):
            return None
        try:
            value = self._precis.enforce(value)
        except UnicodeEncodeError:
            pass
        return value if self._case_exact else value.lower()


@final
class Boolean(Attribute):
    @classmethod
    def scim_type(cls) -> ScimType:
        return ScimType.BOOLEAN

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (bool,)

    def compare_key(self, value: Any) -> Any:
        return value if isinstance(value, bool) else None


class _Number(Attribute, abc.ABC):
    def _validate(self, value: Any) -> ValidationIssues:
        issues = super()._validate(value)
        number = self.compare_key(value)
        for constraint, violated in (
            ("minimum", lambda limit: number < limit),
            ("maximum", lambda limit: number > limit),
            ("multipleOf", lambda limit: limit != 0 and number % limit != 0),
        ):
            limit = self._constraints.get(constraint)
            if limit is not None and violated(decimal.Decimal(str(limit))):
                issues.add_error(
                    issue=ValidationError.constraint_violated(f"{constraint}={limit}"),
                    proceed=True,
                )
        return issues

    def compare_key(self, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, self.base_types()):
            return None
        try:
            return decimal.Decimal(str(value))
        except decimal.InvalidOperation:
            return None


@final
class Decimal(_Number):
    """
    Represents **decimal** attribute. Values are compared as `decimal.Decimal`, so there
    are no floating-point rounding issues.
    """

    @classmethod
    def scim_type(cls) -> ScimType:
        return ScimType.DECIMAL

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return float, int, decimal.Decimal


@final
class Integer(_Number):
    @classmethod
    def scim_type(cls) -> ScimType:
        return ScimType.INTEGER

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (int,)


@final
class DateTime(Attribute):
    """
    Represents **dateTime** attribute. Values must be RFC-3339 date-time strings and are
    compared by their epoch milliseconds.
    """

    @classmethod
    def scim_type(cls) -> ScimType:
        return ScimType.DATETIME

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (str,)

    def _validate_value_type(self, value: Any) -> ValidationIssues:
        issues = super()._validate_value_type(value)
        if issues.can_proceed() and parse_datetime(value) is None:
            issues.add_error(issue=ValidationError.bad_value_syntax(), proceed=False)
        return issues

    def _validate(self, value: Any) -> ValidationIssues:
        issues = super()._validate(value)
        millis = self.compare_key(value)
        for constraint, violated in (
            ("notBefore", lambda limit: millis < limit),
            ("notAfter", lambda limit: millis > limit),
        ):
            limit = self._constraints.get(constraint)
            if limit is not None and violated(self.compare_key(limit)):
                issues.add_error(
                    issue=ValidationError.constraint_violated(f"{constraint}={limit}"),
                    proceed=True,
                )
        return issues

    def compare_key(self, value: Any) -> Any:
        if not isinstance(value, str):
            return None
        parsed = parse_datetime(value)
        if parsed is None:
            return None
        return epoch_millis(parsed)


@final
class Binary(_StringLike):
    """
    Represents **binary** attribute. Binary attributes are case-sensitive, since they are
    represented by base64-encoded strings.
    """

    def __init__(self, name: str, **kwargs: Any):
        kwargs["case_exact"] = True
        super().__init__(name, **kwargs)

    @classmethod
    def scim_type(cls) -> ScimType:
        return ScimType.BINARY

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (str,)

    def _validate_value_type(self, value: Any) -> ValidationIssues:
        issues = super()._validate_value_type(value)
        if not issues.can_proceed():
            return issues
        if (padding := len(value) % 4) != 0:
            value += "=" * (4 - padding)
        try:
            base64.b64decode(value, validate=True)
        except binascii.Error:
            issues.add_error(issue=ValidationError.bad_encoding("base64"), proceed=False)
        return issues


@final
class Reference(_StringLike):
    """
    Represents **reference** attribute.

    Args:
        name: The name of the attribute.
        reference_types: types of the references, supported by the attribute, e.g.
            `["User", "Group"]`, `["external"]`, or `["uri"]`.
        kwargs: The same keyword arguments base classes receive.
    """

    def __init__(self, name: str, *, reference_types: Iterable[str] = (), **kwargs: Any):
        kwargs["case_exact"] = True
        super().__init__(name, **kwargs)
        self._reference_types = list(reference_types)

    @classmethod
    def scim_type(cls) -> ScimType:
        return ScimType.REFERENCE

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (str,)

    @property
    def reference_types(self) -> list[str]:
        return self._reference_types

    def _validate_value_type(self, value: Any) -> ValidationIssues:
        issues = super()._validate_value_type(value)
        if issues.can_proceed() and self._reference_types == ["external"]:
            result = urlparse(value)
            if not all([result.scheme, result.netloc]):
                issues.add_error(issue=ValidationError.bad_value_syntax(), proceed=False)
        return issues

    def to_dict(self) -> dict[str, Any]:
        output = super().to_dict()
        output["referenceTypes"] = list(self._reference_types)
        return output


@final
class Any_(Attribute):
    """
    Attribute of varying content, e.g. `value` of PATCH operations. It accepts every value
    and can not be used for filtering or sorting.
    """

    @classmethod
    def scim_type(cls) -> ScimType:
        return ScimType.ANY

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (object,)

    def _validate_value_type(self, value: Any) -> ValidationIssues:
        return ValidationIssues()

    def validate(self, value: Any) -> ValidationIssues:
        if self._multi_valued and value is not None and not isinstance(value, list):
            issues = ValidationIssues()
            issues.add_error(issue=ValidationError.bad_type("list"), proceed=False)
            return issues
        return ValidationIssues()

    def compare_key(self, value: Any) -> Any:
        return None


@final
class Complex(Attribute):
    """
    Represents **complex** attribute, as specified in RFC-7643.

    Args:
        name: Name of the attribute.
        sub_attributes: Complex sub-attributes. All attributes but `Complex`
            can be sub-attributes.
        kwargs: The same keyword arguments the base class receives
    """

    def __init__(
        self,
        name: str,
        *,
        sub_attributes: Optional[Collection[Attribute]] = None,
        **kwargs: Any,
    ):
        for attr in sub_attributes or []:
            if isinstance(attr, Complex):
                raise InvalidConfigError(
                    f"complex attribute {name!r} can not contain complex sub-attribute "
                    f"{attr.name!r}"
                )
        super().__init__(name, **kwargs)
        self._sub_attributes = Attrs(sub_attributes or [])
        if self._multi_valued:
            if self.attrs.get("primary") is not None:
                self._validators.append(_validate_single_primary_value)
            if self.attrs.get("type") is not None and self.attrs.get("value") is not None:
                self._validators.append(_validate_type_value_pairs)

    @classmethod
    def scim_type(cls) -> ScimType:
        return ScimType.COMPLEX

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (Mapping,)

    @property
    def attrs(self) -> "Attrs":
        return self._sub_attributes

    def bind(self, rep: BoundedAttrRep) -> None:
        super().bind(rep)
        for sub_attr_name, sub_attr in self._sub_attributes:
            sub_attr.bind(rep.child(sub_attr_name))

    def compare_key(self, value: Any) -> Any:
        return None

    def to_dict(self) -> dict[str, Any]:
        output = super().to_dict()
        output["subAttributes"] = [sub_attr.to_dict() for _, sub_attr in self.attrs]
        return output


def _validate_single_primary_value(value: Collection[Mapping]) -> ValidationIssues:
    issues = ValidationIssues()
    primary_entries = 0
    for item in value:
        if isinstance(item, Mapping) and _get_ci(item, "primary") is True:
            primary_entries += 1
    if primary_entries > 1:
        issues.add_error(issue=ValidationError.multiple_primary_values(), proceed=True)
    return issues


def _validate_type_value_pairs(value: Collection[Mapping]) -> ValidationIssues:
    issues = ValidationIssues()
    pairs: dict[tuple[Any, Any], int] = defaultdict(int)
    for item in value:
        if not isinstance(item, Mapping):
            continue
        type_, item_value = _get_ci(item, "type"), _get_ci(item, "value")
        if type_ and isinstance(item_value, (str, int, float, bool)):
            pairs[type_, item_value] += 1
    if any(count > 1 for count in pairs.values()):
        issues.add_warning(issue=ValidationWarning.multiple_type_value_pairs())
    return issues


def _get_ci(mapping: Mapping, key: str) -> Any:
    for k, v in mapping.items():
        if isinstance(k, str) and k.lower() == key.lower():
            return v
    return None


class Attrs:
    """
    Ordered collection of unbounded attributes, keyed by case-insensitive names.

    Examples:
        >>> attrs = Attrs([String("myString"), Integer("myInteger")])
        >>> for name, attr in attrs:
        >>>     print(name, attr)
    """

    def __init__(self, attrs: Optional[Iterable[Attribute]] = None):
        self._attrs: dict[AttrName, Attribute] = {}
        for attr in attrs or []:
            if attr.name in self._attrs:
                raise InvalidConfigError(f"attribute {attr.name!r} defined more than once")
            self._attrs[attr.name] = attr

    def __iter__(self) -> Iterator[tuple[AttrName, Attribute]]:
        return iter(self._attrs.items())

    def __len__(self) -> int:
        return len(self._attrs)

    def get(self, attr_name: Union[str, AttrRep]) -> Optional[Attribute]:
        """
        Returns an attribute by its name. Since attribute names are case-insensitive, it also
        applies here. Returns `None` for unknown or syntactically incorrect names.
        """
        if isinstance(attr_name, AttrRep):
            attr_name = attr_name.attr
        try:
            return self._attrs.get(AttrName(attr_name))
        except ValueError:
            return None


class BoundedAttrs:
    """
    Iterable collection of attributes bound to a specific schema, optionally extended with
    attributes of schema extensions.

    Args:
        schema: A SCIM schema attributes belong to
        attrs: Attributes bound to the schema
        extension: Whether the schema is an extension, so its attributes are kept in own
            namespace in the data

    Besides `get`, attributes are available as Python attributes, returning bounded
    attribute representations, e.g. `attrs.name__givenName`.
    """

    def __init__(
        self,
        schema: SchemaUri,
        attrs: Optional[Iterable[Attribute]] = None,
        extension: bool = False,
    ):
        self._schema = SchemaUri(schema)
        self._is_extension = extension
        self._attrs: dict[BoundedAttrRep, Attribute] = {}
        self._extensions: dict[SchemaUri, BoundedAttrs] = {}
        for attr in attrs or []:
            attr_rep = BoundedAttrRep(schema=self._schema, attr=attr.name, extension=extension)
            if attr_rep in self._attrs:
                raise InvalidConfigError(
                    f"attribute {attr.name!r} defined more than once in {self._schema!r}"
                )
            self._attrs[attr_rep] = attr

    def __getattr__(self, name: str) -> BoundedAttrRep:
        if name.startswith("_"):
            raise AttributeError(name)
        attr = self.get(name.replace("__", "."))
        if attr is None:
            raise AttributeError(
                f"attribute {name.replace('__', '.')!r} "
                f"does not exist within {self._schema!r} and its extensions"
            )
        return attr.rep

    def __iter__(self) -> Iterator[tuple[BoundedAttrRep, Attribute]]:
        return iter(self._attrs.items())

    @property
    def schema(self) -> SchemaUri:
        return self._schema

    @property
    def extensions(self) -> dict[SchemaUri, "BoundedAttrs"]:
        return self._extensions

    def extend(self, attrs: "BoundedAttrs") -> None:
        """Extends bounded attributes with the attributes of a schema extension."""
        self._extensions[attrs.schema] = attrs
        for attr_rep, attr in attrs:
            self._attrs[attr_rep] = attr

    def get(self, attr_rep: Union[str, AttrRep]) -> Optional[Attribute]:
        """
        Returns an attribute, given its name or (bounded) representation. For unbounded
        representations, the core schema is checked first, then the extensions. Returns
        `None` if the attribute is not found or the name is not valid.
        """
        if isinstance(attr_rep, str):
            try:
                attr_rep = AttrRepFactory.deserialize(attr_rep)
            except ValueError:
                return None

        if isinstance(attr_rep, BoundedAttrRep):
            schema = attr_rep.schema
            if schema != self._schema and schema not in self._extensions:
                return None
            top_level = self._attrs.get(BoundedAttrRep(schema=schema, attr=attr_rep.attr))
        else:
            top_level = self._attrs.get(BoundedAttrRep(schema=self._schema, attr=attr_rep.attr))
            if top_level is None:
                for extension in self._extensions.values():
                    if (top_level := extension.get(AttrRep(attr_rep.attr))) is not None:
                        break

        if top_level is None or not attr_rep.is_sub_attr:
            return top_level
        if isinstance(top_level, Complex):
            return top_level.attrs.get(attr_rep.sub_attr)
        return None


def _enum_or_default(enum_cls: type[Enum], value: Any, default: Enum, attr_name: str) -> Any:
    if value is None:
        return default
    for item in enum_cls:
        if isinstance(value, str) and item.value.lower() == value.lower():
            return item
    logger.warning(
        "unknown_attribute_characteristic",
        attribute=attr_name,
        characteristic=enum_cls.__name__,
        value=value,
        default=default.value,
    )
    return default


_ATTR_TYPES: dict[str, type[Attribute]] = {
    "string": String,
    "boolean": Boolean,
    "decimal": Decimal,
    "integer": Integer,
    "datetime": DateTime,
    "reference": Reference,
    "complex": Complex,
    "binary": Binary,
    "any": Any_,
}

_CONSTRAINT_KEYS = (
    "minLength",
    "maxLength",
    "pattern",
    "minimum",
    "maximum",
    "multipleOf",
    "notBefore",
    "notAfter",
    "minItems",
    "maxItems",
)


def attribute_from_dict(doc: Mapping[str, Any], in_complex: bool = False) -> Attribute:
    """
    Builds an attribute from its schema definition, as specified in RFC-7643, section 7.

    Unknown `mutability`, `returned`, and `uniqueness` values fall back to `readWrite`,
    `default`, and `none`. Unknown `type` has no sensible default.

    Raises:
        InvalidConfigError: If the definition is malformed or its `type` is unknown.
    """
    if not isinstance(doc, Mapping):
        raise InvalidConfigError(f"attribute definition must be an object, got {doc!r}")
    name = doc.get("name")
    try:
        AttrName(name)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidConfigError(f"bad attribute name {name!r}")
    type_name = doc.get("type")
    attr_cls = _ATTR_TYPES.get(type_name.lower()) if isinstance(type_name, str) else None
    if attr_cls is None:
        raise InvalidConfigError(f"attribute {name!r} has unknown type {type_name!r}")

    kwargs: dict[str, Any] = {
        "description": doc.get("description", ""),
        "required": bool(doc.get("required", False)),
        "multi_valued": bool(doc.get("multiValued", False)),
        "canonical_values": doc.get("canonicalValues") or None,
        "mutability": _enum_or_default(
            AttributeMutability, doc.get("mutability"), AttributeMutability.READ_WRITE, name
        ),
        "returned": _enum_or_default(
            AttributeReturn, doc.get("returned"), AttributeReturn.DEFAULT, name
        ),
        "uniqueness": _enum_or_default(
            AttributeUniqueness, doc.get("uniqueness"), AttributeUniqueness.NONE, name
        ),
        "constraints": {key: doc[key] for key in _CONSTRAINT_KEYS if key in doc},
    }
    if attr_cls not in (Binary, Reference):
        kwargs["case_exact"] = bool(doc.get("caseExact", False))
    if attr_cls is Reference:
        kwargs["reference_types"] = doc.get("referenceTypes") or []
    if attr_cls is Complex:
        if in_complex:
            raise InvalidConfigError(f"complex sub-attribute {name!r} is not supported")
        sub_attrs = doc.get("subAttributes") or []
        if not isinstance(sub_attrs, list):
            raise InvalidConfigError(f"'subAttributes' of {name!r} must be a list")
        kwargs["sub_attributes"] = [
            attribute_from_dict(item, in_complex=True) for item in sub_attrs
        ]
    return attr_cls(name, **kwargs)
