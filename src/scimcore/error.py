from collections import defaultdict
from enum import Enum
from typing import Any, Collection, Iterator, Optional, Sequence, TypedDict, Union

from typing_extensions import NotRequired

ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"


class ScimErrorType(str, Enum):
    INVALID_FILTER = "invalidFilter"
    TOO_MANY = "tooMany"
    UNIQUENESS = "uniqueness"
    MUTABILITY = "mutability"
    INVALID_SYNTAX = "invalidSyntax"
    INVALID_PATH = "invalidPath"
    NO_TARGET = "noTarget"
    INVALID_VALUE = "invalidValue"
    INVALID_VERS = "invalidVers"
    SENSITIVE = "sensitive"
    # implementation-defined
    MISSING_EXTENSION = "missingExtension"


DEFAULT_DETAIL: dict[ScimErrorType, str] = {
    ScimErrorType.INVALID_FILTER: (
        "The specified filter syntax is invalid, "
        "or the specified attribute and filter comparison combination is not supported."
    ),
    ScimErrorType.TOO_MANY: (
        "The specified request yields more operations or results than the server is willing "
        "to process."
    ),
    ScimErrorType.UNIQUENESS: (
        "One or more of the attribute values are already in use or are reserved."
    ),
    ScimErrorType.MUTABILITY: (
        "The attempted modification is not compatible with the target attribute's mutability "
        "or current state."
    ),
    ScimErrorType.INVALID_SYNTAX: (
        "The request body message structure was invalid or did not conform to the request schema."
    ),
    ScimErrorType.INVALID_PATH: "The 'path' attribute was invalid or malformed.",
    ScimErrorType.NO_TARGET: (
        "The specified 'path' did not yield an attribute or attribute value "
        "that could be operated on."
    ),
    ScimErrorType.INVALID_VALUE: (
        "A required value was missing, or the value specified was not compatible "
        "with the operation or attribute type, or resource schema."
    ),
    ScimErrorType.INVALID_VERS: "The specified SCIM protocol version is not supported.",
    ScimErrorType.SENSITIVE: (
        "The specified request cannot be completed, "
        "due to the passing of sensitive information in a request URI."
    ),
    ScimErrorType.MISSING_EXTENSION: "A required schema extension is missing.",
}


class InvalidConfigError(Exception):
    """
    Raised at startup, when schemas, resource types or service provider configuration
    are inconsistent. Never produced while handling a request.
    """


class ScimException(Exception):
    """
    Base class for all failures that map to a SCIM error response.

    Args:
        detail: Human-readable description. If not provided, the default detail
            for `scim_type` (or the class) is used.
        scim_type: SCIM error type, overrides the class default.
        status: HTTP status code, overrides the class default.
    """

    status: int = 500
    scim_type: Optional[ScimErrorType] = None
    default_detail: str = "The request could not be processed."

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        scim_type: Optional[Union[str, ScimErrorType]] = None,
        status: Optional[int] = None,
    ):
        if scim_type is not None:
            self.scim_type = ScimErrorType(scim_type)
        if status is not None:
            self.status = status
        if detail is None:
            detail = DEFAULT_DETAIL.get(self.scim_type, self.default_detail)  # type: ignore
        self.detail = detail
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """
        Renders the error as RFC-7644 error response body.
        """
        output: dict[str, Any] = {"schemas": [ERROR_SCHEMA], "status": str(self.status)}
        if self.scim_type is not None:
            output["scimType"] = self.scim_type.value
        output["detail"] = self.detail
        return output


class ClientError(ScimException):
    status = 400
    default_detail = "The request is invalid."


class InvalidFilterError(ClientError, ValueError):
    """
    Malformed or unsupported filter expression. `expression` keeps the offending part.
    """

    scim_type = ScimErrorType.INVALID_FILTER

    def __init__(self, detail: Optional[str] = None, *, expression: str = "", **kwargs: Any):
        self.expression = expression
        if detail is None:
            detail = DEFAULT_DETAIL[ScimErrorType.INVALID_FILTER]
        if expression:
            detail = f"{detail} (at {expression!r})"
        super().__init__(detail, **kwargs)


class InvalidPathError(ClientError):
    scim_type = ScimErrorType.INVALID_PATH


class NoTargetError(ClientError):
    scim_type = ScimErrorType.NO_TARGET


class MutabilityError(ClientError):
    scim_type = ScimErrorType.MUTABILITY


class InvalidValueError(ClientError):
    scim_type = ScimErrorType.INVALID_VALUE


class InvalidSyntaxError(ClientError):
    scim_type = ScimErrorType.INVALID_SYNTAX


class TooManyError(ClientError):
    scim_type = ScimErrorType.TOO_MANY


class ScimValidationError(ClientError):
    """
    Schema validation failure. Carries all validation issues, so the detail lists every
    offending attribute, not only the first one.
    """

    def __init__(self, issues: "ValidationIssues", **kwargs: Any):
        self.issues = issues
        errors = list(issues.flatten())
        if "scim_type" not in kwargs:
            kwargs["scim_type"] = (
                errors[0][1].scim_error if errors else ScimErrorType.INVALID_VALUE
            )
        detail = "; ".join(f"{location or '<root>'}: {error.message}" for location, error in errors)
        super().__init__(detail or None, **kwargs)


class NotFoundError(ScimException):
    status = 404
    default_detail = "The specified resource was not found."


class ConflictError(ScimException):
    status = 409
    default_detail = "The resource conflicts with its current state."


class UniquenessError(ConflictError):
    scim_type = ScimErrorType.UNIQUENESS


class PreconditionFailedError(ConflictError):
    status = 412
    default_detail = "The resource version does not match the requested version."


class NotModified(ScimException):
    status = 304
    default_detail = "The resource has not been modified."


class ForbiddenError(ScimException):
    status = 403
    default_detail = "The operation is not permitted."


class ScimNotImplementedError(ScimException):
    status = 501
    default_detail = "The operation is not supported."


class InternalError(ScimException):
    """
    Unexpected server failure. The detail never exposes anything beyond a generic message.
    """

    status = 500
    default_detail = "An internal error occurred."

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemas": [ERROR_SCHEMA],
            "status": str(self.status),
            "detail": self.default_detail,
        }


class ValidationError:
    """
    Represents a validation error. Uniquely identified by the error code.

    Pre-formatted messages stored in `message_by_code` can be modified, as long as embedded
    string parameters stay the same.
    """

    message_by_code = {
        1: "bad value syntax",
        2: "bad type, expecting '{expected}'",
        3: "bad encoding, expecting '{expected}'",
        4: "bad value content",
        5: "missing",
        7: "must be one of: {expected_values}",
        9: "missing main schema",
        10: "missing schema extension {extension!r}",
        11: "unknown schema",
        12: "'primary' attribute set to 'True' MUST appear no more than once",
        13: "unknown attribute",
        14: "attribute can not be modified",
        16: "value violates constraint: {constraint}",
        17: "bad attribute name {attribute!r}",
        # filter-specific
        100: "one of brackets is not opened / closed",
        101: "one of complex attribute brackets is not opened / closed",
        102: "sub-attribute {sub_attr!r} of {attr!r} can not be complex",
        103: "missing operand for operator '{operator}' in expression '{expression}'",
        104: "unknown operator '{operator}' in expression '{expression}'",
        105: "no expression or empty expression inside grouping operator",
        106: "unknown expression '{expression}'",
        107: "complex attribute group can not contain inner complex attributes or square brackets",
        108: "complex attribute group {attribute!r} has no expression",
        109: "bad operand {value!r}",
        110: "operand {value!r} is not compatible with {operator!r} operator",
    }

    def __init__(
        self,
        code: int,
        scim_error: Union[str, ScimErrorType],
        message: Optional[str] = None,
        **context: Any,
    ):
        """
        Args:
            code: The error code. Can be one of built-in error_codes (see `message_by_code`
                attribute) or custom. If custom, it must be greater than 1000.
            scim_error: SCIM error corresponding to the validation error.
            message: Error message. Can replace built-in message or be specified for custom
                validation error.
            **context: Parameters passed to pre-formatted messages.
        """
        if code not in self.message_by_code and code <= 1000:
            raise ValueError("error code for custom validation error must be greater than 1000")
        self.code = code
        if message is None:
            message = "" if code > 1000 else self.message_by_code[code].format(**context)
        self.message = message
        self.context = context
        self.scim_error = ScimErrorType(scim_error)

    def __repr__(self) -> str:
        return f"ValidationError({self.code}, {self.message!r})"

    @classmethod
    def bad_value_syntax(cls, scim_error: str = ScimErrorType.INVALID_SYNTAX):
        return cls(code=1, scim_error=scim_error)

    @classmethod
    def bad_type(cls, expected: str, scim_error: str = ScimErrorType.INVALID_VALUE):
        return cls(code=2, scim_error=scim_error, expected=expected)

    @classmethod
    def bad_encoding(cls, expected: str, scim_error: str = ScimErrorType.INVALID_VALUE):
        return cls(code=3, scim_error=scim_error, expected=expected)

    @classmethod
    def bad_value_content(cls, scim_error: str = ScimErrorType.INVALID_VALUE):
        return cls(code=4, scim_error=scim_error)

    @classmethod
    def missing(cls, scim_error: str = ScimErrorType.INVALID_VALUE):
        return cls(code=5, scim_error=scim_error)

    @classmethod
    def must_be_one_of(
        cls,
        expected_values: Collection[Any],
        scim_error: str = ScimErrorType.INVALID_VALUE,
    ):
        return cls(code=7, scim_error=scim_error, expected_values=list(expected_values))

    @classmethod
    def missing_main_schema(cls, scim_error: str = ScimErrorType.INVALID_VALUE):
        return cls(code=9, scim_error=scim_error)

    @classmethod
    def missing_schema_extension(
        cls,
        extension: str,
        scim_error: str = ScimErrorType.MISSING_EXTENSION,
    ):
        return cls(code=10, scim_error=scim_error, extension=extension)

    @classmethod
    def unknown_schema(cls, scim_error: str = ScimErrorType.INVALID_VALUE):
        return cls(code=11, scim_error=scim_error)

    @classmethod
    def multiple_primary_values(cls, scim_error: str = ScimErrorType.INVALID_VALUE):
        return cls(code=12, scim_error=scim_error)

    @classmethod
    def unknown_attribute(cls, scim_error: str = ScimErrorType.INVALID_SYNTAX):
        return cls(code=13, scim_error=scim_error)

    @classmethod
    def attribute_can_not_be_modified(cls, scim_error: str = ScimErrorType.MUTABILITY):
        return cls(code=14, scim_error=scim_error)

    @classmethod
    def constraint_violated(cls, constraint: str, scim_error: str = ScimErrorType.INVALID_VALUE):
        return cls(code=16, scim_error=scim_error, constraint=constraint)

    @classmethod
    def bad_attribute_name(cls, attribute: str, scim_error: str = ScimErrorType.INVALID_VALUE):
        return cls(code=17, scim_error=scim_error, attribute=attribute)

    @classmethod
    def bracket_not_opened_or_closed(cls, scim_error: str = ScimErrorType.INVALID_FILTER):
        return cls(code=100, scim_error=scim_error)

    @classmethod
    def complex_attribute_bracket_not_opened_or_closed(
        cls, scim_error: str = ScimErrorType.INVALID_FILTER
    ):
        return cls(code=101, scim_error=scim_error)

    @classmethod
    def complex_sub_attribute(
        cls,
        attr: str,
        sub_attr: str,
        scim_error: str = ScimErrorType.INVALID_FILTER,
    ):
        return cls(code=102, scim_error=scim_error, attr=attr, sub_attr=sub_attr)

    @classmethod
    def missing_operand_for_operator(
        cls,
        operator: str,
        expression: str,
        scim_error: str = ScimErrorType.INVALID_FILTER,
    ):
        return cls(code=103, scim_error=scim_error, operator=operator, expression=expression)

    @classmethod
    def unknown_operator(
        cls, operator: str, expression: str, scim_error: str = ScimErrorType.INVALID_FILTER
    ):
        return cls(code=104, scim_error=scim_error, operator=operator, expression=expression)

    @classmethod
    def empty_filter_expression(cls, scim_error: str = ScimErrorType.INVALID_FILTER):
        return cls(code=105, scim_error=scim_error)

    @classmethod
    def unknown_expression(cls, expression: str, scim_error: str = ScimErrorType.INVALID_FILTER):
        return cls(code=106, scim_error=scim_error, expression=expression)

    @classmethod
    def inner_complex_attribute_or_square_bracket(
        cls, scim_error: str = ScimErrorType.INVALID_FILTER
    ):
        return cls(code=107, scim_error=scim_error)

    @classmethod
    def empty_complex_attribute_expression(
        cls, attribute: str, scim_error: str = ScimErrorType.INVALID_FILTER
    ):
        return cls(code=108, scim_error=scim_error, attribute=attribute)

    @classmethod
    def bad_operand(cls, value: Any, scim_error: str = ScimErrorType.INVALID_FILTER):
        return cls(code=109, scim_error=scim_error, value=value)

    @classmethod
    def non_compatible_operand(
        cls, value: Any, operator: str, scim_error: str = ScimErrorType.INVALID_FILTER
    ):
        return cls(code=110, scim_error=scim_error, value=value, operator=operator)

    def __eq__(self, other):
        if not isinstance(other, ValidationError):
            return False
        return self.code == other.code


class ValidationWarning:
    """
    Represents a validation warning. Uniquely identified by the warning code.
    """

    message_by_code = {
        1: "value should be one of: {expected_values}",
        2: (
            "multi-valued complex attribute should contain a given type-value pair "
            "no more than once"
        ),
        3: "unknown attribute, ignored",
        4: "unexpected content, {reason}",
    }

    def __init__(self, code: int, message: Optional[str] = None, **context: Any):
        if code not in self.message_by_code and code <= 1000:
            raise ValueError("code for custom validation warning must be greater than 1000")
        self.code = code
        if message is None:
            message = "" if code > 1000 else self.message_by_code[code].format(**context)
        self.message = message
        self.context = context

    def __repr__(self) -> str:
        return f"ValidationWarning({self.code}, {self.message!r})"

    @classmethod
    def should_be_one_of(cls, expected_values: Collection[Any]):
        return cls(code=1, expected_values=list(expected_values))

    @classmethod
    def multiple_type_value_pairs(cls):
        return cls(code=2)

    @classmethod
    def unknown_attribute_ignored(cls):
        return cls(code=3)

    @classmethod
    def unexpected_content(cls, reason: str):
        return cls(code=4, reason=reason)

    def __eq__(self, other):
        if not isinstance(other, ValidationWarning):
            return False
        return self.code == other.code


class ValidationIssueDict(TypedDict):
    code: int
    error: NotRequired[str]
    context: NotRequired[dict]


_Location = Sequence[Union[str, int]]


class ValidationIssues:
    """
    Keeps track of validation errors and warnings, grouped by the location (path of
    attribute names and list indexes) they refer to.
    """

    def __init__(self) -> None:
        self._errors: dict[tuple, list[ValidationError]] = defaultdict(list)
        self._warnings: dict[tuple, list[ValidationWarning]] = defaultdict(list)
        self._stop_proceeding: dict[tuple, set[int]] = defaultdict(set)

    @property
    def errors(self) -> Iterator[tuple[tuple[str, ...], list[ValidationError]]]:
        """Validation errors by locations where they were added."""
        return iter(self._errors.items())

    @property
    def warnings(self) -> Iterator[tuple[tuple[str, ...], list[ValidationWarning]]]:
        """Validation warnings by locations where they were added."""
        return iter(self._warnings.items())

    def merge(self, issues: "ValidationIssues", location: Optional[_Location] = None) -> None:
        """
        Merges provided validation `issues` under specified `location`, if specified, in the
        top-level otherwise.
        """
        prefix = tuple(location or ())
        for other_location, errors in issues._errors.items():
            new_location = prefix + other_location
            self._errors[new_location].extend(errors)
            codes = issues._stop_proceeding.get(other_location)
            if codes:
                self._stop_proceeding[new_location].update(codes)
        for other_location, warnings in issues._warnings.items():
            self._warnings[prefix + other_location].extend(warnings)

    def add_error(
        self,
        issue: ValidationError,
        proceed: bool,
        location: Optional[_Location] = None,
    ) -> None:
        """
        Adds a validation error under specified `location`. The `proceed` flag tells whether
        the `location` could still be validated against other conditions (`True`), or further
        validation of it should be terminated (`False`).
        """
        location = tuple(location or ())
        self._errors[location].append(issue)
        if not proceed:
            self._stop_proceeding[location].add(issue.code)

    def add_warning(self, issue: ValidationWarning, location: Optional[_Location] = None) -> None:
        self._warnings[tuple(location or ())].append(issue)

    def get(
        self,
        error_codes: Optional[Collection[int]] = None,
        warning_codes: Optional[Collection[int]] = None,
        location: Optional[_Location] = None,
    ) -> "ValidationIssues":
        """
        Retrieves validation issues for the specified `location`, or all of them if not specified.
        The returned issues can be filtered by `error_codes` and `warning_codes`. Locations in the
        returned issues are relative to `location`.
        """
        prefix = tuple(location or ())
        n = len(prefix)
        copy = ValidationIssues()
        for location_, errors in self._errors.items():
            if location_[:n] != prefix:
                continue
            selected = [e for e in errors if error_codes is None or e.code in error_codes]
            if selected:
                copy._errors[location_[n:]] = selected
                codes = {
                    code
                    for code in self._stop_proceeding.get(location_, set())
                    if error_codes is None or code in error_codes
                }
                if codes:
                    copy._stop_proceeding[location_[n:]] = codes
        for location_, warnings in self._warnings.items():
            if location_[:n] != prefix:
                continue
            selected_warnings = [
                w for w in warnings if warning_codes is None or w.code in warning_codes
            ]
            if selected_warnings:
                copy._warnings[location_[n:]] = selected_warnings
        return copy

    def can_proceed(self, *locations: _Location) -> bool:
        """
        Tells whether validation could proceed for all `locations` (top-level if none given),
        that is, whether neither the locations nor any of their parents received an error added
        with `proceed=False`.
        """
        if not locations:
            locations = ((),)
        for location in locations:
            location = tuple(location)
            for i in range(len(location) + 1):
                if location[:i] in self._stop_proceeding:
                    return False
        return True

    def has_errors(self, *locations: _Location) -> bool:
        """
        Tells whether any error has been added under any of `locations` (anywhere if none given).
        """
        if not locations:
            return bool(self._errors)
        for location in locations:
            location = tuple(location)
            for issue_location in self._errors:
                if issue_location[: len(location)] == location:
                    return True
        return False

    def flatten(self) -> Iterator[tuple[str, ValidationError]]:
        """
        Yields `(dotted location, error)` pairs, in the order the errors were added.
        """
        for location, errors in self._errors.items():
            path = ".".join(str(part) for part in location)
            for error in errors:
                yield path, error

    def to_dict(self, msg: bool = False, ctx: bool = False) -> dict:
        """
        Converts `ValidationIssues` to a nested dictionary, keyed by location parts.
        """
        output: dict = {}
        self._to_dict("_errors", self._errors, output, msg=msg, ctx=ctx)
        self._to_dict("_warnings", self._warnings, output, msg=msg, ctx=ctx)
        return output

    @staticmethod
    def _to_dict(key: str, structure: dict, output: dict, msg: bool, ctx: bool) -> None:
        for location, issues in structure.items():
            current_level = output
            for part in location:
                current_level = current_level.setdefault(str(part), {})
            current_level[key] = [
                ValidationIssues._issue_to_dict(issue, msg=msg, ctx=ctx) for issue in issues
            ]

    @staticmethod
    def _issue_to_dict(
        issue: Union[ValidationError, ValidationWarning],
        msg: bool = False,
        ctx: bool = False,
    ) -> ValidationIssueDict:
        output: ValidationIssueDict = {"code": issue.code}
        if msg:
            output["error"] = issue.message
        if ctx:
            output["context"] = issue.context
        return output
