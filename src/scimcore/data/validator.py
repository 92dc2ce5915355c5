from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Collection, Optional

import structlog

from scimcore.data.attrs import (
    Attribute,
    AttributeMutability,
    AttributeReturn,
    Complex,
)
from scimcore.data.document import Document, Missing
from scimcore.error import (
    ScimValidationError,
    ValidationError,
    ValidationIssues,
    ValidationWarning,
)
from scimcore.identifiers import SchemaUri

if TYPE_CHECKING:
    from scimcore.data.schemas import ResourceType

logger = structlog.get_logger()


class Direction(str, Enum):
    REQUEST = "REQUEST"
    RESPONSE = "RESPONSE"


@dataclass
class ValidationContext:
    """
    Describes what the validated data is and where it goes.

    Attributes:
        direction: `REQUEST` for data sent by the client, `RESPONSE` for data returned by
            the service provider.
        operation: `create`, `replace`, or `patch`, meaningful for requests only.
        strict: Whether unknown attributes are errors, instead of being dropped.
        existing: The stored resource, if any. Read-only values are carried over from it,
            and immutable attributes are checked against it.
        attributes: Names of attributes requested by the client (responses only).
        excluded_attributes: Names of attributes excluded by the client (responses only).
    """

    direction: Direction = Direction.REQUEST
    operation: str = "create"
    strict: bool = False
    existing: Optional[Mapping[str, Any]] = None
    attributes: Optional[Collection[str]] = None
    excluded_attributes: Optional[Collection[str]] = None


class SchemaValidator:
    """
    Validates raw resource data against the resource type's schemas, producing the `Document`
    whose values are tagged with their attributes. All issues are collected before reporting,
    so `ScimValidationError` lists every offending attribute.
    """

    def __init__(self, resource_type: "ResourceType"):
        self._resource_type = resource_type

    @property
    def resource_type(self) -> "ResourceType":
        return self._resource_type

    def validate(
        self, data: Any, context: Optional[ValidationContext] = None
    ) -> Document:
        """
        Validates `data` and returns the resulting document.

        Raises:
            ScimValidationError: If the data does not conform to the schemas.
        """
        context = context or ValidationContext()
        issues = ValidationIssues()
        result = Document()
        if not isinstance(data, Mapping):
            issues.add_error(issue=ValidationError.bad_type("complex"), proceed=False)
            raise ScimValidationError(issues)

        data = data if isinstance(data, Document) else Document(data)
        existing = context.existing
        if existing is not None and not isinstance(existing, Document):
            existing = Document(existing)
        projection = _Projection(self._resource_type, context)
        self._validate_schemas_field(data, context, issues)

        known_keys = {"schemas"}
        for attr in self._resource_type.top_level_attrs():
            known_keys.add(attr.name.lower())
            if attr.name.lower() == "schemas":
                continue
            self._process(
                attr=attr,
                value=data.get(attr.name, Missing),
                existing_value=_get(existing, attr.name),
                location=(attr.name,),
                context=context,
                projection=projection,
                issues=issues,
                target=result,
            )

        contributing = [self._resource_type.schema.id]
        for uri, (extension, required) in self._resource_type.extensions.items():
            known_keys.add(uri.lower())
            ext_data = data.get(str(uri), Missing)
            if ext_data is Missing or ext_data is None:
                if (
                    required
                    and context.direction == Direction.REQUEST
                    and context.operation != "patch"
                ):
                    issues.add_error(
                        issue=ValidationError.missing_schema_extension(str(uri)),
                        proceed=False,
                        location=(str(uri),),
                    )
                continue
            if not isinstance(ext_data, Mapping):
                issues.add_error(
                    issue=ValidationError.bad_type("complex"),
                    proceed=False,
                    location=(str(uri),),
                )
                continue
            ext_result = Document()
            existing_ext = _get(existing, str(uri))
            for _, attr in extension.attrs:
                self._process(
                    attr=attr,
                    value=ext_data.get(attr.name, Missing),
                    existing_value=_get(existing_ext, attr.name),
                    location=(str(uri), attr.name),
                    context=context,
                    projection=projection,
                    issues=issues,
                    target=ext_result,
                )
            self._check_unknown(
                ext_data,
                {attr.name.lower() for _, attr in extension.attrs},
                (str(uri),),
                context,
                issues,
            )
            if ext_result:
                result[str(uri)] = ext_result
                contributing.append(uri)

        self._check_unknown(data, known_keys, (), context, issues)
        if issues.has_errors():
            logger.debug(
                "validation_failed",
                resource_type=self._resource_type.name,
                direction=context.direction.value,
                errors=[location for location, _ in issues.flatten()],
            )
            raise ScimValidationError(issues)

        schemas_attr = self._resource_type.get_attr("schemas")
        resource = Document()
        resource.set("schemas", [str(uri) for uri in contributing], attribute=schemas_attr)
        for key, value in result.items():
            resource.set(key, value, attribute=result.attribute(key))
        return resource

    def _validate_schemas_field(
        self, data: Document, context: ValidationContext, issues: ValidationIssues
    ) -> Optional[set[SchemaUri]]:
        schemas = data.get("schemas", Missing)
        if context.direction == Direction.RESPONSE:
            return None
        if schemas is Missing or schemas is None:
            issues.add_error(issue=ValidationError.missing(), proceed=False, location=("schemas",))
            return None
        schemas_attr = self._resource_type.get_attr("schemas")
        schema_issues = schemas_attr.validate(schemas)  # type: ignore[union-attr]
        if schema_issues.has_errors():
            issues.merge(schema_issues, location=("schemas",))
            return None
        declared = set()
        for i, item in enumerate(schemas):
            try:
                uri = SchemaUri(item)
            except ValueError:
                issues.add_error(
                    issue=ValidationError.bad_value_syntax(), proceed=False, location=("schemas", i)
                )
                continue
            if uri != self._resource_type.schema.id and uri not in self._resource_type.extensions:
                issues.add_error(
                    issue=ValidationError.unknown_schema(), proceed=False, location=("schemas", i)
                )
            declared.add(uri)
        if self._resource_type.schema.id not in declared:
            issues.add_error(
                issue=ValidationError.missing_main_schema(), proceed=False, location=("schemas",)
            )
        return declared

    @staticmethod
    def _check_unknown(
        data: Mapping,
        known: set[str],
        location: tuple,
        context: ValidationContext,
        issues: ValidationIssues,
    ) -> None:
        for key in data:
            if key.lower() in known:
                continue
            if context.strict and context.direction == Direction.REQUEST:
                issues.add_error(
                    issue=ValidationError.unknown_attribute(),
                    proceed=False,
                    location=(*location, key),
                )
            else:
                issues.add_warning(
                    issue=ValidationWarning.unknown_attribute_ignored(),
                    location=(*location, key),
                )

    def _process(
        self,
        attr: Attribute,
        value: Any,
        existing_value: Any,
        location: tuple,
        context: ValidationContext,
        projection: "_Projection",
        issues: ValidationIssues,
        target: Document,
    ) -> None:
        if context.direction == Direction.REQUEST:
            output = self._process_request(attr, value, existing_value, location, context, issues)
        else:
            output = self._process_response(attr, value, location, projection, issues)
        if output is not Missing:
            target.set(attr.name, output, attribute=attr)

    def _process_request(
        self,
        attr: Attribute,
        value: Any,
        existing_value: Any,
        location: tuple,
        context: ValidationContext,
        issues: ValidationIssues,
    ) -> Any:
        if attr.mutability == AttributeMutability.READ_ONLY:
            return existing_value
        if value is Missing or value is None or value == []:
            if attr.required:
                issues.add_error(issue=ValidationError.missing(), proceed=False, location=location)
            return Missing

        attr_issues = attr.validate(value)
        issues.merge(attr_issues, location=location)
        if attr_issues.has_errors():
            return Missing

        if isinstance(attr, Complex):
            if attr.multi_valued:
                value = [
                    self._process_complex_request(
                        attr, item, Missing, (*location, i), context, issues
                    )
                    for i, item in enumerate(value)
                ]
            else:
                value = self._process_complex_request(
                    attr, value, existing_value, location, context, issues
                )

        if (
            attr.mutability == AttributeMutability.IMMUTABLE
            and existing_value is not Missing
            and existing_value is not None
            and not _same(attr, value, existing_value)
        ):
            issues.add_error(
                issue=ValidationError.attribute_can_not_be_modified(),
                proceed=False,
                location=location,
            )
        return value

    def _process_complex_request(
        self,
        attr: Complex,
        value: Mapping,
        existing_value: Any,
        location: tuple,
        context: ValidationContext,
        issues: ValidationIssues,
    ) -> Document:
        output = Document()
        value = value if isinstance(value, Document) else Document(value)
        for _, sub_attr in attr.attrs:
            sub_value = self._process_request(
                attr=sub_attr,
                value=value.get(sub_attr.name, Missing),
                existing_value=_get(existing_value, sub_attr.name),
                location=(*location, sub_attr.name),
                context=context,
                issues=issues,
            )
            if sub_value is not Missing and sub_value is not None:
                output.set(sub_attr.name, sub_value, attribute=sub_attr)
        self._check_unknown(
            value, {name.lower() for name, _ in attr.attrs}, location, context, issues
        )
        return output

    def _process_response(
        self,
        attr: Attribute,
        value: Any,
        location: tuple,
        projection: "_Projection",
        issues: ValidationIssues,
    ) -> Any:
        if (
            attr.returned == AttributeReturn.NEVER
            or attr.mutability == AttributeMutability.WRITE_ONLY
        ):
            return Missing
        if value is Missing or value is None or value == []:
            if attr.required and attr.mutability != AttributeMutability.READ_ONLY:
                issues.add_error(issue=ValidationError.missing(), proceed=False, location=location)
            return Missing

        attr_issues = attr.validate(value)
        issues.merge(attr_issues, location=location)
        if attr_issues.has_errors() or not projection.includes(attr):
            return Missing

        if not isinstance(attr, Complex):
            return value
        items = value if attr.multi_valued else [value]
        output = []
        for i, item in enumerate(items):
            item = item if isinstance(item, Document) else Document(item)
            processed = Document()
            for _, sub_attr in attr.attrs:
                sub_location = (*location, i, sub_attr.name) if attr.multi_valued else (
                    *location,
                    sub_attr.name,
                )
                sub_value = self._process_response(
                    sub_attr, item.get(sub_attr.name, Missing), sub_location, projection, issues
                )
                if sub_value is not Missing:
                    processed.set(sub_attr.name, sub_value, attribute=sub_attr)
            output.append(processed)
        if not attr.multi_valued:
            return output[0] if output[0] else Missing
        return output


class _Projection:
    """Applies `attributes` and `excludedAttributes`, and the `returned` characteristic."""

    def __init__(self, resource_type: "ResourceType", context: ValidationContext):
        self._requested = self._resolve(resource_type, context.attributes)
        self._excluded = self._resolve(resource_type, context.excluded_attributes)
        self._has_requested = bool(context.attributes)

    @staticmethod
    def _resolve(resource_type: "ResourceType", names: Optional[Collection[str]]) -> set:
        reps = set()
        for name in names or []:
            attr = resource_type.get_attr(name.strip())
            if attr is not None:
                reps.add(attr.rep)
        return reps

    def includes(self, attr: Attribute) -> bool:
        if attr.returned == AttributeReturn.ALWAYS:
            return True
        rep = attr.rep
        parent = rep.parent if rep.is_sub_attr else None
        if self._has_requested:
            if rep in self._requested or (parent is not None and parent in self._requested):
                return True
            # parent of the requested sub-attribute
            return any(
                item.is_sub_attr and item.parent == rep for item in self._requested
            )
        if attr.returned == AttributeReturn.REQUEST:
            return False
        return rep not in self._excluded and (parent is None or parent not in self._excluded)


def _get(data: Any, key: str) -> Any:
    if not isinstance(data, Mapping):
        return Missing
    if isinstance(data, Document):
        return data.get(key, Missing)
    for k, v in data.items():
        if k.lower() == key.lower():
            return v
    return Missing


def _same(attr: Attribute, value: Any, other: Any) -> bool:
    if isinstance(attr, Complex):
        return Document({"v": value}) == Document({"v": other})
    if attr.multi_valued:
        if not isinstance(other, list) or len(value) != len(other):
            return False
        return all(
            attr.compare_key(a) == attr.compare_key(b) for a, b in zip(value, other)
        )
    return attr.compare_key(value) == attr.compare_key(other)
