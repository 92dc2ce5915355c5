import json
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

import structlog

from scimcore.data.attrs import Attribute, AttributeMutability, Complex
from scimcore.data.document import Document, Missing
from scimcore.data.filter import equality_terms
from scimcore.data.patch_path import PatchPath
from scimcore.data.validator import Direction, ValidationContext
from scimcore.error import (
    InvalidSyntaxError,
    InvalidValueError,
    MutabilityError,
    NoTargetError,
    ScimException,
)

if TYPE_CHECKING:
    from scimcore.data.schemas import ResourceType

logger = structlog.get_logger()

PATCH_OP_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"

_OPS = ("add", "replace", "remove")


@dataclass(frozen=True)
class PatchOperation:
    """Single PATCH operation, e.g. `{"op": "add", "path": "emails", "value": [...]}`."""

    op: str
    path: Optional[str] = None
    value: Any = Missing

    @classmethod
    def from_dict(cls, data: Any) -> "PatchOperation":
        """
        Raises:
            InvalidSyntaxError: If the operation is malformed.
        """
        if not isinstance(data, Mapping):
            raise InvalidSyntaxError("patch operation must be an object")
        data = Document(data)
        op = data.get("op")
        if not isinstance(op, str) or op.lower() not in _OPS:
            raise InvalidSyntaxError(f"bad patch operation {op!r}, expected one of {_OPS}")
        path = data.get("path")
        if path is not None and not isinstance(path, str):
            raise InvalidSyntaxError(f"bad patch path {path!r}")
        value = data.get("value", Missing)
        if isinstance(value, Document):
            value = value.to_dict()
        elif isinstance(value, list):
            value = [item.to_dict() if isinstance(item, Document) else item for item in value]
        if op.lower() != "remove" and (value is Missing or value is None):
            raise InvalidValueError(f"'value' is required for {op.lower()!r} operation")
        if op.lower() == "remove" and not path:
            raise NoTargetError("'path' is required for 'remove' operation")
        return cls(op=op.lower(), path=path, value=value)

    def to_dict(self) -> dict[str, Any]:
        output: dict[str, Any] = {"op": self.op}
        if self.path is not None:
            output["path"] = self.path
        if self.value is not Missing:
            output["value"] = self.value
        return output


_Predicate = Callable[[PatchOperation, "ResourceType", Document], bool]
_Transform = Callable[[PatchOperation, "ResourceType", Document], PatchOperation]


@dataclass(frozen=True)
class PatchWorkaround:
    """
    Rewrites non-conformant PATCH operation before it is interpreted. Workarounds are
    evaluated in registration order; `proceed` tells whether the later workarounds are still
    evaluated once this one was applied.
    """

    name: str
    predicate: _Predicate
    transform: _Transform
    proceed: bool = True


def _try_parse_path(path: Optional[str], resource_type: "ResourceType") -> Optional[PatchPath]:
    if not path:
        return None
    try:
        return PatchPath.parse(path, resource_type)
    except ScimException:
        return None


def _is_simple(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool)) and value is not None


def _single_key_items(value: Any) -> Optional[list[tuple[str, Any]]]:
    items = value if isinstance(value, list) else [value]
    pairs = []
    for item in items:
        if not isinstance(item, Mapping) or len(item) != 1:
            return None
        key, item_value = next(iter(item.items()))
        if not _is_simple(item_value):
            return None
        pairs.append((key, item_value))
    return pairs or None


def _remove_with_value(op: PatchOperation, resource_type: "ResourceType", _: Document) -> bool:
    if op.op != "remove" or op.value is Missing or op.value is None or not op.path:
        return False
    patch_path = _try_parse_path(op.path, resource_type)
    return (
        patch_path is not None
        and not patch_path.has_filter
        and isinstance(patch_path.attr, Complex)
        and _single_key_items(op.value) is not None
    )


def _remove_value_to_filter(
    op: PatchOperation, resource_type: "ResourceType", _: Document
) -> PatchOperation:
    pairs = _single_key_items(op.value) or []
    expression = " or ".join(f"{key} eq {json.dumps(value)}" for key, value in pairs)
    return PatchOperation(op="remove", path=f"{op.path}[{expression}]")


def _multi_valued_simple_wrapped(
    op: PatchOperation, resource_type: "ResourceType", document: Document
) -> bool:
    if op.op == "remove":
        return False
    patch_path = _try_parse_path(op.path, resource_type)
    if patch_path is None or patch_path.has_filter:
        return False
    attr = patch_path.attr
    if isinstance(attr, Complex) or not attr.multi_valued:
        return False
    pairs = _single_key_items(op.value)
    return pairs is not None and all(key.lower() == "value" for key, _ in pairs)


def _unwrap_values(
    op: PatchOperation, resource_type: "ResourceType", document: Document
) -> PatchOperation:
    return replace(op, value=[value for _, value in _single_key_items(op.value) or []])


def _complex_simple_value(op: PatchOperation, resource_type: "ResourceType", _: Document) -> bool:
    if op.op == "remove":
        return False
    patch_path = _try_parse_path(op.path, resource_type)
    if patch_path is None or patch_path.has_filter or not isinstance(patch_path.attr, Complex):
        return False
    if patch_path.attr.attrs.get("value") is None:
        return False
    items = op.value if isinstance(op.value, list) else [op.value]
    return any(_is_simple(item) for item in items)


def _wrap_simple_values(
    op: PatchOperation, resource_type: "ResourceType", _: Document
) -> PatchOperation:
    if isinstance(op.value, list):
        value: Any = [{"value": item} if _is_simple(item) else item for item in op.value]
    else:
        value = {"value": op.value}
        patch_path = _try_parse_path(op.path, resource_type)
        if patch_path is not None and patch_path.attr.multi_valued:
            value = [value]
    return replace(op, value=value)


def _filtered_add_on_absent_entry(
    op: PatchOperation, resource_type: "ResourceType", document: Document
) -> bool:
    if op.op != "add":
        return False
    patch_path = _try_parse_path(op.path, resource_type)
    if patch_path is None or patch_path.value_path is None or not patch_path.sub_attr_name:
        return False
    if not patch_path.attr.multi_valued:
        return False
    if equality_terms(patch_path.value_path.sub_operator) is None:
        return False
    items = document.get(patch_path.attr_rep, [])
    attr = patch_path.attr
    return not any(
        patch_path.value_path.match_item(item, attr) for item in items  # type: ignore[arg-type]
    )


def _add_entry(op: PatchOperation, resource_type: "ResourceType", _: Document) -> PatchOperation:
    patch_path = PatchPath.parse(op.path, resource_type)  # type: ignore[arg-type]
    entry = dict(equality_terms(patch_path.value_path.sub_operator) or {})  # type: ignore
    entry[patch_path.sub_attr_name] = op.value  # type: ignore[index]
    return PatchOperation(op="add", path=str(patch_path.attr_rep), value=[entry])


DEFAULT_WORKAROUNDS = (
    PatchWorkaround(
        name="ms_azure_remove_with_value",
        predicate=_remove_with_value,
        transform=_remove_value_to_filter,
    ),
    PatchWorkaround(
        name="ms_azure_multi_valued_simple_value",
        predicate=_multi_valued_simple_wrapped,
        transform=_unwrap_values,
    ),
    PatchWorkaround(
        name="ms_azure_complex_simple_value",
        predicate=_complex_simple_value,
        transform=_wrap_simple_values,
    ),
    PatchWorkaround(
        name="ms_azure_filtered_add",
        predicate=_filtered_add_on_absent_entry,
        transform=_add_entry,
        proceed=False,
    ),
)


def parse_patch_request(body: Any) -> list[PatchOperation]:
    """
    Parses `PatchOp` message (RFC-7644, section 3.5.2).

    Raises:
        InvalidSyntaxError: If the message is malformed.
    """
    if not isinstance(body, Mapping):
        raise InvalidSyntaxError("PATCH request body must be an object")
    body = Document(body)
    schemas = body.get("schemas")
    if not isinstance(schemas, list) or PATCH_OP_SCHEMA.lower() not in [
        str(item).lower() for item in schemas
    ]:
        raise InvalidSyntaxError(f"'schemas' must contain {PATCH_OP_SCHEMA!r}")
    operations = body.get("Operations")
    if not isinstance(operations, list) or not operations:
        raise InvalidSyntaxError("'Operations' must be non-empty list")
    return [PatchOperation.from_dict(item) for item in operations]


class PatchEngine:
    """
    Applies PATCH operations to the resource. Operations are applied to the copy of the
    resource, which is validated once all operations succeed, so the patch is applied
    entirely or not at all.

    Args:
        workarounds: Workarounds rewriting non-conformant operations, evaluated in the
            provided order. By default, the MS Azure workarounds are used.
    """

    def __init__(self, workarounds: Optional[Iterable[PatchWorkaround]] = None):
        self._workarounds = list(DEFAULT_WORKAROUNDS if workarounds is None else workarounds)

    @property
    def workarounds(self) -> list[PatchWorkaround]:
        return list(self._workarounds)

    def register_workaround(self, workaround: PatchWorkaround) -> None:
        self._workarounds.append(workaround)

    def apply(
        self,
        resource_type: "ResourceType",
        document: Mapping[str, Any],
        operations: Iterable[Any],
    ) -> Document:
        """
        Applies the `operations` to the `document` and returns the validated result. The
        `document` itself is never changed.

        Raises:
            ScimException: If any operation fails, or the result does not conform to the
                resource type schemas.
        """
        original = document if isinstance(document, Document) else Document(document)
        working = original.copy()
        if "schemas" not in working:
            working["schemas"] = [str(resource_type.schema.id)]
        for item in operations:
            operation = item if isinstance(item, PatchOperation) else PatchOperation.from_dict(item)
            operation = self._fix(operation, resource_type, working)
            self._apply(operation, resource_type, working)
        return resource_type.validator.validate(
            working,
            ValidationContext(direction=Direction.REQUEST, operation="patch", existing=original),
        )

    def _fix(
        self, operation: PatchOperation, resource_type: "ResourceType", document: Document
    ) -> PatchOperation:
        for workaround in self._workarounds:
            if not workaround.predicate(operation, resource_type, document):
                continue
            fixed = workaround.transform(operation, resource_type, document)
            logger.debug(
                "patch_workaround_applied",
                workaround=workaround.name,
                operation=operation.to_dict(),
                fixed=fixed.to_dict(),
            )
            operation = fixed
            if not workaround.proceed:
                break
        return operation

    def _apply(
        self, operation: PatchOperation, resource_type: "ResourceType", document: Document
    ) -> None:
        if operation.path is None:
            self._apply_without_path(operation, resource_type, document)
            return
        path = PatchPath.parse(operation.path, resource_type)
        if path.has_filter:
            self._apply_filtered(operation, path, document)
        else:
            self._apply_plain(operation, path, document)

    def _apply_without_path(
        self, operation: PatchOperation, resource_type: "ResourceType", document: Document
    ) -> None:
        if not isinstance(operation.value, Mapping):
            raise InvalidValueError(f"{operation.op!r} without path requires object value")
        for key, value in operation.value.items():
            if key.lower() == "schemas":
                continue
            extension = resource_type.get_extension(key) if ":" in key else None
            if extension is not None and isinstance(value, Mapping):
                for ext_key, ext_value in value.items():
                    self._apply(
                        PatchOperation(operation.op, f"{extension.id}:{ext_key}", ext_value),
                        resource_type,
                        document,
                    )
                continue
            if resource_type.get_attr(key) is None:
                # unknown attributes are left for the validator
                document[key] = value
                continue
            self._apply(PatchOperation(operation.op, key, value), resource_type, document)

    def _apply_plain(self, operation: PatchOperation, path: PatchPath, document: Document) -> None:
        attr, parent = path.attr, path.parent_attr
        current = document.get(path.attr_rep, Missing)
        _check_mutability(operation.op, attr, current)
        if parent is not None:
            _check_mutability(operation.op, parent, Missing, parent=True)

        if operation.op == "remove":
            if current is not Missing:
                del document[path.attr_rep]
            return

        if parent is not None and parent.multi_valued:
            items = document.get(path.attr_rep.parent, Missing)
            if not isinstance(items, list) or not items:
                raise NoTargetError(f"no values of {str(path.attr_rep.parent)!r} to modify")
            for item in items:
                if isinstance(item, Document):
                    item[attr.name] = operation.value
            return

        value = operation.value
        if attr.multi_valued and not isinstance(value, list):
            value = [value]
        if operation.op == "replace" or current is Missing or current is None:
            if isinstance(attr, Complex) and not attr.multi_valued and operation.op == "replace":
                value = _merge(current, value)
            document.set(path.attr_rep, value, attribute=attr)
            return

        # add to existing value
        if attr.multi_valued:
            merged = list(current)
            for item in _as_documents(value):
                if item not in merged:
                    merged.append(item)
            document.set(path.attr_rep, merged, attribute=attr)
        elif isinstance(attr, Complex):
            document.set(path.attr_rep, _merge(current, value), attribute=attr)
        else:
            document.set(path.attr_rep, value, attribute=attr)

    def _apply_filtered(
        self, operation: PatchOperation, path: PatchPath, document: Document
    ) -> None:
        attr: Complex = path.attr  # type: ignore[assignment]
        value_path = path.value_path
        sub_attr_name = path.sub_attr_name
        current = document.get(path.attr_rep, Missing)
        if current is Missing or current is None:
            items: list = []
        else:
            items = current if isinstance(current, list) else [current]
        matched = [item for item in items if value_path.match_item(item, attr)]  # type: ignore

        target = path.target_attr
        if sub_attr_name:
            for item in matched or [Missing]:
                _check_mutability(
                    operation.op, target, item.get(sub_attr_name, Missing) if item else Missing
                )
        _check_mutability(operation.op, attr, Missing, parent=True)

        if not matched:
            terms = equality_terms(value_path.sub_operator)  # type: ignore[union-attr]
            if operation.op != "add" or terms is None or not attr.multi_valued:
                raise NoTargetError(f"no value of {str(path.attr_rep)!r} matches {path}")
            entry = Document(terms)
            if sub_attr_name:
                entry[sub_attr_name] = operation.value
            elif isinstance(operation.value, Mapping):
                entry = _merge(entry, operation.value)
            else:
                raise InvalidValueError(f"value of {path} must be an object")
            document.set(path.attr_rep, [*items, entry], attribute=attr)
            return

        if operation.op == "remove":
            if sub_attr_name:
                for item in matched:
                    if sub_attr_name in item:
                        del item[sub_attr_name]
                return
            remaining = [item for item in items if not any(item is m for m in matched)]
            if remaining and attr.multi_valued:
                document.set(path.attr_rep, remaining, attribute=attr)
            else:
                del document[path.attr_rep]
            return

        if sub_attr_name:
            for item in matched:
                item[sub_attr_name] = operation.value
            return
        if not isinstance(operation.value, Mapping):
            raise InvalidValueError(f"value of {path} must be an object")
        output = []
        for item in items:
            if any(item is m for m in matched):
                item = _merge(item, operation.value) if operation.op == "add" else Document(
                    operation.value
                )
            output.append(item)
        document.set(path.attr_rep, output if attr.multi_valued else output[0], attribute=attr)


def _as_documents(value: list) -> list:
    return [Document(item) if isinstance(item, Mapping) else item for item in value]


def _merge(current: Any, value: Any) -> Any:
    if not isinstance(value, Mapping):
        return value
    output = current.copy() if isinstance(current, Document) else Document()
    for key, item in value.items():
        output[key] = item
    return output


def _check_mutability(op: str, attr: Attribute, current: Any, parent: bool = False) -> None:
    if attr.mutability == AttributeMutability.READ_ONLY:
        raise MutabilityError(f"attribute {attr.full_name!r} is read-only")
    if parent:
        return
    has_value = current is not Missing and current is not None and current != []
    if op == "remove" and attr.required:
        raise MutabilityError(f"required attribute {attr.full_name!r} can not be removed")
    if attr.mutability == AttributeMutability.IMMUTABLE and has_value:
        raise MutabilityError(f"immutable attribute {attr.full_name!r} can not be modified")
