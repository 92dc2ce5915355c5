from collections.abc import Mapping, MutableMapping
from typing import Any, Iterator, Optional, Union

from scimcore.data.attrs import Attribute
from scimcore.identifiers import AttrRep, BoundedAttrRep

_Key = Union[str, AttrRep]


class _Missing:
    def __bool__(self):
        return False

    def __repr__(self):
        return "Missing"


Missing = _Missing()
"""Marker of a value absent from a document. Unlike `None`, it is never stored."""


def _normalize(value: Any) -> Any:
    if isinstance(value, Document):
        return value
    if isinstance(value, Mapping):
        return Document(value)
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    return value


def _parts(key: _Key) -> list[str]:
    if isinstance(key, BoundedAttrRep):
        parts = [str(key.schema)] if key.extension else []
        parts.append(key.attr)
        if key.is_sub_attr:
            parts.append(key.sub_attr)
        return parts
    if isinstance(key, AttrRep):
        return [str(part) for part in key.location]
    if not isinstance(key, str):
        raise KeyError(key)
    if ":" in key:
        return [key]
    if "." in key:
        return key.split(".", 1)
    return [key]


class Document(MutableMapping):
    """
    Mutable, order-preserving, case-insensitive mapping representing a SCIM resource (or a
    complex value of it). Nested mappings are stored as documents and every key may be
    tagged with the `Attribute` it was produced for, so consumers do not need to resolve
    the metadata again.

    Keys can be:
        - attribute names, or `attr.sub_attr` paths,
        - `BoundedAttrRep`, which resolves schema extension namespaces,
        - any string containing `:`, used as is, e.g. schema extension URIs or unknown keys.

    Examples:
        >>> doc = Document({"name": {"givenName": "Arkadiusz"}})
        >>> doc["NAME.givenname"]
        'Arkadiusz'
        >>> doc[resource_type.attrs.name__familyName] = "Pajor"
        >>> doc["urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"] = {}
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        self._values: dict[str, Any] = {}
        self._keys: dict[str, str] = {}
        self._attrs: dict[str, Attribute] = {}
        for key, value in (data or {}).items():
            if not isinstance(key, str):
                raise TypeError(f"document keys must be strings, got {key!r}")
            self._store(key, _normalize(value))

    def _store(self, key: str, value: Any, attribute: Optional[Attribute] = None) -> None:
        lower = key.lower()
        if lower not in self._keys:
            # identifiers are case-insensitive str subclasses, plain dicts must get plain keys
            self._keys[lower] = str(key)
        self._values[lower] = value
        if attribute is not None:
            self._attrs[lower] = attribute

    def _parent(self, parts: list[str], create: bool = False) -> "Document":
        current = self
        for part in parts[:-1]:
            value = current._values.get(part.lower(), Missing)
            if value is Missing and create:
                value = Document()
                current._store(part, value)
            if not isinstance(value, Document):
                raise KeyError(part)
            current = value
        return current

    def __getitem__(self, key: _Key) -> Any:
        parts = _parts(key)
        current: Any = self
        for i, part in enumerate(parts):
            if isinstance(current, list) and i > 0:
                # sub-attribute of multi-valued complex attribute
                values = [
                    item[part] for item in current if isinstance(item, Document) and part in item
                ]
                if not values:
                    raise KeyError(key)
                return values
            if not isinstance(current, Document):
                raise KeyError(key)
            current = current._values.get(part.lower(), Missing)
            if current is Missing:
                raise KeyError(key)
        return current

    def __setitem__(self, key: _Key, value: Any) -> None:
        self.set(key, value)

    def set(self, key: _Key, value: Any, attribute: Optional[Attribute] = None) -> None:
        """Sets the value, optionally tagging the key with the `Attribute` it belongs to."""
        parts = _parts(key)
        parent = self._parent(parts, create=True)
        parent._store(parts[-1], _normalize(value), attribute)

    def __delitem__(self, key: _Key) -> None:
        parts = _parts(key)
        container: Any = self
        for part in parts[:-1]:
            if not isinstance(container, Document) or part.lower() not in container._values:
                raise KeyError(key)
            container = container._values[part.lower()]
        last = parts[-1].lower()
        if isinstance(container, list):
            # sub-attribute of multi-valued complex attribute, removed from every item
            items = [
                item
                for item in container
                if isinstance(item, Document) and last in item._values
            ]
            if not items:
                raise KeyError(key)
            for item in items:
                item._remove(last)
            return
        if not isinstance(container, Document) or last not in container._values:
            raise KeyError(key)
        container._remove(last)

    def _remove(self, lower: str) -> None:
        del self._values[lower]
        del self._keys[lower]
        self._attrs.pop(lower, None)

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys.values())

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: object) -> bool:
        try:
            self[key]  # type: ignore[index]
        except KeyError:
            return False
        return True

    def attribute(self, key: _Key) -> Optional[Attribute]:
        """Returns the `Attribute` the value under `key` is tagged with, if any."""
        parts = _parts(key)
        try:
            parent = self._parent(parts)
        except KeyError:
            return None
        return parent._attrs.get(parts[-1].lower())

    def to_dict(self) -> dict[str, Any]:
        """Converts the document to plain, JSON-serializable dictionary."""
        return {self._keys[lower]: _to_plain(value) for lower, value in self._values.items()}

    def copy(self) -> "Document":
        """Deep copy of the document. `Attribute` tags are shared, not copied."""
        copy = Document()
        for lower, value in self._values.items():
            copy._store(self._keys[lower], _copy(value), self._attrs.get(lower))
        return copy

    def __copy__(self) -> "Document":
        return self.copy()

    def __deepcopy__(self, memo: dict) -> "Document":
        return self.copy()

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Mapping):
            return False
        if not isinstance(other, Document):
            other = Document(other)
        if self._values.keys() != other._values.keys():
            return False
        return all(self._values[key] == other._values[key] for key in self._values)

    def __ne__(self, other: Any) -> bool:
        return not self.__eq__(other)

    def __repr__(self) -> str:
        return f"Document({self.to_dict()!r})"


def _to_plain(value: Any) -> Any:
    if isinstance(value, Document):
        return value.to_dict()
    if isinstance(value, list):
        return [_to_plain(item) for item in value]
    return value


def _copy(value: Any) -> Any:
    if isinstance(value, Document):
        return value.copy()
    if isinstance(value, list):
        return [_copy(item) for item in value]
    return value
