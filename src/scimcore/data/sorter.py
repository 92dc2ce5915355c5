from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Iterable, Optional

from scimcore.data.attrs import Attribute, Complex
from scimcore.data.document import Document, Missing
from scimcore.error import InvalidValueError
from scimcore.identifiers import AttrRep, AttrRepFactory

if TYPE_CHECKING:
    from scimcore.data.schemas import ResourceType


class Sorter:
    """
    Sorter implementing sorting logic, as specified in RFC-7644.

    Values are ordered by their comparison keys (see `Attribute.compare_key`), so
    case-sensitivity and PRECIS profile of strings is respected, date-times are ordered
    chronologically, and numbers numerically. Resources missing the attribute are placed
    after all the others, regardless of the sorting direction. Sorting is stable.

    Args:
        attr_rep: The representation of the attribute by which the data should be sorted.
        asc: If set to `True`, it enables ascending sorting. Descending otherwise.
    """

    def __init__(self, attr_rep: AttrRep, asc: bool = True):
        self._attr_rep = attr_rep
        self._asc = asc

    @classmethod
    def from_query(
        cls, sort_by: str, sort_order: Optional[str], resource_type: "ResourceType"
    ) -> "Sorter":
        """
        Creates the sorter from `sortBy` and `sortOrder` query parameters.

        Raises:
            InvalidValueError: If `sortBy` does not refer to known attribute, or `sortOrder`
                is neither `ascending` nor `descending`.
        """
        try:
            attr_rep = AttrRepFactory.deserialize(sort_by)
        except (TypeError, ValueError):
            raise InvalidValueError(f"bad 'sortBy' value {sort_by!r}")
        if resource_type.get_attr(attr_rep) is None:
            raise InvalidValueError(f"unknown 'sortBy' attribute {sort_by!r}")
        if sort_order is not None and sort_order.lower() not in ("ascending", "descending"):
            raise InvalidValueError(f"bad 'sortOrder' value {sort_order!r}")
        return cls(attr_rep, asc=sort_order is None or sort_order.lower() == "ascending")

    @property
    def attr_rep(self) -> AttrRep:
        return self._attr_rep

    @property
    def asc(self) -> bool:
        return self._asc

    def __call__(
        self, data: Iterable[Mapping[str, Any]], resource_type: "ResourceType"
    ) -> list[Any]:
        """
        Sorts the provided resources. A multi-valued complex attribute is sorted by the value of
        "primary" item, or the first `value`, if no item is primary.

        Examples:
            >>> sorter = Sorter(attr_rep=AttrRep("userName"), asc=False)
            >>> sorter([{"userName": "a_user"}, {}, {"userName": "b_user"}], user)
            [{"userName": "b_user"}, {"userName": "a_user"}, {}]
        """
        attr = resource_type.get_attr(self._attr_rep)
        present, missing = [], []
        for item in data:
            key = self._key(item, attr)
            if key is None:
                missing.append(item)
            else:
                present.append((key, item))
        try:
            present.sort(key=lambda pair: pair[0], reverse=not self._asc)
        except TypeError:
            # incomparable keys, e.g. mixed types of untyped values
            present.sort(key=lambda pair: str(pair[0]), reverse=not self._asc)
        return [item for _, item in present] + missing

    @staticmethod
    def _key(item: Mapping[str, Any], attr: Optional[Attribute]) -> Any:
        if attr is None or not isinstance(item, Mapping):
            return None
        document = item if isinstance(item, Document) else Document(item)
        value = document.get(attr.rep, Missing)
        if value is Missing or value is None:
            return None
        if isinstance(attr, Complex):
            value_attr = attr.attrs.get("value")
            if value_attr is None or not isinstance(value, list):
                return None
            entries = [entry for entry in value if isinstance(entry, Mapping)]
            primary = [entry for entry in entries if entry.get("primary") is True]
            for entry in primary + entries:
                if entry.get("value") is not None:
                    return value_attr.compare_key(entry["value"])
            return None
        if isinstance(value, list):
            value = value[0] if value else None
        return attr.compare_key(value) if value is not None else None
