import base64
import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import structlog

from scimcore.config import ServiceProviderConfig
from scimcore.data.document import Document
from scimcore.error import (
    InvalidSyntaxError,
    InvalidValueError,
    NotModified,
    PreconditionFailedError,
)

if TYPE_CHECKING:
    from scimcore.data.schemas import ResourceType

logger = structlog.get_logger()

IF_MATCH = "If-Match"
IF_NONE_MATCH = "If-None-Match"
_WEAK = "W/"


@dataclass(frozen=True)
class ETag:
    """
    Entity tag, as specified in RFC-7232. Comparison is weak, so `W/"1"` matches `"1"`.
    """

    tag: str
    weak: bool = True

    @classmethod
    def parse(cls, value: str) -> "ETag":
        """
        Parses the entity tag. Unquoted values are accepted and considered weak.

        Raises:
            InvalidValueError: If the value has irregular number of quotes.
        """
        value = value.strip()
        quotes = value.count('"')
        if quotes not in (0, 2):
            raise InvalidValueError(f"bad entity tag {value!r}")
        weak = value.startswith(_WEAK) or not value.startswith('"')
        if value.startswith(_WEAK):
            value = value[len(_WEAK) :]
        return cls(tag=value.strip('"'), weak=weak)

    def matches(self, other: "ETag") -> bool:
        return self.tag == other.tag

    def __str__(self) -> str:
        return f'{_WEAK if self.weak else ""}"{self.tag}"'


def enabled(config: ServiceProviderConfig, resource_type: "ResourceType") -> bool:
    return config.etag.supported and resource_type.features.etag_enabled


def compute(resource: Mapping[str, Any]) -> ETag:
    """
    Returns the version of the resource. It is `meta.version` if the handler set it, or
    base64-encoded SHA-1 digest of the resource otherwise.
    """
    document = resource if isinstance(resource, Document) else Document(resource)
    version = document.get("meta.version")
    if isinstance(version, str) and version.strip():
        return ETag.parse(version)
    data = document.to_dict()
    meta = data.get("meta")
    if isinstance(meta, dict):
        data["meta"] = {k: v for k, v in meta.items() if k.lower() != "version"}
    payload = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha1(payload.encode("utf-8")).digest()
    return ETag(tag=base64.b64encode(digest).decode("ascii"), weak=True)


def _header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    for key, value in (headers or {}).items():
        if key.lower() == name.lower() and value and value.strip():
            return value
    return None


def _parse_list(value: str) -> list[ETag]:
    return [ETag.parse(item) for item in value.split(",") if item.strip()]


def check_preconditions(
    headers: Optional[Mapping[str, str]], current: Mapping[str, Any], safe: bool = True
) -> None:
    """
    Checks `If-Match` and `If-None-Match` headers against the current version of the
    resource.

    Raises:
        InvalidSyntaxError: If both headers are present, since they are mutually exclusive.
        PreconditionFailedError: If `If-Match` does not match the current version.
        NotModified: If `If-None-Match` matches the current version of the resource read
            with safe method (GET). For other methods, `PreconditionFailedError` is raised.
    """
    if_match = _header(headers, IF_MATCH)
    if_none_match = _header(headers, IF_NONE_MATCH)
    if if_match is None and if_none_match is None:
        return
    if if_match is not None and if_none_match is not None:
        raise InvalidSyntaxError(
            f"'{IF_MATCH}' and '{IF_NONE_MATCH}' headers are mutually exclusive"
        )
    version = compute(current)
    if if_none_match is not None:
        if if_none_match.strip() == "*" or any(
            version.matches(tag) for tag in _parse_list(if_none_match)
        ):
            if safe:
                raise NotModified()
            raise PreconditionFailedError(f"resource version matches {if_none_match}")
        return
    if if_match.strip() == "*":  # type: ignore[union-attr]
        return
    if not any(version.matches(tag) for tag in _parse_list(if_match)):  # type: ignore[arg-type]
        logger.info("etag_mismatch", expected=if_match, current=str(version))
        raise PreconditionFailedError(f"resource has changed, current version is {version}")
