from dataclasses import dataclass, field
from typing import Any, Optional

SERVICE_PROVIDER_CONFIG_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"


@dataclass(frozen=True)
class _GenericOption:
    supported: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"supported": self.supported}


@dataclass(frozen=True)
class _BulkOption(_GenericOption):
    max_operations: Optional[int] = None
    max_payload_size: Optional[int] = None

    def __post_init__(self):
        if self.supported and not all([self.max_payload_size, self.max_operations]):
            raise ValueError(
                "'max_payload_size' and 'max_operations' must be specified "
                "if bulk operations are supported"
            )

    def to_dict(self) -> dict[str, Any]:
        output = super().to_dict()
        output["maxOperations"] = self.max_operations or 0
        output["maxPayloadSize"] = self.max_payload_size or 0
        return output


@dataclass(frozen=True)
class _FilterOption(_GenericOption):
    max_results: Optional[int] = None

    def __post_init__(self):
        if self.supported and not self.max_results:
            raise ValueError("'max_results' must be specified if filtering is supported")

    def to_dict(self) -> dict[str, Any]:
        output = super().to_dict()
        output["maxResults"] = self.max_results or 0
        return output


@dataclass(frozen=True)
class _AuthenticationScheme:
    name: str
    description: str
    type: str
    spec_uri: str = ""
    documentation_uri: str = ""
    primary: bool = False

    def to_dict(self) -> dict[str, Any]:
        output: dict[str, Any] = {
            "type": self.type,
            "name": self.name,
            "description": self.description,
        }
        if self.spec_uri:
            output["specUri"] = self.spec_uri
        if self.documentation_uri:
            output["documentationUri"] = self.documentation_uri
        if self.primary:
            output["primary"] = True
        return output


@dataclass(frozen=True)
class ServiceProviderConfig:
    """
    Service provider configuration. Available fields as defined in
     [RFC-7643](https://www.rfc-editor.org/rfc/rfc7643#section-5).

    The configuration is read by the endpoint and the bulk orchestrator, so capabilities
    declared as unsupported (e.g. filtering, bulk) are rejected at request time.
    """

    documentation_uri: str = ""
    patch: _GenericOption = field(default_factory=_GenericOption)
    bulk: _BulkOption = field(default_factory=_BulkOption)
    filter: _FilterOption = field(default_factory=_FilterOption)
    change_password: _GenericOption = field(default_factory=_GenericOption)
    sort: _GenericOption = field(default_factory=_GenericOption)
    etag: _GenericOption = field(default_factory=_GenericOption)
    authentication_schemes: tuple[_AuthenticationScheme, ...] = ()

    @classmethod
    def create(
        cls,
        documentation_uri: str = "",
        patch: Optional[dict[str, Any]] = None,
        bulk: Optional[dict[str, Any]] = None,
        filter_: Optional[dict[str, Any]] = None,
        change_password: Optional[dict[str, Any]] = None,
        sort: Optional[dict[str, Any]] = None,
        etag: Optional[dict[str, Any]] = None,
        authentication_schemes: Optional[list[dict[str, Any]]] = None,
    ) -> "ServiceProviderConfig":
        """
        Creates `ServiceProviderConfig` with all values defaulted, so operations are not supported
        by default.

        Examples:
            >>> config = ServiceProviderConfig.create(
            >>>     patch={"supported": True},
            >>>     filter_={"supported": True, "max_results": 100},
            >>> )
        """
        return cls(
            documentation_uri=documentation_uri,
            patch=_GenericOption(**(patch or {})),
            bulk=_BulkOption(**(bulk or {})),
            filter=_FilterOption(**(filter_ or {})),
            change_password=_GenericOption(**(change_password or {})),
            sort=_GenericOption(**(sort or {})),
            etag=_GenericOption(**(etag or {})),
            authentication_schemes=tuple(
                _AuthenticationScheme(**item) for item in authentication_schemes or []
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Renders the `ServiceProviderConfig` resource, as returned by the
        `/ServiceProviderConfig` endpoint.
        """
        output: dict[str, Any] = {"schemas": [SERVICE_PROVIDER_CONFIG_SCHEMA]}
        if self.documentation_uri:
            output["documentationUri"] = self.documentation_uri
        output.update(
            {
                "patch": self.patch.to_dict(),
                "bulk": self.bulk.to_dict(),
                "filter": self.filter.to_dict(),
                "changePassword": self.change_password.to_dict(),
                "sort": self.sort.to_dict(),
                "etag": self.etag.to_dict(),
                "authenticationSchemes": [
                    item.to_dict() for item in self.authentication_schemes
                ],
                "meta": {"resourceType": "ServiceProviderConfig"},
            }
        )
        return output
