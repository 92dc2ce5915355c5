import uuid
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from scimcore.config import ServiceProviderConfig
from scimcore.data.document import Document
from scimcore.data.schemas import ResourceTypeFeatures
from scimcore.endpoint import ResourceEndpoint
from scimcore.error import NotFoundError, UniquenessError
from scimcore.handler import Context, ListQuery, PartialListResponse, ResourceHandler
from scimcore.registry import Registry
from scimcore.schemas import register_core_resource_types

USER = "urn:ietf:params:scim:schemas:core:2.0:User"
ENTERPRISE_USER = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"
GROUP = "urn:ietf:params:scim:schemas:core:2.0:Group"

BJENSEN = {
    "schemas": [USER, ENTERPRISE_USER],
    "externalId": "bjensen",
    "userName": "bjensen@example.com",
    "name": {
        "formatted": "Ms. Barbara J Jensen III",
        "familyName": "Jensen",
        "givenName": "Barbara",
        "middleName": "Jane",
        "honorificPrefix": "Ms.",
        "honorificSuffix": "III",
    },
    "displayName": "Babs Jensen",
    "nickName": "Babs",
    "profileUrl": "https://login.example.com/bjensen",
    "emails": [
        {"value": "bjensen@example.com", "type": "work", "primary": True},
        {"value": "babs@jensen.org", "type": "home"},
    ],
    "addresses": [
        {
            "type": "work",
            "streetAddress": "100 Universal City Plaza",
            "locality": "Hollywood",
            "region": "CA",
            "postalCode": "91608",
            "country": "US",
            "formatted": "100 Universal City Plaza\nHollywood, CA 91608 USA",
            "primary": True,
        },
    ],
    "phoneNumbers": [
        {"value": "+1 555-555-5555", "type": "work"},
        {"value": "+1 555-555-4444", "type": "mobile"},
    ],
    "userType": "Employee",
    "title": "Tour Guide",
    "preferredLanguage": "en-US",
    "locale": "en-US",
    "timezone": "America/Los_Angeles",
    "active": True,
    "password": "t1meMa$heen",
    ENTERPRISE_USER: {
        "employeeNumber": "701984",
        "costCenter": "4130",
        "organization": "Universal Studios",
        "division": "Theme Park",
        "department": "Tour Operations",
        "manager": {"value": "26118915-6090-4610-87e4-49d8ca9f808d"},
    },
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryHandler(ResourceHandler):
    """Stores resources in a dictionary. Values of the `unique` attribute can not repeat."""

    def __init__(self, unique: Optional[str] = None):
        self.resources: dict[str, dict[str, Any]] = {}
        self._unique = unique
        self.calls: list[str] = []

    def _check_unique(self, resource: Document, resource_id: Optional[str] = None) -> None:
        if self._unique is None:
            return
        value = resource.get(self._unique)
        for stored_id, stored in self.resources.items():
            if stored_id == resource_id:
                continue
            stored_value = stored.get(self._unique)
            if isinstance(value, str) and isinstance(stored_value, str):
                if value.lower() == stored_value.lower():
                    raise UniquenessError(f"{self._unique} {value!r} is already in use")

    def create(self, resource: Document, context: Context) -> dict[str, Any]:
        self.calls.append("create")
        self._check_unique(resource)
        data = resource.to_dict()
        data["id"] = str(uuid.uuid4())
        now = _now()
        data["meta"] = {"created": now, "lastModified": now}
        self.resources[data["id"]] = data
        return deepcopy(data)

    def get(self, resource_id: str, context: Context) -> Optional[dict[str, Any]]:
        self.calls.append("get")
        resource = self.resources.get(resource_id)
        return deepcopy(resource) if resource is not None else None

    def list_resources(self, query: ListQuery, context: Context) -> PartialListResponse:
        self.calls.append("list")
        return PartialListResponse(resources=[deepcopy(item) for item in self.resources.values()])

    def update(self, resource_id: str, resource: Document, context: Context) -> dict[str, Any]:
        self.calls.append("update")
        stored = self.resources.get(resource_id)
        if stored is None:
            raise NotFoundError()
        self._check_unique(resource, resource_id)
        data = resource.to_dict()
        data["id"] = resource_id
        data["meta"] = {"created": stored["meta"]["created"], "lastModified": _now()}
        self.resources[resource_id] = data
        return deepcopy(data)

    def delete(self, resource_id: str, context: Context) -> None:
        self.calls.append("delete")
        if self.resources.pop(resource_id, None) is None:
            raise NotFoundError()


@pytest.fixture
def registry():
    registry = Registry()
    register_core_resource_types(
        registry,
        user_features=ResourceTypeFeatures(
            auto_filtering=True, auto_sorting=True, etag_enabled=True
        ),
        group_features=ResourceTypeFeatures(auto_filtering=True, auto_sorting=True),
    )
    return registry


@pytest.fixture
def user_rt(registry):
    return registry.get_resource_type_by_name("User")


@pytest.fixture
def group_rt(registry):
    return registry.get_resource_type_by_name("Group")


@pytest.fixture
def config():
    return ServiceProviderConfig.create(
        patch={"supported": True},
        bulk={"supported": True, "max_operations": 10, "max_payload_size": 1048576},
        filter_={"supported": True, "max_results": 100},
        sort={"supported": True},
        etag={"supported": True},
    )


@pytest.fixture
def user_handler():
    return InMemoryHandler(unique="userName")


@pytest.fixture
def group_handler():
    return InMemoryHandler(unique="displayName")


@pytest.fixture
def endpoint(registry, config, user_handler, group_handler):
    return ResourceEndpoint(registry, {"User": user_handler, "Group": group_handler}, config)


@pytest.fixture
def bjensen_data():
    return deepcopy(BJENSEN)


@pytest.fixture
def stored_bjensen(user_rt):
    data = deepcopy(BJENSEN)
    data.pop("password")
    data["id"] = "2819c223-7f76-453a-919d-413861904646"
    data["meta"] = {
        "resourceType": "User",
        "created": "2010-01-23T04:56:22Z",
        "lastModified": "2011-05-13T04:42:34Z",
    }
    return Document(data)
