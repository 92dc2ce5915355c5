from typing import Optional

from scimcore.data.schemas import ResourceType, ResourceTypeFeatures
from scimcore.registry import Registry
from scimcore.schemas.group import GROUP_RESOURCE_TYPE, GROUP_SCHEMA, GROUP_SCHEMA_URI
from scimcore.schemas.user import (
    ENTERPRISE_USER_SCHEMA,
    ENTERPRISE_USER_SCHEMA_URI,
    USER_RESOURCE_TYPE,
    USER_SCHEMA,
    USER_SCHEMA_URI,
    USER_VALIDATORS,
)


def register_core_resource_types(
    registry: Registry,
    user_features: Optional[ResourceTypeFeatures] = None,
    group_features: Optional[ResourceTypeFeatures] = None,
) -> tuple[ResourceType, ResourceType]:
    """
    Registers `User` (with `EnterpriseUser` extension) and `Group` resource types, as defined
    in RFC-7643, sections 4 and 8.7, and returns them.
    """
    user = registry.register_resource_type(
        USER_RESOURCE_TYPE,
        USER_SCHEMA,
        ENTERPRISE_USER_SCHEMA,
        features=user_features,
        validators=USER_VALIDATORS,
    )
    group = registry.register_resource_type(
        GROUP_RESOURCE_TYPE, GROUP_SCHEMA, features=group_features
    )
    return user, group


__all__ = [
    "ENTERPRISE_USER_SCHEMA",
    "ENTERPRISE_USER_SCHEMA_URI",
    "GROUP_RESOURCE_TYPE",
    "GROUP_SCHEMA",
    "GROUP_SCHEMA_URI",
    "USER_RESOURCE_TYPE",
    "USER_SCHEMA",
    "USER_SCHEMA_URI",
    "USER_VALIDATORS",
    "register_core_resource_types",
]
