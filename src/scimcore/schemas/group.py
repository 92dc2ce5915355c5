from scimcore.schemas.definition import attribute, resource_type, schema

GROUP_SCHEMA_URI = "urn:ietf:params:scim:schemas:core:2.0:Group"

GROUP_SCHEMA = schema(
    uri=GROUP_SCHEMA_URI,
    name="Group",
    description="Group",
    attributes=[
        attribute(
            "displayName",
            description="A human-readable name for the Group.",
            required=True,
        ),
        attribute(
            "members",
            "complex",
            "A list of members of the Group.",
            multiValued=True,
            sub_attributes=[
                attribute(
                    "value",
                    description="Identifier of the member of this Group.",
                    mutability="immutable",
                ),
                attribute(
                    "$ref",
                    "reference",
                    "The URI corresponding to a SCIM resource that is a member of this Group.",
                    referenceTypes=["User", "Group"],
                    mutability="immutable",
                ),
                attribute(
                    "display",
                    description="A human-readable name, primarily used for display.",
                ),
                attribute(
                    "type",
                    description="A label indicating the type of resource, e.g., 'User' or 'Group'.",
                    canonicalValues=["User", "Group"],
                    mutability="immutable",
                ),
            ],
        ),
    ],
)

GROUP_RESOURCE_TYPE = resource_type(
    name="Group",
    endpoint="/Groups",
    schema_uri=GROUP_SCHEMA_URI,
    description="Group",
)
