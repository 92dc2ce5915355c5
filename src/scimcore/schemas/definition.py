from typing import Any, Optional

_DEFAULTS = {
    "multiValued": False,
    "required": False,
    "caseExact": False,
    "mutability": "readWrite",
    "returned": "default",
    "uniqueness": "none",
}


def attribute(
    name: str,
    type_: str = "string",
    description: str = "",
    sub_attributes: Optional[list[dict[str, Any]]] = None,
    **characteristics: Any,
) -> dict[str, Any]:
    """
    Builds the attribute definition, as specified in RFC-7643, section 7. Characteristics
    not provided are set to their defaults.

    Examples:
        >>> attribute("userName", required=True, uniqueness="server")
    """
    output: dict[str, Any] = {"name": name, "type": type_, "description": description}
    output.update(_DEFAULTS)
    output.update(characteristics)
    if type_ == "complex":
        output["subAttributes"] = sub_attributes or []
    return output


def multi_valued_sub_attributes(
    value_type: str = "string",
    types: Optional[list[str]] = None,
    value_description: str = "",
    **value_characteristics: Any,
) -> list[dict[str, Any]]:
    """Sub-attributes shared by multi-valued attributes, e.g. `emails` or `phoneNumbers`."""
    type_ = attribute("type", description="A label indicating the attribute's function.")
    if types:
        type_["canonicalValues"] = types
    return [
        attribute("value", value_type, value_description, **value_characteristics),
        attribute("display", description="A human-readable name, primarily used for display."),
        type_,
        attribute(
            "primary",
            "boolean",
            "A Boolean value indicating the 'primary' or preferred attribute value.",
        ),
    ]


def schema(uri: str, name: str, description: str, attributes: list[dict[str, Any]]) -> dict:
    return {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:Schema"],
        "id": uri,
        "name": name,
        "description": description,
        "attributes": attributes,
    }


def resource_type(
    name: str,
    endpoint: str,
    schema_uri: str,
    description: str = "",
    extensions: Optional[dict[str, bool]] = None,
) -> dict[str, Any]:
    output: dict[str, Any] = {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:ResourceType"],
        "id": name,
        "name": name,
        "endpoint": endpoint,
        "description": description,
        "schema": schema_uri,
    }
    if extensions:
        output["schemaExtensions"] = [
            {"schema": uri, "required": required} for uri, required in extensions.items()
        ]
    return output
