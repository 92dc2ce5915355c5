from scimcore.data.attrs import (
    Any_,
    Attribute,
    Attrs,
    Binary,
    Boolean,
    BoundedAttrs,
    Complex,
    DateTime,
    Decimal,
    Integer,
    Reference,
    String,
    attribute_from_dict,
)
from scimcore.data.document import Document, Missing
from scimcore.data.filter import Filter
from scimcore.data.patch_path import PatchPath
from scimcore.data.schemas import ResourceType, ResourceTypeFeatures, Schema
from scimcore.data.sorter import Sorter
from scimcore.data.validator import Direction, SchemaValidator, ValidationContext

__all__ = [
    "Any_",
    "Attribute",
    "Attrs",
    "Binary",
    "Boolean",
    "BoundedAttrs",
    "Complex",
    "DateTime",
    "Decimal",
    "Integer",
    "Reference",
    "String",
    "attribute_from_dict",
    "Document",
    "Missing",
    "Filter",
    "PatchPath",
    "ResourceType",
    "ResourceTypeFeatures",
    "Schema",
    "Sorter",
    "Direction",
    "SchemaValidator",
    "ValidationContext",
]
