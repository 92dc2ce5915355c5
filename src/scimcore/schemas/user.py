import re
import zoneinfo

import iso3166
import phonenumbers

from scimcore.error import ValidationError, ValidationIssues, ValidationWarning
from scimcore.schemas.definition import (
    attribute,
    multi_valued_sub_attributes,
    resource_type,
    schema,
)

USER_SCHEMA_URI = "urn:ietf:params:scim:schemas:core:2.0:User"
ENTERPRISE_USER_SCHEMA_URI = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"

_LANGUAGE_RANGE = r"(?:[a-z]{2,3}(?:-[A-Z]{2})?|\*)(?:\s*;\s*q=[01](?:\.[0-9]{1,3})?)?"
_ACCEPT_LANGUAGE_REGEX = re.compile(rf"\s*{_LANGUAGE_RANGE}(?:\s*,\s*{_LANGUAGE_RANGE})*\s*")


def _validate_preferred_language(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    if _ACCEPT_LANGUAGE_REGEX.fullmatch(value) is None:
        issues.add_error(
            issue=ValidationError.bad_value_syntax(),
            proceed=True,
        )
    return issues


_LANGUAGE_TAG_REGEX = re.compile(
    r"[A-Za-z]{2,3}(-[A-Za-z]{4})?(-([A-Za-z]{2}|[0-9]{3}))?"
    r"(-([A-Za-z0-9]{5,8}|[0-9][A-Za-z0-9]{3}))*"
)


def _validate_locale(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    if _LANGUAGE_TAG_REGEX.fullmatch(value.replace("_", "-")) is None:
        issues.add_error(
            issue=ValidationError.bad_value_syntax(),
            proceed=True,
        )
    return issues


def _validate_timezone(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    try:
        zoneinfo.ZoneInfo(value)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        issues.add_error(
            issue=ValidationError.bad_value_content(),
            proceed=True,
        )
    return issues


_EMAIL_REGEX = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def _validate_email(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    if _EMAIL_REGEX.fullmatch(value) is None:
        issues.add_error(
            issue=ValidationError.bad_value_syntax(),
            proceed=True,
        )
    return issues


def _validate_phone_number(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    try:
        phonenumbers.parse(value, _check_region=False)
    except phonenumbers.NumberParseException:
        issues.add_warning(issue=ValidationWarning.unexpected_content("not a valid phone number"))
    return issues


def _validate_country(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    if iso3166.countries_by_alpha2.get(value.upper()) is None:
        issues.add_error(issue=ValidationError.bad_value_content(), proceed=True)
    return issues


USER_SCHEMA = schema(
    uri=USER_SCHEMA_URI,
    name="User",
    description="User Account",
    attributes=[
        attribute(
            "userName",
            description=(
                "Unique identifier for the User, typically used by the user to directly "
                "authenticate to the service provider. Each User MUST include a non-empty "
                "userName value."
            ),
            required=True,
            uniqueness="server",
        ),
        attribute(
            "name",
            "complex",
            "The components of the user's real name.",
            sub_attributes=[
                attribute("formatted", description="The full name, formatted for display."),
                attribute("familyName", description="The family name of the User."),
                attribute("givenName", description="The given name of the User."),
                attribute("middleName", description="The middle name(s) of the User."),
                attribute("honorificPrefix", description="The honorific prefix(es)."),
                attribute("honorificSuffix", description="The honorific suffix(es)."),
            ],
        ),
        attribute("displayName", description="The name of the User, suitable for display."),
        attribute("nickName", description="The casual way to address the user."),
        attribute(
            "profileUrl",
            "reference",
            "A fully qualified URL pointing to a page representing the User's online profile.",
            referenceTypes=["external"],
        ),
        attribute("title", description="The user's title, such as 'Vice President'."),
        attribute("userType", description="Used to identify the relationship of the user."),
        attribute(
            "preferredLanguage",
            description="Indicates the User's preferred written or spoken language.",
        ),
        attribute("locale", description="Used to indicate the User's default location."),
        attribute("timezone", description="The User's time zone in the 'Olson' format."),
        attribute("active", "boolean", "A Boolean value indicating the User's status."),
        attribute(
            "password",
            description="The User's cleartext password.",
            mutability="writeOnly",
            returned="never",
        ),
        attribute(
            "emails",
            "complex",
            "Email addresses for the user.",
            multiValued=True,
            sub_attributes=multi_valued_sub_attributes(
                types=["work", "home", "other"], value_description="Email address."
            ),
        ),
        attribute(
            "phoneNumbers",
            "complex",
            "Phone numbers for the User.",
            multiValued=True,
            sub_attributes=multi_valued_sub_attributes(
                types=["work", "home", "mobile", "fax", "pager", "other"],
                value_description="Phone number of the User.",
            ),
        ),
        attribute(
            "ims",
            "complex",
            "Instant messaging addresses for the User.",
            multiValued=True,
            sub_attributes=multi_valued_sub_attributes(
                types=["aim", "gtalk", "icq", "xmpp", "msn", "skype", "qq", "yahoo"],
                value_description="Instant messaging address for the User.",
            ),
        ),
        attribute(
            "photos",
            "complex",
            "URLs of photos of the User.",
            multiValued=True,
            sub_attributes=multi_valued_sub_attributes(
                "reference",
                types=["photo", "thumbnail"],
                value_description="URL of a photo of the User.",
                referenceTypes=["external"],
            ),
        ),
        attribute(
            "addresses",
            "complex",
            "A physical mailing address for this User.",
            multiValued=True,
            sub_attributes=[
                attribute("formatted", description="The full mailing address."),
                attribute("streetAddress", description="The full street address component."),
                attribute("locality", description="The city or locality component."),
                attribute("region", description="The state or region component."),
                attribute("postalCode", description="The zip code or postal code component."),
                attribute("country", description="The country name component."),
                attribute(
                    "type",
                    description="A label indicating the attribute's function.",
                    canonicalValues=["work", "home", "other"],
                ),
                attribute(
                    "primary",
                    "boolean",
                    "A Boolean value indicating the 'primary' or preferred address.",
                ),
            ],
        ),
        attribute(
            "groups",
            "complex",
            "A list of groups to which the user belongs.",
            multiValued=True,
            mutability="readOnly",
            sub_attributes=[
                attribute(
                    "value",
                    description="The identifier of the User's group.",
                    mutability="readOnly",
                ),
                attribute(
                    "$ref",
                    "reference",
                    "The URI of the corresponding 'Group' resource.",
                    referenceTypes=["User", "Group"],
                    mutability="readOnly",
                ),
                attribute(
                    "display",
                    description="A human-readable name, primarily used for display.",
                    mutability="readOnly",
                ),
                attribute(
                    "type",
                    description="A label indicating the attribute's function.",
                    canonicalValues=["direct", "indirect"],
                    mutability="readOnly",
                ),
            ],
        ),
        attribute(
            "entitlements",
            "complex",
            "A list of entitlements for the User.",
            multiValued=True,
            sub_attributes=multi_valued_sub_attributes(value_description="The entitlement."),
        ),
        attribute(
            "roles",
            "complex",
            "A list of roles for the User.",
            multiValued=True,
            sub_attributes=multi_valued_sub_attributes(value_description="The role."),
        ),
        attribute(
            "x509Certificates",
            "complex",
            "A list of certificates issued to the User.",
            multiValued=True,
            sub_attributes=multi_valued_sub_attributes(
                "binary", value_description="The value of an X.509 certificate."
            ),
        ),
    ],
)

ENTERPRISE_USER_SCHEMA = schema(
    uri=ENTERPRISE_USER_SCHEMA_URI,
    name="EnterpriseUser",
    description="Enterprise User",
    attributes=[
        attribute("employeeNumber", description="Numeric or alphanumeric identifier."),
        attribute("costCenter", description="Identifies the name of a cost center."),
        attribute("organization", description="Identifies the name of an organization."),
        attribute("division", description="Identifies the name of a division."),
        attribute("department", description="Identifies the name of a department."),
        attribute(
            "manager",
            "complex",
            "The User's manager.",
            sub_attributes=[
                attribute("value", description="The id of the SCIM resource of the manager."),
                attribute(
                    "$ref",
                    "reference",
                    "The URI of the SCIM resource representing the User's manager.",
                    referenceTypes=["User"],
                ),
                attribute(
                    "displayName",
                    description="The displayName of the User's manager.",
                    mutability="readOnly",
                ),
            ],
        ),
    ],
)

USER_RESOURCE_TYPE = resource_type(
    name="User",
    endpoint="/Users",
    schema_uri=USER_SCHEMA_URI,
    description="User Account",
    extensions={ENTERPRISE_USER_SCHEMA_URI: False},
)

USER_VALIDATORS = {
    f"{USER_SCHEMA_URI}:preferredLanguage": _validate_preferred_language,
    f"{USER_SCHEMA_URI}:locale": _validate_locale,
    f"{USER_SCHEMA_URI}:timezone": _validate_timezone,
    f"{USER_SCHEMA_URI}:emails.value": _validate_email,
    f"{USER_SCHEMA_URI}:phoneNumbers.value": _validate_phone_number,
    f"{USER_SCHEMA_URI}:addresses.country": _validate_country,
}
