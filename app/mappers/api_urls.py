"""
app/mappers/api_urls.py

Derivation of the canonical access URLs for one remote variable.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import urlencode

from app.errors import ValidationError

UID_PATTERN = re.compile(r"^[A-Za-z0-9]{11}$")

DEFAULT_PERIOD = "THIS_YEAR"
DEFAULT_ORG_UNIT = "USER_ORGUNIT"

_METADATA_FIELDS: dict[str, str] = {
    "dataElements": (
        "id,name,displayName,code,description,valueType,domainType,aggregationType,"
        "categoryCombo[id,name],dataElementGroups[id,name],lastUpdated,created"
    ),
    "indicators": (
        "id,name,displayName,code,description,numerator,denominator,indicatorType[id,name],"
        "indicatorGroups[id,name],annualized,lastUpdated,created"
    ),
    "programIndicators": (
        "id,name,displayName,code,description,expression,filter,program[id,name],"
        "aggregationType,analyticsType,lastUpdated,created"
    ),
}
_DEFAULT_METADATA_FIELDS = "id,name,displayName,code,description,lastUpdated,created"

_WEB_SECTIONS: dict[str, str] = {
    "dataElements": "dataElement",
    "indicators": "indicator",
    "programIndicators": "programIndicator",
}


@dataclass(frozen=True)
class ApiUrlSet:
    analytics: str
    metadata: str
    export: str
    web_ui: str
    data_values: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_canonical_uid(value: Any) -> bool:
    return isinstance(value, str) and UID_PATTERN.match(value) is not None


def normalize_metadata_type(metadata_type: str) -> str:
    """
    Map loose type spellings (``data_element``, ``DATA_ELEMENTS``) onto the
    plural endpoint name. Unknown types are returned unchanged.
    """

    lowered = metadata_type.lower()
    if "dataelement" in lowered or "data_element" in lowered:
        return "dataElements"
    if "indicator" in lowered and "program" not in lowered:
        return "indicators"
    if "program" in lowered and "indicator" in lowered:
        return "programIndicators"
    if "organisationunit" in lowered or "orgunit" in lowered:
        return "organisationUnits"
    return metadata_type


def normalize_api_base_url(base_url: str) -> str:
    """
    Return ``base_url`` truncated or extended so it ends in exactly ``/api``.
    """

    url = base_url.strip().rstrip("/")
    if url.endswith("/api"):
        return url
    marker = url.find("/api/")
    if marker >= 0:
        return url[: marker + 4]
    return f"{url}/api"


def derive_urls(
    identifier: str,
    metadata_type: str,
    base_url: str,
    *,
    period: str = DEFAULT_PERIOD,
    org_unit: str = DEFAULT_ORG_UNIT,
    fmt: str = "json",
) -> ApiUrlSet:
    """
    Build analytics, metadata, export and web URLs for ``identifier``.

    Raw data values are only exposed for data elements; indicators and
    program indicators are derived and have none.

    Raises
    ------
    ValidationError
        If ``identifier`` is not an 11-character alphanumeric UID.
    """

    if not is_canonical_uid(identifier):
        raise ValidationError(
            f"Invalid remote UID {identifier!r}: expected 11 alphanumeric characters."
        )

    api_url = normalize_api_base_url(base_url)
    web_url = api_url[: -len("/api")]
    kind = normalize_metadata_type(metadata_type)
    suffix = {"json": ".json", "xml": ".xml"}.get(fmt, "")

    analytics_params = {
        "dimension": f"dx:{identifier};pe:{period};ou:{org_unit}",
        "displayProperty": "NAME",
        "outputFormat": "JSON",
        "skipRounding": "false",
        "includeMetadataDetails": "true",
        "aggregationType": "DEFAULT",
    }
    if kind == "programIndicators":
        analytics_params["ouMode"] = "DESCENDANTS"

    data_values = None
    if kind == "dataElements":
        data_values = f"{api_url}/dataValueSets?" + urlencode(
            {"dataElement": identifier, "period": period, "orgUnit": org_unit, "format": fmt.upper()}
        )

    return ApiUrlSet(
        analytics=f"{api_url}/analytics?{urlencode(analytics_params)}",
        metadata=f"{api_url}/{kind}/{identifier}{suffix}?"
        + urlencode({"fields": _METADATA_FIELDS.get(kind, _DEFAULT_METADATA_FIELDS)}),
        export=f"{api_url}/{kind}/{identifier}{suffix}?download=true",
        web_ui=f"{web_url}/#/maintenance/{_WEB_SECTIONS.get(kind, 'metadata')}/{identifier}",
        data_values=data_values,
    )


def curl_command(url: str) -> str:
    """
    Render a curl invocation for ``url`` with credential placeholders.
    """

    return (
        "curl -H \"Authorization: Basic $(echo -n 'username:password' | base64)\" \\\n"
        '  -H "Accept: application/json" \\\n'
        f'  "{url}"'
    )
