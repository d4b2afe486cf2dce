"""
MantisConnect SOAP client.

The REST API cannot do full-text search, so searches go through the legacy
SOAP endpoint (mc_filter_search_issues) and the results are mapped back into
the same issue shape the REST API returns.
"""

import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, List, Optional
from xml.sax.saxutils import escape

import requests

from .errors import MantisApiError
from .http_client import translate_request_error
from .models import Issue, SearchFilter

logger = logging.getLogger(__name__)

SOAP_PATH = "/api/soap/mantisconnect.php"
SOAP_ACTION = "http://futureware.biz/mantisconnect/mc_filter_search_issues"
SOAP_TIMEOUT_SECONDS = 30

ENVELOPE_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" xmlns:man="http://futureware.biz/mantisconnect">
  <soapenv:Body>
    <man:mc_filter_search_issues>
      <man:username></man:username>
      <man:password>{password}</man:password>
      <man:filter>
        {filter_fields}
      </man:filter>
      <man:page_number>{page_number}</man:page_number>
      <man:per_page>{per_page}</man:per_page>
    </man:mc_filter_search_issues>
  </soapenv:Body>
</soapenv:Envelope>"""


# ============================================================================
# SHAPE HELPERS
# ============================================================================

def xml_escape(value: Any) -> str:
    """Escape all five XML metacharacters (& < > " ')."""
    return escape(str(value), {'"': "&quot;", "'": "&apos;"})


def coerce_int(value: Any, default: int = 0) -> int:
    """
    Numeric value of a wire field, or default.

    Missing, empty and non-numeric values all become the default, so a real
    zero cannot be told apart from garbage.
    """
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def ensure_list(value: Any) -> list:
    """Wrap a single parsed node in a list; empty nodes become []."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def _local_name(tag: str) -> str:
    # '{http://schemas.xmlsoap.org/soap/envelope/}Body' -> 'Body'
    return tag.rsplit("}", 1)[-1]


def element_to_value(element: ET.Element) -> Any:
    """
    Convert an element into plain Python data.

    Leaf elements become their stripped text; elements with children become
    dicts keyed by namespace-free tag name, repeated tags collapsing into a
    list. Attributes are ignored.
    """
    children = list(element)
    if not children:
        return (element.text or "").strip()

    result = {}
    for child in children:
        name = _local_name(child.tag)
        value = element_to_value(child)
        if name not in result:
            result[name] = value
        elif isinstance(result[name], list):
            result[name].append(value)
        else:
            result[name] = [result[name], value]
    return result


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _named_ref(node: Any) -> dict:
    node = _as_dict(node)
    return {"id": coerce_int(node.get("id")), "name": node.get("name") or ""}


def _person_ref(node: Any) -> dict:
    ref = _named_ref(node)
    ref["email"] = _as_dict(node).get("email") or ""
    return ref


def _soap_items(node: Any) -> list:
    # SOAP arrays arrive as <return><item/><item/></return>
    if isinstance(node, dict) and "item" in node:
        return ensure_list(node["item"])
    return ensure_list(node)


def map_soap_issue(item: dict) -> Issue:
    """Map one SOAP IssueData structure into the REST issue shape."""
    issue = {
        "id": coerce_int(item.get("id")),
        "summary": item.get("summary") or "",
        "description": item.get("description") or "",
        "status": _named_ref(item.get("status")),
        "project": _named_ref(item.get("project")),
        # SOAP returns the category as a bare name
        "category": {"id": 0, "name": item.get("category") or ""},
        "reporter": _person_ref(item.get("reporter")),
    }

    # Optional sub-objects are left out entirely when absent
    if item.get("handler"):
        issue["handler"] = _person_ref(item["handler"])
    if item.get("priority"):
        issue["priority"] = _named_ref(item["priority"])
    if item.get("severity"):
        issue["severity"] = _named_ref(item["severity"])
    if item.get("custom_fields"):
        issue["custom_fields"] = [
            {
                "field": _named_ref(_as_dict(cf).get("field")),
                "value": _as_dict(cf).get("value") or "",
            }
            for cf in _soap_items(item["custom_fields"])
        ]

    issue["created_at"] = item.get("date_submitted") or ""
    issue["updated_at"] = item.get("last_updated") or ""
    return issue


# ============================================================================
# CLIENT
# ============================================================================

def derive_soap_url(rest_base_url: str) -> str:
    """
    https://mantis.example.com/api/rest -> https://mantis.example.com/api/soap/mantisconnect.php
    """
    base = re.sub(r"/api/rest/?$", "", rest_base_url)
    return f"{base}{SOAP_PATH}"


class MantisSoapClient:
    """Full-text issue search over the MantisConnect SOAP API."""

    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 timeout: float = SOAP_TIMEOUT_SECONDS):
        self.soap_url = derive_soap_url(base_url)
        self.api_key = api_key or ""
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_envelope(self, search: SearchFilter) -> str:
        """Render the request envelope; filter fragments only for fields that are set."""
        fragments = []
        if search.search:
            fragments.append(f"<search>{xml_escape(search.search)}</search>")
        for field_name in ("project_id", "status_id", "handler_id", "reporter_id"):
            value = getattr(search, field_name)
            if value:
                fragments.append(f"<{field_name}><id>{xml_escape(value)}</id></{field_name}>")
        if search.sort:
            fragments.append(f"<sort>{xml_escape(search.sort)}</sort>")
        if search.sort_direction:
            fragments.append(f"<sort_direction>{xml_escape(search.sort_direction)}</sort_direction>")

        # Callers count pages from 1, MantisConnect from 0
        page_number = max((search.page or 1) - 1, 0)

        return ENVELOPE_TEMPLATE.format(
            password=xml_escape(self.api_key),
            filter_fields="".join(fragments),
            page_number=page_number,
            per_page=search.page_size or 50,
        )

    def search_issues(self, search: SearchFilter) -> List[Issue]:
        """
        Run mc_filter_search_issues and return the matching issues.

        Returns:
            list: issues in the REST shape; empty when the envelope has no result

        Raises:
            MantisApiError: FAULT for a SOAP fault, API for an HTTP error or an
                unreadable envelope, TRANSPORT when no response arrived
        """
        logger.info(f"Searching issues via SOAP API: {search}")
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": SOAP_ACTION,
        }

        try:
            response = self.session.post(
                self.soap_url,
                data=self.build_envelope(search).encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise translate_request_error(e, "POST", self.soap_url) from e

        logger.info(f"SOAP Response: Status {response.status_code}")
        return self.parse_response(response)

    def parse_response(self, response: requests.Response) -> List[Issue]:
        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as e:
            logger.error(f"Unreadable SOAP response (HTTP {response.status_code}): {e}")
            raise MantisApiError.api(f"SOAP search failed: {e}", response.status_code, response.text) from e

        envelope = _as_dict(element_to_value(root))
        body = _as_dict(envelope.get("Body"))
        result = _as_dict(body.get("mc_filter_search_issuesResponse")).get("return")

        if not result:
            fault = body.get("Fault")
            if fault:
                fault_string = _as_dict(fault).get("faultstring") or "Unknown error"
                logger.error(f"SOAP fault: {fault_string}")
                raise MantisApiError.fault(fault_string, response.text)
            if not response.ok:
                raise MantisApiError.api(f"SOAP search failed: HTTP {response.status_code}",
                                         response.status_code, response.text)
            return []

        issues = [map_soap_issue(_as_dict(item)) for item in _soap_items(result)]
        logger.info(f"SOAP search returned {len(issues)} issues")
        return issues
