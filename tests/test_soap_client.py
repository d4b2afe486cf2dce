"""Tests for the MantisConnect SOAP search client."""

from unittest.mock import Mock

import pytest
import requests

from conftest import make_response
from mantis_mcp.errors import ErrorKind, MantisApiError
from mantis_mcp.models import SearchFilter
from mantis_mcp.soap_client import (
    MantisSoapClient,
    coerce_int,
    derive_soap_url,
    ensure_list,
    map_soap_issue,
    xml_escape,
)

ENVELOPE_OPEN = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/" '
    'xmlns:ns1="http://futureware.biz/mantisconnect" '
    'xmlns:SOAP-ENC="http://schemas.xmlsoap.org/soap/encoding/" '
    'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">'
    '<SOAP-ENV:Body>'
)
ENVELOPE_CLOSE = '</SOAP-ENV:Body></SOAP-ENV:Envelope>'

ISSUE_12 = (
    '<id>12</id><summary>Login fails</summary><description>Steps...</description>'
    '<project><id>3</id><name>Web</name></project>'
    '<category>UI</category>'
    '<status><id>50</id><name>assigned</name></status>'
    '<reporter><id>1</id><name>admin</name><email>admin@example.com</email></reporter>'
    '<handler><id>7</id><name>dev</name><email>dev@example.com</email></handler>'
    '<priority><id>30</id><name>normal</name></priority>'
    '<date_submitted>2024-05-01T10:00:00+00:00</date_submitted>'
    '<last_updated>2024-05-02T10:00:00+00:00</last_updated>'
)
ISSUE_13 = (
    '<id>13</id><summary>Typo</summary>'
    '<project><id>3</id><name>Web</name></project>'
    '<status><id>10</id><name>new</name></status>'
    '<reporter><id>1</id><name>admin</name></reporter>'
)


def soap_response(body, status_code=200):
    return make_response(status_code, text=ENVELOPE_OPEN + body + ENVELOPE_CLOSE)


def search_result(inner):
    return f'<ns1:mc_filter_search_issuesResponse>{inner}</ns1:mc_filter_search_issuesResponse>'


@pytest.fixture
def soap_session():
    session = Mock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def soap(soap_session):
    return MantisSoapClient("https://mantis.example.com/api/rest", "k&y", session=soap_session)


class TestShapeHelpers:

    def test_derive_soap_url_strips_rest_suffix(self):
        assert derive_soap_url("https://m.example.com/api/rest") == \
            "https://m.example.com/api/soap/mantisconnect.php"
        assert derive_soap_url("https://m.example.com/bugs/api/rest/") == \
            "https://m.example.com/bugs/api/soap/mantisconnect.php"

    def test_xml_escape_handles_all_five_metacharacters(self):
        assert xml_escape("""a&b<c>d"e'f""") == "a&amp;b&lt;c&gt;d&quot;e&apos;f"

    def test_coerce_int(self):
        assert coerce_int("42") == 42
        assert coerce_int(7) == 7
        assert coerce_int("3.0") == 3
        assert coerce_int("abc") == 0
        assert coerce_int("") == 0
        assert coerce_int(None) == 0

    def test_ensure_list(self):
        assert ensure_list({"id": "1"}) == [{"id": "1"}]
        assert ensure_list([1, 2]) == [1, 2]
        assert ensure_list(None) == []
        assert ensure_list("") == []

    def test_non_numeric_id_maps_to_zero(self):
        issue = map_soap_issue({"id": "not-a-number", "summary": "x"})

        assert issue["id"] == 0

    def test_absent_optional_sub_objects_are_omitted(self):
        issue = map_soap_issue({"id": "5", "status": {"id": "10", "name": "new"}})

        assert "handler" not in issue
        assert "priority" not in issue
        assert "severity" not in issue
        assert "custom_fields" not in issue
        assert issue["status"] == {"id": 10, "name": "new"}
        assert issue["reporter"] == {"id": 0, "name": "", "email": ""}

    def test_custom_fields_single_or_array(self):
        single = map_soap_issue({"custom_fields": {
            "item": {"field": {"id": "2", "name": "Browser"}, "value": "Firefox"}}})
        several = map_soap_issue({"custom_fields": [
            {"field": {"id": "2", "name": "Browser"}, "value": "Firefox"},
            {"field": {"id": "3", "name": "OS"}, "value": ""},
        ]})

        assert single["custom_fields"] == [{"field": {"id": 2, "name": "Browser"}, "value": "Firefox"}]
        assert [cf["field"]["name"] for cf in several["custom_fields"]] == ["Browser", "OS"]


class TestEnvelope:

    def test_page_is_translated_to_zero_based(self, soap):
        envelope = soap.build_envelope(SearchFilter(search="crash", page=3, page_size=25))

        assert "<man:page_number>2</man:page_number>" in envelope
        assert "<man:per_page>25</man:per_page>" in envelope

    def test_only_present_filters_are_included(self, soap):
        envelope = soap.build_envelope(SearchFilter(search="crash", project_id=3))

        assert "<search>crash</search>" in envelope
        assert "<project_id><id>3</id></project_id>" in envelope
        assert "status_id" not in envelope
        assert "handler_id" not in envelope
        assert "<sort>" not in envelope

    def test_credentials_and_search_text_are_escaped(self, soap):
        envelope = soap.build_envelope(SearchFilter(search="<script>&"))

        assert "<man:username></man:username>" in envelope
        assert "<man:password>k&amp;y</man:password>" in envelope
        assert "<search>&lt;script&gt;&amp;</search>" in envelope

    def test_request_headers_and_endpoint(self, soap, soap_session):
        soap_session.post.return_value = soap_response(search_result("<return/>"))

        soap.search_issues(SearchFilter(search="crash"))

        args, kwargs = soap_session.post.call_args
        assert args[0] == "https://mantis.example.com/api/soap/mantisconnect.php"
        assert kwargs["headers"]["Content-Type"] == "text/xml; charset=utf-8"
        assert kwargs["headers"]["SOAPAction"].endswith("mc_filter_search_issues")
        assert kwargs["timeout"] == 30


class TestResponseParsing:

    def test_soap_array_of_items(self, soap, soap_session):
        soap_session.post.return_value = soap_response(search_result(
            f'<return SOAP-ENC:arrayType="ns1:IssueData[2]" xsi:type="SOAP-ENC:Array">'
            f'<item>{ISSUE_12}</item><item>{ISSUE_13}</item></return>'
        ))

        issues = soap.search_issues(SearchFilter(search="login"))

        assert [issue["id"] for issue in issues] == [12, 13]
        first = issues[0]
        assert first["category"] == {"id": 0, "name": "UI"}
        assert first["handler"] == {"id": 7, "name": "dev", "email": "dev@example.com"}
        assert first["created_at"] == "2024-05-01T10:00:00+00:00"
        assert "handler" not in issues[1]

    def test_single_result_object_becomes_list(self, soap, soap_session):
        soap_session.post.return_value = soap_response(search_result(f"<return>{ISSUE_13}</return>"))

        issues = soap.search_issues(SearchFilter(search="typo"))

        assert len(issues) == 1
        assert issues[0]["summary"] == "Typo"

    def test_fault_without_result_raises_fault_error(self, soap, soap_session):
        soap_session.post.return_value = soap_response(
            "<SOAP-ENV:Fault><faultcode>Client</faultcode>"
            "<faultstring>Access denied</faultstring></SOAP-ENV:Fault>"
        )

        with pytest.raises(MantisApiError) as excinfo:
            soap.search_issues(SearchFilter(search="x"))

        assert excinfo.value.kind is ErrorKind.FAULT
        assert "Access denied" in str(excinfo.value)

    def test_fault_delivered_with_http_500(self, soap, soap_session):
        soap_session.post.return_value = soap_response(
            "<SOAP-ENV:Fault><faultstring>Invalid filter</faultstring></SOAP-ENV:Fault>", status_code=500)

        with pytest.raises(MantisApiError) as excinfo:
            soap.search_issues(SearchFilter(search="x"))

        assert excinfo.value.kind is ErrorKind.FAULT

    def test_neither_result_nor_fault_returns_empty_list(self, soap, soap_session):
        soap_session.post.return_value = soap_response("<ns1:somethingElse/>")

        assert soap.search_issues(SearchFilter(search="x")) == []

    def test_unreadable_body_is_api_error(self, soap, soap_session):
        soap_session.post.return_value = make_response(502, text="<html>Bad gateway")

        with pytest.raises(MantisApiError) as excinfo:
            soap.search_issues(SearchFilter(search="x"))

        assert excinfo.value.kind is ErrorKind.API
        assert excinfo.value.status_code == 502

    def test_no_response_is_transport_error(self, soap, soap_session):
        soap_session.post.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(MantisApiError) as excinfo:
            soap.search_issues(SearchFilter(search="x"))

        assert excinfo.value.kind is ErrorKind.TRANSPORT
        assert excinfo.value.status_code == 0
