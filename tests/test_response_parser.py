"""Tests for response interpretation."""
import json

import pytest

from vnf_framework.dictionary import DictionaryParser
from vnf_framework.engine.response_parser import ResponseParser, decode_body
from vnf_framework.models import Response

from fakes import ACME_DICTIONARY


SSH_DICTIONARY = {
    "access": {"protocol": "ssh", "authType": "ssh-password", "usernameRef": "U", "passwordRef": "P"},
    "services": {
        "Firewall": {
            "create": {
                "method": "SSH",
                "endpoint": "fw add ${ruleId}",
                "successPattern": "^Rule [0-9]+ added",
            },
            "delete": {"method": "SSH", "endpoint": "fw del ${externalId}"},
            "list": {"method": "SSH", "endpoint": "fw show"},
        }
    },
}


def ok(body, status=200):
    if not isinstance(body, str):
        body = json.dumps(body)
    return Response(status_code=status, body=body, success=200 <= status < 300)


class TestDecodeBody:
    """Tests for decode_body()."""

    def test_json(self):
        assert decode_body('{"a": 1}') == {"a": 1}

    def test_yaml_list(self):
        assert decode_body("- 1\n- 2\n") == [1, 2]

    def test_plain_text_is_returned_as_is(self):
        assert decode_body("Rule 5 added") == "Rule 5 added"

    def test_empty(self):
        assert decode_body("") is None
        assert decode_body("   ") is None
        assert decode_body(None) is None


class TestSuccessDetection:
    """Tests for ResponseParser.is_success()."""

    @pytest.fixture
    def parser(self):
        return ResponseParser()

    @pytest.fixture
    def acme(self):
        return DictionaryParser().parse(ACME_DICTIONARY)

    @pytest.fixture
    def cli(self):
        return DictionaryParser().parse(SSH_DICTIONARY)

    def test_http_exact_success_code(self, parser, acme):
        """Create expects 201; a 200 is not success."""
        assert parser.is_success(ok({}, 201), acme, "create", "Firewall")
        assert not parser.is_success(ok({}, 200), acme, "create", "Firewall")

    def test_delete_expects_204(self, parser, acme):
        assert parser.is_success(ok("", 204), acme, "delete", "Firewall")
        assert not parser.is_success(ok("", 404), acme, "delete", "Firewall")

    def test_ssh_success_pattern(self, parser, cli):
        assert parser.is_success(ok("Rule 12 added\n", 0), cli, "create", "Firewall")
        assert not parser.is_success(ok("Error: exists\n", 0), cli, "create", "Firewall")

    def test_ssh_without_pattern_uses_exit_status(self, parser, cli):
        assert parser.is_success(Response(0, "", success=True), cli, "delete", "Firewall")
        assert not parser.is_success(Response(1, "", success=False), cli, "delete", "Firewall")

    def test_operation_lookup_without_service(self, parser, acme):
        """Without a service name the first matching operation is used."""
        assert parser.is_success(ok({}, 201), acme, "create")


class TestExternalIdExtraction:
    """Tests for ResponseParser.extract_external_id()."""

    @pytest.fixture
    def parser(self):
        return ResponseParser()

    @pytest.fixture
    def acme(self):
        return DictionaryParser().parse(ACME_DICTIONARY)

    def test_numeric_id_becomes_string(self, parser, acme):
        response = ok({"data": {"id": 123}}, 201)
        assert parser.extract_external_id(response, acme, "create", "Firewall") == "123"

    def test_missing_id(self, parser, acme):
        response = ok({"data": {}}, 201)
        assert parser.extract_external_id(response, acme, "create", "Firewall") is None

    def test_structured_value_is_not_an_id(self, parser, acme):
        response = ok({"data": {"id": {"nested": 1}}}, 201)
        assert parser.extract_external_id(response, acme, "create", "Firewall") is None

    def test_non_document_body(self, parser, acme):
        response = ok("created", 201)
        assert parser.extract_external_id(response, acme, "create", "Firewall") is None

    def test_no_id_path(self, parser, acme):
        response = ok({"id": 5}, 204)
        assert parser.extract_external_id(response, acme, "delete", "Firewall") is None


class TestListParsing:
    """Tests for ResponseParser.parse_list_response()."""

    @pytest.fixture
    def parser(self):
        return ResponseParser()

    @pytest.fixture
    def acme(self):
        return DictionaryParser().parse(ACME_DICTIONARY)

    def test_item_paths(self, parser, acme):
        """Items come back in device order with mapped properties."""
        response = ok({"data": {"rules": [
            {"id": 7, "protocol": "tcp", "source": "10.0.0.0/8", "port": "22"},
            {"id": 8, "protocol": "udp", "source": "0.0.0.0/0", "port": "53"},
        ]}})

        rules = parser.parse_list_response(response, acme, "Firewall")

        assert [r.external_id for r in rules] == ["7", "8"]
        assert rules[0].service_name == "Firewall"
        assert rules[0].properties == {
            "id": 7, "protocol": "tcp", "sourceCidr": "10.0.0.0/8", "portRange": "22",
        }

    def test_items_without_id_are_skipped(self, parser, acme):
        response = ok({"data": {"rules": [{"protocol": "tcp"}, {"id": 9}]}})
        rules = parser.parse_list_response(response, acme, "Firewall")
        assert [r.external_id for r in rules] == ["9"]

    def test_empty_list(self, parser, acme):
        assert parser.parse_list_response(ok({"data": {"rules": []}}), acme, "Firewall") == []
        assert parser.parse_list_response(ok(""), acme, "Firewall") == []

    def test_service_without_list(self, parser, acme):
        assert parser.parse_list_response(ok([]), acme, "NAT") == []

    def test_no_list_path_document_list(self, parser):
        """A top-level list is the item list; no item paths keeps every field."""
        dictionary = DictionaryParser().parse({
            "access": {"protocol": "https"},
            "services": {"Firewall": {"list": {"method": "GET", "endpoint": "/rules"}}},
        })
        response = ok([{"id": "a", "port": 22}, {"id": "b", "port": 80}])

        rules = parser.parse_list_response(response, dictionary, "Firewall")

        assert [r.external_id for r in rules] == ["a", "b"]
        assert rules[1].properties == {"id": "b", "port": 80}

    def test_id_path_per_item(self, parser):
        dictionary = DictionaryParser().parse({
            "access": {"protocol": "https"},
            "services": {"Firewall": {"list": {
                "method": "GET",
                "endpoint": "/rules",
                "responseMapping": {"listPath": "$.items", "idPath": "$.meta.uuid"},
            }}},
        })
        response = ok({"items": [{"meta": {"uuid": "u-1"}}]})

        rules = parser.parse_list_response(response, dictionary, "Firewall")

        assert rules[0].external_id == "u-1"

    def test_ssh_yaml_listing(self, parser):
        """CLI output in YAML form is parsed like JSON."""
        dictionary = DictionaryParser().parse(SSH_DICTIONARY)
        response = ok("- id: 3\n  port: 22\n- id: 4\n  port: 443\n", 0)

        rules = parser.parse_list_response(response, dictionary, "Firewall")

        assert [r.external_id for r in rules] == ["3", "4"]


class TestErrorMessages:
    """Tests for ResponseParser.extract_error_message()."""

    def test_vendor_error_fields(self):
        parser = ResponseParser()
        assert parser.extract_error_message(ok({"error": {"message": "duplicate"}}, 400)) == "duplicate"
        assert parser.extract_error_message(ok({"message": "bad port"}, 400)) == "bad port"
        assert parser.extract_error_message(ok({"errors": ["first", "second"]}, 422)) == "first"
        assert parser.extract_error_message(ok({"detail": "nope"}, 409)) == "nope"

    def test_empty_body(self):
        assert ResponseParser().extract_error_message(Response(502, "")) == "HTTP 502"

    def test_transport_message_preferred_over_raw_body(self):
        response = Response(500, "<html>oops</html>", error_message="upstream failed")
        assert ResponseParser().extract_error_message(response) == "upstream failed"

    def test_long_body_truncated(self):
        parser = ResponseParser(error_body_limit=10)
        assert parser.extract_error_message(Response(500, "x" * 50)) == "x" * 10 + "..."
