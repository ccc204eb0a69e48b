"""Tests for http_client module functionality."""

import unittest
from unittest.mock import Mock, patch

import requests

from docpulse.errors import (
    AuthenticationError,
    AuthorizationError,
    TransientIOError,
    ValidationError,
)
from docpulse.http_client import HeartbeatClient
from docpulse.models import HeartbeatPayload


def make_response(status_code=200, body=None, content=b"{}"):
    response = Mock()
    response.status_code = status_code
    response.content = content
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


class TestHeartbeatClient(unittest.TestCase):
    """Test cases for HeartbeatClient class."""

    def setUp(self):
        """Set up test fixtures."""
        self.client = HeartbeatClient(endpoint="http://test.example.com/api/", api_key="k-1")
        self.payload = HeartbeatPayload(
            doc_identifier="doc-1", domain="docs.google.com", email="a@x.com", title="Plan"
        )

    def test_endpoint_trailing_slash_removed(self):
        self.assertEqual(self.client.endpoint, "http://test.example.com/api")

    def test_headers_include_api_key(self):
        headers = self.client._get_headers()
        self.assertEqual(headers["x-api-key"], "k-1")
        self.assertEqual(headers["Content-Type"], "application/json")

    def test_headers_without_api_key(self):
        client = HeartbeatClient(endpoint="http://test.example.com")
        self.assertNotIn("x-api-key", client._get_headers())

    @patch("requests.post")
    def test_send_heartbeat_success(self, mock_post):
        """Test heartbeat is posted with tuple timeout and returns the body."""
        mock_post.return_value = make_response(200, {"document_id": 7})

        result = self.client.send_heartbeat(self.payload)

        self.assertEqual(result, {"document_id": 7})
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "http://test.example.com/api/heartbeats")
        self.assertEqual(kwargs["timeout"], (5, 15))
        self.assertEqual(kwargs["json"]["doc_identifier"], "doc-1")
        self.assertEqual(kwargs["headers"]["x-api-key"], "k-1")

    @patch("requests.post")
    def test_send_heartbeat_status_mapping(self, mock_post):
        """Test rejection statuses surface as typed errors."""
        cases = [
            (400, ValidationError),
            (401, AuthenticationError),
            (403, AuthorizationError),
            (500, TransientIOError),
        ]
        for status, error_class in cases:
            mock_post.return_value = make_response(status, {"error": "nope"})
            with self.assertRaises(error_class) as ctx:
                self.client.send_heartbeat(self.payload)
            self.assertEqual(str(ctx.exception), "nope")

    @patch("requests.post")
    def test_send_heartbeat_network_error(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectTimeout("timed out")

        with self.assertRaises(TransientIOError):
            self.client.send_heartbeat(self.payload)

    @patch("requests.post")
    def test_error_message_without_json_body(self, mock_post):
        mock_post.return_value = make_response(502, ValueError("no json"))

        with self.assertRaises(TransientIOError) as ctx:
            self.client.send_heartbeat(self.payload)
        self.assertEqual(str(ctx.exception), "HTTP 502")

    @patch("requests.get")
    def test_fetch_selector_descriptor(self, mock_get):
        """Test a descriptor is returned for a configured domain."""
        mock_get.return_value = make_response(
            200, {"domain": "docs.google.com", "title_selector": ".docs-title-input"}
        )

        descriptor = self.client.fetch_selector("docs.google.com")

        self.assertEqual(descriptor.title_selector, ".docs-title-input")
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], "http://test.example.com/api/selectors")
        self.assertEqual(kwargs["params"], {"domain": "docs.google.com"})
        self.assertEqual(kwargs["timeout"], (5, 15))

    @patch("requests.get")
    def test_fetch_selector_null_body(self, mock_get):
        """Test a JSON null response means no descriptor."""
        mock_get.return_value = make_response(200, None, content=b"null")
        self.assertIsNone(self.client.fetch_selector("example.com"))

    @patch("requests.get")
    def test_fetch_selector_empty_body(self, mock_get):
        mock_get.return_value = make_response(200, None, content=b"")
        self.assertIsNone(self.client.fetch_selector("example.com"))

    @patch("requests.get")
    def test_fetch_selector_invalid_json(self, mock_get):
        mock_get.return_value = make_response(200, ValueError("bad"), content=b"<html>")
        with self.assertRaises(TransientIOError):
            self.client.fetch_selector("example.com")

    @patch("requests.get")
    def test_fetch_selector_network_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(TransientIOError):
            self.client.fetch_selector("example.com")

    @patch("requests.get")
    def test_test_connection(self, mock_get):
        mock_get.return_value = make_response(200, {"status": "ok"})
        self.assertTrue(self.client.test_connection())

        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        self.assertFalse(self.client.test_connection())
