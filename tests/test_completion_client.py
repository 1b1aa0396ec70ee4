"""
Tests for the structured completion client.
"""
import json
import unittest
from unittest.mock import MagicMock, patch

import requests

from stock_publisher.completion_client import (
    StructuredCompletionClient, extract_function_arguments, validate_payload
)
from stock_publisher.config import AppConfig, RetryPolicy
from stock_publisher.errors import MaxRetriesExceeded, MalformedResponseError, TransportError
from stock_publisher.prompt_templates import get_keyword_schema, KEYWORD_FUNCTION_NAME


def make_response(arguments=None, tool_call=True):
    """Build a mock HTTP response carrying the given function arguments."""
    if tool_call:
        message = {"tool_calls": [{"function": {"name": KEYWORD_FUNCTION_NAME, "arguments": arguments}}]}
    else:
        message = {"function_call": {"name": KEYWORD_FUNCTION_NAME, "arguments": arguments}}
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = {"choices": [{"message": message}]}
    return response


VALID_ARGUMENTS = json.dumps({"gettyKeywords": ["sunset", "beach", "ocean"]})


class TestStructuredCompletionClient(unittest.TestCase):
    """Test cases for StructuredCompletionClient."""

    def setUp(self):
        """Set up test fixtures."""
        self.config = AppConfig()
        self.session = MagicMock()
        self.sleep = MagicMock()
        self.client = StructuredCompletionClient(self.config, session=self.session, sleep=self.sleep)
        self.messages = [{"role": "user", "content": "keywords please"}]
        self.schema = get_keyword_schema()

    def complete(self):
        return self.client.complete("gpt-test", self.messages, self.schema, KEYWORD_FUNCTION_NAME, 0.9, 100)

    def test_first_attempt_success(self):
        """A valid first reply is returned after exactly one request."""
        self.session.post.return_value = make_response(VALID_ARGUMENTS)

        result = self.complete()

        self.assertEqual(result, {"gettyKeywords": ["sunset", "beach", "ocean"]})
        self.assertEqual(self.session.post.call_count, 1)
        self.sleep.assert_not_called()

    @patch('stock_publisher.completion_client.requests.post')
    def test_default_client_uses_plain_requests(self, mock_post):
        """Without an injected session each attempt is a module-level requests.post."""
        mock_post.return_value = make_response(VALID_ARGUMENTS)
        client = StructuredCompletionClient(self.config, sleep=self.sleep)

        result = client.complete("gpt-test", self.messages, self.schema, KEYWORD_FUNCTION_NAME, 0.9, 100)

        self.assertEqual(result["gettyKeywords"], ["sunset", "beach", "ocean"])
        mock_post.assert_called_once()
        self.assertIs(client.session, requests)

    def test_request_payload(self):
        """The request forces a call to the named function."""
        self.session.post.return_value = make_response(VALID_ARGUMENTS)

        self.complete()

        payload = self.session.post.call_args.kwargs['json']
        self.assertEqual(payload['model'], "gpt-test")
        self.assertEqual(payload['messages'], self.messages)
        self.assertEqual(payload['tools'][0]['function']['name'], KEYWORD_FUNCTION_NAME)
        self.assertEqual(payload['tools'][0]['function']['parameters'], self.schema)
        self.assertEqual(payload['tool_choice']['function']['name'], KEYWORD_FUNCTION_NAME)
        self.assertEqual(payload['temperature'], 0.9)
        self.assertEqual(payload['max_tokens'], 100)

    def test_legacy_function_call_reply(self):
        """Replies using the legacy function_call field are accepted."""
        self.session.post.return_value = make_response(VALID_ARGUMENTS, tool_call=False)

        result = self.complete()

        self.assertEqual(result["gettyKeywords"], ["sunset", "beach", "ocean"])

    def test_malformed_then_valid(self):
        """N malformed replies followed by a valid one take N+1 requests."""
        for malformed_count in (1, 5, 9):
            self.session.reset_mock()
            self.sleep.reset_mock()
            responses = [make_response("{not json") for _ in range(malformed_count)]
            responses.append(make_response(VALID_ARGUMENTS))
            self.session.post.side_effect = responses

            result = self.complete()

            self.assertEqual(result["gettyKeywords"], ["sunset", "beach", "ocean"])
            self.assertEqual(self.session.post.call_count, malformed_count + 1)

    def test_all_attempts_malformed(self):
        """Ten malformed replies raise MaxRetriesExceeded without an eleventh request."""
        self.session.post.side_effect = [make_response("{not json") for _ in range(11)]

        with self.assertRaises(MaxRetriesExceeded) as ctx:
            self.complete()

        self.assertEqual(self.session.post.call_count, 10)
        self.assertEqual(ctx.exception.attempts, 10)
        self.assertIsInstance(ctx.exception.last_error, MalformedResponseError)

    def test_all_attempts_transport_errors(self):
        """Ten transport failures raise MaxRetriesExceeded without an eleventh request."""
        self.session.post.side_effect = requests.ConnectionError("connection refused")

        with self.assertRaises(MaxRetriesExceeded) as ctx:
            self.complete()

        self.assertEqual(self.session.post.call_count, 10)
        self.assertIsInstance(ctx.exception.last_error, TransportError)

    def test_linear_backoff(self):
        """The wait before attempt k is (k-1) * 5 seconds; the first attempt does not wait."""
        self.session.post.side_effect = requests.ConnectionError("down")

        with self.assertRaises(MaxRetriesExceeded):
            self.complete()

        waits = [call.args[0] for call in self.sleep.call_args_list]
        self.assertEqual(waits, [(k - 1) * 5.0 for k in range(2, 11)])

    def test_http_error_is_transport_error(self):
        """HTTP error statuses are retried like network errors."""
        error_response = MagicMock()
        error_response.status_code = 429
        failing = MagicMock()
        failing.raise_for_status.side_effect = requests.HTTPError("429 Too Many Requests", response=error_response)
        self.session.post.side_effect = [failing, make_response(VALID_ARGUMENTS)]

        result = self.complete()

        self.assertEqual(result["gettyKeywords"], ["sunset", "beach", "ocean"])
        self.assertEqual(self.session.post.call_count, 2)
        self.sleep.assert_called_once_with(5.0)

    def test_mixed_failures_share_ceiling(self):
        """Transport and validation failures count against the same ten-attempt ceiling."""
        responses = []
        for index in range(10):
            if index % 2:
                responses.append(make_response("[]"))
            else:
                responses.append(requests.Timeout("timed out"))
        self.session.post.side_effect = responses

        with self.assertRaises(MaxRetriesExceeded):
            self.complete()

        self.assertEqual(self.session.post.call_count, 10)

    def test_independent_validation_policy(self):
        """Validation failures follow their own retry budget and backoff."""
        self.config.validation_retry = RetryPolicy(max_attempts=2, backoff_ms=0)
        client = StructuredCompletionClient(self.config, session=self.session, sleep=self.sleep)
        self.session.post.side_effect = [make_response("oops") for _ in range(5)]

        with self.assertRaises(MaxRetriesExceeded):
            client.complete("gpt-test", self.messages, self.schema, KEYWORD_FUNCTION_NAME, 0.9, 100)

        self.assertEqual(self.session.post.call_count, 2)
        self.sleep.assert_not_called()

    def test_schema_violation_is_retried(self):
        """Valid JSON that does not match the schema consumes a retry."""
        self.session.post.side_effect = [
            make_response(json.dumps({"gettyKeywords": "sunset"})),
            make_response(json.dumps({"other": []})),
            make_response(VALID_ARGUMENTS),
        ]

        result = self.complete()

        self.assertEqual(result["gettyKeywords"], ["sunset", "beach", "ocean"])
        self.assertEqual(self.session.post.call_count, 3)

    def test_invalid_requests_rejected(self):
        """Preconditions are checked before any request is made."""
        with self.assertRaises(ValueError):
            self.client.complete("gpt-test", [], self.schema, KEYWORD_FUNCTION_NAME, 0.9, 100)
        with self.assertRaises(ValueError):
            self.client.complete("gpt-test", self.messages, self.schema, KEYWORD_FUNCTION_NAME, 0.9, 0)
        with self.assertRaises(ValueError):
            schema = {"type": "object", "properties": {"count": {"type": "integer"}}}
            self.client.complete("gpt-test", self.messages, schema, KEYWORD_FUNCTION_NAME, 0.9, 100)

        self.session.post.assert_not_called()


class TestResponseHelpers(unittest.TestCase):
    """Test cases for response parsing helpers."""

    def test_extract_arguments_missing(self):
        """A reply without a function call is malformed."""
        with self.assertRaises(MalformedResponseError):
            extract_function_arguments({"choices": [{"message": {"content": "hello"}}]})
        with self.assertRaises(MalformedResponseError):
            extract_function_arguments({"choices": []})

    def test_validate_payload(self):
        """Payloads must be objects whose array properties hold strings."""
        schema = get_keyword_schema()
        validate_payload({"gettyKeywords": []}, schema)

        with self.assertRaises(MalformedResponseError):
            validate_payload(["sunset"], schema)
        with self.assertRaises(MalformedResponseError):
            validate_payload({"gettyKeywords": [1, 2]}, schema)
        with self.assertRaises(MalformedResponseError):
            validate_payload({}, schema)


if __name__ == '__main__':
    unittest.main()
