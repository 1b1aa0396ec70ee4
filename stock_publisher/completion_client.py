"""
Structured (function-call constrained) chat completions with bounded retries.
"""

import json
import time
from typing import Dict, Any, List, Optional, Callable

import requests

from .config import AppConfig, RetryPolicy
from .errors import TransportError, MalformedResponseError, MaxRetriesExceeded
from .logging_setup import get_logger
from .models import CompletionRequest, array_of_string_properties

logger = get_logger(__name__)


def extract_function_arguments(response_data: Dict[str, Any]) -> str:
    """
    Pull the function-call arguments string out of a chat completion response.

    Args:
        response_data: Decoded JSON body of the completion response

    Returns:
        Raw arguments string produced by the model

    Raises:
        MalformedResponseError: If the response carries no function call
    """
    try:
        message = response_data['choices'][0]['message']
    except (KeyError, IndexError, TypeError):
        raise MalformedResponseError("Response has no choices")

    tool_calls = message.get('tool_calls') or []
    if tool_calls:
        arguments = tool_calls[0].get('function', {}).get('arguments')
    else:
        arguments = (message.get('function_call') or {}).get('arguments')

    if not isinstance(arguments, str):
        raise MalformedResponseError("Response did not include function call arguments")
    return arguments


def validate_payload(payload: Any, schema: Dict[str, Any]) -> None:
    """
    Check a parsed payload against the object schema it was requested with.

    Raises:
        MalformedResponseError: If the payload does not conform
    """
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(payload).__name__}")

    for name in schema.get('required', []):
        if name not in payload:
            raise MalformedResponseError(f"Missing required property: {name}")

    for name in array_of_string_properties(schema):
        if name not in payload:
            continue
        value = payload[name]
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise MalformedResponseError(f"Property {name} must be an array of strings")


class StructuredCompletionClient:
    """Client that insists on a schema-conformant function-call reply."""

    def __init__(self, config: AppConfig, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the completion client.

        Args:
            config: Application configuration
            session: Optional object with a requests-style post (the requests module if omitted)
            sleep: Function used to wait between attempts
        """
        self.config = config
        self.completion_config = config.completion
        self.max_attempts = config.max_attempts
        self.transport_retry = config.transport_retry
        self.validation_retry = config.validation_retry
        # Shared by worker threads; module-level requests calls keep no session state
        self.session = session or requests
        self.sleep = sleep

    def complete(self, model: str, messages: List[Dict[str, Any]], schema: Dict[str, Any],
                 directive: str, temperature: float, max_output_tokens: int) -> Any:
        """
        Request a structured answer, retrying the whole request on any failure.

        Args:
            model: Model identifier
            messages: Ordered role/content messages
            schema: JSON schema for the function parameters
            directive: Name of the function the model is forced to call
            temperature: Sampling temperature
            max_output_tokens: Maximum tokens in the reply

        Returns:
            The parsed function arguments

        Raises:
            ValueError: If the request is invalid
            MaxRetriesExceeded: If no valid reply arrived within the retry budget
        """
        request = CompletionRequest(model, messages, schema, directive, temperature, max_output_tokens)
        request.validate()

        transport_failures = 0
        validation_failures = 0
        last_error = None
        attempt = 0

        while attempt < self.max_attempts:
            attempt += 1
            if last_error is not None:
                self._backoff(attempt, self._policy_for(last_error))

            try:
                arguments = self._send(request)
                return self._parse(arguments, schema)
            except TransportError as e:
                last_error = e
                transport_failures += 1
                logger.error(f"An error occurred calling {directive} (attempt {attempt}/{self.max_attempts}): "
                             f"{e.status_code} - {str(e)}")
                if transport_failures >= self.transport_retry.max_attempts:
                    break
            except MalformedResponseError as e:
                last_error = e
                validation_failures += 1
                logger.warning(f"The model didn't return valid JSON for {directive} "
                               f"(attempt {attempt}/{self.max_attempts}): {str(e)}")
                if validation_failures >= self.validation_retry.max_attempts:
                    break

        logger.error(f"Failed to get a valid {directive} response after {attempt} attempts")
        raise MaxRetriesExceeded(attempt, last_error)

    def _policy_for(self, error: Exception) -> RetryPolicy:
        if isinstance(error, TransportError):
            return self.transport_retry
        return self.validation_retry

    def _backoff(self, attempt: int, policy: RetryPolicy) -> None:
        wait = policy.wait_before(attempt)
        if wait > 0:
            logger.info(f"Retrying in {wait:g} seconds...")
            self.sleep(wait)

    def _send(self, request: CompletionRequest) -> str:
        """
        Send one request and return the raw function arguments.

        Raises:
            TransportError: On network errors, HTTP errors or an undecodable body
            MalformedResponseError: If the reply has no function call
        """
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.completion_config.api_key}",
        }

        try:
            response = self.session.post(
                self.completion_config.api_url,
                headers=headers,
                json=request.to_payload(),
                timeout=self.completion_config.request_timeout
            )
            response.raise_for_status()
            response_data = response.json()
        except requests.RequestException as e:
            status_code = getattr(getattr(e, 'response', None), 'status_code', None)
            raise TransportError(str(e), status_code=status_code) from e
        except ValueError as e:
            raise TransportError(f"Completion API returned a non-JSON body: {str(e)}") from e

        if self.config.debug_mode:
            logger.debug(f"Completion API response: {json.dumps(response_data)[:500]}")

        return extract_function_arguments(response_data)

    def _parse(self, arguments: str, schema: Dict[str, Any]) -> Any:
        try:
            payload = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Function arguments are not valid JSON: {str(e)}") from e

        validate_payload(payload, schema)
        return payload
