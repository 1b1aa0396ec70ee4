"""
Caption provider interface and implementations.
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Callable

import requests

from .config import AppConfig, ReplicateConfig, OpenAIVisionConfig
from .errors import TransportError, MalformedResponseError
from .logging_setup import get_logger

logger = get_logger(__name__)


class CaptionProvider(ABC):
    """Abstract base class for vision captioning services."""

    @staticmethod
    def get_provider(config: AppConfig) -> 'CaptionProvider':
        """
        Factory method to get the caption provider named in the configuration.

        Args:
            config: Application configuration

        Returns:
            An instance of the appropriate CaptionProvider subclass
        """
        provider_type = config.caption.provider_type.lower()

        if provider_type == 'replicate':
            return ReplicateCaptionProvider(config)
        elif provider_type == 'openai':
            return OpenAIVisionCaptionProvider(config)
        raise ValueError(f"Unsupported caption provider: {provider_type}")

    def __init__(self, config: AppConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float) -> Dict[str, Any]:
        try:
            response = self.session.post(url, json=payload, headers=headers, timeout=timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            status_code = getattr(getattr(e, 'response', None), 'status_code', None)
            raise TransportError(str(e), status_code=status_code) from e
        except ValueError as e:
            raise TransportError(f"Caption API returned a non-JSON body: {str(e)}") from e

    @abstractmethod
    def describe(self, data_uri: str) -> str:
        """
        Caption an image.

        Args:
            data_uri: Image encoded as a base64 data URI

        Returns:
            Caption text

        Raises:
            TransportError: If the service cannot be reached
            MalformedResponseError: If the service produced no caption
        """
        pass


class ReplicateCaptionProvider(CaptionProvider):
    """Replicate predictions API running an image captioning model."""

    def __init__(self, config: AppConfig, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__(config, session)

        if not isinstance(config.caption, ReplicateConfig):
            raise ValueError("Provider must be a ReplicateConfig instance")

        self.replicate_config = config.caption
        self.sleep = sleep
        self.headers = {
            "Authorization": f"Bearer {self.replicate_config.api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }

    def describe(self, data_uri: str) -> str:
        payload = {
            "version": self.replicate_config.model_version,
            "input": {"image": data_uri},
        }
        prediction = self._post(self.replicate_config.api_url, payload, self.headers,
                                self.replicate_config.timeout)
        prediction = self._wait_for_prediction(prediction)
        return self._caption_from_output(prediction.get('output'))

    def _wait_for_prediction(self, prediction: Dict[str, Any]) -> Dict[str, Any]:
        """Poll a prediction until it leaves the starting/processing states."""
        deadline = time.monotonic() + self.replicate_config.timeout

        while prediction.get('status') in ('starting', 'processing'):
            if time.monotonic() >= deadline:
                raise TransportError(f"Prediction {prediction.get('id')} did not finish "
                                     f"within {self.replicate_config.timeout}s")
            get_url = (prediction.get('urls') or {}).get('get')
            if not get_url:
                raise MalformedResponseError("Pending prediction has no polling URL")

            self.sleep(self.replicate_config.poll_interval)
            try:
                response = self.session.get(get_url, headers=self.headers, timeout=self.replicate_config.timeout)
                response.raise_for_status()
                prediction = response.json()
            except requests.RequestException as e:
                status_code = getattr(getattr(e, 'response', None), 'status_code', None)
                raise TransportError(str(e), status_code=status_code) from e
            except ValueError as e:
                raise TransportError(f"Prediction poll returned a non-JSON body: {str(e)}") from e

        if prediction.get('status') != 'succeeded':
            raise MalformedResponseError(
                f"Prediction ended with status {prediction.get('status')}: {prediction.get('error')}"
            )
        return prediction

    @staticmethod
    def _caption_from_output(output: Any) -> str:
        if isinstance(output, list):
            output = " ".join(str(part) for part in output)
        if isinstance(output, dict):
            output = output.get('caption') or output.get('text')
        if not output or not str(output).strip():
            raise MalformedResponseError("Captioning model returned no output")

        caption = str(output).strip()
        # BLIP prefixes its answers with "Caption: "
        if caption.lower().startswith("caption:"):
            caption = caption[len("caption:"):].strip()
        return caption


class OpenAIVisionCaptionProvider(CaptionProvider):
    """OpenAI-compatible chat API with image input."""

    def __init__(self, config: AppConfig, session: Optional[requests.Session] = None):
        super().__init__(config, session)

        if not isinstance(config.caption, OpenAIVisionConfig):
            raise ValueError("Provider must be an OpenAIVisionConfig instance")

        self.vision_config = config.caption

    def describe(self, data_uri: str) -> str:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.vision_config.api_key}",
        }
        payload = {
            "model": self.vision_config.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self.vision_config.prompt},
                        {"type": "image_url", "image_url": {"url": data_uri}},
                    ]
                }
            ],
            "max_tokens": self.vision_config.max_tokens,
        }

        logger.debug(f"Calling vision API with model: {self.vision_config.model}")
        response_data = self._post(self.vision_config.api_url, payload, headers, self.vision_config.timeout)

        try:
            content = response_data['choices'][0]['message'].get('content')
        except (KeyError, IndexError, TypeError, AttributeError):
            raise MalformedResponseError("Invalid response format from vision API")

        if not content or not content.strip():
            raise MalformedResponseError("Vision API returned an empty caption")
        return content.strip()
