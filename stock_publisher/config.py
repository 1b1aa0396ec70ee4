"""
Configuration handling for the stock photo publisher.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any, Union

# logging_setup imports this module, so the logger is taken from logging directly
logger = logging.getLogger(__name__)

STEP_NAMES = ("metadata", "description", "keywords")
STEP_POLICIES = ("soft", "abort_record", "abort_batch")
MISSING_DESCRIPTION_POLICIES = ("skip", "placeholder")

DEFAULT_IMAGE_EXTENSIONS = ['.png', '.jpg', '.gif', '.jpeg', '.JPG']


@dataclass
class RetryPolicy:
    """Retry budget and linear backoff for one kind of failure."""
    max_attempts: int = 10
    backoff_ms: int = 5000

    def wait_before(self, attempt: int) -> float:
        """
        Seconds to wait before the given 1-indexed attempt.

        The wait grows with every attempt, so the first retry already waits
        backoff_ms. There is no immediate first retry.
        """
        return max(attempt - 1, 0) * self.backoff_ms / 1000.0


@dataclass
class CompletionConfig:
    """Structured completion (chat API) configuration."""
    api_key: str = ""
    api_url: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-3.5-turbo-0613"
    temperature: float = 0.9
    max_tokens: int = 3700
    request_timeout: int = 60


@dataclass
class CaptionProviderConfig:
    """Base class for caption provider configurations."""
    provider_type: str


@dataclass
class ReplicateConfig(CaptionProviderConfig):
    """Replicate predictions API configuration."""
    provider_type: str = "replicate"
    api_token: str = ""
    api_url: str = "https://api.replicate.com/v1/predictions"
    model_version: str = "2e1dddc8621f72155f24cf2e0adbde548458d3cab9f00c0139eea840d0ac4746"
    poll_interval: float = 1.0
    timeout: int = 120


@dataclass
class OpenAIVisionConfig(CaptionProviderConfig):
    """OpenAI-compatible vision chat configuration."""
    provider_type: str = "openai"
    api_key: str = ""
    api_url: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-4o-mini"
    prompt: str = "Describe this photo in one sentence for a stock photo listing."
    max_tokens: int = 300
    timeout: int = 60


@dataclass
class UploadTargetConfig:
    """Base class for browser upload targets."""
    target_type: str
    cookies_file: str = ""
    start_url: str = ""
    step_timeout_ms: int = 30000
    upload_timeout_ms: int = 120000


@dataclass
class GettyConfig(UploadTargetConfig):
    """Getty Images contributor portal selectors."""
    target_type: str = "getty"
    cookies_file: str = "./cookies/esp.gettyimages.com.cookies.json"
    start_url: str = "https://esp.gettyimages.com/contribute/batches?page=1&pageSize=10&sortColumn=created_at&sortOrder=DESC"
    create_batch_selector: str = 'button[data-cy="create-batch-button"]'
    confirm_batch_selector: str = 'button[data-cy="create-batch-confirm-button"]'
    upload_button_selector: str = 'button[data-cy="upload-button-file-input"]'
    confirm_upload_selector: str = 'button[data-cy="confirm-upload-button"]'
    completion_selector: str = '[data-cy="upload-complete"]:has-text("{file_name}")'


@dataclass
class PexelsConfig(UploadTargetConfig):
    """Pexels upload page selectors."""
    target_type: str = "pexels"
    cookies_file: str = "./cookies/www.pexels.com.cookies.json"
    start_url: str = "https://www.pexels.com/upload/"
    sign_in_selector: str = 'a.useAuth_hideWhenSignedOut__hAWWD > span > span'
    upload_button_selector: str = 'label'
    file_input_selector: str = 'input[type="file"]'
    completion_selector: str = 'img[alt*="{file_name}"]'


@dataclass
class AppConfig:
    """Main application configuration."""
    completion: CompletionConfig = field(default_factory=CompletionConfig)
    caption: Union[ReplicateConfig, OpenAIVisionConfig] = field(default_factory=ReplicateConfig)
    upload_target: Optional[Union[GettyConfig, PexelsConfig]] = None
    max_attempts: int = 10
    transport_retry: RetryPolicy = field(default_factory=RetryPolicy)
    validation_retry: RetryPolicy = field(default_factory=RetryPolicy)
    source_folder: str = "./img/toUpload"
    image_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_IMAGE_EXTENSIONS))
    case_insensitive_extensions: bool = False
    max_workers: Optional[int] = None  # None runs every record at once
    step_failure_policy: Dict[str, str] = field(
        default_factory=lambda: {step: "soft" for step in STEP_NAMES}
    )
    missing_description: str = "skip"
    description_placeholder: str = "a stock photograph"
    keyword_count: int = 20
    preview_max_resolution: Optional[int] = None
    upload_incomplete: bool = False
    headless: bool = False
    show_progress: bool = True
    log_level: str = "INFO"
    log_file: Optional[str] = None
    debug_mode: bool = False

    def policy_for(self, step: str) -> str:
        return self.step_failure_policy.get(step, "soft")


def _substitute_env_vars(value: Any) -> Any:
    """
    Substitute environment variables in string values.

    Args:
        value: Value to process for environment variables

    Returns:
        Value with environment variables substituted
    """
    if not isinstance(value, str):
        return value

    # Pattern to match ${ENV_VAR} syntax
    pattern = r'\${([^}]+)}'

    def replace_env_var(match):
        env_var = match.group(1)
        env_value = os.environ.get(env_var)
        if env_value is None:
            logger.warning(f"Environment variable {env_var} not found")
            return ""
        return env_value

    return re.sub(pattern, replace_env_var, value)


def _process_config_dict(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Process a configuration dictionary to substitute environment variables.

    Args:
        config_dict: Dictionary containing configuration values

    Returns:
        Processed dictionary with environment variables substituted
    """
    result = {}

    for key, value in config_dict.items():
        if isinstance(value, dict):
            result[key] = _process_config_dict(value)
        elif isinstance(value, list):
            result[key] = [
                _process_config_dict(item) if isinstance(item, dict) else _substitute_env_vars(item)
                for item in value
            ]
        else:
            result[key] = _substitute_env_vars(value)

    return result


def _pop_prefixed(config_dict: Dict[str, Any], prefix: str) -> Dict[str, Any]:
    """Remove and return every `<prefix>_<field>` entry as `{field: value}`."""
    marker = f"{prefix}_"
    keys = [key for key in config_dict if key.startswith(marker)]
    return {key[len(marker):]: config_dict.pop(key) for key in keys}


def _build_retry_policy(value: Any, name: str) -> RetryPolicy:
    if value is None:
        return RetryPolicy()
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be an object with max_attempts and backoff_ms")
    policy = RetryPolicy(**value)
    if policy.max_attempts <= 0 or policy.backoff_ms < 0:
        raise ValueError(f"Invalid {name}: {value}")
    return policy


def config_from_dict(config_dict: Dict[str, Any]) -> AppConfig:
    """
    Build an AppConfig from a flat configuration dictionary.

    Args:
        config_dict: Configuration values, provider settings prefixed by provider name

    Returns:
        AppConfig object

    Raises:
        ValueError: If the configuration is invalid
    """
    config_dict = dict(config_dict)

    completion_fields = _pop_prefixed(config_dict, 'openai')
    completion_fields.setdefault('api_key', os.environ.get('OPENAI_KEY', ''))
    completion = CompletionConfig(**completion_fields)

    # Create caption-provider-specific config
    caption_type = config_dict.pop('caption_provider', 'replicate')
    if caption_type == 'replicate':
        replicate_fields = _pop_prefixed(config_dict, 'replicate')
        replicate_fields.setdefault('api_token', os.environ.get('REPLICATE_API_TOKEN', ''))
        caption = ReplicateConfig(**replicate_fields)
    elif caption_type == 'openai':
        vision_fields = _pop_prefixed(config_dict, 'vision')
        vision_fields.setdefault('api_key', completion.api_key)
        caption = OpenAIVisionConfig(**vision_fields)
    else:
        raise ValueError(f"Unsupported caption provider: {caption_type}")

    target_type = config_dict.pop('upload_target', None)
    getty_fields = _pop_prefixed(config_dict, 'getty')
    pexels_fields = _pop_prefixed(config_dict, 'pexels')
    if target_type is None:
        upload_target = None
    elif target_type == 'getty':
        upload_target = GettyConfig(**getty_fields)
    elif target_type == 'pexels':
        upload_target = PexelsConfig(**pexels_fields)
    else:
        raise ValueError(f"Unsupported upload target: {target_type}")

    transport_retry = _build_retry_policy(config_dict.pop('transport_retry', None), 'transport_retry')
    validation_retry = _build_retry_policy(config_dict.pop('validation_retry', None), 'validation_retry')

    policies = {step: "soft" for step in STEP_NAMES}
    policies.update(config_dict.pop('step_failure_policy', {}) or {})
    for step, policy in policies.items():
        if step not in STEP_NAMES:
            raise ValueError(f"Unknown enrichment step in step_failure_policy: {step}")
        if policy not in STEP_POLICIES:
            raise ValueError(f"Unsupported failure policy for {step}: {policy}")

    app_config = AppConfig(
        completion=completion,
        caption=caption,
        upload_target=upload_target,
        transport_retry=transport_retry,
        validation_retry=validation_retry,
        step_failure_policy=policies,
        **config_dict
    )

    if app_config.missing_description not in MISSING_DESCRIPTION_POLICIES:
        raise ValueError(f"Unsupported missing_description policy: {app_config.missing_description}")
    if app_config.max_attempts <= 0:
        raise ValueError("max_attempts must be positive")
    if app_config.max_workers is not None and app_config.max_workers <= 0:
        raise ValueError("max_workers must be positive or null")

    return app_config


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load and validate configuration from JSON file.

    Args:
        config_path: Path to the configuration JSON file, or None for defaults

    Returns:
        AppConfig object

    Raises:
        ValueError: If the configuration is invalid
        RuntimeError: If the configuration file cannot be loaded
    """
    if config_path is None:
        return config_from_dict({})

    config_path = os.path.abspath(os.path.expanduser(config_path))

    try:
        with open(config_path, 'r') as cfg:
            config_dict = json.load(cfg)
    except (json.JSONDecodeError, IOError) as e:
        raise RuntimeError(f"Failed to load configuration from {config_path}: {str(e)}")

    if not isinstance(config_dict, dict):
        raise ValueError("Configuration file must contain a JSON object")

    # Process environment variables in the config
    config_dict = _process_config_dict(config_dict)

    try:
        return config_from_dict(config_dict)
    except TypeError as e:
        raise ValueError(f"Invalid configuration field: {str(e)}")


def save_config(config: AppConfig, config_path: str) -> None:
    """
    Save configuration to JSON file.

    Args:
        config: AppConfig object
        config_path: Path to save the configuration

    Raises:
        RuntimeError: If the configuration cannot be saved
    """
    try:
        config_dict = asdict(config)

        completion = config_dict.pop('completion', {})
        for key, value in completion.items():
            config_dict[f'openai_{key}'] = value

        caption = config_dict.pop('caption', {})
        caption_type = caption.pop('provider_type', 'replicate')
        config_dict['caption_provider'] = caption_type
        prefix = 'replicate' if caption_type == 'replicate' else 'vision'
        for key, value in caption.items():
            config_dict[f'{prefix}_{key}'] = value

        target = config_dict.pop('upload_target', None)
        if target:
            target_type = target.pop('target_type')
            config_dict['upload_target'] = target_type
            for key, value in target.items():
                config_dict[f'{target_type}_{key}'] = value

        with open(config_path, 'w') as f:
            json.dump(config_dict, f, indent=2)
    except (IOError, TypeError) as e:
        raise RuntimeError(f"Failed to save configuration: {str(e)}")
