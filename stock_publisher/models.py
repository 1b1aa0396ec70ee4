"""
Records, requests and reports passed between the publishing stages.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class ImageRecord:
    """One discovered image file and everything learned about it."""
    file_name: str
    source_path: str
    width: Optional[int] = None
    height: Optional[int] = None
    byte_size: Optional[int] = None
    description: Optional[str] = None
    keywords: Optional[List[str]] = None

    @property
    def file_path(self) -> str:
        return os.path.join(self.source_path, self.file_name)

    def is_eligible(self) -> bool:
        """A record may be uploaded only once it has both a description and keywords."""
        return self.description is not None and self.keywords is not None


@dataclass
class CompletionRequest:
    """A schema-constrained chat completion request."""
    model: str
    messages: List[Dict[str, Any]]
    schema: Dict[str, Any]
    directive: str
    temperature: float
    max_output_tokens: int

    def validate(self) -> None:
        """
        Check the request before it is sent.

        Raises:
            ValueError: If messages, schema or token limit are unusable
        """
        if not self.messages:
            raise ValueError("messages must not be empty")
        for message in self.messages:
            if not isinstance(message, dict) or 'role' not in message or 'content' not in message:
                raise ValueError(f"Invalid message, expected role and content: {message!r}")

        if not self.directive:
            raise ValueError("directive must name the function to call")

        if not isinstance(self.schema, dict) or self.schema.get('type') != 'object' \
                or not isinstance(self.schema.get('properties'), dict):
            raise ValueError("schema must describe an object with properties")
        if not array_of_string_properties(self.schema):
            raise ValueError("schema must declare at least one array-of-string property")

        if self.max_output_tokens <= 0:
            raise ValueError("max_output_tokens must be positive")

    def to_payload(self) -> Dict[str, Any]:
        """Render the request body for an OpenAI-compatible chat completions endpoint."""
        return {
            "model": self.model,
            "messages": self.messages,
            "tools": [
                {
                    "type": "function",
                    "function": {"name": self.directive, "parameters": self.schema},
                }
            ],
            "tool_choice": {"type": "function", "function": {"name": self.directive}},
            "temperature": self.temperature,
            "max_tokens": self.max_output_tokens,
        }


def array_of_string_properties(schema: Dict[str, Any]) -> List[str]:
    """Names of the schema properties declared as arrays of strings."""
    names = []
    for name, spec in schema.get('properties', {}).items():
        if not isinstance(spec, dict) or spec.get('type') != 'array':
            continue
        items = spec.get('items', {})
        if isinstance(items, dict) and items.get('type') == 'string':
            names.append(name)
    return names


class RecordStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    FAILED = "failed"


@dataclass
class RecordOutcome:
    """Result of running the enrichment chain for one record."""
    record: ImageRecord
    status: RecordStatus = RecordStatus.INCOMPLETE
    failed_step: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)
    completed_steps: List[str] = field(default_factory=list)
    elapsed: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'file_name': self.record.file_name,
            'status': self.status.value,
            'failed_step': self.failed_step,
            'errors': dict(self.errors),
            'completed_steps': list(self.completed_steps),
            'elapsed': self.elapsed,
        }


@dataclass
class BatchReport:
    """Per-record outcomes for one enrichment run, in input order."""
    outcomes: List[RecordOutcome] = field(default_factory=list)
    total_time: float = 0.0

    @property
    def records(self) -> List[ImageRecord]:
        return [outcome.record for outcome in self.outcomes]

    @property
    def eligible_records(self) -> List[ImageRecord]:
        return [outcome.record for outcome in self.outcomes if outcome.record.is_eligible()]

    def count(self, status: RecordStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the report to a dictionary."""
        total = len(self.outcomes)
        result = {
            'total_records': total,
            'complete_records': self.count(RecordStatus.COMPLETE),
            'incomplete_records': self.count(RecordStatus.INCOMPLETE),
            'failed_records': self.count(RecordStatus.FAILED),
            'total_time': self.total_time,
            'outcomes': [outcome.to_dict() for outcome in self.outcomes],
        }
        result['avg_time_per_record'] = self.total_time / total if total else 0
        return result


@dataclass
class UploadReport:
    """What happened to each record handed to an uploader."""
    target: str
    uploaded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    not_attempted: List[str] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed and not self.not_attempted

    def to_dict(self) -> Dict[str, Any]:
        return {
            'target': self.target,
            'uploaded': list(self.uploaded),
            'failed': dict(self.failed),
            'not_attempted': list(self.not_attempted),
            'excluded': list(self.excluded),
        }
