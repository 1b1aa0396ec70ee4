"""
Prompts and schemas for keyword generation.
"""

from typing import Dict, List, Any

KEYWORD_FUNCTION_NAME = "Generate_keywords"
KEYWORD_FIELD = "gettyKeywords"

KEYWORD_SYSTEM_PROMPT = (
    "You are an AI assistant helping a user generate keywords for images. "
    "This is for Getty Images which only uses specific keywords and you can't choose outside that. "
    "So be precise."
)


def get_keyword_schema() -> Dict[str, Any]:
    """JSON schema for the keyword function parameters."""
    return {
        "type": "object",
        "properties": {
            KEYWORD_FIELD: {
                "type": "array",
                "items": {
                    "type": "string",
                    "description": "The keyword to search for in Getty Images"
                }
            }
        },
        "required": [KEYWORD_FIELD]
    }


def get_keyword_messages(description: str, keyword_count: int = 20) -> List[Dict[str, str]]:
    """
    Build the chat messages asking for keywords for one image.

    Args:
        description: Caption of the image
        keyword_count: Number of keywords to ask for

    Returns:
        Ordered list of role/content messages
    """
    return [
        {"role": "system", "content": KEYWORD_SYSTEM_PROMPT},
        {"role": "user", "content": f"Please generate {keyword_count} keywords for the image: {description}"},
    ]


def format_size_mb(byte_size) -> str:
    if byte_size is None:
        return "-"
    return f"{byte_size / (1024 * 1024):.2f} MB"


def format_record_summary(index: int, record) -> str:
    """One human-readable block per record, as logged at the end of a run."""
    keywords = ", ".join(record.keywords) if record.keywords else "-"
    width = record.width if record.width is not None else "-"
    height = record.height if record.height is not None else "-"
    return (
        f"[{index}] {record.file_name} | {record.source_path}\n"
        f"    Width: {width}       Height: {height}       Size: {format_size_mb(record.byte_size)}\n"
        f"    Description: {record.description or '-'}\n"
        f"    Keywords: {keywords}"
    )
