"""Utilities for building and parsing YAML frontmatter.

Frontmatter is used in two places:
- prompt templates declare title, type, order and variables
- stored wiki pages carry id, title, type, order, word count, reading time
  and timestamps ahead of the raw markdown body
"""

from datetime import datetime
from typing import Any

import yaml


def build_frontmatter(metadata: dict[str, Any]) -> str:
    """Build a YAML frontmatter block.

    Args:
        metadata: Ordered key/value pairs; datetimes are written as ISO strings.

    Returns:
        YAML frontmatter string starting with --- and ending with ---
        followed by a blank line.
    """
    serializable = {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in metadata.items()
    }
    body = yaml.safe_dump(serializable, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{body}---\n\n"


def build_page_frontmatter(
    page_id: str,
    title: str,
    page_type: str,
    order: int,
    word_count: int,
    reading_time: int,
    created_at: datetime,
    updated_at: datetime,
) -> str:
    """Build the header written in front of a stored wiki page."""
    return build_frontmatter(
        {
            "id": page_id,
            "title": title,
            "type": page_type,
            "order": order,
            "word_count": word_count,
            "reading_time": reading_time,
            "created_at": created_at,
            "updated_at": updated_at,
        }
    )


def parse_frontmatter(content: str) -> tuple[dict | None, str]:
    """Parse YAML frontmatter from page or template content.

    Args:
        content: Full content that may start with frontmatter

    Returns:
        Tuple of (metadata_dict, remaining_content).
        If no valid frontmatter found, returns (None, original_content).
    """
    if not content.startswith("---\n"):
        return None, content

    end_pos = content.find("\n---\n", 4)
    if end_pos == -1:
        if content.rstrip().endswith("\n---"):
            end_pos = content.rstrip().rfind("\n---")
        else:
            return None, content

    yaml_content = content[4:end_pos]

    try:
        metadata = yaml.safe_load(yaml_content)
        if not isinstance(metadata, dict):
            return None, content
    except yaml.YAMLError:
        return None, content

    remaining_start = end_pos + 5  # len("\n---\n")

    # Skip one blank line if present
    if remaining_start < len(content) and content[remaining_start] == "\n":
        remaining_start += 1

    return metadata, content[remaining_start:]
