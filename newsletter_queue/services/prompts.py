"""Prompt rendering, token budgeting and section response parsing."""

import math
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from newsletter_queue.infrastructure.error_handling import (
    ConfigurationError,
    TransientProviderError,
)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")
HEADING_MARKERS = re.compile(r"^#+\s*")

# Fillers used when a company leaves a prompt field empty
NEUTRAL_FILLERS: Dict[str, str] = {
    "company_name": "our company",
    "industry": "our industry",
    "target_audience": "our readers",
    "audience_description": "professionals interested in this topic",
}
DEFAULT_FILLER = "our audience"

CHARS_PER_TOKEN = 4


@dataclass
class ParsedSection:
    """Title and body extracted from a generated response."""

    title: str
    content: str


def render_prompt(template: str, context: Mapping[str, Optional[str]]) -> str:
    """Substitute {{placeholder}} markers from the company context.

    Missing or blank values fall back to a neutral phrase.
    """

    def _replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        value = context.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
        return NEUTRAL_FILLERS.get(key, DEFAULT_FILLER)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def estimate_tokens(text: str) -> int:
    """Rough token count at four characters per token."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def build_system_message(section_type: str, max_tokens: int) -> str:
    return (
        f"You are a professional newsletter writer. Write a {section_type.replace('_', ' ')} "
        f"section for a company newsletter. Put a short title on the first line and the "
        f"section body below it. The response must not exceed {max_tokens} tokens."
    )


def compute_max_tokens(
    prompt_text: str,
    context_window: int,
    token_buffer: int,
    max_output_tokens: int,
) -> int:
    """Output token cap that keeps prompt plus output inside the context window."""
    available = context_window - estimate_tokens(prompt_text) - token_buffer
    if available <= 0:
        raise ConfigurationError(
            "Rendered prompt leaves no room for output within the context window",
            details={
                "prompt_tokens": estimate_tokens(prompt_text),
                "context_window": context_window,
                "token_buffer": token_buffer,
            },
        )
    return min(max_output_tokens, available)


def build_messages(
    section_type: str,
    user_prompt: str,
    context_window: int,
    token_buffer: int,
    max_output_tokens: int,
) -> Tuple[List[Dict[str, str]], int]:
    """Chat messages for one section plus the output token budget.

    The budget covers the system message as rendered with the upper bound.
    """
    draft_system = build_system_message(section_type, max_output_tokens)
    max_tokens = compute_max_tokens(
        draft_system + "\n" + user_prompt,
        context_window,
        token_buffer,
        max_output_tokens,
    )
    messages = [
        {"role": "system", "content": build_system_message(section_type, max_tokens)},
        {"role": "user", "content": user_prompt},
    ]
    return messages, max_tokens


def parse_section_content(response: Optional[str]) -> ParsedSection:
    """Split a generated response into title and body.

    The first non-empty line is the title (markdown heading markers
    removed); everything after it is the body, possibly empty. Empty
    output raises TransientProviderError so the job is retried.
    """
    if response is None or not response.strip():
        raise TransientProviderError("Content provider returned an empty response")

    lines = response.strip().splitlines()
    title = HEADING_MARKERS.sub("", lines[0].strip()).strip().strip("*").strip()
    content = "\n".join(lines[1:]).strip()

    return ParsedSection(title=title, content=content)


def build_image_prompt(title: str, section_type: str, industry: Optional[str]) -> str:
    subject = industry or NEUTRAL_FILLERS["industry"]
    return (
        f"A clean, professional editorial illustration for a newsletter section titled "
        f"\"{title}\" ({section_type.replace('_', ' ')}) about {subject}. No text in the image."
    )
