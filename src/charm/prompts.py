"""Prompt assembly for one-shot text generation."""

import base64
import json
import re
from pathlib import Path
from typing import Any

_IMAGE_MIMETYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
}


def expand_template(template: str, params: dict[str, str]) -> str:
    """Replace ``{{ name }}`` placeholders with parameter values."""
    result = template
    for key, value in params.items():
        pattern = re.compile(r"{{\s*" + re.escape(key) + r"\s*}}")
        result = pattern.sub(lambda _: value, result)
    return result


def guess_image_mimetype(path: str | Path) -> str | None:
    return _IMAGE_MIMETYPES.get(Path(path).suffix.lower())


def make_image_attachment(path: str | Path) -> dict[str, str] | None:
    """Data-URL image attachment, or None for unsupported file types."""
    mime = guess_image_mimetype(path)
    if not mime:
        return None
    encoded = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    return {"type": "image", "url": f"data:{mime};base64,{encoded}"}


def response_format_options(
    force_format: str | None = None,
    json_schema: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Invocation options forcing a response format or a JSON schema."""
    if force_format and json_schema is not None:
        raise ValueError("Cannot specify both a response format and a response JSON schema.")
    if force_format:
        return {"response_format": {"type": force_format}}
    if json_schema is not None:
        return {
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "forced-schema", "schema": json_schema},
            }
        }
    return {}


def build_generation_payload(
    model: str,
    user_content: str | list[Any],
    system: str | None = None,
    options: dict[str, Any] | None = None,
    history: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Request body for the transcript-extension endpoints."""
    messages = list(history or [])
    messages.append({"role": "user", "content": user_content})
    payload: dict[str, Any] = {"model": model, "transcript": {"messages": messages}}
    if system:
        payload["system"] = system
    if options:
        payload["options"] = options
    return payload


def user_content_with_attachments(text: str, attachments: list[dict[str, str]]) -> str | list[Any]:
    """Plain text, or a segment list when images are attached."""
    if not attachments:
        return text
    segments: list[Any] = [text] if text else []
    segments.extend(attachments)
    return segments


def load_json_file(path: str | Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))
