"""HTTP boundary with the remote processing service."""

import json
import logging
from typing import Any

import requests

from charm.config import ClientConfig
from charm.errors import GenerationError

logger = logging.getLogger(__name__)

CONVERSIONS_PATH = "/api/charmonizer/v1/conversions/documents"
CHUNKINGS_PATH = "/api/charmonizer/v1/chunkings"
SUMMARIES_PATH = "/api/charmonizer/v1/summaries"
TRANSCRIPT_EXTENSION_PATH = "/api/charmonator/v1/transcript/extension"
EXTEND_TRANSCRIPT_PATH = "/api/charmonator/v1/chat/extend_transcript"
MODELS_PATH = "/api/charmonator/v1/models"
FILE_CONVERSION_PATH = "/api/charmonator/v1/conversion/file"


def assistant_messages(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Assistant turns of a transcript-extension response."""
    return [m for m in payload.get("messages") or [] if m.get("role") == "assistant"]


def message_text(message: dict[str, Any]) -> str:
    """Flatten a message's content (string or list of segments) to text."""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(seg if isinstance(seg, str) else f"[Attachment returned: {json.dumps(seg)}]" for seg in content)
    return "" if content is None else str(content)


class CharmTransport:
    """Thin wrapper over a ``requests.Session`` bound to one service.

    Each method is a single blocking round trip; nothing is retried here.
    """

    def __init__(self, config: ClientConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()

    def url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def get(self, path: str) -> requests.Response:
        url = self.url(path)
        logger.debug("GET %s", url)
        return self.session.get(url, timeout=self.config.timeout)

    def post_json(self, path: str, payload: dict[str, Any]) -> requests.Response:
        url = self.url(path)
        logger.debug("POST %s (json)", url)
        return self.session.post(url, json=payload, timeout=self.config.timeout)

    def post_multipart(
        self,
        path: str,
        files: dict[str, tuple[str, bytes]],
        data: dict[str, str] | None = None,
    ) -> requests.Response:
        url = self.url(path)
        logger.debug("POST %s (multipart: %s)", url, ", ".join(files))
        return self.session.post(url, files=files, data=data or {}, timeout=self.config.timeout)

    def extend_transcript(
        self,
        payload: dict[str, Any],
        path: str = TRANSCRIPT_EXTENSION_PATH,
    ) -> list[dict[str, Any]]:
        """Run one synchronous text-generation call.

        Returns:
            The assistant messages of the response (possibly empty).

        Raises:
            GenerationError: on transport failure, non-success status or an
                unreadable response body.
        """
        try:
            response = self.post_json(path, payload)
        except requests.RequestException as e:
            raise GenerationError(f"Failed to call {path}: {e}", category="exception") from e
        if not response.ok:
            raise GenerationError(f"HTTP {response.status_code} => {response.text}")
        try:
            body = response.json()
        except ValueError as e:
            raise GenerationError(f"Unreadable response from {path}: {e}", category="exception") from e
        return assistant_messages(body)

    def list_models(self) -> list[dict[str, Any]]:
        try:
            response = self.get(MODELS_PATH)
            if not response.ok:
                raise GenerationError(f"GET /models => HTTP {response.status_code} => {response.text}")
            return response.json().get("models") or []
        except requests.RequestException as e:
            raise GenerationError(f"Failed to retrieve models: {e}", category="exception") from e
        except ValueError as e:
            raise GenerationError(f"Unreadable model list: {e}", category="exception") from e

    def convert_file(self, filename: str, data: bytes) -> str:
        """Synchronous single-file Markdown extraction."""
        try:
            response = self.post_multipart(FILE_CONVERSION_PATH, files={"file": (filename, data)})
            if not response.ok:
                raise GenerationError(f"/conversion/file => HTTP {response.status_code} => {response.text}")
            body = response.json()
        except requests.RequestException as e:
            raise GenerationError(f"Failed to call /conversion/file: {e}", category="exception") from e
        except ValueError as e:
            raise GenerationError(f"Unreadable /conversion/file response: {e}", category="exception") from e
        markdown = body.get("markdownContent") if isinstance(body, dict) else None
        if not isinstance(markdown, str):
            raise GenerationError('Response missing "markdownContent" field.', category="exception")
        return markdown
