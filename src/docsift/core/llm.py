"""Extraction and summarization calls against the OpenAI API.

Extract(file|text, schema) -> JSON object and Summarize(prompt) -> text.
Transport errors are retried; an empty or malformed payload is returned
as None so the caller leaves the field null for the next run.
"""

import json
import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import openai
from dotenv import load_dotenv
from tenacity import retry, stop_after_attempt, wait_exponential

from .errors import ConfigurationError, ExtractionError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

EXTRACT_INSTRUCTIONS = (
    "Extract the requested fields from the document. "
    "Fill every field; when a value is not present in the document, answer with the string None."
)

FieldSpec = Union[str, Dict[str, Any]]


def build_response_format(schema: Dict[str, FieldSpec]) -> Dict[str, Any]:
    """
    Turn a field map into a strict JSON-schema response format.

    A string value is the free-text description of a string field; a dict is
    used as the field's JSON schema as given.
    """
    properties: Dict[str, Any] = {}
    for name, spec in schema.items():
        if isinstance(spec, str):
            properties[name] = {"type": "string", "description": spec}
        else:
            properties[name] = spec

    return {
        "type": "json_schema",
        "json_schema": {
            "name": "extraction",
            "strict": True,
            "schema": {
                "type": "object",
                "properties": properties,
                "required": list(properties),
                "additionalProperties": False,
            },
        },
    }


def parse_payload(content: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode a model response; None when it is empty, malformed or not an object."""
    if not content or not content.strip():
        return None
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"Malformed extraction payload: {e}")
        return None
    if not isinstance(payload, dict) or not payload:
        return None
    return payload


class ExtractionService:
    """Structured extraction and summarization through one chat model."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        client: Optional[openai.OpenAI] = None,
        api_key: Optional[str] = None,
    ):
        self.model = model
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ConfigurationError("OpenAI API key not found in environment variables")
            client = openai.OpenAI(api_key=api_key)
        self.client = client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        reraise=True
    )
    def _complete(self, messages: List[Dict[str, Any]], **kwargs: Any) -> Optional[str]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            **kwargs
        )
        if not response.choices:
            return None
        return response.choices[0].message.content

    def _upload(self, path: Path) -> str:
        with open(path, "rb") as f:
            uploaded = self.client.files.create(file=f, purpose="user_data")
        return uploaded.id

    def extract(self, source: Union[Path, str], schema: Dict[str, FieldSpec]) -> Optional[Dict[str, Any]]:
        """
        Extract structured fields from a staged file or from text.

        Args:
            source: Path to the staged file (sent as a file input) or document text
            schema: Field name -> description, or -> JSON schema fragment

        Returns:
            The extracted object, or None when the payload is empty or malformed

        Raises:
            ExtractionError: if the API call keeps failing
        """
        response_format = build_response_format(schema)
        file_id = None
        try:
            if isinstance(source, Path):
                file_id = self._upload(source)
                content: Any = [
                    {"type": "file", "file": {"file_id": file_id}},
                    {"type": "text", "text": EXTRACT_INSTRUCTIONS},
                ]
            else:
                content = f"{EXTRACT_INSTRUCTIONS}\n\n{source}"

            raw = self._complete(
                [{"role": "user", "content": content}],
                response_format=response_format,
                temperature=0,
            )
        except (openai.OpenAIError, OSError) as e:
            raise ExtractionError(f"Extraction call failed: {e}") from e
        finally:
            if file_id is not None:
                self._discard_upload(file_id)

        return parse_payload(raw)

    def _discard_upload(self, file_id: str) -> None:
        try:
            self.client.files.delete(file_id)
        except openai.OpenAIError as e:
            logger.warning(f"Failed to delete uploaded file {file_id}: {e}")

    def summarize(self, prompt: str) -> Optional[str]:
        """
        Complete a summarization prompt.

        Returns:
            The summary text, or None when the model returned nothing

        Raises:
            ExtractionError: if the API call keeps failing
        """
        try:
            raw = self._complete(
                [{"role": "user", "content": prompt}],
                temperature=0.3,
                max_tokens=300,
            )
        except openai.OpenAIError as e:
            raise ExtractionError(f"Summarization call failed: {e}") from e

        if raw is None or not raw.strip():
            return None
        return raw.strip()
