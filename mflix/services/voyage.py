"""Thin wrapper around the Voyage AI embeddings API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mflix.core.config import get_settings

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEY = "your_voyage_api_key"


class EmbeddingServiceError(Exception):
    """Base exception for embedding gateway failures."""

    code = "EMBEDDING_SERVICE_ERROR"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class EmbeddingNotConfiguredError(EmbeddingServiceError):
    """Raised when the API key is missing or still the placeholder value."""

    code = "VALIDATION_ERROR"


class EmbeddingAuthError(EmbeddingServiceError):
    """Raised when Voyage AI rejects the configured credential."""

    code = "EMBEDDING_AUTH_ERROR"


class VoyageClient:
    """Simple Voyage AI HTTP client using bearer auth.

    Configuration is resolved once, at construction, so a client instance
    never reads the environment while serving a request.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        output_dimension: int | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.voyage_api_key
        self.base_url = (base_url or settings.voyage_base_url).rstrip("/")
        self.model = model or settings.voyage_model
        self.output_dimension = output_dimension or settings.voyage_output_dimension
        self.timeout = timeout if timeout is not None else settings.voyage_timeout
        self.transport = transport

    def is_configured(self) -> bool:
        key = (self.api_key or "").strip()
        return bool(key) and key != PLACEHOLDER_API_KEY

    def embed(self, text: str) -> list[float]:
        """Return the query embedding for ``text``."""

        if not self.is_configured():
            raise EmbeddingNotConfiguredError(
                "Vector search unavailable: VOYAGE_API_KEY not configured. "
                "Please add your Voyage AI API key to the .env file"
            )

        payload = {
            "input": [text],
            "model": self.model,
            "output_dimension": self.output_dimension,
            "input_type": "query",
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(f"{self.base_url}/embeddings", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise EmbeddingServiceError(f"Network error calling Voyage AI API: {exc}") from exc

        if response.status_code == 401:
            raise EmbeddingAuthError(
                "Invalid Voyage AI API key. Please check your VOYAGE_API_KEY in the .env file"
            )
        if not response.is_success:
            raise EmbeddingServiceError(
                f"Voyage AI API returned status code {response.status_code}: {response.text}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise EmbeddingServiceError("Invalid Voyage AI API response: body is not JSON") from exc
        embedding = self._extract_embedding(body)
        logger.debug("Voyage embedding received (%d dimensions)", len(embedding))
        return embedding

    def _extract_embedding(self, body: Any) -> list[float]:
        if not isinstance(body, dict) or "data" not in body:
            raise EmbeddingServiceError("Invalid Voyage AI API response: missing 'data' field")

        data = body["data"]
        if not isinstance(data, list) or not data:
            raise EmbeddingServiceError(
                "Invalid Voyage AI API response: 'data' field is empty or not an array"
            )

        first = data[0]
        if not isinstance(first, dict) or "embedding" not in first:
            raise EmbeddingServiceError("Invalid Voyage AI API response: missing 'embedding' field")

        embedding = first["embedding"]
        if not isinstance(embedding, list):
            raise EmbeddingServiceError("Invalid Voyage AI API response: 'embedding' is not an array")
        if len(embedding) != self.output_dimension:
            raise EmbeddingServiceError(
                f"Invalid Voyage AI API response: expected {self.output_dimension} dimensions, "
                f"got {len(embedding)}"
            )
        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingServiceError(
                "Invalid Voyage AI API response: 'embedding' holds non-numeric values"
            ) from exc
