"""
Gemini Embedding Provider using Google GenAI API

Every call runs the synchronous SDK in a worker thread under a deadline.
Transport failures are reported as CollaboratorUnavailableError, everything
else as EmbeddingUnavailableError.
"""

import asyncio
import logging
import os
from typing import List, Optional

import httpx
import numpy as np
from google import genai
from google.genai import errors, types

from policylens.core.config import settings
from policylens.core.errors import CollaboratorUnavailableError, EmbeddingUnavailableError

logger = logging.getLogger(__name__)


class GeminiEmbeddingProvider:
    """
    Google Gemini embedding provider with task-type optimization
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = settings.gemini_embedding_model,
        dimension: int = settings.gemini_embedding_dimension,
        api_timeout: float = settings.gemini_api_timeout,
    ):
        """Initialize Gemini embedding provider"""
        self.model_name = model_name
        self.dimension = dimension
        self.api_timeout = api_timeout

        # Task types for different operations
        self.task_type_document = settings.gemini_task_type_document
        self.task_type_query = settings.gemini_task_type_query

        # API client (initialized lazily)
        self._client = None
        self._api_key = api_key or os.getenv("GEMINI_API_KEY") or settings.gemini_api_key

        logger.info(f"Initialized Gemini embedding provider (model: {self.model_name}, dimension: {self.dimension})")

    def _get_client(self):
        """Get or create Gemini API client (lazy initialization)"""
        if self._client is None:
            if not self._api_key:
                raise CollaboratorUnavailableError(
                    "embedding service", "GEMINI_API_KEY is not configured"
                )
            self._client = genai.Client(api_key=self._api_key)
            logger.info("Gemini API client initialized successfully")
        return self._client

    def _normalize_embeddings(self, embeddings: np.ndarray) -> np.ndarray:
        """
        Normalize embeddings to unit length

        Args:
            embeddings: Raw embeddings array, one row per text

        Returns:
            Normalized embeddings array
        """
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        norms[norms == 0] = 1  # Avoid division by zero
        return embeddings / norms

    async def embed_texts(self, texts: List[str], task_type: Optional[str] = None) -> np.ndarray:
        """
        Embed a list of texts in one API call

        Args:
            texts: Texts to embed
            task_type: Optional task type override

        Returns:
            Array of shape (len(texts), dimension)
        """
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)

        client = self._get_client()
        config = types.EmbedContentConfig(
            task_type=task_type or self.task_type_document,
            output_dimensionality=self.dimension
        )

        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    client.models.embed_content,
                    model=self.model_name,
                    contents=texts,
                    config=config
                ),
                timeout=self.api_timeout
            )
        except httpx.ConnectError as e:
            logger.error(f"Gemini API unreachable: {e}")
            raise CollaboratorUnavailableError("embedding service", str(e)) from e
        except asyncio.TimeoutError as e:
            logger.error(f"Gemini API call timed out after {self.api_timeout}s")
            raise EmbeddingUnavailableError(f"timed out after {self.api_timeout}s") from e
        except errors.APIError as e:
            logger.error(f"Gemini API error {e.code}: {e}")
            raise EmbeddingUnavailableError(f"Gemini embedding API error {e.code}: {e}") from e
        except Exception as e:
            logger.error(f"Gemini API call failed: {str(e)}")
            raise EmbeddingUnavailableError(f"Gemini embedding API error: {str(e)}") from e

        if not result.embeddings or len(result.embeddings) != len(texts):
            raise EmbeddingUnavailableError(
                f"expected {len(texts)} embeddings, got {len(result.embeddings or [])}"
            )

        embeddings = np.array([e.values for e in result.embeddings], dtype=np.float32)
        logger.debug(f"API call successful: {len(embeddings)} embeddings generated")
        return self._normalize_embeddings(embeddings)

    async def embed_text(self, text: str, task_type: Optional[str] = None) -> List[float]:
        """Embed one text and return its vector as a list"""
        embeddings = await self.embed_texts([text], task_type)
        return embeddings[0].tolist()
