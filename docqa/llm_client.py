"""Ollama embedding and generation client with error handling."""
from dataclasses import dataclass
from typing import List, Dict, Optional, Protocol
import httpx
import structlog

from docqa import config
from docqa.errors import ProviderError

logger = structlog.get_logger()


@dataclass
class GenerationOptions:
    """Sampling controls for a generation request."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_ollama(self) -> Dict:
        options = {}
        if self.temperature is not None:
            options["temperature"] = self.temperature
        if self.max_tokens is not None:
            options["num_predict"] = self.max_tokens
        return options


class EmbeddingClient(Protocol):
    async def embed(self, text: str) -> List[float]: ...


class GenerationClient(Protocol):
    async def generate(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> str: ...


class OllamaClient:
    """Async client for the Ollama embedding and generation endpoints."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        embedding_model: str = None,
        chat_model: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds
            embedding_model: Model used by embed() (defaults to config.EMBEDDING_MODEL)
            chat_model: Model used by generate() (defaults to config.CHAT_MODEL)
            transport: Optional httpx transport, mainly for tests
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.OLLAMA_TIMEOUT
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.chat_model = chat_model or config.CHAT_MODEL
        self._transport = transport

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    async def _post(self, endpoint: str, payload: Dict) -> Dict:
        try:
            async with self._client() as client:
                response = await client.post(endpoint, json=payload)
                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(
                "ollama_http_error",
                endpoint=endpoint,
                error=str(e),
                status_code=status_code,
            )
            raise ProviderError(
                f"Ollama {endpoint} failed with status {status_code}",
                status_code=status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "ollama_connection_error",
                endpoint=endpoint,
                error=str(e),
                base_url=self.base_url,
            )
            raise ProviderError(f"Ollama {endpoint} request failed: {e}") from e
        except ValueError as e:
            logger.error("ollama_invalid_response", endpoint=endpoint, error=str(e))
            raise ProviderError(f"Ollama {endpoint} returned invalid JSON") from e

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding vector for a text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            ProviderError: On API errors or an empty embedding
        """
        if not text or not text.strip():
            raise ProviderError("Cannot embed empty text")

        logger.debug(
            "ollama_embedding_request",
            model=self.embedding_model,
            prompt_length=len(text),
        )

        data = await self._post(
            "/api/embeddings",
            {"model": self.embedding_model, "prompt": text},
        )
        embedding = data.get("embedding") or []

        if not embedding:
            logger.error("ollama_empty_embedding", model=self.embedding_model)
            raise ProviderError(
                f"Empty embedding returned by model {self.embedding_model}"
            )

        logger.debug(
            "ollama_embedding_response",
            model=self.embedding_model,
            dimension=len(embedding),
        )

        return [float(x) for x in embedding]

    async def generate(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> str:
        """Run a single non-streaming completion.

        Args:
            prompt: Full prompt text
            options: Optional temperature and output-length bounds

        Returns:
            Generated text

        Raises:
            ProviderError: On API errors or an empty response
        """
        payload = {
            "model": self.chat_model,
            "prompt": prompt,
            "stream": False,
        }
        if options is not None and options.to_ollama():
            payload["options"] = options.to_ollama()

        logger.info(
            "ollama_generate_request",
            model=self.chat_model,
            prompt_length=len(prompt),
        )

        data = await self._post("/api/generate", payload)
        text = (data.get("response") or "").strip()

        if not text:
            logger.error("ollama_empty_generation", model=self.chat_model)
            raise ProviderError(f"Empty response from model {self.chat_model}")

        logger.info(
            "ollama_generate_response",
            model=self.chat_model,
            response_length=len(text),
        )

        return text

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            ProviderError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise ProviderError(f"Failed to list Ollama models: {e}") from e
