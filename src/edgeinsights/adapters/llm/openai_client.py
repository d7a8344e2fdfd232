"""OpenAI implementations of the embedding and completion ports."""

import logging

from openai import AsyncOpenAI, OpenAIError

from edgeinsights.core.errors import CompletionError, EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-ada-002"
DEFAULT_COMPLETION_MODEL = "gpt-4"
DEFAULT_TEMPERATURE = 0.1
DEFAULT_TIMEOUT = 30.0

SQL_SYSTEM_PROMPT = (
    "You are a SQL expert. Generate only valid SQLite SQL queries. "
    "Return only the SQL query without any explanation or markdown formatting."
)


def create_client(api_key: str, timeout: float = DEFAULT_TIMEOUT) -> AsyncOpenAI:
    """Build the async OpenAI client shared by the embedder and completer."""
    return AsyncOpenAI(api_key=api_key, timeout=timeout)


class OpenAIEmbedder:
    """EmbedderPort backed by the OpenAI embeddings API."""

    def __init__(self, client: AsyncOpenAI, model: str = DEFAULT_EMBEDDING_MODEL) -> None:
        self._client = client
        self._model = model

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._client.embeddings.create(model=self._model, input=text)
        except OpenAIError as e:
            logger.error("[OpenAI API Error] embeddings: %s", e)
            raise EmbeddingError(f"embedding request failed: {e}") from e
        if not response.data:
            raise EmbeddingError("no embedding data returned")
        vector = list(response.data[0].embedding)
        if not vector:
            raise EmbeddingError("embedding collaborator returned an empty vector")
        return vector


class OpenAICompleter:
    """CompleterPort backed by the OpenAI chat completions API.

    Args:
        client: Async OpenAI client.
        model: Chat model name.
        temperature: Sampling temperature; kept low so generated SQL is stable.
        system_prompt: System message sent before every prompt.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = DEFAULT_COMPLETION_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        system_prompt: str = SQL_SYSTEM_PROMPT,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature
        self._system_prompt = system_prompt

    async def complete(self, prompt: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": self._system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=self._temperature,
            )
        except OpenAIError as e:
            logger.error("[OpenAI API Error] chat: %s", e)
            raise CompletionError(f"completion request failed: {e}") from e
        if not response.choices or not response.choices[0].message.content:
            raise CompletionError("no completion returned")
        return response.choices[0].message.content.strip()


class UnconfiguredEmbedder:
    """EmbedderPort used when no API key is set; every call fails."""

    async def embed(self, text: str) -> list[float]:
        raise EmbeddingError("OpenAI API key not configured")
