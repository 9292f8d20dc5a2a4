"""LiteLLM client wrapper: completion + embedding providers.

All LLM and embedding calls route through this module. LiteLLM's built-in
retry is used (num_retries=3, exponential backoff). Availability of each
provider is decided once at construction (model configured and API key
present) and exposed as an ``available`` flag that callers check before use.
"""

from __future__ import annotations

import logging
import os

import litellm

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
    "huggingface": None,
}

# Stop sequences that end a completion in the chat templates used by local models.
DEFAULT_STOP = ["<|eot_id|>", "</s>", "<|end_of_text|>"]


def provider_of(model: str) -> str:
    """Return the provider prefix of a 'provider/model' string (default: openai)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def api_key_env(model: str) -> str | None:
    """Name of the env var holding the API key for *model*, or None if keyless."""
    provider = provider_of(model)
    return _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = api_key_env(model)

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 512,
    temperature: float = 0.7,
    stop: list[str] | None = None,
    num_retries: int = 3,
) -> str:
    """Call litellm.completion() with retry/backoff. Returns content string.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        stop=stop,
        num_retries=num_retries,
    )
    return response.choices[0].message.content or ""


def embed(model: str, text: str, num_retries: int = 3) -> list[float]:
    """Call litellm.embedding() with retry/backoff. Returns embedding vector."""
    response = litellm.embedding(
        model=model,
        input=[text],
        num_retries=num_retries,
    )
    return response.data[0]["embedding"]


def _clean_completion(text: str, stop: list[str]) -> str:
    """Remove leftover special tokens from a completion."""
    for token in stop:
        text = text.replace(token, "")
    return text.strip()


class Generator:
    """Text completion capability backed by LiteLLM.

    Args:
        model: LiteLLM model string, or None/"" when generation is not configured.
        max_tokens: Default completion budget.
        temperature: Default sampling temperature.
    """

    def __init__(
        self,
        model: str | None,
        max_tokens: int = 512,
        temperature: float = 0.7,
    ) -> None:
        self.model = model or ""
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.available = _check_available(self.model, "generation")

    def generate(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        stop: list[str] | None = None,
    ) -> str:
        """Return the completion for *prompt*.

        Raises:
            RuntimeError: If the generator is not available.
            Exception: Any provider error after LiteLLM's retries.
        """
        if not self.available:
            raise RuntimeError("LLM is not available. Configure a generation model.")
        stop = stop if stop is not None else DEFAULT_STOP
        text = complete(
            self.model,
            [{"role": "user", "content": prompt}],
            max_tokens=max_tokens if max_tokens is not None else self.max_tokens,
            temperature=temperature if temperature is not None else self.temperature,
            stop=stop,
        )
        return _clean_completion(text, stop)


class Embedder:
    """Embedding capability backed by LiteLLM.

    ``embed()`` never raises: provider errors are logged and returned as None
    so callers fall back to lexical retrieval.
    """

    def __init__(self, model: str | None) -> None:
        self.model = model or ""
        self.available = _check_available(self.model, "embedding")

    def embed(self, text: str) -> list[float] | None:
        if not self.available:
            return None
        try:
            vector = embed(self.model, text)
        except Exception as exc:
            logger.warning("Embedding failed (%s): %s", self.model, exc)
            return None
        if not vector:
            logger.warning("Embedding model %s returned an empty vector", self.model)
            return None
        return [float(x) for x in vector]


def _check_available(model: str, kind: str) -> bool:
    if not model:
        logger.info("No %s model configured", kind)
        return False
    try:
        validate_api_key(model)
    except EnvironmentError as exc:
        logger.warning("%s model '%s' unavailable: %s", kind.capitalize(), model, exc)
        return False
    return True
