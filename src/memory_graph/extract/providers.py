"""Text-extraction functions backed by LLM providers.

The ingestor only needs ``Callable[[str], str]``: prompt in, text out.
Each provider here is such a callable. FallbackCompletion tries several
in order, the way local-first extraction falls back to cloud APIs:
- OpenAI-compatible chat completions (OpenAI, DeepSeek)
- Ollama - local models
- Gemini - Google Gen AI SDK
"""

import logging
import time
from typing import Callable, Sequence

from memory_graph.config import Config
from memory_graph.errors import ExtractionError
from memory_graph.extract.prompts import JSON_ONLY_SUFFIX

logger = logging.getLogger(__name__)

CompletionFn = Callable[[str], str]

DEEPSEEK_BASE_URL = "https://api.deepseek.com"

SYSTEM_PROMPT = (
    "You extract services, environment variables and incidents from text. "
    "Respond only with valid JSON."
)


class OpenAICompletion:
    """OpenAI chat completion, or any compatible endpoint via base_url."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        base_url: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = None

    @property
    def client(self):
        """Lazy-load the OpenAI client."""
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    def __call__(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""


class DeepSeekCompletion(OpenAICompletion):
    """DeepSeek through its OpenAI-compatible endpoint."""

    name = "deepseek"

    def __init__(
        self,
        api_key: str,
        model: str = "deepseek-chat",
        base_url: str = DEEPSEEK_BASE_URL,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ):
        super().__init__(api_key, model, base_url, temperature, max_tokens)


class OllamaCompletion:
    """Local model served by Ollama."""

    name = "ollama"

    def __init__(
        self,
        model: str = "llama3.1:8b",
        host: str = "http://localhost:11434",
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ):
        self.model = model
        self.host = host
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = None

    @property
    def client(self):
        if self._client is None:
            import ollama

            self._client = ollama.Client(host=self.host)
        return self._client

    def __call__(self, prompt: str) -> str:
        response = self.client.chat(
            model=self.model,
            messages=[{"role": "user", "content": prompt + JSON_ONLY_SUFFIX}],
            format="json",
            options={"temperature": self.temperature, "num_predict": self.max_tokens},
        )
        return response["message"]["content"].strip()


class GeminiCompletion:
    """Gemini via the Google Gen AI SDK."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        temperature: float = 0.1,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self._client = None

    @property
    def client(self):
        """Lazy-load Gemini client."""
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def __call__(self, prompt: str) -> str:
        from google.genai import types

        response = self.client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                temperature=self.temperature,
            ),
        )
        return response.text or ""


class FallbackCompletion:
    """Try each provider in order; return the first successful response."""

    name = "fallback"

    def __init__(self, providers: Sequence[CompletionFn]):
        if not providers:
            raise ValueError("FallbackCompletion needs at least one provider")
        self.providers = list(providers)

    def __call__(self, prompt: str) -> str:
        failures = []
        for provider in self.providers:
            name = getattr(provider, "name", type(provider).__name__)
            start = time.time()
            try:
                response = provider(prompt)
            except Exception as e:
                logger.warning(f"Extraction provider {name} failed: {e}")
                failures.append(f"{name}: {e}")
                continue
            logger.debug(f"Extraction provider {name} answered in {time.time() - start:.1f}s")
            return response

        raise ExtractionError("All extraction providers failed (" + "; ".join(failures) + ")")


def build_completion_fn(config: Config) -> CompletionFn:
    """Assemble the configured providers into one extraction function.

    Providers that need an API key are skipped when the key is empty.

    Raises:
        ValueError: If no configured provider is usable.
    """
    providers: list[CompletionFn] = []
    for name in config.extraction_providers:
        name = name.lower()
        if name == "openai":
            if config.openai_api_key:
                providers.append(
                    OpenAICompletion(
                        api_key=config.openai_api_key,
                        model=config.openai_model,
                        base_url=config.openai_base_url,
                        temperature=config.extraction_temperature,
                        max_tokens=config.extraction_max_tokens,
                    )
                )
        elif name == "deepseek":
            if config.deepseek_api_key:
                providers.append(
                    DeepSeekCompletion(
                        api_key=config.deepseek_api_key,
                        model=config.deepseek_model,
                        temperature=config.extraction_temperature,
                        max_tokens=config.extraction_max_tokens,
                    )
                )
        elif name == "ollama":
            providers.append(
                OllamaCompletion(
                    model=config.ollama_model,
                    host=config.ollama_host,
                    temperature=config.extraction_temperature,
                    max_tokens=config.extraction_max_tokens,
                )
            )
        elif name == "gemini":
            if config.gemini_api_key:
                providers.append(
                    GeminiCompletion(
                        api_key=config.gemini_api_key,
                        model=config.gemini_model,
                        temperature=config.extraction_temperature,
                    )
                )
        else:
            raise ValueError(f"Unknown extraction provider: {name!r}")

    if not providers:
        raise ValueError("No extraction provider configured")
    if len(providers) == 1:
        return providers[0]
    return FallbackCompletion(providers)
