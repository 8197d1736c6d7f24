"""OpenAI and Azure OpenAI embeddings providers."""

from __future__ import annotations

import os
import random
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

import httpx
import tiktoken
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AzureOpenAI,
    OpenAI,
    RateLimitError,
)

from reposync.core.logging import Logger
from reposync.modules.embedding.errors import (
    EmbeddingProviderConfigurationError,
    EmbeddingProviderError,
    EmbeddingProviderInputTooLargeError,
    EmbeddingProviderRateLimitError,
    EmbeddingProviderRequestError,
    EmbeddingProviderRetryExceededError,
    EmbeddingProviderRetryableError,
)

from . import (
    EmbedRequestOptions,
    Embedding,
    EmbeddingMatrix,
    EmbeddingProviderCaps,
    EmbeddingProviderModel,
    EmbeddingsProvider,
    ProviderInitContext,
)

__all__ = [
    "AzureOpenAIEmbeddingsProvider",
    "OpenAIEmbeddingsProvider",
    "azure_openai_provider_factory",
    "openai_provider_factory",
]

_DEFAULT_TIMEOUT = 120.0
_DEFAULT_PARALLEL_REQUESTS = 4
_DEFAULT_BATCH_CEILING = 128
_DEFAULT_TOKEN_CEILING = 8_191
_TOKEN_PAD = 8
_BACKOFF_BASE = 0.5
_BACKOFF_MULTIPLIER = 2.0
_BACKOFF_CAP = 8.0
_JITTER_RATIO = 0.2
_MAX_ATTEMPTS = 5
_DIMENSION_PROBE_TEXT = "__REPOSYNC_DIMENSION_PROBE__"


@dataclass(frozen=True, slots=True)
class _OpenAIModelMetadata:
    name: str
    dim: int | None
    max_batch_size: int
    max_parallel_requests: int
    max_request_tokens: int
    max_input_tokens: int | None = None


_OPENAI_MODELS: Mapping[str, _OpenAIModelMetadata] = {
    "text-embedding-3-small": _OpenAIModelMetadata(
        name="text-embedding-3-small",
        dim=1_536,
        max_batch_size=128,
        max_parallel_requests=4,
        max_request_tokens=8_191,
        max_input_tokens=8_191,
    ),
    "text-embedding-3-large": _OpenAIModelMetadata(
        name="text-embedding-3-large",
        dim=3_072,
        max_batch_size=64,
        max_parallel_requests=4,
        max_request_tokens=8_191,
        max_input_tokens=8_191,
    ),
    "text-embedding-ada-002": _OpenAIModelMetadata(
        name="text-embedding-ada-002",
        dim=1_536,
        max_batch_size=128,
        max_parallel_requests=4,
        max_request_tokens=8_191,
        max_input_tokens=8_191,
    ),
}


def _normalize_model_name(model: str) -> str:
    normalized = model.strip()
    if not normalized:
        raise ValueError("model cannot be blank")
    return normalized


def _resolve_timeout(config: Mapping[str, object] | None) -> float:
    raw_env = os.environ.get("OPENAI_TIMEOUT_SECONDS")
    raw_config = None
    if config:
        candidate = config.get("timeout")
        if isinstance(candidate, (float, int)):
            raw_config = float(candidate)
    value = raw_env or raw_config
    if value is None:
        return _DEFAULT_TIMEOUT
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            "OPENAI_TIMEOUT_SECONDS must be a number when provided.",
        ) from exc
    if parsed <= 0:
        raise ValueError("OPENAI_TIMEOUT_SECONDS must be positive.")
    return parsed


class OpenAIEmbeddingsProvider(EmbeddingsProvider):
    """Embed texts via the OpenAI embeddings API."""

    provider_key = "openai"

    def __init__(
        self,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
        client: OpenAI | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.logger = logger
        self._config = dict(config or {})
        self._sleep = sleep
        self._now = now
        self._token_cache: dict[tuple[str, str], int] = {}
        self._dim_cache: dict[str, int] = {}
        self._stats = {"requests": 0, "retries": 0, "failures": 0}
        self._client = client or self._build_client()

    @property
    def stats(self) -> Mapping[str, int]:
        """Return counters captured during the provider lifetime."""

        return dict(self._stats)

    # ------------------------------------------------------------------#
    # Provider interface
    # ------------------------------------------------------------------#
    def describe_model(self, model: str) -> EmbeddingProviderModel:
        name = _normalize_model_name(model)
        metadata = _OPENAI_MODELS.get(name)
        if metadata and metadata.dim is not None:
            return EmbeddingProviderModel(
                provider=self.provider_key,
                name=metadata.name,
                dim=metadata.dim,
            )

        dimension = self._dim_cache.get(name)
        if dimension is None:
            dimension = self._probe_dimension(model=name)
        return EmbeddingProviderModel(
            provider=self.provider_key,
            name=name,
            dim=dimension,
        )

    def capabilities(
        self,
        *,
        model: str | None = None,
    ) -> EmbeddingProviderCaps:
        metadata = None
        if model is not None:
            metadata = _OPENAI_MODELS.get(_normalize_model_name(model))
        if metadata is None:
            return EmbeddingProviderCaps(
                max_batch_size=_DEFAULT_BATCH_CEILING,
                max_parallel_requests=_DEFAULT_PARALLEL_REQUESTS,
                max_request_tokens=_DEFAULT_TOKEN_CEILING,
                max_input_tokens=_DEFAULT_TOKEN_CEILING,
            )
        return EmbeddingProviderCaps(
            max_batch_size=metadata.max_batch_size,
            max_parallel_requests=metadata.max_parallel_requests,
            max_request_tokens=metadata.max_request_tokens,
            max_input_tokens=metadata.max_input_tokens,
        )

    def embed_texts(
        self,
        texts: Sequence[str],
        *,
        model: str,
        options: EmbedRequestOptions,
    ) -> EmbeddingMatrix:
        if not texts:
            return ()

        name = _normalize_model_name(model)
        caps = self.capabilities(model=name)
        limit = min(options.max_batch_size, caps.max_batch_size)
        request_limit = (
            caps.max_request_tokens
            or caps.max_input_tokens
            or _DEFAULT_TOKEN_CEILING
        )
        if options.max_input_tokens is not None:
            request_limit = min(request_limit, options.max_input_tokens)

        normalized_texts = [self._normalize_text(text) for text in texts]
        token_counts = [
            self._estimate_tokens(model=name, text=normalized)
            for normalized in normalized_texts
        ]

        batches = self._chunk_batches(
            normalized_texts,
            token_counts,
            limit=limit,
            token_limit=request_limit,
            model=name,
        )

        results: list[Embedding] = []
        for batch in batches:
            embeddings = self._invoke_with_retries(
                model=name,
                batch=batch.texts,
                token_count=batch.tokens,
            )
            if len(embeddings) != len(batch.texts):
                raise EmbeddingProviderRequestError(
                    (
                        f"Expected {len(batch.texts)} embeddings, "
                        f"received {len(embeddings)}."
                    ),
                    provider=self.provider_key,
                    model=name,
                )
            results.extend(
                tuple(float(value) for value in vector) for vector in embeddings
            )

        return tuple(results)

    # ------------------------------------------------------------------#
    # Internal helpers
    # ------------------------------------------------------------------#
    def _build_client(self) -> OpenAI:
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise EmbeddingProviderConfigurationError(
                "OPENAI_API_KEY must be set to use the OpenAI provider.",
                provider=self.provider_key,
                model="*",
            )

        return OpenAI(
            api_key=api_key,
            base_url=os.environ.get("OPENAI_BASE_URL"),
            organization=os.environ.get("OPENAI_ORG_ID"),
            timeout=_resolve_timeout(self._config),
        )

    @dataclass(slots=True)
    class _Batch:
        texts: tuple[str, ...]
        tokens: int

    def _chunk_batches(
        self,
        texts: Sequence[str],
        token_counts: Sequence[int],
        *,
        limit: int,
        token_limit: int,
        model: str,
    ) -> tuple[_Batch, ...]:
        batches: list[OpenAIEmbeddingsProvider._Batch] = []
        current: list[str] = []
        current_tokens = 0

        for text, tokens in zip(texts, token_counts):
            if tokens > token_limit:
                raise EmbeddingProviderInputTooLargeError(
                    (
                        "Input text exceeds OpenAI token limit "
                        f"({tokens} > {token_limit})."
                    ),
                    provider=self.provider_key,
                    model=model,
                    token_count=tokens,
                    limit=token_limit,
                )

            would_exceed_batch = len(current) >= limit
            would_exceed_tokens = current_tokens + tokens > token_limit

            if current and (would_exceed_batch or would_exceed_tokens):
                batches.append(
                    OpenAIEmbeddingsProvider._Batch(
                        texts=tuple(current),
                        tokens=current_tokens,
                    )
                )
                current = []
                current_tokens = 0

            current.append(text)
            current_tokens += tokens

        if current:
            batches.append(
                OpenAIEmbeddingsProvider._Batch(
                    texts=tuple(current),
                    tokens=current_tokens,
                )
            )

        return tuple(batches)

    def _probe_dimension(self, *, model: str) -> int | None:
        batch = (_DIMENSION_PROBE_TEXT,)
        embeddings = self._invoke_with_retries(
            model=model,
            batch=batch,
            token_count=self._estimate_tokens(model=model, text=batch[0]),
            is_probe=True,
        )
        if not embeddings:
            return None
        dimension = len(embeddings[0])
        self._dim_cache[model] = dimension
        return dimension

    def _estimate_tokens(self, *, model: str, text: str) -> int:
        key = (model, text)
        cached = self._token_cache.get(key)
        if cached is not None:
            return cached

        try:
            encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            encoding = tiktoken.get_encoding("cl100k_base")
        estimate = _TOKEN_PAD + len(encoding.encode(text))

        self._token_cache[key] = estimate
        return estimate

    def _normalize_text(self, text: str) -> str:
        normalized = text.replace("\r\n", "\n").replace("\r", "\n")
        return normalized.strip()

    def _invoke_with_retries(
        self,
        *,
        model: str,
        batch: Sequence[str],
        token_count: int,
        is_probe: bool = False,
    ) -> list[list[float]]:
        attempts = 0
        jitter_source = random.Random()

        while attempts < _MAX_ATTEMPTS:
            attempts += 1
            start = self._now()
            try:
                response = self._client.embeddings.create(
                    model=model,
                    input=list(batch),
                )
                elapsed = self._now() - start
                self._stats["requests"] += 1
                self.logger.debug(
                    "openai-embed-request",
                    provider=self.provider_key,
                    model=model,
                    batch_size=len(batch),
                    token_count=token_count,
                    latency=elapsed,
                    attempts=attempts,
                    is_probe=is_probe,
                    recovered=attempts > 1,
                )
                return [list(item.embedding) for item in response.data]
            except Exception as exc:  # pragma: no branch - handled below
                retryable = self._is_retryable(exc)
                status, request_id = self._extract_context(exc)
                if not retryable or attempts >= _MAX_ATTEMPTS:
                    self._stats["failures"] += 1
                    raise self._translate_exception(
                        exc,
                        attempts=attempts,
                        model=model,
                        status=status,
                        request_id=request_id,
                    ) from exc

                delay = self._compute_backoff(
                    attempt=attempts,
                    rng=jitter_source,
                )
                self.logger.warning(
                    "openai-embed-retry",
                    provider=self.provider_key,
                    model=model,
                    attempt=attempts,
                    max_attempts=_MAX_ATTEMPTS,
                    retry_delay=delay,
                    error_type=exc.__class__.__name__,
                    status_code=status,
                    request_id=request_id,
                    is_probe=is_probe,
                )
                self._stats["retries"] += 1
                self._sleep(delay)

        raise EmbeddingProviderRetryExceededError(
            "Failed to embed texts after multiple attempts.",
            provider=self.provider_key,
            model=model,
            attempts=attempts,
        )

    def _compute_backoff(
        self,
        *,
        attempt: int,
        rng: random.Random,
    ) -> float:
        base = _BACKOFF_BASE * (_BACKOFF_MULTIPLIER ** (attempt - 1))
        base = min(base, _BACKOFF_CAP)
        jitter = 1.0 + rng.uniform(-_JITTER_RATIO, _JITTER_RATIO)
        return round(base * jitter, 2)

    @staticmethod
    def _is_retryable(exc: Exception) -> bool:
        if isinstance(
            exc,
            (
                RateLimitError,
                APITimeoutError,
                APIConnectionError,
                httpx.TimeoutException,
                httpx.NetworkError,
            ),
        ):
            return True
        if isinstance(exc, APIStatusError):
            status, _ = OpenAIEmbeddingsProvider._extract_context(exc)
            return status is not None and status >= 500
        return False

    @staticmethod
    def _extract_context(exc: Exception) -> tuple[int | None, str | None]:
        status: int | None = None
        request_id: str | None = None

        status_value = getattr(exc, "status_code", None)
        if isinstance(status_value, int):
            status = status_value

        value = getattr(exc, "request_id", None)
        if isinstance(value, str):
            request_id = value

        return status, request_id

    def _translate_exception(
        self,
        exc: Exception,
        *,
        attempts: int,
        model: str,
        status: int | None,
        request_id: str | None,
    ) -> EmbeddingProviderError:
        message = str(exc) or exc.__class__.__name__
        context = {
            "provider": self.provider_key,
            "model": model,
            "status_code": status,
            "request_id": request_id,
        }
        if isinstance(exc, RateLimitError):
            return EmbeddingProviderRateLimitError(message, **context)
        if isinstance(
            exc,
            (APITimeoutError, APIConnectionError, httpx.HTTPError),
        ):
            return EmbeddingProviderRetryableError(message, **context)
        if isinstance(exc, APIStatusError) and status and status >= 500:
            return EmbeddingProviderRetryableError(message, **context)
        if attempts >= _MAX_ATTEMPTS:
            return EmbeddingProviderRetryExceededError(
                "Exceeded retry attempts when calling the embeddings API.",
                attempts=attempts,
                **context,
            )
        return EmbeddingProviderRequestError(message, **context)


class AzureOpenAIEmbeddingsProvider(OpenAIEmbeddingsProvider):
    """Embed texts via an Azure OpenAI deployment.

    The ``model`` passed to :meth:`embed_texts` is the deployment name.
    """

    provider_key = "azure-openai"

    def _build_client(self) -> AzureOpenAI:
        api_key = os.environ.get("AZURE_OPENAI_API_KEY")
        endpoint = self._config.get("azure_endpoint") or os.environ.get(
            "AZURE_OPENAI_ENDPOINT"
        )
        api_version = self._config.get("api_version") or os.environ.get(
            "OPENAI_API_VERSION"
        )
        missing = [
            label
            for label, value in (
                ("AZURE_OPENAI_API_KEY", api_key),
                ("azure_endpoint", endpoint),
                ("api_version", api_version),
            )
            if not value
        ]
        if missing:
            raise EmbeddingProviderConfigurationError(
                "Azure OpenAI provider requires: " + ", ".join(missing),
                provider=self.provider_key,
                model="*",
            )

        return AzureOpenAI(
            api_key=api_key,
            azure_endpoint=str(endpoint),
            api_version=str(api_version),
            timeout=_resolve_timeout(self._config),
        )


def openai_provider_factory(
    context: ProviderInitContext,
) -> OpenAIEmbeddingsProvider:
    """Factory registered with the provider registry as ``openai``."""

    return OpenAIEmbeddingsProvider(
        logger=context.logger,
        config=context.config,
    )


def azure_openai_provider_factory(
    context: ProviderInitContext,
) -> AzureOpenAIEmbeddingsProvider:
    """Factory registered with the provider registry as ``azure-openai``."""

    return AzureOpenAIEmbeddingsProvider(
        logger=context.logger,
        config=context.config,
    )
