"""
QA Verification Pipeline
Model Gateway.

Provider-agnostic ``invoke(tier, prompt) -> {text, cost, model, ...}`` used by
the fix engine. Supports:
    - Anthropic Claude (optional ``anthropic`` package, imported lazily)
    - Deterministic local stub for dev/testing
    - Auto-retry with exponential backoff
    - Cost calculation per call

Usage:
    from qa_pipeline.ai.gateway import ModelGateway
    gw = ModelGateway(provider="local")
    result = gw.invoke("fast", "Fix the failing import in ...")
"""

import hashlib
import logging
import os
import threading
import time
from abc import ABC, abstractmethod

from qa_pipeline.ai.model_selector import ModelSelector, calculate_cost
from qa_pipeline.core.exceptions import ConfigurationError, WorkflowCancelledError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
MAX_BACKOFF_S = 4


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens, etc.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    def __init__(self):
        self.api_key = os.getenv("ANTHROPIC_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise RuntimeError("anthropic package not installed. Run: pip install anthropic")
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs) -> dict:
        client = self._get_client()

        system_msg = ""
        chat_messages = []
        for m in messages:
            if m["role"] == "system":
                system_msg = m["content"]
            else:
                chat_messages.append(m)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.2),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)

        return {
            "content": response.content[0].text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── Local Stub Provider ───────────────────────────────────────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = m["content"]
                break

        digest = hashlib.sha256(user_msg.encode()).hexdigest()[:12]
        first_line = user_msg.strip().splitlines()[0] if user_msg.strip() else "request"
        content = f"[stub:{digest}] Proposed change for: {first_line[:160]}"

        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }


_PROVIDERS = {
    "local": LocalStubProvider,
    "anthropic": AnthropicProvider,
}


class ModelGateway:
    """
    Single entry point for model calls made by the pipeline.

    Only the fix engine calls models; the verifier reads persisted evidence
    and never invokes one.
    """

    def __init__(self, provider: str = "local", selector: ModelSelector | None = None,
                 provider_impl: LLMProvider | None = None):
        if provider_impl is None and provider not in _PROVIDERS:
            raise ConfigurationError(f"Unknown LLM provider {provider!r}")
        self.provider_name = provider
        self.provider = provider_impl or _PROVIDERS[provider]()
        self.selector = selector or ModelSelector(provider)

    def invoke(
        self,
        tier: str,
        prompt: str,
        *,
        system: str | None = None,
        cancel_event: threading.Event | None = None,
        max_retries: int = MAX_RETRIES,
        **kwargs,
    ) -> dict:
        """
        Send ``prompt`` to the model configured for ``tier``.

        Returns:
            dict with keys: text, cost, model, tier, prompt_tokens,
            completion_tokens, latency_ms
        """
        model = self.selector.model_for(tier)
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        last_error = None
        for attempt in range(1, max_retries + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise WorkflowCancelledError("Model call cancelled by shutdown")
            start = time.time()
            try:
                result = self.provider.chat(messages, model, **kwargs)
            except Exception as e:
                last_error = e
                logger.warning("Model call attempt %d/%d failed (tier=%s): %s",
                               attempt, max_retries, tier, e)
                if attempt < max_retries:
                    backoff = min(2 ** (attempt - 1), MAX_BACKOFF_S)
                    # wait() returns early when shutdown is requested
                    (cancel_event or threading.Event()).wait(backoff)
                continue

            latency_ms = int((time.time() - start) * 1000)
            cost = calculate_cost(result["model"], result["prompt_tokens"], result["completion_tokens"])
            logger.info("Model call ok: tier=%s model=%s cost=$%.4f", tier, result["model"], cost,
                        extra={"duration_ms": latency_ms})
            return {
                "text": result["content"],
                "cost": cost,
                "model": result["model"],
                "tier": tier,
                "prompt_tokens": result["prompt_tokens"],
                "completion_tokens": result["completion_tokens"],
                "latency_ms": latency_ms,
            }

        raise RuntimeError(f"Model call failed after {max_retries} attempts: {last_error}")
