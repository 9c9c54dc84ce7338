"""
Model Providers - Streaming design generation through the Agents SDK + LiteLLM

One adapter per vendor. Both stream through `Runner.run_streamed` and differ
only in where the system text goes: Claude takes it as the agent's
instructions, OpenAI as an inlined system-role input item.
"""

import asyncio
import inspect
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from agents import Agent, ModelSettings, Runner
from agents.extensions.models.litellm_model import LitellmModel

from design_errors import GenerationCancelled, ProviderError
from design_schema import ColorPalette, DesignDocument, DesignSystemSnapshot, ViewportSize
from system_prompt import build_system_prompt, build_user_message

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 8192

ProgressCallback = Callable[[str], Union[None, Awaitable[None]]]

_TEXT_DELTA = "response.output_text.delta"
_ERROR_EVENTS = {"error", "response.failed"}

# Leading base64 bytes of common image formats
_BASE64_SIGNATURES = {
    "iVBORw0KGgo": "image/png",
    "/9j/": "image/jpeg",
    "R0lGOD": "image/gif",
    "UklGR": "image/webp",
}


@dataclass
class GenerationRequest:
    prompt: str
    viewport: ViewportSize
    design_system: Optional[DesignSystemSnapshot] = None
    context_instructions: str = ""
    palette: Optional[ColorPalette] = None
    image_data: Optional[str] = None
    existing_design: Optional[DesignDocument] = None

    def system_prompt(self) -> str:
        return build_system_prompt(self.viewport, self.design_system, self.context_instructions, self.palette)

    def user_text(self) -> str:
        return build_user_message(
            self.prompt,
            self.viewport,
            existing_design=self.existing_design,
            has_image=bool(self.image_data),
        )


def to_image_data_url(image_data: str) -> str:
    """Accept a data URL or bare base64 and return a data URL with a media type."""
    if image_data.startswith("data:"):
        return image_data
    for signature, media_type in _BASE64_SIGNATURES.items():
        if image_data.startswith(signature):
            return f"data:{media_type};base64,{image_data}"
    return f"data:image/jpeg;base64,{image_data}"


class ProviderAdapter:
    """Base adapter: builds the agent and input, streams, accumulates text."""

    name = "base"
    default_model = ""

    def __init__(self, api_key: str, model: Optional[str] = None, max_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS):
        self.api_key = api_key
        self.model = model or self.default_model
        self.max_tokens = max_tokens

    # ---------- envelope ----------

    def build_agent(self, system_prompt: str) -> Agent:
        raise NotImplementedError

    def build_input(self, system_prompt: str, user_text: str, image_url: Optional[str] = None) -> List[Dict[str, Any]]:
        return [self._user_item(user_text, image_url)]

    def _user_item(self, user_text: str, image_url: Optional[str]) -> Dict[str, Any]:
        if not image_url:
            return {"role": "user", "content": user_text}
        return {
            "role": "user",
            "content": [
                {"type": "input_image", "image_url": image_url},
                {"type": "input_text", "text": user_text},
            ],
        }

    def _model(self) -> LitellmModel:
        return LitellmModel(model=self.model, api_key=self.api_key)

    def _settings(self) -> ModelSettings:
        return ModelSettings(max_tokens=self.max_tokens)

    # ---------- streaming ----------

    async def generate(
        self,
        request: GenerationRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """Stream a design generation and return the accumulated raw text.

        `on_progress` receives the cumulative text after every fragment.
        Setting `cancel_event` stops the stream and raises GenerationCancelled.

        Raises:
            ProviderError: transport/auth/rate-limit failure, error event, or empty response.
            GenerationCancelled: `cancel_event` was set.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelled()

        system_prompt = request.system_prompt()
        image_url = to_image_data_url(request.image_data) if request.image_data else None
        agent = self.build_agent(system_prompt)
        input_items = self.build_input(system_prompt, request.user_text(), image_url)
        logger.info(
            f"🧠 {self.name} generation: model={self.model}, max_tokens={self.max_tokens}, "
            f"image={'yes' if image_url else 'no'}, edit={'yes' if request.existing_design else 'no'}"
        )
        logger.debug(f"🧠 System prompt ({len(system_prompt)} chars)")

        full_text = ""
        watcher: Optional[asyncio.Task] = None
        try:
            stream_result = Runner.run_streamed(agent, input=input_items)

            if cancel_event is not None:
                async def _cancel_when_signalled() -> None:
                    await cancel_event.wait()
                    logger.info("🛑 Cancellation requested, stopping stream")
                    stream_result.cancel()

                watcher = asyncio.create_task(_cancel_when_signalled())

            async for event in stream_result.stream_events():
                if cancel_event is not None and cancel_event.is_set():
                    break
                if getattr(event, "type", None) != "raw_response_event":
                    continue
                data = getattr(event, "data", None)
                data_type = getattr(data, "type", _TEXT_DELTA)
                if data_type in _ERROR_EVENTS:
                    raise ProviderError(f"{self.name} stream error", body=_event_error_text(data))
                delta = getattr(data, "delta", None)
                if data_type != _TEXT_DELTA or not isinstance(delta, str):
                    continue
                full_text += delta
                if on_progress is not None:
                    result = on_progress(full_text)
                    if inspect.isawaitable(result):
                        await result

        except asyncio.CancelledError:
            raise
        except ProviderError:
            raise
        except Exception as e:
            status = getattr(e, "status_code", None) or getattr(e, "status", None)
            logger.error(f"❌ {self.name} request failed: {e}")
            raise ProviderError(f"{self.name} API error", status=status if isinstance(status, int) else None, body=str(e)) from e
        finally:
            if watcher is not None:
                watcher.cancel()

        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelled()
        if not full_text:
            raise ProviderError(f"{self.name} returned an empty response")

        logger.info(f"✨ {self.name} stream finished: {len(full_text)} chars")
        return full_text


class ClaudeProvider(ProviderAdapter):
    name = "claude"
    default_model = "anthropic/claude-sonnet-4-20250514"

    def build_agent(self, system_prompt: str) -> Agent:
        return Agent(
            name="DesignGenerator",
            instructions=system_prompt,
            model=self._model(),
            model_settings=self._settings(),
        )


class OpenAIProvider(ProviderAdapter):
    name = "openai"
    default_model = "openai/gpt-4o"

    def build_agent(self, system_prompt: str) -> Agent:
        return Agent(
            name="DesignGenerator",
            instructions=None,
            model=self._model(),
            model_settings=self._settings(),
        )

    def build_input(self, system_prompt: str, user_text: str, image_url: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": system_prompt},
            self._user_item(user_text, image_url),
        ]


PROVIDERS = {
    ClaudeProvider.name: ClaudeProvider,
    OpenAIProvider.name: OpenAIProvider,
}


def get_provider(
    name: str,
    api_key: str,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
) -> ProviderAdapter:
    """Instantiate the adapter for `name` ("claude" or "openai")."""
    provider_cls = PROVIDERS.get((name or "").lower())
    if provider_cls is None:
        raise ProviderError(f"Unknown provider '{name}'")
    if not api_key:
        label = "Claude" if provider_cls is ClaudeProvider else "OpenAI"
        raise ProviderError(f"Please add your {label} API key in settings")
    if model is None:
        env_var = "CLAUDE_MODEL" if provider_cls is ClaudeProvider else "OPENAI_MODEL"
        model = os.getenv(env_var) or None
    return provider_cls(api_key, model=model, max_tokens=max_tokens or DEFAULT_MAX_OUTPUT_TOKENS)


def _event_error_text(data: Any) -> str:
    error = getattr(data, "error", None)
    if error is not None:
        return str(getattr(error, "message", error))
    response = getattr(data, "response", None)
    error = getattr(response, "error", None)
    if error is not None:
        return str(getattr(error, "message", error))
    return str(data)
