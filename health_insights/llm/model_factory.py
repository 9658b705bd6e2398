from abc import ABC, abstractmethod
from typing import Any

from health_insights.config.logger import get_logger
from health_insights.config.settings import settings

_logger = get_logger(__name__)

_JSON_RESPONSE_FORMAT = {"type": "json_object"}


class BaseModelProvider(ABC):
    """Abstract provider contract for chat model creation."""

    name: str = "base"

    @abstractmethod
    def create(
        self,
        model: str,
        temperature: float,
        json_mode: bool,
    ) -> Any:
        """Create provider-specific langchain chat model instance."""


class OpenAIProvider(BaseModelProvider):
    """Any OpenAI-compatible chat completions endpoint."""

    name = "openai"

    def create(
        self,
        model: str,
        temperature: float,
        json_mode: bool,
    ) -> Any:
        from langchain_openai import ChatOpenAI

        llm = ChatOpenAI(
            model=model,
            api_key=settings.API_KEY,
            base_url=settings.get_base_url(self.name),
            temperature=temperature,
            max_retries=0,
        )
        if json_mode:
            return llm.bind(response_format=_JSON_RESPONSE_FORMAT)
        return llm


class OllamaProvider(BaseModelProvider):
    name = "ollama"

    def create(
        self,
        model: str,
        temperature: float,
        json_mode: bool,
    ) -> Any:
        from langchain_ollama import ChatOllama

        kwargs: dict[str, Any] = {
            "model": model,
            "base_url": settings.get_base_url(self.name),
            "temperature": temperature,
        }
        if json_mode:
            kwargs["format"] = "json"
        return ChatOllama(**kwargs)


class ModelFactory:
    """Provider registry + resolution strategy."""

    def __init__(self) -> None:
        self.providers: dict[str, BaseModelProvider] = {
            OpenAIProvider.name: OpenAIProvider(),
            OllamaProvider.name: OllamaProvider(),
        }

    def resolve_provider(self, agent_key: str) -> BaseModelProvider:
        provider_name = settings.get_agent_provider(agent_key).lower()
        if not provider_name or provider_name == "auto":
            return self.providers[OpenAIProvider.name]
        provider = self.providers.get(provider_name)
        if provider is None:
            raise ValueError(f"Unknown provider: {provider_name}")
        return provider

    def create_chat_model(
        self,
        agent_key: str,
        default_model: str,
        temperature: float,
        json_mode: bool = False,
    ) -> Any:
        model = settings.get_agent_model(agent_key, default_model)
        provider = self.resolve_provider(agent_key)
        _logger.debug(
            "[model_factory] agent=%s provider=%s model=%s json_mode=%s",
            agent_key,
            provider.name,
            model,
            json_mode,
        )
        return provider.create(model=model, temperature=temperature, json_mode=json_mode)


_FACTORY = ModelFactory()


def get_chat_model(
    agent_key: str,
    default_model: str = "qwen-plus",
    temperature: float = 0.3,
    json_mode: bool = False,
) -> Any | None:
    """Build the chat model for an agent key; None when it cannot be built."""
    try:
        return _FACTORY.create_chat_model(
            agent_key=agent_key,
            default_model=default_model,
            temperature=temperature,
            json_mode=json_mode,
        )
    except Exception as exc:
        _logger.warning("[model_factory] cannot build model for %s: %s", agent_key, exc)
        return None
