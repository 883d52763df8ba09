"""LLM package: provider collaborators and prompt templates."""
from piilens.llm.providers import (  # noqa: F401
    AnthropicProvider,
    LLMErrorKind,
    LLMProvider,
    LLMResponse,
    LocalProvider,
    MockProvider,
    OpenAIProvider,
    build_providers,
)
