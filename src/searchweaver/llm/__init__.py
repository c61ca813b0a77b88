"""Language-model client."""

from __future__ import annotations

from searchweaver.llm.client import ChatMessage, LanguageModel, LLMClient, LLMError, LLMResponse, StreamChunk

__all__ = ["ChatMessage", "LanguageModel", "LLMClient", "LLMError", "LLMResponse", "StreamChunk"]
