"""LLM provider adapters.

Two concrete implementations of ILLMProvider (docvault/interfaces/llm_provider.py):
    - OpenAILLMProvider -- gpt-4o-mini / gpt-4o (also OpenAI-compatible APIs)
    - OllamaLLMProvider -- local models via Ollama (llama3.1 / llava)

main.py picks OpenAI when OPENAI_API_KEY is set and falls back to Ollama.
"""

from docvault.providers.llm.ollama_provider import OllamaLLMProvider
from docvault.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["OllamaLLMProvider", "OpenAILLMProvider"]
