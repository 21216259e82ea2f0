from .openai_client import OpenAIModelClient

__all__ = ["OpenAIModelClient"]
