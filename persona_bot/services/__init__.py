from .gemini_client import GeminiClient, GeminiRateLimitError, is_rate_limit_error
from .key_rotation import ApiKeyRing
from .persona_ai import PersonaAI

__all__ = ["ApiKeyRing", "GeminiClient", "GeminiRateLimitError", "PersonaAI", "is_rate_limit_error"]
