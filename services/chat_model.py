from functools import lru_cache

from groq import RateLimitError
from langchain_groq import ChatGroq

from core.config import (
    GROQ_API_KEY,
    CHAT_MODEL_PRIMARY,
    CHAT_MODEL_FALLBACK,
    LLM_TEMPERATURE,
    LLM_MAX_TOKENS,
    LLM_TIMEOUT,
)

# =================== Chat MODEL ===================

class ChatModelCreator:
    def __init__(
        self,
        model_name: str,
        fallback_model_name: str | None = None,
        temperature: float = 0.7,
        max_new_tokens: int = 1000,
        timeout: float = 60,
        streaming: bool = True,
    ):
        self.groq_generator_llm = ChatGroq(
            model=model_name,
            temperature=temperature,
            max_tokens=max_new_tokens,        # ← Groq uses max_tokens
            timeout=timeout,
            streaming=streaming,
            groq_api_key=GROQ_API_KEY,  # Set this in .env
        )

        self.groq_fallback_llm = None
        if fallback_model_name:
            self.groq_fallback_llm = ChatGroq(
                model=fallback_model_name,
                temperature=temperature,
                max_tokens=max_new_tokens,
                timeout=timeout,
                streaming=streaming,
                groq_api_key=GROQ_API_KEY,
            )

    @property
    def llm(self):
        """Primary model; a provider rate limit retries the request once on the fallback model."""
        if self.groq_fallback_llm is None:
            return self.groq_generator_llm

        return self.groq_generator_llm.with_fallbacks(
            [self.groq_fallback_llm],
            exceptions_to_handle=(RateLimitError,),
        )


@lru_cache(maxsize=1)
def get_chat_model():
    """FastAPI dependency. Built on first use so importing the app needs no API key."""
    return ChatModelCreator(
        model_name=CHAT_MODEL_PRIMARY,
        fallback_model_name=CHAT_MODEL_FALLBACK,
        temperature=LLM_TEMPERATURE,
        max_new_tokens=LLM_MAX_TOKENS,
        timeout=LLM_TIMEOUT,
    ).llm
