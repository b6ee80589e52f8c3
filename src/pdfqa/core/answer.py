"""Grounded answers strictly from retrieved context snippets."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import openai
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import env_float, env_int, env_str
from .embed import TRANSIENT_OPENAI_ERRORS
from .errors import AnswerError
from .retrieve import RetrievedContext

logger = logging.getLogger(__name__)

NO_CONTEXT_ANSWER = "I don't know. No relevant context was found in the ingested documents."

SYSTEM_PROMPT = """You are a helpful assistant. Answer ONLY using the provided context. If unsure, say you don't know."""


@dataclass
class AnswerConfig:
    """Configuration for answer generation."""
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 1024
    max_attempts: int = 3
    timeout: float = 60.0


def get_answer_config() -> AnswerConfig:
    """Get answer configuration from environment."""
    return AnswerConfig(
        model=env_str("ANSWER_MODEL", "gpt-4o-mini"),
        temperature=env_float("ANSWER_TEMPERATURE", 0.2),
        max_tokens=env_int("ANSWER_MAX_TOKENS", 1024),
        max_attempts=env_int("ANSWER_MAX_ATTEMPTS", 3),
    )


def build_prompt(contexts: Sequence[RetrievedContext], question: str) -> str:
    """
    Number each context as ``[#i p.N]`` and append the question.

    The page tag is left out for contexts without a page number.
    """
    sources = "\n\n".join(
        f"[#{i}{f' p.{c.page}' if c.page else ''}] {c.content}"
        for i, c in enumerate(contexts, 1)
    )
    return f"""Context:
{sources}

Question: {question}
Answer in the same language as the question."""


def answer_question(
    question: str,
    contexts: List[RetrievedContext],
    config: Optional[AnswerConfig] = None,
    client: Optional[openai.OpenAI] = None
) -> str:
    """
    Generate an answer from retrieved contexts only.

    Args:
        question: The user's question
        contexts: Retrieval output, highest similarity first
        config: Answer configuration (read from environment when omitted)
        client: OpenAI client (built from OPENAI_API_KEY when omitted)

    Returns:
        Answer text
    """
    if not contexts:
        logger.info("No contexts retrieved; skipping answer model call")
        return NO_CONTEXT_ANSWER

    config = config or get_answer_config()
    if client is None:
        api_key = env_str("OPENAI_API_KEY")
        if not api_key:
            raise AnswerError("OpenAI API key not found in environment variables", operation="answer")
        client = openai.OpenAI(api_key=api_key, timeout=config.timeout, max_retries=0)

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_prompt(contexts, question)},
    ]

    try:
        for attempt in Retrying(
            stop=stop_after_attempt(config.max_attempts),
            wait=wait_exponential(multiplier=1, min=4, max=10),
            retry=retry_if_exception_type(TRANSIENT_OPENAI_ERRORS),
            reraise=True,
        ):
            with attempt:
                response = client.chat.completions.create(
                    model=config.model,
                    messages=messages,
                    temperature=config.temperature,
                    max_tokens=config.max_tokens,
                )
    except openai.OpenAIError as e:
        raise AnswerError(f"Answer generation failed: {e}", operation="answer") from e

    text = response.choices[0].message.content if response.choices else None
    if not text:
        raise AnswerError("Answer model returned no text", operation="answer")

    logger.info(f"Generated answer from {len(contexts)} contexts")
    return text
