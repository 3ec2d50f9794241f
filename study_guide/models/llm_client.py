from dataclasses import dataclass
from typing import Any, Callable, Dict
import logging
import os

from openai import OpenAI, OpenAIError
from dotenv import load_dotenv

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
ENV_PATH = os.path.join(ROOT_DIR, ".env")

load_dotenv(ENV_PATH)

logger = logging.getLogger(__name__)

# The only two model ids the pipeline may call
ALLOWED_MODELS = ("gpt-4o", "gpt-4o-mini")


class ModelNotAllowedError(ValueError):
    pass


class LLMCallError(RuntimeError):
    pass


@dataclass
class LLMConfig:
    model: str
    max_completion_tokens: int = 512
    temperature: float | None = None
    seed: int | None = None


# (system_prompt, user_prompt, cfg, json_mode) -> raw text
LLMFn = Callable[[str, str, LLMConfig, bool], str]


def check_model(model: str) -> str:
    if model not in ALLOWED_MODELS:
        raise ModelNotAllowedError(
            f"Model '{model}' is not allowed; expected one of {', '.join(ALLOWED_MODELS)}"
        )
    return model


def call_llm(
    system_prompt: str,
    user_prompt: str,
    cfg: LLMConfig,
    json_mode: bool = False
) -> str:

    check_model(cfg.model)
    client = OpenAI(api_key=os.getenv("OPENAI_API_KEY"))

    # Build request payload
    request: Dict[str, Any] = {
        "model": cfg.model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt}
        ],
        "max_completion_tokens": cfg.max_completion_tokens,
    }

    if cfg.temperature is not None:
        request["temperature"] = cfg.temperature

    if cfg.seed is not None:
        request["seed"] = cfg.seed

    # JSON mode enabled if requested
    if json_mode:
        request["response_format"] = {"type": "json_object"}

    try:
        response = client.chat.completions.create(**request)
    except OpenAIError as err:
        raise LLMCallError(f"{cfg.model} request failed: {err}") from err

    if not response.choices:
        raise LLMCallError(f"{cfg.model} returned no choices")

    choice = response.choices[0]
    if choice.finish_reason == "length":
        logger.warning("%s hit max_completion_tokens=%d; output may be truncated",
                       cfg.model, cfg.max_completion_tokens)

    return choice.message.content or ""
