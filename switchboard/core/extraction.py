"""
Structured extraction with pydantic-ai.

A minimal, single-turn model call that turns free text into a pydantic model.
Used for capability parameter extraction and for the small classification
steps inside workflows.
"""

import logging
from typing import Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from .config import ModelConfig, get_config

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def create_model(model_config: Optional[ModelConfig] = None) -> OpenAIChatModel:
    """Build a pydantic-ai model for an OpenAI-compatible endpoint.

    Defaults to the primary tier, with ``llm.extraction_model`` replacing the
    model name when configured.
    """
    llm = get_config().llm
    model_config = model_config or llm.primary
    model_name = llm.extraction_model or model_config.model
    provider = OpenAIProvider(
        base_url=model_config.base_url,
        api_key=model_config.api_key or "not-needed",
    )
    return OpenAIChatModel(model_name, provider=provider)


async def extract_structured(
    prompt: str,
    output_type: Type[T],
    model_config: Optional[ModelConfig] = None,
    temperature: float = 0.0,
) -> T:
    """Run one structured-output call and return the parsed model.

    Raises whatever the model call raises; callers decide how to degrade.
    """
    agent = Agent(create_model(model_config), output_type=output_type, model_settings={"temperature": temperature})
    result = await agent.run(prompt)
    return result.output
