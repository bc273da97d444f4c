"""Model listings and the capability flags used to filter them per feature mode."""

import logging
from typing import Any, Dict, List

from .llm import LLM
from .models import REASONING_MODE, VISION_MODE, WEB_SEARCH_MODE, Model

logger = logging.getLogger(__name__)

REASONING_MARKERS = ("reasoning", "thinking", "r1", "qwq", "o1", "deepseek")
VISION_MARKERS = ("vision", "llava", "pixtral")
NON_CHAT_MARKERS = (
    "tts",
    "whisper",
    "transcrib",
    "speech",
    "audio",
    "guard",
    "distil-whisper",
)


def _price(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def model_from_entry(entry: Dict[str, Any], provider: str = "OpenRouter") -> Model:
    """Turns one raw listing entry into a :class:`Model` with capability flags."""
    model_id = entry["id"]
    pricing = entry.get("pricing") or {}
    prompt_price = _price(pricing.get("prompt", pricing.get("input")))
    completion_price = _price(pricing.get("completion", pricing.get("output")))
    is_free = prompt_price == 0 and completion_price == 0

    parameters = entry.get("supported_parameters") or []
    architecture = entry.get("architecture")
    modalities = []
    if isinstance(architecture, dict):
        modalities = architecture.get("input_modalities") or []

    name = entry.get("name") or entry.get("display_name") or model_id
    if is_free and "(Free)" not in name:
        name = f"{name} (Free)"

    return Model(
        id=model_id,
        name=name,
        description=entry.get("description"),
        supports_reasoning=(
            any(marker in model_id for marker in REASONING_MARKERS)
            or "reasoning" in parameters
        ),
        supports_images=(
            "image" in modalities or any(marker in model_id for marker in VISION_MARKERS)
        ),
        supports_web_search=provider == "OpenRouter",
        is_free=is_free,
        prompt_price=prompt_price,
        completion_price=completion_price,
    )


def is_chat_model(model_id: str) -> bool:
    lowered = model_id.lower()
    return not any(marker in lowered for marker in NON_CHAT_MARKERS)


def filter_models(models: List[Model], feature_mode: str, provider: str) -> List[Model]:
    """Narrows a listing to the models suited to ``feature_mode``.

    Reasoning and vision fall back to the full list when nothing matches; web
    search is only offered on OpenRouter.
    """
    if feature_mode == REASONING_MODE:
        matching = [m for m in models if m.supports_reasoning]
        return matching or list(models)
    if feature_mode == VISION_MODE:
        matching = [m for m in models if m.supports_images]
        return matching or list(models)
    if feature_mode == WEB_SEARCH_MODE:
        if provider == "OpenRouter":
            return [m for m in models if m.supports_web_search]
        return list(models)
    return list(models)


async def fetch_models(llm: LLM, provider: str) -> List[Model]:
    """Fetches the live listing through the transport."""
    entries = await llm.list_models()
    if provider == "Groq":
        entries = [e for e in entries if is_chat_model(e["id"])]
    models = [model_from_entry(entry, provider) for entry in entries]
    logger.info("Found %d models on %s", len(models), provider)
    return models
