"""Model preset constants and resolution.

Runs and subagents may name a model either directly (``"openai/gpt-4o"``) or
by preset (``"fast"``, ``"balanced"``). Presets are resolved to provider model
ids right before a gateway call.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional


class ModelPreset(str, Enum):
    fast = "fast"
    balanced = "balanced"
    capable = "capable"
    vision = "vision"


class UseCase(str, Enum):
    intent_analysis = "intent_analysis"
    code_execution = "code_execution"
    research = "research"
    creative = "creative"
    vision = "vision"


MODEL_PRESETS: dict[str, str] = {
    ModelPreset.fast.value: "groq/llama-3.1-70b-versatile",
    ModelPreset.balanced.value: "anthropic/claude-sonnet-4",
    ModelPreset.capable.value: "anthropic/claude-sonnet-4",
    ModelPreset.vision.value: "anthropic/claude-sonnet-4",
}

_USE_CASE_PRESETS: dict[str, ModelPreset] = {
    UseCase.intent_analysis.value: ModelPreset.fast,
    UseCase.code_execution.value: ModelPreset.balanced,
    UseCase.research.value: ModelPreset.capable,
    UseCase.creative.value: ModelPreset.capable,
    UseCase.vision.value: ModelPreset.vision,
}


def resolve_model(model_or_preset: str, overrides: Optional[Mapping[str, str]] = None) -> str:
    """
    Resolve a preset name or direct model id to the provider model id.

    Args:
        model_or_preset: Either a preset name (``"fast"``, ``"balanced"``...) or a model id.
        overrides: Optional per-deployment preset overrides, merged over the defaults.

    Returns:
        The preset's model id, or ``model_or_preset`` unchanged when it is not a preset.
    """
    presets = {**MODEL_PRESETS, **dict(overrides or {})}
    return presets.get(model_or_preset, model_or_preset)


def model_for_use_case(use_case: str) -> ModelPreset:
    """Recommend a preset for a use case; unknown use cases get ``balanced``."""
    return _USE_CASE_PRESETS.get(use_case, ModelPreset.balanced)
