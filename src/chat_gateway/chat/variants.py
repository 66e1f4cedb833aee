"""Closed set of upstream model variants and their configuration table."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal, Mapping, Optional

from . import prompts


class Variant(str, Enum):
    FLASH = "gemini-3-flash-preview"
    PRO = "gemini-3-pro-preview"
    PRO_25 = "gemini-2.5-pro"
    FLASH_IMAGE = "gemini-2.5-flash-image"
    PRO_IMAGE = "gemini-3-pro-image-preview"
    RESEARCH = "research"


class Tool(str, Enum):
    GOOGLE_SEARCH = "googleSearch"
    URL_CONTEXT = "urlContext"
    CODE_EXECUTION = "codeExecution"


@dataclass(frozen=True)
class ThinkingPolicy:
    """Either a named level (Gemini 3) or a token budget (Gemini 2.5)."""

    level: Optional[str] = None
    budget: Optional[int] = None
    include_thoughts: bool = True

    def to_config(self) -> dict[str, Any]:
        config: dict[str, Any] = {"includeThoughts": self.include_thoughts}
        if self.level is not None:
            config["thinkingLevel"] = self.level
        if self.budget is not None:
            config["thinkingBudget"] = self.budget
        return config


@dataclass(frozen=True)
class VariantProfile:
    variant: Variant
    upstream_model: str
    system_prompt: Optional[str]
    tools: tuple[Tool, ...] = ()
    thinking: Optional[ThinkingPolicy] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_output_tokens: Optional[int] = None
    # None keeps the full history
    history_limit: Optional[int] = None
    streaming: bool = True
    response_modalities: tuple[str, ...] = ()
    reembed_model_images: bool = False
    echo_continuity: bool = False
    image_event: Literal["image", "graph"] = "graph"
    retry_on_empty: bool = False
    honors_preferences: bool = True
    supports_aspect_ratio: bool = False
    supports_image_style: bool = False
    routable: bool = False

    @property
    def supports_tools(self) -> bool:
        return bool(self.tools)

    @property
    def supports_images(self) -> bool:
        return "IMAGE" in self.response_modalities

    def generation_config(self, *, aspect_ratio: Optional[str] = None) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if self.temperature is not None:
            config["temperature"] = self.temperature
        if self.top_p is not None:
            config["topP"] = self.top_p
        if self.max_output_tokens is not None:
            config["maxOutputTokens"] = self.max_output_tokens
        if self.thinking is not None:
            config["thinkingConfig"] = self.thinking.to_config()
        if self.response_modalities:
            config["responseModalities"] = list(self.response_modalities)
        if aspect_ratio and self.supports_aspect_ratio:
            config["imageConfig"] = {"aspectRatio": aspect_ratio}
        return config

    def tool_config(self, *, allow_code_execution: bool = True) -> list[dict[str, Any]]:
        return [
            {tool.value: {}}
            for tool in self.tools
            if allow_code_execution or tool is not Tool.CODE_EXECUTION
        ]

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.variant.value,
            "model": self.upstream_model,
            "supportsTools": self.supports_tools,
            "supportsImages": self.supports_images,
            "thinking": (
                None
                if self.thinking is None
                else ("level" if self.thinking.level else "budget")
            ),
            "historyLimit": self.history_limit,
            "streaming": self.streaming,
        }


_ALL_TOOLS = (Tool.GOOGLE_SEARCH, Tool.URL_CONTEXT, Tool.CODE_EXECUTION)

VARIANT_PROFILES: Mapping[Variant, VariantProfile] = MappingProxyType(
    {
        Variant.FLASH: VariantProfile(
            variant=Variant.FLASH,
            upstream_model="gemini-3-flash-preview",
            system_prompt=prompts.GENERAL_PROMPT,
            tools=_ALL_TOOLS,
            thinking=ThinkingPolicy(level="LOW"),
            temperature=1.0,
            top_p=0.95,
            max_output_tokens=64000,
            retry_on_empty=True,
            routable=True,
        ),
        Variant.PRO: VariantProfile(
            variant=Variant.PRO,
            upstream_model="gemini-3-pro-preview",
            system_prompt=prompts.GENERAL_PROMPT,
            tools=_ALL_TOOLS,
            thinking=ThinkingPolicy(level="LOW"),
            temperature=1.0,
            top_p=0.95,
            max_output_tokens=65536,
            history_limit=50,
            routable=True,
        ),
        Variant.PRO_25: VariantProfile(
            variant=Variant.PRO_25,
            upstream_model="gemini-2.5-pro",
            system_prompt=prompts.GENERAL_PROMPT,
            tools=_ALL_TOOLS,
            thinking=ThinkingPolicy(budget=4096),
            temperature=0.6,
            top_p=0.95,
            max_output_tokens=65536,
        ),
        Variant.FLASH_IMAGE: VariantProfile(
            variant=Variant.FLASH_IMAGE,
            upstream_model="gemini-2.5-flash-image",
            system_prompt=None,
            history_limit=1,
            streaming=False,
            response_modalities=("TEXT", "IMAGE"),
            image_event="image",
            honors_preferences=False,
            supports_aspect_ratio=True,
            supports_image_style=True,
        ),
        Variant.PRO_IMAGE: VariantProfile(
            variant=Variant.PRO_IMAGE,
            upstream_model="gemini-3-pro-image-preview",
            system_prompt=prompts.IMAGE_PROMPT,
            tools=(Tool.GOOGLE_SEARCH,),
            top_p=0.95,
            max_output_tokens=32768,
            history_limit=20,
            response_modalities=("TEXT", "IMAGE"),
            reembed_model_images=True,
            echo_continuity=True,
            image_event="image",
            honors_preferences=False,
            supports_aspect_ratio=True,
            routable=True,
        ),
        Variant.RESEARCH: VariantProfile(
            variant=Variant.RESEARCH,
            upstream_model="gemini-3-pro-preview",
            system_prompt=prompts.RESEARCH_PROMPT,
            tools=_ALL_TOOLS,
            thinking=ThinkingPolicy(level="HIGH"),
            temperature=1.0,
            top_p=0.95,
            max_output_tokens=65536,
            history_limit=2,
            honors_preferences=False,
        ),
    }
)

# Fallback used when a retry-on-empty variant returns nothing.
RETRY_FALLBACK = Variant.PRO


def get_profile(variant: Variant) -> VariantProfile:
    return VARIANT_PROFILES[variant]


def routable_variants() -> tuple[Variant, ...]:
    return tuple(v for v, profile in VARIANT_PROFILES.items() if profile.routable)


def parse_variant(value: str) -> Optional[Variant]:
    """Return the variant named by ``value`` or ``None`` when unknown."""

    try:
        return Variant(value.strip())
    except ValueError:
        return None


__all__ = [
    "RETRY_FALLBACK",
    "ThinkingPolicy",
    "Tool",
    "VARIANT_PROFILES",
    "Variant",
    "VariantProfile",
    "get_profile",
    "parse_variant",
    "routable_variants",
]
