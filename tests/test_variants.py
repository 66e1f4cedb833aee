from __future__ import annotations

from chat_gateway.chat.variants import (
    RETRY_FALLBACK,
    VARIANT_PROFILES,
    Tool,
    Variant,
    get_profile,
    parse_variant,
    routable_variants,
)


def test_every_variant_has_a_profile() -> None:
    assert set(VARIANT_PROFILES) == set(Variant)
    for variant, profile in VARIANT_PROFILES.items():
        assert profile.variant is variant


def test_routable_set_is_flash_pro_and_pro_image() -> None:
    assert set(routable_variants()) == {Variant.FLASH, Variant.PRO, Variant.PRO_IMAGE}


def test_only_flash_retries_on_empty_and_fallback_differs() -> None:
    retrying = [v for v, p in VARIANT_PROFILES.items() if p.retry_on_empty]
    assert retrying == [Variant.FLASH]
    assert RETRY_FALLBACK is not Variant.FLASH


def test_gemini_three_uses_thinking_level_and_two_five_uses_budget() -> None:
    flash = get_profile(Variant.FLASH).generation_config()
    pro_25 = get_profile(Variant.PRO_25).generation_config()

    assert flash["thinkingConfig"] == {"includeThoughts": True, "thinkingLevel": "LOW"}
    assert pro_25["thinkingConfig"] == {"includeThoughts": True, "thinkingBudget": 4096}
    assert pro_25["temperature"] == 0.6


def test_research_profile_sampling_and_history() -> None:
    profile = get_profile(Variant.RESEARCH)
    config = profile.generation_config()

    assert profile.upstream_model == "gemini-3-pro-preview"
    assert config["temperature"] == 1.0
    assert config["topP"] == 0.95
    assert config["thinkingConfig"]["thinkingLevel"] == "HIGH"
    assert profile.history_limit == 2


def test_flash_image_is_one_shot_with_single_turn_history() -> None:
    profile = get_profile(Variant.FLASH_IMAGE)

    assert profile.streaming is False
    assert profile.history_limit == 1
    assert profile.supports_tools is False
    assert profile.tool_config() == []
    assert profile.generation_config()["responseModalities"] == ["TEXT", "IMAGE"]


def test_chat_variants_sample_like_the_model_defaults() -> None:
    for variant in (Variant.FLASH, Variant.PRO):
        config = get_profile(variant).generation_config()
        assert config["temperature"] == 1.0
        assert config["topP"] == 0.95

    assert get_profile(RETRY_FALLBACK).generation_config()["temperature"] == 1.0
    assert get_profile(Variant.PRO_25).generation_config()["topP"] == 0.95
    assert "temperature" not in get_profile(Variant.PRO_IMAGE).generation_config()


def test_only_flash_image_takes_a_style() -> None:
    styled = [v for v, p in VARIANT_PROFILES.items() if p.supports_image_style]
    assert styled == [Variant.FLASH_IMAGE]


def test_aspect_ratio_only_applies_to_image_variants() -> None:
    image = get_profile(Variant.PRO_IMAGE).generation_config(aspect_ratio="16:9")
    chat = get_profile(Variant.FLASH).generation_config(aspect_ratio="16:9")

    assert image["imageConfig"] == {"aspectRatio": "16:9"}
    assert "imageConfig" not in chat


def test_pro_image_only_has_search_tool() -> None:
    profile = get_profile(Variant.PRO_IMAGE)
    assert profile.tools == (Tool.GOOGLE_SEARCH,)
    assert profile.tool_config() == [{"googleSearch": {}}]
    assert profile.reembed_model_images is True
    assert profile.echo_continuity is True


def test_code_execution_can_be_disabled() -> None:
    profile = get_profile(Variant.PRO)

    enabled = profile.tool_config(allow_code_execution=True)
    disabled = profile.tool_config(allow_code_execution=False)

    assert {"codeExecution": {}} in enabled
    assert {"codeExecution": {}} not in disabled
    assert {"googleSearch": {}} in disabled


def test_parse_variant() -> None:
    assert parse_variant(" gemini-3-pro-preview ") is Variant.PRO
    assert parse_variant("research") is Variant.RESEARCH
    assert parse_variant("gpt-4") is None


def test_describe_reports_capabilities() -> None:
    described = get_profile(Variant.PRO_IMAGE).describe()
    assert described["id"] == "gemini-3-pro-image-preview"
    assert described["supportsImages"] is True
    assert described["supportsTools"] is True
    assert described["thinking"] is None
    assert get_profile(Variant.PRO_25).describe()["thinking"] == "budget"
