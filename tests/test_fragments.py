from __future__ import annotations

import base64
import logging

import pytest

from chat_gateway.chat.fragments import (
    CodeExecutionResultFragment,
    ContinuityTokenFragment,
    ExecutableCodeFragment,
    GroundingFragment,
    InlineDataFragment,
    TextFragment,
    ThoughtFragment,
    extract_execution_image,
    parse_chunk,
)


def _chunk(*parts, **candidate_extra):
    candidate = {"content": {"role": "model", "parts": list(parts)}}
    candidate.update(candidate_extra)
    return {"candidates": [candidate]}


def test_parts_keep_their_order(png_b64: str) -> None:
    chunk = _chunk(
        {"text": "planning", "thought": True},
        {"text": "Hello"},
        {"executableCode": {"language": "PYTHON", "code": "print(1)"}},
        {"codeExecutionResult": {"outcome": "OUTCOME_OK", "output": "1"}},
        {"inlineData": {"mimeType": "image/png", "data": png_b64}},
        {"text": "done", "thoughtSignature": "sig-1"},
    )

    fragments = parse_chunk(chunk)

    assert [type(f) for f in fragments] == [
        ThoughtFragment,
        TextFragment,
        ExecutableCodeFragment,
        CodeExecutionResultFragment,
        InlineDataFragment,
        TextFragment,
        ContinuityTokenFragment,
    ]
    assert fragments[2].language == "python"
    assert fragments[-1].token == "sig-1"


def test_thought_images_are_flagged(png_b64: str) -> None:
    chunk = _chunk({"inlineData": {"mimeType": "image/png", "data": png_b64}, "thought": True})
    (fragment,) = parse_chunk(chunk)
    assert isinstance(fragment, InlineDataFragment)
    assert fragment.thought is True


def test_grounding_prefers_chunk_level_metadata() -> None:
    chunk = _chunk(
        {"text": "x"},
        groundingMetadata={"groundingChunks": [{"web": {"uri": "https://candidate"}}]},
    )
    chunk["groundingMetadata"] = {
        "groundingChunks": [
            {"web": {"uri": "https://a.example", "title": "A"}},
            {"web": {"title": "no uri"}},
            {"retrievedContext": {}},
        ]
    }

    grounding = parse_chunk(chunk)[-1]

    assert isinstance(grounding, GroundingFragment)
    assert [s.to_payload() for s in grounding.sources] == [
        {"title": "A", "url": "https://a.example"}
    ]


def test_grounding_falls_back_to_candidate_and_default_title() -> None:
    chunk = _chunk(groundingMetadata={"groundingChunks": [{"web": {"uri": "https://b"}}]})
    (grounding,) = parse_chunk(chunk)
    assert grounding.sources[0].title == "Web Source"


def test_empty_and_malformed_chunks_yield_nothing() -> None:
    assert parse_chunk({}) == []
    assert parse_chunk({"candidates": []}) == []
    assert parse_chunk({"candidates": ["nope"]}) == []
    assert parse_chunk(_chunk({"text": ""}, "not a part")) == []


def test_undecodable_inline_data_is_dropped(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    chunk = _chunk({"inlineData": {"mimeType": "image/png", "data": "!!!not-base64!!!"}})
    assert parse_chunk(chunk) == []
    assert "undecodable" in caplog.text


def test_blocked_prompt_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    assert parse_chunk({"promptFeedback": {"blockReason": "SAFETY"}}) == []
    assert "SAFETY" in caplog.text


def test_extract_execution_image(png_bytes: bytes, png_b64: str) -> None:
    output = f"Saved chart\ndata:image/png;base64,{png_b64}\n"
    assert extract_execution_image(output) == ("image/png", png_bytes)


def test_extract_execution_image_maps_jpg() -> None:
    jpeg = b"\xff\xd8\xff\xe0" + b"\x00" * 16
    payload = base64.b64encode(jpeg).decode()
    mime, data = extract_execution_image(f"data:image/jpg;base64,{payload}")
    assert mime == "image/jpeg"
    assert data == jpeg


@pytest.mark.parametrize(
    "output",
    [
        "",
        "no image here",
        "data:image/png;base64,",
        "data:image/svg+xml;base64,PHN2Zz4=",
        # decodes but is not image bytes
        "data:image/png;base64," + base64.b64encode(b"hello world, plain text").decode(),
    ],
)
def test_extract_execution_image_rejects_incomplete_payloads(output: str) -> None:
    assert extract_execution_image(output) is None


def test_extract_execution_image_rejects_truncated_payload(png_b64: str) -> None:
    assert extract_execution_image(f"data:image/png;base64,{png_b64[:6]}") is None
