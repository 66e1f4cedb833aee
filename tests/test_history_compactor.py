from __future__ import annotations

import base64

import pytest

from chat_gateway.chat.history import (
    SKIP_SIGNATURE,
    HistoryCompactor,
    select_reembed_targets,
    select_window,
)
from chat_gateway.chat.variants import Variant, get_profile
from chat_gateway.schemas.chat import ConversationTurn


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class RecordingLoader:
    def __init__(self, missing: set[str] | None = None) -> None:
        self.calls: list[str] = []
        self._missing = missing or set()

    async def __call__(self, url: str):
        self.calls.append(url)
        if url in self._missing:
            return None
        return url.encode(), "image/png"


def _history(pairs: int, images_per_reply: int = 0) -> list[ConversationTurn]:
    turns: list[ConversationTurn] = []
    for i in range(pairs):
        turns.append(ConversationTurn(role="user", text=f"q{i}"))
        turns.append(
            ConversationTurn(
                role="model",
                text=f"a{i}",
                imageUrls=[f"https://img/{i}/{j}" for j in range(images_per_reply)],
                thoughtSignature=f"sig{i}" if i % 2 == 0 else None,
            )
        )
    return turns


def test_select_window_respects_history_limit() -> None:
    history = _history(30)
    assert len(select_window(history, get_profile(Variant.FLASH))) == 60
    assert select_window(history, get_profile(Variant.RESEARCH)) == history[-2:]
    assert select_window(history, get_profile(Variant.FLASH_IMAGE)) == history[-1:]


def test_reembed_targets_are_newest_across_window_in_order() -> None:
    window = _history(4, images_per_reply=3)
    targets = select_reembed_targets(window, 4)
    # model turns sit at odd indices; newest four of twelve images
    assert targets == [(5, 2), (7, 0), (7, 1), (7, 2)]
    assert select_reembed_targets(window, 0) == []


@pytest.mark.anyio
async def test_text_only_variants_drop_blank_turns_and_images() -> None:
    loader = RecordingLoader()
    compactor = HistoryCompactor(loader)
    history = [
        ConversationTurn(role="user", text="hi"),
        ConversationTurn(role="model", text="   ", imageUrls=["https://img/a"]),
        ConversationTurn(role="model", text="hello"),
    ]

    contents = await compactor.compact(history, get_profile(Variant.PRO))

    assert contents == [
        {"role": "user", "parts": [{"text": "hi"}]},
        {"role": "model", "parts": [{"text": "hello"}]},
    ]
    assert loader.calls == []


@pytest.mark.anyio
async def test_reembed_caps_images_and_echoes_continuity() -> None:
    loader = RecordingLoader()
    compactor = HistoryCompactor(loader, max_reembedded_images=3)
    history = _history(3, images_per_reply=2)

    contents = await compactor.compact(history, get_profile(Variant.PRO_IMAGE))

    assert loader.calls == ["https://img/1/1", "https://img/2/0", "https://img/2/1"]
    assert [c["role"] for c in contents] == ["user", "model"] * 3
    first_model, second_model, third_model = contents[1], contents[3], contents[5]

    assert first_model["parts"] == [{"text": "a0", "thoughtSignature": "sig0"}]
    assert second_model["parts"][0]["inlineData"]["data"] == base64.b64encode(
        b"https://img/1/1"
    ).decode()
    assert second_model["parts"][0]["thoughtSignature"] == SKIP_SIGNATURE
    assert second_model["parts"][-1] == {"text": "a1", "thoughtSignature": SKIP_SIGNATURE}
    assert len(third_model["parts"]) == 3
    assert third_model["parts"][-1] == {"text": "a2", "thoughtSignature": "sig2"}


@pytest.mark.anyio
async def test_reembed_skips_images_that_fail_to_load() -> None:
    loader = RecordingLoader(missing={"https://img/0/0"})
    compactor = HistoryCompactor(loader)
    history = _history(1, images_per_reply=2)

    contents = await compactor.compact(history, get_profile(Variant.PRO_IMAGE))

    model_parts = contents[1]["parts"]
    assert len(model_parts) == 2
    assert "inlineData" in model_parts[0]
    assert model_parts[1]["text"] == "a0"


@pytest.mark.anyio
async def test_compaction_is_idempotent() -> None:
    compactor = HistoryCompactor(RecordingLoader(), max_reembedded_images=2)
    history = _history(25, images_per_reply=1)
    profile = get_profile(Variant.PRO_IMAGE)

    first = await compactor.compact(history, profile)
    second = await compactor.compact(history, profile)

    assert first == second
    assert len(first) == profile.history_limit
    embedded = [p for c in first for p in c["parts"] if "inlineData" in p]
    assert len(embedded) == 2
