"""Tests for the fuzzy picker."""

import asyncio

import pytest
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from kubeswitch.picker import Picker, filter_items, fuzzy_score


def test_fuzzy_score_subsequence():
    assert fuzzy_score("", "anything") == 0
    assert fuzzy_score("abc", "xaxbxc") is not None
    assert fuzzy_score("ABC", "abc") is not None
    assert fuzzy_score("abd", "abc") is None


def test_consecutive_matches_rank_higher():
    assert fuzzy_score("dev", "dev") > fuzzy_score("dev", "d-e-v")
    assert filter_items("dev", ["d-e-v", "dev", "prod"]) == [1, 0]


def test_filter_items_keeps_order_for_empty_query():
    assert filter_items("", ["b", "a", "c"]) == [0, 1, 2]


@pytest.mark.asyncio
async def test_enter_selects_filtered_item():
    with create_pipe_input() as pipe:
        picker = Picker(items=["alpha", "beta"], show_preview=False, input=pipe, output=DummyOutput())
        pipe.send_text("bet\r")
        assert await asyncio.wait_for(picker.run(), 5) == "beta"


@pytest.mark.asyncio
async def test_ctrl_c_aborts():
    with create_pipe_input() as pipe:
        picker = Picker(items=["alpha"], show_preview=False, input=pipe, output=DummyOutput())
        pipe.send_text("\x03")
        assert await asyncio.wait_for(picker.run(), 5) is None


@pytest.mark.asyncio
async def test_items_arrive_while_shown():
    arrived = asyncio.Event()

    async def source():
        await asyncio.sleep(0.05)
        yield "late-cluster"
        arrived.set()

    with create_pipe_input() as pipe:
        picker = Picker(items=["early"], show_preview=False, input=pipe, output=DummyOutput())

        async def type_after_arrival():
            await arrived.wait()
            pipe.send_text("late\r")

        typist = asyncio.ensure_future(type_after_arrival())
        assert await asyncio.wait_for(picker.run(source()), 5) == "late-cluster"
        await typist
        assert picker.items == ["early", "late-cluster"]


@pytest.mark.asyncio
async def test_preview_is_loaded_for_selection():
    async def preview(item):
        return f"preview of {item}"

    with create_pipe_input() as pipe:
        picker = Picker(items=["alpha"], preview=preview, input=pipe, output=DummyOutput())

        async def accept_after_preview():
            while 0 not in picker._previews:
                await asyncio.sleep(0.01)
            pipe.send_text("\r")

        accept = asyncio.ensure_future(accept_after_preview())
        assert await asyncio.wait_for(picker.run(), 5) == "alpha"
        await accept
        assert picker._previews[0] == "preview of alpha"


def test_selection_survives_items_arriving_during_query():
    with create_pipe_input() as pipe:
        picker = Picker(
            items=["dev-a", "dev-b", "prod"], show_preview=False, input=pipe, output=DummyOutput()
        )
        picker.query.text = "dev"
        picker._move(1)
        assert picker.selected() == "dev-b"

        picker.add("dev")
        picker.add("dev-c")
        assert picker.selected() == "dev-b"

        picker.query.text = "dev-c"
        assert picker.selected() == "dev-c"
