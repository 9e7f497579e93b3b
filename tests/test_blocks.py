import pytest

from bloxr.domain.models import PartPayload, ScriptPayload
from bloxr.services.blocks import extract_payloads, parse_block, scan_blocks, strip_blocks

from .utils import part_block, script_block


def test_scan_blocks_returns_bodies_in_text_order():
    text = "First\n```json\n{\"a\": 1}\n```\nthen\n```json\n{\"b\": 2}\n```\n"
    assert scan_blocks(text) == ['{"a": 1}', '{"b": 2}']


def test_scan_blocks_ignores_unclosed_tail():
    text = "Done\n```json\n{\"a\": 1}\n```\n```json\n{\"partial\": "
    assert scan_blocks(text) == ['{"a": 1}']


def test_strip_blocks_removes_closed_and_open_blocks():
    text = "Here is a spinner.\n" + script_block() + "\n\n\n\nAnd a half one ```json\n{\"name\":"
    assert strip_blocks(text) == "Here is a spinner.\n\nAnd a half one"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "plain answer",
        "Intro\n" + script_block() + "\nOutro",
        "```json\n{}\n``` stray ``` ```json",
        "a ```json x ``` b ```json y",
        "```json```json```json```",
        "\n\n\n\nspaced\n\n\n\n",
    ],
)
def test_strip_blocks_is_idempotent(text):
    once = strip_blocks(text)
    assert strip_blocks(once) == once


def test_extract_part_and_untyped_block_normalizes_to_script():
    untyped = script_block(name="Untyped").replace('"type": "script", ', "")
    assert '"type"' not in untyped
    text = "Built it.\n" + part_block() + "\n" + untyped

    payloads, skipped = extract_payloads(text)

    assert skipped == 0
    assert [type(p) for p in payloads] == [PartPayload, ScriptPayload]
    assert payloads[1].name == "Untyped"
    assert payloads[1].type == "script"


def test_invalid_block_is_skipped_and_text_unaffected():
    text = "Sorry.\n```json\n{not json}\n```"
    payloads, skipped = extract_payloads(text)
    assert payloads == []
    assert skipped == 1
    assert strip_blocks(text) == "Sorry."


def test_bad_block_does_not_stop_later_blocks():
    text = "```json\n{oops\n```\n" + script_block(name="Second")
    payloads, skipped = extract_payloads(text)
    assert skipped == 1
    assert [p.name for p in payloads] == ["Second"]


def test_parse_block_rejects_unknown_variant():
    with pytest.raises(ValueError):
        parse_block('{"type": "sound", "name": "Boom"}')
    with pytest.raises(ValueError):
        parse_block("[1, 2, 3]")
