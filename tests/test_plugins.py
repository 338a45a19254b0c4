import json
import uuid

import pytest

from shortcut_ai.errors import PluginError
from shortcut_ai.models import PluginKind
from shortcut_ai.plugins import PluginProcessor


@pytest.fixture
def processor() -> PluginProcessor:
    return PluginProcessor()


def test_json_formatter_pretty_prints_sorted(processor: PluginProcessor) -> None:
    result = processor.process(PluginKind.JSON_FORMATTER, '{"b": 1, "a": [1, 2]}')

    assert result == json.dumps({"a": [1, 2], "b": 1}, indent=2, sort_keys=True)


def test_json_formatter_rejects_invalid_json(processor: PluginProcessor) -> None:
    with pytest.raises(PluginError):
        processor.process(PluginKind.JSON_FORMATTER, "{oops")


def test_base64_encode_and_decode(processor: PluginProcessor) -> None:
    assert processor.process(PluginKind.BASE64_ENCODE, "héllo") == "aMOpbGxv"
    assert processor.process("base64_decode", " aMOpbGxv\n") == "héllo"


def test_base64_decode_rejects_garbage(processor: PluginProcessor) -> None:
    with pytest.raises(PluginError):
        processor.process(PluginKind.BASE64_DECODE, "not base64!!")


@pytest.mark.parametrize("value", ["#FF5733", "ff5733", "rgb(255, 87, 51)", "255,87,51"])
def test_color_converter_accepts_common_formats(processor: PluginProcessor, value: str) -> None:
    result = processor.process(PluginKind.COLOR_CONVERTER, value)

    assert result.splitlines() == ["HEX: #FF5733", "RGB: rgb(255, 87, 51)", "HSL: hsl(11, 100%, 60%)"]


def test_color_converter_rejects_unknown_format(processor: PluginProcessor) -> None:
    with pytest.raises(PluginError):
        processor.process(PluginKind.COLOR_CONVERTER, "blue-ish")


def test_uuid_generator_ignores_input(processor: PluginProcessor) -> None:
    lines = processor.process(PluginKind.UUID_GENERATOR, "").splitlines()

    value = lines[0].removeprefix("UUID: ")
    assert uuid.UUID(value)
    assert lines[1] == f"Lowercase: {value.lower()}"
    assert lines[2] == f"No dashes: {value.replace('-', '')}"


def test_hash_generator(processor: PluginProcessor) -> None:
    lines = processor.process(PluginKind.HASH_GENERATOR, "abc").splitlines()

    assert lines[0] == "MD5: 900150983cd24fb0d6963f7d28e17f72"
    assert lines[1] == "SHA-256: ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert lines[2].startswith("SHA-512: ddaf35a193617aba")


def test_url_encode_and_decode(processor: PluginProcessor) -> None:
    assert processor.process(PluginKind.URL_ENCODE, "a b&c/d") == "a%20b%26c%2Fd"
    assert processor.process(PluginKind.URL_DECODE, "a%20b%26c%2Fd") == "a b&c/d"


def test_word_count(processor: PluginProcessor) -> None:
    text = "Hello world. How are you?\n\nFine!"

    result = processor.process(PluginKind.WORD_COUNT, text)

    assert result.splitlines() == [
        "Words: 6",
        f"Characters: {len(text)}",
        "Characters (no spaces): 26",
        "Lines: 3",
        "Sentences: 3",
        "Paragraphs: 2",
    ]
