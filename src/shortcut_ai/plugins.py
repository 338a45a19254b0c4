from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import re
import uuid
from urllib.parse import quote, unquote

from shortcut_ai.errors import PluginError
from shortcut_ai.models import PluginKind

LOGGER = logging.getLogger(__name__)

HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")
RGB_RE = re.compile(r"(\d{1,3})[,\s]+(\d{1,3})[,\s]+(\d{1,3})")
SENTENCE_SPLIT_RE = re.compile(r"[.!?]")


class PluginProcessor:
    """Local text tools run in place of a provider call."""

    def process(self, kind: PluginKind, text: str) -> str:
        kind = PluginKind(kind)
        handler = {
            PluginKind.JSON_FORMATTER: self.format_json,
            PluginKind.BASE64_ENCODE: self.base64_encode,
            PluginKind.BASE64_DECODE: self.base64_decode,
            PluginKind.COLOR_CONVERTER: self.convert_color,
            PluginKind.UUID_GENERATOR: lambda _text: self.generate_uuid(),
            PluginKind.HASH_GENERATOR: self.generate_hashes,
            PluginKind.URL_ENCODE: self.url_encode,
            PluginKind.URL_DECODE: self.url_decode,
            PluginKind.WORD_COUNT: self.count_words,
        }[kind]
        LOGGER.info("Running plugin %s (chars=%d)", kind.value, len(text))
        return handler(text)

    def format_json(self, text: str) -> str:
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PluginError(f"Invalid JSON: {exc.msg}") from exc
        return json.dumps(parsed, indent=2, sort_keys=True, ensure_ascii=False)

    def base64_encode(self, text: str) -> str:
        return base64.b64encode(text.encode("utf-8")).decode("ascii")

    def base64_decode(self, text: str) -> str:
        try:
            raw = base64.b64decode(text.strip(), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise PluginError("Invalid Base64 string") from exc
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PluginError("Failed to decode as UTF-8 text") from exc

    def convert_color(self, text: str) -> str:
        trimmed = text.strip()
        rgb = self._parse_hex(trimmed) or self._parse_rgb(trimmed)
        if rgb is None:
            raise PluginError("Could not parse color. Try formats: #FF5733, rgb(255, 87, 51), or 255,87,51")

        r, g, b = rgb
        h, s, l = self._rgb_to_hsl(r, g, b)
        return (
            f"HEX: #{r:02X}{g:02X}{b:02X}\n"
            f"RGB: rgb({r}, {g}, {b})\n"
            f"HSL: hsl({h}, {s}%, {l}%)"
        )

    def generate_uuid(self) -> str:
        value = str(uuid.uuid4()).upper()
        return f"UUID: {value}\nLowercase: {value.lower()}\nNo dashes: {value.replace('-', '')}"

    def generate_hashes(self, text: str) -> str:
        data = text.encode("utf-8")
        return (
            f"MD5: {hashlib.md5(data).hexdigest()}\n"
            f"SHA-256: {hashlib.sha256(data).hexdigest()}\n"
            f"SHA-512: {hashlib.sha512(data).hexdigest()}"
        )

    def url_encode(self, text: str) -> str:
        return quote(text, safe="")

    def url_decode(self, text: str) -> str:
        return unquote(text)

    def count_words(self, text: str) -> str:
        words = len(text.split())
        characters = len(text)
        no_spaces = len("".join(text.split()))
        lines = len(text.split("\n"))
        sentences = len([part for part in SENTENCE_SPLIT_RE.split(text) if part.strip()])
        paragraphs = len([part for part in text.split("\n\n") if part.strip()])
        return (
            f"Words: {words}\n"
            f"Characters: {characters}\n"
            f"Characters (no spaces): {no_spaces}\n"
            f"Lines: {lines}\n"
            f"Sentences: {sentences}\n"
            f"Paragraphs: {paragraphs}"
        )

    def _parse_hex(self, text: str) -> tuple[int, int, int] | None:
        match = HEX_RE.match(text)
        if not match:
            return None
        value = int(match.group(1), 16)
        return (value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF

    def _parse_rgb(self, text: str) -> tuple[int, int, int] | None:
        match = RGB_RE.search(text)
        if not match:
            return None
        r, g, b = (int(part) for part in match.groups())
        if not all(0 <= c <= 255 for c in (r, g, b)):
            return None
        return r, g, b

    def _rgb_to_hsl(self, r: int, g: int, b: int) -> tuple[int, int, int]:
        r1, g1, b1 = r / 255.0, g / 255.0, b / 255.0
        max_c = max(r1, g1, b1)
        min_c = min(r1, g1, b1)
        delta = max_c - min_c
        lightness = (max_c + min_c) / 2
        hue = 0.0
        saturation = 0.0

        if delta != 0:
            if lightness > 0.5:
                saturation = delta / (2 - max_c - min_c)
            else:
                saturation = delta / (max_c + min_c)
            if max_c == r1:
                hue = ((g1 - b1) / delta) % 6
            elif max_c == g1:
                hue = (b1 - r1) / delta + 2
            else:
                hue = (r1 - g1) / delta + 4
            hue *= 60

        return round(hue), round(saturation * 100), round(lightness * 100)
