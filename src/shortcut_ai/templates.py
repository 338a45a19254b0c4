from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TemplateCategory(str, Enum):
    WRITING = "writing"
    TRANSLATION = "translation"
    CODING = "coding"
    PRODUCTIVITY = "productivity"


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    icon: str
    prompt: str
    category: TemplateCategory


BUILTIN_TEMPLATES: tuple[PromptTemplate, ...] = (
    PromptTemplate(
        name="Make Friendly",
        icon="face.smiling",
        prompt="Rewrite the following text in a warm, friendly tone. Return only the rewritten text:",
        category=TemplateCategory.WRITING,
    ),
    PromptTemplate(
        name="Expand Text",
        icon="arrow.up.left.and.arrow.down.right",
        prompt=(
            "Expand the following text with more detail while keeping its intent. "
            "Return only the expanded text:"
        ),
        category=TemplateCategory.WRITING,
    ),
    PromptTemplate(
        name="Bullet Points",
        icon="list.bullet",
        prompt="Summarize the following text as concise bullet points. Return only the bullet points:",
        category=TemplateCategory.PRODUCTIVITY,
    ),
    PromptTemplate(
        name="Reply to Email",
        icon="envelope",
        prompt="Write a polite, concise reply to the following email. Return only the reply:",
        category=TemplateCategory.PRODUCTIVITY,
    ),
    PromptTemplate(
        name="Translate to Spanish",
        icon="globe.americas",
        prompt="Translate the following text to Spanish. Return only the translation:",
        category=TemplateCategory.TRANSLATION,
    ),
    PromptTemplate(
        name="Translate to French",
        icon="globe.europe.africa",
        prompt="Translate the following text to French. Return only the translation:",
        category=TemplateCategory.TRANSLATION,
    ),
    PromptTemplate(
        name="Explain Code",
        icon="chevron.left.forwardslash.chevron.right",
        prompt="Explain what the following code does in plain language:",
        category=TemplateCategory.CODING,
    ),
    PromptTemplate(
        name="Add Comments",
        icon="text.bubble",
        prompt="Add concise comments to the following code. Return only the commented code:",
        category=TemplateCategory.CODING,
    ),
)


def templates_in(category: TemplateCategory | None = None) -> list[PromptTemplate]:
    if category is None:
        return list(BUILTIN_TEMPLATES)
    return [template for template in BUILTIN_TEMPLATES if template.category is category]


__all__ = ["BUILTIN_TEMPLATES", "PromptTemplate", "TemplateCategory", "templates_in"]
