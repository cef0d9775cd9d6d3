"""Prompt templates for illustration, sketch and character image generation."""

from __future__ import annotations

from typing import Iterable, Optional

from storybook_schemas import (
    CHARACTER_ATTRIBUTE_FIELDS,
    Character,
    IllustrationType,
    Page,
    Project,
    TextIntegration,
)

ILLUSTRATION_PROMPT = """
Create a full-colour children's book illustration for page {page_number} of "{title}".

Scene: {scene}
Story text on this page: {story_text}
{characters_block}
Layout: {layout}
Text handling: {text_handling}
Keep every character consistent with the attached reference images and the book's established style.
""".strip()

SKETCH_PROMPT = """
Redraw the attached illustration as a clean pencil sketch on white paper.
Keep the composition, characters and proportions identical. No colour, no shading fills, no text.
""".strip()

CHARACTER_PROMPT = """
Create a character reference sheet for a children's book titled "{title}".

Character: {name}{role}
{attributes}
Full body, neutral pose, plain background, consistent with the attached references.
""".strip()

_LAYOUTS = {
    IllustrationType.SPREAD: "double-page spread spanning both pages",
    IllustrationType.SPOT: "spot illustration with generous white space around it",
}


def _describe_characters(page: Page, characters: Iterable[Character]) -> str:
    lines: list[str] = []
    for character in characters:
        if page.character_ids and character.id not in page.character_ids:
            continue
        label = character.name or ("Main character" if character.is_main else "Character")
        action = page.character_actions.get(character.id)
        details = ""
        if action is not None:
            parts = [value for value in (action.action, action.pose, action.emotion) if value]
            if parts:
                details = f" ({', '.join(parts)})"
        lines.append(f"- {label}{details}")
    if not lines:
        return ""
    return "Characters on this page:\n" + "\n".join(lines)


def build_illustration_prompt(
    project: Project,
    page: Page,
    characters: Iterable[Character],
    *,
    feedback: Optional[str] = None,
) -> str:
    text_integration = page.text_integration or project.illustration_text_integration
    if text_integration == TextIntegration.INTEGRATED:
        text_handling = "render the story text inside the artwork"
    else:
        text_handling = "leave room for the story text, do not draw any lettering"
    prompt = ILLUSTRATION_PROMPT.format(
        page_number=page.page_number,
        title=project.book_title,
        scene=page.scene_description or "Illustrate the story text faithfully.",
        story_text=page.story_text or "(none)",
        characters_block=_describe_characters(page, characters),
        layout=_LAYOUTS.get(page.illustration_type, "single page illustration"),
        text_handling=text_handling,
    )
    if feedback:
        prompt += f"\n\nCustomer feedback to address: {feedback}"
    return prompt


def build_sketch_prompt() -> str:
    return SKETCH_PROMPT


def build_character_prompt(project: Project, character: Character) -> str:
    attributes = "\n".join(
        f"- {name.replace('_', ' ')}: {getattr(character, name)}"
        for name in CHARACTER_ATTRIBUTE_FIELDS
        if getattr(character, name)
    )
    prompt = CHARACTER_PROMPT.format(
        title=project.book_title,
        name=character.name or "Unnamed",
        role=f", {character.role}" if character.role else "",
        attributes=attributes,
    )
    if character.feedback_notes and not character.is_resolved:
        prompt += f"\n\nCustomer feedback to address: {character.feedback_notes}"
    return prompt
