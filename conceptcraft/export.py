"""Markdown and JSON renderings of a committed concept."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from .schemas import BusinessConcept, LeanCanvasData, LeanCanvasSection, Persona, PitchDeckSlide

APP_NAME = "ConceptCraft AI"
EXPORT_VERSION = "1.0.0"


def _bullet_list(items: Iterable[str]) -> str:
    return "\n".join(f"- {item}" for item in items if item)


def export_filename(base: str, extension: str, *, include_timestamp: bool = True, now: Optional[datetime] = None) -> str:
    if not include_timestamp:
        return f"{base}.{extension}"
    stamp = (now or datetime.now(timezone.utc)).date().isoformat()
    return f"{base}-{stamp}.{extension}"


def pitch_deck_to_markdown(slides: Iterable[PitchDeckSlide]) -> str:
    """Render slides in deck order, one ``# title`` block per slide."""

    return "\n".join(f"\n# {slide.title}\n\n{slide.content}\n\n---\n" for slide in slides)


def _format_persona_markdown(persona: Optional[Persona]) -> str:
    if persona is None:
        return ""
    return "\n\n".join(
        section
        for section in [
            f"### {persona.name}" if persona.name else "",
            f"**Demographics:** {persona.demographics}" if persona.demographics else "",
            persona.description,
            f"**Pain points**\n\n{_bullet_list(persona.pain_points)}" if persona.pain_points else "",
            f"**Motivations**\n\n{_bullet_list(persona.motivations)}" if persona.motivations else "",
            f"**Behaviors**\n\n{_bullet_list(persona.behaviors)}" if persona.behaviors else "",
        ]
        if section
    )


def _format_lean_canvas_markdown(canvas: Optional[LeanCanvasData]) -> str:
    if canvas is None:
        return ""
    return "\n\n".join(
        f"### {section.label}\n\n{canvas.get(section)}" for section in LeanCanvasSection if canvas.get(section)
    )


def concept_to_markdown(concept: BusinessConcept) -> str:
    """Render every committed part of *concept*, skipping empty ones."""

    persona_block = _format_persona_markdown(concept.persona)
    canvas_block = _format_lean_canvas_markdown(concept.lean_canvas_data)
    deck_block = "\n\n".join(
        f"### {index}. {slide.title}\n\n{slide.content}"
        for index, slide in enumerate(concept.pitch_deck_slides_data, start=1)
    )
    return "\n\n".join(
        section
        for section in [
            f"## Problem Statement\n\n{concept.problem_statement}" if concept.problem_statement else "",
            f"## Solution Statement\n\n{concept.solution_statement}" if concept.solution_statement else "",
            f"## Target Persona\n\n{persona_block}" if persona_block else "",
            f"## Lean Canvas\n\n{canvas_block}" if canvas_block else "",
            f"## Pitch Deck\n\n{deck_block}" if deck_block else "",
        ]
        if section
    )


def format_concept_for_export(concept: BusinessConcept, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Build the JSON export document."""

    exported_at = now or datetime.now(timezone.utc)
    return {
        "metadata": {
            "exportedAt": exported_at.isoformat(),
            "version": EXPORT_VERSION,
            "appName": APP_NAME,
        },
        "businessConcept": {
            "id": concept.concept_id,
            "problemStatement": concept.problem_statement,
            "solutionStatement": concept.solution_statement,
            "targetPersona": concept.target_persona_description,
            "leanCanvas": (
                concept.lean_canvas_data.model_dump(mode="json", by_alias=True)
                if concept.lean_canvas_data is not None
                else None
            ),
            "pitchDeck": [slide.model_dump(mode="json", by_alias=True) for slide in concept.pitch_deck_slides_data],
            "createdAt": concept.created_at.isoformat(),
            "updatedAt": concept.updated_at.isoformat(),
        },
    }
