from __future__ import annotations

from datetime import datetime, timezone

from conceptcraft.export import (
    concept_to_markdown,
    export_filename,
    format_concept_for_export,
    pitch_deck_to_markdown,
)
from conceptcraft.schemas import BusinessConcept, LeanCanvasData, Persona, PitchDeckSlide, SlideType

NOW = datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc)

SLIDES = [
    PitchDeckSlide(title="The Problem", content="Invoices go unpaid.", slide_type=SlideType.PROBLEM),
    PitchDeckSlide(title="Our Solution", content="We chase them.", slide_type=SlideType.SOLUTION),
]


def _concept(**fields: object) -> BusinessConcept:
    return BusinessConcept(concept_id="c-1", user_id="u-1", created_at=NOW, updated_at=NOW, **fields)


def test_pitch_deck_markdown_keeps_slide_order() -> None:
    markdown = pitch_deck_to_markdown(SLIDES)

    assert markdown == (
        "\n# The Problem\n\nInvoices go unpaid.\n\n---\n"
        "\n"
        "\n# Our Solution\n\nWe chase them.\n\n---\n"
    )


def test_export_filename() -> None:
    assert export_filename("pitch-deck", "md", include_timestamp=False) == "pitch-deck.md"
    assert export_filename("business-concept", "json", now=NOW) == "business-concept-2024-06-01.json"


def test_concept_markdown_skips_empty_parts() -> None:
    markdown = concept_to_markdown(_concept(problem_statement="Late invoices."))

    assert markdown == "## Problem Statement\n\nLate invoices."


def test_concept_markdown_renders_every_committed_part() -> None:
    persona = Persona(name="Dana", demographics="29", pain_points=["late invoices"], description="Works alone.")
    concept = _concept(
        problem_statement="P",
        solution_statement="S",
        target_persona_description=persona.to_description(),
        lean_canvas_data=LeanCanvasData(channels="Referrals"),
        pitch_deck_slides_data=SLIDES,
    )

    markdown = concept_to_markdown(concept)

    assert "## Target Persona\n\n### Dana" in markdown
    assert "- late invoices" in markdown
    assert "## Lean Canvas\n\n### Channels\n\nReferrals" in markdown
    assert "Key Metrics" not in markdown
    assert "### 1. The Problem" in markdown
    assert markdown.index("### 1. The Problem") < markdown.index("### 2. Our Solution")


def test_json_export_document() -> None:
    concept = _concept(problem_statement="P", pitch_deck_slides_data=SLIDES[:1])

    document = format_concept_for_export(concept, now=NOW)

    assert document["metadata"] == {
        "exportedAt": "2024-06-01T09:30:00+00:00",
        "version": "1.0.0",
        "appName": "ConceptCraft AI",
    }
    body = document["businessConcept"]
    assert body["id"] == "c-1"
    assert body["problemStatement"] == "P"
    assert body["leanCanvas"] is None
    assert body["pitchDeck"] == [{"title": "The Problem", "content": "Invoices go unpaid.", "slideType": "problem"}]
