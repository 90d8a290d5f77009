from __future__ import annotations

import json

import pytest

from conftest import FakeClient, as_json, connection_error
from conceptcraft.llm import (
    FALLBACK_LEAN_CANVAS,
    FALLBACK_PERSONA,
    FALLBACK_PROBLEM_SOLUTION,
    FALLBACK_SLIDES,
    GenerationGateway,
    build_lean_canvas_prompt,
    build_persona_prompt,
    fallback_for,
    parse_structured_response,
)
from conceptcraft.schemas import (
    GenerationKind,
    LeanCanvasData,
    LeanCanvasInput,
    LeanCanvasSection,
    PersonaInput,
    PitchDeckInput,
    ProblemSolutionInput,
    SlideType,
    Source,
)


PS_INPUT = ProblemSolutionInput(
    target_audience="Freelance designers",
    problem_description="Clients pay late",
    solution_idea="Automatic reminders",
)


def _deck_input(*slide_types: SlideType) -> PitchDeckInput:
    return PitchDeckInput(
        problem_statement="Clients pay late.",
        solution_statement="Automatic reminders.",
        slide_types=list(slide_types),
    )


def test_parse_structured_response_strips_code_fence() -> None:
    raw = '```json\n{"problemStatement": "p", "solutionStatement": "s"}\n```'

    assert parse_structured_response(raw) == {"problemStatement": "p", "solutionStatement": "s"}


def test_parse_structured_response_rejects_prose() -> None:
    with pytest.raises(json.JSONDecodeError):
        parse_structured_response("Sure! Here is your answer.")


def test_fallbacks_cover_every_section_and_slide_type() -> None:
    for section in LeanCanvasSection:
        assert FALLBACK_LEAN_CANVAS.get(section)
    assert set(FALLBACK_SLIDES) == set(SlideType)
    for slide_type, slide in FALLBACK_SLIDES.items():
        assert slide.slide_type is slide_type


def test_fallback_for_returns_independent_copies() -> None:
    persona = fallback_for(GenerationKind.PERSONA)
    persona.pain_points.append("mutated")

    assert "mutated" not in FALLBACK_PERSONA.pain_points
    assert fallback_for(GenerationKind.PITCH_DECK_SLIDES, SlideType.MARKET).title == "Market Opportunity"


@pytest.mark.asyncio
async def test_problem_solution_from_model() -> None:
    client = FakeClient([as_json(problemStatement="Late payments hurt.", solutionStatement="Chase them for you.")])
    gateway = GenerationGateway(client, model="test-model")

    result = await gateway.generate_problem_solution(PS_INPUT)

    assert result.source is Source.MODEL
    assert result.value.problem_statement == "Late payments hurt."
    call = client.completions.calls[0]
    assert call["model"] == "test-model"
    assert call["temperature"] == 0.7
    assert call["max_tokens"] == 1000
    assert "Freelance designers" in call["messages"][1]["content"]


@pytest.mark.asyncio
async def test_problem_solution_falls_back_on_api_error() -> None:
    gateway = GenerationGateway(FakeClient([connection_error()]))

    result = await gateway.generate_problem_solution(PS_INPUT)

    assert result.source is Source.FALLBACK
    assert result.is_fallback
    assert result.value == FALLBACK_PROBLEM_SOLUTION


@pytest.mark.asyncio
async def test_problem_solution_falls_back_on_unparseable_output() -> None:
    gateway = GenerationGateway(FakeClient(["I think the problem is..."]))

    result = await gateway.generate_problem_solution(PS_INPUT)

    assert result.source is Source.FALLBACK


@pytest.mark.asyncio
async def test_problem_solution_falls_back_on_missing_statement() -> None:
    gateway = GenerationGateway(FakeClient([as_json(problemStatement="Only a problem.")]))

    result = await gateway.generate_problem_solution(PS_INPUT)

    assert result.source is Source.FALLBACK


@pytest.mark.asyncio
async def test_no_client_means_fallback_without_a_call(offline_gateway: GenerationGateway) -> None:
    result = await offline_gateway.generate_problem_solution(PS_INPUT)

    assert result.source is Source.FALLBACK


@pytest.mark.asyncio
async def test_persona_from_model_and_prompt_budget() -> None:
    client = FakeClient(
        [
            as_json(
                name="Dana the Designer",
                demographics="29, freelance",
                painPoints=["late invoices"],
                motivations=["stable income"],
                behaviors=["uses Figma"],
                description="Works alone.",
            )
        ]
    )
    gateway = GenerationGateway(client)
    payload = PersonaInput(industry="Design", problem_statement="p", solution_statement="s")

    result = await gateway.generate_persona(payload)

    assert result.source is Source.MODEL
    assert result.value.pain_points == ["late invoices"]
    assert client.completions.calls[0]["max_tokens"] == 1500
    assert build_persona_prompt(payload).max_tokens == 1500


@pytest.mark.asyncio
async def test_persona_without_name_uses_fallback() -> None:
    gateway = GenerationGateway(FakeClient([as_json(description="nameless")]))

    result = await gateway.generate_persona(PersonaInput(problem_statement="p", solution_statement="s"))

    assert result.source is Source.FALLBACK
    assert result.value.name == FALLBACK_PERSONA.name


@pytest.mark.asyncio
async def test_lean_canvas_section_returns_plain_text() -> None:
    gateway = GenerationGateway(FakeClient(["  Designers, studios and agencies.  "]))
    payload = LeanCanvasInput(
        problem_statement="p",
        solution_statement="s",
        section=LeanCanvasSection.CUSTOMER_SEGMENTS,
    )

    result = await gateway.generate_lean_canvas_section(payload)

    assert result.source is Source.MODEL
    assert result.value == "Designers, studios and agencies."


@pytest.mark.asyncio
@pytest.mark.parametrize("section", list(LeanCanvasSection))
async def test_lean_canvas_section_fallback_per_section(section: LeanCanvasSection) -> None:
    payload = LeanCanvasInput(problem_statement="p", solution_statement="s", section=section)

    result = await GenerationGateway(None).generate_lean_canvas_section(payload)

    assert result.source is Source.FALLBACK
    assert result.value == FALLBACK_LEAN_CANVAS.get(section)


def test_lean_canvas_prompt_lists_other_filled_sections() -> None:
    payload = LeanCanvasInput(
        problem_statement="p",
        solution_statement="s",
        section=LeanCanvasSection.CHANNELS,
        current_data=LeanCanvasData(key_metrics="Paid invoices per week", channels="ignored"),
    )

    prompt = build_lean_canvas_prompt(payload).user_prompt

    assert "Key Metrics: Paid invoices per week" in prompt
    assert "Channels: ignored" not in prompt
    assert "Target Persona: Not defined yet" in prompt


@pytest.mark.asyncio
async def test_pitch_deck_partial_failure_keeps_order_and_marks_fallbacks() -> None:
    client = FakeClient(
        [
            as_json(title="Pain", content="Invoices go unpaid."),
            connection_error(),
            "```json\n" + as_json(title="Market", content="2M freelancers.") + "\n```",
        ]
    )
    gateway = GenerationGateway(client)

    results = await gateway.generate_pitch_deck_slides(
        _deck_input(SlideType.PROBLEM, SlideType.SOLUTION, SlideType.MARKET)
    )

    assert [item.value.slide_type for item in results] == [SlideType.PROBLEM, SlideType.SOLUTION, SlideType.MARKET]
    assert [item.source for item in results] == [Source.MODEL, Source.FALLBACK, Source.MODEL]
    assert results[0].value.title == "Pain"
    assert results[1].value == FALLBACK_SLIDES[SlideType.SOLUTION]
    assert all(call["max_tokens"] == 800 for call in client.completions.calls)


@pytest.mark.asyncio
async def test_generate_dispatches_by_kind() -> None:
    gateway = GenerationGateway(None)

    results = await gateway.generate(GenerationKind.PITCH_DECK_SLIDES, _deck_input(SlideType.TEAM))

    assert results[0].value.title == FALLBACK_SLIDES[SlideType.TEAM].title
