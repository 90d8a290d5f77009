"""Endpoints driving the four step controllers."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse

from ..export import export_filename, pitch_deck_to_markdown
from ..schemas import (
    LeanCanvasDraftUpdate,
    LeanCanvasSection,
    LeanCanvasState,
    PersonaDraftUpdate,
    PersonaForm,
    PersonaState,
    PitchDeckState,
    ProblemSolutionDraftUpdate,
    ProblemSolutionInput,
    ProblemSolutionState,
    SlideMove,
    SlideSelection,
    SlideUpdate,
)
from ..steps import PitchDeckController
from ..wizard import Wizard
from .deps import get_wizard


router = APIRouter(prefix="/steps", tags=["steps"])


# ---------------------------------------------------------------------------
# Problem / solution
# ---------------------------------------------------------------------------


@router.get("/problem-solution", response_model=ProblemSolutionState)
async def problem_solution_state(wizard: Wizard = Depends(get_wizard)) -> ProblemSolutionState:
    return wizard.problem_solution().snapshot()


@router.post("/problem-solution/generate", response_model=ProblemSolutionState)
async def generate_problem_solution(
    form: ProblemSolutionInput,
    wizard: Wizard = Depends(get_wizard),
) -> ProblemSolutionState:
    return await wizard.problem_solution().generate(form)


@router.post("/problem-solution/regenerate", response_model=ProblemSolutionState)
async def regenerate_problem_solution(wizard: Wizard = Depends(get_wizard)) -> ProblemSolutionState:
    return await wizard.problem_solution().regenerate()


@router.put("/problem-solution/draft", response_model=ProblemSolutionState)
async def edit_problem_solution(
    update: ProblemSolutionDraftUpdate,
    wizard: Wizard = Depends(get_wizard),
) -> ProblemSolutionState:
    return wizard.problem_solution().edit_draft(**update.model_dump(exclude_none=True))


@router.post("/problem-solution/save", response_model=ProblemSolutionState)
async def save_problem_solution(wizard: Wizard = Depends(get_wizard)) -> ProblemSolutionState:
    return wizard.problem_solution().save()


@router.post("/problem-solution/back", response_model=ProblemSolutionState)
async def back_problem_solution(wizard: Wizard = Depends(get_wizard)) -> ProblemSolutionState:
    return wizard.problem_solution().back()


@router.post("/problem-solution/edit", response_model=ProblemSolutionState)
async def reopen_problem_solution(wizard: Wizard = Depends(get_wizard)) -> ProblemSolutionState:
    return wizard.problem_solution().edit()


# ---------------------------------------------------------------------------
# Persona
# ---------------------------------------------------------------------------


@router.get("/persona", response_model=PersonaState)
async def persona_state(wizard: Wizard = Depends(get_wizard)) -> PersonaState:
    return wizard.persona().snapshot()


@router.post("/persona/generate", response_model=PersonaState)
async def generate_persona(form: PersonaForm, wizard: Wizard = Depends(get_wizard)) -> PersonaState:
    return await wizard.persona().generate(form)


@router.post("/persona/regenerate", response_model=PersonaState)
async def regenerate_persona(wizard: Wizard = Depends(get_wizard)) -> PersonaState:
    return await wizard.persona().regenerate()


@router.put("/persona/draft", response_model=PersonaState)
async def edit_persona(update: PersonaDraftUpdate, wizard: Wizard = Depends(get_wizard)) -> PersonaState:
    return wizard.persona().edit_draft(**update.model_dump(exclude_none=True))


@router.post("/persona/save", response_model=PersonaState)
async def save_persona(wizard: Wizard = Depends(get_wizard)) -> PersonaState:
    return wizard.persona().save()


@router.post("/persona/back", response_model=PersonaState)
async def back_persona(wizard: Wizard = Depends(get_wizard)) -> PersonaState:
    return wizard.persona().back()


@router.post("/persona/edit", response_model=PersonaState)
async def reopen_persona(wizard: Wizard = Depends(get_wizard)) -> PersonaState:
    return wizard.persona().edit()


# ---------------------------------------------------------------------------
# Lean canvas
# ---------------------------------------------------------------------------


@router.get("/lean-canvas", response_model=LeanCanvasState)
async def lean_canvas_state(wizard: Wizard = Depends(get_wizard)) -> LeanCanvasState:
    return wizard.lean_canvas().snapshot()


@router.post("/lean-canvas/sections/{section}/generate", response_model=LeanCanvasState)
async def generate_lean_canvas_section(
    section: LeanCanvasSection,
    wizard: Wizard = Depends(get_wizard),
) -> LeanCanvasState:
    return await wizard.lean_canvas().generate_section(section)


@router.put("/lean-canvas/draft", response_model=LeanCanvasState)
async def edit_lean_canvas(update: LeanCanvasDraftUpdate, wizard: Wizard = Depends(get_wizard)) -> LeanCanvasState:
    return wizard.lean_canvas().edit_draft(**update.model_dump(exclude_none=True))


@router.post("/lean-canvas/save", response_model=LeanCanvasState)
async def save_lean_canvas(wizard: Wizard = Depends(get_wizard)) -> LeanCanvasState:
    return wizard.lean_canvas().save()


@router.post("/lean-canvas/edit", response_model=LeanCanvasState)
async def reopen_lean_canvas(wizard: Wizard = Depends(get_wizard)) -> LeanCanvasState:
    return wizard.lean_canvas().edit()


# ---------------------------------------------------------------------------
# Pitch deck
# ---------------------------------------------------------------------------


def _slide_index(controller: PitchDeckController, index: int) -> int:
    if not 0 <= index < len(controller.slides):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No slide at position {index}.")
    return index


@router.get("/pitch-deck", response_model=PitchDeckState)
async def pitch_deck_state(wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    return wizard.pitch_deck().snapshot()


@router.put("/pitch-deck/selection", response_model=PitchDeckState)
async def select_slide_types(selection: SlideSelection, wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    return wizard.pitch_deck().select(selection.slide_types)


@router.post("/pitch-deck/generate", response_model=PitchDeckState)
async def generate_pitch_deck(wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    return await wizard.pitch_deck().generate()


@router.post("/pitch-deck/regenerate", response_model=PitchDeckState)
async def regenerate_pitch_deck(wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    return await wizard.pitch_deck().regenerate()


@router.post("/pitch-deck/slides", response_model=PitchDeckState, status_code=status.HTTP_201_CREATED)
async def add_slide(wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    return wizard.pitch_deck().add_slide()


@router.put("/pitch-deck/slides/{index}", response_model=PitchDeckState)
async def edit_slide(index: int, update: SlideUpdate, wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    controller = wizard.pitch_deck()
    return controller.edit_slide(_slide_index(controller, index), **update.model_dump(exclude_none=True))


@router.delete("/pitch-deck/slides/{index}", response_model=PitchDeckState)
async def remove_slide(index: int, wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    controller = wizard.pitch_deck()
    return controller.remove_slide(_slide_index(controller, index))


@router.post("/pitch-deck/slides/{index}/move", response_model=PitchDeckState)
async def move_slide(index: int, move: SlideMove, wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    controller = wizard.pitch_deck()
    return controller.move_slide(_slide_index(controller, index), _slide_index(controller, move.to_index))


@router.post("/pitch-deck/save", response_model=PitchDeckState)
async def save_pitch_deck(wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    return wizard.pitch_deck().save()


@router.post("/pitch-deck/back", response_model=PitchDeckState)
async def back_pitch_deck(wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    return wizard.pitch_deck().back()


@router.post("/pitch-deck/edit", response_model=PitchDeckState)
async def reopen_pitch_deck(wizard: Wizard = Depends(get_wizard)) -> PitchDeckState:
    return wizard.pitch_deck().edit()


@router.get("/pitch-deck/export", response_class=PlainTextResponse)
async def export_pitch_deck(wizard: Wizard = Depends(get_wizard)) -> PlainTextResponse:
    controller = wizard.pitch_deck()
    return PlainTextResponse(
        pitch_deck_to_markdown(slide.to_slide() for slide in controller.slides),
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{export_filename("pitch-deck", "md", include_timestamp=False)}"'},
    )
