"""Step controllers: one finite-state machine per wizard step."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel

from .errors import GenerationInProgress, IllegalTransition, ValidationFailed
from .llm import GenerationGateway
from .schemas import (
    DEFAULT_SLIDE_TYPES,
    BusinessConcept,
    DraftSlide,
    LeanCanvasData,
    LeanCanvasInput,
    LeanCanvasSection,
    LeanCanvasState,
    Persona,
    PersonaForm,
    PersonaInput,
    PersonaState,
    PitchDeckInput,
    PitchDeckState,
    ProblemSolution,
    ProblemSolutionInput,
    ProblemSolutionState,
    SlideType,
    Source,
    StepPhase,
    View,
)
from .storage import ConceptStore
from .subscriptions import GenerationQuota

logger = structlog.get_logger(__name__)

INPUT = StepPhase.INPUT
REVIEW = StepPhase.REVIEW
COMPLETE = StepPhase.COMPLETE

TransitionTable = Dict[StepPhase, FrozenSet[StepPhase]]
M = TypeVar("M", bound=BaseModel)


def validate_transitions(name: str, table: TransitionTable, *, manual_draft: bool) -> None:
    """Reject malformed transition tables when a controller class is defined."""

    missing = [phase.value for phase in StepPhase if phase not in table]
    if missing:
        raise TypeError(f"{name}.TRANSITIONS is missing phases: {missing}")
    for source, targets in table.items():
        if not isinstance(source, StepPhase) or not all(isinstance(target, StepPhase) for target in targets):
            raise TypeError(f"{name}.TRANSITIONS must map StepPhase to StepPhase")
    if COMPLETE in table[INPUT] and not manual_draft:
        raise TypeError(f"{name} cannot commit straight from input without a generation step")


def _merge(model: M, updates: Dict[str, Any]) -> M:
    unknown = set(updates) - set(type(model).model_fields)
    if unknown:
        raise TypeError(f"unknown {type(model).__name__} fields: {sorted(unknown)}")
    return type(model).model_validate({**model.model_dump(), **updates})


class StepController:
    """Shared machinery for the four step controllers.

    Subclasses declare ``TRANSITIONS`` (validated at class creation), the step
    number written to the current-step pointer on commit, and how to detect
    already-committed data. A controller starts in ``complete`` when its
    fields are already committed, otherwise in ``input``.
    """

    step_name: ClassVar[str]
    step_number: ClassVar[int]
    view: ClassVar[View]
    next_view: ClassVar[View]
    manual_draft: ClassVar[bool] = False
    TRANSITIONS: ClassVar[TransitionTable]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "TRANSITIONS" in cls.__dict__:
            validate_transitions(cls.__name__, cls.TRANSITIONS, manual_draft=cls.manual_draft)

    def __init__(
        self,
        store: ConceptStore,
        gateway: GenerationGateway,
        *,
        quota: Optional[GenerationQuota] = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._quota = quota
        self._lock = asyncio.Lock()
        concept = store.current_concept
        if concept is not None and self._has_committed_data(concept):
            self._load_committed(concept)
            self.phase = COMPLETE
        else:
            self._prepare_input(concept)
            self.phase = INPUT

    # -- hooks -------------------------------------------------------------

    def _has_committed_data(self, concept: BusinessConcept) -> bool:
        raise NotImplementedError

    def _load_committed(self, concept: BusinessConcept) -> None:
        raise NotImplementedError

    def _prepare_input(self, concept: Optional[BusinessConcept]) -> None:
        pass

    # -- state machine -----------------------------------------------------

    @property
    def is_generating(self) -> bool:
        return self._lock.locked()

    def _ensure_idle(self) -> None:
        if self._lock.locked():
            raise GenerationInProgress(f"{self.step_name}: a generation is already running.")

    def _require_phase(self, action: str, *phases: StepPhase) -> None:
        if self.phase not in phases:
            raise IllegalTransition(self.step_name, self.phase.value, action)

    def _transition(self, target: StepPhase) -> None:
        if target not in self.TRANSITIONS[self.phase]:
            raise IllegalTransition(self.step_name, self.phase.value, target.value)
        logger.debug("step_transition", step=self.step_name, from_phase=self.phase.value, to_phase=target.value)
        self.phase = target

    def _move(self, target: StepPhase) -> None:
        self._ensure_idle()
        self._transition(target)

    @asynccontextmanager
    async def _generating(self, calls: int = 1) -> AsyncIterator[None]:
        """Hold the controller's lock for a generation of *calls* model calls.

        Overlapping calls are rejected, and so is a batch the quota cannot cover.
        """

        self._ensure_idle()
        if self._quota is not None:
            self._quota.check(calls)
        async with self._lock:
            yield

    def _record_usage(self, calls: int) -> None:
        if self._quota is not None:
            self._quota.record(calls)

    def _require_upstream(self) -> BusinessConcept:
        concept = self._store.current_concept
        if concept is None or not concept.problem_statement or not concept.solution_statement:
            raise ValidationFailed("Please complete the Problem/Solution step first.")
        return concept

    def _commit(self, **updates: Any) -> BusinessConcept:
        self._ensure_idle()
        if COMPLETE not in self.TRANSITIONS[self.phase]:
            raise IllegalTransition(self.step_name, self.phase.value, COMPLETE.value)
        concept = self._store.update_concept(**updates)
        self._store.set_current_step(self.step_number)
        self._transition(COMPLETE)
        return concept

    def snapshot(self) -> BaseModel:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Problem / solution
# ---------------------------------------------------------------------------


class ProblemSolutionController(StepController):
    step_name = "problem-solution"
    step_number = 1
    view = View.PROBLEM_SOLUTION
    next_view = View.PERSONA
    TRANSITIONS = {
        INPUT: frozenset({REVIEW}),
        REVIEW: frozenset({REVIEW, INPUT, COMPLETE}),
        COMPLETE: frozenset({REVIEW}),
    }

    def __init__(self, store: ConceptStore, gateway: GenerationGateway, **kwargs: Any) -> None:
        self.form = ProblemSolutionInput()
        self.draft = ProblemSolution()
        self.source: Optional[Source] = None
        super().__init__(store, gateway, **kwargs)

    def _has_committed_data(self, concept: BusinessConcept) -> bool:
        return bool(concept.problem_statement and concept.solution_statement)

    def _load_committed(self, concept: BusinessConcept) -> None:
        self.draft = ProblemSolution(
            problem_statement=concept.problem_statement,
            solution_statement=concept.solution_statement,
        )

    def _validate_form(self) -> None:
        form = self.form
        if not (form.target_audience.strip() and form.problem_description.strip() and form.solution_idea.strip()):
            raise ValidationFailed("Please fill in all required fields before generating.")

    async def _run_generation(self) -> None:
        self._validate_form()
        async with self._generating():
            result = await self._gateway.generate_problem_solution(self.form)
            self.draft = result.value
            self.source = result.source
            self._transition(REVIEW)
        self._record_usage(1)

    async def generate(self, form: Optional[ProblemSolutionInput] = None) -> ProblemSolutionState:
        self._require_phase("generate", INPUT)
        self._ensure_idle()
        if form is not None:
            self.form = form
        await self._run_generation()
        return self.snapshot()

    async def regenerate(self) -> ProblemSolutionState:
        self._require_phase("regenerate", REVIEW)
        await self._run_generation()
        return self.snapshot()

    def edit_draft(self, **fields: Any) -> ProblemSolutionState:
        self._ensure_idle()
        self._require_phase("edit draft", REVIEW)
        self.draft = _merge(self.draft, fields)
        return self.snapshot()

    def back(self) -> ProblemSolutionState:
        self._move(INPUT)
        return self.snapshot()

    def edit(self) -> ProblemSolutionState:
        self._move(REVIEW)
        return self.snapshot()

    def save(self) -> ProblemSolutionState:
        self._commit(
            problem_statement=self.draft.problem_statement,
            solution_statement=self.draft.solution_statement,
        )
        return self.snapshot()

    def snapshot(self) -> ProblemSolutionState:
        return ProblemSolutionState(
            phase=self.phase,
            form=self.form,
            draft=self.draft,
            source=self.source,
            next_view=self.next_view,
        )


# ---------------------------------------------------------------------------
# Persona
# ---------------------------------------------------------------------------


class PersonaController(StepController):
    step_name = "persona"
    step_number = 2
    view = View.PERSONA
    next_view = View.LEAN_CANVAS
    TRANSITIONS = {
        INPUT: frozenset({REVIEW}),
        REVIEW: frozenset({REVIEW, INPUT, COMPLETE}),
        COMPLETE: frozenset({REVIEW}),
    }

    def __init__(self, store: ConceptStore, gateway: GenerationGateway, **kwargs: Any) -> None:
        self.form = PersonaForm()
        self.draft = Persona()
        self.source: Optional[Source] = None
        super().__init__(store, gateway, **kwargs)

    def _has_committed_data(self, concept: BusinessConcept) -> bool:
        return bool(concept.target_persona_description)

    def _load_committed(self, concept: BusinessConcept) -> None:
        self.draft = concept.persona or Persona()

    async def _run_generation(self) -> None:
        concept = self._require_upstream()
        payload = PersonaInput(
            **self.form.model_dump(),
            problem_statement=concept.problem_statement,
            solution_statement=concept.solution_statement,
        )
        async with self._generating():
            result = await self._gateway.generate_persona(payload)
            self.draft = result.value
            self.source = result.source
            self._transition(REVIEW)
        self._record_usage(1)

    async def generate(self, form: Optional[PersonaForm] = None) -> PersonaState:
        self._require_phase("generate", INPUT)
        self._ensure_idle()
        if form is not None:
            self.form = form
        await self._run_generation()
        return self.snapshot()

    async def regenerate(self) -> PersonaState:
        self._require_phase("regenerate", REVIEW)
        await self._run_generation()
        return self.snapshot()

    def edit_draft(self, **fields: Any) -> PersonaState:
        self._ensure_idle()
        self._require_phase("edit draft", REVIEW)
        self.draft = _merge(self.draft, fields)
        return self.snapshot()

    def back(self) -> PersonaState:
        self._move(INPUT)
        return self.snapshot()

    def edit(self) -> PersonaState:
        self._move(REVIEW)
        return self.snapshot()

    def save(self) -> PersonaState:
        self._commit(target_persona_description=self.draft.to_description())
        self._store.upsert_persona(self.draft)
        return self.snapshot()

    def snapshot(self) -> PersonaState:
        return PersonaState(
            phase=self.phase,
            form=self.form,
            draft=self.draft,
            source=self.source,
            next_view=self.next_view,
        )


# ---------------------------------------------------------------------------
# Lean canvas
# ---------------------------------------------------------------------------


class LeanCanvasController(StepController):
    """Build the canvas box by box; ``input`` is the editable build phase."""

    step_name = "lean-canvas"
    step_number = 3
    view = View.LEAN_CANVAS
    next_view = View.PITCH_DECK
    manual_draft = True
    TRANSITIONS = {
        INPUT: frozenset({INPUT, COMPLETE}),
        REVIEW: frozenset(),
        COMPLETE: frozenset({INPUT}),
    }

    def __init__(self, store: ConceptStore, gateway: GenerationGateway, **kwargs: Any) -> None:
        self.draft = LeanCanvasData()
        self.sources: Dict[LeanCanvasSection, Source] = {}
        super().__init__(store, gateway, **kwargs)

    def _has_committed_data(self, concept: BusinessConcept) -> bool:
        return concept.lean_canvas_data is not None

    def _load_committed(self, concept: BusinessConcept) -> None:
        self.draft = concept.lean_canvas_data.model_copy(deep=True)

    def _prepare_input(self, concept: Optional[BusinessConcept]) -> None:
        if concept is not None and concept.problem_statement and concept.solution_statement:
            self.draft = self.draft.model_copy(
                update={"problem": concept.problem_statement, "solution": concept.solution_statement}
            )

    async def generate_section(self, section: LeanCanvasSection) -> LeanCanvasState:
        self._require_phase("generate section", INPUT)
        concept = self._require_upstream()
        payload = LeanCanvasInput(
            problem_statement=concept.problem_statement,
            solution_statement=concept.solution_statement,
            target_persona=concept.target_persona_description,
            section=section,
            current_data=self.draft,
        )
        async with self._generating():
            result = await self._gateway.generate_lean_canvas_section(payload)
            self.draft = self.draft.with_section(section, result.value)
            self.sources[section] = result.source
            self._transition(INPUT)
        self._record_usage(1)
        return self.snapshot()

    def edit_draft(self, **fields: Any) -> LeanCanvasState:
        self._ensure_idle()
        self._require_phase("edit draft", INPUT)
        self.draft = _merge(self.draft, fields)
        for name in fields:
            self.sources.pop(LeanCanvasSection(name), None)
        return self.snapshot()

    def edit(self) -> LeanCanvasState:
        self._move(INPUT)
        return self.snapshot()

    def save(self) -> LeanCanvasState:
        self._commit(lean_canvas_data=self.draft.model_copy(deep=True))
        return self.snapshot()

    def snapshot(self) -> LeanCanvasState:
        return LeanCanvasState(
            phase=self.phase,
            draft=self.draft,
            sources=dict(self.sources),
            next_view=self.next_view,
        )


# ---------------------------------------------------------------------------
# Pitch deck
# ---------------------------------------------------------------------------


class PitchDeckController(StepController):
    """Select slide types, generate them, then edit and reorder the deck."""

    step_name = "pitch-deck"
    step_number = 4
    view = View.PITCH_DECK
    next_view = View.DASHBOARD
    TRANSITIONS = {
        INPUT: frozenset({REVIEW}),
        REVIEW: frozenset({REVIEW, INPUT, COMPLETE}),
        COMPLETE: frozenset({INPUT}),
    }

    def __init__(self, store: ConceptStore, gateway: GenerationGateway, **kwargs: Any) -> None:
        self.selected_slide_types: List[SlideType] = list(DEFAULT_SLIDE_TYPES)
        self.slides: List[DraftSlide] = []
        super().__init__(store, gateway, **kwargs)

    def _has_committed_data(self, concept: BusinessConcept) -> bool:
        return bool(concept.pitch_deck_slides_data)

    def _load_committed(self, concept: BusinessConcept) -> None:
        self.slides = [DraftSlide(**slide.model_dump()) for slide in concept.pitch_deck_slides_data]

    def select(self, slide_types: Iterable[SlideType]) -> PitchDeckState:
        self._ensure_idle()
        self._require_phase("select slides", INPUT)
        selected: List[SlideType] = []
        for slide_type in slide_types:
            if slide_type not in selected:
                selected.append(SlideType(slide_type))
        self.selected_slide_types = selected
        return self.snapshot()

    def toggle(self, slide_type: SlideType) -> PitchDeckState:
        if slide_type in self.selected_slide_types:
            remaining = [item for item in self.selected_slide_types if item is not slide_type]
            return self.select(remaining)
        return self.select([*self.selected_slide_types, slide_type])

    async def _run_generation(self) -> None:
        concept = self._require_upstream()
        if not self.selected_slide_types:
            raise ValidationFailed("Please select at least one slide type.")
        payload = PitchDeckInput(
            problem_statement=concept.problem_statement,
            solution_statement=concept.solution_statement,
            target_persona=concept.target_persona_description,
            lean_canvas=concept.lean_canvas_data,
            slide_types=self.selected_slide_types,
        )
        async with self._generating(len(payload.slide_types)):
            results = await self._gateway.generate_pitch_deck_slides(payload)
            self.slides = [DraftSlide(**item.value.model_dump(), source=item.source) for item in results]
            self._transition(REVIEW)
        self._record_usage(len(payload.slide_types))

    async def generate(self) -> PitchDeckState:
        self._require_phase("generate", INPUT)
        await self._run_generation()
        return self.snapshot()

    async def regenerate(self) -> PitchDeckState:
        self._require_phase("regenerate", REVIEW)
        await self._run_generation()
        return self.snapshot()

    def _slide_edit_guard(self, action: str) -> None:
        self._ensure_idle()
        self._require_phase(action, REVIEW)

    def edit_slide(self, index: int, **fields: Any) -> PitchDeckState:
        self._slide_edit_guard("edit slide")
        slide = self.slides[index]
        self.slides[index] = _merge(slide, fields)
        return self.snapshot()

    def add_slide(self) -> PitchDeckState:
        self._slide_edit_guard("add slide")
        self.slides.append(
            DraftSlide(title="New Slide", content="Add your content here...", slide_type=SlideType.PROBLEM)
        )
        return self.snapshot()

    def remove_slide(self, index: int) -> PitchDeckState:
        self._slide_edit_guard("remove slide")
        del self.slides[index]
        return self.snapshot()

    def move_slide(self, index: int, to_index: int) -> PitchDeckState:
        self._slide_edit_guard("move slide")
        if not 0 <= to_index < len(self.slides):
            raise IndexError(f"slide position {to_index} out of range")
        slide = self.slides.pop(index)
        self.slides.insert(to_index, slide)
        return self.snapshot()

    def back(self) -> PitchDeckState:
        self._move(INPUT)
        return self.snapshot()

    def edit(self) -> PitchDeckState:
        self._move(INPUT)
        return self.snapshot()

    def save(self) -> PitchDeckState:
        if not self.slides:
            raise ValidationFailed("Add at least one slide before saving.")
        self._commit(pitch_deck_slides_data=[slide.to_slide() for slide in self.slides])
        return self.snapshot()

    def snapshot(self) -> PitchDeckState:
        return PitchDeckState(
            phase=self.phase,
            selected_slide_types=list(self.selected_slide_types),
            slides=[slide.model_copy() for slide in self.slides],
            next_view=self.next_view,
        )


CONTROLLERS: Dict[View, Type[StepController]] = {
    controller.view: controller
    for controller in (
        ProblemSolutionController,
        PersonaController,
        LeanCanvasController,
        PitchDeckController,
    )
}
