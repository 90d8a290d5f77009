"""Pydantic models and enums for the ConceptCraft wizard."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model whose stored and wire encoding uses camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SlideType(str, Enum):
    """Enumerate the pitch deck slide kinds."""

    PROBLEM = "problem"
    SOLUTION = "solution"
    MARKET = "market"
    BUSINESS_MODEL = "business-model"
    TEAM = "team"
    FINANCIAL = "financial"

    @property
    def label(self) -> str:
        labels = {
            SlideType.PROBLEM: "Problem",
            SlideType.SOLUTION: "Solution",
            SlideType.MARKET: "Market Opportunity",
            SlideType.BUSINESS_MODEL: "Business Model",
            SlideType.TEAM: "Team",
            SlideType.FINANCIAL: "Financial Projections",
        }
        return labels[self]


DEFAULT_SLIDE_TYPES = [
    SlideType.PROBLEM,
    SlideType.SOLUTION,
    SlideType.MARKET,
    SlideType.BUSINESS_MODEL,
]


class LeanCanvasSection(str, Enum):
    """Enumerate the nine lean canvas boxes."""

    PROBLEM = "problem"
    SOLUTION = "solution"
    KEY_METRICS = "key_metrics"
    UNIQUE_VALUE_PROPOSITION = "unique_value_proposition"
    UNFAIR_ADVANTAGE = "unfair_advantage"
    CHANNELS = "channels"
    CUSTOMER_SEGMENTS = "customer_segments"
    COST_STRUCTURE = "cost_structure"
    REVENUE_STREAMS = "revenue_streams"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class GenerationKind(str, Enum):
    """Enumerate the AI-assisted content types."""

    PROBLEM_SOLUTION = "problem-solution"
    PERSONA = "persona"
    LEAN_CANVAS_SECTION = "lean-canvas-section"
    PITCH_DECK_SLIDES = "pitch-deck-slides"


class Source(str, Enum):
    """Where a generated value came from."""

    MODEL = "model"
    FALLBACK = "fallback"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"


class View(str, Enum):
    """Enumerate the screens the wizard can show."""

    LANDING = "landing"
    DASHBOARD = "dashboard"
    PROBLEM_SOLUTION = "problem-solution"
    PERSONA = "persona"
    LEAN_CANVAS = "lean-canvas"
    PITCH_DECK = "pitch-deck"
    PRICING = "pricing"


class StepPhase(str, Enum):
    """Enumerate the phases every step controller moves through."""

    INPUT = "input"
    REVIEW = "review"
    COMPLETE = "complete"


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


class Persona(CamelModel):
    """Customer persona produced by the persona step."""

    name: str = ""
    demographics: str = ""
    pain_points: List[str] = Field(default_factory=list)
    motivations: List[str] = Field(default_factory=list)
    behaviors: List[str] = Field(default_factory=list)
    description: str = ""

    def to_description(self) -> str:
        """Serialize to the JSON string stored in ``target_persona_description``."""

        return json.dumps(self.model_dump(mode="json", by_alias=True))

    @classmethod
    def from_description(cls, text: str) -> "Persona":
        """Read a persona stored either as serialized JSON or as free text."""

        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            return cls(description=text)
        known = set(cls.model_fields) | {field.alias for field in cls.model_fields.values() if field.alias}
        if not isinstance(raw, dict) or known.isdisjoint(raw):
            return cls(description=text)
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return cls(description=text)


class StoredPersona(Persona):
    """Persona entry kept in the store's persona list."""

    persona_id: str
    business_concept_id: str


class LeanCanvasData(CamelModel):
    """Nine independent lean canvas boxes."""

    problem: str = ""
    solution: str = ""
    key_metrics: str = ""
    unique_value_proposition: str = ""
    unfair_advantage: str = ""
    channels: str = ""
    customer_segments: str = ""
    cost_structure: str = ""
    revenue_streams: str = ""

    def get(self, section: LeanCanvasSection) -> str:
        return getattr(self, section.value)

    def with_section(self, section: LeanCanvasSection, text: str) -> "LeanCanvasData":
        return self.model_copy(update={section.value: text})


class PitchDeckSlide(CamelModel):
    title: str
    content: str
    slide_type: SlideType


class BusinessConcept(CamelModel):
    """The single business idea a user is actively developing."""

    concept_id: str
    user_id: str
    problem_statement: str = ""
    solution_statement: str = ""
    target_persona_description: str = ""
    lean_canvas_data: Optional[LeanCanvasData] = None
    pitch_deck_slides_data: List[PitchDeckSlide] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @property
    def persona(self) -> Optional[Persona]:
        """Return the committed persona, tolerating both stored encodings."""

        if not self.target_persona_description:
            return None
        return Persona.from_description(self.target_persona_description)


class User(CamelModel):
    user_id: str
    email: str
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    created_at: datetime


# ---------------------------------------------------------------------------
# Generation inputs and results
# ---------------------------------------------------------------------------


class ProblemSolutionInput(CamelModel):
    """Raw answers collected by the problem/solution step."""

    target_audience: str = ""
    problem_description: str = ""
    solution_idea: str = ""
    unique_value: str = ""


class ProblemSolution(CamelModel):
    problem_statement: str = ""
    solution_statement: str = ""


class PersonaForm(CamelModel):
    """Raw answers collected by the persona step."""

    industry: str = ""
    demographics: str = ""
    behaviors: str = ""
    challenges: str = ""


class PersonaInput(PersonaForm):
    problem_statement: str
    solution_statement: str


class LeanCanvasInput(CamelModel):
    problem_statement: str
    solution_statement: str
    target_persona: str = ""
    section: LeanCanvasSection
    current_data: Optional[LeanCanvasData] = None


class PitchDeckInput(CamelModel):
    problem_statement: str
    solution_statement: str
    target_persona: str = ""
    lean_canvas: Optional[LeanCanvasData] = None
    slide_types: List[SlideType]


# ---------------------------------------------------------------------------
# Step controller snapshots
# ---------------------------------------------------------------------------


class DraftSlide(PitchDeckSlide):
    """A pitch deck slide under review; ``source`` is None for hand-added slides."""

    source: Optional[Source] = None

    def to_slide(self) -> PitchDeckSlide:
        return PitchDeckSlide(title=self.title, content=self.content, slide_type=self.slide_type)


class ProblemSolutionState(CamelModel):
    phase: StepPhase
    form: ProblemSolutionInput
    draft: ProblemSolution
    source: Optional[Source] = None
    next_view: View = View.PERSONA


class PersonaState(CamelModel):
    phase: StepPhase
    form: PersonaForm
    draft: Persona
    source: Optional[Source] = None
    next_view: View = View.LEAN_CANVAS


class LeanCanvasState(CamelModel):
    phase: StepPhase
    draft: LeanCanvasData
    sources: Dict[LeanCanvasSection, Source] = Field(default_factory=dict)
    next_view: View = View.PITCH_DECK


class PitchDeckState(CamelModel):
    phase: StepPhase
    selected_slide_types: List[SlideType]
    slides: List[DraftSlide]
    next_view: View = View.DASHBOARD


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class Credentials(CamelModel):
    email: str = ""
    password: str = ""


class NavigateRequest(CamelModel):
    view: View


class ViewResponse(CamelModel):
    view: View
    authenticated: bool


class StepProgress(CamelModel):
    """One row of the dashboard progress tracker."""

    id: int
    title: str
    description: str
    view: View
    completed: bool


class UsageSummary(CamelModel):
    tier: SubscriptionTier
    monthly_ai_usage: int
    ai_generation_limit: Optional[int] = Field(
        default=None,
        description="None when the tier has unlimited generations.",
    )
    remaining_ai_generations: Optional[int] = None
    can_export_pdf: bool = False


class DashboardResponse(CamelModel):
    user: User
    concept: Optional[BusinessConcept] = None
    current_step: int
    steps: List[StepProgress]
    usage: UsageSummary


class ProblemSolutionDraftUpdate(CamelModel):
    problem_statement: Optional[str] = None
    solution_statement: Optional[str] = None


class PersonaDraftUpdate(CamelModel):
    name: Optional[str] = None
    demographics: Optional[str] = None
    pain_points: Optional[List[str]] = None
    motivations: Optional[List[str]] = None
    behaviors: Optional[List[str]] = None
    description: Optional[str] = None


class LeanCanvasDraftUpdate(CamelModel):
    problem: Optional[str] = None
    solution: Optional[str] = None
    key_metrics: Optional[str] = None
    unique_value_proposition: Optional[str] = None
    unfair_advantage: Optional[str] = None
    channels: Optional[str] = None
    customer_segments: Optional[str] = None
    cost_structure: Optional[str] = None
    revenue_streams: Optional[str] = None


class SlideSelection(CamelModel):
    slide_types: List[SlideType]


class SlideUpdate(CamelModel):
    title: Optional[str] = None
    content: Optional[str] = None
    slide_type: Optional[SlideType] = None


class SlideMove(CamelModel):
    to_index: int
