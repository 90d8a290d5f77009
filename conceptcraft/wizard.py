"""Top-level navigation across the wizard views."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import structlog

from .auth import AuthSession
from .errors import NotAuthenticated
from .llm import GenerationGateway
from .schemas import (
    BusinessConcept,
    DashboardResponse,
    StepProgress,
    UsageSummary,
    User,
    View,
)
from .steps import (
    CONTROLLERS,
    LeanCanvasController,
    PersonaController,
    PitchDeckController,
    ProblemSolutionController,
    StepController,
)
from .storage import ConceptStore
from .subscriptions import UNLIMITED, GenerationQuota, UsageTracker, get_limits

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StepInfo:
    """Dashboard metadata for one wizard step."""

    id: int
    title: str
    description: str
    view: View
    completed: Callable[[BusinessConcept], bool]


STEP_REGISTRY: List[StepInfo] = [
    StepInfo(
        id=0,
        title="Problem/Solution Fit",
        description="Define your core business concept",
        view=View.PROBLEM_SOLUTION,
        completed=lambda concept: bool(concept.problem_statement and concept.solution_statement),
    ),
    StepInfo(
        id=1,
        title="Target Persona",
        description="Identify your ideal customer",
        view=View.PERSONA,
        completed=lambda concept: bool(concept.target_persona_description),
    ),
    StepInfo(
        id=2,
        title="Lean Canvas",
        description="Map your business model",
        view=View.LEAN_CANVAS,
        completed=lambda concept: concept.lean_canvas_data is not None,
    ),
    StepInfo(
        id=3,
        title="Pitch Deck",
        description="Create presentation slides",
        view=View.PITCH_DECK,
        completed=lambda concept: bool(concept.pitch_deck_slides_data),
    ),
]


class Wizard:
    """Hold the current view and hand out step controllers.

    Without a logged-in user every view resolves to ``landing``. Logging in
    (or signing up) switches to ``dashboard`` and reloads the concept store;
    logging out tears the concept state down. Navigation only happens when a
    caller asks for it.
    """

    def __init__(
        self,
        auth: AuthSession,
        concepts: ConceptStore,
        gateway: GenerationGateway,
        *,
        usage: Optional[UsageTracker] = None,
    ) -> None:
        self.auth = auth
        self.concepts = concepts
        self.gateway = gateway
        self.quota = GenerationQuota(usage, lambda: auth.user) if usage is not None else None
        self._requested_view = View.DASHBOARD if auth.is_authenticated else View.LANDING
        self._controllers: Dict[View, StepController] = {}
        auth.subscribe(self._on_session_change)

    @property
    def current_view(self) -> View:
        if not self.auth.is_authenticated:
            return View.LANDING
        return self._requested_view

    def _on_session_change(self, user: Optional[User]) -> None:
        self._controllers.clear()
        if user is None:
            self.concepts.reset()
            self._requested_view = View.LANDING
        else:
            self.concepts.load()
            self._requested_view = View.DASHBOARD

    def _require_user(self) -> User:
        user = self.auth.user
        if user is None:
            raise NotAuthenticated("Log in to continue.")
        return user

    def navigate(self, view: View) -> View:
        """Request *view*; entering a step view starts a fresh controller."""

        view = View(view)
        self._requested_view = view
        if view in CONTROLLERS and self.auth.is_authenticated:
            self._controllers[view] = self._build_controller(view)
        effective = self.current_view
        logger.info("view_changed", requested=view.value, effective=effective.value)
        return effective

    def _build_controller(self, view: View) -> StepController:
        return CONTROLLERS[view](self.concepts, self.gateway, quota=self.quota)

    def controller(self, view: View) -> StepController:
        self._require_user()
        if view not in CONTROLLERS:
            raise ValueError(f"{view.value} is not a step view")
        controller = self._controllers.get(view)
        if controller is None:
            controller = self._build_controller(view)
            self._controllers[view] = controller
        return controller

    def problem_solution(self) -> ProblemSolutionController:
        return self.controller(View.PROBLEM_SOLUTION)

    def persona(self) -> PersonaController:
        return self.controller(View.PERSONA)

    def lean_canvas(self) -> LeanCanvasController:
        return self.controller(View.LEAN_CANVAS)

    def pitch_deck(self) -> PitchDeckController:
        return self.controller(View.PITCH_DECK)

    # -- session -----------------------------------------------------------

    async def login(self, email: str, password: str) -> User:
        return await self.auth.login(email, password)

    async def signup(self, email: str, password: str) -> User:
        return await self.auth.signup(email, password)

    def logout(self) -> None:
        self.auth.logout()

    # -- concept -----------------------------------------------------------

    def start_new_concept(self) -> BusinessConcept:
        user = self._require_user()
        self._controllers.clear()
        return self.concepts.create_new_concept(user.user_id)

    def current_concept(self) -> Optional[BusinessConcept]:
        self._require_user()
        return self.concepts.current_concept

    def dashboard(self) -> DashboardResponse:
        user = self._require_user()
        concept = self.concepts.current_concept
        steps = [
            StepProgress(
                id=info.id,
                title=info.title,
                description=info.description,
                view=info.view,
                completed=concept is not None and info.completed(concept),
            )
            for info in STEP_REGISTRY
        ]
        if self.quota is not None:
            monthly_usage, remaining = self.quota.summary(user)
        else:
            monthly_usage, remaining = 0, None
        limits = get_limits(user.subscription_tier)
        return DashboardResponse(
            user=user,
            concept=concept,
            current_step=self.concepts.current_step,
            steps=steps,
            usage=UsageSummary(
                tier=user.subscription_tier,
                monthly_ai_usage=monthly_usage,
                ai_generation_limit=(
                    None if limits.max_ai_generations_per_month == UNLIMITED else limits.max_ai_generations_per_month
                ),
                remaining_ai_generations=remaining,
                can_export_pdf=limits.can_export_pdf,
            ),
        )
