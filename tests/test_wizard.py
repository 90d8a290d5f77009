from __future__ import annotations

import pytest

from conceptcraft.auth import USER_KEY, AuthSession
from conceptcraft.errors import NotAuthenticated, ValidationFailed
from conceptcraft.llm import GenerationGateway
from conceptcraft.schemas import ProblemSolutionInput, StepPhase, SubscriptionTier, View
from conceptcraft.steps import ProblemSolutionController
from conceptcraft.storage import ConceptStore, InMemoryStore
from conceptcraft.subscriptions import UsageTracker
from conceptcraft.wizard import STEP_REGISTRY, Wizard


@pytest.fixture
def wizard(kv: InMemoryStore) -> Wizard:
    auth = AuthSession(kv, latency=0)
    return Wizard(auth, ConceptStore(kv), GenerationGateway(None), usage=UsageTracker(kv))


def test_views_are_gated_without_a_user(wizard: Wizard) -> None:
    assert wizard.current_view is View.LANDING

    assert wizard.navigate(View.PERSONA) is View.LANDING
    with pytest.raises(NotAuthenticated):
        wizard.problem_solution()
    with pytest.raises(NotAuthenticated):
        wizard.dashboard()


@pytest.mark.asyncio
async def test_login_opens_dashboard_and_persists_user(wizard: Wizard, kv: InMemoryStore) -> None:
    user = await wizard.login("founder@example.com", "secret")

    assert user.subscription_tier is SubscriptionTier.FREE
    assert wizard.current_view is View.DASHBOARD
    assert kv.get(USER_KEY) is not None

    restored = AuthSession(kv, latency=0)
    restored.load()
    assert restored.user == user


@pytest.mark.asyncio
async def test_login_requires_credentials(wizard: Wizard) -> None:
    with pytest.raises(ValidationFailed):
        await wizard.signup("", "secret")

    assert wizard.current_view is View.LANDING


@pytest.mark.asyncio
async def test_navigation_creates_fresh_controllers(wizard: Wizard) -> None:
    await wizard.signup("founder@example.com", "secret")
    wizard.start_new_concept()

    assert wizard.navigate(View.PROBLEM_SOLUTION) is View.PROBLEM_SOLUTION
    first = wizard.problem_solution()
    assert isinstance(first, ProblemSolutionController)
    assert wizard.problem_solution() is first

    wizard.navigate(View.PROBLEM_SOLUTION)
    assert wizard.problem_solution() is not first


@pytest.mark.asyncio
async def test_logout_tears_down_concept_state(wizard: Wizard, kv: InMemoryStore) -> None:
    await wizard.login("founder@example.com", "secret")
    wizard.start_new_concept()
    wizard.navigate(View.LEAN_CANVAS)

    wizard.logout()

    assert wizard.current_view is View.LANDING
    assert wizard.concepts.current_concept is None
    assert kv.get(USER_KEY) is None


@pytest.mark.asyncio
async def test_login_reloads_stored_concept(wizard: Wizard, kv: InMemoryStore) -> None:
    await wizard.login("founder@example.com", "secret")
    concept = wizard.start_new_concept()
    wizard.logout()

    await wizard.login("founder@example.com", "secret")

    assert wizard.current_concept() == concept


@pytest.mark.asyncio
async def test_dashboard_reports_progress_and_usage(wizard: Wizard) -> None:
    await wizard.login("founder@example.com", "secret")
    empty = wizard.dashboard()
    assert empty.concept is None
    assert [step.title for step in empty.steps] == [info.title for info in STEP_REGISTRY]
    assert not any(step.completed for step in empty.steps)

    wizard.start_new_concept()
    wizard.navigate(View.PROBLEM_SOLUTION)
    controller = wizard.problem_solution()
    await controller.generate(
        ProblemSolutionInput(target_audience="Chefs", problem_description="Waste", solution_idea="Forecasts")
    )
    controller.save()

    dashboard = wizard.dashboard()
    assert controller.phase is StepPhase.COMPLETE
    assert dashboard.current_step == 1
    assert [step.completed for step in dashboard.steps] == [True, False, False, False]
    assert dashboard.usage.monthly_ai_usage == 1
    assert dashboard.usage.remaining_ai_generations == 9
    assert dashboard.usage.ai_generation_limit == 10
    assert not dashboard.usage.can_export_pdf


@pytest.mark.asyncio
async def test_new_concept_resets_step_controllers(wizard: Wizard) -> None:
    await wizard.login("founder@example.com", "secret")
    wizard.start_new_concept()
    wizard.concepts.update_concept(problem_statement="P", solution_statement="S")
    assert wizard.problem_solution().phase is StepPhase.COMPLETE

    wizard.start_new_concept()

    assert wizard.problem_solution().phase is StepPhase.INPUT
    assert wizard.concepts.current_step == 0


@pytest.mark.asyncio
async def test_usage_is_read_through_the_quota(kv: InMemoryStore) -> None:
    untracked = Wizard(AuthSession(kv, latency=0), ConceptStore(kv), GenerationGateway(None))
    await untracked.login("founder@example.com", "secret")

    assert untracked.quota is None
    assert not hasattr(untracked, "usage")
    usage = untracked.dashboard().usage
    assert (usage.monthly_ai_usage, usage.remaining_ai_generations) == (0, None)


@pytest.mark.asyncio
async def test_auth_session_exposes_only_the_user(kv: InMemoryStore) -> None:
    auth = AuthSession(kv, latency=0)
    seen = []
    auth.subscribe(seen.append)

    user = await auth.signup("founder@example.com", "secret")

    assert seen == [user]
    assert auth.is_authenticated
    assert not hasattr(auth, "is_loading")
