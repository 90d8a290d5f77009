"""Generation gateway: prompts, the chat-completion call and fallbacks."""

from __future__ import annotations

import json
from dataclasses import dataclass
from textwrap import dedent
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union

import structlog
from openai import APIError, AsyncOpenAI
from pydantic import BaseModel, ValidationError

from .config import DEFAULT_MODEL, Settings, get_settings
from .errors import GenerationFailed
from .schemas import (
    CamelModel,
    GenerationKind,
    LeanCanvasData,
    LeanCanvasInput,
    LeanCanvasSection,
    Persona,
    PersonaInput,
    PitchDeckInput,
    PitchDeckSlide,
    ProblemSolution,
    ProblemSolutionInput,
    SlideType,
    Source,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

TEMPERATURE = 0.7


@dataclass(frozen=True)
class Generated(Generic[T]):
    """A generated value tagged with where it came from."""

    value: T
    source: Source

    @property
    def is_fallback(self) -> bool:
        return self.source is Source.FALLBACK


@dataclass(frozen=True)
class PromptSpec:
    """Container describing how to call the LLM for one generation."""

    system_prompt: str
    user_prompt: str
    temperature: float = TEMPERATURE
    max_tokens: int = 1000


# ---------------------------------------------------------------------------
# Fallback content
# ---------------------------------------------------------------------------

FALLBACK_PROBLEM_SOLUTION = ProblemSolution(
    problem_statement=(
        "Small business owners struggle to efficiently manage their social media presence across multiple "
        "platforms, leading to inconsistent brand messaging and missed engagement opportunities."
    ),
    solution_statement=(
        "Our AI-powered social media management platform automates content creation, scheduling, and engagement "
        "tracking across all major social platforms, helping small businesses maintain a consistent and effective "
        "online presence without the time investment."
    ),
)

FALLBACK_PERSONA = Persona(
    name="Sarah the Small Business Owner",
    demographics=(
        "35-45 years old, owns a local retail or service business, manages 2-10 employees, "
        "tech-comfortable but time-constrained"
    ),
    pain_points=[
        "Limited time to manage social media consistently",
        "Difficulty creating engaging content regularly",
        "Struggling to track which posts perform best",
        "Managing multiple social media accounts manually",
    ],
    motivations=[
        "Grow customer base and increase sales",
        "Build strong brand recognition in local market",
        "Compete effectively with larger businesses",
        "Maximize return on marketing investment",
    ],
    behaviors=[
        "Uses smartphone for most business tasks",
        "Active on Facebook and Instagram personally",
        "Seeks time-saving business solutions",
        "Values tools that show clear ROI",
    ],
    description=(
        "Sarah is a dedicated small business owner who wears many hats in her company. She understands the "
        "importance of social media marketing but struggles to find the time to do it effectively while "
        "managing other aspects of her business."
    ),
)

FALLBACK_LEAN_CANVAS = LeanCanvasData(
    problem=(
        "Inconsistent social media presence, hours lost to manual posting, and no clear view of which content "
        "drives sales."
    ),
    solution="AI-assisted content creation, cross-platform scheduling, and engagement analytics in one place.",
    key_metrics="Monthly recurring revenue, customer acquisition cost, user engagement rate, churn rate",
    unique_value_proposition=(
        "AI-powered social media automation that saves 10+ hours per week while increasing engagement by 40%"
    ),
    unfair_advantage=(
        "Proprietary AI algorithm trained specifically on small business social media patterns and local market "
        "dynamics"
    ),
    channels="Direct sales, content marketing, social media advertising, partner referrals, local business networks",
    customer_segments="Owners of local retail and service businesses with 2-10 employees.",
    cost_structure=(
        "AI infrastructure costs, customer support, marketing and sales, platform development, content creation tools"
    ),
    revenue_streams="Monthly subscription fees ($49-199/month based on features), setup fees, premium content packages",
)

FALLBACK_SLIDES: Dict[SlideType, PitchDeckSlide] = {
    SlideType.PROBLEM: PitchDeckSlide(
        title="The Problem",
        content=(
            "Small business owners are overwhelmed trying to maintain effective social media presence:\n\n"
            "• 73% of small businesses struggle with consistent social media posting\n"
            "• Average business owner spends 15+ hours/week on social media tasks\n"
            "• 60% report difficulty measuring social media ROI\n"
            "• Inconsistent brand messaging hurts customer trust"
        ),
        slide_type=SlideType.PROBLEM,
    ),
    SlideType.SOLUTION: PitchDeckSlide(
        title="Our Solution",
        content=(
            "AI-powered social media management platform designed specifically for small businesses:\n\n"
            "• Automated content creation using business-specific AI\n"
            "• Smart scheduling across all major platforms\n"
            "• Real-time engagement tracking and analytics\n"
            "• Brand-consistent messaging with local market optimization"
        ),
        slide_type=SlideType.SOLUTION,
    ),
    SlideType.MARKET: PitchDeckSlide(
        title="Market Opportunity",
        content=(
            "Massive and growing market opportunity:\n\n"
            "• $15.6B social media management software market\n"
            "• 31.7M small businesses in the US alone\n"
            "• 91% of businesses use social media for marketing\n"
            "• Market growing at 23.6% CAGR through 2027"
        ),
        slide_type=SlideType.MARKET,
    ),
    SlideType.BUSINESS_MODEL: PitchDeckSlide(
        title="Business Model",
        content=(
            "Recurring revenue model with multiple tiers:\n\n"
            "• Starter Plan: $49/month (basic automation)\n"
            "• Professional: $99/month (advanced AI features)\n"
            "• Enterprise: $199/month (team collaboration)\n"
            "• Average customer LTV: $2,400\n"
            "• Target: 10,000 customers by year 2"
        ),
        slide_type=SlideType.BUSINESS_MODEL,
    ),
    SlideType.TEAM: PitchDeckSlide(
        title="Our Team",
        content=(
            "The people who will make this happen:\n\n"
            "• CEO: [Name], [relevant industry experience]\n"
            "• CTO: [Name], [technical background and past builds]\n"
            "• Head of Growth: [Name], [go-to-market track record]\n"
            "• Advisors: [Names and the expertise they bring]"
        ),
        slide_type=SlideType.TEAM,
    ),
    SlideType.FINANCIAL: PitchDeckSlide(
        title="Financial Projections",
        content=(
            "Three-year outlook:\n\n"
            "• Year 1: $250K ARR from 400 paying customers\n"
            "• Year 2: $1.2M ARR from 1,800 customers\n"
            "• Year 3: $4.5M ARR from 6,000 customers\n"
            "• Gross margin above 75% from year 2\n"
            "• Seeking $1.5M seed to fund 18 months of runway"
        ),
        slide_type=SlideType.FINANCIAL,
    ),
}

SECTION_QUESTIONS: Dict[LeanCanvasSection, str] = {
    LeanCanvasSection.PROBLEM: "What are the top 1-3 problems this business solves?",
    LeanCanvasSection.SOLUTION: "What are the top features that solve those problems?",
    LeanCanvasSection.KEY_METRICS: "What are the key metrics this business should track to measure success?",
    LeanCanvasSection.UNIQUE_VALUE_PROPOSITION: (
        "What is the unique value proposition that differentiates this solution?"
    ),
    LeanCanvasSection.UNFAIR_ADVANTAGE: (
        "What unfair advantage could this business have that competitors can't easily copy?"
    ),
    LeanCanvasSection.CHANNELS: "What are the best channels to reach the target customers?",
    LeanCanvasSection.CUSTOMER_SEGMENTS: "Who are the target customers and early adopters?",
    LeanCanvasSection.COST_STRUCTURE: "What are the main cost drivers for this business model?",
    LeanCanvasSection.REVENUE_STREAMS: "What are the potential revenue streams for this business?",
}

SLIDE_INSTRUCTIONS: Dict[SlideType, str] = {
    SlideType.PROBLEM: "Create content for a 'Problem' slide that clearly defines the problem your target customers face.",
    SlideType.SOLUTION: "Create content for a 'Solution' slide that presents your solution and key features.",
    SlideType.MARKET: "Create content for a 'Market Opportunity' slide showing market size and opportunity.",
    SlideType.BUSINESS_MODEL: "Create content for a 'Business Model' slide explaining how you make money.",
    SlideType.TEAM: (
        "Create content for a 'Team' slide template that founders can customize with their team information."
    ),
    SlideType.FINANCIAL: (
        "Create content for a 'Financial Projections' slide with realistic projections framework."
    ),
}


def fallback_for(kind: GenerationKind, key: Union[LeanCanvasSection, SlideType, None] = None) -> Any:
    """Return a fresh copy of the fixed fallback for *kind*."""

    if kind is GenerationKind.PROBLEM_SOLUTION:
        return FALLBACK_PROBLEM_SOLUTION.model_copy(deep=True)
    if kind is GenerationKind.PERSONA:
        return FALLBACK_PERSONA.model_copy(deep=True)
    if kind is GenerationKind.LEAN_CANVAS_SECTION:
        return FALLBACK_LEAN_CANVAS.get(LeanCanvasSection(key))
    if kind is GenerationKind.PITCH_DECK_SLIDES:
        return FALLBACK_SLIDES[SlideType(key)].model_copy(deep=True)
    raise ValueError(f"unknown generation kind {kind!r}")


# ---------------------------------------------------------------------------
# Client and parsing helpers
# ---------------------------------------------------------------------------


ClientCache = tuple[tuple[str, Optional[str], float], AsyncOpenAI]
_client_cache: ClientCache | None = None


def _get_client(settings: Settings) -> AsyncOpenAI | None:
    """Return a cached async client when an API key is configured."""

    global _client_cache
    api_key = settings.openai_api_key
    if not api_key:
        return None
    cache_key = (api_key, settings.llm_base_url, settings.llm_timeout)
    if _client_cache and _client_cache[0] == cache_key:
        return _client_cache[1]
    client = AsyncOpenAI(api_key=api_key, base_url=settings.llm_base_url, timeout=settings.llm_timeout)
    _client_cache = (cache_key, client)
    return client


def parse_structured_response(raw_text: str) -> Any:
    """Decode model output as JSON, tolerating a surrounding code fence.

    Raises ``json.JSONDecodeError`` when the text is not valid JSON.
    """

    text = raw_text.strip()
    if text.startswith("```"):
        lines = [line.rstrip() for line in text.splitlines()]
        if len(lines) >= 2:
            lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            text = "\n".join(lines).strip()
    return json.loads(text)


class _SlideBody(CamelModel):
    title: str
    content: str


def _persona_text(target_persona: str) -> str:
    if not target_persona:
        return "Not defined yet"
    persona = Persona.from_description(target_persona)
    if not persona.name:
        return persona.description
    return f"{persona.name}: {persona.description}".strip()


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------


def build_problem_solution_prompt(payload: ProblemSolutionInput) -> PromptSpec:
    user_prompt = dedent(
        f"""
        Based on the following information, generate a clear and compelling problem statement and solution statement for a business idea:

        Target Audience: {payload.target_audience}
        Problem Description: {payload.problem_description}
        Solution Idea: {payload.solution_idea}
        Unique Value: {payload.unique_value}

        Please provide:
        1. A concise problem statement (2-3 sentences) that clearly articulates the pain point
        2. A clear solution statement (2-3 sentences) that explains how the solution addresses the problem

        Format your response as JSON:
        {{
          "problemStatement": "...",
          "solutionStatement": "..."
        }}
        """
    )
    return PromptSpec(
        system_prompt=(
            "You are an expert business strategist helping founders clarify their business concepts. "
            "Provide clear, actionable insights."
        ),
        user_prompt=user_prompt,
        max_tokens=1000,
    )


def build_persona_prompt(payload: PersonaInput) -> PromptSpec:
    user_prompt = dedent(
        f"""
        Based on the following business concept, create a detailed customer persona:

        Problem Statement: {payload.problem_statement}
        Solution Statement: {payload.solution_statement}
        Industry: {payload.industry}
        Demographics: {payload.demographics}
        Behaviors: {payload.behaviors}
        Challenges: {payload.challenges}

        Please provide a comprehensive customer persona including:
        1. A name for the persona
        2. Detailed demographics
        3. 3-5 specific pain points (as an array)
        4. 3-5 motivations (as an array)
        5. 3-5 behaviors (as an array)
        6. A narrative description

        Format your response as JSON:
        {{
          "name": "...",
          "demographics": "...",
          "painPoints": ["..."],
          "motivations": ["..."],
          "behaviors": ["..."],
          "description": "..."
        }}
        """
    )
    return PromptSpec(
        system_prompt=(
            "You are an expert in customer research and persona development. "
            "Create realistic, actionable customer personas."
        ),
        user_prompt=user_prompt,
        max_tokens=1500,
    )


def build_lean_canvas_prompt(payload: LeanCanvasInput) -> PromptSpec:
    section = payload.section
    filled: List[str] = []
    if payload.current_data is not None:
        for other in LeanCanvasSection:
            value = payload.current_data.get(other)
            if other is not section and value.strip():
                filled.append(f"- {other.label}: {value.strip()}")
    canvas_block = "\n".join(filled) if filled else "- (empty)"

    user_prompt = (
        f"Based on this business concept, provide a suggestion for the {section.label} section of a Lean Canvas:\n\n"
        f"Problem Statement: {payload.problem_statement}\n"
        f"Solution Statement: {payload.solution_statement}\n"
        f"Target Persona: {_persona_text(payload.target_persona)}\n\n"
        f"Other canvas sections so far:\n{canvas_block}\n\n"
        f"Question: {SECTION_QUESTIONS[section]}\n\n"
        "Provide a concise, actionable response (2-3 sentences) that would fit in a Lean Canvas box."
    )
    return PromptSpec(
        system_prompt=(
            "You are a business model expert specializing in Lean Canvas methodology. "
            "Provide practical, actionable insights."
        ),
        user_prompt=user_prompt,
        max_tokens=1000,
    )


def build_slide_prompt(payload: PitchDeckInput, slide_type: SlideType) -> PromptSpec:
    canvas_line = ""
    if payload.lean_canvas is not None:
        canvas_line = f"Lean Canvas Data: {payload.lean_canvas.model_dump_json(by_alias=True)}\n"

    user_prompt = (
        f"Based on this business concept, {SLIDE_INSTRUCTIONS[slide_type]}\n\n"
        f"Problem Statement: {payload.problem_statement}\n"
        f"Solution Statement: {payload.solution_statement}\n"
        f"Target Persona: {_persona_text(payload.target_persona)}\n"
        f"{canvas_line}\n"
        "Create compelling slide content that would work in an investor pitch deck. Include:\n"
        "1. A compelling slide title\n"
        "2. Bullet points or structured content (aim for 4-6 key points)\n"
        "3. Make it investor-focused and compelling\n\n"
        "Format as JSON:\n"
        '{\n  "title": "...",\n  "content": "..."\n}'
    )
    return PromptSpec(
        system_prompt=(
            "You are an expert pitch deck consultant who has helped hundreds of startups raise funding. "
            "Create compelling, investor-ready content."
        ),
        user_prompt=user_prompt,
        max_tokens=800,
    )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class GenerationGateway:
    """Turn generation inputs into typed results, never raising on failure.

    Any failure of the completion call or of parsing its output is logged and
    replaced by the fixed fallback for that kind, tagged ``Source.FALLBACK``.
    """

    def __init__(self, client: Any | None = None, *, model: str = DEFAULT_MODEL) -> None:
        self._client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GenerationGateway":
        settings = settings or get_settings()
        return cls(_get_client(settings), model=settings.llm_model)

    async def _complete(self, spec: PromptSpec) -> str:
        if self._client is None:
            raise GenerationFailed("no inference API key configured")
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": spec.system_prompt.strip()},
                    {"role": "user", "content": spec.user_prompt.strip()},
                ],
                temperature=spec.temperature,
                max_tokens=spec.max_tokens,
            )
        except APIError as exc:
            raise GenerationFailed(f"inference request failed: {exc}") from exc

        message = response.choices[0].message.content if response.choices else None
        if not message or not message.strip():
            raise GenerationFailed("empty completion")
        return message

    async def _complete_json(self, spec: PromptSpec, model_cls: Type[M]) -> M:
        text = await self._complete(spec)
        try:
            data = parse_structured_response(text)
        except json.JSONDecodeError as exc:
            raise GenerationFailed(f"completion is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise GenerationFailed("completion JSON is not an object")
        try:
            return model_cls.model_validate(data)
        except ValidationError as exc:
            raise GenerationFailed(f"completion JSON has the wrong shape: {exc}") from exc

    @staticmethod
    def _fallback(kind: GenerationKind, exc: GenerationFailed, **context: Any) -> None:
        logger.warning("generation_fallback", kind=kind.value, reason=str(exc), **context)

    async def generate_problem_solution(self, payload: ProblemSolutionInput) -> Generated[ProblemSolution]:
        kind = GenerationKind.PROBLEM_SOLUTION
        try:
            result = await self._complete_json(build_problem_solution_prompt(payload), ProblemSolution)
            if not result.problem_statement.strip() or not result.solution_statement.strip():
                raise GenerationFailed("problem or solution statement missing")
        except GenerationFailed as exc:
            self._fallback(kind, exc)
            return Generated(fallback_for(kind), Source.FALLBACK)
        return Generated(result, Source.MODEL)

    async def generate_persona(self, payload: PersonaInput) -> Generated[Persona]:
        kind = GenerationKind.PERSONA
        try:
            result = await self._complete_json(build_persona_prompt(payload), Persona)
            if not result.name.strip():
                raise GenerationFailed("persona name missing")
        except GenerationFailed as exc:
            self._fallback(kind, exc)
            return Generated(fallback_for(kind), Source.FALLBACK)
        return Generated(result, Source.MODEL)

    async def generate_lean_canvas_section(self, payload: LeanCanvasInput) -> Generated[str]:
        kind = GenerationKind.LEAN_CANVAS_SECTION
        try:
            text = await self._complete(build_lean_canvas_prompt(payload))
        except GenerationFailed as exc:
            self._fallback(kind, exc, section=payload.section.value)
            return Generated(fallback_for(kind, payload.section), Source.FALLBACK)
        return Generated(text.strip(), Source.MODEL)

    async def generate_slide(self, payload: PitchDeckInput, slide_type: SlideType) -> Generated[PitchDeckSlide]:
        kind = GenerationKind.PITCH_DECK_SLIDES
        try:
            body = await self._complete_json(build_slide_prompt(payload, slide_type), _SlideBody)
        except GenerationFailed as exc:
            self._fallback(kind, exc, slide_type=slide_type.value)
            return Generated(fallback_for(kind, slide_type), Source.FALLBACK)
        slide = PitchDeckSlide(title=body.title, content=body.content, slide_type=slide_type)
        return Generated(slide, Source.MODEL)

    async def generate_pitch_deck_slides(self, payload: PitchDeckInput) -> List[Generated[PitchDeckSlide]]:
        """Generate one slide per selected type; each call falls back on its own."""

        slides: List[Generated[PitchDeckSlide]] = []
        for slide_type in payload.slide_types:
            slides.append(await self.generate_slide(payload, slide_type))
        return slides

    async def generate(self, kind: GenerationKind, payload: Any) -> Any:
        """Dispatch to the generator for *kind*."""

        if kind is GenerationKind.PROBLEM_SOLUTION:
            return await self.generate_problem_solution(payload)
        if kind is GenerationKind.PERSONA:
            return await self.generate_persona(payload)
        if kind is GenerationKind.LEAN_CANVAS_SECTION:
            return await self.generate_lean_canvas_section(payload)
        if kind is GenerationKind.PITCH_DECK_SLIDES:
            return await self.generate_pitch_deck_slides(payload)
        raise ValueError(f"unknown generation kind {kind!r}")
