"""Session, navigation, dashboard and export endpoints."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse, Response

from ..export import concept_to_markdown, export_filename, format_concept_for_export
from ..schemas import (
    BusinessConcept,
    Credentials,
    DashboardResponse,
    NavigateRequest,
    User,
    ViewResponse,
)
from ..wizard import Wizard
from .deps import get_wizard


auth_router = APIRouter(prefix="/auth", tags=["auth"])
router = APIRouter(prefix="/wizard", tags=["wizard"])


def _view_response(wizard: Wizard) -> ViewResponse:
    return ViewResponse(view=wizard.current_view, authenticated=wizard.auth.is_authenticated)


@auth_router.post("/signup", response_model=User)
async def signup(credentials: Credentials, wizard: Wizard = Depends(get_wizard)) -> User:
    return await wizard.signup(credentials.email, credentials.password)


@auth_router.post("/login", response_model=User)
async def login(credentials: Credentials, wizard: Wizard = Depends(get_wizard)) -> User:
    return await wizard.login(credentials.email, credentials.password)


@auth_router.post("/logout", response_model=ViewResponse)
async def logout(wizard: Wizard = Depends(get_wizard)) -> ViewResponse:
    wizard.logout()
    return _view_response(wizard)


@auth_router.get("/me", response_model=User)
async def current_user(wizard: Wizard = Depends(get_wizard)) -> User:
    if wizard.auth.user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not logged in.")
    return wizard.auth.user


@router.get("/health")
async def healthcheck() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}


@router.get("/view", response_model=ViewResponse)
async def current_view(wizard: Wizard = Depends(get_wizard)) -> ViewResponse:
    return _view_response(wizard)


@router.post("/navigate", response_model=ViewResponse)
async def navigate(payload: NavigateRequest, wizard: Wizard = Depends(get_wizard)) -> ViewResponse:
    wizard.navigate(payload.view)
    return _view_response(wizard)


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(wizard: Wizard = Depends(get_wizard)) -> DashboardResponse:
    return wizard.dashboard()


@router.post("/concepts", response_model=BusinessConcept, status_code=status.HTTP_201_CREATED)
async def start_new_concept(wizard: Wizard = Depends(get_wizard)) -> BusinessConcept:
    return wizard.start_new_concept()


def _require_concept(wizard: Wizard) -> BusinessConcept:
    concept = wizard.current_concept()
    if concept is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active business concept.")
    return concept


@router.get("/concept", response_model=BusinessConcept)
async def fetch_concept(wizard: Wizard = Depends(get_wizard)) -> BusinessConcept:
    return _require_concept(wizard)


@router.get("/export/markdown", response_class=PlainTextResponse)
async def export_markdown(wizard: Wizard = Depends(get_wizard)) -> PlainTextResponse:
    concept = _require_concept(wizard)
    filename = export_filename("business-concept", "md")
    return PlainTextResponse(
        concept_to_markdown(concept),
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export/json")
async def export_json(wizard: Wizard = Depends(get_wizard)) -> Response:
    concept = _require_concept(wizard)
    filename = export_filename("business-concept", "json")
    return Response(
        json.dumps(format_concept_for_export(concept), indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
