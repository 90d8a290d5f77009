"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from fastapi import Request

from ..wizard import Wizard


def get_wizard(request: Request) -> Wizard:
    """Return the wizard created by the application factory."""

    return request.app.state.wizard
