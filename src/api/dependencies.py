"""FastAPI dependencies shared by the routers."""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from src.api.services import TutorServices


def get_services(request: Request) -> TutorServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Learner identity from the X-User-Id header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id


Services = Annotated[TutorServices, Depends(get_services)]
UserId = Annotated[str, Depends(get_user_id)]
