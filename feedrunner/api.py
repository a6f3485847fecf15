"""Local control API for the runner.

Every ``/runner/*`` route requires the shared secret in ``x-runner-token``.
Lifecycle rejections are answered with 400 and the controller's envelope.
Routes are plain ``def`` so the blocking lifecycle calls run in the
threadpool, not on the event loop.
"""

from __future__ import annotations

import json
import secrets
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from feedrunner import __version__
from feedrunner.config import Settings
from feedrunner.logger import get_logger, read_todays_log
from feedrunner.session import SessionController

logger = get_logger(__name__)

TOKEN_HEADER = "x-runner-token"
ALLOWED_ORIGINS = ["http://localhost", "http://127.0.0.1", "https://www.linkedin.com"]

RangeValue = Union[List[int], Dict[str, Optional[int]]]


class TimingPayload(BaseModel):
    model_config = {"extra": "allow"}

    tabDelay: Optional[RangeValue] = None
    editorDelay: Optional[RangeValue] = None
    coolDown: Optional[RangeValue] = None


class StartAutomationRequest(BaseModel):
    timing: Optional[TimingPayload] = None
    decisionEndpoint: Optional[str] = None
    generationEndpoint: Optional[str] = None
    generationToken: Optional[str] = None
    optimizeMode: bool = False
    maxActions: Optional[int] = Field(default=None, ge=1)


class TokenAuth:
    """Shared-secret check for the ``x-runner-token`` header."""

    def __init__(self, token: Optional[str]):
        self.token = token
        if not token:
            logger.warning("RUNNER_TOKEN not set - /runner endpoints will refuse every request")

    def verify(self, x_runner_token: Optional[str] = Header(None)) -> bool:
        if not self.token:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Server misconfigured: RUNNER_TOKEN not set",
            )
        if not x_runner_token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Missing {TOKEN_HEADER} header",
            )
        if not secrets.compare_digest(x_runner_token, self.token):
            logger.warning("Rejected request with invalid runner token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid runner token",
            )
        return True


def _envelope(result: Dict[str, Any]) -> JSONResponse:
    code = status.HTTP_200_OK if result.get("success", True) else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content=result)


def create_app(
    controller: Optional[SessionController] = None,
    settings: Optional[Settings] = None,
    settings_path: Optional[Path] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    controller = controller or SessionController(settings)
    settings_file = settings_path or Path("settings.json")
    auth = TokenAuth(settings.runner_token)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        if controller.session is not None and controller.session.is_live:
            logger.info("Shutting down server, stopping active session...")
            controller.stop()

    app = FastAPI(title="Feed Runner", version=__version__, lifespan=lifespan)
    app.state.controller = controller
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", TOKEN_HEADER],
    )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "message": str(exc)},
        )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}

    @app.post("/runner/start", dependencies=[Depends(auth.verify)])
    def start_runner() -> JSONResponse:
        logger.info("API: start runner requested")
        return _envelope(controller.start())

    @app.post("/runner/stop", dependencies=[Depends(auth.verify)])
    def stop_runner() -> JSONResponse:
        logger.info("API: stop runner requested")
        return _envelope(controller.stop())

    @app.post("/runner/pause", dependencies=[Depends(auth.verify)])
    def pause_runner() -> JSONResponse:
        logger.info("API: pause requested")
        return _envelope(controller.pause())

    @app.post("/runner/resume", dependencies=[Depends(auth.verify)])
    def resume_runner() -> JSONResponse:
        logger.info("API: resume requested")
        return _envelope(controller.resume())

    @app.get("/runner/status", dependencies=[Depends(auth.verify)])
    def runner_status() -> Dict[str, Any]:
        return controller.get_status()

    @app.post("/runner/start-automation", dependencies=[Depends(auth.verify)])
    def start_automation(request: Optional[StartAutomationRequest] = None) -> JSONResponse:
        payload = request.model_dump(exclude_none=True) if request is not None else {}
        logger.info("API: start automation requested (%s)", sorted(payload.keys()))
        return _envelope(controller.start_automation(payload))

    @app.get("/logs", dependencies=[Depends(auth.verify)])
    def logs() -> PlainTextResponse:
        return PlainTextResponse(read_todays_log())

    @app.get("/settings", dependencies=[Depends(auth.verify)])
    def get_settings() -> Dict[str, Any]:
        if not settings_file.exists():
            return {"success": False, "message": "No settings found"}
        return {"success": True, "settings": json.loads(settings_file.read_text(encoding="utf-8"))}

    @app.post("/settings", dependencies=[Depends(auth.verify)])
    def save_settings(body: Dict[str, Any]) -> Dict[str, Any]:
        settings_file.write_text(json.dumps(body, indent=2), encoding="utf-8")
        logger.info("Settings saved to %s", settings_file)
        return {"success": True, "message": "Settings saved"}

    return app
