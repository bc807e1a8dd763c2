"""
HTTP API - REST surface for the cloud check.

Exposes the scan report, the apply operation, outcome history and a
Server-Sent Events stream of problem events using FastAPI.
"""

import asyncio
import logging
from typing import Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator

from engine import CheckMode, CloudCheckEngine
from errors import UnknownProblemType
from events import EventBus
from report import parse_problem_id

logger = logging.getLogger(__name__)


class ResolveRequest(BaseModel):
    """Body of POST /api/v1/problems/resolve."""

    resolutions: Dict[str, str] = Field(default_factory=dict)
    auto: bool = False

    @field_validator("resolutions")
    @classmethod
    def validate_problem_ids(cls, v: Dict[str, str]) -> Dict[str, str]:
        for pid, name in v.items():
            parse_problem_id(pid)
            if not name:
                raise ValueError(f"Resolution for {pid} cannot be empty")
        return v


class ProblemTypeInfo(BaseModel):
    type: str
    auto_resolution: str
    resolutions: List[str]


class CloudCheckAPI:
    """FastAPI application serving a CloudCheckEngine."""

    def __init__(
        self,
        engine: CloudCheckEngine,
        event_bus: Optional[EventBus] = None,
        host: str = "0.0.0.0",
        port: int = 8000,
        log_level: str = "info",
    ):
        self.engine = engine
        self.event_bus = event_bus
        self.host = host
        self.port = port
        self.log_level = log_level.lower()
        self.server: Optional[uvicorn.Server] = None

        self.app = FastAPI(
            title="Cloud Check API",
            description="Consistency check and repair of VMs, disks and instances",
            version="1.0.0",
        )
        self._setup_routes()

    def _setup_routes(self) -> None:
        """
        Set up the routes:

        - Health check: GET /
        - Problem types: GET /api/v1/problem-types
        - Scan report: GET /api/v1/problems
        - Apply: POST /api/v1/problems/resolve
        - History: GET /api/v1/history
        - Events: GET /api/v1/events
        """
        app = self.app

        @app.get("/")
        async def health_check():
            """Health check endpoint."""
            return {"status": "ok", "service": "cloudcheck"}

        @app.get("/api/v1/problem-types", response_model=List[ProblemTypeInfo])
        async def list_problem_types():
            registry = self.engine.registry
            result = []
            for type_tag in registry.list_problem_types():
                handler_class, auto = registry.lookup(type_tag)
                result.append(
                    ProblemTypeInfo(
                        type=type_tag,
                        auto_resolution=auto,
                        resolutions=list(handler_class.resolution_catalog),
                    )
                )
            return result

        @app.get("/api/v1/problems")
        async def get_problems():
            """Scan and report open problems without resolving them."""
            try:
                report = await self.engine.check(CheckMode.REPORT)
            except UnknownProblemType as e:
                raise HTTPException(status_code=500, detail=str(e))
            return report.to_dict()

        @app.post("/api/v1/problems/resolve")
        async def resolve_problems(request: ResolveRequest):
            """
            Re-scan and apply the chosen resolutions.

            Problems without a choice get their auto resolution when ``auto``
            is set and are skipped otherwise.
            """
            mode = CheckMode.AUTO if request.auto else CheckMode.MANUAL
            try:
                report = await self.engine.check(mode, request.resolutions)
            except UnknownProblemType as e:
                raise HTTPException(status_code=500, detail=str(e))
            return report.to_dict()

        @app.get("/api/v1/history")
        async def get_history(
            problem_type: Optional[str] = None,
            limit: int = Query(default=50, ge=1, le=1000),
        ):
            try:
                return await self.engine.db.get_check_history(
                    problem_type=problem_type, limit=limit
                )
            except Exception as e:
                logger.error(f"Error reading cloud check history: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @app.get("/api/v1/events")
        async def stream_events(
            problem_type: Optional[List[str]] = Query(default=None),
        ):
            """SSE stream of detected problems and outcomes."""
            if not self.event_bus:
                raise HTTPException(
                    status_code=503, detail="Event streaming not available"
                )

            subscriber_id, subscription = await self.event_bus.subscribe(problem_type)

            async def event_generator():
                try:
                    async for event in subscription:
                        yield event.to_sse()
                except asyncio.CancelledError:
                    pass
                finally:
                    await self.event_bus.unsubscribe(subscriber_id)

            return StreamingResponse(
                event_generator(),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )

    async def start(self) -> None:
        """Serve the API until stopped."""
        config = uvicorn.Config(
            self.app, host=self.host, port=self.port, log_level=self.log_level
        )
        self.server = uvicorn.Server(config)
        logger.info(f"Starting cloud check API on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        logger.info("Stopping cloud check API")
        if self.server:
            self.server.should_exit = True
