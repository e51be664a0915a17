"""Local bridge server for the copilot.

Runs as a lightweight FastAPI server on localhost so an editor panel or
an external tool can drive execution and generation over HTTP.

Endpoints:
    GET    /health            : server and engine status
    GET    /state             : execution and generation state
    POST   /execute           : run a script
    POST   /validate          : syntax-check a script
    POST   /generate          : prompt → checked script (optionally run it)
    POST   /generate/cancel   : abort the in-flight generation
    GET    /history           : execution history
    DELETE /history           : clear execution history
    GET    /usage             : request counters

Usage:
    python -m scene_copilot.server --port 8421
"""

import argparse
import logging

from .cli import setup_logging
from .context import WorkflowType
from .service import CopilotService

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8421


def create_app(service: CopilotService):
    """Create FastAPI application."""
    from fastapi import FastAPI, HTTPException
    from pydantic import BaseModel

    app = FastAPI(title="Scene Copilot Bridge", version="0.1.0")

    class CodeRequest(BaseModel):
        code: str

    class GenerateRequest(BaseModel):
        prompt: str
        workflow: WorkflowType | None = None
        execute: bool = False

    class HealthResponse(BaseModel):
        status: str
        engine_available: bool
        provider: str
        model: str

    @app.get("/health")
    def health():
        return HealthResponse(
            status="ok",
            engine_available=service.execution.engine.is_available(),
            provider=service.settings.provider.value,
            model=service.settings.model,
        )

    @app.get("/state")
    def state():
        return {
            "execution_state": service.execution.state.value,
            "generation_state": service.llm.state.value,
            "executing": service.execution.is_executing(),
            "generating": service.llm.is_busy(),
        }

    @app.post("/execute")
    def execute(req: CodeRequest):
        return service.execution.execute(req.code).to_dict()

    @app.post("/validate")
    def validate(req: CodeRequest):
        ok, error = service.execution.validate_syntax(req.code)
        return {"valid": ok, "error_message": error}

    @app.post("/generate")
    def generate(req: GenerateRequest):
        result = service.generate_and_wait(req.prompt, workflow=req.workflow)
        execution = None
        if req.execute and result.success:
            execution = service.execution.execute(result.generated_code).to_dict()
        return {"generation": result.to_dict(), "execution": execution}

    @app.post("/generate/cancel")
    def cancel_generation():
        return {"cancelled": service.llm.cancel_generation()}

    @app.get("/history")
    def history(limit: int = 50):
        if limit < 0:
            raise HTTPException(status_code=400, detail="limit must be >= 0")
        entries = service.execution.history()
        shown = entries[-limit:] if limit else []
        return {
            "count": len(entries),
            "entries": [entry.to_json() for entry in shown],
        }

    @app.delete("/history")
    def clear_history():
        service.execution.clear_history()
        return {"cleared": True}

    @app.get("/usage")
    def usage():
        total, this_minute = service.llm.get_usage_statistics()
        return {
            "total_requests": total,
            "requests_this_minute": this_minute,
            "max_requests_per_minute": service.settings.max_requests_per_minute,
        }

    return app


def serve(service: CopilotService, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
    import uvicorn

    app = create_app(service)
    logger.info(f"Starting bridge server on {host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        service.shutdown()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Scene copilot bridge server")
    parser.add_argument("--settings", default=None, help="Path to settings YAML")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    serve(CopilotService.create(args.settings), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
