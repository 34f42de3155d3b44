from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from logging.handlers import RotatingFileHandler

from debatestream.config import Settings
from debatestream.models.base import init_db
from debatestream.api.captions import router as captions_router
from debatestream.api.summaries import router as summaries_router


settings = Settings()


def configure_logging(s: Settings) -> None:
    try:
        log_file = s.logs_dir / "backend.log"
        handler = RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=2)
        formatter = logging.Formatter(
            fmt='%(asctime)s %(levelname)s %(name)s %(message)s'
        )
        handler.setFormatter(formatter)
        root = logging.getLogger()
        if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
            root.addHandler(handler)
        root.setLevel(logging.INFO)
    except OSError:
        logging.getLogger("debatestream").warning("File logging unavailable", exc_info=True)


def create_app() -> FastAPI:
    app = FastAPI(title="Debate Stream Backend", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        settings.ensure_dirs()
        configure_logging(settings)
        init_db()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        from debatestream.services.caption_persister import get_caption_persister
        from debatestream.services.recognition import get_recognition_registry

        # Stop recognizers first so no new captions are submitted
        get_recognition_registry().close_all()
        get_caption_persister().shutdown(wait=True)

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(captions_router)
    app.include_router(summaries_router)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        logging.getLogger("debatestream").exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app


app = create_app()


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Debate Stream Backend Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (dev only)")

    args = parser.parse_args()

    uvicorn.run(
        "debatestream.main:app" if args.reload else app,
        host=args.host,
        port=args.port,
        reload=args.reload
    )
