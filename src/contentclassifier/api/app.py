"""FastAPI application entrypoint."""

from __future__ import annotations

from fastapi import FastAPI

from contentclassifier.api.routes import router


def create_app() -> FastAPI:
    app = FastAPI(
        title="Content Classifier",
        description="Sitemap crawler that classifies pages against the encephalitis content taxonomy",
    )
    app.include_router(router, prefix="/api")
    return app


app = create_app()
