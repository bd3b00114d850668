"""FastAPI entry point for Coach Hub."""

import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coachhub.api import admin, ai_tagging, analytics, billing, games, parents, plays, practice, teams, timeline
from coachhub.core.config import settings
from coachhub.core.errors import register_exception_handlers
from coachhub.core.logging import RequestIDMiddleware, setup_logging

load_dotenv()
setup_logging(settings.env, settings.log_level)

logger = logging.getLogger(__name__)


# Create FastAPI app
app = FastAPI(
    title="Coach Hub API",
    description="Roster, film, play tagging, analytics and billing for football coaching staffs",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(RequestIDMiddleware)

register_exception_handlers(app)

for module in (teams, games, timeline, plays, analytics, ai_tagging, practice, billing, admin, parents):
    app.include_router(module.router)


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "env": settings.env,
        "supabase_configured": settings.supabase_configured,
        "r2_configured": settings.r2_configured,
        "gemini_configured": settings.gemini_configured,
        "stripe_configured": settings.stripe_configured,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "coachhub.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
