"""
Exam Engine API — Main Application
FastAPI application serving the question bank, exam assembly and student attempts.
"""

from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assessment.errors import AssessmentError
from database.database import engine, Base
from database import models  # noqa: F401  (registers tables on Base)
from routers import attempts, blueprints, questions
from routers.deps import to_http_exception

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("exam_api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables."""
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Exam Engine API",
    description="Question bank, exam assembly, attempt lifecycle and grading",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError):
    http = to_http_exception(exc)
    if http.status_code >= 500:
        log.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=http.status_code, content={"detail": http.detail})


# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(questions.router)          # /questions/*
app.include_router(blueprints.router)         # /blueprints/*
app.include_router(attempts.router)           # /blueprints/{id}/attempts, /attempts/*


@app.get("/")
def root():
    return {
        "name": "Exam Engine API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "questions": "/questions",
            "blueprints": "/blueprints",
            "attempts": "/attempts",
        },
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "exam-engine-api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
