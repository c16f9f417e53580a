from __future__ import annotations

import os
from pathlib import Path

from fastapi import FastAPI
from fastapi import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import uvicorn
from dotenv import load_dotenv

from .analyzer import Analyzer
from .config import GRADE_DESCRIPTORS
from .logging_utils import get_logger, setup_logging
from .models import AnalysisOptions, AnalysisRequest, AnalysisResult, GradeInfo
from .scoring import grade_info


# Load environment variables from the repo root .env (API keys, redis URL) in local dev
_HERE = Path(__file__).resolve()
_REPO_ROOT = _HERE.parents[1]
load_dotenv(_REPO_ROOT / ".env", override=False)

setup_logging()
log = get_logger("api")

app = FastAPI(title="SiteZ Analyzer", version="0.1.0")

_analyzer: Analyzer | None = None


def get_analyzer() -> Analyzer:
    global _analyzer
    if _analyzer is None:
        _analyzer = Analyzer()
    return _analyzer


def _cors_allow_origins() -> list[str]:
    raw = os.getenv("SITEZ_CORS_ORIGINS", "").strip()
    if not raw:
        return ["http://localhost:3000"]
    return [o.strip() for o in raw.split(",") if o.strip()]


# Defaults to http://localhost:3000; set SITEZ_CORS_ORIGINS for deployed frontends.
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class QuickBody(BaseModel):
    url: str = Field(..., min_length=1)
    use_cache: bool = True


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/analyze", response_model=AnalysisResult)
def analyze_endpoint(body: AnalysisRequest):
    log.info("analyze %s (requested %s)", body.url, body.requested_at.isoformat())
    result = get_analyzer().analyze(body.url, body.options)
    if "input" in result.errors:
        raise HTTPException(status_code=400, detail=result.errors["input"])
    return result


@app.post("/analyze/quick", response_model=AnalysisResult)
def analyze_quick_endpoint(body: QuickBody):
    result = get_analyzer().analyze(body.url, AnalysisOptions.quick(use_cache=body.use_cache))
    if "input" in result.errors:
        raise HTTPException(status_code=400, detail=result.errors["input"])
    return result


@app.get("/grades", response_model=list[GradeInfo])
def grades_endpoint():
    thresholds = get_analyzer().settings.grade_thresholds
    return [grade_info(grade, thresholds) for grade, _ in thresholds if grade in GRADE_DESCRIPTORS]


def run() -> None:
    """Serve the API; host and port come from SITEZ_HOST / SITEZ_PORT."""
    host = os.getenv("SITEZ_HOST", "127.0.0.1")
    port = int(os.getenv("SITEZ_PORT", "8000"))
    uvicorn.run("sitez_analyzer.main:app", host=host, port=port, log_level=os.getenv("SITEZ_LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    run()
