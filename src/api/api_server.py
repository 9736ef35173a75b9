# api_server.py
"""
FastAPI server for EventChasor: synchronous and progressive (SSE) event search,
plus direct URL extraction.
"""
import sys
import os
import logging
from contextlib import asynccontextmanager
from typing import Optional, List, Dict, Any
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()
# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from chasor import EventChasor
from toolsets import Toolset, build_toolset
from streaming import stream_frames
from config_manager import get_config, get_global_gate, get_extraction_gate, get_log_level
from actions.search_orchestrator import SearchRequest
from utils.country import is_valid_target, to_iso2
from utils.timectx import TimeWindowError, resolve_window

logging.basicConfig(level=get_log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


class RequestRejected(Exception):
    """Input rejected before any work starts; mapped to HTTP 400"""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class RunRequest(BaseModel):
    """Event search request"""
    baseQuery: str
    country: Optional[str] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    timeframe: Optional[str] = None
    userIntent: Optional[str] = None
    allowUndated: bool = False
    locale: Optional[str] = None
    crawl: Optional[Dict[str, Any]] = None
    terms: Optional[Dict[str, List[str]]] = None


class ExtractRequest(BaseModel):
    """Direct extraction request"""
    urls: Optional[List[str]] = None
    locale: Optional[str] = None
    crawl: Optional[Dict[str, Any]] = None


class EventChasorService:
    """EventChasor service wrapper"""
    def __init__(self):
        self.toolset: Optional[Toolset] = None
        self.chasor: Optional[EventChasor] = None
        self.initialized = False

    async def initialize(self, toolset: Optional[Toolset] = None):
        """Build the toolset (or adopt an injected one)"""
        if self.initialized:
            return
        print("[SERVICE] Initializing EventChasor components...")
        if not get_config().validate():
            logger.warning("[SERVICE] config incomplete, using defaults for missing sections")
        self.toolset = toolset or self.toolset or build_toolset()
        self.chasor = EventChasor(self.toolset)
        self.initialized = True
        print(f"[SERVICE] EventChasor service initialized, providers={self.toolset.provider_names()}")


# Global service instance
eventchasor_service = EventChasorService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    await eventchasor_service.initialize()
    yield
    if eventchasor_service.toolset and eventchasor_service.toolset.cache:
        eventchasor_service.toolset.cache.save()
    if eventchasor_service.toolset and eventchasor_service.toolset.deduplicator:
        eventchasor_service.toolset.deduplicator.destroy()


app = FastAPI(
    title="EventChasor API",
    description="Industry event search and extraction",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestRejected)
async def request_rejected_handler(request: Request, exc: RequestRejected):
    print(f"[API][REJECTED] {request.url.path} code={exc.code}: {exc.message}")
    return JSONResponse(status_code=400, content={"error": exc.message, "code": exc.code})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    print(f"[API][REJECTED] {request.url.path} code=malformed_request")
    return JSONResponse(status_code=400, content={"error": "malformed request body", "code": "malformed_request"})


def crash_payload(e: Exception) -> Dict[str, Any]:
    return {"error": str(e) or e.__class__.__name__, "events": [], "debug": {"crashed": True}}


def build_search_request(request: RunRequest) -> SearchRequest:
    """Validate a run request and resolve its window; raises RequestRejected"""
    if not request.baseQuery or not request.baseQuery.strip():
        raise RequestRejected("malformed_request", "baseQuery is required")
    if not request.country or not request.country.strip():
        raise RequestRejected("country_required", "country is required")
    if not is_valid_target(request.country):
        raise RequestRejected("invalid_country", f"unknown country '{request.country}'")
    iso = to_iso2(request.country)
    try:
        # EU-wide searches must be bounded in time
        window = resolve_window(request.dateFrom, request.dateTo, request.timeframe,
                                country=iso, require_range=(iso == "EU"))
    except TimeWindowError as e:
        raise RequestRejected(e.code, str(e))
    return SearchRequest(
        base_query=request.baseQuery.strip(),
        country=iso,
        date_from=window.date_from,
        date_to=window.date_to,
        user_intent=request.userIntent,
        terms=request.terms,
    )


@app.post("/events/run")
async def run_events(request: RunRequest):
    """Search, extract, admit; one JSON response"""
    search_request = build_search_request(request)
    global_gate = get_global_gate()
    async with global_gate:
        try:
            result = await eventchasor_service.chasor.run(search_request, allow_undated=request.allowUndated,
                                                          locale=request.locale, crawl=request.crawl)
        except Exception as e:
            logger.exception(f"[API][CRASH] /events/run: {e}")
            return crash_payload(e)
    return result.to_dict()


@app.post("/events/run-progressive")
async def run_events_progressive(request: RunRequest):
    """Stage-by-stage results as Server-Sent Events"""
    search_request = build_search_request(request)
    global_gate = get_global_gate()

    async def controlled_stream():
        async with global_gate:
            print("[CONCURRENCY] Global gate acquired")
            frames = eventchasor_service.chasor.run_progressive(search_request, allow_undated=request.allowUndated)
            async for chunk in stream_frames(frames):
                yield chunk
        print("[CONCURRENCY] Global gate released")

    return StreamingResponse(
        controlled_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        }
    )


@app.post("/events/extract")
async def extract_events(request: ExtractRequest):
    """Run the extraction engine over caller-supplied URLs"""
    urls = [u.strip() for u in (request.urls or []) if u and u.strip()]
    if not urls:
        raise RequestRejected("urls_required", "urls must be a non-empty list")
    global_gate = get_global_gate()
    extraction_gate = get_extraction_gate()
    async with global_gate:
        async with extraction_gate:
            try:
                result = await eventchasor_service.toolset.extractor.extract(urls, request.locale, request.crawl)
            except Exception as e:
                logger.exception(f"[API][CRASH] /events/extract: {e}")
                return crash_payload(e)
    return result.to_dict()


@app.get("/health")
async def health_check():
    """Health check"""
    toolset = eventchasor_service.toolset
    return {
        "status": "healthy",
        "service": "EventChasor API",
        "initialized": eventchasor_service.initialized,
        "providers": toolset.provider_names() if toolset else {},
        "cache": toolset.cache.stats() if toolset and toolset.cache else {},
    }


@app.get("/")
async def root():
    """Root"""
    return {
        "message": "EventChasor API Server",
        "version": "1.0.0",
        "endpoints": {
            "run": "/events/run",
            "run_progressive": "/events/run-progressive",
            "extract": "/events/extract",
            "health": "/health"
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
