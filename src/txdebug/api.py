"""
FastAPI backend for the EVM transaction debugger.
Runs analyses (plain or streamed as NDJSON progress) and answers follow-up questions.
"""
import asyncio
import json
import logging
from typing import Optional, AsyncGenerator, Dict, Any, Set
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from txdebug.analyzer import TransactionAnalyzer
from txdebug.client_protocol import UpstreamError
from txdebug.config import ServiceConfig
from txdebug.models import AnalysisResult, ProgressEvent

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


class DebugRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str = Field(
        ..., alias="txHash", pattern=r"^0x[0-9a-fA-F]{64}$",
        description="Transaction hash (0x + 64 hex chars)",
    )
    network_id: str = Field(..., alias="networkId", pattern=r"^\d+$", description="Numeric network id")


class QARequest(BaseModel):
    question: str = Field(..., min_length=3, max_length=500)
    context: AnalysisResult


_analyzer: Optional[TransactionAnalyzer] = None
# strong references so streamed analyses outlive a disconnected client
_background_tasks: Set[asyncio.Task] = set()


def get_analyzer() -> TransactionAnalyzer:
    global _analyzer
    if _analyzer is None:
        _analyzer = TransactionAnalyzer()
    return _analyzer


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting EVM Transaction Debugger API...")
    yield
    logger.info("Shutting down EVM Transaction Debugger API...")
    if _analyzer is not None:
        await _analyzer.close()


app = FastAPI(
    title="EVM Transaction Debugger API",
    description="Agent-driven analysis of EVM transactions",
    version=VERSION,
    lifespan=lifespan,
)

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error mapping ────────────────────────────────────────────────────────────

@app.exception_handler(RequestValidationError)
async def invalid_body_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        details.append(f"{'.'.join(loc)}: {err.get('msg')}")
    return JSONResponse(status_code=400, content={"error": "Invalid request body", "details": "; ".join(details)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error(f"[error] {exc.service}: {exc}")
    return JSONResponse(status_code=502, content={"error": str(exc)})


# ─── Streaming ────────────────────────────────────────────────────────────────

def _event_payload(event: ProgressEvent) -> Dict[str, Any]:
    return event.model_dump(exclude_none=True)


async def run_debug_streaming(
    analyzer: TransactionAnalyzer, tx_hash: str, network_id: str
) -> AsyncGenerator[str, None]:
    """Run an analysis and yield NDJSON progress lines, ending with result or error."""
    queue: asyncio.Queue = asyncio.Queue()

    async def job():
        try:
            result = await analyzer.analyze(
                tx_hash, network_id,
                on_progress=lambda event: queue.put_nowait(_event_payload(event)),
            )
            queue.put_nowait({"type": "result", "result": result.model_dump(mode="json", by_alias=True)})
        except Exception as e:
            logger.error(f"Streamed analysis of {tx_hash} failed: {e}")
            queue.put_nowait({"type": "error", "message": str(e)})
        finally:
            queue.put_nowait(None)

    yield json.dumps({"type": "status", "message": f"Analyzing {tx_hash} on network {network_id}..."}) + "\n"

    task = asyncio.create_task(job())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    while True:
        item = await queue.get()
        if item is None:
            break
        yield json.dumps(item) + "\n"


# ─── Routes ───────────────────────────────────────────────────────────────────

@app.post("/api/debug")
async def debug(request: DebugRequest, analyzer: TransactionAnalyzer = Depends(get_analyzer)):
    """Analyze a transaction and return the full result."""
    logger.info(f"[debug] Analyzing tx {request.tx_hash} on network {request.network_id}")
    result = await analyzer.analyze(request.tx_hash, request.network_id)
    return {"result": result.model_dump(mode="json", by_alias=True)}


@app.post("/api/debug/stream")
async def debug_stream(request: DebugRequest, analyzer: TransactionAnalyzer = Depends(get_analyzer)):
    """
    Analyze a transaction, streaming progress events as they happen.
    The analysis keeps running (and is cached) even if the client goes away.
    """
    return StreamingResponse(
        run_debug_streaming(analyzer, request.tx_hash, request.network_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )


@app.post("/api/qa")
async def qa(request: QARequest, analyzer: TransactionAnalyzer = Depends(get_analyzer)):
    """Answer a question about a previous analysis."""
    answer = await analyzer.answer_question(request.question, request.context)
    return {"answer": answer}


@app.get("/health")
async def root_health():
    return {"status": "ok", "service": "txdebug-api"}


@app.get("/api/health")
async def health(analyzer: TransactionAnalyzer = Depends(get_analyzer)):
    """Detailed health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": VERSION,
        "cached_results": len(analyzer.cache),
    }


def main():
    """Run the API server."""
    import uvicorn
    uvicorn.run(
        "txdebug.api:app",
        host="0.0.0.0",
        port=ServiceConfig.PORT,
    )


if __name__ == "__main__":
    main()
