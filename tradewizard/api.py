"""
TradeWizard Extraction API - FastAPI Application

Endpoints:
- POST /analyze: full ExtractionResult for a website
- POST /analyze/profile: condensed BusinessProfile with product groups
- POST /consolidate: group a list of product variants
- POST /consolidate/categories: sort product variants into trade categories
- GET /health
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import log_level
from .models import BusinessProfile, CategoryResult, ExtractionResult, ProductGroup, ProductVariant
from .pipeline import AnalysisPipeline

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


class AnalyzeRequest(BaseModel):
    url: str = Field(..., description="Website URL or bare domain")
    use_cache: bool = Field(True, description="Return a fresh cached result when available")


class ConsolidateRequest(BaseModel):
    products: List[ProductVariant] = Field(..., description="Products to group")


class ConsolidateResponse(BaseModel):
    groups: List[ProductGroup] = Field(default_factory=list)
    status: str
    error: Optional[str] = None


class CategorizeResponse(BaseModel):
    categories: List[CategoryResult] = Field(default_factory=list)
    status: str
    error: Optional[str] = None


class APIError(BaseModel):
    code: int
    message: str
    data: Optional[Dict[str, Any]] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=log_level(), format='%(asctime)s | %(levelname)s | %(message)s')
    pipeline = AnalysisPipeline.from_env()
    app.state.pipeline = pipeline
    pipeline.pool.start()
    logger.info("✅ Analysis pipeline ready")
    try:
        yield
    finally:
        await pipeline.close()
        logger.info("Analysis pipeline closed")


app = FastAPI(
    title="TradeWizard Extraction API",
    description="Business website analysis: extraction, validation, enrichment and product consolidation",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_pipeline(request: Request) -> AnalysisPipeline:
    return request.app.state.pipeline


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(
        status_code=400,
        content=APIError(code=400, message=str(exc), data={"type": "ValueError"}).model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=APIError(
            code=500,
            message="Internal server error",
            data={"type": type(exc).__name__, "detail": str(exc)},
        ).model_dump(),
    )


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/health", tags=["Health"])
async def health_check():
    return {"status": "healthy", "service": "TradeWizard Extraction API", "version": API_VERSION}


@app.get("/", tags=["Root"])
async def root():
    return {
        "service": "TradeWizard Extraction API",
        "version": API_VERSION,
        "endpoints": {
            "analyze": "/analyze, /analyze/profile",
            "consolidate": "/consolidate, /consolidate/categories",
            "docs": "/docs",
        },
    }


@app.post("/analyze", response_model=ExtractionResult, tags=["Analysis"])
async def analyze_endpoint(body: AnalyzeRequest, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    """Run the full pipeline for a website."""
    return await pipeline.analyze(body.url, use_cache=body.use_cache)


@app.post("/analyze/profile", response_model=BusinessProfile, tags=["Analysis"])
async def analyze_profile_endpoint(body: AnalyzeRequest, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    """Run the pipeline and return the condensed business profile."""
    return await pipeline.analyze_profile(body.url, use_cache=body.use_cache)


@app.post("/consolidate", response_model=ConsolidateResponse, tags=["Products"])
async def consolidate_endpoint(body: ConsolidateRequest, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    """Group product variants into product families."""
    result = pipeline.consolidation.consolidate(body.products)
    return ConsolidateResponse(groups=result.output or [], status=result.status.value, error=result.error)


@app.post("/consolidate/categories", response_model=CategorizeResponse, tags=["Products"])
async def categorize_endpoint(body: ConsolidateRequest, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    """Sort product variants into trade categories."""
    result = await pipeline.categorize(body.products)
    return CategorizeResponse(categories=result.output or [], status=result.status.value, error=result.error)
