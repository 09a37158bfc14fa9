"""
Vehicle Usage Integrity Engine - FastAPI Application

Main entry point for the integrity engine backend.

Architecture:
- ServiceRecords -> AnchorResolver -> Anchor
- Anchor + Trips -> Timeline Reconstructor -> corrected mileage per trip
- Timeline -> AnomalyClassifier (declaration policy) -> findings
- Findings -> AuditRecorder -> append-only anomaly trail
- Trail -> ComplianceAdvisor (hosts) / ClaimService (claims workflow)
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_config
from .database import init_db
from .routers import vehicles_router, claims_router, admin_router, scheduler_router


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration and initialize database on startup."""
    # A bad policy table or rate stops the engine here
    get_config()
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Vehicle Usage Integrity Engine",
    description="""
    Vehicle Usage Integrity Engine

    Reconstructs a trustworthy odometer timeline for rental vehicles from
    incomplete or conflicting trip records, classifies deviations against the
    host's declared usage, and feeds the result into claim review.

    ## Pipeline
    1. **Anchor Resolver**: latest service record -> baseline mileage
    2. **Timeline Reconstructor**: monotonic corrected mileage per trip
    3. **Anomaly Classifier**: NORMAL / WARNING / CRITICAL / VIOLATION
    4. **Audit Recorder**: append-only anomaly and pass records

    ## Key Principles
    - Raw recorded readings are never overwritten
    - Corrected mileage never decreases
    - Earnings tier depends on insurance level only
    - Past payouts are never altered
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(vehicles_router)
app.include_router(claims_router)
app.include_router(admin_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Vehicle Usage Integrity Engine",
        "version": "1.0.0",
        "docs": "/docs",
        "components": [
            "anchor_resolver",
            "timeline_reconstructor",
            "anomaly_classifier",
            "compliance_advisor",
            "coverage_stacker",
            "audit_recorder",
        ],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m usage_integrity.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
