"""
Shift Marketplace Policy Engine - FastAPI Application

Main entry point for the marketplace backend.

Architecture:
- Request -> require_action() -> ActionGuard (decide) -> ActionAuditLedger (record) -> handler (execute)
- Violation -> PolicyEnforcementEngine -> TrustScoreService + StandingRecord + log -> NotificationDispatcher
- Scheduler -> PolicyEnforcementEngine.sweep_expired()
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import auth_router, jobs_router, policies_router, admin_router, scheduler_router
from .database import init_db

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Shift Marketplace Policy Engine",
    description="""
    Action authorization and policy enforcement for a multi-role shift marketplace.

    ## Guard order
    1. **Demo accounts** are read-only
    2. **Blocked users** are denied everything
    3. **Restrictions** deny the actions they cover until expiry
    4. **Trust score** must meet the per-action minimum
    5. **Resource state** invariants (ownership, lead time, duplicates)
    6. **Rate limits** over a sliding window of dispatched actions

    ## Key Principles
    - Sanctions come only from fixed policy rules
    - Expiry is checked by timestamp at decision time, not by the sweep
    - Notification delivery never rolls back a sanction
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
app.include_router(auth_router)
app.include_router(jobs_router)
app.include_router(policies_router)
app.include_router(admin_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Shift Marketplace Policy Engine",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m shiftguard.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
