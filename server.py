from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from datetime import datetime, timezone

# Load config first (triggers dotenv)
from config import CORS_ORIGINS, OWNER_UIDS, DEFAULT_ROLE_ID, ONLINE_TIMEOUT_MINUTES, CATEGORY_ORDER
from database import db, client
from controllers.permission_service import PermissionService
from controllers.points_controller import PointsLedger
from controllers.budget_controller import BudgetService

# Import all routers
from routes.auth import router as auth_router
from routes.rbac import router as rbac_router
from routes.points import router as points_router
from routes.projects import router as projects_router
from routes.budget import router as budget_router
from routes.audit import router as audit_router
from routes.ai import router as ai_router
from routes.weather import router as weather_router

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="BuildTrack Construction Management API")

app.state.permission_service = PermissionService(
    db,
    owner_uids=OWNER_UIDS,
    default_role_id=DEFAULT_ROLE_ID,
    online_timeout_minutes=ONLINE_TIMEOUT_MINUTES,
    category_order=CATEGORY_ORDER,
)
app.state.points_ledger = PointsLedger(db)
app.state.budget_service = BudgetService(db)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers under /api prefix
API_PREFIX = "/api"
app.include_router(auth_router,     prefix=API_PREFIX)
app.include_router(rbac_router,     prefix=API_PREFIX)
app.include_router(points_router,   prefix=API_PREFIX)
app.include_router(projects_router, prefix=API_PREFIX)
app.include_router(budget_router,   prefix=API_PREFIX)
app.include_router(audit_router,    prefix=API_PREFIX)
app.include_router(ai_router,       prefix=API_PREFIX)
app.include_router(weather_router,  prefix=API_PREFIX)


# ── Root / Health ──────────────────────────────────────────

@app.get("/api/")
async def root():
    return {"message": "BuildTrack Construction Management API", "version": "1.0.0"}


@app.get("/api/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


# ── Startup / Shutdown ─────────────────────────────────────

@app.on_event("startup")
async def seed_permissions():
    permissions: PermissionService = app.state.permission_service
    if await permissions.needs_initialization():
        logger.info("Roles not initialized, seeding defaults")
    await permissions.initialize()
    if not OWNER_UIDS:
        logger.warning("OWNER_UIDS is empty: no account will bypass permission checks")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
