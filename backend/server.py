from fastapi import FastAPI, APIRouter, HTTPException, Depends, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
import logging
from pydantic import BaseModel
from typing import Any, Optional
from datetime import datetime, timezone, timedelta
import jwt

from calibration_table import CalibrationTable, load_calibration_snapshot, seed_calibration_collection
from config import load_settings
from conversion_ledger import ConversionLedger
from deletion_authority import AdminPolicy, DeletionAuthority
from gauge_conversion_engine import GaugeConversionEngine
from gauge_errors import (
    ConfigurationError,
    GaugeServiceError,
    StorageError,
    client_message_for,
    status_code_for,
)
from history_query import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, HistoryFilter, HistoryQueryEngine

settings = load_settings()

# MongoDB connection
client = AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
db = client[settings.db_name]

# Admin capability, fixed for the lifetime of the process
admin_policy = AdminPolicy(admin_user_id=settings.admin_user_id)

app = FastAPI(title="Fuel Gauge API")

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "Accept",
        "Origin",
    ],
    max_age=600,  # Cache preflight for 10 minutes
)

# ==================== HEALTH ENDPOINT (ROOT LEVEL) ====================
@app.get("/api/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {
        "ok": True,
        "time": datetime.now(timezone.utc).isoformat(),
        "service": "Fuel Gauge API",
        "version": "1.0.0"
    }

api_router = APIRouter(prefix="/api")

security = HTTPBearer(auto_error=False)

# ==================== MODELS ====================

class ConvertRequest(BaseModel):
    # Validated by the conversion engine so bad input maps to 400, not 422
    value_cm: Any = None

class BulkDeleteRequest(BaseModel):
    ids: Any = None

# ==================== HELPER FUNCTIONS ====================

def to_http_exception(error: GaugeServiceError) -> HTTPException:
    return HTTPException(status_code=status_code_for(error), detail=client_message_for(error))

def create_access_token(data: dict) -> str:
    if not settings.jwt_secret:
        raise ConfigurationError("JWT_SECRET")
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.access_token_expire_hours)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)

def get_db():
    return db

def get_admin_policy() -> AdminPolicy:
    return admin_policy

def get_calibration_table(request: Request) -> CalibrationTable:
    table = getattr(request.app.state, "calibration_table", None)
    if table is None:
        raise HTTPException(status_code=503, detail="Calibration table not loaded")
    return table

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    database=Depends(get_db)
):
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured; rejecting authenticated request")
        raise to_http_exception(ConfigurationError("JWT_SECRET"))
    try:
        payload = jwt.decode(credentials.credentials, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        user_id = payload.get("sub")
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        try:
            user = await database.users.find_one({"id": user_id}, {"_id": 0})
        except PyMongoError as e:
            logger.error(f"User lookup failed for user_id={user_id}: {e}")
            raise to_http_exception(StorageError("user lookup"))
        if user is None:
            raise HTTPException(status_code=401, detail="User not found")
        return user
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

# ==================== AUTH ROUTES ====================

@api_router.get("/auth/me")
async def get_me(
    current_user: dict = Depends(get_current_user),
    policy: AdminPolicy = Depends(get_admin_policy)
):
    return {
        "id": current_user["id"],
        "name": current_user.get("name"),
        "email": current_user.get("email"),
        "picture": current_user.get("picture"),
        "is_admin": policy.is_admin(current_user["id"]),
    }

@api_router.post("/auth/logout")
async def logout(current_user: dict = Depends(get_current_user)):
    """Tokens are stateless; the client discards its copy"""
    logger.info(f"Logout requested by user {current_user['id']}")
    return {"message": "Logged out (client should clear token)"}

# ==================== CONVERSION ROUTES ====================

@api_router.post("/data/convert")
async def convert_cm_to_litres(
    data: ConvertRequest,
    current_user: dict = Depends(get_current_user),
    table: CalibrationTable = Depends(get_calibration_table),
    database=Depends(get_db)
):
    try:
        reading = GaugeConversionEngine(table).convert(data.value_cm)
        record = await ConversionLedger(database).record(
            current_user["id"], reading.value_cm, reading.volume_l
        )
    except GaugeServiceError as e:
        logger.info(f"Conversion of {data.value_cm!r} by user {current_user['id']} failed: {e.error_code}")
        raise to_http_exception(e)

    return {
        "value_cm": reading.value_cm,
        "volume_l": reading.volume_l,
        "message": reading.message,
        "saved_conversion": record.model_dump(mode="json"),
    }

@api_router.get("/data/history")
async def get_conversion_history(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: Optional[str] = None,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    current_user: dict = Depends(get_current_user),
    database=Depends(get_db)
):
    logger.info(f"User {current_user['id']} is accessing {settings.history_scope.value} conversion history")
    try:
        filters = HistoryFilter.from_query_params(search, date_from, date_to)
        engine = HistoryQueryEngine(database, scope=settings.history_scope)
        history = await engine.query(filters, page=page, page_size=limit, user_id=current_user["id"])
    except GaugeServiceError as e:
        raise to_http_exception(e)
    return history.to_response()

@api_router.delete("/data/history/{entry_id}")
async def delete_conversion_entry(
    entry_id: str,
    current_user: dict = Depends(get_current_user),
    policy: AdminPolicy = Depends(get_admin_policy),
    database=Depends(get_db)
):
    try:
        await DeletionAuthority(database, policy).delete_one(entry_id, current_user["id"])
    except GaugeServiceError as e:
        raise to_http_exception(e)
    return {"message": "Entry deleted successfully"}

@api_router.post("/data/history/bulk-delete")
async def bulk_delete_conversion_entries(
    data: BulkDeleteRequest,
    current_user: dict = Depends(get_current_user),
    policy: AdminPolicy = Depends(get_admin_policy),
    database=Depends(get_db)
):
    try:
        deleted_count = await DeletionAuthority(database, policy).delete_many(data.ids, current_user["id"])
    except GaugeServiceError as e:
        raise to_http_exception(e)
    return {
        "message": f"{deleted_count} entry(ies) deleted by the administrator",
        "deleted_count": deleted_count,
    }


app.include_router(api_router)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@app.on_event("startup")
async def startup_event():
    try:
        await db.calibration_table.create_index([("cm", 1)], unique=True, name="cm_unique")
        await db.conversions.create_index([("id", 1)], unique=True, name="conversion_id_unique")
        await db.conversions.create_index([("created_at", -1)], name="created_at_idx")
        await db.conversions.create_index([("user_id", 1)], name="user_id_idx")
        logger.info("Conversion indexes created")
    except Exception as e:
        logger.warning(f"Failed to create indexes: {e}")

    seeded = await seed_calibration_collection(db)
    if seeded:
        logger.info(f"Calibration table was empty; seeded {seeded} entries from the gauge matrix")
    app.state.calibration_table = await load_calibration_snapshot(db)

    if not admin_policy.is_configured:
        logger.error("ADMIN_USER_ID is not configured; all delete operations will fail")
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured; authenticated routes will fail")

@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
