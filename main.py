import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from jose import JWTError, jwt
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

from accounts import AccountStore, UserStore
from config import APP_NAME, JWT_ALG, JWT_EXPIRE_MINUTES, JWT_SECRET, LOG_LEVEL, SEED_SAMPLE_DATA
from database import SessionLocal, create_tables, get_db, table_names
from errors import BadRequest
from notifications import NotificationDispatcher, NotificationFeed, NotificationStore
from reports import ReportStore
from schemas import (
    CommentCreate,
    LoginRequest,
    NotificationUpdate,
    RegisterRequest,
    ReportCreate,
    ReportDelete,
    ReportUpdate,
    UserDelete,
    UserUpdate,
    VerificationRequest,
    VerifyRequest,
)

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables()
    if SEED_SAMPLE_DATA:
        from seed import seed_sample_data
        with SessionLocal() as session:
            seed_sample_data(session)
    yield


app = FastAPI(title=APP_NAME, lifespan=lifespan)


# Registered before CORS so CORSMiddleware stays outermost and answers real preflights.
# Bare OPTIONS requests (no Origin) end here with an empty 200 on any path.
@app.middleware("http")
async def answer_options(request: Request, call_next):
    if request.method == "OPTIONS":
        return Response(status_code=200)
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Error handlers ----------

def validation_message(errors) -> str:
    for err in errors:
        if err.get("type") == "json_invalid":
            return "Invalid JSON data"
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        if not loc:
            return "Invalid JSON data"
        field = loc[0]
        if err.get("type") == "missing" or err.get("input") in ("", None):
            return f"Missing required field: {field}"
        return f"Invalid value for field: {field}"
    return "Invalid request"


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    content = {"error": exc.detail}
    content.update(getattr(exc, "extra", {}))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": validation_message(exc.errors())})


@app.exception_handler(ValidationError)
async def model_validation_handler(request, exc):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": validation_message(exc.errors())})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"}
    )


# ---------- Dependencies ----------

dispatcher = NotificationDispatcher()
feed = NotificationFeed()


def get_accounts(db: Session = Depends(get_db)):
    return AccountStore(db, dispatcher)


def get_users(db: Session = Depends(get_db)):
    return UserStore(db, AccountStore(db, dispatcher))


def get_reports(db: Session = Depends(get_db)):
    return ReportStore(db, dispatcher)


def get_notifications(db: Session = Depends(get_db)):
    return NotificationStore(db)


def get_feed():
    return feed


# ---------- Auth Helpers ----------

def create_token(user_id: int, email: str, role: str):
    payload = {
        "sub": email,
        "uid": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=JWT_EXPIRE_MINUTES),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def verify_token(authorization: Optional[str] = Header(None)):
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    try:
        scheme, token = authorization.split(" ", 1)
        if scheme.lower() != "bearer":
            raise ValueError("Invalid auth scheme")
        data = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
        return {"id": data.get("uid"), "email": data.get("sub"), "role": data.get("role")}
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")


# ---------- Basic routes ----------
@app.get("/")
def root():
    return {"message": f"{APP_NAME} running"}


@app.get("/test")
def test_database():
    info = {
        "backend": "running",
        "database": "disconnected",
        "tables": [],
    }
    try:
        info["tables"] = table_names()[:10]
        info["database"] = "connected"
    except Exception as e:
        info["database"] = f"error: {type(e).__name__}"
    return info


# ---------- Auth endpoints ----------

def _auth_post(action: str, payload: dict, request: Request, accounts: AccountStore):
    if action == "register":
        result = accounts.register(RegisterRequest.model_validate(payload))
        return JSONResponse(status_code=201, content=jsonable_encoder(result))
    if action == "login":
        user = accounts.login(
            LoginRequest.model_validate(payload),
            ip_address=request.client.host if request.client else None,
        )
        return {"success": True, "user": user, "token": create_token(user["id"], user["email"], user["role"])}
    if action == "verify":
        body = VerifyRequest.model_validate(payload)
        return accounts.resolve_verification(body.userId, body.status, body.notes)
    if action == "request-verification":
        body = VerificationRequest.model_validate(payload)
        return accounts.request_verification(body.userId, body.verificationInfo)
    raise BadRequest("Invalid action")


@app.post("/auth")
def auth_post(request: Request, action: str = Query(""), payload: dict = Body(...),
              accounts: AccountStore = Depends(get_accounts)):
    return _auth_post(action, payload, request, accounts)


@app.post("/auth/{action}")
def auth_post_path(action: str, request: Request, payload: dict = Body(...),
                   accounts: AccountStore = Depends(get_accounts)):
    return _auth_post(action, payload, request, accounts)


@app.get("/auth")
def auth_get(action: str = Query(""), userId: Optional[int] = Query(None),
             accounts: AccountStore = Depends(get_accounts)):
    if action != "verify-status":
        raise BadRequest("Invalid action")
    if userId is None:
        raise BadRequest("User ID is required")
    return accounts.verification_status(userId)


@app.get("/me")
def me(user=Depends(verify_token)):
    return user


# ---------- Report endpoints ----------

@app.get("/reports")
def list_reports(id: Optional[int] = None, reports: ReportStore = Depends(get_reports)):
    if id is not None:
        return reports.get_by_id(id)
    return reports.get_all()


@app.get("/reports/{report_id}")
def get_report(report_id: int, reports: ReportStore = Depends(get_reports)):
    return reports.get_by_id(report_id)


@app.post("/reports", status_code=201)
def create_report(report: ReportCreate, reports: ReportStore = Depends(get_reports)):
    report_id = reports.create(report)
    return {"success": True, "id": report_id, "message": "Report created successfully"}


def _update_report(report_id: Optional[int], body: ReportUpdate, reports: ReportStore):
    if report_id is None:
        raise BadRequest("Missing required field: id")
    report = reports.update(report_id, body)
    return {"success": True, "message": "Report updated successfully", "report": report}


@app.put("/reports")
def update_report(body: ReportUpdate, reports: ReportStore = Depends(get_reports)):
    return _update_report(body.id, body, reports)


@app.put("/reports/{report_id}")
def update_report_path(report_id: int, body: ReportUpdate, reports: ReportStore = Depends(get_reports)):
    return _update_report(report_id, body, reports)


@app.delete("/reports")
def delete_report(body: ReportDelete, reports: ReportStore = Depends(get_reports)):
    reports.delete(body.id)
    return {"success": True, "message": "Report deleted successfully"}


@app.delete("/reports/{report_id}")
def delete_report_path(report_id: int, reports: ReportStore = Depends(get_reports)):
    reports.delete(report_id)
    return {"success": True, "message": "Report deleted successfully"}


@app.get("/reports/{report_id}/comments")
def list_comments(report_id: int, reports: ReportStore = Depends(get_reports)):
    return reports.list_comments(report_id)


@app.post("/reports/{report_id}/comments", status_code=201)
def add_comment(report_id: int, body: CommentCreate, reports: ReportStore = Depends(get_reports)):
    return reports.add_comment(report_id, body)


# ---------- Notification endpoints ----------

@app.get("/notifications")
def list_notifications(user_id: Optional[int] = None, unread: bool = False,
                       notifications: NotificationStore = Depends(get_notifications)):
    return notifications.list(user_id=user_id, unread=unread)


# registered before /notifications/{notification_id} so "stream" is not read as an id
@app.get("/notifications/stream")
async def stream_notifications(request: Request, feed: NotificationFeed = Depends(get_feed)):
    return StreamingResponse(
        feed.events(request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@app.get("/notifications/{notification_id}")
def get_notification(notification_id: int, notifications: NotificationStore = Depends(get_notifications)):
    return notifications.get(notification_id)


@app.put("/notifications/{notification_id}")
def mark_notification(notification_id: int, body: NotificationUpdate,
                      notifications: NotificationStore = Depends(get_notifications)):
    notification = notifications.mark_read(notification_id, body.is_read)
    return {"success": True, "notification": notification}


@app.delete("/notifications/{notification_id}")
def delete_notification(notification_id: int, notifications: NotificationStore = Depends(get_notifications)):
    notifications.delete(notification_id)
    return {"success": True, "message": "Notification deleted successfully"}


# ---------- User endpoints ----------

@app.get("/users")
def list_users(id: Optional[int] = None, users: UserStore = Depends(get_users)):
    if id is not None:
        return users.get(id)
    return users.list()


@app.get("/users/{user_id}")
def get_user(user_id: int, users: UserStore = Depends(get_users)):
    return users.get(user_id)


@app.post("/users", status_code=201)
def create_user(body: RegisterRequest, users: UserStore = Depends(get_users)):
    result = users.create(body)
    return {**result, "id": result["user"]["id"]}


def _update_user(user_id: Optional[int], body: UserUpdate, users: UserStore):
    if user_id is None:
        raise BadRequest("Missing required field: id")
    user = users.update(user_id, body)
    return {"success": True, "message": "User updated successfully", "user": user}


@app.put("/users")
def update_user(body: UserUpdate, users: UserStore = Depends(get_users)):
    return _update_user(body.id, body, users)


@app.put("/users/{user_id}")
def update_user_path(user_id: int, body: UserUpdate, users: UserStore = Depends(get_users)):
    return _update_user(user_id, body, users)


@app.delete("/users")
def delete_user(body: UserDelete, users: UserStore = Depends(get_users)):
    users.delete(body.id)
    return {"success": True, "message": "User deleted successfully"}


@app.delete("/users/{user_id}")
def delete_user_path(user_id: int, users: UserStore = Depends(get_users)):
    users.delete(user_id)
    return {"success": True, "message": "User deleted successfully"}
