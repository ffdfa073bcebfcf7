import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import (
    Body, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile,
    WebSocket, WebSocketDisconnect, status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
import messaging
from auth import (
    TokenUser, create_token, get_current_user, guard, hash_password, require_admin, verify_password,
)
from config import Settings, get_settings
from database import create_document, get_db, get_documents, oid, serialize
from realtime import ConnectionManager, get_broadcaster
from schemas import AGENT, CUSTOMER, User, UserType
from storage import MESSAGE_POLICY, AttachmentError, AttachmentStore, complaint_policy
from workflow import AssignmentError, ComplaintWorkflow

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("resolvenow")

MAX_COMPLAINT_ATTACHMENTS = 10
MAX_MESSAGE_ATTACHMENTS = 5


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = database.connect()
    if db is not None:
        database.ensure_indexes(db)
    logger.info("%s started", settings.app_name)
    yield
    database.close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.broadcaster = ConnectionManager()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")


# ----------------------
# Error mapping
# ----------------------

@app.exception_handler(AssignmentError)
async def assignment_error_handler(request: Request, exc: AssignmentError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(AttachmentError)
async def attachment_error_handler(request: Request, exc: AttachmentError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


# ----------------------
# Dependencies
# ----------------------

def get_workflow(
    db: Database = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
    settings: Settings = Depends(get_settings),
) -> ComplaintWorkflow:
    return ComplaintWorkflow(db, broadcaster, max_active=settings.max_active_assignments)


def get_store(settings: Settings = Depends(get_settings)) -> AttachmentStore:
    return AttachmentStore(settings.upload_dir)


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    return serialize({k: v for k, v in doc.items() if k != "password"})


# ----------------------
# Schemas
# ----------------------

class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    phone: str
    user_type: UserType = CUSTOMER


class LoginRequest(BaseModel):
    email: str
    password: str


class UpdateProfile(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class CreateAssignment(BaseModel):
    complaint_id: str
    agent_id: str
    agent_name: str


class CreateFeedback(BaseModel):
    complaint_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    user_id: Optional[str] = None


# ----------------------
# Core endpoints
# ----------------------

@app.get("/")
def read_root():
    return {"message": "Welcome to ResolveNow API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    db = database.connect()
    if db is not None:
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "Connected & Working"
        except PyMongoError as e:
            response["database"] = f"Connected but Error: {str(e)[:50]}"
    return response


# Auth & users
@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    data = payload.model_dump()
    data["password"] = hash_password(payload.password)
    try:
        uid = create_document(db, "user", User(**data).model_dump())
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    user = db["user"].find_one({"_id": oid(uid)})
    logger.info("Registered %s user %s", user["user_type"], uid)
    return {
        "message": "User registered successfully",
        "token": create_token(user, settings),
        "user": {"id": uid, "name": user["name"], "user_type": user["user_type"]},
    }


@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = db["user"].find_one({"email": payload.email})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(payload.password, user["password"]):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    return {
        "token": create_token(user, settings),
        "user": {"id": str(user["_id"]), "name": user["name"], "user_type": user["user_type"]},
    }


@app.post("/api/auth/logout")
def logout():
    # Tokens are stateless; clients discard them.
    return {"message": "Logout successful"}


@app.get("/api/auth/agents")
def list_agents(workflow: ComplaintWorkflow = Depends(get_workflow)):
    out = []
    for agent in get_documents(workflow.db, "user", {"user_type": AGENT}):
        doc = public_user(agent)
        doc["active_assignments"] = workflow.active_assignment_count(doc["id"])
        out.append(doc)
    return out


@app.get("/api/users/profile")
def get_profile(user: TokenUser = Depends(get_current_user), db: Database = Depends(get_db)):
    doc = db["user"].find_one({"_id": oid(user.id)})
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(doc)


@app.put("/api/users/profile")
def update_profile(
    payload: UpdateProfile,
    user: TokenUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    changes = {k: v for k, v in payload.model_dump().items() if v}
    if changes:
        db["user"].update_one({"_id": oid(user.id)}, {"$set": changes})
    doc = db["user"].find_one({"_id": oid(user.id)})
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(doc)


@app.get("/api/users")
def list_users(admin: TokenUser = Depends(require_admin), db: Database = Depends(get_db)):
    return [public_user(x) for x in get_documents(db, "user")]


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, admin: TokenUser = Depends(require_admin), db: Database = Depends(get_db)):
    db["user"].delete_one({"_id": oid(user_id)})
    logger.info("User %s deleted by admin %s", user_id, admin.id)
    return {"message": "User deleted successfully"}


# Complaints
@app.post("/api/complaints", status_code=status.HTTP_201_CREATED)
async def create_complaint(
    name: str = Form(...),
    address: str = Form(...),
    city: str = Form(...),
    state: str = Form(...),
    pincode: str = Form(...),
    comment: str = Form(...),
    user_id: Optional[str] = Form(None),
    attachment_names: Optional[List[str]] = Form(None),
    attachments: Optional[List[UploadFile]] = File(None),
    user: Optional[TokenUser] = Depends(guard("complaint_create")),
    workflow: ComplaintWorkflow = Depends(get_workflow),
    store: AttachmentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    owner = user_id or (user.id if user else None)
    if not owner:
        raise HTTPException(status_code=400, detail="user_id is required")
    uploads = attachments or []
    if len(uploads) > MAX_COMPLAINT_ATTACHMENTS:
        raise HTTPException(status_code=400, detail=f"At most {MAX_COMPLAINT_ATTACHMENTS} attachments allowed")
    stored = await store.save(uploads, complaint_policy(settings.max_complaint_attachment_bytes), attachment_names)
    return await workflow.create_complaint({
        "user_id": owner,
        "name": name,
        "address": address,
        "city": city,
        "state": state,
        "pincode": pincode,
        "comment": comment,
        "attachments": stored,
    })


@app.get("/api/complaints")
def list_complaints(
    user: Optional[TokenUser] = Depends(guard("complaint_list")),
    workflow: ComplaintWorkflow = Depends(get_workflow),
):
    return workflow.list_complaints()


@app.get("/api/complaints/{complaint_id}")
def get_complaint(
    complaint_id: str,
    user: Optional[TokenUser] = Depends(guard("complaint_get")),
    workflow: ComplaintWorkflow = Depends(get_workflow),
):
    doc = workflow.get_complaint(complaint_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return doc


@app.put("/api/complaints/{complaint_id}")
async def update_complaint(
    complaint_id: str,
    payload: Dict[str, Any] = Body(...),
    user: Optional[TokenUser] = Depends(guard("complaint_update")),
    workflow: ComplaintWorkflow = Depends(get_workflow),
):
    doc = await workflow.update_complaint(complaint_id, payload)
    if not doc:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return doc


@app.delete("/api/complaints/{complaint_id}")
async def delete_complaint(
    complaint_id: str,
    user: Optional[TokenUser] = Depends(guard("complaint_delete")),
    workflow: ComplaintWorkflow = Depends(get_workflow),
):
    if not await workflow.delete_complaint(complaint_id):
        raise HTTPException(status_code=404, detail="Complaint not found")
    return {"message": "Complaint deleted successfully"}


# Assignments
@app.post("/api/assigned", status_code=status.HTTP_201_CREATED)
async def create_assignment(
    payload: CreateAssignment,
    user: Optional[TokenUser] = Depends(guard("assignment_create")),
    workflow: ComplaintWorkflow = Depends(get_workflow),
):
    return await workflow.assign(payload.complaint_id, payload.agent_id, payload.agent_name)


@app.get("/api/assigned/agent/{agent_id}")
def list_agent_assignments(
    agent_id: str,
    user: Optional[TokenUser] = Depends(guard("assignment_list")),
    workflow: ComplaintWorkflow = Depends(get_workflow),
):
    return workflow.assignments_for_agent(agent_id)


@app.get("/api/assigned")
def list_assignments(
    user: Optional[TokenUser] = Depends(guard("assignment_list")),
    workflow: ComplaintWorkflow = Depends(get_workflow),
):
    return workflow.all_assignments()


# Messages
@app.post("/api/messages", status_code=status.HTTP_201_CREATED)
async def create_message(
    complaint_id: str = Form(...),
    name: str = Form(...),
    message: str = Form(...),
    attachments: Optional[List[UploadFile]] = File(None),
    user: Optional[TokenUser] = Depends(guard("message_create")),
    db: Database = Depends(get_db),
    broadcaster=Depends(get_broadcaster),
    store: AttachmentStore = Depends(get_store),
):
    uploads = attachments or []
    if len(uploads) > MAX_MESSAGE_ATTACHMENTS:
        raise HTTPException(status_code=400, detail=f"At most {MAX_MESSAGE_ATTACHMENTS} attachments allowed")
    stored = await store.save(uploads, MESSAGE_POLICY)
    return await messaging.create_message(db, broadcaster, complaint_id, name, message, stored)


@app.get("/api/messages/unread/counts")
def unread_counts(user: TokenUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return messaging.unread_counts(db, user.name)


@app.put("/api/messages/read/{complaint_id}")
def mark_messages_read(
    complaint_id: str,
    user: TokenUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    messaging.mark_read(db, complaint_id, user.name)
    return {"success": True}


@app.get("/api/messages/{complaint_id}")
def list_messages(
    complaint_id: str,
    user: Optional[TokenUser] = Depends(guard("message_list")),
    db: Database = Depends(get_db),
):
    return messaging.list_messages(db, complaint_id)


# Feedback
@app.post("/api/feedback", status_code=status.HTTP_201_CREATED)
def create_feedback(
    payload: CreateFeedback,
    user: Optional[TokenUser] = Depends(guard("feedback_create")),
    db: Database = Depends(get_db),
):
    author = user.id if user else payload.user_id
    if not author:
        raise HTTPException(status_code=400, detail="user_id is required")
    return messaging.create_feedback(db, author, payload.complaint_id, payload.rating, payload.comment)


@app.get("/api/feedback/complaint/{complaint_id}")
def get_complaint_feedback(
    complaint_id: str,
    user: Optional[TokenUser] = Depends(guard("feedback_read")),
    db: Database = Depends(get_db),
):
    return messaging.feedback_for_complaint(db, complaint_id)


@app.get("/api/feedback/agent/{agent_id}")
def get_agent_feedback(
    agent_id: str,
    user: Optional[TokenUser] = Depends(guard("feedback_read")),
    db: Database = Depends(get_db),
):
    return messaging.feedback_for_agent(db, agent_id)


# WebSocket for real-time complaint and message events
@app.websocket("/ws")
async def ws_events(websocket: WebSocket):
    manager = websocket.app.state.broadcaster
    await manager.connect(websocket)
    try:
        while True:
            # Keep connection alive; clients may send ping
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
