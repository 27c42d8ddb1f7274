import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.errors import PyMongoError

from config import settings
from database import ensure_indexes, get_db, serialize
from errors import ServiceError, Unauthorized
from services import Services
from services.membership import REMOVED, VOLUNTARY
from services.push import PushGateway, WebSocketPushGateway, get_push_gateway
from services.sentinel import wire_assignee

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    try:
        ensure_indexes(get_db())
    except Exception:
        logger.exception("Could not ensure indexes")
    yield


app = FastAPI(title="Collabolab API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(_request, exc: ServiceError):
    # Callers read the "error" field, never the HTTP status.
    return JSONResponse(status_code=200, content={"error": exc.message})


@app.exception_handler(PyMongoError)
async def storage_error_handler(_request, exc: PyMongoError):
    logger.error("Database operation failed: %s", exc, exc_info=exc)
    return JSONResponse(status_code=200, content={"error": "Database operation failed"})


# -----------------------------
# Schemas (requests)
# -----------------------------
class CreateUserRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = ""


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ChatMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    projectId: str
    from_: Optional[str] = Field(None, alias="from")


class CreateProjectRequest(BaseModel):
    name: str
    description: Optional[str] = None
    fcmToken: Optional[str] = ""


class ProjectRequest(BaseModel):
    projectId: str


class SearchUserRequest(BaseModel):
    text: str
    projectId: str


class ProjectUserRequest(BaseModel):
    projectId: str
    userId: str


class RemoveFromProjectRequest(BaseModel):
    projectId: str
    userId: str
    userDecision: bool = False


class ProjectTaskRequest(BaseModel):
    projectId: str
    taskId: str


class CreateTaskRequest(BaseModel):
    projectId: str
    name: str
    assignedTo: Optional[str] = None


class NotifyUserRequest(BaseModel):
    userId: str
    title: str
    description: str


class DeleteUserRequest(BaseModel):
    userId: str


class PushTokenRequest(BaseModel):
    fcmToken: str = ""


class MarkReadRequest(BaseModel):
    notification_ids: List[str]


# -----------------------------
# Dependencies
# -----------------------------
def get_push() -> PushGateway:
    return get_push_gateway()


def get_services(db=Depends(get_db), push: PushGateway = Depends(get_push)) -> Services:
    return Services(db, push)


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1]


async def get_current_user(authorization: Optional[str] = Header(default=None),
                           services: Services = Depends(get_services)) -> Dict[str, Any]:
    uid = services.identity.resolve_session(_bearer(authorization))
    user = services.db["user"].find_one({"_id": uid})
    if not user:
        raise Unauthorized("User not found")
    return serialize(user)


def require_member(project_id: str, user: Dict[str, Any]) -> None:
    if project_id not in user.get("projects", []):
        raise Unauthorized("User is not a member of this project")


# -----------------------------
# Auth endpoints
# -----------------------------
@app.post("/createUser")
def create_user(body: CreateUserRequest, services: Services = Depends(get_services)):
    uid = services.users.create_user(body.name, body.email, body.password, body.phone or "")
    return {"uid": str(uid)}


@app.post("/auth/login")
def login(body: LoginRequest, services: Services = Depends(get_services)):
    token = services.identity.authenticate(body.email, body.password)
    uid = services.identity.resolve_session(token)
    return {"token": token, "user": serialize(services.users.get(uid))}


@app.get("/me")
async def me(user=Depends(get_current_user)):
    return user


@app.post("/registerPushToken")
async def register_push_token(body: PushTokenRequest, user=Depends(get_current_user),
                              services: Services = Depends(get_services)):
    await services.users.register_push_token(user["id"], body.fcmToken)
    return {"message": "Push token registered"}


@app.post("/deleteUser")
async def delete_user(body: DeleteUserRequest, user=Depends(get_current_user),
                      services: Services = Depends(get_services)):
    if body.userId != user["id"]:
        raise Unauthorized("Users can only delete their own account")
    await services.membership.delete_user(body.userId)
    return {"message": "User deleted"}


@app.post("/searchUser")
async def search_user(body: SearchUserRequest, user=Depends(get_current_user),
                      services: Services = Depends(get_services)):
    return {"users": services.users.search_users(body.text, body.projectId)}


# -----------------------------
# Project endpoints
# -----------------------------
@app.post("/createProject")
async def create_project(body: CreateProjectRequest, user=Depends(get_current_user),
                         services: Services = Depends(get_services)):
    project_id = await services.membership.create_project(
        user["id"], body.name, body.description, body.fcmToken
    )
    return {"projectId": str(project_id)}


@app.post("/deleteProject")
async def delete_project(body: ProjectRequest, user=Depends(get_current_user),
                         services: Services = Depends(get_services)):
    await services.membership.delete_project(body.projectId, user["id"])
    return {"message": "Project deleted"}


@app.post("/inviteUser")
async def invite_user(body: ProjectUserRequest, user=Depends(get_current_user),
                      services: Services = Depends(get_services)):
    services.permissions.require(body.projectId, user["id"], "invite")
    await services.invites.create_invite(body.projectId, body.userId)
    return {"message": "User invited"}


@app.post("/acceptInvite")
async def accept_invite(body: ProjectRequest, user=Depends(get_current_user),
                        services: Services = Depends(get_services)):
    await services.invites.accept_invite(user["id"], body.projectId)
    return {"message": "Invite accepted"}


@app.post("/declineInvite")
async def decline_invite(body: ProjectRequest, user=Depends(get_current_user),
                         services: Services = Depends(get_services)):
    services.invites.decline_invite(user["id"], body.projectId)
    return {"message": "Invite declined"}


@app.post("/getInvites")
async def get_invites(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return {"invites": [serialize(i) for i in services.invites.pending(user["id"])]}


@app.post("/removeFromProject")
async def remove_from_project(body: RemoveFromProjectRequest, user=Depends(get_current_user),
                              services: Services = Depends(get_services)):
    if body.userDecision:
        if body.userId != user["id"]:
            raise Unauthorized("Only the user can decide to leave a project")
        reason = VOLUNTARY
    else:
        services.permissions.require(body.projectId, user["id"], "kick_member")
        reason = REMOVED
    await services.membership.leave_project(body.projectId, body.userId, reason)
    return {"message": "User removed from project"}


# -----------------------------
# Chat endpoints
# -----------------------------
@app.post("/sendChatMessage")
async def send_chat_message(body: ChatMessageRequest, user=Depends(get_current_user),
                            services: Services = Depends(get_services)):
    require_member(body.projectId, user)
    await services.chat.post_user_message(body.projectId, user["id"], body.from_ or user["name"], body.text)
    return {"message": "Message sent", "error": ""}


@app.post("/getChatMessages")
async def get_chat_messages(body: ProjectRequest, user=Depends(get_current_user),
                            services: Services = Depends(get_services)):
    require_member(body.projectId, user)
    return {"messages": [serialize(m) for m in services.chat.history(body.projectId)]}


# -----------------------------
# Task endpoints
# -----------------------------
@app.post("/createTask")
async def create_task(body: CreateTaskRequest, user=Depends(get_current_user),
                      services: Services = Depends(get_services)):
    services.permissions.require(body.projectId, user["id"], "create_task")
    task = serialize(services.tasks.create_task(body.projectId, body.name, body.assignedTo))
    task["assigned_to"] = wire_assignee(task.get("assigned_to"))
    return {"task": task}


@app.post("/assignTask")
async def assign_task(body: ProjectUserRequest, user=Depends(get_current_user),
                      services: Services = Depends(get_services)):
    services.permissions.require(body.projectId, user["id"], "edit_task")
    await services.tasks.assign_task(body.projectId, body.userId)
    return {"message": "Task assigned"}


@app.post("/updateTask")
async def update_task(body: ProjectTaskRequest, user=Depends(get_current_user),
                      services: Services = Depends(get_services)):
    services.permissions.require(body.projectId, user["id"], "edit_task")
    await services.tasks.update_task(body.projectId, body.taskId)
    return {"message": "Task updated"}


@app.post("/sendTaskToReview")
async def send_task_to_review(body: ProjectRequest, user=Depends(get_current_user),
                              services: Services = Depends(get_services)):
    require_member(body.projectId, user)
    await services.tasks.send_for_review(body.projectId)
    return {"message": "Task sent for review"}


@app.post("/approveTask")
async def approve_task(body: ProjectTaskRequest, user=Depends(get_current_user),
                       services: Services = Depends(get_services)):
    services.permissions.require(body.projectId, user["id"], "review_task")
    logger.info("Approving task with id: %s in project: %s", body.taskId, body.projectId)
    await services.tasks.approve_task(body.projectId, body.taskId)
    return {"message": "Task approved"}


@app.post("/getUserTasks")
async def get_user_tasks(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return {"tasks": services.tasks.user_task_paths(user["id"])}


# -----------------------------
# Notifications
# -----------------------------
@app.post("/notifyUser")
async def notify_user(body: NotifyUserRequest, user=Depends(get_current_user),
                      services: Services = Depends(get_services)):
    await services.fanout.notify_user(body.userId, body.title, body.description)
    return {"message": "Notification sent"}


@app.get("/notifications")
async def list_notifications(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return [serialize(n) for n in services.fanout.history(user["id"])]


@app.post("/notifications/read")
async def mark_notifications_read(body: MarkReadRequest, user=Depends(get_current_user),
                                  services: Services = Depends(get_services)):
    return {"updated": services.fanout.mark_read(user["id"], body.notification_ids)}


# -----------------------------
# Device channel
# -----------------------------
@app.websocket("/ws/devices/{token}")
async def device_ws(websocket: WebSocket, token: str, gateway: PushGateway = Depends(get_push)):
    if not isinstance(gateway, WebSocketPushGateway):
        await websocket.close(code=1008)
        return
    await gateway.connect(token, websocket)
    try:
        while True:
            # Keep alive / receive pings from client if any
            await websocket.receive_text()
    except WebSocketDisconnect:
        gateway.disconnect(token, websocket)


# -----------------------------
# Health/Test
# -----------------------------
@app.get("/")
def read_root():
    return {"message": "Collabolab API running"}


@app.get("/test")
def test_database(db=Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": settings.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
