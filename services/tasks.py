import logging
from typing import List, Optional

from pymongo.database import Database

from database import create_document, oid
from errors import InvalidRequest, NotFound, ServiceError
from schemas import COMPLETE, Task
from services.chat import ChatMessenger
from services.notifications import NotificationFanout
from services.permissions import PermissionStore
from services.sentinel import UNASSIGNED, is_unassigned

logger = logging.getLogger(__name__)


class TaskLifecycle:
    def __init__(self, db: Database, fanout: NotificationFanout,
                 permissions: PermissionStore, chat: ChatMessenger):
        self.db = db
        self.fanout = fanout
        self.permissions = permissions
        self.chat = chat

    def _project(self, project_id):
        project = self.db["project"].find_one({"_id": oid(project_id)})
        if not project:
            raise NotFound("Project not found")
        return project

    def _task(self, project_id, task_id):
        task = self.db["task"].find_one({"_id": oid(task_id), "project_id": oid(project_id)})
        if not task:
            raise NotFound("Task not found")
        return task

    def create_task(self, project_id, name: str, assigned_to: Optional[str] = None, status: str = "To do"):
        project = self._project(project_id)
        assignee = UNASSIGNED
        if not is_unassigned(assigned_to):
            assignee = oid(assigned_to)
            if assignee not in project.get("member_ids", []):
                raise InvalidRequest("Tasks can only be assigned to project members")
        doc = Task(project_id=str(project["_id"]), name=name, status=status).model_dump()
        doc["project_id"] = project["_id"]
        doc["assigned_to"] = assignee
        task_id = create_document(self.db["task"], doc)
        logger.info("Task %s created in %s", task_id, project["_id"])
        return self.db["task"].find_one({"_id": task_id})

    async def assign_task(self, project_id, user_id):
        project = self._project(project_id)
        await self.fanout.notify_user(
            user_id, "New Task", f"a task has been assigned to you in {project['name']}"
        )

    async def update_task(self, project_id, task_id) -> bool:
        task = self._task(project_id, task_id)
        if is_unassigned(task.get("assigned_to")):
            return False
        await self.fanout.notify_user(
            task["assigned_to"], "Task updated", f'task "{task["name"]}" information has been updated'
        )
        return True

    async def send_for_review(self, project_id) -> int:
        project = self._project(project_id)
        notified = 0
        for reviewer_id in self.permissions.holders(project["_id"], "review_task"):
            try:
                await self.fanout.notify_user(
                    reviewer_id, "Task for review", f"A task has been sent for review in {project['name']}"
                )
                notified += 1
            except ServiceError as e:
                logger.warning("Could not notify reviewer %s: %s", reviewer_id, e.message)
        return notified

    async def approve_task(self, project_id, task_id) -> bool:
        task = self._task(project_id, task_id)
        assignee_id = task.get("assigned_to")
        if is_unassigned(assignee_id):
            return False
        await self.fanout.notify_user(assignee_id, "Task approved", "Your task has been approved")
        assignee = self.db["user"].find_one({"_id": assignee_id}, {"name": 1})
        if assignee:
            await self.chat.post_system_message(
                task["project_id"], f'{assignee["name"]} has completed "{task["name"]}" task'
            )
        return True

    def release_assignments(self, project_id, user_id) -> int:
        """Point every task of ``user_id`` in the project back to nobody."""
        res = self.db["task"].update_many(
            {"project_id": oid(project_id), "assigned_to": oid(user_id)},
            {"$set": {"assigned_to": UNASSIGNED}},
        )
        if res.modified_count:
            logger.info("Released %d tasks of %s in %s", res.modified_count, user_id, project_id)
        return res.modified_count

    def user_task_paths(self, user_id) -> List[str]:
        user = self.db["user"].find_one({"_id": oid(user_id)}, {"projects": 1})
        if not user:
            raise NotFound("User not found")
        cursor = self.db["task"].find({
            "project_id": {"$in": user.get("projects", [])},
            "assigned_to": user["_id"],
            "status": {"$ne": COMPLETE},
        })
        return [f"projects/{t['project_id']}/tasks/{t['_id']}" for t in cursor]

    def delete_for_project(self, project_id) -> int:
        return self.db["task"].delete_many({"project_id": oid(project_id)}).deleted_count
