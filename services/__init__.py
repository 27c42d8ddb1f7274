from pymongo.database import Database

from services.chat import ChatMessenger
from services.identity import IdentityProvider
from services.invites import InviteWorkflow
from services.membership import MembershipEngine
from services.notifications import NotificationFanout
from services.permissions import PermissionStore
from services.push import PushGateway
from services.tasks import TaskLifecycle
from services.users import UserDirectory


class Services:
    """The components one request works with, wired to the same store and gateway."""

    def __init__(self, db: Database, push: PushGateway):
        self.db = db
        self.fanout = NotificationFanout(db, push)
        self.permissions = PermissionStore(db)
        self.identity = IdentityProvider(db)
        self.chat = ChatMessenger(db, self.fanout)
        self.tasks = TaskLifecycle(db, self.fanout, self.permissions, self.chat)
        self.membership = MembershipEngine(
            db, self.fanout, self.permissions, self.tasks, self.chat, self.identity
        )
        self.invites = InviteWorkflow(db, self.membership, self.fanout, self.chat)
        self.users = UserDirectory(db, self.identity, self.fanout)
