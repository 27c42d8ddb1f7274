import pytest

from errors import AlreadyExists, NotFound
from schemas import Permission
from services.invites import InviteWorkflow

pytestmark = pytest.mark.anyio


@pytest.fixture
async def alpha(services, make_user):
    alice = make_user("Alice")
    bob = make_user("Bob", token="bob-device")
    pid = await services.membership.create_project(alice, "Alpha", "first project")
    return alice, bob, pid


async def test_invite_then_accept_joins_project(services, push, alpha):
    alice, bob, pid = alpha

    await services.invites.create_invite(pid, bob)
    invite = services.db["invite"].find_one({"user_id": bob, "project_id": pid})
    assert invite["name"] == "Alpha"
    assert invite["description"] == "first project"
    record = services.db["notification"].find_one({"user_id": bob})
    assert record["title"] == "Project invite"
    assert record["description"] == "You have been invited to join Alpha"

    await services.invites.accept_invite(bob, pid)
    await services.fanout.flush()

    assert bob in services.db["project"].find_one({"_id": pid})["member_ids"]
    assert pid in services.db["user"].find_one({"_id": bob})["projects"]
    assert services.permissions.get(pid, bob) == Permission()
    assert services.db["invite"].count_documents({"user_id": bob, "project_id": pid}) == 0
    texts = [m["text"] for m in services.db["chat_message"].find({"project_id": pid})]
    assert texts == ["Bob has joined the project"]
    assert "bob-device" in push.topic_tokens[str(pid)]


async def test_reinvite_overwrites_with_latest_snapshot(services, alpha):
    alice, bob, pid = alpha

    await services.invites.create_invite(pid, bob)
    services.db["project"].update_one({"_id": pid}, {"$set": {"name": "Alpha v2"}})
    await services.invites.create_invite(pid, bob)

    invites = list(services.db["invite"].find({"user_id": bob, "project_id": pid}))
    assert len(invites) == 1
    assert invites[0]["name"] == "Alpha v2"


async def test_accept_without_invite_still_joins(services, alpha):
    alice, bob, pid = alpha

    await services.invites.accept_invite(bob, pid)

    assert bob in services.db["project"].find_one({"_id": pid})["member_ids"]


async def test_accept_without_invite_fails_when_invites_are_required(services, alpha):
    alice, bob, pid = alpha
    workflow = InviteWorkflow(services.db, services.membership, services.fanout, services.chat,
                              require_invite=True)

    with pytest.raises(NotFound):
        await workflow.accept_invite(bob, pid)

    assert bob not in services.db["project"].find_one({"_id": pid})["member_ids"]
    assert services.db["user"].find_one({"_id": bob})["projects"] == []


async def test_inviting_a_member_is_rejected(services, alpha):
    alice, bob, pid = alpha
    await services.membership.join_project(bob, pid)

    with pytest.raises(AlreadyExists):
        await services.invites.create_invite(pid, bob)
    assert services.db["invite"].count_documents({}) == 0


async def test_decline_removes_pending_invite(services, alpha):
    alice, bob, pid = alpha
    await services.invites.create_invite(pid, bob)
    assert [i["project_id"] for i in services.invites.pending(bob)] == [pid]

    assert services.invites.decline_invite(bob, pid) is True
    assert services.invites.pending(bob) == []
    assert bob not in services.db["project"].find_one({"_id": pid})["member_ids"]


async def test_accepting_again_does_not_announce_twice(services, alpha):
    alice, bob, pid = alpha
    await services.invites.create_invite(pid, bob)
    await services.invites.accept_invite(bob, pid)

    await services.invites.accept_invite(bob, pid)

    texts = [m["text"] for m in services.db["chat_message"].find({"project_id": pid})]
    assert texts == ["Bob has joined the project"]
    assert services.db["invite"].count_documents({"user_id": bob, "project_id": pid}) == 0
    assert services.db["project"].find_one({"_id": pid})["member_ids"].count(bob) == 1
