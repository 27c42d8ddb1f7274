import pytest

from database import create_document
from errors import InvalidRequest, NotFound
from schemas import COMPLETE, Permission
from services.sentinel import LEGACY_UNASSIGNED_ID, is_unassigned, wire_assignee

pytestmark = pytest.mark.anyio


@pytest.fixture
async def team(services, make_user):
    alice = make_user("Alice")
    bob = make_user("Bob")
    carol = make_user("Carol")
    pid = await services.membership.create_project(alice, "Alpha")
    await services.membership.join_project(bob, pid)
    await services.membership.join_project(carol, pid)
    return alice, bob, carol, pid


def titles_for(db, user_id):
    return [n["title"] for n in db["notification"].find({"user_id": user_id})]


def test_sentinel_values_read_as_unassigned():
    assert is_unassigned(None)
    assert is_unassigned("")
    assert is_unassigned(LEGACY_UNASSIGNED_ID)
    assert not is_unassigned("65f000000000000000000000")
    assert wire_assignee(LEGACY_UNASSIGNED_ID) is None


async def test_assign_task_notifies_assignee(services, team):
    alice, bob, carol, pid = team

    await services.tasks.assign_task(pid, bob)

    record = services.db["notification"].find_one({"user_id": bob})
    assert record["title"] == "New Task"
    assert record["description"] == "a task has been assigned to you in Alpha"


async def test_update_task_notifies_current_assignee_only(services, team):
    alice, bob, carol, pid = team
    assigned = services.tasks.create_task(pid, "Write docs", str(bob))
    unassigned = services.tasks.create_task(pid, "Backlog item")

    assert await services.tasks.update_task(pid, assigned["_id"]) is True
    assert await services.tasks.update_task(pid, unassigned["_id"]) is False

    record = services.db["notification"].find_one({"user_id": bob})
    assert record["description"] == 'task "Write docs" information has been updated'
    assert services.db["notification"].count_documents({}) == 1


async def test_review_goes_to_review_permission_holders(services, team):
    alice, bob, carol, pid = team
    services.permissions.grant(pid, carol, Permission(review_task=True))

    assert await services.tasks.send_for_review(pid) == 2

    assert titles_for(services.db, alice) == ["Task for review"]
    assert titles_for(services.db, carol) == ["Task for review"]
    assert titles_for(services.db, bob) == []


async def test_approve_task_notifies_and_announces(services, team):
    alice, bob, carol, pid = team
    task = services.tasks.create_task(pid, "Write docs", str(bob))

    assert await services.tasks.approve_task(pid, task["_id"]) is True

    assert titles_for(services.db, bob) == ["Task approved"]
    texts = [m["text"] for m in services.db["chat_message"].find({"project_id": pid})]
    assert texts == ['Bob has completed "Write docs" task']


async def test_approve_unassigned_task_is_a_no_op(services, team):
    alice, bob, carol, pid = team
    task = services.tasks.create_task(pid, "Backlog item")
    legacy_id = create_document(services.db["task"], {
        "project_id": pid, "name": "Old item", "status": "To do", "assigned_to": LEGACY_UNASSIGNED_ID,
    })

    assert await services.tasks.approve_task(pid, task["_id"]) is False
    assert await services.tasks.approve_task(pid, legacy_id) is False
    assert services.db["chat_message"].count_documents({}) == 0
    assert services.db["notification"].count_documents({}) == 0


async def test_approve_unknown_task_is_not_found(services, team):
    alice, bob, carol, pid = team
    with pytest.raises(NotFound):
        await services.tasks.approve_task(pid, "65f000000000000000000000")


async def test_user_task_paths_skip_completed_tasks(services, team):
    alice, bob, carol, pid = team
    open_task = services.tasks.create_task(pid, "Write docs", str(bob))
    services.tasks.create_task(pid, "Ship it", str(bob), status=COMPLETE)
    services.tasks.create_task(pid, "Not mine", str(carol))

    assert services.tasks.user_task_paths(bob) == [f"projects/{pid}/tasks/{open_task['_id']}"]


async def test_tasks_cannot_be_assigned_to_outsiders(services, make_user, team):
    alice, bob, carol, pid = team
    dave = make_user("Dave")

    with pytest.raises(InvalidRequest):
        services.tasks.create_task(pid, "Write docs", str(dave))
    assert services.db["task"].count_documents({}) == 0
