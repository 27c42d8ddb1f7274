import pytest

from errors import NotFound
from services.chat import SYSTEM_AUTHOR

pytestmark = pytest.mark.anyio


@pytest.fixture
async def alpha(services, make_user):
    alice = make_user("Alice")
    pid = await services.membership.create_project(alice, "Alpha")
    return alice, pid


async def test_system_messages_are_logged_without_push(services, push, alpha):
    alice, pid = alpha

    await services.chat.post_system_message(pid, "Maintenance tonight")
    await services.fanout.flush()

    message = services.db["chat_message"].find_one({"project_id": pid})
    assert message["from"] == SYSTEM_AUTHOR
    assert message["user_id"] is None
    assert message["text"] == "Maintenance tonight"
    assert push.sent_to_topic(str(pid)) == []


async def test_user_messages_are_broadcast_to_the_project_topic(services, push, alpha):
    alice, pid = alpha

    await services.chat.post_user_message(pid, alice, "Alice", "Hi all")
    await services.fanout.flush()

    message = services.db["chat_message"].find_one({"project_id": pid})
    assert message["from"] == "Alice"
    assert message["user_id"] == alice
    assert push.sent_to_topic(str(pid)) == [{
        "notification": {"title": "New message in Alpha", "body": "Alice sent a new message"},
        "topic": str(pid),
    }]


async def test_history_is_ordered_by_timestamp(services, alpha):
    alice, pid = alpha
    await services.chat.post_user_message(pid, alice, "Alice", "first")
    await services.chat.post_system_message(pid, "second")
    await services.chat.post_user_message(pid, alice, "Alice", "third")

    assert [m["text"] for m in services.chat.history(pid)] == ["first", "second", "third"]


async def test_message_to_unknown_project_is_not_found(services, alpha):
    alice, pid = alpha
    with pytest.raises(NotFound):
        await services.chat.post_user_message("65f000000000000000000000", alice, "Alice", "hello")


async def test_history_keeps_the_newest_messages(services, alpha):
    alice, pid = alpha
    for i in range(101):
        await services.chat.post_system_message(pid, f"m{i}")

    texts = [m["text"] for m in services.chat.history(pid)]
    assert len(texts) == 100
    assert texts[0] == "m1"
    assert texts[-1] == "m100"
