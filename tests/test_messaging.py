from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

import messaging

COMPLAINT = "0000000000000000000000c1"
OTHER_COMPLAINT = "0000000000000000000000c2"
AGENT = "0000000000000000000000aa"
OTHER_AGENT = "0000000000000000000000bb"


def _seed(db, complaint_id, name, read=False, minutes=0):
    base = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    return db["message"].insert_one({
        "complaint_id": complaint_id,
        "name": name,
        "message": f"from {name}",
        "attachments": [],
        "read": read,
        "sent_at": base + timedelta(minutes=minutes),
    }).inserted_id


@pytest.mark.asyncio
async def test_create_message_broadcasts_new_message(db, broadcaster):
    saved = await messaging.create_message(db, broadcaster, COMPLAINT, "Asha", "Any update?")

    assert saved["read"] is False
    assert saved["complaint_id"] == COMPLAINT
    assert broadcaster.of("newMessage") == [saved]


def test_list_messages_in_send_order(db):
    _seed(db, COMPLAINT, "Agent G1", minutes=5)
    _seed(db, COMPLAINT, "Asha", minutes=1)
    _seed(db, OTHER_COMPLAINT, "Asha", minutes=0)

    listed = messaging.list_messages(db, COMPLAINT)

    assert [m["name"] for m in listed] == ["Asha", "Agent G1"]


def test_list_messages_for_unknown_complaint_is_empty(db):
    assert messaging.list_messages(db, "0000000000000000000000ff") == []


def test_mark_read_only_flips_messages_from_others(db):
    _seed(db, COMPLAINT, "Asha")
    _seed(db, COMPLAINT, "Agent G1")
    _seed(db, COMPLAINT, "Agent G1", minutes=1)
    _seed(db, OTHER_COMPLAINT, "Agent G1")

    assert messaging.mark_read(db, COMPLAINT, "Asha") == 2

    assert db["message"].find_one({"complaint_id": COMPLAINT, "name": "Asha"})["read"] is False
    assert db["message"].count_documents({"complaint_id": COMPLAINT, "name": "Agent G1", "read": True}) == 2
    assert db["message"].find_one({"complaint_id": OTHER_COMPLAINT})["read"] is False


def test_mark_read_is_idempotent(db):
    _seed(db, COMPLAINT, "Agent G1")
    messaging.mark_read(db, COMPLAINT, "Asha")
    before = list(db["message"].find({}, {"_id": 0}))

    assert messaging.mark_read(db, COMPLAINT, "Asha") == 0

    assert list(db["message"].find({}, {"_id": 0})) == before


@pytest.mark.asyncio
async def test_uppercase_complaint_id_reaches_the_same_thread(db, broadcaster):
    saved = await messaging.create_message(db, broadcaster, COMPLAINT.upper(), "Agent G1", "On it")

    assert saved["complaint_id"] == COMPLAINT
    assert [m["id"] for m in messaging.list_messages(db, COMPLAINT)] == [saved["id"]]
    assert messaging.mark_read(db, COMPLAINT.upper(), "Asha") == 1
    assert messaging.unread_counts(db, "Asha") == {}


def test_unread_counts_cover_all_complaints(db):
    _seed(db, COMPLAINT, "Agent G1")
    _seed(db, COMPLAINT, "Agent G1", minutes=1)
    _seed(db, COMPLAINT, "Asha")
    _seed(db, COMPLAINT, "Agent G1", read=True)
    _seed(db, OTHER_COMPLAINT, "Ravi")

    assert messaging.unread_counts(db, "Asha") == {COMPLAINT: 2, OTHER_COMPLAINT: 1}
    assert messaging.unread_counts(db, "Agent G1") == {COMPLAINT: 1, OTHER_COMPLAINT: 1}


def test_feedback_records_assigned_agent(db):
    db["assigned"].insert_one({"complaint_id": COMPLAINT, "agent_id": AGENT, "agent_name": "G1"})

    saved = messaging.create_feedback(db, "user-1", COMPLAINT, 5, "Quick fix")

    assert saved["agent_id"] == AGENT
    assert saved["rating"] == 5
    assert saved["comment"] == "Quick fix"


def test_feedback_without_assignment_has_no_agent(db):
    saved = messaging.create_feedback(db, "user-1", COMPLAINT, 3)

    assert saved["agent_id"] is None


@pytest.mark.parametrize("rating", [0, 6])
def test_feedback_rating_out_of_bounds_is_not_stored(db, rating):
    with pytest.raises(ValidationError):
        messaging.create_feedback(db, "user-1", COMPLAINT, rating)

    assert db["feedback"].count_documents({}) == 0


def test_complaint_may_collect_several_feedback_records(db):
    first = messaging.create_feedback(db, "user-1", COMPLAINT, 2)
    messaging.create_feedback(db, "user-1", COMPLAINT, 4)

    assert db["feedback"].count_documents({"complaint_id": COMPLAINT}) == 2
    assert messaging.feedback_for_complaint(db, COMPLAINT)["id"] == first["id"]
    assert messaging.feedback_for_complaint(db, OTHER_COMPLAINT) is None


def test_feedback_for_agent_attaches_user_name(db):
    uid = str(db["user"].insert_one({"name": "Asha", "email": "a@example.com", "password": "x"}).inserted_id)
    db["assigned"].insert_one({"complaint_id": COMPLAINT, "agent_id": AGENT, "agent_name": "G1"})
    messaging.create_feedback(db, uid, COMPLAINT, 4)

    listed = messaging.feedback_for_agent(db, AGENT)

    assert listed[0]["user"] == {"id": uid, "name": "Asha"}
    assert messaging.feedback_for_agent(db, OTHER_AGENT) == []
