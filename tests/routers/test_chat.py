"""
Tests for the chat router
"""
import pytest
from fastapi import status
from models import Barter, FriendRequest, Chat
from conftest import headers_for


@pytest.fixture
def active_barter(db, test_user, other_user):
    fr = FriendRequest(requester_id=test_user.id, addressee_id=other_user.id, status="accepted", barter_proposed=True)
    db.add(fr)
    db.flush()
    barter = Barter(
        requester_id=test_user.id,
        accepter_id=other_user.id,
        friend_request_id=fr.id,
        offered_skill="Guitar",
        wanted_skill="Spanish",
        status="accepted",
    )
    db.add(barter)
    db.commit()
    db.refresh(barter)
    return barter


def open_chat(client, headers, other_user_id):
    return client.post("/api/chat/get-or-create", headers=headers, json={"otherUserId": other_user_id})


def test_get_or_create_is_stable_for_both_sides(client, db, auth_headers, other_headers, test_user, other_user, active_barter):
    first = open_chat(client, auth_headers, other_user.id)
    assert first.status_code == status.HTTP_200_OK
    second = open_chat(client, other_headers, test_user.id)
    assert second.json()["chatId"] == first.json()["chatId"]
    assert db.query(Chat).count() == 1


def test_chat_requires_active_barter(client, auth_headers, other_user):
    response = open_chat(client, auth_headers, other_user.id)
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_send_message_notifies_recipient(client, db, auth_headers, other_user, active_barter, sent_pushes):
    other_user.expo_push_token = "ExponentPushToken[other]"
    db.commit()
    chat_id = open_chat(client, auth_headers, other_user.id).json()["chatId"]

    response = client.post("/api/chat/send", headers=auth_headers, json={"chatId": chat_id, "content": "Hola!"})
    assert response.status_code == status.HTTP_200_OK
    message = response.json()["message"]
    assert message["content"] == "Hola!"
    assert message["type"] == "text"

    assert len(sent_pushes) == 1
    assert sent_pushes[0]["to"] == "ExponentPushToken[other]"
    assert sent_pushes[0]["data"]["chatId"] == chat_id


def test_send_message_skips_push_when_disabled(client, db, auth_headers, other_user, active_barter, sent_pushes):
    other_user.expo_push_token = "ExponentPushToken[other]"
    other_user.notify_push = False
    db.commit()
    chat_id = open_chat(client, auth_headers, other_user.id).json()["chatId"]

    client.post("/api/chat/send", headers=auth_headers, json={"chatId": chat_id, "content": "Hola!"})
    assert sent_pushes == []


def test_send_message_validation(client, auth_headers, other_user, active_barter):
    chat_id = open_chat(client, auth_headers, other_user.id).json()["chatId"]

    response = client.post("/api/chat/send", headers=auth_headers, json={"chatId": chat_id, "content": "   "})
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    response = client.post("/api/chat/send", headers=auth_headers, json={"chatId": chat_id, "content": "x", "type": "video"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_send_message_to_foreign_chat(client, make_user, auth_headers, other_user, active_barter):
    chat_id = open_chat(client, auth_headers, other_user.id).json()["chatId"]
    outsider = make_user()
    response = client.post("/api/chat/send", headers=headers_for(outsider), json={"chatId": chat_id, "content": "hi"})
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_messages_blocked_after_barter_ends(client, db, auth_headers, other_user, active_barter):
    chat_id = open_chat(client, auth_headers, other_user.id).json()["chatId"]
    active_barter.status = "completed"
    db.commit()

    response = client.post("/api/chat/send", headers=auth_headers, json={"chatId": chat_id, "content": "still there?"})
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_mark_seen_and_unread_counts(client, auth_headers, other_headers, other_user, active_barter):
    chat_id = open_chat(client, auth_headers, other_user.id).json()["chatId"]
    client.post("/api/chat/send", headers=auth_headers, json={"chatId": chat_id, "content": "one"})
    client.post("/api/chat/send", headers=auth_headers, json={"chatId": chat_id, "content": "two"})

    chats = client.get("/api/chat/list", headers=other_headers).json()["chats"]
    assert chats[0]["chatId"] == chat_id
    assert chats[0]["unreadCount"] == 2
    assert chats[0]["lastMessage"]["content"] == "two"

    response = client.put(f"/api/chat/seen/{chat_id}", headers=other_headers)
    assert response.json()["marked"] == 2

    chats = client.get("/api/chat/list", headers=other_headers).json()["chats"]
    assert chats[0]["unreadCount"] == 0


def test_get_chat_messages(client, auth_headers, other_headers, test_user, other_user, active_barter):
    chat_id = open_chat(client, auth_headers, other_user.id).json()["chatId"]
    client.post("/api/chat/send", headers=auth_headers, json={"chatId": chat_id, "content": "hello"})

    response = client.get(f"/api/chat/{chat_id}", headers=other_headers)
    assert response.status_code == status.HTTP_200_OK
    chat = response.json()["chat"]
    assert chat["otherUser"]["id"] == test_user.id
    assert [m["content"] for m in chat["messages"]] == ["hello"]


def test_chat_list_empty_without_barters(client, auth_headers):
    response = client.get("/api/chat/list", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["chats"] == []
