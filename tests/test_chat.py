"""Tests for chat: payload selection, persistence and the REST history."""

from __future__ import annotations

import os

import pytest
from bson import ObjectId

from access import Caller
from chat import build_message, post_message
from errors import BadRequest, NotFound

FILE = {"filename": "1-ab.txt", "original_name": "notes.txt", "path": "uploads/1-ab.txt", "size": 12, "mime_type": "text/plain"}


class TestBuildMessage:
    def setup_method(self):
        self.project = ObjectId()
        self.sender = ObjectId()

    def test_text(self):
        msg = build_message(self.project, self.sender, {"content": "hello"})
        assert msg["message_type"] == "text"
        assert msg["content"] == "hello"
        assert "task" not in msg

    def test_file(self):
        msg = build_message(self.project, self.sender, {"file": FILE})
        assert msg["message_type"] == "file"
        assert msg["file"]["original_name"] == "notes.txt"

    def test_code(self):
        msg = build_message(self.project, self.sender, {"code": {"language": "python", "content": "print(1)"}})
        assert msg["message_type"] == "code"
        assert msg["code"] == {"language": "python", "content": "print(1)"}

    def test_task_scope(self):
        task = ObjectId()
        msg = build_message(self.project, self.sender, {"content": "hi", "taskId": str(task)})
        assert msg["task"] == task

    @pytest.mark.parametrize("payload", [{}, {"content": ""}, {"content": None, "file": None, "code": None}])
    def test_no_payload_is_refused(self, payload):
        with pytest.raises(BadRequest, match="content is required"):
            build_message(self.project, self.sender, payload)

    def test_whitespace_text_is_refused(self):
        with pytest.raises(BadRequest):
            build_message(self.project, self.sender, {"content": "   "})

    def test_two_payload_kinds_are_refused(self):
        with pytest.raises(BadRequest, match="exactly one"):
            build_message(self.project, self.sender, {"content": "hi", "code": {"content": "x"}})

    def test_message_type_must_agree(self):
        with pytest.raises(BadRequest, match="does not match"):
            build_message(self.project, self.sender, {"content": "hi", "messageType": "code"})

    def test_malformed_file_is_refused(self):
        with pytest.raises(BadRequest, match="Invalid file payload"):
            build_message(self.project, self.sender, {"file": {"filename": "x"}})


class TestPostMessage:
    def test_persists_and_joins_sender(self, db, world, user_doc):
        result = post_message(db, Caller.from_user(user_doc(world.alice)), {"projectId": str(world.project["_id"]), "content": "hi"})
        msg = result["message"]
        assert msg["sender"]["name"] == "Alice"
        assert "password" not in msg["sender"]
        assert db["chat_message"].count_documents({}) == 1

    def test_outsider_cannot_post(self, db, world, user_doc):
        with pytest.raises(NotFound):
            post_message(db, Caller.from_user(user_doc(world.carol)), {"projectId": str(world.project["_id"]), "content": "hi"})
        assert db["chat_message"].count_documents({}) == 0

    def test_empty_message_is_not_persisted(self, db, world, user_doc):
        with pytest.raises(BadRequest):
            post_message(db, Caller.from_user(user_doc(world.alice)), {"projectId": str(world.project["_id"])})
        assert db["chat_message"].count_documents({}) == 0

    def test_chat_room_must_be_the_projects_own(self, db, world, user_doc):
        alice = Caller.from_user(user_doc(world.alice))
        pid = str(world.project["_id"])
        with pytest.raises(BadRequest, match="does not belong"):
            post_message(db, alice, {"projectId": pid, "chatRoom": "project_elsewhere", "content": "hi"})
        assert db["chat_message"].count_documents({}) == 0
        post_message(db, alice, {"projectId": pid, "chatRoom": "project_apollo", "content": "hi"})
        assert db["chat_message"].count_documents({}) == 1

    def test_task_must_belong_to_project(self, db, world, user_doc):
        with pytest.raises(NotFound):
            post_message(
                db, Caller.from_user(user_doc(world.alice)),
                {"projectId": str(world.project["_id"]), "taskId": str(ObjectId()), "content": "hi"},
            )


class TestChatRoutes:
    def test_history_is_ordered_and_filterable(self, client, db, world, user_doc, auth_headers):
        alice = Caller.from_user(user_doc(world.alice))
        pid = str(world.project["_id"])
        post_message(db, alice, {"projectId": pid, "content": "first"})
        post_message(db, alice, {"projectId": pid, "content": "second", "taskId": str(world.task["_id"])})

        resp = client.get(f"/api/chat/{pid}", headers=auth_headers("bob"))
        assert resp.status_code == 200
        assert [m["content"] for m in resp.json()] == ["first", "second"]

        resp = client.get(f"/api/chat/{pid}", params={"taskId": str(world.task["_id"])}, headers=auth_headers("bob"))
        assert [m["content"] for m in resp.json()] == ["second"]

    def test_history_uses_project_access(self, client, world, auth_headers):
        resp = client.get(f"/api/chat/{world.project['_id']}", headers=auth_headers("carol"))
        assert resp.status_code == 404
        assert resp.json() == {"message": "Project not found"}

    def test_history_requires_auth(self, client, world):
        resp = client.get(f"/api/chat/{world.project['_id']}")
        assert resp.status_code == 401
        assert resp.json()["message"] == "No token, authorization denied"

    def test_upload_returns_descriptor(self, client, world, auth_headers, settings):
        resp = client.post(
            "/api/chat/upload",
            files={"file": ("notes.txt", b"hello world!", "text/plain")},
            headers=auth_headers("alice"),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["original_name"] == "notes.txt"
        assert body["size"] == 12
        assert body["filename"].endswith(".txt")
        assert body["path"].startswith(settings.upload_dir)

    def test_upload_too_large(self, client, world, auth_headers, settings):
        resp = client.post(
            "/api/chat/upload",
            files={"file": ("big.bin", b"x" * 2048, "application/octet-stream")},
            headers=auth_headers("alice"),
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "File too large"
        assert not os.path.exists(settings.upload_dir)

    def test_upload_at_the_limit_is_accepted(self, client, world, auth_headers, settings):
        resp = client.post(
            "/api/chat/upload",
            files={"file": ("edge.bin", b"x" * settings.max_file_size, "application/octet-stream")},
            headers=auth_headers("alice"),
        )
        assert resp.status_code == 200
        assert resp.json()["size"] == settings.max_file_size
        assert os.path.getsize(resp.json()["path"]) == settings.max_file_size

    def test_upload_without_file(self, client, world, auth_headers):
        resp = client.post("/api/chat/upload", headers=auth_headers("alice"))
        assert resp.status_code == 400
        assert resp.json()["message"] == "No file uploaded"

    def test_sender_can_edit_text(self, client, db, world, user_doc, auth_headers):
        result = post_message(db, Caller.from_user(user_doc(world.alice)), {"projectId": str(world.project["_id"]), "content": "helo"})
        mid = result["message"]["id"]
        resp = client.put(f"/api/chat/messages/{mid}", json={"content": "hello"}, headers=auth_headers("alice"))
        assert resp.status_code == 200
        assert resp.json()["content"] == "hello"
        assert resp.json()["is_edited"] is True

        resp = client.put(f"/api/chat/messages/{mid}", json={"content": "hijack"}, headers=auth_headers("bob"))
        assert resp.status_code == 404
