"""Tests for access: role scoping shared by REST and realtime."""

from __future__ import annotations

import pytest
from bson import ObjectId

from access import Caller, find_accessible_project, project_filter, task_filter
from errors import NotFound


def _caller(role: str, **kw) -> Caller:
    return Caller(id=ObjectId(), role=role, company_id=kw.get("company_id", ObjectId()), team_ids=kw.get("team_ids", []))


class TestProjectFilter:
    def test_master_admin_is_not_company_scoped(self):
        q = project_filter(_caller("masteradmin"))
        assert q == {"is_active": True}

    def test_master_admin_can_ask_for_one_company(self):
        cid = ObjectId()
        q = project_filter(_caller("masteradmin"), company_id=cid)
        assert q == {"is_active": True, "company": cid}

    def test_company_admin_sees_whole_company(self):
        caller = _caller("admin")
        q = project_filter(caller)
        assert q == {"is_active": True, "company": caller.company_id}

    @pytest.mark.parametrize("role", ["employee", "team_leader", "bug_fixer"])
    def test_member_roles_need_membership_or_team(self, role):
        team = ObjectId()
        caller = _caller(role, team_ids=[team])
        q = project_filter(caller)
        assert q["company"] == caller.company_id
        assert q["$or"] == [{"members": caller.id}, {"team": {"$in": [team]}}]


class TestTaskFilter:
    def test_member_sees_assigned_or_created(self):
        caller = _caller("employee")
        q = task_filter(caller)
        assert q["$or"] == [{"assigned_to": caller.id}, {"created_by": caller.id}]

    def test_admin_sees_company_tasks(self):
        caller = _caller("admin")
        assert task_filter(caller) == {"is_active": True, "company": caller.company_id}


class TestFindAccessibleProject:
    def test_member_of_project(self, db, world, user_doc):
        project = find_accessible_project(db, Caller.from_user(user_doc(world.bob)), world.project["_id"])
        assert project["_id"] == world.project["_id"]

    def test_team_match_without_membership(self, db, world, user_doc):
        db["project"].update_one({"_id": world.project["_id"]}, {"$pull": {"members": world.bob["_id"]}})
        project = find_accessible_project(db, Caller.from_user(user_doc(world.bob)), str(world.project["_id"]))
        assert project["_id"] == world.project["_id"]

    def test_outsider_in_same_company_is_refused(self, db, world, user_doc):
        with pytest.raises(NotFound):
            find_accessible_project(db, Caller.from_user(user_doc(world.carol)), world.project["_id"])

    def test_other_company_is_refused(self, db, world, user_doc):
        with pytest.raises(NotFound):
            find_accessible_project(db, Caller.from_user(user_doc(world.dave)), world.project["_id"])

    def test_inactive_project_is_hidden_from_admin(self, db, world, user_doc):
        db["project"].update_one({"_id": world.project["_id"]}, {"$set": {"is_active": False}})
        with pytest.raises(NotFound):
            find_accessible_project(db, Caller.from_user(user_doc(world.admin)), world.project["_id"])

    def test_master_admin_sees_any_company(self, db, world, user_doc):
        project = find_accessible_project(db, Caller.from_user(user_doc(world.master)), world.project["_id"])
        assert project["name"] == "Apollo"
