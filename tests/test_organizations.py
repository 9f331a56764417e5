"""
Integration tests for Organization endpoints and membership management.

Tests cover:
- Org creation and slug generation
- Listing, reading and updating orgs
- Member role changes and removal, including last-admin protection
- Manager vs technician authority
- Invitation lifecycle (invite, preview, accept, cancel, expiry)
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import update

from tenantry.models.base import utcnow
from tenantry.models.invitation import Invitation
from tenantry.models.membership import Membership
from tenantry.models.user import User
from tenantry.services import organizations as org_service

ORGS = "/api/v1/orgs"


# ---------------------------------------------------------------------------
# Slugs (no HTTP)
# ---------------------------------------------------------------------------

class TestSlugify:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Acme", "acme"),
            ("Acme Corp, Inc.", "acme-corp-inc"),
            ("  --Hello   World--  ", "hello-world"),
            ("AB", "org-ab"),
            ("x" * 60, "x" * 40),
        ],
    )
    def test_slugify(self, name, expected):
        assert org_service.slugify(name) == expected


class TestGenerateUniqueSlug:
    @pytest.fixture
    async def owner(self, db_session):
        user = User(email="slugs@example.com", password_hash="x", first_name="S", last_name="L")
        db_session.add(user)
        await db_session.flush()
        return user

    async def test_suffixes_on_collision(self, db_session, owner):
        first, _ = await org_service.create_org("Acme", owner.id, db_session)
        second, _ = await org_service.create_org("Acme", owner.id, db_session)
        third, _ = await org_service.create_org("ACME!", owner.id, db_session)
        assert [first.slug, second.slug, third.slug] == ["acme", "acme-1", "acme-2"]

    async def test_reserved_path_segments_skipped(self, db_session, owner):
        org, _ = await org_service.create_org("Invitations", owner.id, db_session)
        assert org.slug == "invitations-1"

    async def test_soft_deleted_org_keeps_slug(self, db_session, owner):
        org, _ = await org_service.create_org("Acme", owner.id, db_session)
        org.deleted_at = utcnow()
        await db_session.flush()
        assert await org_service.generate_unique_slug("Acme", db_session) == "acme-1"


# ---------------------------------------------------------------------------
# Org CRUD
# ---------------------------------------------------------------------------

class TestOrgCrud:
    async def test_create_makes_creator_admin(self, client, register_user, create_org):
        owner = await register_user("owner@example.com")
        body = await create_org(owner["headers"], name="Acme")
        assert body["org"]["slug"] == "acme"
        assert body["org"]["status"] == "active"
        assert body["org"]["settings"] == {"allow_member_invites": True, "default_role": "technician"}
        assert body["membership"]["role"] == "org_admin"
        assert body["membership"]["user_id"] == owner["user"]["id"]

    async def test_explicit_slug_conflict(self, client, register_user, create_org):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme", slug="acme-hq")
        resp = await client.post(
            ORGS, json={"name": "Other", "slug": "acme-hq"}, headers=owner["headers"]
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["message"] == "Organization slug is already taken"

    async def test_invalid_slug_rejected(self, client, register_user):
        owner = await register_user("owner@example.com")
        resp = await client.post(
            ORGS, json={"name": "Acme", "slug": "Not Valid!"}, headers=owner["headers"]
        )
        assert resp.status_code == 422

    async def test_create_requires_auth(self, client):
        resp = await client.post(ORGS, json={"name": "Acme"})
        assert resp.status_code == 401

    async def test_list_only_own_orgs(self, client, register_user, create_org):
        alice = await register_user("alice@example.com")
        bob = await register_user("bob@example.com")
        await create_org(alice["headers"], name="Alpha")
        await create_org(alice["headers"], name="Beta")
        await create_org(bob["headers"], name="Gamma")

        resp = await client.get(ORGS, headers=alice["headers"])
        assert resp.status_code == 200
        slugs = sorted(item["org"]["slug"] for item in resp.json()["data"])
        assert slugs == ["alpha", "beta"]
        assert {item["role"] for item in resp.json()["data"]} == {"org_admin"}

    async def test_get_org_includes_role(self, client, register_user, create_org, add_member):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        tech = await add_member(owner["headers"], "acme", "tech@example.com", "technician")

        resp = await client.get(f"{ORGS}/acme", headers=tech["headers"])
        assert resp.status_code == 200
        assert resp.json()["role"] == "technician"

    async def test_update_requires_org_admin(self, client, register_user, create_org, add_member):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        manager = await add_member(owner["headers"], "acme", "mgr@example.com", "manager")

        resp = await client.put(f"{ORGS}/acme", json={"name": "Nope"}, headers=manager["headers"])
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "INSUFFICIENT_ROLE"

        resp = await client.put(
            f"{ORGS}/acme",
            json={"name": "Acme Renamed", "settings": {"allow_member_invites": False}},
            headers=owner["headers"],
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "Acme Renamed"
        assert body["slug"] == "acme"
        # Settings merge keeps untouched keys
        assert body["settings"] == {"allow_member_invites": False, "default_role": "technician"}


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

class TestMembers:
    async def _setup(self, register_user, create_org, add_member):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        manager = await add_member(owner["headers"], "acme", "mgr@example.com", "manager")
        tech = await add_member(owner["headers"], "acme", "tech@example.com", "technician")
        return owner, manager, tech

    async def test_list_members(self, client, register_user, create_org, add_member):
        owner, manager, tech = await self._setup(register_user, create_org, add_member)
        resp = await client.get(f"{ORGS}/acme/members", headers=tech["headers"])
        assert resp.status_code == 200
        emails = [m["user"]["email"] for m in resp.json()["data"]]
        assert emails == ["owner@example.com", "mgr@example.com", "tech@example.com"]

    async def test_manager_can_manage_technician(self, client, register_user, create_org, add_member):
        owner, manager, tech = await self._setup(register_user, create_org, add_member)
        member_id = tech["membership"]["id"]

        resp = await client.put(
            f"{ORGS}/acme/members/{member_id}/role",
            json={"role": "manager"},
            headers=manager["headers"],
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "manager"

    async def test_manager_cannot_manage_manager(self, client, register_user, create_org, add_member):
        owner, manager, tech = await self._setup(register_user, create_org, add_member)
        other = await add_member(owner["headers"], "acme", "mgr2@example.com", "manager")

        resp = await client.delete(
            f"{ORGS}/acme/members/{other['membership']['id']}", headers=manager["headers"]
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "You do not have permission to manage this member"

    async def test_manager_cannot_promote_to_admin(self, client, register_user, create_org, add_member):
        owner, manager, tech = await self._setup(register_user, create_org, add_member)
        resp = await client.put(
            f"{ORGS}/acme/members/{tech['membership']['id']}/role",
            json={"role": "org_admin"},
            headers=manager["headers"],
        )
        assert resp.status_code == 403

    async def test_technician_cannot_manage(self, client, register_user, create_org, add_member):
        owner, manager, tech = await self._setup(register_user, create_org, add_member)
        other = await add_member(owner["headers"], "acme", "tech2@example.com", "technician")
        resp = await client.delete(
            f"{ORGS}/acme/members/{other['membership']['id']}", headers=tech["headers"]
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "INSUFFICIENT_ROLE"

    async def test_member_of_other_org_not_found(self, client, register_user, create_org, add_member):
        owner, manager, tech = await self._setup(register_user, create_org, add_member)
        outsider = await register_user("outsider@example.com")
        other_org = await create_org(outsider["headers"], name="Elsewhere")

        resp = await client.delete(
            f"{ORGS}/acme/members/{other_org['membership']['id']}", headers=owner["headers"]
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Member not found"

    async def test_remove_member(self, client, register_user, create_org, add_member):
        owner, manager, tech = await self._setup(register_user, create_org, add_member)
        resp = await client.delete(
            f"{ORGS}/acme/members/{tech['membership']['id']}", headers=manager["headers"]
        )
        assert resp.status_code == 200

        resp = await client.get(f"{ORGS}/acme", headers=tech["headers"])
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "NOT_A_MEMBER"


class TestLastAdminProtection:
    async def test_cannot_demote_last_admin(self, client, register_user, create_org):
        owner = await register_user("owner@example.com")
        body = await create_org(owner["headers"], name="Acme")

        resp = await client.put(
            f"{ORGS}/acme/members/{body['membership']['id']}/role",
            json={"role": "manager"},
            headers=owner["headers"],
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "LAST_ADMIN_PROTECTED"

    async def test_cannot_remove_last_admin(self, client, register_user, create_org):
        owner = await register_user("owner@example.com")
        body = await create_org(owner["headers"], name="Acme")

        resp = await client.delete(
            f"{ORGS}/acme/members/{body['membership']['id']}", headers=owner["headers"]
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "LAST_ADMIN_PROTECTED"

        # Still an admin
        resp = await client.put(f"{ORGS}/acme", json={"name": "Still Mine"}, headers=owner["headers"])
        assert resp.status_code == 200

    async def test_demote_allowed_with_second_admin(self, client, register_user, create_org, add_member):
        owner = await register_user("owner@example.com")
        body = await create_org(owner["headers"], name="Acme")
        await add_member(owner["headers"], "acme", "admin2@example.com", "org_admin")

        resp = await client.put(
            f"{ORGS}/acme/members/{body['membership']['id']}/role",
            json={"role": "technician"},
            headers=owner["headers"],
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "technician"

    async def test_inactive_admin_does_not_count(
        self, client, register_user, create_org, add_member, session_factory
    ):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        ids = []
        for email in ("dormant1@example.com", "dormant2@example.com"):
            member = await add_member(owner["headers"], "acme", email, "org_admin")
            ids.append(member["membership"]["id"])
        async with session_factory() as session:
            await session.execute(
                update(Membership)
                .where(Membership.id.in_([uuid.UUID(i) for i in ids]))
                .values(status="inactive")
            )
            await session.commit()

        # The owner is the only active admin; the dormant ones can still be managed
        resp = await client.put(
            f"{ORGS}/acme/members/{ids[0]}/role",
            json={"role": "technician"},
            headers=owner["headers"],
        )
        assert resp.status_code == 200

        resp = await client.delete(f"{ORGS}/acme/members/{ids[1]}", headers=owner["headers"])
        assert resp.status_code == 200

    async def test_count_active_admins(self, db_session):
        user = User(email="count@example.com", password_hash="x", first_name="C", last_name="A")
        db_session.add(user)
        await db_session.flush()
        org, _ = await org_service.create_org("Counted", user.id, db_session)

        assert await org_service.count_active_admins(org.id, db_session) == 1
        assert await org_service.count_active_admins(org.id, db_session, lock=True) == 1


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------

class TestInvitations:
    async def test_full_invitation_scenario(self, client, register_user, create_org):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")

        resp = await client.post(
            f"{ORGS}/acme/invitations",
            json={"email": "New.Hire@Example.com", "role": "manager"},
            headers=owner["headers"],
        )
        assert resp.status_code == 201
        invitation = resp.json()
        assert invitation["email"] == "new.hire@example.com"
        assert invitation["status"] == "pending"
        token = invitation["token"]

        preview = await client.get(f"{ORGS}/invitations/{token}")
        assert preview.status_code == 200
        assert preview.json()["org_name"] == "Acme"
        assert preview.json()["role"] == "manager"

        # Someone else cannot use it
        intruder = await register_user("intruder@example.com")
        resp = await client.post(
            f"{ORGS}/accept-invitation", json={"token": token}, headers=intruder["headers"]
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "INVITATION_EMAIL_MISMATCH"

        hire = await register_user("new.hire@example.com")
        resp = await client.post(
            f"{ORGS}/accept-invitation", json={"token": token}, headers=hire["headers"]
        )
        assert resp.status_code == 200
        assert resp.json()["membership"]["role"] == "manager"
        assert resp.json()["membership"]["invited_by"] == owner["user"]["id"]
        assert resp.json()["org"]["slug"] == "acme"

        # Single use
        resp = await client.post(
            f"{ORGS}/accept-invitation", json={"token": token}, headers=hire["headers"]
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invitation is no longer valid"

        resp = await client.get(f"{ORGS}/acme/members", headers=hire["headers"])
        assert len(resp.json()["data"]) == 2

    async def test_invite_existing_member_conflict(self, client, register_user, create_org, add_member):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        await add_member(owner["headers"], "acme", "tech@example.com", "technician")

        resp = await client.post(
            f"{ORGS}/acme/invitations",
            json={"email": "tech@example.com"},
            headers=owner["headers"],
        )
        assert resp.status_code == 409

    async def test_duplicate_pending_invitation(self, client, register_user, create_org):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        payload = {"email": "someone@example.com"}
        first = await client.post(f"{ORGS}/acme/invitations", json=payload, headers=owner["headers"])
        assert first.status_code == 201
        assert first.json()["role"] == "technician"

        second = await client.post(f"{ORGS}/acme/invitations", json=payload, headers=owner["headers"])
        assert second.status_code == 409
        assert second.json()["error"]["message"] == "An invitation is already pending for this email"

    async def test_manager_cannot_invite_admin(self, client, register_user, create_org, add_member):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        manager = await add_member(owner["headers"], "acme", "mgr@example.com", "manager")

        resp = await client.post(
            f"{ORGS}/acme/invitations",
            json={"email": "boss@example.com", "role": "org_admin"},
            headers=manager["headers"],
        )
        assert resp.status_code == 403

    async def test_member_invites_setting(self, client, register_user, create_org, add_member):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        manager = await add_member(owner["headers"], "acme", "mgr@example.com", "manager")
        await client.put(
            f"{ORGS}/acme",
            json={"settings": {"allow_member_invites": False}},
            headers=owner["headers"],
        )

        resp = await client.post(
            f"{ORGS}/acme/invitations",
            json={"email": "blocked@example.com"},
            headers=manager["headers"],
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "Only organization admins can send invitations"

        resp = await client.post(
            f"{ORGS}/acme/invitations",
            json={"email": "allowed@example.com"},
            headers=owner["headers"],
        )
        assert resp.status_code == 201

    async def test_technician_cannot_invite(self, client, register_user, create_org, add_member):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        tech = await add_member(owner["headers"], "acme", "tech@example.com", "technician")
        resp = await client.post(
            f"{ORGS}/acme/invitations", json={"email": "x@example.com"}, headers=tech["headers"]
        )
        assert resp.status_code == 403

    async def test_list_and_cancel(self, client, register_user, create_org):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        created = await client.post(
            f"{ORGS}/acme/invitations", json={"email": "a@example.com"}, headers=owner["headers"]
        )
        await client.post(
            f"{ORGS}/acme/invitations", json={"email": "b@example.com"}, headers=owner["headers"]
        )

        listed = await client.get(f"{ORGS}/acme/invitations", headers=owner["headers"])
        assert listed.status_code == 200
        assert len(listed.json()["data"]) == 2
        assert "token" not in listed.json()["data"][0]

        invitation_id = created.json()["id"]
        resp = await client.delete(
            f"{ORGS}/acme/invitations/{invitation_id}", headers=owner["headers"]
        )
        assert resp.status_code == 200

        resp = await client.delete(
            f"{ORGS}/acme/invitations/{invitation_id}", headers=owner["headers"]
        )
        assert resp.status_code == 404

        listed = await client.get(f"{ORGS}/acme/invitations", headers=owner["headers"])
        assert [i["email"] for i in listed.json()["data"]] == ["b@example.com"]

    async def test_expired_invitation(self, client, register_user, create_org, session_factory):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        created = await client.post(
            f"{ORGS}/acme/invitations", json={"email": "late@example.com"}, headers=owner["headers"]
        )
        token = created.json()["token"]

        async with session_factory() as session:
            await session.execute(
                update(Invitation)
                .where(Invitation.token == token)
                .values(expires_at=utcnow() - timedelta(hours=1))
            )
            await session.commit()

        late = await register_user("late@example.com")
        resp = await client.post(
            f"{ORGS}/accept-invitation", json={"token": token}, headers=late["headers"]
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invitation has expired"

        preview = await client.get(f"{ORGS}/invitations/{token}")
        assert preview.json()["status"] == "expired"

    async def test_unknown_token(self, client, register_user):
        user = await register_user("who@example.com")
        resp = await client.post(
            f"{ORGS}/accept-invitation", json={"token": "missing"}, headers=user["headers"]
        )
        assert resp.status_code == 404
        assert (await client.get(f"{ORGS}/invitations/missing")).status_code == 404

    async def test_removed_member_can_rejoin(self, client, register_user, create_org, add_member):
        owner = await register_user("owner@example.com")
        await create_org(owner["headers"], name="Acme")
        tech = await add_member(owner["headers"], "acme", "back@example.com", "technician")
        await client.delete(
            f"{ORGS}/acme/members/{tech['membership']['id']}", headers=owner["headers"]
        )

        created = await client.post(
            f"{ORGS}/acme/invitations",
            json={"email": "back@example.com", "role": "manager"},
            headers=owner["headers"],
        )
        assert created.status_code == 201
        resp = await client.post(
            f"{ORGS}/accept-invitation",
            json={"token": created.json()["token"]},
            headers=tech["headers"],
        )
        assert resp.status_code == 200
        assert resp.json()["membership"]["role"] == "manager"
        assert resp.json()["membership"]["id"] == tech["membership"]["id"]
