# tests/test_api.py

"""
HTTP tests for the actor, property, assignment, authorization and audit
routes.
"""

import pytest

from app.features.authorization.capabilities import CAPABILITY_TABLE_VERSION, Role, Scope

from conftest import auth_headers


def property_body(prop) -> dict:
    return {"resource_type": "property", "resource_id": prop.id, "owner_id": prop.owner_id}


async def subscribe(client, owner, manager, prop, scope="full", **extra):
    return await client.post(
        "/assignments/subscriptions",
        json={"property_id": prop.id, "manager_id": manager.id, "scope": scope, **extra},
        headers=auth_headers(owner),
    )


async def assign_vendor(client, actor, vendor, prop, scope="task_based", **extra):
    return await client.post(
        "/assignments/vendors",
        json={"property_id": prop.id, "vendor_id": vendor.id, "scope": scope, **extra},
        headers=auth_headers(actor),
    )


async def evaluate(client, actor, action, prop):
    response = await client.post(
        "/authorization/evaluate",
        json={"action": action, "resource": property_body(prop)},
        headers=auth_headers(actor),
    )
    assert response.status_code == 200
    return response.json()


class TestActors:

    @pytest.mark.asyncio
    async def test_register_and_me(self, client):
        response = await client.post(
            "/actors/",
            json={"email": "olivia@example.com", "name": "Olivia", "role": "property_owner"},
        )
        assert response.status_code == 201
        actor = response.json()
        assert actor["status"] == "active"
        assert actor["permission_overrides"] == {}

        from app.features.actors.auth import create_access_token
        token = create_access_token(actor["id"], actor["role"])
        me = await client.get("/actors/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["email"] == "olivia@example.com"

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, client):
        body = {"email": "dup@example.com", "name": "Dup", "role": "vendor"}
        assert (await client.post("/actors/", json=body)).status_code == 201
        assert (await client.post("/actors/", json=body)).status_code == 409

    @pytest.mark.asyncio
    async def test_super_admin_cannot_self_register(self, client):
        response = await client.post(
            "/actors/",
            json={"email": "root@example.com", "name": "Root", "role": "super_admin"},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_token_rejected(self, client):
        response = await client.get("/actors/me", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_list_actors_requires_super_admin(self, client, super_admin, owner, vendor):
        assert (await client.get("/actors/", headers=auth_headers(owner))).status_code == 403

        response = await client.get("/actors/?role=vendor", headers=auth_headers(super_admin))
        assert response.status_code == 200
        assert [a["id"] for a in response.json()] == [vendor.id]


class TestSuspension:

    @pytest.mark.asyncio
    async def test_suspend_denies_and_audits(self, client, super_admin, owner, prop):
        response = await client.post(
            f"/actors/{owner.id}/suspend",
            json={"reason": "chargeback", "note": "Repeated failed payments"},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "suspended"

        decision = await evaluate(client, owner, "view", prop)
        assert decision["allowed"] is False
        assert decision["reason"] == "ActorSuspended"

        denied = await client.get(f"/properties/{prop.id}", headers=auth_headers(owner))
        assert denied.status_code == 403
        assert denied.json()["detail"]["reason"] == "ActorSuspended"

        entries = await client.get(
            "/audit/entries", params={"action": "suspend_actor"}, headers=auth_headers(super_admin)
        )
        [entry] = entries.json()["entries"]
        assert entry["resource_id"] == owner.id
        assert entry["details"]["reason"] == "chargeback"
        assert entry["details"]["note"] == "Repeated failed payments"

    @pytest.mark.asyncio
    async def test_activate_restores_access(self, client, super_admin, owner, prop):
        headers = auth_headers(super_admin)
        await client.post(f"/actors/{owner.id}/suspend", json={}, headers=headers)

        response = await client.post(f"/actors/{owner.id}/activate", headers=headers)

        assert response.status_code == 200
        assert (await evaluate(client, owner, "view", prop))["allowed"] is True

    @pytest.mark.asyncio
    async def test_suspension_rules(self, client, super_admin, owner, manager):
        headers = auth_headers(super_admin)

        assert (await client.post(f"/actors/{super_admin.id}/suspend", json={}, headers=headers)).status_code == 400
        assert (await client.post(f"/actors/{manager.id}/suspend", json={}, headers=auth_headers(owner))).status_code == 403
        assert (await client.post(f"/actors/{manager.id}/activate", headers=headers)).status_code == 409

        await client.post(f"/actors/{manager.id}/suspend", json={}, headers=headers)
        assert (await client.post(f"/actors/{manager.id}/suspend", json={}, headers=headers)).status_code == 409

    @pytest.mark.asyncio
    async def test_suspended_delegate_cannot_be_assigned(self, client, super_admin, owner, manager, prop):
        await client.post(f"/actors/{manager.id}/suspend", json={}, headers=auth_headers(super_admin))

        response = await subscribe(client, owner, manager, prop)

        assert response.status_code == 400


class TestOverrides:

    @pytest.mark.asyncio
    async def test_override_grants_and_is_flagged(self, client, super_admin, vendor, prop):
        assert (await evaluate(client, vendor, "view_billing", prop))["reason"] == "NoGrant"

        response = await client.put(
            f"/actors/{vendor.id}/overrides",
            json={"permission_overrides": {"view_billing": True}},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 200
        assert response.json()["permission_overrides"] == {"view_billing": True}

        decision = await evaluate(client, vendor, "view_billing", prop)
        assert decision["allowed"] is True
        assert decision["basis"] == "override"
        assert decision["reason"] == "ExplicitOverride"

    @pytest.mark.asyncio
    async def test_unknown_override_key_rejected(self, client, super_admin, vendor):
        response = await client.put(
            f"/actors/{vendor.id}/overrides",
            json={"permission_overrides": {"launch_rockets": True}},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 400


class TestProperties:

    @pytest.mark.asyncio
    async def test_owner_creates_and_views_property(self, client, owner):
        response = await client.post(
            "/properties/", json={"title": "Birch House"}, headers=auth_headers(owner)
        )
        assert response.status_code == 201
        created = response.json()
        assert created["owner_id"] == owner.id

        mine = await client.get("/properties/mine", headers=auth_headers(owner))
        assert [p["id"] for p in mine.json()] == [created["id"]]

        view = await client.get(f"/properties/{created['id']}", headers=auth_headers(owner))
        assert view.status_code == 200

    @pytest.mark.asyncio
    async def test_delegates_cannot_create_properties(self, client, manager, owner):
        response = await client.post(
            "/properties/", json={"title": "Nope", "owner_id": owner.id}, headers=auth_headers(manager)
        )
        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "NoGrant"

    @pytest.mark.asyncio
    async def test_unassigned_vendor_cannot_view(self, client, vendor, prop):
        response = await client.get(f"/properties/{prop.id}", headers=auth_headers(vendor))
        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "NoGrant"

    @pytest.mark.asyncio
    async def test_missing_property(self, client, owner):
        response = await client.get("/properties/does-not-exist", headers=auth_headers(owner))
        assert response.status_code == 404


class TestAssignments:

    @pytest.mark.asyncio
    async def test_subscribe_manager(self, client, owner, manager, prop):
        response = await subscribe(client, owner, manager, prop)

        assert response.status_code == 201
        result = response.json()
        assert result["edge"]["scope"] == "full"
        assert result["relation"]["kind"] == "subscription"
        assert result["audit_entry_id"] is not None
        assert (await evaluate(client, manager, "edit_property", prop))["allowed"] is True

    @pytest.mark.asyncio
    async def test_duplicate_subscription_conflicts(self, client, owner, manager, prop):
        await subscribe(client, owner, manager, prop)

        response = await subscribe(client, owner, manager, prop, scope="read_only")

        assert response.status_code == 409
        assert response.json()["retryable"] is True

    @pytest.mark.asyncio
    async def test_replace_subscription(self, client, owner, manager, prop):
        first = (await subscribe(client, owner, manager, prop)).json()

        response = await subscribe(client, owner, manager, prop, scope="billing_access", replace=True)

        assert response.status_code == 201
        assert response.json()["replaced_edge_id"] == first["edge"]["id"]
        assert (await evaluate(client, manager, "record_payment", prop))["allowed"] is True
        assert (await evaluate(client, manager, "create_task", prop))["reason"] == "InsufficientScope"

    @pytest.mark.asyncio
    async def test_only_owner_subscribes_managers(self, client, owner, manager, make_actor, prop):
        """A fully scoped manager still cannot subscribe another manager."""
        other = await make_actor(Role.PROPERTY_MANAGER)
        await subscribe(client, owner, manager, prop)

        response = await subscribe(client, manager, other, prop)

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "InsufficientScope"

    @pytest.mark.asyncio
    async def test_manager_assigns_vendor(self, client, owner, manager, vendor, prop):
        await subscribe(client, owner, manager, prop)

        response = await assign_vendor(client, manager, vendor, prop, task_id="task-42")

        assert response.status_code == 201
        assert response.json()["relation"]["kind"] == "task_grant"
        assert (await evaluate(client, vendor, "create_task", prop))["allowed"] is True
        assert (await evaluate(client, vendor, "record_payment", prop))["reason"] == "InsufficientScope"

    @pytest.mark.asyncio
    async def test_task_scoped_manager_cannot_assign_vendors(self, client, owner, manager, vendor, prop):
        await subscribe(client, owner, manager, prop, scope="task_based")

        response = await assign_vendor(client, manager, vendor, prop)

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "InsufficientScope"

    @pytest.mark.asyncio
    async def test_wrong_role_rejected(self, client, owner, vendor, prop):
        response = await subscribe(client, owner, vendor, prop)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_revoke_assignment(self, client, owner, vendor, prop):
        await assign_vendor(client, owner, vendor, prop)

        response = await client.delete(f"/assignments/{prop.id}/{vendor.id}", headers=auth_headers(owner))

        assert response.status_code == 200
        assert response.json()["edge"]["revoked_by"] == owner.id
        assert (await evaluate(client, vendor, "view", prop))["reason"] == "NoGrant"

        again = await client.delete(f"/assignments/{prop.id}/{vendor.id}", headers=auth_headers(owner))
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_end_subscription(self, client, owner, manager, prop):
        result = (await subscribe(client, owner, manager, prop)).json()

        response = await client.post(
            f"/assignments/relations/{result['relation']['id']}/end", headers=auth_headers(owner)
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ended"
        assert (await evaluate(client, manager, "view", prop))["reason"] == "NoGrant"

        active = await client.get(
            "/assignments/active",
            params={"subject_id": manager.id, "property_id": prop.id},
            headers=auth_headers(owner),
        )
        assert active.json()["edge"] is None

    @pytest.mark.asyncio
    async def test_list_property_assignments(self, client, owner, manager, vendor, prop):
        await subscribe(client, owner, manager, prop)
        await assign_vendor(client, owner, vendor, prop)
        await client.delete(f"/assignments/{prop.id}/{vendor.id}", headers=auth_headers(owner))

        current = await client.get(f"/assignments/properties/{prop.id}", headers=auth_headers(owner))
        history = await client.get(
            f"/assignments/properties/{prop.id}", params={"include_revoked": True}, headers=auth_headers(owner)
        )

        assert [e["subject_id"] for e in current.json()] == [manager.id]
        assert {e["subject_id"] for e in history.json()} == {manager.id, vendor.id}


class TestAuthorization:

    @pytest.mark.asyncio
    async def test_enforce_records_allow_and_deny(self, client, owner, vendor, prop):
        await assign_vendor(client, owner, vendor, prop)

        allowed = await client.post(
            "/authorization/enforce",
            json={"action": "comment", "resource": property_body(prop), "details": {"task_id": "t-1"}},
            headers=auth_headers(vendor),
        )
        denied = await client.post(
            "/authorization/enforce",
            json={"action": "record_payment", "resource": property_body(prop)},
            headers=auth_headers(vendor),
        )

        assert allowed.status_code == 201
        assert allowed.json()["audit_entry_id"] is not None
        assert denied.status_code == 403
        assert denied.json()["detail"]["reason"] == "InsufficientScope"
        assert denied.json()["detail"]["audit_entry_id"] is not None

    @pytest.mark.asyncio
    async def test_evaluate_records_only_on_request(self, client, super_admin, vendor, prop):
        await evaluate(client, vendor, "view", prop)
        recorded = await client.post(
            "/authorization/evaluate",
            json={"action": "view", "resource": property_body(prop), "record": True},
            headers=auth_headers(vendor),
        )
        assert recorded.json()["audit_entry_id"] is not None

        entries = await client.get(
            "/audit/entries", params={"actor_id": vendor.id}, headers=auth_headers(super_admin)
        )
        [entry] = entries.json()["entries"]
        assert entry["details"]["preflight"] is True

    @pytest.mark.asyncio
    async def test_claimed_ownership_is_ignored(self, client, super_admin, make_actor, prop):
        """Naming yourself as owner of someone else's property grants nothing."""
        intruder = await make_actor(Role.PROPERTY_OWNER)
        resource = {"resource_type": "property", "resource_id": prop.id, "owner_id": intruder.id}

        response = await client.post(
            "/authorization/enforce",
            json={"action": "record_payment", "resource": resource},
            headers=auth_headers(intruder),
        )

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "NoGrant"

        entries = await client.get(
            "/audit/entries", params={"actor_id": intruder.id}, headers=auth_headers(super_admin)
        )
        [entry] = entries.json()["entries"]
        assert entry["decision"] == "denied"
        assert entry["details"].get("basis") is None

    @pytest.mark.asyncio
    async def test_task_ownership_follows_its_property(self, client, owner, make_actor, prop):
        """Resources inside a property belong to the property's owner, whatever the body says."""
        intruder = await make_actor(Role.PROPERTY_OWNER)
        task = {"resource_type": "task", "resource_id": "task-1", "property_id": prop.id}

        own = await client.post(
            "/authorization/evaluate",
            json={"action": "update_task_status", "resource": task},
            headers=auth_headers(owner),
        )
        spoofed = await client.post(
            "/authorization/evaluate",
            json={"action": "update_task_status", "resource": {**task, "owner_id": intruder.id}},
            headers=auth_headers(intruder),
        )

        assert own.json()["allowed"] is True
        assert own.json()["basis"] == "ownership"
        assert spoofed.json()["allowed"] is False
        assert spoofed.json()["reason"] == "NoGrant"

    @pytest.mark.asyncio
    async def test_unknown_property_is_404(self, client, owner):
        response = await client.post(
            "/authorization/evaluate",
            json={"action": "view", "resource": {"resource_type": "property", "resource_id": "missing"}},
            headers=auth_headers(owner),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_capability_table(self, client):
        response = await client.get("/authorization/capabilities")

        table = response.json()
        assert table["version"] == CAPABILITY_TABLE_VERSION
        assert table["scopes"][Scope.READ_ONLY.value] == ["view"]
        assert "assign_manager" in table["role_base_grants"]["property_owner"]


class TestAuditRoutes:

    @pytest.mark.asyncio
    async def test_audit_log_is_super_admin_only(self, client, owner):
        for path in ("/audit/entries", "/audit/aggregate", "/audit/summary"):
            assert (await client.get(path, headers=auth_headers(owner))).status_code == 403

    @pytest.mark.asyncio
    async def test_entries_aggregate_and_summary(self, client, super_admin, owner, vendor, prop):
        headers = auth_headers(super_admin)
        await assign_vendor(client, owner, vendor, prop)
        await client.get(f"/properties/{prop.id}", headers=auth_headers(owner))
        await client.post(
            "/authorization/enforce",
            json={"action": "record_payment", "resource": property_body(prop)},
            headers=auth_headers(vendor),
        )

        page = await client.get("/audit/entries", params={"limit": 1}, headers=headers)
        assert page.status_code == 200
        assert page.json()["total_matching"] == 2
        assert page.json()["next_cursor"] is not None

        entry_id = page.json()["entries"][0]["id"]
        single = await client.get(f"/audit/entries/{entry_id}", headers=headers)
        assert single.json()["action"] == "assign_vendor"
        assert (await client.get("/audit/entries/999999", headers=headers)).status_code == 404

        aggregate = await client.get("/audit/aggregate", params={"group_by": "decision"}, headers=headers)
        assert {b["key"]: b["count"] for b in aggregate.json()["buckets"]} == {"allowed": 1, "denied": 1}

        summary = await client.get("/audit/summary", headers=headers)
        assert summary.json()["last_24_hours"] == 2
        assert summary.json()["denied_last_7_days"] == 1

    @pytest.mark.asyncio
    async def test_bad_date_range(self, client, super_admin):
        response = await client.get(
            "/audit/entries",
            params={"start": "2024-02-01T00:00:00Z", "end": "2024-01-01T00:00:00Z"},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_property_activity_feed(self, client, owner, vendor, prop):
        await assign_vendor(client, owner, vendor, prop)
        await client.delete(f"/assignments/{prop.id}/{vendor.id}", headers=auth_headers(owner))

        feed = await client.get(f"/audit/properties/{prop.id}", headers=auth_headers(owner))

        assert feed.status_code == 200
        assert [e["action"] for e in feed.json()["entries"]] == ["revoke_assignment", "assign_vendor"]

        denied = await client.get(f"/audit/properties/{prop.id}", headers=auth_headers(vendor))
        assert denied.status_code == 403
