"""Contract tests for the element endpoints and the error payload."""

import pytest
from httpx import AsyncClient

from mbee.services.project_service import ProjectService
from tests.conftest import auth_headers

ELEMENTS = "/api/orgs/empire/projects/deathstar/branches/master/elements"


async def _create(client: AsyncClient, user, payload):
    response = await client.post(ELEMENTS, json=payload, headers=auth_headers(user))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
class TestElementEndpoints:
    async def test_create_batch(self, client: AsyncClient, vader, deathstar):
        created = await _create(
            client,
            vader,
            [
                {"id": "reactor", "name": "Reactor", "type": "Block"},
                {"id": "port", "name": "Exhaust port", "parent": "reactor"},
            ],
        )

        assert [e["id"] for e in created] == ["reactor", "port"]
        assert created[0]["parent"] == "model"
        assert created[0]["contains"] == ["port"]
        assert created[1]["branch"] == "master"
        assert created[1]["created_by"] == "vader"

    async def test_create_single_object(self, client: AsyncClient, vader, deathstar):
        created = await _create(client, vader, {"id": "reactor"})

        assert len(created) == 1

    async def test_get_one(self, client: AsyncClient, vader, deathstar):
        await _create(client, vader, {"id": "reactor", "custom": {"mw": 9000}})

        response = await client.get(f"{ELEMENTS}/reactor", headers=auth_headers(vader))

        assert response.status_code == 200
        assert response.json()["custom"] == {"mw": 9000}

    async def test_get_many_by_ids(self, client: AsyncClient, vader, deathstar):
        await _create(client, vader, [{"id": "e1"}, {"id": "e2"}, {"id": "e3"}])

        response = await client.get(
            ELEMENTS, params={"ids": "e3,e1"}, headers=auth_headers(vader)
        )

        assert [e["id"] for e in response.json()] == ["e1", "e3"]

    async def test_get_with_search_and_fields(self, client: AsyncClient, vader, deathstar):
        await _create(
            client,
            vader,
            [{"id": "e1", "type": "Block", "name": "A"}, {"id": "e2", "type": "Port"}],
        )

        response = await client.get(
            ELEMENTS, params={"type": "Block", "fields": "name"}, headers=auth_headers(vader)
        )

        assert response.json() == [{"id": "e1", "name": "A", "contains": []}]

    async def test_get_subtree(self, client: AsyncClient, vader, deathstar):
        await _create(
            client, vader, [{"id": "e1"}, {"id": "e2", "parent": "e1"}, {"id": "e3", "parent": "e2"}]
        )

        response = await client.get(
            f"{ELEMENTS}/e1", params={"subtree": "true"}, headers=auth_headers(vader)
        )

        assert response.status_code == 200
        assert [e["id"] for e in response.json()] == ["e1", "e2", "e3"]

    async def test_patch_one(self, client: AsyncClient, vader, deathstar):
        await _create(client, vader, {"id": "reactor"})

        response = await client.patch(
            f"{ELEMENTS}/reactor", json={"name": "Main reactor"}, headers=auth_headers(vader)
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Main reactor"

    async def test_patch_batch(self, client: AsyncClient, vader, deathstar):
        await _create(client, vader, [{"id": "e1"}, {"id": "e2"}])

        response = await client.patch(
            ELEMENTS,
            json=[{"id": "e1", "name": "One"}, {"id": "e2", "name": "Two"}],
            headers=auth_headers(vader),
        )

        assert [e["name"] for e in response.json()] == ["One", "Two"]

    async def test_delete_archives_by_default(self, client: AsyncClient, vader, deathstar):
        """Test DELETE archives elements unless soft=false is given."""
        await _create(client, vader, [{"id": "e1"}, {"id": "e2"}])
        headers = auth_headers(vader)

        response = await client.delete(ELEMENTS, params={"ids": "e1,e2"}, headers=headers)

        assert response.status_code == 200
        assert response.json() == ["e1", "e2"]
        missing = await client.get(f"{ELEMENTS}/e1", headers=headers)
        assert missing.status_code == 404
        archived = await client.get(
            f"{ELEMENTS}/e1", params={"archived": "true"}, headers=headers
        )
        assert archived.json()["archived"] is True

    async def test_hard_delete_one(self, client: AsyncClient, vader, deathstar):
        await _create(client, vader, {"id": "e1"})
        headers = auth_headers(vader)

        response = await client.delete(
            f"{ELEMENTS}/e1", params={"soft": "false"}, headers=headers
        )

        assert response.json() == ["e1"]
        gone = await client.get(f"{ELEMENTS}/e1", params={"archived": "true"}, headers=headers)
        assert gone.status_code == 404


@pytest.mark.asyncio
class TestErrorPayloads:
    async def test_missing_token(self, client: AsyncClient, deathstar):
        response = await client.get(ELEMENTS)

        assert response.status_code == 401

    async def test_permission_denied(self, client: AsyncClient, leia, deathstar):
        response = await client.get(ELEMENTS, headers=auth_headers(leia))

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "permission_denied"
        assert set(body) == {"error", "message", "details"}

    async def test_reader_cannot_create(self, client: AsyncClient, db, vader, tarkin, deathstar):
        await ProjectService(db).set_permissions(vader, "empire", "deathstar", "tarkin", "read")

        response = await client.post(ELEMENTS, json={"id": "e1"}, headers=auth_headers(tarkin))

        assert response.status_code == 403

    async def test_not_found(self, client: AsyncClient, vader, deathstar):
        response = await client.get(f"{ELEMENTS}/ghost", headers=auth_headers(vader))

        assert response.status_code == 404
        assert response.json() == {
            "error": "not_found",
            "message": "Element [ghost] not found.",
            "details": None,
        }

    async def test_unknown_branch(self, client: AsyncClient, vader, deathstar):
        response = await client.get(
            "/api/orgs/empire/projects/deathstar/branches/ghost/elements",
            headers=auth_headers(vader),
        )

        assert response.status_code == 404

    async def test_duplicate_id_conflicts(self, client: AsyncClient, vader, deathstar):
        await _create(client, vader, {"id": "e1"})

        response = await client.post(ELEMENTS, json={"id": "e1"}, headers=auth_headers(vader))

        assert response.status_code == 409
        assert response.json()["details"] == {"ids": ["e1"]}

    async def test_path_and_body_id_mismatch(self, client: AsyncClient, vader, deathstar):
        await _create(client, vader, {"id": "e1"})

        response = await client.patch(
            f"{ELEMENTS}/e1", json={"id": "e2", "name": "x"}, headers=auth_headers(vader)
        )

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    async def test_reserved_id(self, client: AsyncClient, vader, deathstar):
        response = await client.post(
            ELEMENTS, json={"id": "holding_bin"}, headers=auth_headers(vader)
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    async def test_bad_boolean_option(self, client: AsyncClient, vader, deathstar):
        response = await client.get(
            ELEMENTS, params={"archived": "maybe"}, headers=auth_headers(vader)
        )

        assert response.status_code == 400
        assert "archived" in response.json()["message"]

    async def test_bad_integer_option(self, client: AsyncClient, vader, deathstar):
        response = await client.get(ELEMENTS, params={"limit": "ten"}, headers=auth_headers(vader))

        assert response.status_code == 400

    async def test_unknown_search_key(self, client: AsyncClient, vader, deathstar):
        response = await client.get(ELEMENTS, params={"color": "black"}, headers=auth_headers(vader))

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid option [color]."

    async def test_bulk_delete_requires_ids(self, client: AsyncClient, vader, deathstar):
        response = await client.delete(ELEMENTS, headers=auth_headers(vader))

        assert response.status_code == 400
        assert "ids" in response.json()["message"]
