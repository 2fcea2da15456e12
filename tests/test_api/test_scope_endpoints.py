"""HTTP tests for authentication and the /me scope endpoints."""
from __future__ import annotations


def _auth(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}


def test_health_needs_no_token(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_missing_token_is_401(client):
    assert client.get("/sites").status_code == 401


def test_malformed_token_is_400(client):
    resp = client.get("/sites", headers={"Authorization": "Bearer not-a-number"})
    assert resp.status_code == 400


def test_unknown_user_is_401(client):
    assert client.get("/me", headers=_auth(99999)).status_code == 401


def test_me_returns_principal(client, seeded_ids):
    resp = client.get("/me", headers=_auth(seeded_ids["user_fred"]))
    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == seeded_ids["user_fred"]
    assert body["organization_id"] == seeded_ids["org_northwind"]
    assert body["is_admin"] is False
    assert body["base_role"] == "field_worker"


def test_my_sites_lists_accessible_sites_by_name(client, seeded_ids):
    resp = client.get("/me/sites", headers=_auth(seeded_ids["user_tina"]))
    assert resp.status_code == 200
    assert [s["name"] for s in resp.json()] == ["Harbor Tower", "Riverside Clinic"]


def test_my_sites_for_admin_covers_own_organization(client, seeded_ids):
    resp = client.get("/me/sites", headers=_auth(seeded_ids["user_sam"]))
    assert {s["id"] for s in resp.json()} == {seeded_ids["site_hilltop"], seeded_ids["site_unassigned_summit"]}


def test_role_at_site(client, seeded_ids):
    harbor = seeded_ids["site_harbor"]
    assert client.get(f"/me/sites/{harbor}/role", headers=_auth(seeded_ids["user_mona"])).json() == {
        "site_id": harbor,
        "role": "site_manager",
    }
    assert client.get(f"/me/sites/{harbor}/role", headers=_auth(seeded_ids["user_alice"])).json()["role"] == "admin"
    assert client.get(f"/me/sites/{harbor}/role", headers=_auth(seeded_ids["user_fred"])).json()["role"] is None


def test_jwt_provider(app_factory, seeded_ids):
    import time

    import jwt
    from fastapi.testclient import TestClient

    from crewscope.security.config import AuthConfig, RouteRule, SecurityConfig, SecurityConfigModel

    config = SecurityConfig(
        SecurityConfigModel(
            auth=AuthConfig(provider="jwt", jwt_audience="crewscope"),
            routes=[RouteRule(path="/health", methods=["GET"], auth_required=False)],
        )
    )

    def token(**claims) -> dict[str, str]:
        payload = {"sub": str(seeded_ids["user_mona"]), "aud": "crewscope", "exp": int(time.time()) + 60}
        payload.update(claims)
        return {"Authorization": f"Bearer {jwt.encode(payload, 'test-secret', algorithm='HS256')}"}

    with TestClient(app_factory(security_config=config)) as jwt_client:
        ok = jwt_client.get("/me", headers=token())
        assert ok.status_code == 200
        assert ok.json()["id"] == seeded_ids["user_mona"]

        expired = jwt_client.get("/me", headers=token(exp=int(time.time()) - 60))
        assert expired.status_code == 401
        assert expired.json()["detail"] == "Token expired"

        assert jwt_client.get("/me", headers=token(aud="someone-else")).status_code == 401
        assert jwt_client.get("/me", headers={"Authorization": "Bearer 5"}).status_code == 401
