"""HTTP site directory: response mapping, with `requests.get` patched out."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from crewscope.client.directory import HttpSiteDirectory, SiteRef
from crewscope.errors import AuthzDenied, NetworkFailure, Unauthenticated
from crewscope.security.context import Principal

PRINCIPAL = Principal(id=4, organization_id=1, base_role="field_worker")


def _response(status_code=200, body=None, invalid_json=False):
    resp = MagicMock()
    resp.status_code = status_code
    if invalid_json:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    return resp


@pytest.mark.asyncio
async def test_fetches_sites_with_bearer_token():
    body = [
        {"id": 2, "organization_id": 1, "name": "Riverside Clinic", "address": None, "status": "active", "is_system": False},
    ]
    with patch("crewscope.client.directory.requests.get", return_value=_response(body=body)) as get:
        sites = await HttpSiteDirectory("http://api.test/").fetch_accessible_sites(PRINCIPAL)

    assert sites == [SiteRef(id=2, organization_id=1, name="Riverside Clinic")]
    args, kwargs = get.call_args
    assert args[0] == "http://api.test/me/sites"
    assert kwargs["headers"] == {"Authorization": "Bearer 4"}
    assert kwargs["timeout"] == 10.0


@pytest.mark.asyncio
async def test_role_lookup_uses_custom_token():
    directory = HttpSiteDirectory("http://api.test", token_for=lambda principal: "jwt-for-4")
    with patch("crewscope.client.directory.requests.get", return_value=_response(body={"site_id": 2, "role": "field_worker"})) as get:
        role = await directory.fetch_role_at(PRINCIPAL, 2)

    assert role == "field_worker"
    assert get.call_args.args[0] == "http://api.test/me/sites/2/role"
    assert get.call_args.kwargs["headers"] == {"Authorization": "Bearer jwt-for-4"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "expected"),
    [
        (_response(status_code=401), Unauthenticated),
        (_response(status_code=403), AuthzDenied),
        (_response(status_code=503), NetworkFailure),
        (_response(invalid_json=True), NetworkFailure),
    ],
)
async def test_error_responses_are_mapped(response, expected):
    with patch("crewscope.client.directory.requests.get", return_value=response):
        with pytest.raises(expected):
            await HttpSiteDirectory("http://api.test").fetch_accessible_sites(PRINCIPAL)


@pytest.mark.asyncio
async def test_transport_error_is_network_failure():
    with patch("crewscope.client.directory.requests.get", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(NetworkFailure):
            await HttpSiteDirectory("http://api.test").fetch_role_at(PRINCIPAL, 2)
