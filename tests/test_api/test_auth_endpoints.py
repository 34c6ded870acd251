"""Tests for sign in, sign out, profile and uploads."""

import logging
import re
from urllib.parse import parse_qs, urlparse

import pytest

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def sign_in(client, caplog, email: str) -> str:
    """Request a magic link, follow it from the log, return the session token."""
    with caplog.at_level(logging.INFO, logger="buyer_intake.auth"):
        response = client.post("/api/auth/magic-link", json={"email": email})
    assert response.status_code == 200

    links = [m for m in caplog.messages if m.startswith("Magic link for")]
    url = re.search(r"(http\S+)", links[-1]).group(1)
    query = parse_qs(urlparse(url).query)

    callback = client.get(
        "/api/auth/callback/email",
        params={"token": query["token"][0], "email": query["email"][0]},
    )
    assert callback.status_code == 200
    return callback.json()["token"]


@pytest.mark.integration
def test_magic_link_sign_in_flow(client, caplog):
    token = sign_in(client, caplog, "Agent@Example.com")
    headers = {"Authorization": f"Bearer {token}"}

    profile = client.get("/api/profile", headers=headers)

    assert profile.status_code == 200
    assert profile.json()["email"] == "agent@example.com"
    assert profile.json()["emailVerified"] is not None


@pytest.mark.integration
def test_magic_link_requires_valid_email(client):
    response = client.post("/api/auth/magic-link", json={"email": "nope"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid parameters"


@pytest.mark.integration
def test_callback_rejects_bad_token(client):
    response = client.get("/api/auth/callback/email", params={"token": "x", "email": "a@example.com"})

    assert response.status_code == 401


@pytest.mark.integration
def test_sign_out_revokes_session(client, auth_headers):
    assert client.post("/api/auth/signout", headers=auth_headers).status_code == 200
    assert client.get("/api/profile", headers=auth_headers).status_code == 401


@pytest.mark.integration
def test_profile_update_with_avatar(client, auth_headers):
    response = client.post(
        "/api/profile",
        data={"name": "  Renamed Agent "},
        files={"image": ("me.png", PNG_BYTES, "image/png")},
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Renamed Agent"
    assert body["image"].startswith("/api/uploads/") and body["image"].endswith(".png")

    image = client.get(body["image"])
    assert image.status_code == 200
    assert image.content == PNG_BYTES
    assert image.headers["content-type"] == "image/png"


@pytest.mark.integration
def test_profile_update_name_only_keeps_image(client, auth_headers):
    response = client.post("/api/profile", data={"name": "Just A Name"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["name"] == "Just A Name"
    assert response.json()["image"] is None


@pytest.mark.integration
def test_profile_rejects_non_image(client, auth_headers):
    response = client.post(
        "/api/profile",
        data={"name": "Agent"},
        files={"image": ("notes.txt", b"hello", "text/plain")},
        headers=auth_headers,
    )

    assert response.status_code == 400


@pytest.mark.integration
def test_profile_rejects_image_over_size_cap(client, auth_headers, monkeypatch):
    monkeypatch.setattr("buyer_intake.main.MAX_IMAGE_BYTES", 16)
    monkeypatch.setattr("buyer_intake.storage.MAX_IMAGE_BYTES", 16)

    response = client.post(
        "/api/profile",
        data={"name": "Agent"},
        files={"image": ("big.png", PNG_BYTES + b"\0" * 64, "image/png")},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert client.get("/api/profile", headers=auth_headers).json()["image"] is None


@pytest.mark.integration
def test_unknown_upload_is_404(client):
    response = client.get("/api/uploads/0123456789abcdef0123456789abcdef.png")

    assert response.status_code == 404
    assert response.json() == {"error": "File not found"}
