"""Tests for the bearer-token guards."""

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from booking_assistant.auth import require_admin_token, require_voice_token


class FakeSettings:
    def __init__(self, voice_api_key="", admin_api_key="", debug=False):
        self.voice_api_key = voice_api_key
        self.admin_api_key = admin_api_key
        self.debug = debug


def bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestRequireAdminToken:
    async def test_rejects_no_token_when_key_set(self, monkeypatch):
        monkeypatch.setattr("booking_assistant.auth.settings", FakeSettings(admin_api_key="secret"))
        with pytest.raises(HTTPException) as exc_info:
            await require_admin_token(credentials=None)
        assert exc_info.value.status_code == 401

    async def test_rejects_wrong_token(self, monkeypatch):
        monkeypatch.setattr("booking_assistant.auth.settings", FakeSettings(admin_api_key="secret"))
        with pytest.raises(HTTPException) as exc_info:
            await require_admin_token(credentials=bearer("wrong"))
        assert exc_info.value.status_code == 401

    async def test_allows_correct_token(self, monkeypatch):
        monkeypatch.setattr("booking_assistant.auth.settings", FakeSettings(admin_api_key="secret"))
        await require_admin_token(credentials=bearer("secret"))

    async def test_allows_no_key_debug_mode(self, monkeypatch):
        monkeypatch.setattr("booking_assistant.auth.settings", FakeSettings(debug=True))
        await require_admin_token(credentials=None)

    async def test_rejects_no_key_production(self, monkeypatch):
        monkeypatch.setattr("booking_assistant.auth.settings", FakeSettings(debug=False))
        with pytest.raises(HTTPException) as exc_info:
            await require_admin_token(credentials=None)
        assert exc_info.value.status_code == 403


class TestRequireVoiceToken:
    async def test_voice_key_is_separate_from_admin_key(self, monkeypatch):
        monkeypatch.setattr(
            "booking_assistant.auth.settings",
            FakeSettings(voice_api_key="voice", admin_api_key="admin"),
        )
        await require_voice_token(credentials=bearer("voice"))
        with pytest.raises(HTTPException) as exc_info:
            await require_voice_token(credentials=bearer("admin"))
        assert exc_info.value.status_code == 401

    async def test_rejects_no_key_production(self, monkeypatch):
        monkeypatch.setattr("booking_assistant.auth.settings", FakeSettings())
        with pytest.raises(HTTPException) as exc_info:
            await require_voice_token(credentials=bearer("anything"))
        assert exc_info.value.status_code == 403
