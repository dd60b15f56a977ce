"""
Tests for the service endpoints - follow-up triggers and the handoff API.
Worker runs and handoff operations are mocked; the app's lifespan is not started.
"""
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from reengage.database import get_db
from reengage.main import create_app
from reengage.services.handoff import ConversationNotFoundError, InvalidTransitionError
from reengage.utils.locks import LockTimeoutError


@pytest.fixture
def client():
    app = create_app()

    async def _fake_db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = _fake_db
    return TestClient(app)


def _make_conversation(**overrides):
    conversation = MagicMock()
    conversation.id = overrides.get("id", uuid.uuid4())
    conversation.status = overrides.get("status", "active")
    conversation.agent_active = overrides.get("agent_active", True)
    conversation.agent_id = overrides.get("agent_id")
    conversation.assigned_user_id = overrides.get("assigned_user_id")
    return conversation


def _secret_settings(cron_secret="s3cret", app_env="production"):
    return MagicMock(cron_secret=cron_secret, app_env=app_env)


# ---------------------------------------------------------------------------
# Shared-secret guard
# ---------------------------------------------------------------------------


class TestSecretGuard:
    def test_valid_secret(self, client):
        with (
            patch("reengage.config.get_settings", return_value=_secret_settings()),
            patch("reengage.api.followups.run_followup_rules", new_callable=AsyncMock, return_value={"sent_count": 0}),
        ):
            response = client.post("/api/v1/followups/run", headers={"X-Cron-Secret": "s3cret"})

        assert response.status_code == 200

    @pytest.mark.parametrize("headers", [{}, {"X-Cron-Secret": "wrong"}])
    def test_rejected(self, client, headers):
        with (
            patch("reengage.config.get_settings", return_value=_secret_settings()),
            patch("reengage.api.followups.run_followup_rules", new_callable=AsyncMock) as run,
        ):
            response = client.post("/api/v1/followups/run", headers=headers)

        assert response.status_code == 401
        run.assert_not_called()

    def test_missing_secret_rejected_in_production(self, client):
        with patch("reengage.config.get_settings", return_value=_secret_settings(cron_secret="")):
            response = client.post(f"/api/v1/conversations/{uuid.uuid4()}/close")

        assert response.status_code == 401

    def test_missing_secret_accepted_outside_production(self, client):
        with (
            patch("reengage.config.get_settings", return_value=_secret_settings(cron_secret="", app_env="development")),
            patch("reengage.api.followups.run_followup_rules", new_callable=AsyncMock, return_value={"sent_count": 0}),
        ):
            response = client.post("/api/v1/followups/run")

        assert response.status_code == 200


# ---------------------------------------------------------------------------
# Follow-up triggers
# ---------------------------------------------------------------------------


class TestFollowupTriggers:
    def test_run_returns_report(self, client):
        report = {"sent_count": 3, "rules_processed": 2, "failed": 0, "skipped": {"too_soon": 1}}
        with patch("reengage.api.followups.run_followup_rules", new_callable=AsyncMock, return_value=report):
            response = client.post("/api/v1/followups/run")

        assert response.status_code == 200
        assert response.json()["sent_count"] == 3

    def test_aborted_run_is_500(self, client):
        with patch(
            "reengage.api.followups.run_followup_rules",
            new_callable=AsyncMock,
            side_effect=RuntimeError("database unavailable"),
        ):
            response = client.post("/api/v1/followups/run")

        assert response.status_code == 500
        assert "database" not in response.text

    def test_callbacks_run(self, client):
        summary = {"sent_count": 1, "cancelled": 0, "failed": 0, "unrecorded": 0}
        with patch("reengage.api.followups.dispatch_due_callbacks", new_callable=AsyncMock, return_value=summary):
            response = client.post("/api/v1/followups/callbacks/run")

        assert response.json() == summary


# ---------------------------------------------------------------------------
# Handoff API
# ---------------------------------------------------------------------------


class TestHandoffEndpoints:
    def test_transfer_to_user(self, client):
        user_id = uuid.uuid4()
        conversation = _make_conversation(agent_active=False, assigned_user_id=user_id)

        with patch("reengage.services.handoff.transfer", new_callable=AsyncMock, return_value=conversation) as op:
            response = client.post(
                f"/api/v1/conversations/{conversation.id}/transfer",
                json={"to_user_id": str(user_id), "to_name": "Bruno"},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["agent_active"] is False
        assert body["assigned_user_id"] == str(user_id)
        request = op.call_args.args[2]
        assert request.to_user_id == user_id

    def test_transfer_without_target_is_422(self, client):
        response = client.post(f"/api/v1/conversations/{uuid.uuid4()}/transfer", json={})

        assert response.status_code == 422

    def test_toggle_agent(self, client):
        conversation = _make_conversation(agent_active=False)

        with patch(
            "reengage.services.handoff.set_agent_active", new_callable=AsyncMock, return_value=conversation,
        ) as op:
            response = client.post(f"/api/v1/conversations/{conversation.id}/agent", json={"active": False})

        assert response.status_code == 200
        assert op.call_args.args[2] is False

    @pytest.mark.parametrize("error,status_code", [
        (ConversationNotFoundError("gone"), 404),
        (InvalidTransitionError("Cannot apply 'close' to a conversation in 'closed'"), 409),
        (LockTimeoutError("busy"), 423),
    ])
    def test_close_errors(self, client, error, status_code):
        with patch("reengage.services.handoff.close_conversation", new_callable=AsyncMock, side_effect=error):
            response = client.post(f"/api/v1/conversations/{uuid.uuid4()}/close")

        assert response.status_code == status_code

    def test_reopen(self, client):
        conversation = _make_conversation(status="active")

        with patch(
            "reengage.services.handoff.reopen_conversation", new_callable=AsyncMock, return_value=conversation,
        ):
            response = client.post(f"/api/v1/conversations/{conversation.id}/reopen")

        assert response.json()["status"] == "active"
