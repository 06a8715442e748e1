"""
Test suite for manage.py CLI commands.

Run all tests:
    pytest tests/test_manage.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest
import typer
from cryptography.fernet import Fernet
from typer.testing import CliRunner

from careauth.core.db.crud import admin_db
from manage import app, create_admin_task, email_validator

runner = CliRunner()


@pytest.fixture
def task_sessions(session_factory):
    with (
        patch("careauth.core.db.AsyncSessionLocal", session_factory),
        patch("careauth.core.db.dispose_db", new_callable=AsyncMock),
    ):
        yield


class TestCommands:

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("initdb", "purgeotps", "createadmin", "generatekey"):
            assert command in result.stdout

    def test_generatekey_prints_fernet_key(self):
        result = runner.invoke(app, ["generatekey"])

        assert result.exit_code == 0
        Fernet(result.stdout.strip().encode())

    def test_purgeotps_passes_retention(self):
        with patch("manage.purge_otps_task", new_callable=AsyncMock) as mock_task:
            result = runner.invoke(app, ["purgeotps", "--retention-hours", "6"])

        assert result.exit_code == 0
        mock_task.assert_awaited_once_with(6)

    def test_createadmin_validates_email(self):
        with patch("manage.create_admin_task", new_callable=AsyncMock) as mock_task:
            result = runner.invoke(
                app,
                ["createadmin", "--email", "not-an-email", "--password", "x"],
            )

        assert result.exit_code != 0
        mock_task.assert_not_called()

    def test_createadmin_defaults_role(self):
        with patch("manage.create_admin_task", new_callable=AsyncMock) as mock_task:
            result = runner.invoke(
                app,
                ["createadmin", "--email", "Root@Example.com", "--password", "pw"],
            )

        assert result.exit_code == 0
        mock_task.assert_awaited_once_with("root@example.com", "pw", "admin")


class TestEmailValidator:

    def test_lowercases(self):
        assert email_validator("Ops@Example.COM") == "ops@example.com"

    def test_rejects_invalid(self):
        with pytest.raises(Exception):
            email_validator("nope")


class TestCreateAdminTask:

    @pytest.mark.integration
    async def test_creates_admin(self, task_sessions, db_session):
        await create_admin_task("ops@example.com", "Secret123!", "superadmin")

        admin = await admin_db.find_by_email(db_session, "ops@example.com")
        assert admin.is_admin is True
        assert admin.email_verified is True
        assert admin.role == "superadmin"

    @pytest.mark.integration
    async def test_grants_privilege_to_existing_admin(
        self, task_sessions, db_session, password_hash
    ):
        await admin_db.create(
            db_session,
            data={"email": "staff@example.com", "password_hash": password_hash},
        )

        with patch.object(typer, "confirm", return_value=True):
            await create_admin_task("staff@example.com", "ignored", "admin")

        db_session.expire_all()
        admin = await admin_db.find_by_email(db_session, "staff@example.com")
        assert admin.is_admin is True
