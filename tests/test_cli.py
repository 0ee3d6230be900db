"""Tests for CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from speleosync.client.api import Project
from speleosync.client.cli import cli
from speleosync.client.cli.credentials import KEYRING_SERVICE
from speleosync.client.state import ProjectStateStore

TOKEN = "0123456789abcdef0123456789abcdef01234567"
BASE = "http://test/api/v1"
PROJECTS_URL = f"{BASE}/projects/"


def project_json(project_id: str = "p1", name: str = "Cueva", **extra: object) -> dict:
    """Create a project payload as returned by the server."""
    return {"id": project_id, "name": name, "permission": "READ_AND_WRITE", **extra}


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the home directory at a temporary folder."""
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def secrets(monkeypatch: pytest.MonkeyPatch) -> dict[tuple[str, str], str]:
    """Replace the OS keyring with a dictionary."""
    store: dict[tuple[str, str], str] = {}

    def get_password(service: str, username: str) -> str | None:
        return store.get((service, username))

    def set_password(service: str, username: str, password: str) -> None:
        store[(service, username)] = password

    def delete_password(service: str, username: str) -> None:
        store.pop((service, username), None)

    monkeypatch.setattr("keyring.get_password", get_password)
    monkeypatch.setattr("keyring.set_password", set_password)
    monkeypatch.setattr("keyring.delete_password", delete_password)
    return store


@pytest.fixture
def logged_in(home: Path, secrets: dict[tuple[str, str], str]) -> Path:
    """Save a configuration and token for the test server."""
    config_dir = home / ".speleosync"
    config_dir.mkdir()
    (config_dir / "config.json").write_text(json.dumps({"server_url": "http://test"}))
    secrets[(KEYRING_SERVICE, "http://test")] = TOKEN
    return config_dir


def projects_dir(config_dir: Path) -> Path:
    return config_dir / "projects"


class TestLoginCommand:
    """Tests for 'speleosync login'."""

    def test_login_with_token(self, runner: CliRunner, home: Path, secrets, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should verify the token, store it and save the server."""
        httpx_mock.add_response(
            method="GET", url=f"{BASE}/user/auth-token/", json={"token": TOKEN}
        )

        result = runner.invoke(cli, ["login", "--server", "http://test", "--token", TOKEN])

        assert result.exit_code == 0, result.output
        assert "Logged in to http://test" in result.output
        assert secrets[(KEYRING_SERVICE, "http://test")] == TOKEN
        config = json.loads((home / ".speleosync" / "config.json").read_text())
        assert config["server_url"] == "http://test"

    def test_login_with_password(self, runner: CliRunner, home: Path, secrets, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should prompt for email and password."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/user/auth-token/",
            match_json={"email": "diver@example.com", "password": "secret"},
            json={"token": TOKEN},
        )

        result = runner.invoke(
            cli, ["login", "--server", "http://test"], input="diver@example.com\nsecret\n"
        )

        assert result.exit_code == 0, result.output
        config = json.loads((home / ".speleosync" / "config.json").read_text())
        assert config["email"] == "diver@example.com"

    def test_invalid_token(self, runner: CliRunner, home: Path, secrets, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should fail without contacting the server."""
        result = runner.invoke(cli, ["login", "--server", "http://test", "--token", TOKEN[:39]])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert httpx_mock.get_requests() == []
        assert secrets == {}

    def test_rejected_credentials(self, runner: CliRunner, home: Path, secrets, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should show the server's message."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/user/auth-token/",
            status_code=400,
            json={"detail": "Unable to log in with provided credentials."},
        )

        result = runner.invoke(cli, ["login", "--server", "http://test"], input="a@b.c\nbad\n")

        assert result.exit_code == 1
        assert "Unable to log in with provided credentials." in result.output

    def test_warns_about_plain_http(self, runner: CliRunner, home: Path, secrets, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should warn when a remote instance is reached without HTTPS."""
        httpx_mock.add_response(
            method="GET", url=f"{BASE}/user/auth-token/", json={"token": TOKEN}
        )

        result = runner.invoke(cli, ["login", "--server", "http://test", "--token", TOKEN])

        assert result.exit_code == 0, result.output
        assert "does not use HTTPS" in result.output

    def test_no_warning_for_local_instance(self, runner: CliRunner, home: Path, secrets, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should not warn for a local development server."""
        httpx_mock.add_response(
            method="GET", url="http://localhost:8000/api/v1/user/auth-token/", json={"token": TOKEN}
        )

        result = runner.invoke(cli, ["login", "--server", "localhost:8000", "--token", TOKEN])

        assert result.exit_code == 0, result.output
        assert "HTTPS" not in result.output


class TestLogoutCommand:
    """Tests for 'speleosync logout'."""

    def test_logout_forgets_token(self, runner: CliRunner, logged_in: Path, secrets) -> None:  # type: ignore[no-untyped-def]
        """Should delete the stored token."""
        result = runner.invoke(cli, ["logout"])

        assert result.exit_code == 0
        assert secrets == {}


class TestProjectsCommand:
    """Tests for 'speleosync projects'."""

    def test_requires_login(self, runner: CliRunner, home: Path, secrets) -> None:  # type: ignore[no-untyped-def]
        """Should fail when no token is stored."""
        result = runner.invoke(cli, ["projects"])

        assert result.exit_code == 1
        assert "Not logged in" in result.output

    def test_lists_sorted(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should print projects sorted by name."""
        httpx_mock.add_response(
            method="GET",
            url=PROJECTS_URL,
            json={
                "data": [
                    project_json("p2", "zeta"),
                    project_json("p1", "Alpha", active_mutex={"user": "diver@example.com"}),
                ]
            },
        )

        result = runner.invoke(cli, ["projects"])

        assert result.exit_code == 0, result.output
        lines = result.output.strip().splitlines()
        assert lines[0].startswith("p1  Alpha")
        assert "locked by diver@example.com" in lines[0]
        assert lines[1].startswith("p2  zeta")

    def test_server_error(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should exit with an error on a 500."""
        httpx_mock.add_response(method="GET", url=PROJECTS_URL, status_code=500)

        result = runner.invoke(cli, ["projects"])

        assert result.exit_code == 1
        assert "Listing projects failed" in result.output

    def test_retries(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should retry a server error when asked."""
        httpx_mock.add_response(method="GET", url=PROJECTS_URL, status_code=503)
        httpx_mock.add_response(method="GET", url=PROJECTS_URL, json={"data": [project_json()]})

        result = runner.invoke(cli, ["projects", "--retries", "1"])

        assert result.exit_code == 0, result.output
        assert "Cueva" in result.output


class TestCreateCommand:
    """Tests for 'speleosync create'."""

    def test_create(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should create a project from options."""
        httpx_mock.add_response(
            method="POST",
            url=PROJECTS_URL,
            match_json={"name": "New Cave", "description": "Desc", "country": "US"},
            status_code=201,
            json={"data": project_json("p9", "New Cave")},
        )

        result = runner.invoke(
            cli, ["create", "--name", "New Cave", "--description", "Desc", "--country", "US"]
        )

        assert result.exit_code == 0, result.output
        assert "Created project New Cave (p9)" in result.output


class TestDownloadCommand:
    """Tests for 'speleosync download'."""

    def test_download(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should write the project file into the projects directory."""
        httpx_mock.add_response(method="GET", url=PROJECTS_URL, json={"data": [project_json()]})
        httpx_mock.add_response(
            method="GET", url=f"{BASE}/projects/p1/download/ariane_tml/", content=b"survey"
        )

        result = runner.invoke(cli, ["download", "p1"])

        assert result.exit_code == 0, result.output
        assert (projects_dir(logged_in) / "p1.tml").read_bytes() == b"survey"

    def test_unknown_project(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should fail for an id the server does not list."""
        httpx_mock.add_response(method="GET", url=PROJECTS_URL, json={"data": []})

        result = runner.invoke(cli, ["download", "nope"])

        assert result.exit_code == 1
        assert "Project not found" in result.output


class TestLockCommands:
    """Tests for 'speleosync lock', 'unlock' and 'upload'."""

    def test_lock_refused(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should name the current lock holder."""
        httpx_mock.add_response(
            method="GET",
            url=PROJECTS_URL,
            json={"data": [project_json(active_mutex={"user": "other@example.com"})]},
        )
        httpx_mock.add_response(method="POST", url=f"{BASE}/projects/p1/acquire/", status_code=409)

        result = runner.invoke(cli, ["lock", "p1"])

        assert result.exit_code == 1
        assert "locked by other@example.com" in result.output

    def test_lock_read_only(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should not try to lock a read-only project."""
        httpx_mock.add_response(
            method="GET", url=PROJECTS_URL, json={"data": [project_json(permission="READ_ONLY")]}
        )

        result = runner.invoke(cli, ["lock", "p1"])

        assert result.exit_code == 1
        assert "read-only" in result.output

    def test_unlock(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should release the lock."""
        httpx_mock.add_response(method="GET", url=PROJECTS_URL, json={"data": [project_json()]})
        httpx_mock.add_response(method="POST", url=f"{BASE}/projects/p1/release/")

        result = runner.invoke(cli, ["unlock", "p1"])

        assert result.exit_code == 0, result.output
        assert "Unlocked Cueva" in result.output

    def test_upload_and_release(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should refresh the lock, upload, then release."""
        folder = projects_dir(logged_in)
        folder.mkdir(parents=True)
        (folder / "p1.tml").write_bytes(b"edited")
        httpx_mock.add_response(method="GET", url=PROJECTS_URL, json={"data": [project_json()]})
        httpx_mock.add_response(method="POST", url=f"{BASE}/projects/p1/acquire/")
        httpx_mock.add_response(method="PUT", url=f"{BASE}/projects/p1/upload/ariane_tml/")
        httpx_mock.add_response(method="POST", url=f"{BASE}/projects/p1/release/")

        result = runner.invoke(cli, ["upload", "p1", "-m", "New passage", "--release"])

        assert result.exit_code == 0, result.output
        assert "Uploaded Cueva" in result.output
        assert "Unlocked Cueva" in result.output

    def test_upload_empty_message(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should refuse a blank message before the upload request."""
        folder = projects_dir(logged_in)
        folder.mkdir(parents=True)
        (folder / "p1.tml").write_bytes(b"edited")
        httpx_mock.add_response(method="GET", url=PROJECTS_URL, json={"data": [project_json()]})

        result = runner.invoke(cli, ["upload", "p1", "-m", "  "])

        assert result.exit_code == 1
        assert "Upload message cannot be empty" in result.output
        assert httpx_mock.get_requests(method="POST") == []


class TestEditCommand:
    """Tests for the interactive 'speleosync edit' session."""

    def test_edit_session(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should lock, download, upload once and release on exit."""
        httpx_mock.add_response(method="GET", url=PROJECTS_URL, json={"data": [project_json()]})
        httpx_mock.add_response(method="POST", url=f"{BASE}/projects/p1/acquire/")
        httpx_mock.add_response(
            method="GET", url=f"{BASE}/projects/p1/download/ariane_tml/", content=b"survey"
        )
        httpx_mock.add_response(method="POST", url=f"{BASE}/projects/p1/acquire/")
        httpx_mock.add_response(method="PUT", url=f"{BASE}/projects/p1/upload/ariane_tml/")
        httpx_mock.add_response(method="POST", url=f"{BASE}/projects/p1/release/")

        result = runner.invoke(cli, ["edit", "p1"], input="Mapped sump\n\ny\n")

        assert result.exit_code == 0, result.output
        assert f"Project file: {projects_dir(logged_in) / 'p1.tml'}" in result.output
        assert "Uploaded 'Cueva'" in result.output
        assert "Released lock on 'Cueva'" in result.output

    def test_edit_read_only(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should open a read-only project without prompting for uploads."""
        httpx_mock.add_response(
            method="GET", url=PROJECTS_URL, json={"data": [project_json(permission="READ_ONLY")]}
        )
        httpx_mock.add_response(
            method="GET", url=f"{BASE}/projects/p1/download/ariane_tml/", content=b"survey"
        )

        result = runner.invoke(cli, ["edit", "p1"])

        assert result.exit_code == 0, result.output
        assert "read-only" in result.output
        assert httpx_mock.get_requests(method="POST") == []


class TestLocalCommands:
    """Tests for 'speleosync local' and 'speleosync forget'."""

    def record(self, config_dir: Path) -> Path:
        """Record a downloaded project and return its local file path."""
        folder = projects_dir(config_dir)
        store = ProjectStateStore(folder / "projects.db")
        store.record_download(Project(id="p1", name="Cueva"), downloaded_at=0.0)
        store.close()
        return folder / "p1.tml"

    def test_local_lists_records(self, runner: CliRunner, logged_in: Path) -> None:
        """Should list downloaded projects and flag missing files."""
        self.record(logged_in)

        result = runner.invoke(cli, ["local"])

        assert result.exit_code == 0, result.output
        assert result.output.startswith("p1  Cueva  downloaded ")
        assert "uploaded never" in result.output
        assert "(no local file)" in result.output

    def test_local_empty(self, runner: CliRunner, home: Path) -> None:
        """Should say when nothing was downloaded."""
        result = runner.invoke(cli, ["local"])

        assert result.exit_code == 0
        assert "No local projects." in result.output

    def test_forget(self, runner: CliRunner, logged_in: Path, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should delete the local file and record without contacting the server."""
        path = self.record(logged_in)
        path.write_bytes(b"survey")

        result = runner.invoke(cli, ["forget", "p1"])

        assert result.exit_code == 0, result.output
        assert not path.exists()
        store = ProjectStateStore(projects_dir(logged_in) / "projects.db")
        assert store.get("p1") is None
        store.close()
        assert httpx_mock.get_requests() == []

    def test_forget_unknown(self, runner: CliRunner, home: Path) -> None:
        """Should fail when there is nothing to forget."""
        result = runner.invoke(cli, ["forget", "nope"])

        assert result.exit_code == 1
        assert "No local copy of nope." in result.output
