"""Tests for the dotvault CLI commands via CliRunner."""

from __future__ import annotations

import errno
import os
from pathlib import Path

import pytest
from click.testing import CliRunner

from dotvault.cli import main

PASSWORD = "correctpw12"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def home_dir(tmp_path: Path) -> str:
    return str(tmp_path / "dvhome")


@pytest.fixture
def cli(runner, home_dir):
    """Invoke a command against the test home directory."""

    def _invoke(*args: str, password: str | None = None, input: str | None = None):
        env = {"DOTVAULT_PASSWORD": password} if password is not None else None
        return runner.invoke(main, [*args, "--home", home_dir], env=env, input=input)

    return _invoke


@pytest.fixture
def plain(cli, remote):
    """A configured plaintext, mutable vault."""
    result = cli("init", remote, "--no-encrypt", "--mutable")
    assert result.exit_code == 0, result.output
    return cli


@pytest.fixture
def encrypted(cli, remote):
    """A configured password-encrypted vault."""
    result = cli("init", remote, "--mutable", password=PASSWORD)
    assert result.exit_code == 0, result.output
    return cli


class TestInit:
    """Tests for `dotvault init`."""

    def test_init_plaintext(self, plain, home_dir):
        assert (Path(home_dir) / "config.yaml").exists()
        assert (Path(home_dir) / "vault" / ".git").exists()

    def test_init_reports_panel(self, cli, remote):
        result = cli("init", remote, "--no-encrypt")
        assert result.exit_code == 0
        assert "dotvault initialized" in result.output
        assert "none" in result.output

    def test_init_twice_refused(self, plain, remote):
        result = plain("init", remote, "--no-encrypt")
        assert result.exit_code == 1
        assert "already configured" in result.output

    def test_init_with_password_prompt(self, cli, remote):
        """Without the env var the password is prompted twice."""
        result = cli("init", remote, input=f"{PASSWORD}\n{PASSWORD}\n")
        assert result.exit_code == 0, result.output
        assert "password" in result.output

    def test_not_configured(self, cli):
        result = cli("list")
        assert result.exit_code == 1
        assert "not configured" in result.output


class TestFileCommands:
    """Tests for add/show/get/set/unset/list/rm."""

    def test_add_and_get(self, plain):
        result = plain("add", "app", "dev", "PORT=3000", "DEBUG=true")
        assert result.exit_code == 0
        assert "app/dev/.env" in result.output

        result = plain("get", "app/dev/.env", "PORT")
        assert result.exit_code == 0
        assert result.output.strip() == "3000"

    def test_get_missing_key(self, plain):
        plain("add", "app", "dev", "PORT=3000")
        result = plain("get", "app/dev/.env", "NOPE")
        assert result.exit_code == 1
        assert "Variable not found" in result.output

    def test_add_rejects_bad_assignment(self, plain):
        result = plain("add", "app", "dev", "NOEQUALS")
        assert result.exit_code != 0

    def test_show_masks_unless_revealed(self, plain):
        plain("add", "app", "dev", "TOKEN=supersecretvalue")
        masked = plain("show", "app/dev/.env")
        assert "supersecretvalue" not in masked.output
        assert "********" in masked.output

        revealed = plain("show", "app/dev/.env", "--reveal")
        assert "supersecretvalue" in revealed.output

    def test_set_and_unset(self, plain):
        plain("add", "app", "dev", "PORT=3000")
        assert plain("set", "app/dev/.env", "PORT=4000", "HOST=local").exit_code == 0
        assert plain("get", "app/dev/.env", "PORT").output.strip() == "4000"

        result = plain("unset", "app/dev/.env", "HOST")
        assert "Removed" in result.output
        result = plain("unset", "app/dev/.env", "HOST")
        assert "is not set" in result.output

    def test_list(self, plain):
        assert "No files tracked" in plain("list").output
        plain("add", "app", "dev", "A=1")
        plain("add", "web", "prod", "B=2")
        assert "web/prod/.env" in plain("list").output
        filtered = plain("list", "app").output
        assert "app/dev/.env" in filtered
        assert "web/prod/.env" not in filtered

    def test_rm_with_confirmation(self, plain):
        plain("add", "app", "dev", "A=1")
        declined = plain("rm", "app/dev/.env", input="n\n")
        assert declined.exit_code == 0
        assert "app/dev/.env" in plain("list").output

        assert plain("rm", "app/dev/.env", "--yes").exit_code == 0
        assert "No files tracked" in plain("list").output

    def test_import_and_export(self, plain, tmp_path):
        source = tmp_path / "in.env"
        source.write_text("PORT=3000\n")
        assert plain("import", str(source), "app", "dev").exit_code == 0

        target = tmp_path / "out.env"
        assert plain("export", "app/dev/.env", str(target)).exit_code == 0
        assert target.read_text() == "PORT=3000\n"

    def test_import_missing_file(self, plain, tmp_path):
        result = plain("import", str(tmp_path / "absent.env"), "app", "dev")
        assert result.exit_code == 1
        assert "does not exist" in result.output


class TestEncrypted:
    """Tests for password handling through the CLI."""

    def test_password_from_environment(self, encrypted):
        assert encrypted("add", "app", "dev", "PORT=3000", password=PASSWORD).exit_code == 0
        result = encrypted("get", "app/dev/.env", "PORT", password=PASSWORD)
        assert result.output.strip() == "3000"

    def test_wrong_password(self, encrypted):
        encrypted("add", "app", "dev", "PORT=3000", password=PASSWORD)
        result = encrypted("get", "app/dev/.env", "PORT", password="wrongpw123")
        assert result.exit_code == 1
        assert "Decryption failed" in result.output

    def test_passwd(self, encrypted):
        encrypted("add", "app", "dev", "PORT=3000", password=PASSWORD)
        result = encrypted("passwd", "--yes", input=f"{PASSWORD}\nnewpassword\nnewpassword\n")
        assert result.exit_code == 0, result.output
        assert "Re-encrypted 1 file(s)" in result.output

        result = encrypted("get", "app/dev/.env", "PORT", password="newpassword")
        assert result.output.strip() == "3000"

    def test_rotate_to_none(self, encrypted, home_dir):
        encrypted("add", "app", "dev", "PORT=3000", password=PASSWORD)
        result = encrypted("rotate", "--method", "none", "--yes", password=PASSWORD)
        assert result.exit_code == 0, result.output
        assert (Path(home_dir) / "vault" / "app" / "dev" / ".env").read_text() == "PORT=3000\n"
        assert encrypted("get", "app/dev/.env", "PORT").output.strip() == "3000"


class TestLinkCommands:
    """Tests for link/unlink/links."""

    def test_symlink_and_listing(self, plain, tmp_path):
        plain("add", "app", "dev", "PORT=3000")
        target = tmp_path / "proj" / ".env"
        result = plain("link", "app/dev/.env", str(target))
        assert result.exit_code == 0
        assert "symlink" in result.output
        assert target.is_symlink()

        listing = plain("links")
        assert "valid" in listing.output

        assert "Unlinked" in plain("unlink", str(target)).output
        assert not os.path.lexists(target)
        assert "was not linked" in plain("unlink", str(target)).output

    def test_encrypted_source_becomes_copy(self, encrypted, tmp_path):
        encrypted("add", "app", "dev", "PORT=3000", password=PASSWORD)
        target = tmp_path / "proj" / ".env"
        result = encrypted("link", "app/dev/.env", str(target), password=PASSWORD)
        assert result.exit_code == 0, result.output
        assert "copy" in result.output
        assert not target.is_symlink()
        assert target.read_text() == "PORT=3000\n"

    def test_symlink_refusal_falls_back_to_copy(self, plain, tmp_path, monkeypatch):
        def refuse(src, dst):
            raise OSError(errno.EPERM, "Operation not permitted")

        monkeypatch.setattr("dotvault.links.os.symlink", refuse)
        plain("add", "app", "dev", "PORT=3000")
        target = tmp_path / "proj" / ".env"
        result = plain("link", "app/dev/.env", str(target))
        assert result.exit_code == 0, result.output
        assert "falling" in result.output
        assert "(copy)" in result.output
        assert not target.is_symlink()
        assert target.read_text() == "PORT=3000\n"

    def test_links_sync_and_repair(self, plain, tmp_path):
        plain("add", "app", "dev", "PORT=3000")
        target = tmp_path / "copy.env"
        plain("link", "app/dev/.env", str(target), "--copy")
        target.unlink()

        result = plain("links", "repair")
        assert result.exit_code == 0
        assert "Repaired: 1" in result.output
        assert target.exists()

        result = plain("links", "sync")
        assert "1 updated" in result.output


class TestPullCommand:
    """Tests for `dotvault pull` and project detection."""

    @pytest.fixture
    def project_dir(self, tmp_path: Path) -> Path:
        path = tmp_path / "App"
        path.mkdir()
        return path

    def test_single_environment(self, plain, project_dir):
        plain("add", "app", "dev", "PORT=3000")
        result = plain("pull", "--dir", str(project_dir))
        assert result.exit_code == 0, result.output
        assert "Pulled" in result.output
        target = project_dir / ".env"
        assert not target.is_symlink()
        assert target.read_text() == "PORT=3000\n"

    def test_env_option_and_symlink(self, plain, project_dir):
        plain("add", "app", "dev", "PORT=3000")
        plain("add", "app", "prod", "PORT=80")
        result = plain("pull", "--dir", str(project_dir), "--env", "PROD", "--symlink")
        assert result.exit_code == 0, result.output
        target = project_dir / ".env"
        assert target.is_symlink()
        assert target.read_text() == "PORT=80\n"

    def test_prompts_when_several_match(self, plain, project_dir):
        plain("add", "app", "dev", "PORT=3000")
        plain("add", "app", "prod", "PORT=80")
        result = plain("pull", "--dir", str(project_dir), input="2\n")
        assert result.exit_code == 0, result.output
        assert (project_dir / ".env").read_text() == "PORT=80\n"

    def test_existing_file_backed_up_with_force(self, plain, project_dir):
        plain("add", "app", "dev", "PORT=3000")
        (project_dir / ".env").write_text("OLD=1\n")
        result = plain("pull", "--dir", str(project_dir), "--force")
        assert result.exit_code == 0, result.output
        assert (project_dir / ".env.backup").read_text() == "OLD=1\n"
        assert (project_dir / ".env").read_text() == "PORT=3000\n"

    def test_existing_file_kept_when_declined(self, plain, project_dir):
        plain("add", "app", "dev", "PORT=3000")
        (project_dir / ".env").write_text("OLD=1\n")
        result = plain("pull", "--dir", str(project_dir), input="n\n")
        assert result.exit_code == 0
        assert (project_dir / ".env").read_text() == "OLD=1\n"
        assert not (project_dir / ".env.backup").exists()

    def test_encrypted_symlink_request_becomes_copy(self, encrypted, project_dir):
        encrypted("add", "app", "dev", "PORT=3000", password=PASSWORD)
        result = encrypted("pull", "--dir", str(project_dir), "--symlink", password=PASSWORD)
        assert result.exit_code == 0, result.output
        target = project_dir / ".env"
        assert not target.is_symlink()
        assert target.read_text() == "PORT=3000\n"

    def test_unknown_project(self, plain, tmp_path):
        plain("add", "app", "dev", "PORT=3000")
        other = tmp_path / "elsewhere"
        other.mkdir()
        result = plain("pull", "--dir", str(other))
        assert result.exit_code == 1
        assert "No env files" in result.output

    def test_unknown_environment(self, plain, project_dir):
        plain("add", "app", "dev", "PORT=3000")
        result = plain("pull", "--dir", str(project_dir), "--env", "staging")
        assert result.exit_code == 1
        assert "staging" in result.output


class TestLockAndSync:
    """Tests for lock/unlock/sync/status."""

    def test_lock_and_unlock(self, plain, home_dir):
        plain("add", "app", "dev", "A=1")
        blob = Path(home_dir) / "vault" / "app" / "dev" / ".env"

        assert plain("lock", "app/dev/.env").exit_code == 0
        assert not os.stat(blob).st_mode & 0o200

        result = plain("unlock", "app/dev/.env")
        assert "dotvault lock" in result.output
        assert os.stat(blob).st_mode & 0o200

    def test_sync_then_status(self, plain):
        plain("add", "app", "dev", "A=1")
        result = plain("sync")
        assert result.exit_code == 0
        assert "pushed" in result.output

        assert "Already in sync" in plain("sync").output

        status = plain("status")
        assert "main" in status.output
        assert "Ahead: 0" in status.output
        assert "Last sync" in status.output

    def test_one_way_sync(self, plain):
        assert "No upstream" in plain("sync", "--pull").output

        plain("add", "app", "dev", "A=1")
        result = plain("sync", "--push")
        assert result.exit_code == 0, result.output
        assert "pushed" in result.output
        assert "Ahead: 0" in plain("status").output

        result = plain("sync", "--pull")
        assert result.exit_code == 0
        assert "Pulled latest changes" in result.output
