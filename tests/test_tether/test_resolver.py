"""Tests for reverse_tether.tether.resolver — staging, backup and restore of resolv.conf."""

from __future__ import annotations

from unittest.mock import patch

from reverse_tether.tether.resolver import ResolverManager

ORIGINAL = "# original\nnameserver 192.168.1.1\n"
TETHER = "nameserver 8.8.8.8\nnameserver 8.8.4.4\n"


def _manager(tmp_path):
    return ResolverManager(
        resolver_path=str(tmp_path / "resolv.conf"),
        staging_path=str(tmp_path / "resolv.conf.tether"),
        backup_path=str(tmp_path / "resolv.conf.backup"),
    )


# ---------------------------------------------------------------------------
# Regular resolver file
# ---------------------------------------------------------------------------

class TestRegularFile:
    def test_apply_backs_up_and_replaces(self, tmp_path):
        live = tmp_path / "resolv.conf"
        live.write_text(ORIGINAL)
        manager = _manager(tmp_path)

        backup = manager.apply(["8.8.8.8", "8.8.4.4"])

        assert backup is not None
        assert backup.original_path == str(live)
        assert (tmp_path / "resolv.conf.backup").read_text() == ORIGINAL
        assert live.read_text() == TETHER

    def test_cleanup_restores_exact_content(self, tmp_path):
        live = tmp_path / "resolv.conf"
        live.write_text(ORIGINAL)
        manager = _manager(tmp_path)
        manager.apply(["8.8.8.8", "8.8.4.4"])

        assert manager.cleanup() == []
        assert live.read_text() == ORIGINAL
        assert not (tmp_path / "resolv.conf.backup").exists()
        assert not (tmp_path / "resolv.conf.tether").exists()
        assert manager.backup is None

    def test_restore_goes_to_recorded_original_path(self, tmp_path):
        live = tmp_path / "resolv.conf"
        live.write_text(ORIGINAL)
        manager = _manager(tmp_path)
        manager.apply(["8.8.8.8"])
        manager.resolver_path = tmp_path / "elsewhere.conf"

        manager.cleanup()

        assert live.read_text() == ORIGINAL
        assert not (tmp_path / "elsewhere.conf").exists()

    def test_second_apply_keeps_first_backup(self, tmp_path):
        live = tmp_path / "resolv.conf"
        live.write_text(ORIGINAL)
        manager = _manager(tmp_path)
        manager.apply(["8.8.8.8", "8.8.4.4"])
        manager.apply(["1.1.1.1"])

        assert (tmp_path / "resolv.conf.backup").read_text() == ORIGINAL
        manager.cleanup()
        assert live.read_text() == ORIGINAL

    def test_backup_removed_even_when_restore_fails(self, tmp_path):
        live = tmp_path / "resolv.conf"
        live.write_text(ORIGINAL)
        manager = _manager(tmp_path)
        manager.apply(["8.8.8.8"])

        with patch(
            "reverse_tether.tether.resolver.shutil.copy2",
            side_effect=PermissionError("read-only file system"),
        ):
            problems = manager.cleanup()

        assert len(problems) == 1
        assert "Could not restore" in problems[0]
        assert not (tmp_path / "resolv.conf.backup").exists()
        assert manager.backup is None


# ---------------------------------------------------------------------------
# Symlinked or missing resolver
# ---------------------------------------------------------------------------

class TestNoBackup:
    def test_symlink_is_written_through_without_backup(self, tmp_path):
        target = tmp_path / "stub-resolv.conf"
        target.write_text(ORIGINAL)
        live = tmp_path / "resolv.conf"
        live.symlink_to(target)
        manager = _manager(tmp_path)

        assert manager.apply(["8.8.8.8", "8.8.4.4"]) is None
        assert live.is_symlink()
        assert target.read_text() == TETHER
        assert not (tmp_path / "resolv.conf.backup").exists()

        assert manager.cleanup() == []
        assert live.is_symlink()

    def test_missing_resolver_is_created_without_backup(self, tmp_path):
        manager = _manager(tmp_path)
        assert manager.apply(["8.8.8.8"]) is None
        assert (tmp_path / "resolv.conf").read_text() == "nameserver 8.8.8.8\n"
        assert not (tmp_path / "resolv.conf.backup").exists()


# ---------------------------------------------------------------------------
# Cleanup without a session
# ---------------------------------------------------------------------------

class TestCleanup:
    def test_nothing_to_do(self, tmp_path):
        assert _manager(tmp_path).cleanup() == []

    def test_stale_backup_ignored_by_default(self, tmp_path):
        (tmp_path / "resolv.conf").write_text(TETHER)
        (tmp_path / "resolv.conf.backup").write_text(ORIGINAL)
        _manager(tmp_path).cleanup()
        assert (tmp_path / "resolv.conf").read_text() == TETHER
        assert (tmp_path / "resolv.conf.backup").exists()

    def test_stale_backup_restored_on_request(self, tmp_path):
        (tmp_path / "resolv.conf").write_text(TETHER)
        (tmp_path / "resolv.conf.backup").write_text(ORIGINAL)
        (tmp_path / "resolv.conf.tether").write_text(TETHER)

        assert _manager(tmp_path).cleanup(include_stale=True) == []
        assert (tmp_path / "resolv.conf").read_text() == ORIGINAL
        assert not (tmp_path / "resolv.conf.backup").exists()
        assert not (tmp_path / "resolv.conf.tether").exists()
