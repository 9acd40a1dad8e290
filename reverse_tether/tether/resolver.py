"""Resolver file staging, backup and restore."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from reverse_tether.core.models import ResolverBackup

logger = logging.getLogger(__name__)


class ResolverManager:
    """Owns /etc/resolv.conf while a session runs.

    A backup is only taken when the live file is a regular file. Symlinked
    resolvers (systemd-resolved, NetworkManager) are written through without one.
    """

    def __init__(
        self,
        resolver_path: str = "/etc/resolv.conf",
        staging_path: str = "/etc/resolv.conf.tether",
        backup_path: str = "/etc/resolv.conf.backup",
    ):
        self.resolver_path = Path(resolver_path)
        self.staging_path = Path(staging_path)
        self.backup_path = Path(backup_path)
        self.backup: Optional[ResolverBackup] = None
        self.applied = False

    def write_staging(self, servers: list[str]) -> Path:
        content = "".join(f"nameserver {server}\n" for server in servers)
        self.staging_path.write_text(content)
        return self.staging_path

    def backup_live(self) -> Optional[ResolverBackup]:
        live = self.resolver_path
        if live.is_symlink() or not live.is_file():
            logger.info("%s is not a regular file; no backup taken", live)
            return None
        shutil.copy2(live, self.backup_path)
        self.backup = ResolverBackup(
            path=str(self.backup_path), original_path=str(live)
        )
        logger.info("Backed up %s to %s", live, self.backup_path)
        return self.backup

    def apply(self, servers: list[str]) -> Optional[ResolverBackup]:
        """Stage the servers, back up the live file if allowed, then replace it."""
        staging = self.write_staging(servers)
        backup = self.backup
        # A second apply in the same session must not back up our own file.
        if not self.applied:
            backup = self.backup_live()
        shutil.copyfile(staging, self.resolver_path)
        self.applied = True
        return backup

    def cleanup(self, include_stale: bool = False) -> list[str]:
        """Remove staging, restore and delete any backup. Returns problems, never raises.

        ``include_stale`` also restores a backup file left behind by an
        earlier run that never reached its own cleanup.
        """
        problems: list[str] = []
        try:
            self.staging_path.unlink(missing_ok=True)
        except OSError as e:
            problems.append(f"Could not remove {self.staging_path}: {e}")

        backup_path = self.backup_path
        self.applied = False
        if self.backup is None and not (include_stale and backup_path.is_file()):
            return problems

        target = Path(self.backup.original_path) if self.backup else self.resolver_path
        try:
            shutil.copy2(backup_path, target)
            logger.info("Restored %s", target)
        except OSError as e:
            problems.append(f"Could not restore {target}: {e}")
        finally:
            try:
                os.remove(backup_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                problems.append(f"Could not remove {backup_path}: {e}")
            self.backup = None
        return problems
