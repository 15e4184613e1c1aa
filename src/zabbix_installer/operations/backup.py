"""
Pre-mutation backups of files touched by the installer.

Backed-up files are stored under a timestamped directory that mirrors their
absolute paths, e.g. /etc/zabbix/zabbix_agentd.conf is kept as
<backup_dir>/etc/zabbix/zabbix_agentd.conf.
"""

import logging
import os
import shutil
import tempfile
from datetime import datetime
from typing import Dict, Optional

from src.i18n import _


def default_backup_dir(timestamp: Optional[datetime] = None) -> str:
    """Backup directory for a run started at the given time."""
    stamp = (timestamp or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return os.path.join(tempfile.gettempdir(), f"zabbix_backup_{stamp}")


class BackupManager:
    """Keeps a copy of every file before the installer first changes it."""

    def __init__(self, backup_dir: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.backup_dir = backup_dir or default_backup_dir()
        # original path -> backup copy
        self.backups: Dict[str, str] = {}

    def backup_path(self, path: str) -> str:
        return os.path.join(self.backup_dir, os.path.abspath(path).lstrip(os.sep))

    def backup_file(self, path: str) -> Optional[str]:
        """
        Copy a file into the backup directory.

        Only the first backup of a path is kept, so a later call never
        overwrites the pristine copy. Returns the backup path, or None when
        the file does not exist.
        """
        if path in self.backups:
            return self.backups[path]
        if not os.path.isfile(path):
            self.logger.debug("Nothing to back up at %s", path)
            return None

        target = self.backup_path(path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        shutil.copy2(path, target)
        self.backups[path] = target
        self.logger.info(_("Backed up %s to %s"), path, target)
        return target

    def has_backup(self, path: str) -> bool:
        return path in self.backups

    async def restore_file(self, path: str) -> bool:
        """
        Put the pre-mutation copy of a file back in place.

        The parent directory is recreated when a package purge removed it.
        """
        backup = self.backups.get(path)
        if backup is None or not os.path.isfile(backup):
            self.logger.warning("No backup available for %s", path)
            return False
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        shutil.copy2(backup, path)
        self.logger.info(_("Restored %s from backup"), path)
        return True
