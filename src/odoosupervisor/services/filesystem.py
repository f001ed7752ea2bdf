"""Filesystem and account helpers for the STARTING phase."""

import grp
import logging
import os
import pwd
from typing import Callable, Iterable, Optional, Tuple


class FileSystemService:
    """Encapsulates ownership and permission side effects."""

    def __init__(self, logger: logging.Logger, run_cmd: Optional[Callable] = None):
        self.logger = logger
        self.run_cmd = run_cmd

    def set_permissions(self, path: str, mode: int):
        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def current_ids(self, user: str) -> Tuple[Optional[int], Optional[int]]:
        try:
            uid = pwd.getpwnam(user).pw_uid
        except KeyError:
            uid = None
        try:
            gid = grp.getgrnam(user).gr_gid
        except KeyError:
            gid = None
        return uid, gid

    def align_user_ids(self, user: str, puid: int, pgid: int):
        """Moves the service account to the requested uid/gid (no-op when equal)."""
        current_uid, current_gid = self.current_ids(user)

        if current_gid is not None and current_gid != pgid:
            self.logger.info("Changing %s group GID from %s to %s...", user, current_gid, pgid)
            self.run_cmd(["groupmod", "-o", "-g", str(pgid), user], check=True, capture_output=True)

        if current_uid is not None and current_uid != puid:
            self.logger.info("Changing %s user UID from %s to %s...", user, current_uid, puid)
            self.run_cmd(["usermod", "-o", "-u", str(puid), user], check=True, capture_output=True)

    def chown_tree(self, root: str, uid: int, gid: int):
        if not os.path.exists(root):
            return

        self._chown(root, uid, gid)
        for current_root, dirs, files in os.walk(root):
            for name in dirs + files:
                self._chown(os.path.join(current_root, name), uid, gid)

    def fix_ownership(self, paths: Iterable[str], user: str):
        uid, gid = self.current_ids(user)
        if uid is None or gid is None:
            self.logger.warning("User %s not found, skipping ownership fixes.", user)
            return

        self.logger.info("Fixing ownership of Odoo directories...")
        for path in paths:
            self.chown_tree(path, uid, gid)

    def _chown(self, path: str, uid: int, gid: int):
        try:
            stat = os.lstat(path)
            if stat.st_uid != uid or stat.st_gid != gid:
                os.lchown(path, uid, gid)
        except OSError as exc:
            self.logger.warning("Could not change owner of %s: %s", path, exc)
