"""
Audit Logger

Appends audit records to plain text files. The optional header line and
the optional ownership change are applied only when the file is created.
"""

import os
import pwd
from pathlib import Path

from reactd.common.config import LogTarget
from reactd.common.logging_setup import get_service_logger

logger = get_service_logger("actions.audit")


class AuditLogger:
    """
    Append-only writer for audit log files.

    Ownership assignment is best-effort: a failure is logged but does not
    turn an otherwise successful write into a failure.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def append(self, target: LogTarget, line: str) -> bool:
        """
        Append one line to the target file.

        Args:
            target: Log file parameters
            line: Record to append (newline is added)

        Returns:
            True if the record was written and the file closed cleanly
        """
        path = Path(target.path)
        is_new = not path.exists()

        try:
            with open(path, "a", encoding=self.encoding) as f:
                if is_new and target.header:
                    f.write(f"{target.header}\n")
                f.write(f"{line}\n")
        except OSError as e:
            logger.error(
                f"Unable to write file: {path} (Reason: {e.strerror or e})",
                extra={"path": str(path)},
            )
            return False

        if is_new:
            logger.debug(f"Created log file {path}")
            if target.owner:
                self._assign_owner(path, target.owner)

        return True

    def _assign_owner(self, path: Path, owner: str) -> None:
        """Give a newly created file to the named account"""
        try:
            account = pwd.getpwnam(owner)
        except KeyError:
            logger.error(f"Unable to chown log file {path}: unknown user {owner}")
            return

        try:
            os.chown(path, account.pw_uid, account.pw_gid)
        except OSError as e:
            logger.error(f"Unable to chown log file {path}: {e.strerror or e}")
