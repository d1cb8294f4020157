"""Dead-drop mailboxes.

One directory per bearer token under the mailbox root, holding
``<id>.json`` blobs. A deposit adds one uniquely named file; a withdrawal
removes a random one and hands back its contents. Directories exist only
while they hold pending items.
"""
from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Any

from .config import MAX_ID_ATTEMPTS, RECORD_SUFFIX
from .errors import NotFound, StorageUnavailable
from .jsonio import create_json_exclusive, read_json
from .locks import PathLocks
from .security import mailbox_key, new_id


logger = logging.getLogger(__name__)


class MailboxStore:
    def __init__(self, root: Path, locks: PathLocks | None = None) -> None:
        self.root = root
        self._locks = locks or PathLocks()

    def box_dir(self, token: str) -> Path:
        return self.root / mailbox_key(token)

    def _entries(self, box: Path) -> list[str]:
        return sorted(
            child.name
            for child in box.iterdir()
            if child.suffix == RECORD_SUFFIX and child.is_file()
        )

    def _prune(self, box: Path) -> bool:
        """Remove box if it holds no pending items.

        Stray non-item files (leftover temp files, editor droppings) do not
        keep a mailbox alive; they are deleted with it. A subdirectory does.
        """
        try:
            children = list(box.iterdir())
            if any(child.suffix == RECORD_SUFFIX and child.is_file() for child in children):
                return False
            for child in children:
                if child.is_dir():
                    return False
                child.unlink(missing_ok=True)
            box.rmdir()
        except FileNotFoundError:
            return False
        except OSError:
            # Refilled by another process; the next prune retries.
            logger.warning("Could not remove mailbox %s", box.name, exc_info=True)
            return False
        return True

    def deposit(self, token: str, payload: Any) -> Path:
        """Store payload under token and return the new file's path.

        Raises StorageUnavailable after MAX_ID_ATTEMPTS name collisions or on
        an unexpected filesystem failure.
        """
        box = self.box_dir(token)
        with self._locks.hold(box):
            try:
                box.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageUnavailable() from exc

            for _ in range(MAX_ID_ATTEMPTS):
                path = box / f"{new_id()}{RECORD_SUFFIX}"
                try:
                    create_json_exclusive(path, payload)
                except FileExistsError:
                    logger.warning("Mailbox id collision, retrying")
                    continue
                except OSError as exc:
                    self._prune(box)
                    raise StorageUnavailable() from exc
                logger.info("Deposited %s", path.name)
                return path

        raise StorageUnavailable(f"No free mailbox name after {MAX_ID_ATTEMPTS} attempts")

    def withdraw(self, token: str) -> tuple[Any, str]:
        """Remove one random pending item and return (payload, filename).

        The file is deleted before this returns, so an item is handed out at
        most once. Raises NotFound when nothing is pending.
        """
        box = self.box_dir(token)
        with self._locks.hold(box):
            try:
                names = self._entries(box)
            except FileNotFoundError:
                raise NotFound("No data found for this token")
            if not names:
                self._prune(box)
                raise NotFound("No more data available")

            name = secrets.choice(names)
            path = box / name
            try:
                payload = read_json(path)
                path.unlink()
            except FileNotFoundError:
                # Taken by another process between listing and reading.
                raise NotFound("No more data available")
            except (OSError, ValueError) as exc:
                raise StorageUnavailable() from exc

            self._prune(box)

        logger.info("Withdrew %s", name)
        return payload, name

    def prune_empty(self) -> int:
        """Remove mailbox directories with nothing left in them.

        Returns the number of directories removed.
        """
        removed = 0
        if not self.root.exists():
            return 0
        for child in self.root.iterdir():
            if not child.is_dir():
                continue
            with self._locks.hold(child):
                if self._prune(child):
                    removed += 1
        if removed:
            logger.info("Pruned %d empty mailboxes", removed)
        return removed
