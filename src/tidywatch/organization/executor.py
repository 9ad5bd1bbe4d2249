"""Collision-safe relocation of tracked files."""

from __future__ import annotations

import errno
import logging
import os
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from tidywatch.state import FileRecord, StateRepository, StoreUnavailableError

from .errors import (
    DestinationUnwritableError,
    NameCollisionError,
    OrganizationError,
    SourceMissingError,
)
from .models import MoveOperation

LOGGER = logging.getLogger(__name__)

# errno values meaning "hard links are not available here", not "forbidden".
_LINK_UNSUPPORTED = {
    errno.EPERM,
    errno.EMLINK,
    errno.EXDEV,
    getattr(errno, "ENOTSUP", errno.EOPNOTSUPP),
    errno.EOPNOTSUPP,
}


def disambiguate(candidate: Path, counter: int) -> Path:
    """Return ``candidate`` with `` (counter)`` inserted before its extension."""
    if counter <= 0:
        return candidate
    return candidate.with_name(f"{candidate.stem} ({counter}){candidate.suffix}")


def _occupied(path: Path) -> bool:
    return os.path.lexists(path)


def _same_folder(first: Path, second: Path) -> bool:
    try:
        return os.path.samefile(first, second)
    except OSError:
        return False


class MoveOperator:
    """Move tracked files into destination folders without ever overwriting.

    The filesystem step runs first; the store commit follows and is retried.
    Before touching the filesystem the intended destination is recorded as the
    record's ``pending_path`` so a crash between the two steps is repairable by
    reconciliation.
    """

    def __init__(
        self,
        repository: StateRepository,
        *,
        max_disambiguation: int = 10_000,
        write_retry_attempts: int = 3,
        write_retry_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the operator.

        Args:
            repository: Store holding the records being moved.
            max_disambiguation: Highest ``(n)`` suffix tried before giving up.
            write_retry_attempts: Attempts made to commit the new location.
            write_retry_delay: Delay between commit attempts.
            sleep: Sleep function, replaceable in tests.
        """
        self._repository = repository
        self._max_disambiguation = max(1, max_disambiguation)
        self._write_retry_attempts = max(1, write_retry_attempts)
        self._write_retry_delay = max(0.0, write_retry_delay)
        self._sleep = sleep

    def relocate(self, file_id: int, destination_folder: Path) -> MoveOperation:
        """Move a tracked file into ``destination_folder``.

        Args:
            file_id: Identifier of the record to move.
            destination_folder: Folder receiving the file; created when missing.

        Returns:
            MoveOperation: Description of the completed move.

        Raises:
            SourceMissingError: If the record or its file no longer exists.
            DestinationUnwritableError: If the destination cannot be written.
            NameCollisionError: If every disambiguated name is taken.
            StoreUnavailableError: If the store cannot record the move.
        """
        record = self._repository.get_file(file_id)
        if record is None:
            raise SourceMissingError(f"File {file_id} is not tracked.")
        source = Path(record.path)
        source_stat = self._stat_source(source)

        folder = Path(destination_folder).expanduser().resolve()
        self._prepare_folder(folder)
        if _same_folder(source.parent, folder):
            LOGGER.debug("%s already in %s", source, folder)
            return MoveOperation(file_id=file_id, source=source, destination=source)

        try:
            cross_device = source_stat.st_dev != folder.stat().st_dev
        except OSError as exc:
            raise DestinationUnwritableError(f"Cannot inspect {folder}: {exc}", path=folder) from exc

        candidate = folder / source.name
        for counter in range(self._max_disambiguation + 1):
            target = disambiguate(candidate, counter)
            if _occupied(target):
                continue
            self._repository.set_pending_path(file_id, target)
            try:
                if cross_device:
                    self._copy_commit(source, target, source_stat.st_size)
                else:
                    self._link_commit(source, target)
            except FileExistsError:
                LOGGER.debug("Lost race for %s, trying the next name", target)
                continue
            except OrganizationError:
                self._clear_pending(file_id)
                raise
            break
        else:
            self._clear_pending(file_id)
            raise NameCollisionError(
                f"No free name for {source.name} in {folder} after "
                f"{self._max_disambiguation} attempts.",
                path=source,
            )

        self._commit(record, target)
        LOGGER.info("Moved %s -> %s", source, target)
        return MoveOperation(
            file_id=file_id,
            source=source,
            destination=target,
            conflict_applied=target != candidate,
            cross_device=cross_device,
            reasoning=f"Moved into {folder}",
        )

    # ------------------------------------------------------------------ #
    # Filesystem steps                                                   #
    # ------------------------------------------------------------------ #

    def _stat_source(self, source: Path) -> os.stat_result:
        try:
            stat = source.stat()
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise SourceMissingError(f"Source file is missing: {source}", path=source) from exc
        except OSError as exc:
            raise OrganizationError(f"Cannot read {source}: {exc}", path=source) from exc
        if not source.is_file():
            raise SourceMissingError(f"Source is not a regular file: {source}", path=source)
        return stat

    def _prepare_folder(self, folder: Path) -> None:
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except FileExistsError as exc:
            raise DestinationUnwritableError(
                f"Destination {folder} exists and is not a folder.", path=folder
            ) from exc
        except OSError as exc:
            raise DestinationUnwritableError(
                f"Cannot create destination {folder}: {exc}", path=folder
            ) from exc
        if not os.access(folder, os.W_OK | os.X_OK):
            raise DestinationUnwritableError(f"Destination {folder} is not writable.", path=folder)

    def _link_commit(self, source: Path, target: Path) -> None:
        """Claim ``target`` with a hard link, then drop the source name."""
        try:
            os.link(source, target)
        except FileExistsError:
            raise
        except FileNotFoundError as exc:
            raise SourceMissingError(f"Source file is missing: {source}", path=source) from exc
        except OSError as exc:
            if exc.errno == errno.EACCES:
                raise DestinationUnwritableError(
                    f"Cannot write to {target.parent}: {exc}", path=target
                ) from exc
            if exc.errno not in _LINK_UNSUPPORTED:
                raise OrganizationError(f"Cannot move {source}: {exc}", path=source) from exc
            self._rename_commit(source, target)
            return

        try:
            source.unlink()
        except FileNotFoundError:
            LOGGER.debug("Source %s vanished after linking", source)
        except OSError as exc:
            target.unlink(missing_ok=True)
            raise OrganizationError(f"Cannot remove {source}: {exc}", path=source) from exc

    def _rename_commit(self, source: Path, target: Path) -> None:
        """Rename where hard links are unavailable, refusing occupied targets."""
        if _occupied(target):
            raise FileExistsError(str(target))
        try:
            os.rename(source, target)
        except FileNotFoundError as exc:
            raise SourceMissingError(f"Source file is missing: {source}", path=source) from exc
        except PermissionError as exc:
            raise DestinationUnwritableError(f"Cannot write to {target.parent}: {exc}", path=target) from exc
        except OSError as exc:
            raise OrganizationError(f"Cannot move {source}: {exc}", path=source) from exc

    def _copy_commit(self, source: Path, target: Path, expected_size: int) -> None:
        """Copy across filesystems through a hidden staging file."""
        staging = target.with_name(f".{target.name}.{os.getpid()}.partial")
        try:
            shutil.copy2(source, staging)
            copied = staging.stat().st_size
            if copied != expected_size:
                raise OrganizationError(
                    f"Copy of {source} is incomplete ({copied} of {expected_size} bytes).",
                    path=source,
                )
            self._link_commit(staging, target)
        except (FileExistsError, OrganizationError):
            raise
        except FileNotFoundError as exc:
            raise SourceMissingError(f"Source file is missing: {source}", path=source) from exc
        except PermissionError as exc:
            raise DestinationUnwritableError(f"Cannot write to {target.parent}: {exc}", path=target) from exc
        except OSError as exc:
            raise OrganizationError(f"Cannot copy {source}: {exc}", path=source) from exc
        finally:
            staging.unlink(missing_ok=True)

        try:
            source.unlink()
        except FileNotFoundError:
            LOGGER.debug("Source %s vanished after copying", source)
        except OSError as exc:
            target.unlink(missing_ok=True)
            raise OrganizationError(f"Cannot remove {source}: {exc}", path=source) from exc

    # ------------------------------------------------------------------ #
    # Store steps                                                        #
    # ------------------------------------------------------------------ #

    def _commit(self, record: FileRecord, target: Path) -> FileRecord:
        stat = target.stat()
        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        attempt = 1
        while True:
            try:
                return self._repository.update_file_location(
                    record.id, target, size_bytes=stat.st_size, modified_at=modified
                )
            except StoreUnavailableError as exc:
                if attempt >= self._write_retry_attempts:
                    LOGGER.error(
                        "Moved %s to %s but could not index it; reconciliation will repair it: %s",
                        record.path,
                        target,
                        exc,
                    )
                    raise
                LOGGER.warning(
                    "Store write failed for %s (attempt %d/%d): %s",
                    target,
                    attempt,
                    self._write_retry_attempts,
                    exc,
                )
                self._sleep(self._write_retry_delay)
                attempt += 1

    def _clear_pending(self, file_id: int) -> None:
        try:
            self._repository.set_pending_path(file_id, None)
        except StoreUnavailableError as exc:
            LOGGER.warning("Could not clear move intent of record %s: %s", file_id, exc)


__all__ = ["MoveOperator", "disambiguate"]
