"""Cross-process write lock for the shared data directory."""
import atexit
import os
import secrets
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import structlog

from vulnmatch.core.config import LockConfig
from vulnmatch.core.config import ShutdownHookStrategy
from vulnmatch.core.errors import LockAcquisitionError

logger = structlog.get_logger('lock')


class ShutdownHook(Protocol):
    def register(self, lock: 'WriteLock') -> None:
        ...

    def unregister(self) -> None:
        ...


class AtexitShutdownHook:
    """Releases the lock when the interpreter exits."""

    def __init__(self) -> None:
        self._callback: Callable[[], None] | None = None

    def register(self, lock: 'WriteLock') -> None:
        self._callback = lock.release
        atexit.register(self._callback)

    def unregister(self) -> None:
        if self._callback is not None:
            atexit.unregister(self._callback)
            self._callback = None


class NoShutdownHook:
    def register(self, lock: 'WriteLock') -> None:
        pass

    def unregister(self) -> None:
        pass


def create_shutdown_hook(strategy: ShutdownHookStrategy) -> ShutdownHook:
    if strategy == ShutdownHookStrategy.ATEXIT:
        return AtexitShutdownHook()
    return NoShutdownHook()


class WriteLock:
    """
    Exclusive lock implemented as a token file in the data directory.

    The file is created exclusively, the holder's random token is written
    and flushed to disk, and after a short delay the file is read back.
    Only a token match confirms ownership. Files older than
    ``config.stale_after`` seconds belong to a crashed process and are
    removed. Release only deletes a file that still holds our token.

    Usage::

        with WriteLock(data_dir, config):
            ...
    """

    def __init__(
        self,
        data_dir: str | Path,
        config: LockConfig,
        shutdown_hook: ShutdownHook | None = None,
        token_factory: Callable[[], str] = lambda: secrets.token_hex(16),
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.data_dir = Path(data_dir)
        self.config = config
        self.lock_file = self.data_dir / config.lock_file_name
        self.token = token_factory()
        self._shutdown_hook = shutdown_hook or create_shutdown_hook(config.shutdown_hook)
        self._sleep = sleep
        self._clock = clock
        self._held = False

    @property
    def is_held(self) -> bool:
        return self._held

    def __enter__(self) -> 'WriteLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def acquire(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        for attempt in range(1, self.config.max_attempts + 1):
            self._remove_stale_lock()
            if self._try_create():
                self._held = True
                self._shutdown_hook.register(self)
                logger.debug('Lock obtained', path=str(self.lock_file), attempt=attempt)
                return
            logger.debug(
                'Lock is held by another process, waiting',
                path=str(self.lock_file), attempt=attempt,
                max_attempts=self.config.max_attempts,
            )
            if attempt < self.config.max_attempts:
                self._sleep(self.config.retry_interval)
        raise LockAcquisitionError(
            f"Unable to obtain the update lock at {self.lock_file}: another process is "
            'updating the data directory. Try again later, or remove the lock file if '
            'no other process is running.',
        )

    def release(self) -> None:
        if not self._held:
            return
        try:
            if self._read_token() == self.token:
                self.lock_file.unlink()
                logger.debug('Lock released', path=str(self.lock_file))
            else:
                logger.warning('Lock file no longer belongs to this process', path=str(self.lock_file))
        except FileNotFoundError:
            pass
        finally:
            self._held = False
            self._shutdown_hook.unregister()

    def break_lock(self) -> bool:
        """Remove the lock file whoever holds it. Returns False when there was none."""
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            return False
        logger.warning('Lock file removed', path=str(self.lock_file))
        return True

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        try:
            os.write(fd, self.token.encode('utf-8'))
            os.fsync(fd)
        finally:
            os.close(fd)
        self._sleep(self.config.confirm_delay)
        try:
            confirmed = self._read_token() == self.token
        except FileNotFoundError:
            confirmed = False
        if not confirmed:
            logger.debug('Lock was taken over while confirming', path=str(self.lock_file))
        return confirmed

    def _read_token(self) -> str:
        return self.lock_file.read_text(encoding='utf-8').strip()

    def _age(self, path: Path) -> float | None:
        try:
            return self._clock() - path.stat().st_mtime
        except FileNotFoundError:
            return None

    def _remove_stale_lock(self) -> None:
        """
        Claim a stale lock file by renaming it, then check the claimed file
        again. Another process may have replaced the stale file with a fresh
        lock after the first check; that lock is linked back into place.
        """
        age = self._age(self.lock_file)
        if age is None or age <= self.config.stale_after:
            return
        claim = self.lock_file.with_name(f"{self.lock_file.name}.{self.token}.stale")
        try:
            os.replace(self.lock_file, claim)
        except FileNotFoundError:
            return
        try:
            age = self._age(claim)
            if age is not None and age > self.config.stale_after:
                logger.warning(
                    'Removing stale lock file', path=str(self.lock_file), age_seconds=round(age),
                )
                return
            try:
                os.link(claim, self.lock_file)
            except FileExistsError:
                logger.warning('Could not restore a live lock file', path=str(self.lock_file))
        finally:
            claim.unlink(missing_ok=True)
