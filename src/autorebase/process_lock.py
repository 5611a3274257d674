from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import os
from pathlib import Path
import secrets
from typing import Iterator


class ProcessLockError(RuntimeError):
    """Raised when another run already owns the repository lock."""


@dataclass(frozen=True)
class LockOwner:
    pid: int | None
    command: str | None
    repo_full_name: str | None
    token: str | None


def lock_path_for(base_dir: Path, repo_full_name: str) -> Path:
    return base_dir / "locks" / f"{repo_full_name.replace('/', '__')}.lock"


@contextmanager
def run_lock(*, base_dir: Path, repo_full_name: str, command: str) -> Iterator[None]:
    lock_path = lock_path_for(base_dir, repo_full_name)
    token = _acquire(lock_path, repo_full_name=repo_full_name, command=command)
    try:
        yield
    finally:
        _release(lock_path, token)


def _acquire(lock_path: Path, *, repo_full_name: str, command: str) -> str:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    token = secrets.token_hex(16)
    payload = {
        "pid": os.getpid(),
        "command": command,
        "repo_full_name": repo_full_name,
        "started_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
        "token": token,
    }
    for _ in range(2):
        try:
            fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            owner = read_lock_owner(lock_path)
            if owner.pid is not None and owner.pid != os.getpid() and not _pid_is_running(
                owner.pid
            ):
                lock_path.unlink(missing_ok=True)
                continue
            raise ProcessLockError(_active_lock_message(lock_path, owner)) from None
        try:
            os.write(fd, (json.dumps(payload, sort_keys=True) + "\n").encode("utf-8"))
        except Exception:
            os.close(fd)
            lock_path.unlink(missing_ok=True)
            raise
        os.close(fd)
        return token
    raise ProcessLockError(_active_lock_message(lock_path, read_lock_owner(lock_path)))


def _release(lock_path: Path, token: str) -> None:
    # Only remove a lock that is still ours; a stale-lock reclaim may have replaced it.
    if read_lock_owner(lock_path).token == token:
        lock_path.unlink(missing_ok=True)


def read_lock_owner(lock_path: Path) -> LockOwner:
    empty = LockOwner(pid=None, command=None, repo_full_name=None, token=None)
    try:
        payload = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return empty
    if not isinstance(payload, dict):
        return empty
    pid = payload.get("pid")
    command = payload.get("command")
    repo_full_name = payload.get("repo_full_name")
    token = payload.get("token")
    return LockOwner(
        pid=pid if isinstance(pid, int) and not isinstance(pid, bool) else None,
        command=command if isinstance(command, str) else None,
        repo_full_name=repo_full_name if isinstance(repo_full_name, str) else None,
        token=token if isinstance(token, str) else None,
    )


def _active_lock_message(lock_path: Path, owner: LockOwner) -> str:
    owner_parts: list[str] = []
    if owner.pid is not None:
        owner_parts.append(f"pid={owner.pid}")
    if owner.command:
        owner_parts.append(f"command={owner.command}")
    owner_detail = f" ({', '.join(owner_parts)})" if owner_parts else ""
    return (
        f"Another autorebase run appears active{owner_detail}. Lock file: {lock_path}. "
        "If this lock is stale, stop running processes and remove the lock file, then retry."
    )


def _pid_is_running(pid: int) -> bool:
    if pid < 1:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
