"""
Remote mirror client: an FTP implementation and an in-memory test double.

Every call opens its own session, performs one logical action and releases
the session on every exit path. Transfers are always binary.
"""

from __future__ import annotations

import ftplib
import io
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol

from sitestore.errors import (
    CorruptPayload,
    MirrorError,
    MirrorNotFound,
    MirrorTransferError,
    MirrorUnreachable,
)
from sitestore.payloads import verify_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteEntry:
    name: str
    size: int


@dataclass
class MirrorBreaker:
    """
    Tracks mirror health for write operations.

    After ``failure_threshold`` consecutive connection-level failures the
    breaker opens and stays open for the life of the process. Reads ignore it.
    """

    failure_threshold: int = 1
    consecutive_failures: int = 0
    successes: int = 0
    tripped: bool = False

    def is_write_allowed(self) -> bool:
        return not self.tripped

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        if not self.tripped and self.consecutive_failures >= self.failure_threshold:
            self.tripped = True
            logger.warning("Mirror unreachable, disabling mirror writes until restart")

    def record_success(self) -> None:
        self.successes += 1
        if not self.tripped:
            self.consecutive_failures = 0


class MirrorClient(Protocol):
    """Defines the operations the core needs from the remote mirror."""

    breaker: MirrorBreaker

    def upload(self, data: bytes, remote_name: str) -> None:
        ...

    def download(self, remote_name: str) -> bytes:
        ...

    def list_files(self) -> list[RemoteEntry]:
        ...

    def remove(self, remote_name: str) -> None:
        ...

    def probe(self) -> bool:
        ...


def _is_missing(exc: ftplib.Error) -> bool:
    return str(exc).startswith("550")


@dataclass
class FtpMirrorClient:
    """FTP-backed mirror living in a single remote directory."""

    host: str
    port: int = 21
    user: str = "anonymous"
    password: str = ""
    remote_path: str = "uploads"
    timeout: float = 20.0
    breaker: MirrorBreaker = field(default_factory=MirrorBreaker)

    def _unreachable(self, exc: BaseException) -> MirrorUnreachable:
        self.breaker.record_failure()
        return MirrorUnreachable(f"{self.host}:{self.port}: {exc}")

    def _enter_base_dir(self, ftp: ftplib.FTP, create: bool) -> None:
        if not self.remote_path:
            return
        try:
            ftp.cwd(self.remote_path)
            return
        except ftplib.error_perm as exc:
            if not create:
                raise MirrorNotFound(f"remote directory {self.remote_path}") from exc
        for part in self.remote_path.strip("/").split("/"):
            try:
                ftp.cwd(part)
            except ftplib.error_perm:
                ftp.mkd(part)
                ftp.cwd(part)
        logger.info("Created remote directory %s", self.remote_path)

    @contextmanager
    def _session(self, create_dir: bool = False) -> Iterator[ftplib.FTP]:
        ftp = ftplib.FTP(timeout=self.timeout)
        try:
            try:
                ftp.connect(self.host, self.port)
                ftp.login(self.user, self.password)
                self._enter_base_dir(ftp, create=create_dir)
                ftp.voidcmd("TYPE I")
            except (OSError, EOFError, ftplib.error_temp, ftplib.error_reply) as exc:
                raise self._unreachable(exc) from exc
            except ftplib.error_perm as exc:
                if str(exc).startswith("530"):
                    raise self._unreachable(exc) from exc
                raise MirrorTransferError(str(exc)) from exc
            yield ftp
        finally:
            if ftp.sock is None:
                ftp.close()
            else:
                try:
                    ftp.quit()
                except ftplib.all_errors:
                    ftp.close()

    def _read(self, ftp: ftplib.FTP, remote_name: str) -> bytes:
        buffer = io.BytesIO()
        ftp.retrbinary(f"RETR {remote_name}", buffer.write)
        return buffer.getvalue()

    def upload(self, data: bytes, remote_name: str) -> None:
        if not self.breaker.is_write_allowed():
            raise MirrorUnreachable("mirror writes disabled")
        with self._session(create_dir=True) as ftp:
            try:
                ftp.storbinary(f"STOR {remote_name}", io.BytesIO(data))
                echoed = self._read(ftp, remote_name)
            except (OSError, EOFError) as exc:
                raise self._unreachable(exc) from exc
            except ftplib.Error as exc:
                raise MirrorTransferError(f"{remote_name}: {exc}") from exc
            try:
                verify_payload(remote_name, echoed, expected_size=len(data))
            except CorruptPayload as exc:
                try:
                    ftp.delete(remote_name)
                except ftplib.Error:
                    logger.warning("Could not remove partial remote copy %s", remote_name)
                raise MirrorTransferError(str(exc)) from exc
        self.breaker.record_success()
        logger.info("Uploaded %s to mirror (%d bytes)", remote_name, len(data))

    def download(self, remote_name: str) -> bytes:
        with self._session() as ftp:
            try:
                data = self._read(ftp, remote_name)
            except (OSError, EOFError) as exc:
                raise self._unreachable(exc) from exc
            except ftplib.Error as exc:
                if _is_missing(exc):
                    raise MirrorNotFound(remote_name) from exc
                raise MirrorTransferError(f"{remote_name}: {exc}") from exc
        self.breaker.record_success()
        return data

    def list_files(self) -> list[RemoteEntry]:
        try:
            with self._session() as ftp:
                try:
                    return self._list(ftp)
                except (OSError, EOFError) as exc:
                    raise self._unreachable(exc) from exc
                except ftplib.Error as exc:
                    raise MirrorTransferError(f"listing failed: {exc}") from exc
        except MirrorNotFound:
            return []

    def _list(self, ftp: ftplib.FTP) -> list[RemoteEntry]:
        try:
            return [
                RemoteEntry(name=name, size=int(facts.get("size", 0)))
                for name, facts in ftp.mlsd(facts=["type", "size"])
                if facts.get("type") == "file"
            ]
        except ftplib.error_perm as exc:
            # Servers without MLSD fall back to NLST + SIZE.
            logger.debug("MLSD unavailable (%s), using NLST", exc)
        try:
            names = ftp.nlst()
        except ftplib.error_perm as exc:
            if _is_missing(exc):
                return []
            raise MirrorTransferError(str(exc)) from exc
        entries = []
        for name in names:
            name = name.rsplit("/", 1)[-1]
            if name in (".", ".."):
                continue
            try:
                size = ftp.size(name)
            except ftplib.error_perm:
                # Directories do not answer SIZE.
                continue
            entries.append(RemoteEntry(name=name, size=size or 0))
        return entries

    def remove(self, remote_name: str) -> None:
        if not self.breaker.is_write_allowed():
            raise MirrorUnreachable("mirror writes disabled")
        with self._session() as ftp:
            try:
                ftp.delete(remote_name)
            except (OSError, EOFError) as exc:
                raise self._unreachable(exc) from exc
            except ftplib.Error as exc:
                if _is_missing(exc):
                    raise MirrorNotFound(remote_name) from exc
                raise MirrorTransferError(f"{remote_name}: {exc}") from exc
        self.breaker.record_success()
        logger.info("Removed %s from mirror", remote_name)

    def probe(self) -> bool:
        try:
            with self._session():
                pass
        except MirrorNotFound:
            return True
        except MirrorError as exc:
            logger.warning("Mirror probe failed: %s", exc)
            return False
        return True


@dataclass
class InMemoryMirrorClient:
    """Test double for mirror interactions."""

    files: dict = field(default_factory=dict)
    reachable: bool = True
    corrupt_uploads: bool = False
    breaker: MirrorBreaker = field(default_factory=MirrorBreaker)

    def _connect(self) -> None:
        if not self.reachable:
            self.breaker.record_failure()
            raise MirrorUnreachable("in-memory mirror is offline")

    def upload(self, data: bytes, remote_name: str) -> None:
        if not self.breaker.is_write_allowed():
            raise MirrorUnreachable("mirror writes disabled")
        self._connect()
        # A corrupting transport drops the tail of the payload.
        self.files[remote_name] = data[: len(data) // 2] if self.corrupt_uploads else bytes(data)
        try:
            verify_payload(remote_name, self.files[remote_name], expected_size=len(data))
        except CorruptPayload as exc:
            del self.files[remote_name]
            raise MirrorTransferError(str(exc)) from exc
        self.breaker.record_success()

    def download(self, remote_name: str) -> bytes:
        self._connect()
        stored: Optional[bytes] = self.files.get(remote_name)
        if stored is None:
            raise MirrorNotFound(remote_name)
        self.breaker.record_success()
        return stored

    def list_files(self) -> list[RemoteEntry]:
        self._connect()
        return [RemoteEntry(name=name, size=len(data)) for name, data in self.files.items()]

    def remove(self, remote_name: str) -> None:
        if not self.breaker.is_write_allowed():
            raise MirrorUnreachable("mirror writes disabled")
        self._connect()
        if remote_name not in self.files:
            raise MirrorNotFound(remote_name)
        del self.files[remote_name]
        self.breaker.record_success()

    def probe(self) -> bool:
        return self.reachable


def fetch_verified(
    client: MirrorClient, remote_name: str, expected_size: Optional[int] = None
) -> bytes:
    """Download ``remote_name`` and raise CorruptPayload unless it checks out."""
    data = client.download(remote_name)
    verify_payload(remote_name, data, expected_size=expected_size)
    return data
