"""
FTP mirror client using ftplib.

Lists a remote directory tree with MLSD, or with NLST and MDTM on servers
that do not implement MLSD, and downloads files one at a time with RETR. Identifiers are paths relative to the directory passed
to the most recent query().
"""

import ftplib
import logging
import posixpath
import time
from pathlib import Path
from typing import Iterator, Optional

from ..sync.models import ItemRecord
from ..sync.source import FailureKind, SourceError
from .models import RemoteFile

logger = logging.getLogger(__name__)

# Replies meaning the server does not implement a command
UNSUPPORTED_COMMAND_CODES = ("500", "502")


class FTPSourceError(SourceError):
    """Raised when an FTP command fails."""
    pass


def classify_ftp_error(error: Exception) -> FailureKind:
    """Map an ftplib or socket error to a failure kind."""
    code = str(error)[:3]

    if isinstance(error, ftplib.error_temp):
        if code == "421":
            return FailureKind.RATE_LIMITED
        return FailureKind.TRANSIENT
    if isinstance(error, ftplib.error_perm):
        if code == "550":
            return FailureKind.NOT_FOUND
        return FailureKind.UNEXPECTED
    if isinstance(error, (ftplib.error_reply, ftplib.error_proto)):
        return FailureKind.MALFORMED
    if isinstance(error, (OSError, EOFError)):
        return FailureKind.TRANSIENT
    return FailureKind.UNEXPECTED


class FTPClient:
    """
    Anonymous FTP client for mirroring a directory tree.

    Usage:
        with FTPClient(host="ftp.apple.asimov.net") as client:
            files = client.query("/pub/apple_II", limit=100)
            client.retrieve(files[0].path, Path("local/file.part"))
    """

    BLOCK_SIZE = 64 * 1024

    def __init__(
        self,
        host: str,
        port: int = 21,
        use_tls: bool = False,
        connect_timeout: float = 30.0,
        catalog_max_duration: float = 300.0,
        transfer_max_duration: float = 1800.0,
    ):
        """
        Initialize FTP client. The connection is opened lazily.

        Args:
            host: FTP server hostname
            port: FTP server port
            use_tls: Use explicit FTPS with a protected data channel
            connect_timeout: Socket timeout in seconds
            catalog_max_duration: Max seconds for walking a tree
            transfer_max_duration: Max seconds for one file download
        """
        self.host = host
        self.port = port
        self.use_tls = use_tls
        self.connect_timeout = connect_timeout
        self.catalog_max_duration = catalog_max_duration
        self.transfer_max_duration = transfer_max_duration

        self.remote_dir: Optional[str] = None
        self._ftp: Optional[ftplib.FTP] = None
        self._use_mlsd = True

    def __repr__(self) -> str:
        return f"FTPClient(host='{self.host}', port={self.port})"

    def _connect(self) -> ftplib.FTP:
        if self._ftp is not None:
            return self._ftp

        logger.debug(f"Connecting to {self.host}:{self.port}")
        ftp = ftplib.FTP_TLS() if self.use_tls else ftplib.FTP()
        ftp.connect(self.host, self.port, timeout=self.connect_timeout)
        ftp.login()
        if self.use_tls:
            ftp.prot_p()

        self._ftp = ftp
        return ftp

    def _reset(self) -> None:
        """Drop the control connection so the next call reconnects."""
        if self._ftp is not None:
            try:
                self._ftp.close()
            except OSError as e:
                logger.debug(f"Error while closing FTP connection: {e}")
            self._ftp = None

    def _wrap(self, error: Exception, operation: str) -> FTPSourceError:
        self._reset()
        return FTPSourceError(
            f"FTP {operation} on {self.host} failed: {error}",
            kind=classify_ftp_error(error),
        )

    def query(self, target: str, limit: int) -> list[RemoteFile]:
        """
        Walk a remote directory and list up to `limit` files.

        Directories are walked depth-first in sorted name order.

        Raises:
            FTPSourceError: On connection, protocol or listing failure
        """
        self.remote_dir = target
        started = time.monotonic()
        files: list[RemoteFile] = []

        try:
            ftp = self._connect()
            for remote_file in self._walk(ftp, target, ""):
                if time.monotonic() - started > self.catalog_max_duration:
                    raise FTPSourceError(
                        f"Listing {target} on {self.host} exceeded "
                        f"{self.catalog_max_duration:.0f}s",
                        kind=FailureKind.TRANSIENT,
                    )
                files.append(remote_file)
                if len(files) >= limit:
                    break
        except FTPSourceError:
            self._reset()
            raise
        except (ftplib.Error, OSError, EOFError) as e:
            raise self._wrap(e, f"listing of {target}") from e

        logger.info(f"Found {len(files)} files under {self.host}:{target}")
        return files

    def _walk(self, ftp: ftplib.FTP, root: str, relative: str) -> Iterator[RemoteFile]:
        directory = posixpath.join(root, relative) if relative else root
        entries = sorted(self._list(ftp, directory), key=lambda entry: entry[0])

        for name, facts in entries:
            kind = facts.get("type", "").lower()
            if name in (".", "..") or kind in ("cdir", "pdir"):
                continue
            if kind == "dir":
                yield from self._walk(ftp, root, f"{relative}/{name}" if relative else name)
            elif kind == "file":
                yield RemoteFile.from_mlsd(relative, name, facts)

    def _list(self, ftp: ftplib.FTP, directory: str) -> list[tuple[str, dict]]:
        """List a directory as MLSD-style (name, facts) pairs."""
        if self._use_mlsd:
            try:
                return list(ftp.mlsd(directory, facts=["type", "modify"]))
            except ftplib.error_perm as e:
                if str(e)[:3] not in UNSUPPORTED_COMMAND_CODES:
                    raise
                logger.info(f"{self.host} does not support MLSD ({e}); using NLST and MDTM")
                self._use_mlsd = False

        return self._list_without_mlsd(ftp, directory)

    def _list_without_mlsd(self, ftp: ftplib.FTP, directory: str) -> list[tuple[str, dict]]:
        """
        List a directory with NLST, typing each entry with CWD and MDTM.

        Servers commonly answer NLST on an empty directory with 550, so a
        550 is only treated as missing if the directory cannot be entered.
        """
        try:
            names = ftp.nlst(directory)
        except ftplib.error_perm as e:
            if str(e)[:3] != "550":
                raise
            ftp.cwd(directory)
            names = []

        entries = []
        for name in names:
            name = posixpath.basename(name.rstrip("/"))
            if name in ("", ".", ".."):
                continue
            entries.append((name, self._stat(ftp, posixpath.join(directory, name))))
        return entries

    def _stat(self, ftp: ftplib.FTP, path: str) -> dict:
        try:
            ftp.cwd(path)
            return {"type": "dir"}
        except ftplib.error_perm:
            pass

        try:
            reply = ftp.sendcmd(f"MDTM {path}")
        except ftplib.error_perm as e:
            logger.debug(f"No modification time for {path}: {e}")
            return {"type": "file"}
        return {"type": "file", "modify": reply[4:].strip()}

    def parse_catalog(self, payload: list[RemoteFile]) -> list[ItemRecord]:
        return [remote_file.to_item() for remote_file in payload]

    def retrieve(self, identifier: str, destination: Path) -> None:
        """
        Download one file to destination.

        Raises:
            FTPSourceError: On connection failure, missing file or timeout
            OSError: If the destination cannot be written
        """
        if self.remote_dir is None:
            raise FTPSourceError(
                f"Cannot retrieve {identifier}: no directory has been listed",
                kind=FailureKind.UNEXPECTED,
            )

        remote_path = posixpath.join(self.remote_dir, identifier)
        logger.debug(f"From: ftp://{self.host}{remote_path}")
        started = time.monotonic()

        with open(destination, "wb") as f:
            def write(block: bytes) -> None:
                if time.monotonic() - started > self.transfer_max_duration:
                    raise FTPSourceError(
                        f"Download of {remote_path} exceeded "
                        f"{self.transfer_max_duration:.0f}s",
                        kind=FailureKind.TRANSIENT,
                    )
                f.write(block)

            try:
                ftp = self._connect()
                ftp.retrbinary(f"RETR {remote_path}", write, blocksize=self.BLOCK_SIZE)
            except FTPSourceError:
                self._reset()
                raise
            except (ftplib.Error, OSError, EOFError) as e:
                raise self._wrap(e, f"download of {remote_path}") from e

    def artifact_name(self, identifier: str) -> str:
        return identifier

    def working_dir_name(self, target: str) -> str:
        return target.strip("/").replace("/", "_") or self.host

    def close(self) -> None:
        """Close the FTP session."""
        if self._ftp is not None:
            try:
                self._ftp.quit()
            except (ftplib.Error, OSError, EOFError):
                self._ftp.close()
            self._ftp = None
        logger.debug("FTP client session closed")

    def __enter__(self) -> "FTPClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
