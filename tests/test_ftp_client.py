"""
Unit tests for the FTP mirror client.
"""

import ftplib
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from src.ftp.client import FTPClient, FTPSourceError, classify_ftp_error
from src.ftp.models import RemoteFile
from src.sync.models import ItemRecord
from src.sync.source import FailureKind


TREE = {
    "/pub/apple_II": [
        ("zork.dsk", {"type": "file", "modify": "20200101000000", "size": "143360"}),
        (".", {"type": "cdir"}),
        ("..", {"type": "pdir"}),
        ("games", {"type": "dir", "modify": "20190101000000"}),
        ("README", {"type": "file", "modify": "20180101000000.123"}),
    ],
    "/pub/apple_II/games": [
        ("lode_runner.dsk", {"type": "file", "modify": "20210101000000", "size": "143360"}),
        ("arcade", {"type": "dir"}),
    ],
    "/pub/apple_II/games/arcade": [
        ("choplifter.dsk", {"type": "file", "modify": "20220101000000"}),
    ],
}


@pytest.fixture
def ftp(monkeypatch) -> MagicMock:
    """Patch ftplib.FTP with a mock serving TREE."""
    connection = MagicMock()
    connection.mlsd.side_effect = lambda path, facts=None: iter(TREE[path])
    monkeypatch.setattr(ftplib, "FTP", MagicMock(return_value=connection))
    return connection


@pytest.fixture
def client() -> FTPClient:
    return FTPClient(host="ftp.test")


class TestRemoteFile:
    """Tests for RemoteFile parsing."""

    def test_from_mlsd(self):
        remote = RemoteFile.from_mlsd("games", "zork.dsk", {"modify": "20200101000000", "size": "10"})
        assert remote == RemoteFile("games/zork.dsk", "20200101000000")

    def test_from_mlsd_without_facts(self):
        remote = RemoteFile.from_mlsd("", "README", {})
        assert remote == RemoteFile("README", "")

    def test_to_item(self):
        assert RemoteFile("a/b", "20200101000000").to_item() == ItemRecord("a/b", "20200101000000")


class TestClassifyFtpError:
    """Tests for ftplib error classification."""

    @pytest.mark.parametrize(
        "error,kind",
        [
            (ftplib.error_temp("421 Too many connections"), FailureKind.RATE_LIMITED),
            (ftplib.error_temp("425 Can't open data connection"), FailureKind.TRANSIENT),
            (ftplib.error_perm("550 No such file"), FailureKind.NOT_FOUND),
            (ftplib.error_perm("530 Login incorrect"), FailureKind.UNEXPECTED),
            (ftplib.error_reply("150 odd reply"), FailureKind.MALFORMED),
            (ftplib.error_proto("garbage"), FailureKind.MALFORMED),
            (ConnectionResetError("reset"), FailureKind.TRANSIENT),
            (EOFError(), FailureKind.TRANSIENT),
        ],
    )
    def test_classification(self, error, kind):
        assert classify_ftp_error(error) is kind


class TestFTPClientQuery:
    """Tests for FTPClient.query."""

    def test_walks_tree_in_sorted_order(self, client, ftp):
        files = client.query("/pub/apple_II", limit=100)

        assert [f.path for f in files] == [
            "README",
            "games/arcade/choplifter.dsk",
            "games/lode_runner.dsk",
            "zork.dsk",
        ]
        ftp.connect.assert_called_once_with("ftp.test", 21, timeout=30.0)
        ftp.login.assert_called_once_with()

    def test_parse_catalog(self, client, ftp):
        items = client.parse_catalog(client.query("/pub/apple_II", limit=100))
        assert items[0] == ItemRecord("README", "20180101000000.123")

    def test_limit_stops_walk(self, client, ftp):
        files = client.query("/pub/apple_II", limit=2)
        assert len(files) == 2

    def test_connection_is_reused(self, client, ftp):
        client.query("/pub/apple_II", limit=100)
        client.query("/pub/apple_II", limit=100)

        assert ftplib.FTP.call_count == 1

    def test_missing_directory_is_not_found(self, client, ftp):
        ftp.mlsd.side_effect = ftplib.error_perm("550 /nope: No such file or directory")

        with pytest.raises(FTPSourceError) as exc_info:
            client.query("/nope", limit=10)

        assert exc_info.value.kind is FailureKind.NOT_FOUND
        ftp.close.assert_called_once()
        assert client._ftp is None

    def test_connection_refused_is_transient(self, client, ftp):
        ftp.connect.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(FTPSourceError) as exc_info:
            client.query("/pub/apple_II", limit=10)

        assert exc_info.value.kind is FailureKind.TRANSIENT

    def test_working_dir_name(self, client):
        assert client.working_dir_name("/pub/apple_II") == "pub_apple_II"
        assert client.working_dir_name("/") == "ftp.test"


class TestFTPClientWithoutMLSD:
    """Tests for listing servers that reject MLSD."""

    @pytest.fixture
    def legacy_ftp(self, ftp: MagicMock) -> MagicMock:
        """Serve TREE through NLST, CWD and MDTM only."""
        files = {
            f"{directory}/{name}": facts
            for directory, entries in TREE.items()
            for name, facts in entries
            if facts["type"] == "file"
        }

        def nlst(directory):
            if directory not in TREE:
                raise ftplib.error_perm("550 No such file or directory")
            return [f"{directory}/{name}" for name, facts in TREE[directory] if name not in (".", "..")]

        def cwd(path):
            if path not in TREE:
                raise ftplib.error_perm(f"550 {path}: Not a directory")
            return "250 OK"

        def sendcmd(command):
            path = command.split(" ", 1)[1]
            modify = files[path].get("modify")
            if modify is None:
                raise ftplib.error_perm("550 Could not get file modification time")
            return f"213 {modify}"

        ftp.mlsd.side_effect = ftplib.error_perm("500 MLSD not understood")
        ftp.nlst.side_effect = nlst
        ftp.cwd.side_effect = cwd
        ftp.sendcmd.side_effect = sendcmd
        return ftp

    def test_falls_back_to_nlst_and_mdtm(self, client, legacy_ftp):
        items = client.parse_catalog(client.query("/pub/apple_II", limit=100))

        assert items == [
            ItemRecord("README", "20180101000000.123"),
            ItemRecord("games/arcade/choplifter.dsk", "20220101000000"),
            ItemRecord("games/lode_runner.dsk", "20210101000000"),
            ItemRecord("zork.dsk", "20200101000000"),
        ]

    def test_mlsd_not_retried_after_rejection(self, client, legacy_ftp):
        client.query("/pub/apple_II", limit=100)
        client.query("/pub/apple_II", limit=100)

        assert legacy_ftp.mlsd.call_count == 1

    @pytest.mark.parametrize("reply", ["502 Command not implemented", "500 Unknown command"])
    def test_unsupported_replies_trigger_fallback(self, client, legacy_ftp, reply):
        legacy_ftp.mlsd.side_effect = ftplib.error_perm(reply)

        assert len(client.query("/pub/apple_II", limit=100)) == 4

    def test_file_without_mdtm_has_empty_marker(self, client, legacy_ftp):
        legacy_ftp.sendcmd.side_effect = ftplib.error_perm("502 MDTM not implemented")

        files = client.query("/pub/apple_II", limit=100)

        assert {f.modify for f in files} == {""}

    def test_empty_directory_answering_550(self, client, legacy_ftp):
        legacy_ftp.nlst.side_effect = ftplib.error_perm("550 No files found")

        assert client.query("/pub/apple_II", limit=100) == []

    def test_missing_directory_is_not_found(self, client, legacy_ftp):
        with pytest.raises(FTPSourceError) as exc_info:
            client.query("/nope", limit=10)

        assert exc_info.value.kind is FailureKind.NOT_FOUND

    def test_other_mlsd_errors_are_not_masked(self, client, legacy_ftp):
        legacy_ftp.mlsd.side_effect = ftplib.error_perm("530 Not logged in")

        with pytest.raises(FTPSourceError) as exc_info:
            client.query("/pub/apple_II", limit=10)

        assert exc_info.value.kind is FailureKind.UNEXPECTED
        legacy_ftp.nlst.assert_not_called()


class TestFTPClientRetrieve:
    """Tests for FTPClient.retrieve."""

    def test_retrieve_writes_blocks(self, client, ftp, tmp_path: Path):
        def retrbinary(command, callback, blocksize=None):
            callback(b"disk ")
            callback(b"image")

        ftp.retrbinary.side_effect = retrbinary
        client.query("/pub/apple_II", limit=100)
        destination = tmp_path / "zork.dsk.part"

        client.retrieve("zork.dsk", destination)

        assert destination.read_bytes() == b"disk image"
        assert ftp.retrbinary.call_args[0][0] == "RETR /pub/apple_II/zork.dsk"

    def test_retrieve_before_query(self, client, tmp_path: Path):
        with pytest.raises(FTPSourceError) as exc_info:
            client.retrieve("zork.dsk", tmp_path / "zork.dsk.part")

        assert exc_info.value.kind is FailureKind.UNEXPECTED

    def test_retrieve_missing_file(self, client, ftp, tmp_path: Path):
        ftp.retrbinary.side_effect = ftplib.error_perm("550 No such file")
        client.query("/pub/apple_II", limit=100)

        with pytest.raises(FTPSourceError) as exc_info:
            client.retrieve("gone.dsk", tmp_path / "gone.dsk.part")

        assert exc_info.value.kind is FailureKind.NOT_FOUND

    def test_close_quits_session(self, client, ftp):
        client.query("/pub/apple_II", limit=100)
        client.close()

        ftp.quit.assert_called_once()
        assert client._ftp is None
