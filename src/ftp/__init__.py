"""FTP mirror client module."""

from .client import FTPClient
from .models import RemoteFile

__all__ = ["FTPClient", "RemoteFile"]
