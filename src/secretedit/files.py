import fcntl
import os
import pathlib
import tempfile
from typing import Optional

from secretedit import FileLockedError, output


def write_atomic(path: "pathlib.Path", content: bytes):
    """Replace `path` with `content` so readers never see partial output."""
    path = pathlib.Path(path)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        if path.exists():
            os.chmod(tmp, path.stat().st_mode & 0o7777)
        os.replace(tmp, path)
    except BaseException:
        os.unlink(tmp)
        raise


class ManifestFile(object):
    """A manifest on disk, locked while we work on it."""

    def __init__(self, path: "pathlib.Path", writeable: bool = False):
        self.path = pathlib.Path(path)
        self.writeable = writeable
        self.fd = None
        self._content: Optional[str] = None

    @property
    def locked(self) -> bool:
        return self.fd is not None

    def __enter__(self):
        self._lock()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self._unlock()

    def _lock(self):
        if self.locked:
            raise FileLockedError.from_context(self.path)
        self.fd = open(self.path, "r+" if self.writeable else "r")
        output.annotate(f"Locking `{self.path}`", debug=True)
        try:
            fcntl.lockf(
                self.fd,
                fcntl.LOCK_NB  # non-blocking
                | (
                    fcntl.LOCK_EX  # exclusive
                    if self.writeable
                    else fcntl.LOCK_SH  # shared
                ),
            )
        except BlockingIOError:
            self.fd.close()
            self.fd = None
            raise FileLockedError.from_context(self.path)

    def _unlock(self):
        output.annotate(f"Unlocking `{self.path}`", debug=True)
        if self.fd is not None:
            self.fd.close()
            self.fd = None

    def read(self) -> str:
        if not self.locked:
            raise RuntimeError("File not locked")
        if self._content is None:
            self._content = self.path.read_text(encoding="utf-8")
        return self._content

    def write(self, content: str):
        if not self.locked:
            raise RuntimeError("File not locked")
        if not self.writeable:
            raise RuntimeError("File not writeable")
        write_atomic(self.path, content.encode("utf-8"))
        self._content = content
