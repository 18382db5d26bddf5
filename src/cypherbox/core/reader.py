""" Raw payload reading and metadata helpers for local files. """

import mimetypes
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Union

from .models import DEFAULT_MIMETYPE, Metadata


CHUNK_SIZE = 65536  # 64KB

Handle = Union[str, os.PathLike, BinaryIO]


def read_all(handle: Handle) -> bytes:
    """
    Read every byte from a path or a binary file object.

    I/O errors propagate unchanged.
    """
    if isinstance(handle, (str, os.PathLike)):
        with open(Path(handle).expanduser(), "rb") as f:
            return read_all(f)

    chunks = []
    while True:
        data = handle.read(CHUNK_SIZE)
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


def guess_mimetype(path: Union[str, os.PathLike]) -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    return mime_type or DEFAULT_MIMETYPE


def metadata_from_path(path: Union[str, os.PathLike]) -> Metadata:
    """ Build Metadata for a file on disk from its name and stat info. """
    p = Path(path).expanduser()
    st = p.stat()
    # st_ctime is inode change time on POSIX; close enough for a creation stamp
    created = datetime.fromtimestamp(min(st.st_ctime, st.st_mtime), tz=timezone.utc)
    modified = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
    return Metadata(
        filename=p.name,
        mimetype=guess_mimetype(p),
        size=st.st_size,
        created_at=created,
        modified_at=modified,
    )
