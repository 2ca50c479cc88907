"""tar.gz packing and hardened unpacking of export directories.

Archives are produced only by :func:`pack_archive`, but :func:`unpack_archive`
treats every input as untrusted:

- an entry whose cleaned destination is not inside the extraction root aborts
  the whole unpack with :class:`PathTraversalError`;
- an entry declaring more than ``max_entry_size`` bytes aborts with
  :class:`EntryTooLargeError`, and file bytes are copied through a bounded
  reader so no more than the cap is ever written;
- only directories and regular files are restored; symlinks, hard links and
  device nodes are skipped;
- file modes are masked to ``SAFE_FILE_MODE`` and directories are created
  with ``DIR_MODE``.
"""

from __future__ import annotations

import logging
import os
import tarfile
from pathlib import Path
from typing import IO, Union

from ..errors import EntryTooLargeError, PathTraversalError

logger = logging.getLogger(__name__)

MAX_ENTRY_SIZE = 1 << 30  # 1 GiB
DIR_MODE = 0o750
SAFE_FILE_MODE = 0o750
_CHUNK = 64 * 1024

PathLike = Union[str, "os.PathLike[str]"]


def pack_archive(source_dir: PathLike, output_path: PathLike) -> int:
    """Write ``source_dir`` as a gzip-compressed tarball at ``output_path``.

    Entries are added in sorted walk order with paths relative to
    ``source_dir``. If writing fails part-way the file left at ``output_path``
    is not a valid archive.

    Returns
    -------
    int
        Size of the created archive in bytes.
    """
    source = Path(source_dir)
    output = Path(output_path)
    logger.info("migrate.archive.pack", extra={"source": str(source), "output": str(output)})

    entries = 0
    with tarfile.open(output, "w:gz") as tar:
        for root, dirs, files in os.walk(source):
            dirs.sort()
            root_path = Path(root)
            for name in [*dirs, *sorted(files)]:
                path = root_path / name
                arcname = path.relative_to(source).as_posix()
                info = tar.gettarinfo(str(path), arcname=arcname)
                if info.isdir():
                    tar.addfile(info)
                elif info.isreg():
                    with open(path, "rb") as fh:
                        tar.addfile(info, fh)
                else:
                    logger.debug(
                        "migrate.archive.skip_special", extra={"entry": arcname}
                    )
                    continue
                entries += 1

    size = output.stat().st_size
    logger.info("migrate.archive.packed", extra={"entries": entries, "bytes": size})
    return size


def _resolve_member(dest_root: str, member_name: str) -> str:
    target = os.path.normpath(os.path.join(dest_root, member_name))
    if not (target + os.sep).startswith(dest_root + os.sep):
        raise PathTraversalError(member_name)
    return target


def _copy_bounded(src: IO[bytes], dst: IO[bytes], limit: int) -> int:
    remaining = limit
    written = 0
    while remaining > 0:
        chunk = src.read(min(_CHUNK, remaining))
        if not chunk:
            break
        dst.write(chunk)
        written += len(chunk)
        remaining -= len(chunk)
    return written


def unpack_archive(
    archive_path: PathLike,
    dest_dir: PathLike,
    *,
    max_entry_size: int = MAX_ENTRY_SIZE,
) -> int:
    """Extract a tar.gz produced by :func:`pack_archive` into ``dest_dir``.

    Entries are processed in stream order; entries before an offending one
    stay on disk, nothing after it is written.

    Returns
    -------
    int
        Number of directories and files restored.

    Raises
    ------
    PathTraversalError
        An entry resolves outside ``dest_dir``.
    EntryTooLargeError
        A regular file declares more than ``max_entry_size`` bytes.
    tarfile.TarError, OSError
        The archive is unreadable or a file cannot be written.
    """
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
    dest_root = os.path.realpath(dest)
    logger.info(
        "migrate.archive.unpack",
        extra={"archive": str(archive_path), "dest": dest_root},
    )

    restored = 0
    with tarfile.open(archive_path, "r|gz") as tar:
        for member in tar:
            target = _resolve_member(dest_root, member.name)
            if member.isdir():
                os.makedirs(target, mode=DIR_MODE, exist_ok=True)
            elif member.isreg():
                if member.size > max_entry_size:
                    raise EntryTooLargeError(member.name, member.size, max_entry_size)
                os.makedirs(os.path.dirname(target), mode=DIR_MODE, exist_ok=True)
                src = tar.extractfile(member)
                with open(target, "wb") as out:
                    if src is not None:
                        _copy_bounded(src, out, max_entry_size)
                os.chmod(target, member.mode & SAFE_FILE_MODE)
            else:
                logger.debug(
                    "migrate.archive.ignored_entry",
                    extra={"entry": member.name, "type": member.type.decode(errors="replace")},
                )
                continue
            restored += 1

    logger.info("migrate.archive.unpacked", extra={"entries": restored})
    return restored
