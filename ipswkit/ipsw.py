"""Access to firmware archives, either zipped or extracted to a directory."""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import plistlib
import threading
import zipfile
from collections.abc import Callable, Iterator, Mapping
from typing import IO, Any, Union

__all__ = [
    "IpswError",
    "ExtractionCancelled",
    "is_directory",
    "file_exists",
    "get_file_size",
    "extract_to_file",
    "extract_to_memory",
    "extract_build_manifest",
    "extract_restore_plist",
    "get_latest_fw",
    "verify_sha1",
    "cancel",
]

log = logging.getLogger(__name__)

_CHUNK_SIZE = 0x100000
_SHA1_SIZE = 20
_VERSIONS_BY_VERSION = "MobileDeviceSoftwareVersionsByVersion"
_VERSIONS = "MobileDeviceSoftwareVersions"

_cancel_event = threading.Event()

_Archive = Union[zipfile.ZipFile, str]
ProgressCallback = Callable[[float], None]


class IpswError(Exception):
    """A firmware archive or a file inside it could not be read or written."""


class ExtractionCancelled(IpswError):
    """An extraction was stopped by :func:`cancel`."""


def cancel() -> None:
    """Ask a running extraction to stop."""
    _cancel_event.set()


def _build_path(path: str, infile: str) -> str:
    return f"{path}/{infile}"


@contextlib.contextmanager
def _open_archive(ipsw: str | os.PathLike[str]) -> Iterator[_Archive]:
    path = os.fspath(ipsw)
    try:
        is_dir = os.path.isdir(path)
        os.stat(path)
    except OSError as exc:
        raise IpswError(f"cannot open archive {path}: {exc.strerror}") from exc
    if is_dir:
        yield path
        return
    try:
        archive = zipfile.ZipFile(path)
    except (zipfile.BadZipFile, OSError) as exc:
        raise IpswError(f"cannot open zip archive {path}") from exc
    with archive:
        yield archive


def _zip_info(archive: zipfile.ZipFile, infile: str) -> zipfile.ZipInfo:
    try:
        return archive.getinfo(infile)
    except KeyError as exc:
        raise IpswError(f"'{infile}' not found in archive") from exc


def is_directory(ipsw: str | os.PathLike[str]) -> bool:
    """True when ``ipsw`` is an extracted archive directory."""
    return os.path.isdir(os.fspath(ipsw))


def file_exists(ipsw: str | os.PathLike[str], infile: str) -> bool:
    """True when ``infile`` exists (and, in a directory, is readable) in the archive."""
    try:
        with _open_archive(ipsw) as archive:
            if isinstance(archive, zipfile.ZipFile):
                try:
                    archive.getinfo(infile)
                except KeyError:
                    return False
                return True
            return os.access(_build_path(archive, infile), os.R_OK)
    except IpswError:
        return False


def get_file_size(ipsw: str | os.PathLike[str], infile: str) -> int:
    """Uncompressed size of ``infile`` in bytes."""
    with _open_archive(ipsw) as archive:
        if isinstance(archive, zipfile.ZipFile):
            return _zip_info(archive, infile).file_size
        try:
            return os.stat(_build_path(archive, infile)).st_size
        except OSError as exc:
            raise IpswError(f"'{infile}' not found in archive") from exc


def _copy(
    src: IO[bytes],
    dst: IO[bytes],
    total: int,
    progress: ProgressCallback | None,
    *,
    bounded: bool,
) -> None:
    copied = 0
    while True:
        if bounded and copied >= total:
            break
        if _cancel_event.is_set():
            break
        size = min(_CHUNK_SIZE, total - copied) if bounded else _CHUNK_SIZE
        chunk = src.read(size)
        if not chunk:
            if bounded:
                raise IpswError("unexpected end of data while reading from archive")
            break
        dst.write(chunk)
        copied += len(chunk)
        if progress is not None and total > 0:
            progress(copied / total * 100.0)


def extract_to_file(
    ipsw: str | os.PathLike[str],
    infile: str,
    outfile: str | os.PathLike[str],
    progress: ProgressCallback | None = None,
) -> None:
    """Write ``infile`` from the archive to ``outfile``.

    ``progress``, when given, is called with the percentage done after each
    chunk. Raises :class:`ExtractionCancelled` when :func:`cancel` was called
    during the extraction.
    """
    _cancel_event.clear()
    out_path = os.fspath(outfile)
    with _open_archive(ipsw) as archive:
        if isinstance(archive, zipfile.ZipFile):
            info = _zip_info(archive, infile)
            try:
                with archive.open(info) as src, open(out_path, "wb") as dst:
                    _copy(src, dst, info.file_size, progress, bounded=True)
            except (OSError, zipfile.BadZipFile) as exc:
                raise IpswError(f"unable to extract {infile} to {out_path}") from exc
        else:
            filepath = _build_path(archive, infile)
            if not os.path.exists(filepath):
                raise IpswError(f"'{filepath}' does not exist")
            actual_source = os.path.realpath(filepath)
            if os.path.exists(out_path) and os.path.realpath(out_path) == actual_source:
                return
            try:
                total = os.stat(actual_source).st_size
                with open(actual_source, "rb") as src, open(out_path, "wb") as dst:
                    _copy(src, dst, total, progress, bounded=False)
            except OSError as exc:
                raise IpswError(f"unable to copy {filepath} to {out_path}") from exc
    if _cancel_event.is_set():
        raise ExtractionCancelled(f"extraction of {infile} was cancelled")


def extract_to_memory(ipsw: str | os.PathLike[str], infile: str) -> bytes:
    """Return the contents of ``infile`` from the archive."""
    with _open_archive(ipsw) as archive:
        if isinstance(archive, zipfile.ZipFile):
            info = _zip_info(archive, infile)
            try:
                data = archive.read(info)
            except (OSError, zipfile.BadZipFile) as exc:
                raise IpswError(f"unable to read {infile} from archive") from exc
            if len(data) != info.file_size:
                raise IpswError(f"unable to read {infile} from archive")
            return data
        filepath = _build_path(archive, infile)
        try:
            with open(filepath, "rb") as fp:
                return fp.read()
        except OSError as exc:
            raise IpswError(f"unable to read {filepath}: {exc.strerror}") from exc


def _load_plist(data: bytes, name: str) -> Any:
    try:
        return plistlib.loads(data)
    except (plistlib.InvalidFileException, ValueError) as exc:
        raise IpswError(f"cannot parse {name}") from exc


def extract_build_manifest(ipsw: str | os.PathLike[str]) -> tuple[Any, bool]:
    """Return the build manifest and whether it needs signed (TSS) firmware.

    Older firmware ships an unpersonalised ``BuildManifesto.plist``, which is
    preferred; otherwise ``BuildManifest.plist`` is used and TSS is required.
    """
    if file_exists(ipsw, "BuildManifesto.plist"):
        try:
            data = extract_to_memory(ipsw, "BuildManifesto.plist")
        except IpswError:
            pass
        else:
            return _load_plist(data, "BuildManifesto.plist"), False
    try:
        data = extract_to_memory(ipsw, "BuildManifest.plist")
    except IpswError as exc:
        raise IpswError("unable to extract build manifest") from exc
    return _load_plist(data, "BuildManifest.plist"), True


def extract_restore_plist(ipsw: str | os.PathLike[str]) -> Any:
    """Return the parsed ``Restore.plist`` of the archive."""
    try:
        data = extract_to_memory(ipsw, "Restore.plist")
    except IpswError as exc:
        raise IpswError("unable to extract Restore.plist") from exc
    return _load_plist(data, "Restore.plist")


def _access_path(node: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(node, Mapping) or key not in node:
            return None
        node = node[key]
    return node


def _leading_uint(text: str) -> int:
    digits = ""
    for char in text.lstrip():
        if not char.isdigit():
            break
        digits += char
    return int(digits) if digits else 0


def _parse_sha1(text: str) -> bytes:
    result = bytearray()
    for pos in range(0, 40, 2):
        try:
            result.append(int(text[pos:pos + 2], 16))
        except ValueError:
            result.append(0)
    return bytes(result)


def get_latest_fw(version_data: Mapping[str, Any], product: str) -> tuple[str, bytes]:
    """Find the newest firmware for ``product`` in the version data.

    Returns the firmware URL and its SHA-1 digest; the digest is 20 zero
    bytes when the data holds none.
    """
    by_version = _access_path(version_data, _VERSIONS_BY_VERSION)
    if not isinstance(by_version, Mapping):
        raise IpswError(f"Can't find {_VERSIONS_BY_VERSION} dict in version data")

    major = 0
    for key in by_version:
        if _access_path(by_version, key, _VERSIONS, product) is not None:
            major = max(major, _leading_uint(str(key)))
    if major == 0:
        raise IpswError("Can't find major version")

    base = (_VERSIONS_BY_VERSION, str(major), _VERSIONS, product)

    restore = _access_path(version_data, *base, "Unknown", "Universal", "Restore")
    if restore is None:
        raise IpswError("Can't get Unknown/Universal/Restore node")
    build = _access_path(restore, "BuildVersion")
    if not isinstance(build, str):
        raise IpswError("Can't get build version node")

    node = _access_path(version_data, *base, build)
    if node is None:
        raise IpswError(f"Can't get {_VERSIONS}/{build} node")

    same_as = _access_path(node, "SameAs")
    if isinstance(same_as, str):
        node = _access_path(version_data, *base, same_as)
        if not node:
            raise IpswError(f"Can't get {_VERSIONS}/{product} dict")

    update_build = _access_path(node, "Update", "BuildVersion")
    if isinstance(update_build, str):
        node = _access_path(version_data, *base, update_build)

    url = _access_path(node, "Restore", "FirmwareURL")
    if not isinstance(url, str):
        raise IpswError("Can't get FirmwareURL node")

    sha1 = bytes(_SHA1_SIZE)
    sha1_text = _access_path(node, "Restore", "FirmwareSHA1")
    if isinstance(sha1_text, str) and len(sha1_text) == 40:
        sha1 = _parse_sha1(sha1_text)
    return url, sha1


def verify_sha1(path: str | os.PathLike[str], expected_sha1: bytes) -> bool:
    """True when the SHA-1 digest of the file at ``path`` is ``expected_sha1``.

    A file that cannot be opened does not match.
    """
    digest = hashlib.sha1()
    try:
        with open(os.fspath(path), "rb") as fp:
            for chunk in iter(lambda: fp.read(8192), b""):
                digest.update(chunk)
    except OSError:
        return False
    return digest.digest() == bytes(expected_sha1[:_SHA1_SIZE])