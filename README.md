# ipswkit

A small library, with no dependencies outside the standard library, for
working with firmware restore archives (IPSW) and the image formats found
inside them.

## Modules

### `ipswkit.ipsw`

Works on an IPSW that is either a zip archive or a directory it was
extracted to. Failures raise `IpswError`.

- `is_directory(ipsw)` – true for an extracted directory.
- `file_exists(ipsw, infile)` – true when the file is in the archive.
- `get_file_size(ipsw, infile)` – uncompressed size in bytes.
- `extract_to_memory(ipsw, infile)` – the file's contents as `bytes`.
- `extract_to_file(ipsw, infile, outfile, progress=None)` – writes the file
  out in 1 MiB chunks. `progress`, if given, is a callable that receives the
  percentage done after each chunk. Calling `cancel()` from another thread
  stops the copy, and `extract_to_file` then raises `ExtractionCancelled`.
- `extract_build_manifest(ipsw)` – returns `(manifest, tss_required)`. A
  `BuildManifesto.plist` is preferred (no signing needed); otherwise
  `BuildManifest.plist` is read and `tss_required` is `True`.
- `extract_restore_plist(ipsw)` – the parsed `Restore.plist`.
- `get_latest_fw(version_data, product)` – looks up the newest firmware for a
  product type in version data (a dict keyed by
  `MobileDeviceSoftwareVersionsByVersion`) and returns `(url, sha1)`, where
  `sha1` is 20 bytes (all zero when the data holds no checksum).
- `verify_sha1(path, expected_sha1)` – true when the file's SHA-1 matches; a
  file that cannot be opened does not match.

### `ipswkit.img3`

- `parse_img3(data)` returns an `Img3File`; `parse_element(data)` reads one
  `Img3Element`. Element tags are in `ElementType`.
- `Img3File.replace_signature(signature)` replaces the ECID, SHSH and CERT
  elements with those in a signature blob, inserting any that are missing.
- `Img3File.to_bytes()` serialises the container with recomputed sizes and
  SHSH offset.
- `stitch_component(component_name, component_data, blob)` does all of the
  above in one call. Errors raise `Img3Error`.

### `ipswkit.img4`

- `stitch_component(component_name, component_data, blob)` wraps an IM4P
  payload and an ApImg4Ticket into an IMG4 container. For
  `RestoreKernelCache`, `RestoreDeviceTree`, `RestoreSEP`, `RestoreLogo` and
  `RestoreTrustCache` the payload's tag is rewritten to the restore tag.
- `get_component_tag(compname)` maps a component name to its four-character
  tag, or `None`.
- `create_local_manifest(request)` builds an unsigned IM4M manifest (as
  `bytes`) from a request dict; every dict-valued entry is written as a
  component. Unknown components raise `Img4Error`.

### `ipswkit.jsmn` and `ipswkit.json_plist`

- `tokenize(js, max_tokens=None)` and `JsmnParser.parse(js, max_tokens)` split
  JSON text into `Token`s (type, span, child count). Errors are
  `NotEnoughTokensError`, `InvalidCharacterError` and `PartialInputError`, all
  subclasses of `JsmnError` (a `ValueError`).
- `json_to_plist(json_string)` turns JSON text into dicts, lists, strings,
  bools and unsigned 64-bit integers. Strings are taken verbatim: escape
  sequences are not decoded.

### `ipswkit.locking`

`FileLock(filename)` holds an exclusive advisory lock on a file, creating it
when missing. Use `acquire()` / `release()` or a `with` block; the `locked`
property tells whether it is held. Failures raise `LockError`.

## Examples

```python
from ipswkit.ipsw import extract_build_manifest, file_exists

manifest, tss_required = extract_build_manifest("firmware.ipsw")
print(manifest["ProductVersion"], tss_required)
print(file_exists("firmware.ipsw", "Restore.plist"))
```

```python
from ipswkit.locking import FileLock
from ipswkit.ipsw import extract_to_file

with FileLock("rootfs.dmg.lock"):
    extract_to_file(
        "firmware.ipsw", "rootfs.dmg", "rootfs.dmg",
        progress=lambda pct: print(f"{pct:.1f}%"),
    )
```

```python
from ipswkit.json_plist import json_to_plist

json_to_plist('{"signed": true, "build": 17}')
# {'signed': True, 'build': 17}
```

## What it does not do

This is a library only: it has no command-line tool. It does not talk to
devices, download firmware, or request signing tickets from a signing
server; it works on archives, images and data already at hand.

## Installing and testing

```
pip install .[test]
pytest
```