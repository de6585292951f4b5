import hashlib
import plistlib
import zipfile

import pytest

from ipswkit import ipsw
from ipswkit.ipsw import ExtractionCancelled, IpswError

PAYLOAD = b"firmware payload " * 100
MANIFEST = {"ProductVersion": "9.9", "ProductBuildVersion": "13A1"}


def _make_zip(path, files):
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return str(path)


def _make_dir(path, files):
    for name, data in files.items():
        target = path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    return str(path)


@pytest.fixture(params=["zip", "dir"])
def archive(request, tmp_path):
    files = {
        "Firmware/dfu/iBSS.dfu": PAYLOAD,
        "BuildManifest.plist": plistlib.dumps(MANIFEST),
        "Restore.plist": plistlib.dumps({"DeviceClass": "x"}),
    }
    if request.param == "zip":
        return _make_zip(tmp_path / "fw.ipsw", files)
    return _make_dir(tmp_path / "fw", files)


def test_is_directory(tmp_path):
    zpath = _make_zip(tmp_path / "a.ipsw", {"x": b"1"})
    assert ipsw.is_directory(str(tmp_path)) is True
    assert ipsw.is_directory(zpath) is False
    assert ipsw.is_directory(str(tmp_path / "missing")) is False


def test_file_exists(archive, tmp_path):
    assert ipsw.file_exists(archive, "Firmware/dfu/iBSS.dfu") is True
    assert ipsw.file_exists(archive, "nope.bin") is False
    assert ipsw.file_exists(str(tmp_path / "missing.ipsw"), "x") is False


def test_get_file_size(archive):
    assert ipsw.get_file_size(archive, "Firmware/dfu/iBSS.dfu") == len(PAYLOAD)
    with pytest.raises(IpswError):
        ipsw.get_file_size(archive, "nope.bin")


def test_extract_to_memory(archive):
    assert ipsw.extract_to_memory(archive, "Firmware/dfu/iBSS.dfu") == PAYLOAD
    with pytest.raises(IpswError):
        ipsw.extract_to_memory(archive, "nope.bin")


def test_missing_archive_raises(tmp_path):
    with pytest.raises(IpswError):
        ipsw.extract_to_memory(str(tmp_path / "missing.ipsw"), "x")


def test_not_a_zip_raises(tmp_path):
    bogus = tmp_path / "bogus.ipsw"
    bogus.write_bytes(b"not a zip")
    with pytest.raises(IpswError):
        ipsw.extract_to_memory(str(bogus), "x")


def test_extract_to_file_with_progress(archive, tmp_path):
    out = tmp_path / "out.bin"
    seen = []
    ipsw.extract_to_file(archive, "Firmware/dfu/iBSS.dfu", str(out), seen.append)
    assert out.read_bytes() == PAYLOAD
    assert seen[-1] == pytest.approx(100.0)
    assert seen == sorted(seen)


def test_extract_to_file_without_progress(archive, tmp_path):
    out = tmp_path / "plain.bin"
    ipsw.extract_to_file(archive, "Firmware/dfu/iBSS.dfu", str(out))
    assert out.read_bytes() == PAYLOAD


def test_extract_to_file_missing_entry(archive, tmp_path):
    with pytest.raises(IpswError):
        ipsw.extract_to_file(archive, "nope.bin", str(tmp_path / "o"))


def test_extract_onto_itself_keeps_content(tmp_path):
    root = _make_dir(tmp_path / "fw", {"a.bin": PAYLOAD})
    ipsw.extract_to_file(root, "a.bin", str(tmp_path / "fw" / "a.bin"))
    assert (tmp_path / "fw" / "a.bin").read_bytes() == PAYLOAD


def test_cancel_during_extraction(archive, tmp_path):
    def stop(_percent):
        ipsw.cancel()

    with pytest.raises(ExtractionCancelled):
        ipsw.extract_to_file(archive, "Firmware/dfu/iBSS.dfu", str(tmp_path / "o"), stop)


def test_cancel_before_extraction_is_reset(archive, tmp_path):
    ipsw.cancel()
    out = tmp_path / "o"
    ipsw.extract_to_file(archive, "Firmware/dfu/iBSS.dfu", str(out))
    assert out.read_bytes() == PAYLOAD


def test_extract_build_manifest_requires_tss(archive):
    manifest, tss = ipsw.extract_build_manifest(archive)
    assert manifest == MANIFEST
    assert tss is True


def test_extract_build_manifesto_preferred(tmp_path):
    legacy = {"ProductVersion": "3.0"}
    path = _make_zip(
        tmp_path / "old.ipsw",
        {
            "BuildManifesto.plist": plistlib.dumps(legacy),
            "BuildManifest.plist": plistlib.dumps(MANIFEST),
        },
    )
    manifest, tss = ipsw.extract_build_manifest(path)
    assert manifest == legacy
    assert tss is False


def test_extract_build_manifest_missing(tmp_path):
    path = _make_zip(tmp_path / "e.ipsw", {"x": b"1"})
    with pytest.raises(IpswError):
        ipsw.extract_build_manifest(path)


def test_extract_restore_plist(archive, tmp_path):
    assert ipsw.extract_restore_plist(archive) == {"DeviceClass": "x"}
    empty = _make_zip(tmp_path / "e.ipsw", {"x": b"1"})
    with pytest.raises(IpswError):
        ipsw.extract_restore_plist(empty)


PRODUCT = "TestDevice1,1"
SHA_TEXT = "ab" * 20


def _version_data(extra=None):
    versions = {
        "Unknown": {"Universal": {"Restore": {"BuildVersion": "7A341"}}},
        "7A341": {
            "Restore": {
                "FirmwareURL": "http://example.com/new.ipsw",
                "FirmwareSHA1": SHA_TEXT,
            }
        },
    }
    if extra:
        versions.update(extra)
    return {
        "MobileDeviceSoftwareVersionsByVersion": {
            "1": {
                "MobileDeviceSoftwareVersions": {
                    PRODUCT: {
                        "Unknown": {"Universal": {"Restore": {"BuildVersion": "1A1"}}},
                        "1A1": {"Restore": {"FirmwareURL": "http://example.com/old.ipsw"}},
                    }
                }
            },
            "5": {"MobileDeviceSoftwareVersions": {PRODUCT: versions}},
        }
    }


def test_get_latest_fw_picks_highest_major():
    url, sha1 = ipsw.get_latest_fw(_version_data(), PRODUCT)
    assert url == "http://example.com/new.ipsw"
    assert sha1 == bytes.fromhex(SHA_TEXT)


def test_get_latest_fw_follows_same_as():
    data = _version_data()
    versions = data["MobileDeviceSoftwareVersionsByVersion"]["5"][
        "MobileDeviceSoftwareVersions"
    ][PRODUCT]
    versions["7A341"] = {"SameAs": "7A400"}
    versions["7A400"] = {"Restore": {"FirmwareURL": "http://example.com/same.ipsw"}}
    url, sha1 = ipsw.get_latest_fw(data, PRODUCT)
    assert url == "http://example.com/same.ipsw"
    assert sha1 == bytes(20)


def test_get_latest_fw_follows_update():
    data = _version_data(
        {"7B500": {"Restore": {"FirmwareURL": "http://example.com/upd.ipsw"}}}
    )
    versions = data["MobileDeviceSoftwareVersionsByVersion"]["5"][
        "MobileDeviceSoftwareVersions"
    ][PRODUCT]
    versions["7A341"]["Update"] = {"BuildVersion": "7B500"}
    url, _ = ipsw.get_latest_fw(data, PRODUCT)
    assert url == "http://example.com/upd.ipsw"


def test_get_latest_fw_unknown_product():
    with pytest.raises(IpswError):
        ipsw.get_latest_fw(_version_data(), "Other9,9")


def test_get_latest_fw_missing_root():
    with pytest.raises(IpswError):
        ipsw.get_latest_fw({}, PRODUCT)


def test_get_latest_fw_short_sha_gives_zero_digest():
    data = _version_data()
    versions = data["MobileDeviceSoftwareVersionsByVersion"]["5"][
        "MobileDeviceSoftwareVersions"
    ][PRODUCT]
    versions["7A341"]["Restore"]["FirmwareSHA1"] = "abcd"
    _, sha1 = ipsw.get_latest_fw(data, PRODUCT)
    assert sha1 == bytes(20)


def test_verify_sha1(tmp_path):
    target = tmp_path / "f.bin"
    target.write_bytes(PAYLOAD)
    digest = hashlib.sha1(PAYLOAD).digest()
    assert ipsw.verify_sha1(str(target), digest) is True
    assert ipsw.verify_sha1(str(target), bytes(20)) is False
    assert ipsw.verify_sha1(str(tmp_path / "missing"), digest) is False