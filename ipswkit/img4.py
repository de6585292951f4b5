"""Building of IMG4 containers and local IM4M manifests.

The DER-like encoding here follows the firmware loader's expectations
closely, including its quirks: integers are sized by counting 7-bit
groups, and element headers with a length of zero are left out entirely.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

__all__ = [
    "Img4Error",
    "get_component_tag",
    "stitch_component",
    "create_local_manifest",
]

log = logging.getLogger(__name__)

_PRIVATE = 0xC0
_PRIMITIVE_TAG = 0x1F
_CONSTRUCTED = 0x20
_SEQUENCE = 0x10
_SET = 0x11
_CONTEXT_SPECIFIC = 0x80
_IA5_STRING = 0x16
_OCTET_STRING = 0x04
_INTEGER = 0x02
_BOOLEAN = 0x01

_SEQUENCE_C = _SEQUENCE | _CONSTRUCTED
_SET_C = _SET | _CONSTRUCTED

_IMG4_MAGIC = b"IMG4"
_UINT64_MASK = (1 << 64) - 1

_COMPONENT_TAGS = {
    "ACIBT": "acib",
    "ACIBTLPEM": "lpbt",
    "ACIWIFI": "aciw",
    "Alamo": "almo",
    "ANE": "anef",
    "ANS": "ansf",
    "AOP": "aopf",
    "Ap,AudioAccessibilityBootChime": "auac",
    "Ap,AudioBootChime": "aubt",
    "Ap,AudioPowerAttachChime": "aupr",
    "Ap,CIO": "ciof",
    "Ap,HapticAssets": "hpas",
    "Ap,LocalBoot": "lobo",
    "Ap,LocalPolicy": "lpol",
    "Ap,NextStageIM4MHash": "nsih",
    "Ap,RecoveryOSPolicyNonceHash": "ronh",
    "Ap,RestoreCIO": "rcio",
    "Ap,RestoreTMU": "rtmu",
    "Ap,Scorpius": "scpf",
    "Ap,TMU": "tmuf",
    "Ap,VolumeUUID": "vuid",
    "AppleLogo": "logo",
    "AudioCodecFirmware": "acfw",
    "AVE": "avef",
    "BatteryCharging": "glyC",
    "BatteryCharging0": "chg0",
    "BatteryCharging1": "chg1",
    "BatteryFull": "batF",
    "BatteryLow0": "bat0",
    "BatteryLow1": "bat1",
    "BatteryPlugin": "glyP",
    "CFELoader": "cfel",
    "Dali": "dali",
    "DCP": "dcpf",
    "DeviceTree": "dtre",
    "Diags": "diag",
    "EngineeringTrustCache": "dtrs",
    "ExtDCP": "edcp",
    "ftap": "ftap",
    "ftsp": "ftsp",
    "GFX": "gfxf",
    "Hamm": "hamf",
    "Homer": "homr",
    "iBEC": "ibec",
    "iBoot": "ibot",
    "iBootData": "ibdt",
    "iBootTest": "itst",
    "iBSS": "ibss",
    "InputDevice": "ipdf",
    "ISP": "ispf",
    "KernelCache": "krnl",
    "LeapHaptics": "lphp",
    "Liquid": "liqd",
    "LLB": "illb",
    "LoadableTrustCache": "ltrs",
    "LowPowerWallet0": "lpw0",
    "LowPowerWallet1": "lpw1",
    "LowPowerWallet2": "lpw2",
    "MacEFI": "mefi",
    "Multitouch": "mtfw",
    "NeedService": "nsrv",
    "OS": "OS\0\0",
    "OSRamdisk": "osrd",
    "PersonalizedDMG": "pdmg",
    "PEHammer": "hmmr",
    "PERTOS": "pert",
    "PHLEET": "phlt",
    "PMP": "pmpf",
    "RBM": "rmbt",
    "Rap,SoftwareBinaryDsp1": "sbd1",
    "Rap,RTKitOS": "rkos",
    "Rap,RestoreRTKitOS": "rrko",
    "RecoveryMode": "recm",
    "RestoreANS": "rans",
    "RestoreDCP": "rdcp",
    "RestoreDeviceTree": "rdtr",
    "RestoreExtDCP": "recp",
    "RestoreKernelCache": "rkrn",
    "RestoreLogo": "rlgo",
    "RestoreRamDisk": "rdsk",
    "RestoreSEP": "rsep",
    "RestoreTrustCache": "rtsc",
    "rfta": "rfta",
    "rfts": "rfts",
    "RTP": "rtpf",
    "SCE": "scef",
    "SCE1Firmware": "sc1f",
    "SEP": "sepi",
    "SIO": "siof",
    "StaticTrustCache": "trst",
    "SystemLocker": "lckr",
    "WCHFirmwareUpdater": "wchf",
}

# Components whose payload tag is rewritten when stitched.
_RESTORE_TAGS = {
    "RestoreKernelCache": b"rkrn",
    "RestoreDeviceTree": b"rdtr",
    "RestoreSEP": b"rsep",
    "RestoreLogo": b"rlgo",
    "RestoreTrustCache": b"rtsc",
}


class Img4Error(ValueError):
    """Invalid input for building an IMG4 container or manifest."""


def get_component_tag(compname: str) -> str | None:
    """Return the four-character IMG4 tag of a component, or None if unknown."""
    return _COMPONENT_TAGS.get(compname)


def _encode_size(size: int) -> bytes:
    if size >= 0x1000000:
        return b"\x84" + (size & 0xFFFFFFFF).to_bytes(4, "big")
    if size >= 0x10000:
        return b"\x83" + size.to_bytes(3, "big")
    if size >= 0x100:
        return b"\x82" + size.to_bytes(2, "big")
    if size >= 0x80:
        return b"\x81" + size.to_bytes(1, "big")
    return bytes([size & 0xFF])


def _element_header(type_: int, size: int) -> bytes:
    if not type_ or size <= 0:
        return b""
    return bytes([type_]) + _encode_size(size)


def _int_size(value: int) -> int:
    size = 1
    value >>= 7
    while value:
        size += 1
        value >>= 7
    return size


def _int_bytes(value: int, size: int) -> bytes:
    return (value & ((1 << (8 * size)) - 1)).to_bytes(size, "big")


def _private_tag(value: int) -> bytes:
    septets = []
    while value > 0:
        septets.append(value & 0x7F)
        value >>= 7
    septets.reverse()
    encoded = [septet | 0x80 for septet in septets[:-1]] + septets[-1:]
    return bytes([_CONSTRUCTED | _PRIVATE | _PRIMITIVE_TAG, *encoded])


def _tag_bytes(tag: str) -> bytes:
    return tag.encode("latin-1")


def _tag_number(tag: str) -> int:
    return int.from_bytes(_tag_bytes(tag)[:4].ljust(4, b"\0"), "big")


def _element(type_: int, value: Any, size: int = -1) -> bytes:
    if type_ == _IA5_STRING:
        raw = value if isinstance(value, bytes) else _tag_bytes(value)
        if size < 0:
            raw = raw.split(b"\0", 1)[0]
        else:
            raw = raw[:size]
        return _element_header(type_, len(raw)) + raw
    if type_ == _OCTET_STRING:
        raw = bytes(value or b"")[:size] if size >= 0 else bytes(value or b"")
        return _element_header(type_, len(raw)) + raw
    if type_ == _INTEGER:
        number = int(value) & _UINT64_MASK
        width = _int_size(number)
        return _element_header(type_, width) + _int_bytes(number, width)
    if type_ == _BOOLEAN:
        return _element_header(type_, 1) + (b"\xff" if value else b"\x00")
    if type_ == _SET_C:
        header = _element_header(type_, size)
        if value is not None and size > 0:
            return header + bytes(value)[:size]
        return header
    log.error("type %02x is not implemented", type_)
    return b""


def _key_value(tag: str, type_: int, value: Any, size: int = -1) -> bytes:
    inner = _element(_IA5_STRING, tag) + _element(type_, value, size)
    if value is None and size > 0:
        outer = _element_header(_SEQUENCE_C, len(inner) + size)
        length = _encode_size(len(outer) + len(inner) + size)
    else:
        outer = _element_header(_SEQUENCE_C, len(inner))
        length = _encode_size(len(outer) + len(inner))
    return _private_tag(_tag_number(tag)) + length + outer + inner


def _data(node: Any) -> bytes:
    return bytes(node) if isinstance(node, (bytes, bytearray, memoryview)) else b""


def _flag(node: Any) -> bool:
    return node if isinstance(node, bool) else False


def _component(tag: str, comp: Mapping[str, Any]) -> bytes:
    props = bytearray()

    if "Digest" in comp:
        digest = _data(comp["Digest"])
        if digest:
            props += _key_value("DGST", _OCTET_STRING, digest, len(digest))

    if "Trusted" in comp:
        props += _key_value("EKEY", _BOOLEAN, _flag(comp["Trusted"]))
    for key in ("EPRO", "ESEC"):
        if key in comp:
            props += _key_value(key, _BOOLEAN, _flag(comp[key]))

    if "TBMDigests" in comp:
        digests = _data(comp["TBMDigests"])
        tbmtag = {"sepi": "tbms", "rsep": "tbmr"}.get(tag)
        if tbmtag is None:
            log.error("Unexpected TMBDigests for comp '%s'", tag)
        else:
            props += _key_value(tbmtag, _OCTET_STRING, digests, len(digests))

    inner = _element(_IA5_STRING, tag) + _element_header(_SET_C, len(props)) + bytes(props)
    outer = _element_header(_SEQUENCE_C, len(inner))
    length = _encode_size(len(outer) + len(inner))
    return _private_tag(_tag_number(tag)) + length + outer + inner


def _find_element(index: int, type_: int, data: bytes) -> int | None:
    """Offset of the payload of the ``index``-th element inside a sequence."""
    if len(data) < 2 or data[0] != _SEQUENCE_C:
        return None
    offset = 2 + {0x84: 4, 0x83: 3, 0x82: 2, 0x81: 1}.get(data[1], 0)
    el_type = el_size = 0
    for current in range(index + 1):
        if offset + 2 > len(data):
            return None
        el_type, el_size = data[offset], data[offset + 1]
        offset += 2
        if current == index:
            break
        offset += el_size
    if el_type != type_:
        return None
    return offset


def stitch_component(component_name: str, component_data: bytes, blob: bytes) -> bytes:
    """Wrap an IM4P payload and an ApImg4Ticket ``blob`` into an IMG4 container.

    For the restore variants of a few components, the tag inside the
    payload is rewritten to the restore tag.
    """
    if not component_name or not component_data or not blob:
        raise Img4Error("component name, data and blob must not be empty")

    log.info("Personalizing IMG4 component %s...", component_name)
    payload = bytearray(component_data)
    offset = _find_element(1, _IA5_STRING, payload)
    if offset is not None:
        log.debug("Tag found")
        replacement = _RESTORE_TAGS.get(component_name)
        if replacement is not None:
            payload[offset:offset + 4] = replacement

    magic_header = _element_header(_IA5_STRING, len(_IMG4_MAGIC))
    blob_header = _element_header(_CONTEXT_SPECIFIC | _CONSTRUCTED, len(blob))
    content_size = (
        len(magic_header) + len(_IMG4_MAGIC) + len(payload) + len(blob_header) + len(blob)
    )
    header = _element_header(_SEQUENCE_C, content_size)
    return b"".join(
        (header, magic_header, _IMG4_MAGIC, bytes(payload), blob_header, bytes(blob))
    )


def _request_uint(request: Mapping[str, Any], key: str) -> int:
    value = request.get(key)
    if isinstance(value, (bool, int)):
        return int(value) & _UINT64_MASK
    return 0


def _request_bool(request: Mapping[str, Any], key: str) -> bool:
    value = request.get(key)
    if isinstance(value, (bool, int)):
        return bool(value)
    return False


def create_local_manifest(request: Mapping[str, Any]) -> bytes:
    """Build an unsigned IM4M manifest from a TSS request dictionary.

    Every dict-valued entry of ``request`` is written as a component; an
    entry whose name has no known tag raises :class:`Img4Error`.
    """
    if request is None:
        raise Img4Error("no request given")

    props = b"".join(
        (
            _key_value("BORD", _INTEGER, _request_uint(request, "ApBoardID")),
            _key_value("CEPO", _INTEGER, 0),
            _key_value("CHIP", _INTEGER, _request_uint(request, "ApChipID")),
            _key_value("CPRO", _BOOLEAN, _request_bool(request, "ApProductionMode")),
            _key_value("CSEC", _BOOLEAN, False),
            _key_value("SDOM", _INTEGER, _request_uint(request, "ApSecurityDomain")),
        )
    )

    body = bytearray(_key_value("MANP", _SET_C, props, len(props)))
    for key, value in request.items():
        if not isinstance(value, Mapping):
            continue
        tag = get_component_tag(key)
        if tag is None:
            raise Img4Error(f"Unhandled component '{key}' - can't create manifest")
        log.debug("found component %s (%s)", tag, key)
        body += _component(tag, value)

    manb = _key_value("MANB", _SET_C, None, len(body))
    inner_set = _element_header(_SET_C, len(body) + len(manb))
    hdrdata = _element(_IA5_STRING, "IM4M") + _element(_INTEGER, 0)
    seq = _element_header(
        _SEQUENCE_C, len(inner_set) + len(body) + len(manb) + len(hdrdata)
    )
    return seq + hdrdata + inner_set + manb + bytes(body)