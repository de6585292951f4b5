import struct

import pytest

from ipswkit.img3 import (
    ElementType,
    Img3Error,
    parse_element,
    parse_img3,
    stitch_component,
)


def element(kind, payload):
    return struct.pack("<3I", kind, 12 + len(payload), len(payload)) + payload


def image(*elements, image_type=0x696C6C62):
    body = b"".join(elements)
    shsh = 0
    offset = 0
    for el in elements:
        if struct.unpack_from("<I", el)[0] == ElementType.SHSH:
            shsh = offset
        offset += len(el)
    return struct.pack("<5I", 0x496D6733, 20 + len(body), len(body), shsh, image_type) + body


TYPE = element(ElementType.TYPE, b"llbi")
DATA = element(ElementType.DATA, b"\x01\x02\x03\x04\x05\x06\x07\x08")
OLD_SHSH = element(ElementType.SHSH, b"old-signature")
OLD_CERT = element(ElementType.CERT, b"old-cert")
NEW_ECID = element(ElementType.ECID, b"\xaa" * 8)
NEW_SHSH = element(ElementType.SHSH, b"new-signature!!!")
NEW_CERT = element(ElementType.CERT, b"new-cert-chain")
BLOB = NEW_ECID + NEW_SHSH + NEW_CERT


def test_magic_bytes_in_output():
    out = stitch_component("LLB", image(TYPE, DATA, OLD_SHSH, OLD_CERT), BLOB)
    assert out[:4] == b"3gmI"


def test_roundtrip_consistent_image():
    raw = image(TYPE, DATA, OLD_SHSH, OLD_CERT)
    assert parse_img3(raw).to_bytes() == raw


def test_parse_elements_in_order():
    img = parse_img3(image(TYPE, DATA, OLD_SHSH))
    assert [e.type for e in img.elements] == [
        ElementType.TYPE,
        ElementType.DATA,
        ElementType.SHSH,
    ]
    assert img.elements[1].payload == b"\x01\x02\x03\x04\x05\x06\x07\x08"


def test_stitch_inserts_ecid_before_shsh_and_replaces():
    out = stitch_component("LLB", image(TYPE, DATA, OLD_SHSH, OLD_CERT), BLOB)
    img = parse_img3(out)
    assert [e.data for e in img.elements] == [TYPE, DATA, NEW_ECID, NEW_SHSH, NEW_CERT]


def test_stitch_header_fields():
    out = stitch_component("LLB", image(TYPE, DATA, OLD_SHSH, OLD_CERT), BLOB)
    _, full, data_size, shsh_offset, image_type = struct.unpack_from("<5I", out)
    assert full == len(out)
    assert data_size == len(out) - 20
    assert out[20 + shsh_offset:20 + shsh_offset + len(NEW_SHSH)] == NEW_SHSH
    assert image_type == 0x696C6C62


def test_stitch_appends_when_no_signature():
    out = stitch_component("iBSS", image(TYPE, DATA), BLOB)
    assert [e.data for e in parse_img3(out).elements] == [TYPE, DATA, NEW_ECID, NEW_SHSH, NEW_CERT]


def test_stitch_replaces_existing_ecid():
    old_ecid = element(ElementType.ECID, b"\x11" * 8)
    out = stitch_component("LLB", image(TYPE, old_ecid, OLD_SHSH, OLD_CERT), BLOB)
    assert [e.data for e in parse_img3(out).elements] == [TYPE, NEW_ECID, NEW_SHSH, NEW_CERT]


def test_invalid_magic_raises():
    raw = bytearray(image(TYPE))
    raw[0:4] = b"XXXX"
    with pytest.raises(Img3Error):
        parse_img3(bytes(raw))


def test_unknown_element_raises():
    with pytest.raises(Img3Error):
        parse_img3(image(TYPE, element(0x41424344, b"zz")))


def test_prod_element_not_accepted():
    with pytest.raises(Img3Error):
        parse_img3(image(element(ElementType.PROD, b"\x01\x00\x00\x00")))


def test_signature_missing_ecid_raises():
    with pytest.raises(Img3Error):
        stitch_component("LLB", image(TYPE, DATA), NEW_SHSH + NEW_ECID + NEW_CERT)


def test_signature_missing_cert_raises():
    with pytest.raises(Img3Error):
        stitch_component("LLB", image(TYPE, DATA), NEW_ECID + NEW_SHSH)


def test_empty_arguments_raise():
    with pytest.raises(Img3Error):
        stitch_component("", image(TYPE), BLOB)
    with pytest.raises(Img3Error):
        stitch_component("LLB", b"", BLOB)
    with pytest.raises(Img3Error):
        stitch_component("LLB", image(TYPE), b"")


def test_parse_element_reads_declared_size():
    el = parse_element(DATA + b"trailing")
    assert el.data == DATA
    assert el.type == ElementType.DATA
    assert el.full_size == len(DATA)


def test_parse_element_bad_size_raises():
    with pytest.raises(Img3Error):
        parse_element(struct.pack("<3I", ElementType.DATA, 4, 0))
    with pytest.raises(Img3Error):
        parse_element(struct.pack("<3I", ElementType.DATA, 100, 0))