"""Parsing, re-signing and serialising of IMG3 firmware containers."""

from __future__ import annotations

import enum
import logging
import struct
from dataclasses import dataclass, field

__all__ = [
    "Img3Error",
    "ElementType",
    "Img3Element",
    "Img3File",
    "parse_element",
    "parse_img3",
    "stitch_component",
]

log = logging.getLogger(__name__)

_HEADER = struct.Struct("<5I")
_ELEMENT_HEADER = struct.Struct("<3I")

IMG3_CONTAINER = 0x496D6733  # "Img3"


class Img3Error(ValueError):
    """Malformed IMG3 data or signature."""


class ElementType(enum.IntEnum):
    """Four-character element tags."""

    DATA = 0x44415441
    TYPE = 0x54595045
    KBAG = 0x4B424147
    SHSH = 0x53485348
    CERT = 0x43455254
    CHIP = 0x43484950
    PROD = 0x50524F44
    SDOM = 0x53444F4D
    VERS = 0x56455253
    BORD = 0x424F5244
    SEPO = 0x5345504F
    ECID = 0x45434944
    UNKN = 0x53414C54


_PARSEABLE = frozenset(
    {
        ElementType.TYPE,
        ElementType.DATA,
        ElementType.VERS,
        ElementType.SEPO,
        ElementType.BORD,
        ElementType.CHIP,
        ElementType.KBAG,
        ElementType.ECID,
        ElementType.SHSH,
        ElementType.CERT,
        ElementType.UNKN,
    }
)


@dataclass
class Img3Element:
    """One element, stored with its 12-byte header."""

    data: bytes

    @property
    def signature(self) -> int:
        return _ELEMENT_HEADER.unpack_from(self.data)[0]

    @property
    def full_size(self) -> int:
        return _ELEMENT_HEADER.unpack_from(self.data)[1]

    @property
    def data_size(self) -> int:
        return _ELEMENT_HEADER.unpack_from(self.data)[2]

    @property
    def type(self) -> ElementType | None:
        """The element's tag, or None for an unknown one."""
        try:
            return ElementType(self.signature)
        except ValueError:
            return None

    @property
    def payload(self) -> bytes:
        return self.data[_ELEMENT_HEADER.size:_ELEMENT_HEADER.size + self.data_size]


def parse_element(data: bytes) -> Img3Element:
    """Read the element that starts at the beginning of ``data``."""
    if len(data) < _ELEMENT_HEADER.size:
        raise Img3Error("truncated IMG3 element header")
    _, full_size, _ = _ELEMENT_HEADER.unpack_from(data)
    if full_size < _ELEMENT_HEADER.size or full_size > len(data):
        raise Img3Error(f"invalid IMG3 element size {full_size}")
    return Img3Element(bytes(data[:full_size]))


@dataclass
class Img3File:
    """An IMG3 container: header values and an ordered list of elements."""

    signature: int
    image_type: int
    full_size: int = 0
    data_size: int = 0
    shsh_offset: int = 0
    elements: list[Img3Element] = field(default_factory=list)

    def _index_of(self, kind: ElementType) -> int:
        for index in reversed(range(len(self.elements))):
            if self.elements[index].type == kind:
                return index
        return -1

    def _place(self, element: Img3Element, before: ElementType | None) -> None:
        index = self._index_of(element.type)
        if index >= 0:
            self.elements[index] = element
            return
        anchor = self._index_of(before) if before is not None else -1
        if anchor >= 0:
            self.elements.insert(anchor, element)
        else:
            self.elements.append(element)

    def replace_signature(self, signature: bytes) -> None:
        """Replace ECID, SHSH and CERT with those read from ``signature``.

        ``signature`` holds an ECID, an SHSH and a CERT element in that
        order. Missing elements are inserted in front of the next signature
        element, or appended.
        """
        offset = 0
        found = []
        for kind in (ElementType.ECID, ElementType.SHSH, ElementType.CERT):
            try:
                element = parse_element(signature[offset:])
            except Img3Error as exc:
                raise Img3Error(f"unable to find {kind.name} element in signature") from exc
            if element.type != kind:
                raise Img3Error(f"unable to find {kind.name} element in signature")
            found.append(element)
            offset += element.full_size

        ecid, shsh, cert = found
        self._place(ecid, ElementType.SHSH)
        self._place(shsh, ElementType.CERT)
        self._place(cert, None)

    def to_bytes(self) -> bytes:
        """Serialise the container with freshly computed header sizes."""
        body = bytearray()
        shsh_offset = 0
        for element in self.elements:
            if element.type == ElementType.SHSH:
                shsh_offset = len(body)
            body += element.data
        size = _HEADER.size + len(body)
        log.info("reconstructed size: %d", size)
        header = _HEADER.pack(self.signature, size, len(body), shsh_offset, self.image_type)
        return header + bytes(body)


def parse_img3(data: bytes) -> Img3File:
    """Parse an IMG3 container."""
    if len(data) < _HEADER.size:
        raise Img3Error("Invalid IMG3 file")
    signature, full_size, data_size, shsh_offset, image_type = _HEADER.unpack_from(data)
    if signature != IMG3_CONTAINER:
        raise Img3Error("Invalid IMG3 file")

    image = Img3File(signature, image_type, full_size, data_size, shsh_offset)
    offset = _HEADER.size
    while offset < len(data):
        if len(data) - offset < _ELEMENT_HEADER.size:
            raise Img3Error("truncated IMG3 element header")
        tag = _ELEMENT_HEADER.unpack_from(data, offset)[0]
        if tag not in _PARSEABLE:
            raise Img3Error(f"Unknown IMG3 element type {tag:08x}")
        element = parse_element(data[offset:])
        image.elements.append(element)
        log.debug("Parsed %s element", element.type.name)
        offset += element.full_size
    return image


def stitch_component(component_name: str, component_data: bytes, blob: bytes) -> bytes:
    """Personalise an IMG3 component with the signature elements in ``blob``."""
    if not component_name or not component_data or not blob:
        raise Img3Error("component name, data and blob must not be empty")

    log.info("Personalizing IMG3 component %s...", component_name)
    try:
        image = parse_img3(component_data)
    except Img3Error as exc:
        raise Img3Error(f"Unable to parse {component_name} IMG3 file") from exc

    if len(blob) < _ELEMENT_HEADER.size:
        raise Img3Error(f"Invalid blob passed for {component_name} IMG3: too short")
    embedded = _ELEMENT_HEADER.unpack_from(blob)[1]
    if embedded > len(blob):
        raise Img3Error(
            f"Invalid blob passed for {component_name} IMG3: the size {embedded} "
            f"embedded in the blob does not match the passed size of {len(blob)}"
        )

    try:
        image.replace_signature(blob)
    except Img3Error as exc:
        raise Img3Error(f"Unable to replace {component_name} IMG3 signature") from exc
    return image.to_bytes()