"""Encoding of the DHCP domain search option (RFC 3397)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import takewhile
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

OPTION_DOMAIN_SEARCH = 119
MAX_OPT_LEN = 255
OPT_HEADER_LEN = 2
REFERENCE_LEN = 2
MAX_LABEL_LEN = 63
MAX_POINTER_OFFSET = 0x3FFF


@dataclass(eq=False)
class _Domain:
    index: int
    labels: bytes
    common: int = 0
    refdom: Optional["_Domain"] = None
    offset: int = 0
    length: int = 0


def _encode_labels(name: str) -> bytes | None:
    """Return the wire form of ``name`` (length-prefixed labels, zero end)."""
    raw = name.encode()
    if not raw:
        return None
    *head, tail = raw.split(b".")
    out = bytearray()
    for label in head:
        if not label or len(label) > MAX_LABEL_LEN:
            return None
        out.append(len(label))
        out += label
    if len(tail) > MAX_LABEL_LEN:
        return None
    if tail:
        out.append(len(tail))
        out += tail
    out.append(0)
    return bytes(out)


def _suffix_len(a: bytes, b: bytes) -> int:
    pairs = zip(reversed(a), reversed(b))
    return sum(1 for _ in takewhile(lambda pair: pair[0] == pair[1], pairs))


def _common_label(a: _Domain, b: _Domain) -> int:
    """Length of the whole-label suffix ``a`` shares with ``b``, if worth a pointer."""
    labels = a.labels
    first_equal = len(labels) - _suffix_len(labels, b.labels)
    pos = 0
    while labels[pos] and pos < first_equal:
        pos += labels[pos] + 1
    shared = len(labels) - pos
    return shared if shared > REFERENCE_LEN else 0


def _link(doms: List[_Domain], first: int, last: int, depth: int) -> None:
    """Assign back-references within the sorted range ``first..last``."""
    target = min(doms[first:last + 1], key=lambda dom: dom.index)

    i = first
    while i < last:
        if doms[i].common == depth:
            i += 1
            continue
        end = i
        while end != last and doms[end].common > depth:
            end += 1
        if end == i:
            i += 1
            continue
        next_depth = min(dom.common for dom in doms[i:end])
        _link(doms, i, end, next_depth)
        if end == last:
            break
        i = end + 1

    if depth == 0:
        return

    for dom in doms[first:last + 1]:
        if dom is not target and dom.refdom is None:
            dom.refdom = target
            dom.common = depth


def _compact(domains: List[_Domain]) -> bytes:
    out = bytearray()
    for dom in domains:
        encoded = dom.labels
        ref = dom.refdom
        if ref is not None:
            pointer = ref.offset + ref.length - dom.common
            if 0 <= pointer < MAX_POINTER_OFFSET:
                keep = len(encoded) - dom.common
                encoded = encoded[:keep] + bytes(
                    (0xC0 | (pointer >> 8), pointer & 0xFF)
                )
        dom.offset = len(out)
        dom.length = len(encoded)
        out += encoded
    return bytes(out)


def encode_domain_search(names: Iterable[str]) -> bytes:
    """Build the complete DHCP domain-search option for ``names``.

    Names are emitted in the given order with suffix compression, and the
    result is split into as many option blocks (code 119) as needed.
    Names that cannot be encoded are skipped with a warning.  Raises
    ValueError when no names are given or none of them can be encoded.
    """
    names = list(names)
    if not names:
        raise ValueError("no domain names given")

    domains: List[_Domain] = []
    for name in names:
        labels = _encode_labels(name)
        if labels is None:
            logger.warning("failed to parse domain name %r", name)
            continue
        domains.append(_Domain(index=len(domains), labels=labels))
    if not domains:
        raise ValueError("none of the domain names could be encoded")

    ordered = sorted(domains, key=lambda dom: dom.labels[::-1])
    for prev, cur in zip(ordered, ordered[1:]):
        prev.common = _common_label(prev, cur)

    _link(ordered, 0, len(ordered) - 1, 0)
    body = _compact(domains)

    return b"".join(
        bytes((OPTION_DOMAIN_SEARCH, len(chunk))) + chunk
        for chunk in (
            body[start:start + MAX_OPT_LEN]
            for start in range(0, len(body), MAX_OPT_LEN)
        )
    )