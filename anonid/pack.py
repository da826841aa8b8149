"""The module provides functions to pack and unpack the Bn, pairing group and EC
point structures used by anonid, on top of msgpack.

It is used for the opaque blobs of the library (the proof transcripts, key
material at rest) and to hash Fiat-Shamir transcripts, never for the ledger
records, which have their own fixed layout (see ``anonid.types``).

Example:
    >>> from anonid.groups import bp_group
    >>> G = bp_group()
    >>> test_data = [G.gen1(), G.gen2(), G.order()]
    >>> x = decode(encode(test_data))
    >>> x[2] == G.order()
    True

"""

import msgpack

from bplib.bp import G1Elem, G2Elem, GTElem
from petlib.bn import Bn
from petlib.ec import EcGroup, EcPt

from .errors import DeserializationError
from .groups import bp_group

__all__ = ["encode", "decode", "register_coders"]

_pack_reg = {}
_unpack_reg = {}


def register_coders(cls, num, enc_func, dec_func):
    """ Maps cls to the msgpack extension code num, encoded with enc_func
    and decoded with dec_func. Codes and classes are registered once."""

    if num in _unpack_reg or cls in _pack_reg:
        raise ValueError("Extension code %r or class %r already registered." % (num, cls))

    coders = (cls, num, enc_func, dec_func)
    _pack_reg[cls] = coders
    _unpack_reg[num] = coders


def bn_enc(obj):
    if obj < 0:
        neg = b"-"
        data = (-obj).binary()
    else:
        neg = b"+"
        data = obj.binary()
    return neg + data


def bn_dec(data):
    if len(data) < 1 or data[0:1] not in (b"+", b"-"):
        raise DeserializationError("Bad sign marker in big number.")
    num = Bn.from_binary(data[1:])
    if data[0:1] == b"-":
        return -num
    return num


def ecpt_enc(obj):
    # Points carry their curve
    nid = obj.group.nid()
    data = obj.export()
    packed_data = msgpack.packb((nid, data), use_bin_type=True)
    return packed_data


def ecpt_dec(data):
    # The curve is re-created from its nid
    nid, ptdata = msgpack.unpackb(data, raw=False)
    return EcPt.from_binary(ptdata, EcGroup(nid))


def g1_enc(obj):
    return obj.export()


def g1_dec(data):
    return G1Elem.from_bytes(data, bp_group())


def g2_enc(obj):
    return obj.export()


def g2_dec(data):
    return G2Elem.from_bytes(data, bp_group())


def gt_enc(obj):
    return obj.export()


def gt_dec(data):
    return GTElem.from_bytes(data, bp_group())


def _init_coders():
    global _pack_reg, _unpack_reg
    _pack_reg, _unpack_reg = {}, {}
    register_coders(Bn, 0, bn_enc, bn_dec)
    register_coders(EcPt, 2, ecpt_enc, ecpt_dec)
    register_coders(G1Elem, 3, g1_enc, g1_dec)
    register_coders(G2Elem, 4, g2_enc, g2_dec)
    register_coders(GTElem, 5, gt_enc, gt_dec)


# The types of anonid
_init_coders()


def default(obj):
    for T in _pack_reg:
        if isinstance(obj, T):
            _, num, enc, _ = _pack_reg[T]
            return msgpack.ExtType(num, enc(obj))

    raise TypeError("Unknown type: %r" % (type(obj),))


def ext_hook(code, data):
    if code in _unpack_reg:
        _, _, _, dec = _unpack_reg[code]
        return dec(data)

    raise DeserializationError("Unknown extension type: %s" % code)


def encode(structure):
    """ Encode a structure containing anonid objects to a binary format. """
    return msgpack.packb(structure, default=default, use_bin_type=True)


def decode(packed_data):
    """ Decode a binary byte sequence into a structure containing anonid objects.

    Any failure, including trailing bytes and elements that are not on the
    curve, is reported as a DeserializationError. """
    try:
        return msgpack.unpackb(packed_data, ext_hook=ext_hook, raw=False,
                               strict_map_key=True)
    except DeserializationError:
        raise
    except Exception as e:  # the C bindings raise plain Exception on bad points
        raise DeserializationError("Cannot decode packed data: %s" % e)


# --- TESTS ---

import pytest


def test_plain_structures():
    # Bytes and text stay apart
    data = {"tag": b"anonid", "name": "anonid", "ids": [1, 2, 3]}
    assert decode(encode(data)) == data


def test_bn():
    order = bp_group().order()
    nums = [Bn(0), Bn(1), -Bn(2), order, -order]
    assert decode(encode(nums)) == nums
    assert encode([Bn(1)]) != encode([-Bn(1)])


def test_register_twice():
    with pytest.raises(ValueError):
        register_coders(Bn, 9, bn_enc, bn_dec)


def test_bn_bad_sign():
    packed = encode([Bn(5)])
    tampered = packed.replace(b"+\x05", b",\x05")
    with pytest.raises(DeserializationError):
        decode(tampered)


def test_pairing_elements():
    G = bp_group()
    g1, g2 = G.gen1(), G.gen2()
    gt = G.pair(g1, g2)
    x = decode(encode({"a": Bn(7) * g1, "b": Bn(3) * g2, "c": gt}))
    assert x["a"] == Bn(7) * g1
    assert x["b"] == Bn(3) * g2
    assert x["c"] == gt


def test_ecpt():
    from .groups import account_group
    G = account_group()
    test_data = [G.generator(), G.order()]
    x = decode(encode(test_data))
    assert x == test_data


def test_trailing_bytes():
    with pytest.raises(DeserializationError):
        decode(encode([Bn(1)]) + b"\x00")


def test_unknown_ext():
    packed = msgpack.packb(msgpack.ExtType(42, b"abc"), use_bin_type=True)
    with pytest.raises(DeserializationError):
        decode(packed)


def test_bad_point():
    packed = msgpack.packb(msgpack.ExtType(3, b"\x02" + b"\xff" * 32), use_bin_type=True)
    with pytest.raises(DeserializationError):
        decode(packed)


def test_unknown_type():
    with pytest.raises(TypeError):
        encode([object()])
