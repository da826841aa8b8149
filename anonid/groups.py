"""Process-wide group instances and small helpers on group elements.

All library code obtains its pairing group through ``bp_group()`` so that every
element lives in the same ``BpGroup`` object, and its account-key group through
``account_group()``.
"""

import threading

from bplib.bp import BpGroup, G1Elem, G2Elem
from petlib.ec import EcGroup, EcPt

from .errors import MalformedInputError

# secp256k1, used for account verification keys and identity provider
# signatures on initial accounts.
NID_ACCOUNT_KEYS = 714

_lock = threading.Lock()
_groups = {}


def bp_group():
    """Returns the shared pairing group (BN254)."""
    with _lock:
        if "bp" not in _groups:
            _groups["bp"] = BpGroup()
        return _groups["bp"]


def account_group():
    """Returns the shared EC group used for account keys."""
    with _lock:
        if "ec" not in _groups:
            _groups["ec"] = EcGroup(NID_ACCOUNT_KEYS)
        return _groups["ec"]


def negate(order, elem):
    """Returns -elem, computed as (order - 1) * elem."""
    return (order - 1) * elem


def in_subgroup(order, elem):
    """True if elem has the prime order of the group and is not the identity."""
    if elem.isinf():
        return False
    return (order * elem).isinf()


def check_g1(elem, what="G1 element"):
    """Raises MalformedInputError unless elem is a non-identity element of G1."""
    G = bp_group()
    if not isinstance(elem, G1Elem) or not in_subgroup(G.order(), elem):
        raise MalformedInputError("%s is not a valid group element." % what)
    return elem


def check_g2(elem, what="G2 element"):
    """Raises MalformedInputError unless elem is a non-identity element of G2."""
    G = bp_group()
    if not isinstance(elem, G2Elem) or not in_subgroup(G.order(), elem):
        raise MalformedInputError("%s is not a valid group element." % what)
    return elem


def check_account_point(elem, what="account key"):
    """Raises MalformedInputError unless elem is a usable point of the account group."""
    G = account_group()
    if not isinstance(elem, EcPt) or elem.group.nid() != NID_ACCOUNT_KEYS \
            or elem.is_infinite() or not G.check_point(elem):
        raise MalformedInputError("%s is not a valid curve point." % what)
    return elem


# --- TESTS ---

def test_shared_groups():
    assert bp_group() is bp_group()
    assert account_group() is account_group()


def test_negate():
    G = bp_group()
    g1 = G.gen1()
    assert (g1 + negate(G.order(), g1)).isinf()


def test_subgroup():
    from petlib.bn import Bn
    import pytest
    G = bp_group()
    g1, g2 = G.gen1(), G.gen2()
    assert check_g1(Bn(3) * g1) == Bn(3) * g1
    assert check_g2(Bn(5) * g2) == Bn(5) * g2
    with pytest.raises(MalformedInputError):
        check_g1(G.order() * g1)
    with pytest.raises(MalformedInputError):
        check_g1(g2)
