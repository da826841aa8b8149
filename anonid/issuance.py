"""Issuance of identity objects.

The user picks its identity secret ``IdCredSec`` and PRF key, commits to them
under the identity provider's key, and proves knowledge of the commitment
opening together with ``IdCredPub = IdCredSec * g``. The identity provider
checks the proof and the attributes it was given out of band, blindly signs
the message vector::

    [IdCredSec, prf_key, created_at, valid_to, attr_0, .., attr_{N-1}]

and keeps ``IdCredPub`` to later match revoked credentials to a real identity.
The user unblinds the signature, obtaining an ``IdentityObject``.
"""

import logging

from bplib.bp import G1Elem
from petlib.bn import Bn

from . import pssig
from .accounts import generate_key
from .errors import DeserializationError, VerificationError
from .groups import check_g1
from .pack import encode, decode
from .params import SLOT_ID_CRED_SEC, SLOT_PRF_KEY
from .types import IpInfo, IpSecretKey
from .zeroize import wipe_bn
from .zkp import ZKProof, ConstGen, Gen, Sec

log = logging.getLogger(__name__)

PRE_IDENTITY_TAG = b"anonid/pre-identity-object"


class IdentitySecrets(object):
    """The long-term secrets of a user."""

    def __init__(self, id_cred_sec, prf_key):
        self.id_cred_sec = id_cred_sec
        self.prf_key = prf_key

    @staticmethod
    def generate(gc):
        return IdentitySecrets(gc.order.random(), gc.order.random())

    def id_cred_pub(self, gc):
        return self.id_cred_sec * gc.g

    def wipe(self):
        wipe_bn(self.id_cred_sec)
        wipe_bn(self.prf_key)


class PreIdentityObject(object):
    """A request for an identity object."""

    def __init__(self, id_cred_pub, commitment, attributes, proof):
        self.id_cred_pub = id_cred_pub
        self.commitment = commitment
        self.attributes = attributes
        self.proof = proof


class IdentityObject(object):
    """The attributes of a user and the identity provider signature on them."""

    def __init__(self, ip_identity, attributes, signature):
        self.ip_identity = ip_identity
        self.attributes = attributes
        self.signature = signature


def generate_ip(gc, ip_identity, description=""):
    """Creates the keys of an identity provider for the attribute slots of gc."""
    ps_secret, ps_public = pssig.keygen(gc.num_messages)
    cdi_secret, cdi_public = generate_key()
    ip_info = IpInfo(ip_identity, description, ps_public, cdi_public)
    log.info("Generated identity provider %d", ip_identity)
    return ip_info, IpSecretKey(ps_secret, cdi_secret)


def signed_messages(gc, id_cred_sec, prf_key, attributes):
    """The message vector an identity provider signs."""
    return [id_cred_sec, prf_key,
            attributes.created_at.scalar(), attributes.valid_to.scalar()] \
        + attributes.scalars(gc.num_attributes)


def _public_part(gc, ip_info, attributes):
    """The commitment to the messages the identity provider learns in the clear."""
    pk = ip_info.ps_public_key
    known = signed_messages(gc, Bn(0), Bn(0), attributes)
    C = None
    for m, Y1 in zip(known[2:], pk.Y1s[2:]):
        term = m * Y1
        C = term if C is None else C + term
    return C


def _statement(gc, ip_info):
    zk = ZKProof(gc.order, PRE_IDENTITY_TAG)
    g, g1, Y_sec, Y_prf = zk.get(ConstGen, ["g", "g1", "Y_sec", "Y_prf"])
    s, k, r = zk.get(Sec, ["id_cred_sec", "prf_key", "blinding"])
    id_cred_pub, C = zk.get(Gen, ["id_cred_pub", "C"])
    zk.add_proof(id_cred_pub, s*g)
    zk.add_proof(C, s*Y_sec + k*Y_prf + r*g1)

    pk = ip_info.ps_public_key
    env = {"g": gc.g, "g1": pk.g1,
           "Y_sec": pk.Y1s[SLOT_ID_CRED_SEC], "Y_prf": pk.Y1s[SLOT_PRF_KEY]}
    return zk, env


def _message(gc, ip_info, attributes):
    return PRE_IDENTITY_TAG + gc.export() + ip_info.export() \
        + attributes.created_at.to_bytes() + attributes.valid_to.to_bytes() \
        + encode(sorted((t, v.value) for t, v in attributes.attributes.items()))


def create_pre_identity_object(gc, ip_info, attributes, secrets):
    """Returns the request and the blinding factor of its commitment, which the
    user needs to unblind the signature and should wipe afterwards."""
    pk = ip_info.ps_public_key
    blinding = gc.order.random()
    C = secrets.id_cred_sec * pk.Y1s[SLOT_ID_CRED_SEC] \
        + secrets.prf_key * pk.Y1s[SLOT_PRF_KEY] + blinding * pk.g1

    zk, env = _statement(gc, ip_info)
    env.update({"id_cred_pub": secrets.id_cred_pub(gc), "C": C,
                "id_cred_sec": secrets.id_cred_sec, "prf_key": secrets.prf_key,
                "blinding": blinding})
    proof = encode(list(zk.build_proof(env, _message(gc, ip_info, attributes))))
    return PreIdentityObject(env["id_cred_pub"], C, attributes, proof), blinding


def verify_pre_identity_object(gc, ip_info, pio):
    """True if the request proves knowledge of the committed secrets."""
    zk, env = _statement(gc, ip_info)
    try:
        c, responses = decode(pio.proof)
    except (DeserializationError, TypeError, ValueError):
        return False
    if not isinstance(responses, dict):
        return False
    for name, value in [("C", pio.commitment), ("id_cred_pub", pio.id_cred_pub)]:
        if not isinstance(responses.get(name), G1Elem) or not responses[name] == value:
            return False
    return zk.verify_proof(env, (c, responses), _message(gc, ip_info, pio.attributes))


def sign_identity_object(gc, ip_info, ip_secret, pio):
    """The identity provider side: checks the request and blindly signs the
    hidden secrets together with the attributes."""
    check_g1(pio.commitment, "commitment")
    check_g1(pio.id_cred_pub, "IdCredPub")
    if not verify_pre_identity_object(gc, ip_info, pio):
        raise VerificationError("Invalid pre-identity object.")
    C = pio.commitment + _public_part(gc, ip_info, pio.attributes)
    log.debug("Signing identity object for identity provider %d", ip_info.ip_identity)
    return pssig.sign_blinded(ip_secret.ps_secret_key, C)


def finish_identity_object(gc, ip_info, attributes, blind_signature, blinding, secrets):
    """The user side: unblinds and checks the signature."""
    signature = pssig.unblind(blind_signature, blinding)
    messages = signed_messages(gc, secrets.id_cred_sec, secrets.prf_key, attributes)
    if not pssig.verify(ip_info.ps_public_key, messages, signature):
        raise VerificationError("The identity provider signature does not verify.")
    return IdentityObject(ip_info.ip_identity, attributes, signature)


def issue(gc, ip_info, ip_secret, attributes, secrets):
    """Runs both sides of issuance locally."""
    pio, blinding = create_pre_identity_object(gc, ip_info, attributes, secrets)
    try:
        blind = sign_identity_object(gc, ip_info, ip_secret, pio)
        return finish_identity_object(gc, ip_info, attributes, blind, blinding, secrets)
    finally:
        wipe_bn(blinding)


# --- TESTS ---

import pytest


def _setup(num_attributes=4):
    from .params import GlobalContext
    from .types import AttributeList, YearMonth
    gc = GlobalContext.generate(b"issuance test", num_attributes)
    ip_info, ip_secret = generate_ip(gc, 1, "Test IP")
    attributes = AttributeList(YearMonth(2030, 1), YearMonth(2024, 1),
                               {0: b"Alice", 2: b"DK"})
    return gc, ip_info, ip_secret, attributes


def test_issue():
    gc, ip_info, ip_secret, attributes = _setup()
    secrets = IdentitySecrets.generate(gc)
    id_object = issue(gc, ip_info, ip_secret, attributes, secrets)
    messages = signed_messages(gc, secrets.id_cred_sec, secrets.prf_key, attributes)
    assert pssig.verify(ip_info.ps_public_key, messages, id_object.signature)


def test_bad_request():
    gc, ip_info, ip_secret, attributes = _setup()
    secrets = IdentitySecrets.generate(gc)
    pio, blinding = create_pre_identity_object(gc, ip_info, attributes, secrets)
    assert verify_pre_identity_object(gc, ip_info, pio)

    # A different IdCredPub
    pio.id_cred_pub = gc.order.random() * gc.g
    assert not verify_pre_identity_object(gc, ip_info, pio)
    with pytest.raises(VerificationError):
        sign_identity_object(gc, ip_info, ip_secret, pio)


def test_attributes_bound():
    from .types import AttributeList, YearMonth
    gc, ip_info, ip_secret, attributes = _setup()
    secrets = IdentitySecrets.generate(gc)
    pio, blinding = create_pre_identity_object(gc, ip_info, attributes, secrets)
    pio.attributes = AttributeList(YearMonth(2031, 1), YearMonth(2024, 1), {0: b"Alice"})
    assert not verify_pre_identity_object(gc, ip_info, pio)


def test_wrong_blinding():
    gc, ip_info, ip_secret, attributes = _setup()
    secrets = IdentitySecrets.generate(gc)
    pio, blinding = create_pre_identity_object(gc, ip_info, attributes, secrets)
    blind = sign_identity_object(gc, ip_info, ip_secret, pio)
    with pytest.raises(VerificationError):
        finish_identity_object(gc, ip_info, attributes, blind, blinding + 1, secrets)


def test_secrets_wipe():
    from .params import GlobalContext
    gc = GlobalContext.generate(num_attributes=1)
    secrets = IdentitySecrets.generate(gc)
    secrets.wipe()
    assert secrets.id_cred_sec == 0 and secrets.prf_key == 0
