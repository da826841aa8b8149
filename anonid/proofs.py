"""The proof attached to a credential deployment.

A single Fiat-Shamir proof (see ``anonid.zkp``) shows, for the public values of
a credential:

* The pseudonym is well formed: ``g = (IdCredSec + credRand) * regId``.

* For every selected anonymity revoker ``i`` the ciphertext ``(c1, c2)``
  encrypts ``f(i) g``, where ``f`` is a polynomial of degree ``t - 1`` with
  constant term ``IdCredSec``::

      c1 = k_i g,   c2 = k_i pk_i + IdCredSec g + sum_j a_j (i^j g)

  Pedersen commitments to all the coefficients are published, and the one to
  ``a_0`` is proven equal to a commitment to ``IdCredSec``.

* The prover holds a Pointcheval-Sanders signature of the identity provider
  on its identity secret, PRF key, the validity period and attributes of the
  policy, and hidden attributes. The signature ``(s1, s2)`` is randomized and
  blinded with ``r`` as ``(s1, s2 + r s1)``, so that::

      e(s2, g2) / e(s1, X + sum_revealed m_i Y_i) = prod_hidden e(s1, Y_i)^m_i * e(s1, g2)^r

  Every attribute gets a commitment; revealed ones are opened in the clear
  and must match the policy.

* For a new account, the prover knows the secret key of every account key.

The challenge hashes the global context, the identity provider, the
referenced anonymity revokers, the serialized credential values and the
account binding (the existing account address, or the transaction expiry).
"""

import logging
import struct

from petlib.bn import Bn

from . import pssig
from .errors import MalformedInputError, DeserializationError, VerificationError
from .groups import check_g1, negate
from .pack import encode, decode
from .params import NUM_FIXED_SLOTS, SLOT_ID_CRED_SEC, SLOT_PRF_KEY, \
    SLOT_CREATED_AT, SLOT_VALID_TO, attribute_slot
from .pedersen import add_opening, add_equality
from .zeroize import SecretScope
from .zkp import ZKProof, ConstGen, ConstPub, Gen, Pub, Sec

log = logging.getLogger(__name__)

DEPLOYMENT_TAG = b"anonid/credential-deployment"

BIND_ADDRESS = b"\x00"
BIND_EXPIRY = b"\x01"


def bind_address(address):
    """The account binding of a credential deployed onto an existing account."""
    return BIND_ADDRESS + address


def bind_expiry(expiry):
    """The account binding of a credential creating a new account."""
    return BIND_EXPIRY + struct.pack(">Q", expiry)


class DeploymentWitness(object):
    """The secrets the prover needs.

    Attributes:
        id_cred_sec, prf_key, cred_rand (Bn): identity secrets and the
            randomness of the pseudonym.
        attributes (AttributeList): the attributes signed by the identity provider.
        signature: the identity provider signature (unrandomized).
        coeffs (list of Bn): the sharing polynomial, starting with IdCredSec.
        enc_randomness (dict): ElGamal randomness per anonymity revoker.
        account_secrets (AccountSecretKeys): for new accounts only.
    """

    def __init__(self, id_cred_sec, prf_key, cred_rand, attributes, signature,
                 coeffs, enc_randomness, account_secrets=None):
        self.id_cred_sec = id_cred_sec
        self.prf_key = prf_key
        self.cred_rand = cred_rand
        self.attributes = attributes
        self.signature = signature
        self.coeffs = coeffs
        self.enc_randomness = enc_randomness
        self.account_secrets = account_secrets


def referenced_ars(ar_infos, values):
    """The ArInfo of every anonymity revoker in values, by ascending identity."""
    ars = []
    for ar_identity in sorted(values.ar_data):
        if ar_identity not in ar_infos:
            raise MalformedInputError("Unknown anonymity revoker %d." % ar_identity)
        ars.append(ar_infos[ar_identity])
    return ars


def revealed_slots(gc, policy):
    """Maps the signed message positions known to the verifier to their values."""
    slots = {SLOT_CREATED_AT: policy.created_at.scalar(),
             SLOT_VALID_TO: policy.valid_to.scalar()}
    for tag, value in policy.revealed.items():
        if tag >= gc.num_attributes:
            raise MalformedInputError("Policy reveals unknown attribute %d." % tag)
        slots[attribute_slot(tag)] = value.scalar()
    return slots


def _hidden_tags(gc, policy):
    return [t for t in range(gc.num_attributes) if t not in policy.revealed]


def challenge_message(gc, ip_info, ars, values, binding):
    """The public data every challenge of a deployment proof depends on."""
    return DEPLOYMENT_TAG + gc.export() + ip_info.export() \
        + b"".join(ar.export() for ar in ars) + values.to_bytes() + binding


def _statement(gc, ip_info, ars, values):
    """Builds the statement, and the constants that only depend on public values."""
    o = gc.order
    zk = ZKProof(o, DEPLOYMENT_TAG)
    g, h, reg_id = zk.get(ConstGen, ["g", "h", "reg_id"])
    id_cred_sec, prf_key, cred_rand, sig_r = \
        zk.get(Sec, ["id_cred_sec", "prf_key", "cred_rand", "sig_r"])
    env = {"g": gc.g, "h": gc.h, "reg_id": values.reg_id}

    ## The pseudonym
    zk.add_proof(g, id_cred_sec*reg_id + cred_rand*reg_id)

    ## The sharing polynomial and its commitments
    t = values.threshold
    coeffs = [id_cred_sec] + zk.get_array(Sec, "coeff", t - 1, 1)
    env.update(add_equality(zk, id_cred_sec,
                            "cmm_id_cred_sec", gc.scalar_key, zk.get(Sec, "rand_id_cred_sec"),
                            "cmm_coeff_0", gc.scalar_key, zk.get(Sec, "rand_coeff_0")))
    for j in range(1, t):
        _, e = add_opening(zk, gc.scalar_key, "cmm_coeff_%d" % j, [coeffs[j]],
                           zk.get(Sec, "rand_coeff_%d" % j))
        env.update(e)

    ## The encrypted shares
    n = len(ars)
    ar_pk = zk.get_array(ConstGen, "ar_pk", n)
    c1 = zk.get_array(ConstGen, "c1", n)
    c2 = zk.get_array(ConstGen, "c2", n)
    enc_k = zk.get_array(Sec, "enc_k", n)
    for idx, ar in enumerate(ars):
        a, b = values.ar_data[ar.ar_identity].ciphertext
        env["ar_pk[%d]" % idx] = ar.public_key
        env["c1[%d]" % idx] = a
        env["c2[%d]" % idx] = b

        powers = zk.get_array(ConstPub, "ar_pow_%d" % idx, t - 1, 1)
        expr = enc_k[idx]*ar_pk[idx] + id_cred_sec*g
        for j in range(1, t):
            expr = expr + coeffs[j]*(powers[j - 1]*g)
            env["ar_pow_%d[%d]" % (idx, j)] = Bn(ar.ar_identity).mod_pow(Bn(j), o)
        zk.add_proof(c1[idx], enc_k[idx]*g)
        zk.add_proof(c2[idx], expr)

    ## The signature
    zk.get(Gen, ["sig_1", "sig_2"])
    sig_v, sig_b = zk.get(ConstGen, ["sig_v", "sig_b"])
    expr = sig_r*sig_b \
        + id_cred_sec*zk.get(ConstGen, "sig_base_%d" % SLOT_ID_CRED_SEC) \
        + prf_key*zk.get(ConstGen, "sig_base_%d" % SLOT_PRF_KEY)

    ## The attributes
    policy = values.policy
    for tag in range(gc.num_attributes):
        name = "cmm_attr_%d" % tag
        if tag in policy.revealed:
            zk.get(Gen, name)
            zk.get(Pub, "rand_attr_%d" % tag)
            continue
        attr = zk.get(Sec, "attr_%d" % tag)
        slot = attribute_slot(tag)
        expr = expr + attr*zk.get(ConstGen, "sig_base_%d" % slot)
        _, e = add_opening(zk, gc.commitment_key.slot(tag), name, [attr],
                           zk.get(Sec, "rand_attr_%d" % tag))
        env.update(e)
    zk.add_proof(sig_v, expr)

    ## The account keys
    if values.account.is_new:
        acc_group = gc.account_group
        acc_g = zk.get(ConstGen, "acc_g")
        keys = values.account.keys
        acc_vk = zk.get_array(ConstGen, "acc_vk", len(keys))
        acc_sk = zk.get_array(Sec, "acc_sk", len(keys))
        env["acc_g"] = acc_group.generator()
        for k, key in enumerate(keys):
            env["acc_vk[%d]" % k] = key.point
            zk.add_proof(acc_vk[k], acc_sk[k]*acc_g, acc_group.order())

    return zk, env


def _signature_constants(gc, ip_info, policy, sig_1, sig_2):
    """The pairings the signature relation is stated over."""
    pk = ip_info.ps_public_key
    o = gc.order
    K = pk.X
    for slot, m in revealed_slots(gc, policy).items():
        K = K + m * pk.Ys[slot]
    env = {
        "sig_v": gc.pair(sig_2, pk.g2).mul(gc.pair(negate(o, sig_1), K)),
        "sig_b": gc.pair(sig_1, pk.g2),
        }
    hidden = [SLOT_ID_CRED_SEC, SLOT_PRF_KEY] \
        + [attribute_slot(t) for t in _hidden_tags(gc, policy)]
    for slot in hidden:
        env["sig_base_%d" % slot] = gc.pair(sig_1, pk.Ys[slot])
    return env


def prove_deployment(gc, ip_info, ar_infos, values, witness, binding):
    """Returns the serialized proof for values, using the secrets in witness.

    Raises ProofError if the witness does not satisfy the statement."""
    o = gc.order
    ars = referenced_ars(ar_infos, values)
    policy = values.policy

    with SecretScope() as scope:
        ## Randomize and blind the signature
        s1, s2 = pssig.randomize(witness.signature, scope.random(o))
        sig_r = scope.random(o)
        sig_1, sig_2 = s1, s2 + sig_r * s1

        zk, env = _statement(gc, ip_info, ars, values)
        env.update(_signature_constants(gc, ip_info, policy, sig_1, sig_2))
        env.update({
            "sig_1": sig_1, "sig_2": sig_2, "sig_r": sig_r,
            "id_cred_sec": witness.id_cred_sec,
            "prf_key": witness.prf_key,
            "cred_rand": witness.cred_rand,
            })

        ## Commitments to the attributes
        scalars = scope.track(witness.attributes.scalars(gc.num_attributes))
        for tag in range(gc.num_attributes):
            r = scope.random(o)
            env["cmm_attr_%d" % tag] = gc.commitment_key.slot(tag).commit([scalars[tag]], r)
            env["rand_attr_%d" % tag] = r
            if tag not in policy.revealed:
                env["attr_%d" % tag] = scalars[tag]

        ## Commitments to the coefficients
        coeffs = witness.coeffs
        r = scope.random(o)
        env["rand_id_cred_sec"] = r
        env["cmm_id_cred_sec"] = gc.scalar_key.commit([coeffs[0]], r)
        for j, a in enumerate(coeffs):
            r = scope.random(o)
            env["rand_coeff_%d" % j] = r
            env["cmm_coeff_%d" % j] = gc.scalar_key.commit([a], r)
            if j > 0:
                env["coeff[%d]" % j] = a

        for idx, ar in enumerate(ars):
            env["enc_k[%d]" % idx] = witness.enc_randomness[ar.ar_identity]

        if values.account.is_new:
            for k, s in enumerate(witness.account_secrets.secrets):
                env["acc_sk[%d]" % k] = s

        message = challenge_message(gc, ip_info, ars, values, binding)
        c, responses = zk.build_proof(env, message)
        # Encoded before the scope wipes the published randomness
        proofs = encode([c, dict(sorted(responses.items()))])

    log.debug("Built deployment proof of %d bytes", len(proofs))
    return proofs


def _check_public_values(gc, zk, responses):
    for name in zk.Pub:
        value = responses.get(name)
        if isinstance(zk.Pub[name], Gen):
            check_g1(value, name)
        elif not isinstance(value, Bn) or not 0 <= value < gc.order:
            raise MalformedInputError("%s is not a scalar." % name)


def verify_deployment(gc, ip_info, ar_infos, values, proofs, binding):
    """Checks the proof of a credential. Returns None on success.

    Raises MalformedInputError (or DeserializationError) for structurally
    invalid proofs, and VerificationError when a check does not hold."""
    ars = referenced_ars(ar_infos, values)
    policy = values.policy
    revealed_slots(gc, policy)

    try:
        c, responses = decode(proofs)
    except (TypeError, ValueError):
        raise DeserializationError("A proof is a challenge and a map of responses.")
    if not isinstance(responses, dict) or not all(isinstance(k, str) for k in responses):
        raise DeserializationError("Malformed responses.")
    # One encoding per proof: keys sorted, minimal numbers
    if not encode([c, dict(sorted(responses.items()))]) == proofs:
        raise DeserializationError("Proof is not canonically encoded.")

    zk, env = _statement(gc, ip_info, ars, values)
    _check_public_values(gc, zk, responses)

    ## Openings of the revealed attributes
    for tag, value in sorted(policy.revealed.items()):
        ck = gc.commitment_key.slot(tag)
        if not ck.open(responses["cmm_attr_%d" % tag], [value.scalar()], responses["rand_attr_%d" % tag]):
            raise VerificationError("Attribute %d does not match the policy." % tag)

    env.update(_signature_constants(gc, ip_info, policy, responses["sig_1"], responses["sig_2"]))
    message = challenge_message(gc, ip_info, ars, values, binding)
    if not zk.verify_proof(env, (c, responses), message):
        raise VerificationError("The deployment proof does not verify.")


# --- TESTS ---
# End to end tests, that build credentials, are in anonid.credential and anonid.verify.

import pytest


def test_bindings():
    assert bind_address(b"\x01" * 32) == b"\x00" + b"\x01" * 32
    assert bind_expiry(1) == b"\x01" + b"\x00" * 7 + b"\x01"


def test_revealed_slots():
    from .params import GlobalContext
    from .types import Policy, YearMonth
    gc = GlobalContext.generate(num_attributes=3)
    policy = Policy(YearMonth(2030, 1), YearMonth(2020, 2), {1: b"x"})
    slots = revealed_slots(gc, policy)
    assert slots == {SLOT_CREATED_AT: 202002, SLOT_VALID_TO: 203001,
                     NUM_FIXED_SLOTS + 1: Bn.from_binary(b"\x01x")}
    assert _hidden_tags(gc, policy) == [0, 2]

    with pytest.raises(MalformedInputError):
        revealed_slots(gc, Policy(YearMonth(2030, 1), YearMonth(2020, 2), {3: b"x"}))


def test_unknown_ar():
    from .types import CredentialDeploymentValues
    values = CredentialDeploymentValues(None, None, 1, 1, {5: None}, None)
    with pytest.raises(MalformedInputError):
        referenced_ars({}, values)
