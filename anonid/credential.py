"""Assembly of credentials by the user, and of initial credentials by an
identity provider.

Example:
    >>> from anonid import demo
    >>> setup = demo.Setup(num_attributes=3, num_ars=3)
    >>> cdi, keys = setup.new_account_credential(threshold=2, revealed=[0])
    >>> cdi.values.threshold
    2

"""

import logging
import struct
from hashlib import sha256

from . import elgamal
from .accounts import sign_digest, verify_digest
from .errors import ConfigurationError, MalformedInputError
from .proofs import DeploymentWitness, prove_deployment, bind_address, bind_expiry
from .sharing import share_secret
from .types import ChainArData, CredentialDeploymentValues, CredentialDeploymentInfo, \
    ExistingAccount, NewAccount, Policy, InitialCredentialDeploymentValues, \
    InitialCredentialDeploymentInfo
from .zeroize import SecretScope

log = logging.getLogger(__name__)

INITIAL_TAG = b"anonid/initial-credential"


def derive_reg_id(gc, id_cred_sec, cred_rand):
    """The pseudonym (IdCredSec + credRand)^-1 * g."""
    o = gc.order
    with SecretScope() as scope:
        e = scope.track((id_cred_sec + cred_rand) % o)
        if e == 0:
            raise MalformedInputError("Degenerate pseudonym randomness.")
        inv = scope.track(e.mod_inverse(o))
        return inv * gc.g


def policy_for(attributes, revealed_tags):
    """The policy revealing the given tags of an attribute list."""
    return Policy(attributes.valid_to, attributes.created_at,
                  dict((t, attributes.value(t)) for t in revealed_tags))


def create_credential(gc, ip_info, ar_infos, id_object, secrets, revealed_tags,
                      threshold, account, expiry=None, ar_identities=None):
    """Builds a credential for the identity object id_object.

    ``account`` is either an ``ExistingAccount``, or a pair of a ``NewAccount``
    and its ``AccountSecretKeys``, in which case the proof is bound to the
    transaction ``expiry``. ``ar_identities`` selects anonymity revokers among
    ``ar_infos`` (all of them by default)."""
    if isinstance(account, ExistingAccount):
        account_secrets = None
        binding = bind_address(account.address)
    else:
        account, account_secrets = account
        if not isinstance(account, NewAccount) or len(account_secrets) != len(account.keys):
            raise ConfigurationError("A new account needs one secret per key.")
        if expiry is None:
            raise ConfigurationError("Credentials for new accounts are bound to an expiry.")
        binding = bind_expiry(expiry)

    if id_object.ip_identity != ip_info.ip_identity:
        raise ConfigurationError("The identity object is from another identity provider.")

    if ar_identities is None:
        ar_identities = sorted(ar_infos)
    ar_identities = sorted(ar_identities)
    o = gc.order

    with SecretScope() as scope:
        cred_rand = scope.random(o)
        reg_id = derive_reg_id(gc, secrets.id_cred_sec, cred_rand)

        ## Share IdCredSec, and encrypt the shares in the exponent
        coeffs, shares = share_secret(secrets.id_cred_sec, threshold, ar_identities, o)
        scope.track(coeffs[1:])
        scope.track(list(shares.values()))
        ar_data = {}
        enc_randomness = {}
        for ar_identity in ar_identities:
            ar = ar_infos[ar_identity]
            ciphertext, k = elgamal.enc(gc.g, ar.public_key, shares[ar_identity])
            enc_randomness[ar_identity] = scope.track(k)
            ar_data[ar_identity] = ChainArData(ciphertext)

        policy = policy_for(id_object.attributes, revealed_tags)
        values = CredentialDeploymentValues(account, reg_id, ip_info.ip_identity,
                                            threshold, ar_data, policy)
        values.check()

        witness = DeploymentWitness(secrets.id_cred_sec, secrets.prf_key, cred_rand,
                                    id_object.attributes, id_object.signature,
                                    coeffs, enc_randomness, account_secrets)
        proofs = prove_deployment(gc, ip_info, ar_infos, values, witness, binding)

    log.info("Created credential for identity provider %d with %d anonymity revokers",
             ip_info.ip_identity, len(ar_identities))
    return CredentialDeploymentInfo(values, proofs)


def initial_credential_digest(values, expiry):
    """The digest an identity provider signs for an initial credential."""
    return sha256(INITIAL_TAG + values.to_bytes() + struct.pack(">Q", expiry)).digest()


def create_initial_credential(ip_info, ip_secret, reg_id, account, policy, expiry):
    """The identity provider side of an initial account: signs the values
    for a transaction expiring at expiry."""
    account.check()
    values = InitialCredentialDeploymentValues(account, reg_id, ip_info.ip_identity, policy)
    values.check()
    sig = sign_digest(ip_secret.cdi_sign_key, initial_credential_digest(values, expiry))
    return InitialCredentialDeploymentInfo(values, sig)


def check_initial_signature(ip_info, icdi, expiry):
    """True if the identity provider signature on icdi is valid for expiry."""
    return verify_digest(ip_info.cdi_verify_key, icdi.sig,
                         initial_credential_digest(icdi.values, expiry))


# --- TESTS ---

import pytest


def test_reg_id():
    from .params import GlobalContext
    gc = GlobalContext.generate(num_attributes=1)
    o = gc.order
    s, r = o.random(), o.random()
    reg_id = derive_reg_id(gc, s, r)
    assert ((s + r) % o) * reg_id == gc.g
    assert s != 0 and r != 0
    with pytest.raises(MalformedInputError):
        derive_reg_id(gc, s, o - s)


def test_create_credential():
    from . import demo
    from .proofs import verify_deployment
    setup = demo.Setup(num_attributes=3, num_ars=3)
    cdi, keys = setup.new_account_credential(threshold=2, revealed=[1], expiry=1000)
    assert sorted(cdi.values.ar_data) == [1, 2, 3]
    assert list(cdi.values.policy.revealed) == [1]
    verify_deployment(setup.gc, setup.ip_info, setup.ar_infos, cdi.values,
                      cdi.proofs, bind_expiry(1000))


def test_create_credential_config():
    from . import demo
    setup = demo.Setup(num_attributes=2, num_ars=2)
    account, keys = demo.new_account(1)
    with pytest.raises(ConfigurationError):
        create_credential(setup.gc, setup.ip_info, setup.ar_infos, setup.id_object,
                          setup.secrets, [], 1, (account, keys))
    with pytest.raises(ConfigurationError):
        create_credential(setup.gc, setup.ip_info, setup.ar_infos, setup.id_object,
                          setup.secrets, [], 3, ExistingAccount(b"\x00" * 32))


def test_initial_credential():
    from . import demo
    setup = demo.Setup(num_attributes=2, num_ars=1)
    icdi = setup.initial_credential(expiry=500)
    assert check_initial_signature(setup.ip_info, icdi, 500)
    assert not check_initial_signature(setup.ip_info, icdi, 501)
