"""Verification of credentials, as done by the ledger.

The verifier is a total function of its inputs: any malformed or invalid
credential gives ``False``, and nothing but a misuse of the API itself (for
example neither an account address nor an expiry) raises. The
reason for a rejection is logged at debug level, telling malformed input and
failed cryptographic checks apart.

Example:
    >>> from anonid import demo
    >>> deployment = demo.Setup(num_attributes=3, num_ars=2)
    >>> cdi, _ = deployment.new_account_credential(threshold=1, expiry=100)
    >>> verifier = CredentialVerifier(deployment.gc, [deployment.ip_info], deployment.ar_infos)
    >>> verifier.verify_credential(cdi.to_bytes(), expiry=100, now=99)
    True
    >>> verifier.verify_credential(cdi.to_bytes(), expiry=100, now=101)
    False

"""

import logging
from concurrent.futures import ThreadPoolExecutor

from . import proofs, pssig
from .credential import check_initial_signature
from .errors import AnonIdError, ConfigurationError, MalformedInputError, VerificationError
from .groups import check_g1, check_account_point
from .types import CredentialDeploymentInfo, InitialCredentialDeploymentInfo, \
    account_credential_from_bytes

log = logging.getLogger(__name__)


def _index(infos, attr, what):
    if isinstance(infos, dict):
        infos = list(infos.values())
    out = {}
    for info in infos:
        key = getattr(info, attr)
        if key in out:
            raise ConfigurationError("Duplicate %s %r." % (what, key))
        out[key] = info
    return out


def _check_binding(account_address, expiry):
    """Returns the expiry that applies: none when an account address is given."""
    if account_address is not None:
        return None
    if expiry is None:
        raise ConfigurationError("Give an account address or an expiry.")
    if not isinstance(expiry, int) or not 0 <= expiry < 2 ** 64:
        raise ConfigurationError("The expiry is a 64 bit timestamp.")
    return expiry


def _outcome(what, check, *args):
    """Runs check, turning every failure into False."""
    try:
        check(*args)
    except MalformedInputError as e:
        log.debug("Malformed %s: %s", what, e)
        return False
    except VerificationError as e:
        log.debug("Rejected %s: %s", what, e)
        return False
    except AnonIdError as e:
        log.debug("Invalid %s: %s", what, e)
        return False
    except Exception:
        log.exception("Unexpected error while verifying %s", what)
        return False
    return True


def _check_initial(ip_infos, icdi, expiry, now):
    if isinstance(icdi, bytes):
        icdi = InitialCredentialDeploymentInfo.from_bytes(icdi)
    icdi.values.check()
    ip_info = ip_infos.get(icdi.values.ip_identity)
    if ip_info is None:
        raise MalformedInputError("Unknown identity provider %d." % icdi.values.ip_identity)
    if now is not None and now > expiry:
        raise VerificationError("Expired at %d, now is %d." % (expiry, now))
    if not check_initial_signature(ip_info, icdi, expiry):
        raise VerificationError("Bad identity provider signature.")


class CredentialVerifier(object):
    """ Checks credentials against a fixed set of identity providers and
    anonymity revokers.

    The configuration is checked once, here: duplicate identities, keys
    that are not valid group elements, or identity provider keys that do
    not match the attribute slots of the global context raise
    ConfigurationError.
    """

    def __init__(self, gc, ip_infos, ar_infos):
        self.gc = gc
        self.ip_infos = _index(ip_infos, "ip_identity", "identity provider")
        self.ar_infos = _index(ar_infos, "ar_identity", "anonymity revoker")

        for ip_info in self.ip_infos.values():
            try:
                pssig.check_public_key(ip_info.ps_public_key, gc.num_messages)
                check_account_point(ip_info.cdi_verify_key, "identity provider key")
            except MalformedInputError as e:
                raise ConfigurationError("Identity provider %d: %s" % (ip_info.ip_identity, e))

        for ar_identity, ar_info in self.ar_infos.items():
            if not 0 < ar_identity < 2 ** 32:
                raise ConfigurationError("Invalid anonymity revoker identity %r." % (ar_identity,))
            try:
                check_g1(ar_info.public_key, "anonymity revoker key")
            except MalformedInputError as e:
                raise ConfigurationError("Anonymity revoker %d: %s" % (ar_identity, e))

    def _check_credential(self, cdi, account_address, expiry, now):
        if isinstance(cdi, bytes):
            cdi = CredentialDeploymentInfo.from_bytes(cdi)
        values = cdi.values

        ## Structure first: no cryptography runs on malformed values
        values.check()
        ip_info = self.ip_infos.get(values.ip_identity)
        if ip_info is None:
            raise MalformedInputError("Unknown identity provider %d." % values.ip_identity)
        proofs.referenced_ars(self.ar_infos, values)

        if account_address is not None:
            if values.account.is_new:
                raise MalformedInputError("The credential creates a new account.")
            if values.account.address != account_address:
                raise VerificationError("The credential is for another account.")
            binding = proofs.bind_address(account_address)
        else:
            if not values.account.is_new:
                raise MalformedInputError("The credential is for an existing account.")
            if now is not None and now > expiry:
                raise VerificationError("Expired at %d, now is %d." % (expiry, now))
            binding = proofs.bind_expiry(expiry)

        proofs.verify_deployment(self.gc, ip_info, self.ar_infos, values, cdi.proofs, binding)

    def verify_credential(self, cdi, account_address=None, expiry=None, now=None):
        """ Checks a credential (bytes or CredentialDeploymentInfo).

        With an account_address, the credential must be deployed onto that
        existing account and any expiry is ignored. Otherwise the credential
        must create a new account, its proof must be bound to expiry, and, if
        the current time now is given, now must not be past expiry.
        """
        expiry = _check_binding(account_address, expiry)
        return _outcome("credential", self._check_credential, cdi, account_address, expiry, now)

    def verify_initial_account_creation(self, icdi, expiry, now=None):
        """ Checks an initial credential (bytes or InitialCredentialDeploymentInfo)
        signed by its identity provider for a transaction expiring at expiry. """
        _check_binding(None, expiry)
        return _outcome("initial credential", _check_initial, self.ip_infos, icdi, expiry, now)

    def verify_account_credential(self, data, account_address=None, expiry=None, now=None):
        """ Checks either kind of credential, as encoded with its tag. """
        _check_binding(account_address, expiry)
        try:
            cred = account_credential_from_bytes(data) if isinstance(data, bytes) else data
        except MalformedInputError as e:
            log.debug("Malformed account credential: %s", e)
            return False
        if isinstance(cred, InitialCredentialDeploymentInfo):
            if account_address is not None:
                log.debug("Initial credentials always create an account.")
                return False
            return self.verify_initial_account_creation(cred, expiry, now)
        return self.verify_credential(cred, account_address, expiry, now)

    def verify_batch(self, requests, now=None, max_workers=None):
        """ Checks many ``(credential, account_address, expiry)`` requests in
        parallel. Returns the outcomes in the order of the requests. """
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(self.verify_account_credential, data, address, expiry, now)
                       for data, address, expiry in requests]
            return [f.result() for f in futures]


def verify_credential(gc, ip_info, ar_infos, cdi, account_address=None, expiry=None, now=None):
    """Checks one credential against one identity provider."""
    verifier = CredentialVerifier(gc, [ip_info], ar_infos)
    return verifier.verify_credential(cdi, account_address, expiry, now)


def verify_initial_account_creation(ip_info, expiry, icdi, now=None):
    """Checks one initial credential against its identity provider."""
    _check_binding(None, expiry)
    return _outcome("initial credential", _check_initial,
                    {ip_info.ip_identity: ip_info}, icdi, expiry, now)


# --- TESTS ---

import pytest
import random


@pytest.fixture(scope="module")
def deployment():
    from . import demo
    return demo.Setup(num_attributes=4, num_ars=3)


@pytest.fixture(scope="module")
def new_cdi(deployment):
    cdi, _ = deployment.new_account_credential(threshold=2, revealed=[1, 3], expiry=1000)
    return cdi


def _verifier(deployment):
    return CredentialVerifier(deployment.gc, [deployment.ip_info], deployment.ar_infos)


def test_round_trip(deployment, new_cdi):
    verifier = _verifier(deployment)
    assert verifier.verify_credential(new_cdi, expiry=1000)
    assert verifier.verify_credential(new_cdi.to_bytes(), expiry=1000, now=1000)
    assert verify_credential(deployment.gc, deployment.ip_info, deployment.ar_infos,
                             new_cdi.to_bytes(), expiry=1000)


def test_expiry(deployment, new_cdi):
    verifier = _verifier(deployment)
    data = new_cdi.to_bytes()
    assert not verifier.verify_credential(data, expiry=1000, now=1001)
    # The proof is bound to its expiry
    assert not verifier.verify_credential(data, expiry=1001)
    # A new account credential is not deployed onto an address
    assert not verifier.verify_credential(data, account_address=new_cdi.values.address())


def test_existing_account(deployment):
    verifier = _verifier(deployment)
    address = b"\x42" * 32
    cdi = deployment.existing_account_credential(address, threshold=1, revealed=[0])
    data = cdi.to_bytes()
    assert verifier.verify_credential(data, account_address=address)
    # With an address, any expiry is ignored
    assert verifier.verify_credential(data, account_address=address, expiry=1, now=2 ** 40)
    assert not verifier.verify_credential(data, account_address=b"\x43" * 32)
    assert not verifier.verify_credential(data, expiry=1000)


def test_api_misuse(deployment, new_cdi):
    verifier = _verifier(deployment)
    with pytest.raises(ConfigurationError):
        verifier.verify_credential(new_cdi)
    with pytest.raises(ConfigurationError):
        verifier.verify_credential(new_cdi, expiry=-1)


def test_tamper(deployment, new_cdi):
    verifier = _verifier(deployment)
    data = new_cdi.to_bytes()
    proofs_start = len(data) - len(new_cdi.proofs)
    rng = random.Random(1)

    # Positions in the proofs, and anywhere in the record
    positions = [rng.randrange(proofs_start, len(data)) for _ in range(8)] \
        + [rng.randrange(0, proofs_start) for _ in range(8)]
    for pos in positions:
        tampered = bytearray(data)
        tampered[pos] ^= 1 << rng.randrange(8)
        assert not verifier.verify_credential(bytes(tampered), expiry=1000), pos

    assert not verifier.verify_credential(data + b"\x00", expiry=1000)
    assert not verifier.verify_credential(data[:-1], expiry=1000)


def test_tamper_parts(deployment, new_cdi):
    from .types import CredentialDeploymentInfo, ChainArData
    verifier = _verifier(deployment)
    gc = deployment.gc

    # Pseudonym
    cdi = CredentialDeploymentInfo.from_bytes(new_cdi.to_bytes())
    cdi.values.reg_id = cdi.values.reg_id + gc.g
    assert not verifier.verify_credential(cdi, expiry=1000)

    # One encrypted share
    cdi = CredentialDeploymentInfo.from_bytes(new_cdi.to_bytes())
    a, b = cdi.values.ar_data[2].ciphertext
    cdi.values.ar_data[2] = ChainArData((a, b + gc.g))
    assert not verifier.verify_credential(cdi, expiry=1000)


def test_proofs_encoding(deployment, new_cdi):
    from .pack import encode, decode
    from .types import CredentialDeploymentInfo
    verifier = _verifier(deployment)

    c, responses = decode(new_cdi.proofs)
    assert list(responses) == sorted(responses)
    assert encode([c, responses]) == new_cdi.proofs

    # Same values, responses in another order
    reordered = encode([c, dict(reversed(list(responses.items())))])
    assert reordered != new_cdi.proofs
    cdi = CredentialDeploymentInfo(new_cdi.values, reordered)
    assert not verifier.verify_credential(cdi, expiry=1000)


def test_hidden_empty_attribute(deployment):
    # Slot 2 holds no attribute and stays hidden
    assert 2 not in deployment.attributes.attributes
    verifier = _verifier(deployment)
    cdi, _ = deployment.new_account_credential(threshold=1, revealed=[0])
    assert 2 not in cdi.values.policy.revealed
    assert verifier.verify_credential(cdi, expiry=1000)


def test_selective_disclosure(deployment, new_cdi):
    from .types import AttributeValue, CredentialDeploymentInfo, YearMonth
    verifier = _verifier(deployment)

    cdi = CredentialDeploymentInfo.from_bytes(new_cdi.to_bytes())
    assert cdi.values.policy.revealed[1].value == b"Doe"
    cdi.values.policy.revealed[1] = AttributeValue(b"Roe")
    assert not verifier.verify_credential(cdi, expiry=1000)

    # Revealing a hidden attribute without proving it
    cdi = CredentialDeploymentInfo.from_bytes(new_cdi.to_bytes())
    cdi.values.policy.revealed[0] = AttributeValue(b"Jane")
    assert not verifier.verify_credential(cdi, expiry=1000)

    cdi = CredentialDeploymentInfo.from_bytes(new_cdi.to_bytes())
    cdi.values.policy.valid_to = YearMonth(2099, 12)
    assert not verifier.verify_credential(cdi, expiry=1000)


def test_key_count_bounds(deployment, new_cdi, monkeypatch):
    from .types import CredentialDeploymentInfo, NewAccount
    verifier = _verifier(deployment)
    calls = []
    monkeypatch.setattr(proofs, "verify_deployment", lambda *args: calls.append(args))

    key = new_cdi.values.account.keys[0]
    for keys in [[], [key] * 256]:
        cdi = CredentialDeploymentInfo.from_bytes(new_cdi.to_bytes())
        cdi.values.account = NewAccount(keys, 1)
        assert not verifier.verify_credential(cdi, expiry=1000)
    assert calls == []

    # The stub is reached by well formed values
    assert verifier.verify_credential(new_cdi, expiry=1000)
    assert len(calls) == 1


def test_threshold_structure(deployment, new_cdi):
    from .types import CredentialDeploymentInfo
    verifier = _verifier(deployment)
    cdi = CredentialDeploymentInfo.from_bytes(new_cdi.to_bytes())
    cdi.values.threshold = 4
    assert not verifier.verify_credential(cdi, expiry=1000)

    # Unknown anonymity revoker
    verifier = CredentialVerifier(deployment.gc, [deployment.ip_info],
                                  [deployment.ar_infos[1], deployment.ar_infos[2]])
    assert not verifier.verify_credential(new_cdi, expiry=1000)


def test_configuration(deployment):
    from .types import IpInfo
    from .pssig import keygen
    with pytest.raises(ConfigurationError):
        CredentialVerifier(deployment.gc, [deployment.ip_info, deployment.ip_info], deployment.ar_infos)
    _, short_key = keygen(deployment.gc.num_messages - 1)
    bad_ip = IpInfo(7, "Short", short_key, deployment.ip_info.cdi_verify_key)
    with pytest.raises(ConfigurationError):
        CredentialVerifier(deployment.gc, [bad_ip], deployment.ar_infos)


def test_initial_account(deployment):
    verifier = _verifier(deployment)
    icdi = deployment.initial_credential(expiry=500)
    data = icdi.to_bytes()
    assert verifier.verify_initial_account_creation(data, 500, now=500)
    assert verify_initial_account_creation(deployment.ip_info, 500, data)

    flipped = bytearray(data)
    flipped[len(data) - 64] ^= 0xff
    assert not verifier.verify_initial_account_creation(bytes(flipped), 500)

    assert not verifier.verify_initial_account_creation(data, 500, now=501)
    assert not verifier.verify_initial_account_creation(data, 501)
    assert not verifier.verify_initial_account_creation(data[:-1], 500)

    # The pseudonym comes from the identity secret
    from petlib.bn import Bn
    from .credential import derive_reg_id
    gc = deployment.gc
    icdi = deployment.initial_credential(expiry=500, cred_rand=Bn(7))
    assert icdi.values.reg_id == derive_reg_id(gc, deployment.secrets.id_cred_sec, Bn(7))


def test_account_credential(deployment, new_cdi):
    from .types import account_credential_to_bytes
    verifier = _verifier(deployment)
    icdi = deployment.initial_credential(expiry=500)
    initial = account_credential_to_bytes(icdi)
    normal = account_credential_to_bytes(new_cdi)

    assert verifier.verify_account_credential(initial, expiry=500)
    assert verifier.verify_account_credential(normal, expiry=1000)
    assert not verifier.verify_account_credential(initial, account_address=b"\x00" * 32)
    assert not verifier.verify_account_credential(b"\x05" + normal[1:], expiry=1000)

    outcomes = verifier.verify_batch([(initial, None, 500), (normal, None, 1000),
                                      (normal, None, 999), (initial, None, 500)],
                                     now=500, max_workers=2)
    assert outcomes == [True, True, False, True]
