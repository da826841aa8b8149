"""A complete local deployment: global parameters, one identity provider,
a set of anonymity revokers and a user holding an identity object.

It runs every party in one process, to exercise the protocols end to end.
"""

from .accounts import generate_account_keys
from .credential import create_credential, create_initial_credential, derive_reg_id, policy_for
from .issuance import IdentitySecrets, generate_ip, issue
from .params import GlobalContext
from .revocation import generate_ar
from .types import AttributeList, YearMonth, ExistingAccount, InitialCredentialAccount

DEFAULT_ATTRIBUTES = {
    0: b"Jane",
    1: b"Doe",
    3: b"19800229",
    4: b"DK",
    5: b"DK",
}


def new_account(n=1, threshold=1):
    """A fresh account key set and its secrets."""
    return generate_account_keys(n, threshold)


class Setup(object):
    """All the parties of a deployment, with an issued identity object."""

    def __init__(self, num_attributes=4, num_ars=3, genesis=b"anonid demo",
                 attributes=None, ip_identity=1):
        self.gc = GlobalContext.generate(genesis, num_attributes)
        self.ip_info, self.ip_secret = generate_ip(self.gc, ip_identity, "Demo identity provider")

        self.ar_infos = {}
        self.ar_secrets = {}
        for ar_identity in range(1, num_ars + 1):
            info, secret = generate_ar(self.gc, ar_identity, "Demo revoker %d" % ar_identity)
            self.ar_infos[ar_identity] = info
            self.ar_secrets[ar_identity] = secret

        if attributes is None:
            attributes = dict((t, v) for t, v in DEFAULT_ATTRIBUTES.items() if t < num_attributes)
        self.attributes = AttributeList(YearMonth(2030, 12), YearMonth(2024, 5), attributes)
        self.secrets = IdentitySecrets.generate(self.gc)
        self.id_object = issue(self.gc, self.ip_info, self.ip_secret, self.attributes, self.secrets)

    def new_account_credential(self, threshold=1, revealed=(), expiry=1000,
                               num_keys=1, ar_identities=None):
        """A credential creating a new account. Returns it and the account secrets."""
        account, keys = new_account(num_keys, 1)
        cdi = create_credential(self.gc, self.ip_info, self.ar_infos, self.id_object,
                                self.secrets, list(revealed), threshold, (account, keys),
                                expiry=expiry, ar_identities=ar_identities)
        return cdi, keys

    def existing_account_credential(self, address, threshold=1, revealed=()):
        """A credential deployed onto the account at address."""
        return create_credential(self.gc, self.ip_info, self.ar_infos, self.id_object,
                                 self.secrets, list(revealed), threshold,
                                 ExistingAccount(address))

    def initial_credential(self, expiry=1000, num_keys=1, revealed=(), cred_rand=None):
        """An initial credential signed by the identity provider."""
        account, _ = new_account(num_keys, 1)
        if cred_rand is None:
            cred_rand = self.gc.order.random()
        reg_id = derive_reg_id(self.gc, self.secrets.id_cred_sec, cred_rand)
        return create_initial_credential(
            self.ip_info, self.ip_secret, reg_id,
            InitialCredentialAccount(account.keys, account.threshold),
            policy_for(self.attributes, revealed), expiry)
