#!/usr/bin/env python

import os.path
import re

from setuptools import setup

# Read the version without importing anonid, that needs its dependencies
init = open(os.path.join(os.path.dirname(__file__), "anonid", "__init__.py")).read()
version = re.findall("VERSION.*=.*['\"](.*)['\"]", init)[0]

setup(name='anonid',
      version=version,
      description='Anonymous credentials with selective disclosure and threshold anonymity revocation',
      author='anonid developers',
      packages=['anonid'],
      license="2-clause BSD",
      long_description="""Pedersen commitments, Pointcheval-Sanders blind signatures, threshold ElGamal and a composed zero-knowledge proof, to issue identity credentials, deploy them anonymously on a ledger, and revoke their anonymity with a quorum of revokers.""",

      setup_requires=["pytest >= 2.6.4"],
      tests_require = [
            "pytest >= 2.5.0",
            "paver >= 1.2.3",
            "pytest-cov >= 1.8.1",
            ],
      install_requires=[
            "petlib >= 0.0.40",
            "bplib >= 0.0.6",
            "msgpack >= 1.0.0",
      ],
      extras_require={
            "test": [
                  "pytest >= 2.5.0",
                  "paver >= 1.2.3",
                  "pytest-cov >= 1.8.1",
            ],
      },
      zip_safe=False,
)
