import os.path
import re

from paver.tasks import task
from paver.easy import sh


def tell(x):
    print()
    print(("-"*10)+ str(x) + ("-"*10))
    print()

@task
def test(quiet=False):
    """ Runs the anonid unit tests, with coverage. """
    tell("Run the tests")
    sh('py.test -v --cov=anonid --cov-report=term-missing anonid', capture=quiet)

@task
def build(quiet=True):
    """ Builds the anonid distribution, ready to be uploaded to pypi. """
    tell("Build dist")
    sh('python setup.py sdist', capture=quiet)

@task
def upload(quiet=False):
    """ Uploads the latest distribution to pypi. """

    lib = open(os.path.join("anonid", "__init__.py")).read()
    v = re.findall("VERSION.*=.*['\"](.*)['\"]", lib)[0]

    tell("upload dist %s" % v)
    sh('git tag -a v%s -m "Distribution version v%s"' % (v, v))
    sh('python setup.py sdist upload', capture=quiet)
    tell('Remember to upload tags using "git push --tags"')

@task
def lint(quiet=False):
    """ Runs the python linter on anonid. """
    tell("Run pylint on the library")
    sh('pylint anonid', capture=quiet)

@task
def wc(quiet=False):
    """ Counts the anonid library code lines. """
    tell("Counting code lines")

    print("\nLibrary code:")
    sh('wc -l anonid/*.py', capture=quiet)

    print("\nAdministration code:")
    sh('wc -l pavement.py setup.py', capture=quiet)
