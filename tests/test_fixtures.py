import json
import os

import pytest
from contracts import TOKEN_ABI, Counter, TokenUser

from solmock.config import default_config
from solmock.history import NonceSequence
from solmock.sandbox import Sandbox


@pytest.fixture
def args():
    return default_config()


@pytest.fixture
def sandbox(args):
    return Sandbox(config=args)


@pytest.fixture
def chain(sandbox):
    return sandbox.chain


@pytest.fixture
def vm(sandbox):
    return sandbox.vm


@pytest.fixture
def nonces():
    return NonceSequence()


@pytest.fixture
def token(sandbox):
    return sandbox.fake(TOKEN_ABI)


@pytest.fixture
def counter(sandbox):
    return sandbox.mock(None, Counter).deploy(5)


@pytest.fixture
def token_user(sandbox):
    return sandbox.mock(None, TokenUser).deploy()


@pytest.fixture
def alice(chain):
    return chain.accounts[1]


@pytest.fixture
def bob(chain):
    return chain.accounts[2]


@pytest.fixture
def read_json_file(request):
    """fixture to read json files under tests/data"""

    def _read_file(filename):
        test_dir = request.fspath.dirname
        file_path = os.path.join(test_dir, "data", filename)
        with open(file_path) as file:
            return json.load(file)

    return _read_file
