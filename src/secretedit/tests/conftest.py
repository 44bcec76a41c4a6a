import collections
import os

import pytest

from secretedit import KMSCallError, output


class FakeKMS(object):
    """Stands in for KMSClient.

    "Wrapping" prefixes a blob with the key's tag, unwrapping strips it
    again. Blobs with an unknown tag are rejected like foreign ciphertext.

    """

    keys = {b"kms": "12345", b"alt": "67890"}

    def __init__(self):
        self.calls = collections.Counter()

    def generate_data_key(self, key_id):
        self.calls["GenerateDataKey"] += 1
        plaintext = os.urandom(32)
        return plaintext, b"kms" + plaintext

    def decrypt(self, blob):
        self.calls["Decrypt"] += 1
        key_id = self.keys.get(blob[:3])
        if key_id is None:
            raise KMSCallError.from_context(
                "Decrypt", "InvalidCiphertextException"
            )
        return blob[3:], key_id

    def list_aliases(self, key_id):
        self.calls["ListAliases"] += 1
        return []


@pytest.fixture
def kms():
    return FakeKMS()


@pytest.fixture(autouse=True)
def reset_output():
    backend, debug = output.backend, output.enable_debug
    yield
    output.backend, output.enable_debug = backend, debug
