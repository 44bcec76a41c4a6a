"""Envelope encryption primitives.

Values are sealed with NaCl secretbox (XSalsa20 + Poly1305) under a 32 byte
data key. The data key is generated and wrapped by AWS KMS; the wrapped
form travels inside every Payload so a value can be opened with nothing but
KMS access.

Security notes:
- A fresh random 24-byte nonce is used for every sealed value
- Tampered values or wrong keys fail authentication, they are never
  silently accepted
- Plaintext data keys only live in memory, cached per operation

"""

import base64
import binascii
import struct
import threading

import boto3
import botocore.exceptions
import nacl.secret
import nacl.utils

from secretedit import KMSCallError, PayloadError, output

# Prefix of values sealed with a data key. Anything else in a manifest is
# a value encrypted directly with KMS.
TAG = "crypto "

NONCE_SIZE = nacl.secret.SecretBox.NONCE_SIZE
KEY_SIZE = nacl.secret.SecretBox.KEY_SIZE

# KMS refuses to encrypt empty plaintext.
EMPTY_SENTINEL = "___empty_string___"

ENCRYPTION_CONTEXT = {"RidecellOperator": "true"}

DEFAULT_REGION = "us-west-1"

KMS_ERRORS = (
    botocore.exceptions.BotoCoreError,
    botocore.exceptions.ClientError,
)


class Payload(object):
    """A value sealed with a data key, along with the wrapped data key.

    Binary layout: 2 byte big-endian length of the wrapped key, the wrapped
    key, the 24 byte nonce, then the ciphertext (including the MAC).

    """

    _header = struct.Struct(">H")

    def __init__(self, wrapped_key, nonce, ciphertext):
        self.wrapped_key = wrapped_key
        self.nonce = nonce
        self.ciphertext = ciphertext

    @classmethod
    def seal(cls, plaintext, data_key, nonce=None):
        if nonce is None:
            nonce = nacl.utils.random(NONCE_SIZE)
        box = nacl.secret.SecretBox(data_key.plaintext)
        ciphertext = box.encrypt(plaintext, nonce).ciphertext
        return cls(data_key.wrapped, nonce, ciphertext)

    def open(self, data_key):
        """Return the plaintext. Raises nacl.exceptions.CryptoError if the
        value fails authentication."""
        box = nacl.secret.SecretBox(data_key.plaintext)
        return box.decrypt(self.ciphertext, self.nonce)

    def pack(self):
        return (
            self._header.pack(len(self.wrapped_key))
            + self.wrapped_key
            + self.nonce
            + self.ciphertext
        )

    @classmethod
    def unpack(cls, blob):
        size = cls._header.size
        if len(blob) < size:
            raise PayloadError.from_context("payload is truncated")
        (key_length,) = cls._header.unpack_from(blob)
        nonce_start = size + key_length
        ciphertext_start = nonce_start + NONCE_SIZE
        if not key_length or len(blob) < ciphertext_start:
            raise PayloadError.from_context("payload is truncated")
        return cls(
            blob[size:nonce_start],
            blob[nonce_start:ciphertext_start],
            blob[ciphertext_start:],
        )

    def armor(self):
        return base64.b64encode(self.pack()).decode("ascii")

    @classmethod
    def dearmor(cls, text):
        return cls.unpack(b64decode(text))

    def to_value(self):
        return TAG + self.armor()

    @classmethod
    def from_value(cls, value):
        return cls.dearmor(value[len(TAG) :].strip())


def is_tagged(value):
    return value.startswith(TAG)


def b64decode(text):
    if isinstance(text, str):
        text = text.encode("ascii", errors="replace")
    try:
        return base64.b64decode(b"".join(text.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise PayloadError.from_context(f"error base64 decoding value: {e}")


class DataKey(object):
    """A plaintext data key together with its KMS-wrapped form."""

    def __init__(self, plaintext, wrapped, key_id=""):
        if len(plaintext) != KEY_SIZE:
            raise PayloadError.from_context(
                f"data key has {len(plaintext)} bytes, expected {KEY_SIZE}"
            )
        self.plaintext = plaintext
        self.wrapped = wrapped
        self.key_id = key_id

    @classmethod
    def generate(cls, kms, key_id):
        plaintext, wrapped = kms.generate_data_key(key_id)
        return cls(plaintext, wrapped, key_id)


class DataKeyCache(object):
    """Plaintext data keys by wrapped key.

    Owned by one decrypt or encrypt operation; guarantees at most one KMS
    unwrap per distinct wrapped key.

    """

    def __init__(self, kms):
        self.kms = kms
        self._keys = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._keys)

    def __contains__(self, wrapped):
        return bytes(wrapped) in self._keys

    def add(self, data_key):
        with self._lock:
            self._keys.setdefault(bytes(data_key.wrapped), data_key)

    def unwrap(self, wrapped):
        wrapped = bytes(wrapped)
        with self._lock:
            data_key = self._keys.get(wrapped)
            if data_key is None:
                plaintext, key_id = self.kms.decrypt(wrapped)
                data_key = DataKey(plaintext, wrapped, key_id)
                self._keys[wrapped] = data_key
                name = describe_key(self.kms, key_id)
                output.annotate(f"Decrypted data key using {name}", debug=True)
            return data_key


class KMSClient(object):
    """The KMS operations secretedit uses, on top of a boto3 client."""

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_session(cls, region=None, profile=None):
        session = boto3.session.Session(
            profile_name=profile, region_name=region or DEFAULT_REGION
        )
        return cls(session.client("kms"))

    def generate_data_key(self, key_id):
        try:
            response = self.client.generate_data_key(
                KeyId=key_id,
                NumberOfBytes=KEY_SIZE,
                EncryptionContext=ENCRYPTION_CONTEXT,
            )
        except KMS_ERRORS as e:
            raise KMSCallError.from_context("GenerateDataKey", e, key_id)
        return response["Plaintext"], response["CiphertextBlob"]

    def decrypt(self, blob):
        try:
            response = self.client.decrypt(
                CiphertextBlob=blob, EncryptionContext=ENCRYPTION_CONTEXT
            )
        except KMS_ERRORS as e:
            raise KMSCallError.from_context("Decrypt", e)
        return response["Plaintext"], response["KeyId"]

    def list_aliases(self, key_id):
        try:
            response = self.client.list_aliases(KeyId=key_id)
        except KMS_ERRORS as e:
            raise KMSCallError.from_context("ListAliases", e, key_id)
        return [alias["AliasName"] for alias in response.get("Aliases", [])]


def describe_key(kms, key_id):
    """Return a human readable name (the aliases) of a key, for display."""
    if not key_id or key_id.startswith("alias"):
        return key_id
    try:
        aliases = kms.list_aliases(key_id)
    except KMSCallError as e:
        output.annotate(f"Error getting alias for key: {e}", debug=True)
        return key_id
    if not aliases:
        return key_id
    return ",".join(aliases)
