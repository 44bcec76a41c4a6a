"""Whole-file encryption.

`<name>` is encrypted to `<name>.encrypted`, which holds the base64 of a
single Payload. All files of one run that use the same KMS key share one
data key.

"""

import base64
import pathlib

import nacl.exceptions

from secretedit import (
    DecryptError,
    MissingKeyIdError,
    ReportingException,
    output,
)
from secretedit.crypto import DataKey, DataKeyCache, Payload, b64decode
from secretedit.files import write_atomic
from secretedit.keys import find_key_id

ENCRYPTED_SUFFIX = ".encrypted"
DECRYPTED_SUFFIX = ".decrypted"


def encrypted_path(path):
    path = pathlib.Path(path)
    return path.with_name(path.name + ENCRYPTED_SUFFIX)


def decrypted_path(path):
    path = pathlib.Path(path)
    if path.name.endswith(ENCRYPTED_SUFFIX):
        return path.with_name(path.name[: -len(ENCRYPTED_SUFFIX)])
    # Never decrypt a file onto itself.
    return path.with_name(path.name + DECRYPTED_SUFFIX)


def encrypt_blob(content: bytes, data_key) -> bytes:
    return base64.b64encode(Payload.seal(content, data_key).pack())


def decrypt_blob(blob: bytes, cache, name="") -> bytes:
    payload = Payload.unpack(b64decode(blob))
    data_key = cache.unwrap(payload.wrapped_key)
    try:
        return payload.open(data_key)
    except nacl.exceptions.CryptoError:
        raise DecryptError.from_context(name)


def encrypt_files(filenames, kms, key_id="", recrypt=False):
    """Encrypt files, skipping those whose encrypted form is up to date."""
    cache = DataKeyCache(kms)
    data_keys = {}
    for filename in filenames:
        path = pathlib.Path(filename)
        target = encrypted_path(path)
        content = path.read_bytes()

        if not recrypt and target.exists():
            try:
                current = decrypt_blob(target.read_bytes(), cache, str(target))
            except ReportingException as e:
                output.annotate(
                    f"Replacing {target}, it cannot be decrypted: {e}",
                    debug=True,
                )
                current = None
            if current == content:
                output.step("No changes", str(target))
                continue

        file_key_id = key_id or find_key_id(path)
        if not file_key_id:
            raise MissingKeyIdError()
        data_key = data_keys.get(file_key_id)
        if data_key is None:
            data_key = data_keys[file_key_id] = DataKey.generate(
                kms, file_key_id
            )
        write_atomic(target, encrypt_blob(content, data_key))
        output.step("Encrypted", str(target))


def decrypt_files(filenames, kms):
    """Decrypt `.encrypted` files next to themselves."""
    cache = DataKeyCache(kms)
    for filename in filenames:
        path = pathlib.Path(filename)
        target = decrypted_path(path)
        content = decrypt_blob(path.read_bytes(), cache, str(path))
        if target.exists() and target.read_bytes() == content:
            output.step("No changes", str(target))
            continue
        write_atomic(target, content)
        output.step("Decrypted", str(target))
