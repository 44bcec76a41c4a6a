"""Decrypt and encrypt the values of one secret document.

Both directions take a document in one state and move it to the other,
returning the new Snapshot. Values that did not change since the document
was decrypted keep their exact prior ciphertext.

"""

import collections

import nacl.exceptions

from secretedit import (
    DecryptError,
    InvariantViolation,
    KeyMismatchError,
    KMSCallError,
    ManifestError,
    MissingKeyIdError,
    PayloadError,
    output,
)
from secretedit.crypto import (
    EMPTY_SENTINEL,
    DataKey,
    DataKeyCache,
    Payload,
    b64decode,
    describe_key,
    is_tagged,
)
from secretedit.locate import DECRYPTED, ENCRYPTED


def _decode_plaintext(plaintext, key):
    try:
        text = plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise PayloadError.from_context(f"value for {key} is not valid UTF-8")
    if text == EMPTY_SENTINEL:
        return ""
    return text


def _open_tagged(key, value, cache):
    payload = Payload.from_value(value)
    data_key = cache.unwrap(payload.wrapped_key)
    try:
        plaintext = payload.open(data_key)
    except nacl.exceptions.CryptoError:
        raise DecryptError.from_context(key)
    return _decode_plaintext(plaintext, key), data_key.key_id


def _open_direct(key, value, kms):
    plaintext, key_id = kms.decrypt(b64decode(value))
    return _decode_plaintext(plaintext, key), key_id


def decrypt_document(document, kms, cache=None):
    """Decrypt all values of an EncryptedSecret document."""
    if not document.is_secret:
        raise InvariantViolation.from_context(
            "cannot decrypt a document that is not a secret"
        )
    if document.kind == DECRYPTED:
        return document.snapshot
    if cache is None:
        cache = DataKeyCache(kms)

    encrypted = document.snapshot
    plain = {}
    usage = collections.Counter()
    direct_key_id = ""
    for key, value in encrypted.data.items():
        try:
            if is_tagged(value):
                plain[key], key_id = _open_tagged(key, value, cache)
            else:
                plain[key], key_id = _open_direct(key, value, kms)
                if direct_key_id and direct_key_id != key_id:
                    raise KeyMismatchError.from_context(
                        direct_key_id, key_id, key
                    )
                direct_key_id = key_id
        except KMSCallError as e:
            raise ManifestError.from_context("decrypting", f"key {key}", e)
        except PayloadError as e:
            if e.key is None:
                e.key = key
            raise
        usage[key_id] += 1

    if direct_key_id:
        document.key_id = direct_key_id
    elif usage:
        document.key_id = usage.most_common(1)[0][0]
    if len(usage) > 1:
        output.warn(
            f"{document.identity} uses {len(usage)} different keys, "
            f"re-encrypting with {document.key_id}"
        )
    if usage:
        output.annotate(
            f"Decrypted {document.identity} using "
            f"{describe_key(kms, document.key_id)}",
            debug=True,
        )

    decrypted = encrypted.replace(DECRYPTED, plain)
    document.orig_enc = encrypted
    document.orig_dec = decrypted
    document.after_dec = decrypted
    document.apply(decrypted)
    return decrypted


def _baseline_data_key(document, key_id, cache):
    """The data key prior values of the document used under `key_id`."""
    if document.orig_enc is None:
        return None
    seen = set()
    for key, value in document.orig_enc.data.items():
        if not is_tagged(value):
            continue
        try:
            wrapped = Payload.from_value(value).wrapped_key
        except PayloadError as e:
            e.key = key
            raise
        if wrapped in seen:
            continue
        seen.add(wrapped)
        data_key = cache.unwrap(wrapped)
        if data_key.key_id == key_id:
            return data_key
    return None


def _is_unchanged(document, key, value):
    orig_enc, orig_dec = document.orig_enc, document.orig_dec
    if orig_enc is None or orig_dec is None:
        return False
    return (
        key in orig_enc.data
        and key in orig_dec.data
        and orig_dec.data[key] == value
    )


def encrypt_document(
    document,
    kms,
    default_key_id="",
    force_key_id=False,
    reencrypt=False,
    reuse_data_key=None,
    cache=None,
):
    """Encrypt all values of a DecryptedSecret document.

    Unchanged values keep their prior ciphertext unless `reencrypt` is set.
    Changed values are sealed with a data key: the one already used by the
    document when `reuse_data_key` is set (the default unless re-encrypting
    everything), otherwise a fresh one from KMS. At most one data key is
    generated per document.

    """
    if not document.is_secret:
        raise InvariantViolation.from_context(
            "cannot encrypt a document that is not a secret"
        )
    if document.kind == ENCRYPTED:
        return document.snapshot
    if reuse_data_key is None:
        reuse_data_key = not reencrypt
    if cache is None:
        cache = DataKeyCache(kms)

    decrypted = document.snapshot
    document.after_dec = decrypted

    key_id = document.key_id
    if force_key_id or not key_id:
        key_id = default_key_id
    if not key_id and decrypted.data:
        raise MissingKeyIdError()

    data_key = None
    sealed = 0
    encrypted = {}
    for key, value in decrypted.data.items():
        if not reencrypt and _is_unchanged(document, key, value):
            encrypted[key] = document.orig_enc.data[key]
            continue
        if data_key is None:
            data_key = _data_key(document, kms, key_id, reuse_data_key, cache)
        plaintext = (value or EMPTY_SENTINEL).encode("utf-8")
        encrypted[key] = Payload.seal(plaintext, data_key).to_value()
        sealed += 1

    if sealed:
        output.annotate(
            f"Encrypted {sealed} value(s) of {document.identity} using "
            f"{describe_key(kms, data_key.key_id or key_id)}"
        )
    document.key_id = key_id
    result = decrypted.replace(ENCRYPTED, encrypted)
    document.after_enc = result
    document.apply(result)
    return result


def _data_key(document, kms, key_id, reuse_data_key, cache):
    if reuse_data_key:
        data_key = _baseline_data_key(document, key_id, cache)
        if data_key is not None:
            return data_key
    if not key_id:
        raise MissingKeyIdError()
    data_key = DataKey.generate(kms, key_id)
    cache.add(data_key)
    return data_key
