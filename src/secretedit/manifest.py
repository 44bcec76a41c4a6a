import re

from secretedit import DocumentDecodeError, ManifestError, ReportingException
from secretedit.crypto import DataKeyCache
from secretedit.document import SecretDocument, decode
from secretedit.envelope import decrypt_document, encrypt_document

SEPARATOR = "---\n"
SPLIT_PATTERN = re.compile(r"^---$\n?", re.MULTILINE)
EMPTY_LINE_PATTERN = re.compile(r"^\s*(#.*)?$")


def is_empty(chunk):
    """Whether a chunk holds nothing but whitespace and comments."""
    return all(EMPTY_LINE_PATTERN.match(line) for line in chunk.split("\n"))


class Manifest(list):
    """The documents of a multi-document YAML stream, in order."""

    @classmethod
    def parse(cls, text, decoder=decode):
        self = cls()
        for chunk in SPLIT_PATTERN.split(text):
            if is_empty(chunk):
                continue
            index = len(self) + 1
            try:
                self.append(SecretDocument.from_raw(chunk, decoder))
            except DocumentDecodeError as e:
                e.index = index
                raise
            except ReportingException as e:
                raise ManifestError.from_context(
                    "indexing", f"document {index}", e
                )
        return self

    @property
    def secrets(self):
        return [document for document in self if document.is_secret]

    def decrypt(self, kms, cache=None):
        if cache is None:
            cache = DataKeyCache(kms)
        for document in self.secrets:
            try:
                decrypt_document(document, kms, cache)
            except ReportingException as e:
                raise ManifestError.from_context(
                    "decrypting", document.identity, e
                )

    def encrypt(
        self,
        kms,
        default_key_id="",
        force_key_id=False,
        reencrypt=False,
        reuse_data_key=None,
        cache=None,
    ):
        if cache is None:
            cache = DataKeyCache(kms)
        for document in self.secrets:
            try:
                encrypt_document(
                    document,
                    kms,
                    default_key_id,
                    force_key_id=force_key_id,
                    reencrypt=reencrypt,
                    reuse_data_key=reuse_data_key,
                    cache=cache,
                )
            except ReportingException as e:
                raise ManifestError.from_context(
                    "encrypting", document.identity, e
                )

    def correlate_with(self, original):
        """Carry baselines over from the documents `self` was edited from.

        Secrets are matched by namespace/name. Secrets without a match are
        new and get encrypted from scratch.

        """
        by_identity = {
            document.identity: document for document in original.secrets
        }
        for document in self.secrets:
            match = by_identity.get(document.identity)
            if match is None:
                continue
            document.key_id = match.key_id
            document.orig_enc = match.orig_enc
            document.orig_dec = match.orig_dec

    def serialize(self):
        return SEPARATOR.join(document.serialize() for document in self)
