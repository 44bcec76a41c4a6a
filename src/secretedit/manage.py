import pathlib
import sys

from secretedit import ManifestError, ReportingException
from secretedit.blob import decrypt_files, encrypt_files
from secretedit.files import ManifestFile
from secretedit.manifest import Manifest


def show(file, kms, **kw):
    """Decrypt a manifest and write it to stdout."""
    path = pathlib.Path(file)
    with ManifestFile(path) as manifest_file:
        try:
            manifest = Manifest.parse(manifest_file.read())
            manifest.decrypt(kms)
        except ReportingException as e:
            raise ManifestError.from_context("reading", str(path), e)
    sys.stdout.write(manifest.serialize())
    sys.stdout.flush()
    return 0


def encrypt(files, key, recrypt, kms, **kw):
    """Encrypt whole files to `<file>.encrypted`."""
    encrypt_files(files, kms, key_id=key, recrypt=recrypt)
    return 0


def decrypt(files, kms, **kw):
    """Decrypt `<file>.encrypted` files to `<file>`."""
    decrypt_files(files, kms)
    return 0
