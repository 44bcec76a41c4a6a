"""Securely edit the secrets of a manifest file."""

import pathlib
import subprocess
import tempfile
import traceback

from secretedit import ManifestError, ReportingException, output
from secretedit.crypto import DataKeyCache
from secretedit.files import ManifestFile
from secretedit.keys import find_key_id
from secretedit.manifest import Manifest


def format_comment(comment):
    if not comment:
        return ""
    lines = ["# " + line for line in comment.split("\n")]
    return "\n".join(lines) + "\n#\n"


class Editor(object):
    def __init__(self, editor_cmd, path, kms, key_id="", recrypt=False):
        self.editor_cmd = editor_cmd
        self.kms = kms
        self.key_id = key_id or ""
        self.recrypt = recrypt
        self.file = ManifestFile(pathlib.Path(path), writeable=True)
        # One cache for the whole session: data keys unwrapped while
        # decrypting are reused when encrypting the result.
        self.cache = DataKeyCache(kms)
        self.original = None
        self.original_cleartext = None
        self.cleartext = None

    def main(self):
        with self.file:
            try:
                self.original = Manifest.parse(self.file.read())
                self.original.decrypt(self.kms, self.cache)
            except ReportingException as e:
                raise ManifestError.from_context(
                    "reading", str(self.file.path), e
                )
            self.original_cleartext = self.original.serialize()
            self.cleartext = self.original_cleartext
            self.interact()

    def _input(self):
        return input("> ").strip()

    def interact(self):
        cmd = "edit"
        while cmd != "quit":
            try:
                self.process_cmd(cmd)
            except ReportingException as e:
                print()
                e.report()
                self._offer_retry()
                cmd = self._input()
            except Exception as e:
                print()
                print(f"An error occurred: {e}")
                print("Traceback:")
                tb_lines = traceback.format_exc().splitlines()
                # if tb is too long, only have first and last 10 lines
                if len(tb_lines) > 20 and not output.enable_debug:
                    print("\n".join(tb_lines[:10]))
                    print("...")
                    print("\n".join(tb_lines[-10:]))
                else:
                    print("\n".join(tb_lines))
                self._offer_retry()
                cmd = self._input()
            else:
                break

    def _offer_retry(self):
        print()
        print("Your changes are still available. You can try:")
        print("\tedit       -- opens editor with current data again")
        print("\tencrypt    -- tries to encrypt current data again")
        print("\tquit       -- quits and loses your changes")

    def process_cmd(self, cmd):
        if cmd == "edit":
            self.edit()
            self.encrypt()
        elif cmd == "encrypt":
            self.encrypt()
        elif cmd == "":
            raise ValueError("empty command")
        else:
            raise ValueError("unknown command `{}`".format(cmd))

    def encrypt(self):
        if self.cleartext == self.original_cleartext and not self.recrypt:
            print("No changes from original cleartext. Not updating.")
            return
        # Parse again every time: a failed attempt must not leave
        # half-encrypted documents behind.
        manifest = Manifest.parse(self.cleartext)
        manifest.correlate_with(self.original)
        key_id = self.key_id or find_key_id(self.file.path)
        manifest.encrypt(
            self.kms,
            key_id,
            force_key_id=bool(self.key_id) or self.recrypt,
            reencrypt=self.recrypt,
            reuse_data_key=not (self.key_id or self.recrypt),
            cache=self.cache,
        )
        self.file.write(manifest.serialize())
        output.step("Updated", str(self.file.path))

    def edit(self):
        """Run the editor until the result parses.

        Parse errors are shown as a comment on top of the text the next
        time the editor opens.

        """
        comment = ""
        text = self.cleartext
        while True:
            header = format_comment(comment)
            shown = header + text
            edited = self.run_editor(shown)
            if edited == shown and not self.recrypt:
                print("File not edited.")
                return
            if header and edited.startswith(header):
                edited = edited[len(header) :]
            try:
                Manifest.parse(edited)
            except ReportingException as e:
                comment = f"Error parsing file:\n{e}"
                text = edited
                continue
            self.cleartext = edited
            return

    def run_editor(self, text):
        with tempfile.NamedTemporaryFile(
            prefix="edit", suffix=".yml", mode="w+", encoding="utf-8"
        ) as clearfile:
            clearfile.write(text)
            clearfile.flush()

            args = [self.editor_cmd + " " + clearfile.name]
            output.annotate(
                "Running editor with command: {}".format(args), debug=True
            )
            subprocess.check_call(args, shell=True)

            with open(clearfile.name, "r", encoding="utf-8") as new_clearfile:
                return new_clearfile.read()


def main(editor, file, key, recrypt, kms, **kw):
    """Secrets editor console script.

    The main focus here is to never have plaintext secrets end up in the
    manifest file: the file is only written after everything was encrypted.

    """
    Editor(editor, file, kms, key, recrypt).main()
