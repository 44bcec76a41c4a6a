"""Secret documents and their serialization.

A `SecretDocument` is one `---` delimited document of a manifest. Foreign
documents (anything that is not an EncryptedSecret or DecryptedSecret) are
carried along as their raw text. Secret documents additionally hold their
decoded data and the spans needed to write changed values back into the
original text.

"""

import json
import re
from typing import Dict, List, Optional

import yaml

from secretedit import DocumentDecodeError, InvariantViolation
from secretedit.locate import (
    DECRYPTED,
    ENCRYPTED,
    KINDS,
    KeyLocation,
    TextLocation,
    locate,
)

FOREIGN = ""

# Values YAML would load as something other than a string.
NON_STRING_PATTERN = re.compile(r"^(\d+(\.\d+)?|true|false|null|\[.*\]|)$")

BLOCK_INDENT = "    "


class UnknownKind(Exception):
    """The decoder does not handle documents of this kind."""


class Snapshot(object):
    """The decoded content of a secret at one point in its lifecycle.

    `kind` tags the variant: EncryptedSecret snapshots carry ciphertext,
    DecryptedSecret snapshots carry plaintext.

    """

    def __init__(self, kind, data, name="", namespace=""):
        self.kind = kind
        self.data = data
        self.name = name
        self.namespace = namespace

    @property
    def identity(self):
        return f"{self.namespace}/{self.name}"

    def replace(self, kind, data):
        return Snapshot(kind, data, self.name, self.namespace)

    def __eq__(self, other):
        if not isinstance(other, Snapshot):
            return NotImplemented
        return (self.kind, self.data, self.name, self.namespace) == (
            other.kind,
            other.data,
            other.name,
            other.namespace,
        )

    def __repr__(self):
        keys = sorted(self.data)
        return f"<Snapshot {self.kind} {self.identity} keys={keys}>"


def decode(raw):
    """Decode one YAML document into a Snapshot.

    Raises UnknownKind for documents of any other kind and
    DocumentDecodeError for documents that cannot be decoded at all.

    """
    try:
        obj = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise DocumentDecodeError.from_context(f"error parsing YAML: {e}")
    if not isinstance(obj, dict):
        raise DocumentDecodeError.from_context("document is not a mapping")
    kind = obj.get("kind")
    if not kind:
        raise DocumentDecodeError.from_context("Object 'Kind' is missing")
    if kind not in KINDS:
        raise UnknownKind(kind)

    metadata = obj.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise DocumentDecodeError.from_context("metadata is not a mapping")
    data = obj.get("data") or {}
    if not isinstance(data, dict):
        raise DocumentDecodeError.from_context("data is not a mapping")
    for key, value in data.items():
        if not isinstance(key, str):
            raise DocumentDecodeError.from_context(
                f"data key {key!r} is not a string"
            )
        if not isinstance(value, str):
            raise DocumentDecodeError.from_context(
                f"data value for {key} is not a string (quote it)"
            )
    return Snapshot(
        kind,
        dict(data),
        str(metadata.get("name") or ""),
        str(metadata.get("namespace") or ""),
    )


def quote(value):
    # JSON strings are valid YAML double quoted scalars.
    return json.dumps(value, ensure_ascii=False)


def needs_quotes(value):
    if NON_STRING_PATTERN.match(value):
        return True
    try:
        loaded = yaml.safe_load("value: " + value)
    except yaml.YAMLError:
        return True
    return loaded != {"value": value}


def render_block(value, indent=BLOCK_INDENT):
    """Render a multi-line value as a `|` block scalar.

    Content lines are indented by `indent`. Returns None for values a
    block scalar at a fixed indentation cannot represent.

    """
    if value.endswith("\n\n"):
        return None
    if value.endswith("\n"):
        indicator = "|"
        value = value[:-1]
    else:
        indicator = "|-"
    lines = value.split("\n")
    first = next((i for i, line in enumerate(lines) if line.strip()), None)
    if first is None or lines[first][0] in " \t":
        return None
    # Whitespace before the first content line would set the indentation.
    if any(lines[:first]):
        return None
    if any("\r" in line for line in lines):
        return None
    out = [indicator]
    for line in lines:
        out.append(indent + line if line else "")
    return "\n".join(out)


def render_value(value, indent=BLOCK_INDENT):
    """Render a value so YAML loads it back as the very same string."""
    if "\n" in value:
        block = render_block(value, indent)
        return block if block is not None else quote(value)
    if needs_quotes(value):
        return quote(value)
    return value


class SecretDocument(object):
    """One document of a manifest."""

    raw: str
    kind: str
    data: Optional[Dict[str, str]]
    name: str
    namespace: str
    key_id: str
    kind_loc: Optional[TextLocation]
    data_loc: Optional[TextLocation]
    key_locs: List[KeyLocation]

    orig_enc: Optional[Snapshot]
    orig_dec: Optional[Snapshot]
    after_dec: Optional[Snapshot]
    after_enc: Optional[Snapshot]

    # What the raw text says, to keep the original spelling of unchanged
    # values.
    parsed: Optional[Snapshot]

    def __init__(self, raw):
        self.raw = raw
        self.kind = FOREIGN
        self.data = None
        self.name = ""
        self.namespace = ""
        self.key_id = ""
        self.kind_loc = None
        self.data_loc = None
        self.key_locs = []
        self.orig_enc = None
        self.orig_dec = None
        self.after_dec = None
        self.after_enc = None
        self.parsed = None

    @classmethod
    def from_raw(cls, raw, decoder=decode):
        self = cls(raw)
        try:
            snapshot = decoder(raw)
        except UnknownKind:
            return self

        self.name = snapshot.name
        self.namespace = snapshot.namespace
        self.kind = snapshot.kind
        self.data = dict(snapshot.data)
        self.parsed = snapshot
        if snapshot.kind == ENCRYPTED:
            self.orig_enc = snapshot
        else:
            self.after_dec = snapshot

        self.kind_loc, self.data_loc, self.key_locs = locate(raw)
        located = [location.key for location in self.key_locs]
        if len(located) != len(self.data) or set(located) != set(self.data):
            raise InvariantViolation.from_context(
                f"key count mismatch in {self.identity}: "
                f"{len(self.data)} values, {len(located)} locations"
            )
        return self

    @property
    def identity(self):
        return f"{self.namespace}/{self.name}"

    @property
    def is_secret(self):
        return self.kind != FOREIGN

    @property
    def snapshot(self):
        """The current content as a Snapshot (None for foreign documents)."""
        if not self.is_secret:
            return None
        return Snapshot(self.kind, dict(self.data), self.name, self.namespace)

    def apply(self, snapshot):
        self.kind = snapshot.kind
        self.data = dict(snapshot.data)

    def is_unchanged(self, key, value):
        """Whether `value` is what the raw text already holds for `key`."""
        return (
            self.parsed is not None
            and self.parsed.kind == self.kind
            and self.parsed.data.get(key) == value
        )

    def serialize(self):
        """Return the document text with the current kind and values."""
        if self.data is None:
            return self.raw

        if len(self.data) != len(self.key_locs):
            raise InvariantViolation.from_context(
                f"{self.identity} has {len(self.data)} values but "
                f"{len(self.key_locs)} locations"
            )
        replacements = [(self.kind_loc.start, self.kind_loc.end, self.kind)]
        for location in self.key_locs:
            if location.key not in self.data:
                raise InvariantViolation.from_context(
                    f"key {location.key} from location not found in data"
                )
            value = self.data[location.key]
            if self.is_unchanged(location.key, value):
                text = self.raw[location.start : location.end]
            else:
                text = render_value(value, location.indent)
            replacements.append((location.start, location.end, text))
        replacements.sort(key=lambda r: r[0])

        out = []
        carry = 0
        for start, end, text in replacements:
            out.append(self.raw[carry:start])
            out.append(text)
            carry = end
        out.append(self.raw[carry:])
        return "".join(out)

    def __repr__(self):
        if not self.is_secret:
            return "<SecretDocument foreign>"
        return f"<SecretDocument {self.kind} {self.identity}>"

