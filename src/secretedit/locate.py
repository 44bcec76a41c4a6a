"""Find the text spans of a secret's kind and data values.

Secret documents are never re-emitted from a parsed YAML tree. The
serializer splices new values into the original text at the spans found
here, which keeps comments, key order and formatting intact. The grammar
only covers what secret manifests use: a top-level ``kind:`` line and a
top-level ``data:`` block holding a flat string-to-string map.

"""

import collections
import re

from secretedit import InvariantViolation, KeysParseError

ENCRYPTED = "EncryptedSecret"
DECRYPTED = "DecryptedSecret"
KINDS = (ENCRYPTED, DECRYPTED)

TextLocation = collections.namedtuple("TextLocation", ["start", "end"])
KeyLocation = collections.namedtuple(
    "KeyLocation", ["key", "start", "end", "indent"]
)
Locations = collections.namedtuple("Locations", ["kind", "data", "keys"])

KIND_PATTERN = re.compile(
    r"^kind:[ \t]*(EncryptedSecret|DecryptedSecret)[ \t]*$", re.MULTILINE
)

DATA_PATTERN = re.compile(r"^data:", re.MULTILINE)

# Any top-level line that is not a comment ends the data block.
TOPLEVEL_PATTERN = re.compile(r"^[^\s#]", re.MULTILINE)

KEY_PATTERN = re.compile(
    # The key's indentation, the key up to the first colon, then the
    # separating whitespace.
    r"^([ \t]+)([^\s:][^:\n\r]*):[ \t]+"
    r"(?:"
    # Block scalars come first as the plain pattern would match their
    # indicator line. Indicator plus flags, then lines indented deeper than
    # the key. The first of them sets the block indentation.
    # Blank lines are part of the block if more content follows them.
    r"([|>][^\n]*(?:\n[ \t]*)*?\n(\1[ \t]+)\S.*?$"
    r"(?:(?:\n[ \t]*)*\n\1[ \t]+\S.*?$)*)"
    r"|"
    # Single line values: double quoted, single quoted or plain. A trailing
    # comment is not part of the value.
    r"("
    r'"(?:[^"\\\n]|\\.)*"'
    r"|'(?:[^'\n]|'')*'"
    r"|[^\s#'\"|>].*?"
    r")"
    r"(?:[ \t]+#.*)?[ \t]*$"
    r")",
    re.MULTILINE,
)

# Block lines of values that were single-line go this much deeper than
# their key.
BLOCK_STEP = "  "

COMMENT_OR_BLANK = re.compile(r"^[ \t]*(#.*)?$")


def locate(raw):
    """Return the Locations of the kind value, data block and data values.

    `raw` must be a document the decoder already recognized as a secret.

    """
    match = KIND_PATTERN.search(raw)
    if match is None:
        raise InvariantViolation.from_context(
            "secret document did not match the kind pattern"
        )
    kind = TextLocation(match.start(1), match.end(1))
    data = locate_data(raw)
    keys = []
    if data is not None:
        keys = locate_keys(raw[data.start : data.end], data.start)
    return Locations(kind, data, keys)


def locate_data(raw):
    match = DATA_PATTERN.search(raw)
    if match is None:
        return None
    end = TOPLEVEL_PATTERN.search(raw, match.end())
    return TextLocation(match.start(), end.start() if end else len(raw))


def locate_keys(block, offset=0):
    """Return a KeyLocation for every value in a data block.

    Spans point at the value text only and are shifted by `offset`. The
    indent is the one block lines of the value use, or would use.

    """
    locations = []
    matched = False
    for match in KEY_PATTERN.finditer(block):
        matched = True
        indent = match.group(1)
        key = match.group(2).rstrip()
        if key.startswith("#"):
            continue
        if match.group(5) is None:
            if not match.group(3).startswith("|"):
                raise KeysParseError.from_context(
                    f"only | block scalars are supported (key {key})"
                )
            start, end = match.span(3)
            indent = match.group(4)
        else:
            start, end = match.span(5)
            indent += BLOCK_STEP
        locations.append(
            KeyLocation(key, start + offset, end + offset, indent)
        )
    if not matched and _has_entries(block):
        raise KeysParseError.from_context("unable to parse keys")
    return locations


def _has_entries(block):
    # The first line is the `data:` marker itself.
    lines = block.split("\n")[1:]
    return any(not COMMENT_OR_BLANK.match(line) for line in lines)
