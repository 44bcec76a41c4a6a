"""Per-directory KMS key settings.

A `.keys.yml` next to a manifest maps file name patterns to KMS key ids::

    default: alias/microservices_dev
    prod: alias/microservices_prod
    us-prod: arn:aws:kms:us-west-2:123456789012:key/abcd

A pattern `P` matches every file whose name contains it (`*P*`). The
longest matching pattern wins, `default` applies when nothing matches.

"""

import fnmatch
import pathlib

import yaml

from secretedit import KeySettingsError, output

KEYS_FILE = ".keys.yml"
DEFAULT = "default"


def load_key_settings(path):
    try:
        with open(path, encoding="utf-8") as f:
            settings = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except (OSError, yaml.YAMLError) as e:
        raise KeySettingsError.from_context(path, e)
    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise KeySettingsError.from_context(
            path, "expected a mapping of file name patterns to key ids"
        )
    return {str(pattern): str(key_id) for pattern, key_id in settings.items()}


def find_key_id(manifest_path):
    """Return the key id configured for a manifest, or "" if there is none."""
    manifest_path = pathlib.Path(manifest_path)
    keys_path = manifest_path.parent / KEYS_FILE
    settings = load_key_settings(keys_path)

    name = manifest_path.name
    best = ""
    for pattern in settings:
        if pattern == DEFAULT:
            continue
        if len(pattern) > len(best) and fnmatch.fnmatchcase(
            name, f"*{pattern}*"
        ):
            best = pattern
    key_id = settings[best] if best else settings.get(DEFAULT, "")
    if key_id:
        output.annotate(
            f"Using key {key_id} for {name} from {keys_path}", debug=True
        )
    return key_id
