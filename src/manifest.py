"""Deployment manifest parsing and policy comparison.

A manifest is the YAML document submitted to the BOSH director. Two
manifests are policy-equivalent when they are structurally equal once every
``update`` block (top-level and per instance group) has been removed:
canary/serial/max_in_flight settings change deployment cadence, not what
gets deployed, so they never count as a pending change.
"""

import copy
import logging
from typing import Any, Union

import yaml

logger = logging.getLogger(__name__)

RawManifest = Union[bytes, str]

UNMARSHAL_ERROR = 'unable to unmarshal manifest'


class ManifestParseError(ValueError):
    """Manifest text is not a valid YAML mapping."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"error detecting change in manifest, {UNMARSHAL_ERROR}: {detail}")


def _to_text(raw: RawManifest) -> str:
    if isinstance(raw, bytes):
        return raw.decode('utf-8')
    return raw


def parse_manifest(raw: RawManifest) -> dict[str, Any]:
    """Parse manifest text into a ManifestDocument.

    Empty text yields an empty document.

    Raises:
        ManifestParseError: If the text is not YAML or not a mapping
    """
    try:
        doc = yaml.safe_load(_to_text(raw))
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ManifestParseError(str(e)) from e

    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ManifestParseError(f"expected a mapping, got {type(doc).__name__}")
    return doc


def ignore_update_block(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of the document with all update blocks zeroed."""
    cleaned = copy.deepcopy(doc)
    cleaned.pop('update', None)

    groups = cleaned.get('instance_groups')
    if isinstance(groups, list):
        for group in groups:
            if isinstance(group, dict):
                group.pop('update', None)
    return cleaned


def manifests_are_the_same(manifest_a: RawManifest, manifest_b: RawManifest) -> bool:
    """Compare two manifests, ignoring update blocks.

    Key order and whitespace never affect the result.

    Raises:
        ManifestParseError: If either side cannot be parsed
    """
    doc_a = ignore_update_block(parse_manifest(manifest_a))
    doc_b = ignore_update_block(parse_manifest(manifest_b))
    return _strict_equal(doc_a, doc_b)


def _strict_equal(a: Any, b: Any) -> bool:
    """Structural equality where true, 1 and 1.0 are different values."""
    if type(a) is not type(b):
        return False
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(_strict_equal(a[k], b[k]) for k in a)
    if isinstance(a, list):
        return len(a) == len(b) and all(_strict_equal(x, y) for x, y in zip(a, b))
    return a == b


def deployment_name(raw: RawManifest) -> str:
    """Read the top-level ``name`` of a manifest.

    Raises:
        ManifestParseError: If the manifest is invalid or has no name
    """
    name = parse_manifest(raw).get('name')
    if not name:
        raise ManifestParseError('manifest has no name')
    return str(name)
