"""Salted SHA-256 attribute commitments.

A commitment here is a plain salted hash that stands in for a private value.
There is no reveal/verify protocol and no zero-knowledge property; callers
that label these digests "ZKP" do so by convention only.

SHA-256 hex is the only digest scheme used for commitments in this package.
"""
import json
import secrets
from hashlib import sha256
from typing import Any, Dict, Optional

SALT_BYTES = 16


def generate_salt() -> str:
    """Fresh random salt, hex encoded. Never reuse one across records."""
    return secrets.token_hex(SALT_BYTES)


def digest(text) -> str:
    h = sha256()
    if isinstance(text, str):
        text = text.encode('utf-8')
    h.update(text)
    return h.hexdigest()


def digest_json(data: Any) -> str:
    """Digest of a canonical JSON rendering (sorted keys, compact separators)."""
    return digest(json.dumps(data, sort_keys=True, separators=(',', ':'), default=str))


def _value_str(value) -> str:
    # render booleans and nulls the way JSON does so digests are stable across producers
    if isinstance(value, bool) or value is None:
        return json.dumps(value)
    return str(value)


def commit_record(record: Dict[str, Any], salt: str) -> str:
    """Record-level digest over the record's fields plus the salt."""
    payload = dict(record)
    payload['salt'] = salt
    return digest_json(payload)


def commit_attribute(name: str, value, salt: str) -> str:
    return digest(f'{name}:{_value_str(value)}:{salt}')


def commit_attributes(record: Dict[str, Any], salt: str) -> Dict[str, str]:
    return {name: commit_attribute(name, value, salt) for name, value in record.items()}


def commit(record: Dict[str, Any], salt: Optional[str] = None) -> Dict[str, Any]:
    """Commit to a whole record and to each of its attributes.

    Returns ``{'salt', 'hashedData', 'attributeHashes'}``. A new salt is
    generated when none is supplied.
    """
    if salt is None:
        salt = generate_salt()
    return {
        'salt': salt,
        'hashedData': commit_record(record, salt),
        'attributeHashes': commit_attributes(record, salt),
    }
