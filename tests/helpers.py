"""Shared test helpers for JWS authentication, hashes and task payloads."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from joserfc import jws
from joserfc.jwk import OKPKey


def generate_keypair() -> tuple[Ed25519PrivateKey, str]:
    """Generate Ed25519 keypair -> (private_key, 'ed25519:<base64_pub>')."""
    private_key = Ed25519PrivateKey.generate()
    pub_bytes = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    public_key = f"ed25519:{base64.b64encode(pub_bytes).decode()}"
    return private_key, public_key


def make_jws_token(
    private_key: Ed25519PrivateKey,
    agent_id: str,
    payload: dict[str, Any],
) -> str:
    """Create a real JWS compact token signed by the given key."""
    raw_private = private_key.private_bytes_raw()
    raw_public = private_key.public_key().public_bytes_raw()
    jwk_dict = {
        "kty": "OKP",
        "crv": "Ed25519",
        "d": base64.urlsafe_b64encode(raw_private).rstrip(b"=").decode(),
        "x": base64.urlsafe_b64encode(raw_public).rstrip(b"=").decode(),
    }
    key = OKPKey.import_key(jwk_dict)
    protected = {"alg": "EdDSA", "kid": agent_id}
    payload_bytes = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
    return jws.serialize_compact(protected, payload_bytes, key, algorithms=["EdDSA"])


def make_fake_jws(payload: dict[str, Any], kid: str = "acme") -> str:
    """Build a structurally valid but unsigned JWS (for format-only tests)."""
    header = (
        base64.urlsafe_b64encode(json.dumps({"alg": "EdDSA", "kid": kid}).encode())
        .rstrip(b"=")
        .decode()
    )
    body = base64.urlsafe_b64encode(json.dumps(payload).encode()).rstrip(b"=").decode()
    signature = base64.urlsafe_b64encode(b"fake-signature").rstrip(b"=").decode()
    return f"{header}.{body}.{signature}"


def decode_jws_parts(token: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Decode (header, payload) of a compact JWS without verifying it."""
    header_b64, payload_b64, _signature = token.split(".")
    header = json.loads(base64.urlsafe_b64decode(header_b64 + "=" * (-len(header_b64) % 4)))
    payload = json.loads(base64.urlsafe_b64decode(payload_b64 + "=" * (-len(payload_b64) % 4)))
    return header, payload


def make_hash(content: str) -> str:
    """Base64 SHA-256 digest of content, the form task and submission hashes take."""
    return base64.b64encode(hashlib.sha256(content.encode()).digest()).decode()


def invite_only_details(
    invited: list[str],
    valid_till: int,
    **overrides: Any,
) -> dict[str, Any]:
    details: dict[str, Any] = {
        "title": "Translate the onboarding guide",
        "description": "English to German, keep the glossary terms",
        "required_skills": "translation",
        "task_type": "invite_only",
        "invited_accounts": invited,
        "valid_till": valid_till,
        "reference": "ipfs://bafy-guide",
        "reference_hash": make_hash("guide"),
    }
    details.update(overrides)
    return details


def for_everyone_details(**overrides: Any) -> dict[str, Any]:
    details: dict[str, Any] = {
        "title": "Design a logo",
        "description": "Vector logo for the spring campaign",
        "required_skills": "design",
        "task_type": "for_everyone",
        "reference": "ipfs://bafy-brief",
        "reference_hash": make_hash("brief"),
    }
    details.update(overrides)
    return details


def make_submission(content: str) -> dict[str, str]:
    return {
        "submission_reference": f"ipfs://bafy-{content}",
        "submission_reference_hash": make_hash(content),
    }


def make_task_row(task_id: str = "acme.t1", **overrides: Any) -> dict[str, Any]:
    """A complete task row as TaskStore.insert_task expects it."""
    row: dict[str, Any] = {
        "task_id": task_id,
        "company_id": "acme",
        "title": f"Task {task_id}",
        "description": "Description",
        "required_skills": "translation",
        "task_type": "invite_only",
        "invited_accounts": ["bob"],
        "valid_till": 1_000,
        "reference": "ipfs://bafy-guide",
        "reference_hash": make_hash("guide"),
        "deadline": 5_000,
        "person_assigned": None,
        "status": "open",
        "token_kind": "near",
        "reward": 100,
        "created_at": 0,
        "funded_bytes": 0,
    }
    row.update(overrides)
    return row
