"""Wallet persistence: credentials, their claims, and managed DIDs.

Each stored credential is flattened into one ``claims`` row per
``credentialSubject`` entry. Type and context lists are kept as comma-joined
strings, which is why store-side filters match them as substrings.
"""
import json
import logging
import re
import uuid
from typing import List, Optional, Tuple

import psycopg
from psycopg.types.json import Jsonb

from walette_sdr.config import DATABASE_URL
from walette_sdr.errors import InvalidToken, StoreQueryFailed
from walette_sdr.matching import as_list
from walette_sdr.models import ClaimFilter, Credential, Where
from walette_sdr.tokens import normalize_credential

log = logging.getLogger(__name__)

CLAIM_COLUMNS = {
    "type": "cl.type",
    "value": "cl.value",
    "issuer": "cl.issuer",
    "subject": "cl.subject",
    "credentialType": "cl.credential_type",
    "context": "cl.context",
}


def claim_rows(credential: Credential) -> List[dict]:
    """Flatten a normalized credential into claim rows keyed like ``Where.column``."""
    subject = credential.get("credentialSubject")
    if not isinstance(subject, dict):
        subject = {}
    issuer = credential.get("issuer")
    common = {
        "issuer": issuer.get("id") if isinstance(issuer, dict) else None,
        "subject": subject.get("id"),
        "credentialType": ",".join(as_list(credential.get("type"))),
        "context": ",".join(as_list(credential.get("@context"))),
    }
    rows = []
    for claim_type, value in subject.items():
        if claim_type == "id":
            continue
        rows.append({
            **common,
            "type": claim_type,
            "value": value if isinstance(value, str) else json.dumps(value),
            "isObj": not isinstance(value, str),
        })
    return rows


def build_claims_query(claim_filter: ClaimFilter) -> Tuple[str, list]:
    """SQL selecting credentials that have one claim row meeting every condition."""
    conditions = ["cl.credential_id = c.id"]
    params: list = []
    for where in claim_filter.where:
        column = CLAIM_COLUMNS[where.column]
        if where.op == "Like":
            conditions.append("(" + " OR ".join(f"{column} LIKE %s" for _ in where.value) + ")")
            params.extend(where.value)
        else:
            conditions.append(f"{column} = ANY(%s)")
            params.append(list(where.value))

    sql = (
        "SELECT c.jwt FROM credentials c "
        "WHERE EXISTS (SELECT 1 FROM claims cl WHERE " + " AND ".join(conditions) + ") "
        "ORDER BY c.created_at, c.id"
    )
    return sql, params


def _like(pattern: str, value: Optional[str]) -> bool:
    if value is None:
        return False
    regex = "".join(".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern)
    return re.fullmatch(regex, value, re.DOTALL) is not None


def row_matches(row: dict, where: Where) -> bool:
    value = row.get(where.column)
    if where.op == "Like":
        return any(_like(pattern, value) for pattern in where.value)
    return value in where.value


class PostgresCredentialStore:
    def __init__(self, dsn: str = DATABASE_URL):
        self.dsn = dsn

    async def query_by_claim_filter(self, claim_filter: ClaimFilter) -> List[Credential]:
        sql, params = build_claims_query(claim_filter)
        try:
            async with await psycopg.AsyncConnection.connect(self.dsn) as conn:
                async with conn.cursor() as cur:
                    await cur.execute(sql, params)
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise StoreQueryFailed(f"Credential query failed: {e}") from e
        return [normalize_credential(jwt_str) for (jwt_str,) in rows]


class MemoryCredentialStore:
    """Credential store over in-process rows with the same filter semantics."""

    def __init__(self, credentials: Optional[List[Credential]] = None):
        self._entries: List[Tuple[Credential, List[dict]]] = []
        for credential in credentials or []:
            self.add(credential)

    def add(self, credential: Credential):
        self._entries.append((credential, claim_rows(credential)))

    async def query_by_claim_filter(self, claim_filter: ClaimFilter) -> List[Credential]:
        return [
            credential for credential, rows in self._entries
            if any(all(row_matches(row, where) for where in claim_filter.where) for row in rows)
        ]


def init_db():
    with psycopg.connect(DATABASE_URL) as conn:
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS credentials (
                    id UUID PRIMARY KEY,
                    label TEXT UNIQUE NOT NULL,
                    jwt TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS claims (
                    id UUID PRIMARY KEY,
                    credential_id UUID NOT NULL REFERENCES credentials(id) ON DELETE CASCADE,
                    type TEXT NOT NULL,
                    value TEXT,
                    is_obj BOOLEAN NOT NULL DEFAULT FALSE,
                    issuer TEXT,
                    subject TEXT,
                    credential_type TEXT,
                    context TEXT
                )
            """)
            conn.commit()


def store_credential_with_label(label: str, jwt_str: str):
    credential = normalize_credential(jwt_str)
    cred_id = str(uuid.uuid4())
    with psycopg.connect(DATABASE_URL) as conn:
        with conn.cursor() as cur:
            cur.execute("""
                INSERT INTO credentials (id, label, jwt)
                VALUES (%s, %s, %s)
            """, (cred_id, label, jwt_str))
            for row in claim_rows(credential):
                cur.execute("""
                    INSERT INTO claims (id, credential_id, type, value, is_obj, issuer, subject, credential_type, context)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """, (
                    str(uuid.uuid4()),
                    cred_id,
                    row["type"],
                    row["value"],
                    row["isObj"],
                    row["issuer"],
                    row["subject"],
                    row["credentialType"],
                    row["context"],
                ))
            conn.commit()
    log.info("Stored credential %s (%s)", label, cred_id)
    return cred_id


def list_credentials():
    results = []
    with psycopg.connect(DATABASE_URL) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT label, jwt FROM credentials ORDER BY created_at")
            for label, jwt_str in cur.fetchall():
                try:
                    credential = normalize_credential(jwt_str)
                except InvalidToken:
                    log.warning("Stored credential %s is not a decodable JWT", label)
                    results.append({"label": label, "types": ["invalid"], "subject": "error", "issuer": "error"})
                    continue
                results.append({
                    "label": label,
                    "types": as_list(credential.get("type")),
                    "subject": credential["credentialSubject"].get("id", "unknown"),
                    "issuer": credential["issuer"].get("id") or "unknown",
                })
    return results


def init_did_table():
    with psycopg.connect(DATABASE_URL) as conn:
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS dids (
                    id UUID PRIMARY KEY,
                    label TEXT UNIQUE NOT NULL,
                    did TEXT NOT NULL,
                    kid TEXT UNIQUE NOT NULL,
                    public_jwk JSONB NOT NULL,
                    private_jwk JSONB NOT NULL
                )
            """)
            conn.commit()


def store_did(label: str, did: str, kid: str, public_jwk: dict, private_jwk: dict):
    with psycopg.connect(DATABASE_URL) as conn:
        with conn.cursor() as cur:
            cur.execute("""
                INSERT INTO dids (id, label, did, kid, public_jwk, private_jwk)
                VALUES (%s, %s, %s, %s, %s, %s)
            """, (
                str(uuid.uuid4()),
                label,
                did,
                kid,
                Jsonb(public_jwk),
                Jsonb(private_jwk),
            ))
            conn.commit()


def list_dids():
    with psycopg.connect(DATABASE_URL) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT label, did, public_jwk FROM dids")
            return [
                {
                    "label": row[0],
                    "did": row[1],
                    "kty": row[2].get("kty", "?"),
                    "crv": row[2].get("crv"),
                } for row in cur.fetchall()
            ]


async def get_did_keypair_by_label(label: str):
    async with await psycopg.AsyncConnection.connect(DATABASE_URL) as conn:
        async with conn.cursor() as cur:
            await cur.execute("SELECT did, kid, private_jwk FROM dids WHERE label = %s", (label,))
            row = await cur.fetchone()
            if not row:
                return None
            return {
                "did": row[0],
                "kid": row[1],
                "private_jwk": row[2],
            }


async def get_private_jwk(kid: str):
    async with await psycopg.AsyncConnection.connect(DATABASE_URL) as conn:
        async with conn.cursor() as cur:
            await cur.execute("SELECT private_jwk FROM dids WHERE kid = %s", (kid,))
            row = await cur.fetchone()
            return row[0] if row else None


async def get_keys_for_did(did: str):
    async with await psycopg.AsyncConnection.connect(DATABASE_URL) as conn:
        async with conn.cursor() as cur:
            await cur.execute("SELECT kid, public_jwk FROM dids WHERE did = %s", (did,))
            return [(kid, public_jwk) for kid, public_jwk in await cur.fetchall()]
