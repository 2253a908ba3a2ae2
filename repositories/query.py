"""
Execution helpers shared by the Supabase repositories.

supabase-py reports failures in three ways: an `error` attribute on the
response (older versions), a raised `postgrest.exceptions.APIError`, or an
httpx transport error (connection refused, timeout) that postgrest lets
through unwrapped. All are normalized here to StorageError so services see
one retryable type.

Atomic multi-row operations live in Postgres functions (sql/functions.sql)
that return a JSON object shaped like:
    {"success": true, ...}  or  {"success": false, "error": "CODE", "message": "..."}
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

import httpx
from postgrest.exceptions import APIError

from domain.errors import StorageError
from repositories import client as db_client

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION: str = "23505"


def run_query(query: Any, action: str) -> List[Dict[str, Any]]:
    """Execute a built PostgREST query and return its rows."""

    try:
        response = query.execute()
    except APIError as e:
        raise StorageError(f"Failed to {action}: {e.message}") from e
    except httpx.HTTPError as e:
        raise StorageError(f"Failed to {action}: database unreachable ({type(e).__name__})") from e

    error = getattr(response, "error", None)
    if error:
        raise StorageError(f"Failed to {action}: {error}")

    return list(getattr(response, "data", None) or [])


def run_count(query: Any, action: str) -> int:
    """Execute a query built with `select(..., count="exact")` and return the exact count."""

    try:
        response = query.execute()
    except APIError as e:
        raise StorageError(f"Failed to {action}: {e.message}") from e
    except httpx.HTTPError as e:
        raise StorageError(f"Failed to {action}: database unreachable ({type(e).__name__})") from e

    error = getattr(response, "error", None)
    if error:
        raise StorageError(f"Failed to {action}: {error}")

    count = getattr(response, "count", None)
    if count is None:
        raise StorageError(f"Failed to {action}: response carried no row count")
    return int(count)


def call_function(name: str, params: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Call an atomic Postgres function through `rpc` and return its JSON result.

    Business failures come back as {"success": false, ...} and are returned
    as-is for the caller to translate. Transport/database failures raise
    StorageError.
    """

    try:
        response = db_client.get_supabase().rpc(name, dict(params)).execute()
    except APIError as e:
        # Some supabase-py versions raise APIError for any JSON body returned
        # by a function, including successful ones.
        try:
            error_data = e.json() if callable(getattr(e, "json", None)) else {}
        except ValueError:
            error_data = {}

        if isinstance(error_data, Mapping) and "success" in error_data:
            return dict(error_data)

        if str(getattr(e, "code", "")) == UNIQUE_VIOLATION:
            return {"success": False, "error": "UNIQUE_VIOLATION", "message": e.message}

        logger.error(
            "Postgres function call failed",
            extra={"function": name, "code": getattr(e, "code", None), "error_message": e.message},
        )
        raise StorageError(f"Failed to call {name}: {e.message}") from e
    except httpx.HTTPError as e:
        logger.error("Postgres function call failed", extra={"function": name, "error": str(e)})
        raise StorageError(f"Failed to call {name}: database unreachable ({type(e).__name__})") from e

    error = getattr(response, "error", None)
    if error:
        raise StorageError(f"Failed to call {name}: {error}")

    result = getattr(response, "data", None)
    if isinstance(result, list) and len(result) == 1:
        result = result[0]
    if not isinstance(result, Mapping):
        raise StorageError(f"Unexpected result from {name}: {result!r}")
    return dict(result)


__all__ = ["UNIQUE_VIOLATION", "call_function", "run_count", "run_query"]
