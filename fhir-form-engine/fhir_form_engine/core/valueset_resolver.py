from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import httpx

from .metrics import metrics
from .schemas import ValueSet
from .valueset_store import ValueSetStore

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIX = ".json"


def strip_version(identifier: str) -> str:
    """``http://hl7.org/fhir/ValueSet/x|4.3.0`` -> ``http://hl7.org/fhir/ValueSet/x``"""
    return identifier.split("|", 1)[0]


def remote_document_url(identifier: str) -> Optional[str]:
    """
    Derive the JSON document URL published for a value set identifier.

    ``http://hl7.org/fhir/ValueSet/administrative-gender`` becomes
    ``https://hl7.org/fhir/ValueSet-administrative-gender.json``.
    Returns None when the identifier has fewer than two path segments.
    """
    try:
        parts = urlsplit(strip_version(identifier).strip())
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) < 2:
        return None
    category, name = segments[-2], segments[-1]
    path = "/" + "/".join([*segments[:-2], f"{category}-{name}{DOCUMENT_SUFFIX}"])
    scheme = "https" if parts.scheme == "http" else parts.scheme
    return urlunsplit((scheme, parts.netloc, path, "", ""))


def codes_from_document(document: Any) -> List[str]:
    """Codes of the first ``compose.include`` block of a ValueSet document."""
    if not isinstance(document, Mapping):
        return []
    compose = document.get("compose")
    includes = compose.get("include") if isinstance(compose, Mapping) else None
    if not isinstance(includes, list) or not includes or not isinstance(includes[0], Mapping):
        return []
    concepts = includes[0].get("concept")
    if not isinstance(concepts, list):
        return []
    return [
        c["code"]
        for c in concepts
        if isinstance(c, Mapping) and isinstance(c.get("code"), str) and c["code"]
    ]


class ValueSetResolver:
    """
    Resolves value set identifiers to their codes.

    Local bundles are searched first. Identifiers with no local match are
    fetched once from the published FHIR document and the outcome, empty or
    not, is cached for the lifetime of the resolver. Failures never raise.
    """

    def __init__(
        self,
        store: ValueSetStore,
        remote_enabled: bool = True,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.remote_enabled = remote_enabled
        self.timeout = timeout
        self._transport = transport
        self._cache: Dict[str, Tuple[str, ...]] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self.remote_fetches = 0

    def resolve_local(self, identifier: str) -> Optional[ValueSet]:
        value_set = self.store.lookup(identifier)
        if value_set is None:
            canonical = strip_version(identifier)
            if canonical != identifier:
                value_set = self.store.lookup(canonical)
        return value_set

    def cached(self, identifier: str) -> Optional[List[str]]:
        codes = self._cache.get(identifier)
        return None if codes is None else list(codes)

    async def resolve(self, identifier: Optional[str]) -> List[str]:
        if not identifier:
            return []

        local = self.resolve_local(identifier)
        if local is not None:
            metrics.record_valueset_resolution("local")
            return list(local.concepts)

        if identifier in self._cache:
            metrics.record_valueset_resolution("cache")
            return list(self._cache[identifier])

        if not self.remote_enabled:
            logger.info("Value set %s not available locally and remote lookups are disabled", identifier)
            metrics.record_valueset_resolution("unresolved")
            return []

        task = self._inflight.get(identifier)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_cache(identifier))
            self._inflight[identifier] = task
        # One caller abandoning the lookup must not cancel it for the others
        codes = await asyncio.shield(task)
        return list(codes)

    async def _fetch_and_cache(self, identifier: str) -> Tuple[str, ...]:
        try:
            codes = tuple(await self._fetch_remote(identifier))
            self._cache[identifier] = codes
            metrics.record_valueset_resolution("remote" if codes else "unresolved")
            return codes
        finally:
            self._inflight.pop(identifier, None)

    async def _fetch_remote(self, identifier: str) -> List[str]:
        url = remote_document_url(identifier)
        if url is None:
            logger.warning("Cannot derive a document URL for value set %s", identifier)
            return []

        self.remote_fetches += 1
        with metrics.time_remote_fetch() as labels:
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport, follow_redirects=True
                ) as client:
                    response = await client.get(url, headers={"Accept": "application/fhir+json, application/json"})
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                # InvalidURL is not an HTTPError; a malformed identifier must not escape resolve()
                logger.warning("Value set fetch failed for %s: %s", identifier, e)
                return []

            if response.status_code != 200:
                labels["status"] = str(response.status_code)
                logger.warning("Value set fetch for %s returned %s", identifier, response.status_code)
                return []

            try:
                document = response.json()
            except ValueError as e:
                labels["status"] = "invalid"
                logger.warning("Value set document for %s is not JSON: %s", identifier, e)
                return []
            labels["status"] = "ok"

        codes = codes_from_document(document)
        if not codes:
            logger.info("Value set %s declares no enumerated codes", identifier)
        return codes
