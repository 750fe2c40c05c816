"""
External fallback resolution using dnspython and DNS-over-HTTPS.

This module provides:
- DnsQueryClient: one best-effort query per call, dnspython async resolver
  first (mode "dns") with a DNS-over-HTTPS JSON fallback, or DoH only
  (mode "doh"); every network round trip is bounded by its own timeout
- ExternalResolver: follows CNAMEs out of band up to the hop limit, then
  asks for A/AAAA (and optionally PTR) of the final name; throttled by a
  semaphore, with inflight dedupe so concurrent callers share one lookup

Failures never propagate: a failed query contributes an empty answer and a
message on the ExternalResolution's `error`.
"""
from __future__ import annotations

import asyncio
import ipaddress
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
import dns.asyncresolver
import dns.exception
import dns.rdatatype
import dns.resolver

from .config import TopologySettings
from .logger import get_child_logger
from .records import ExternalResolution
from .zone_utils import clamp_hops, normalize_name

log = get_child_logger("external_resolver")

UNRESOLVED_ERROR = "no CNAME/A/AAAA records found"

# RR type codes in DNS JSON answers
_JSON_TYPES = {"A": 1, "CNAME": 5, "PTR": 12, "AAAA": 28}


class LookupFailure(Exception):
    """A query could not be completed (timeout, transport or server failure)."""


class DnsQueryClient:
    """
    Single-query client. `query(name, rtype)` returns a list of answers
    (addresses for A/AAAA, normalized hostnames for CNAME/PTR), [] for
    NXDOMAIN/NODATA, and raises LookupFailure when nothing could be asked.
    """

    def __init__(
        self,
        settings: Optional[TopologySettings] = None,
        resolver: Optional[dns.asyncresolver.Resolver] = None,
        http: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings or TopologySettings()
        self._resolver = resolver
        self._http = http
        self._owns_http = http is None

    def _get_resolver(self) -> dns.asyncresolver.Resolver:
        if self._resolver is None:
            resolver = dns.asyncresolver.Resolver(configure=False)
            resolver.nameservers = list(self.settings.nameservers) or ["1.1.1.1"]
            resolver.timeout = self.settings.lookup_timeout_s
            resolver.lifetime = self.settings.lookup_timeout_s
            self._resolver = resolver
            log.debug("Created resolver with nameservers: {}", resolver.nameservers)
        return self._resolver

    async def _get_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            timeout = aiohttp.ClientTimeout(total=max(0.25, self.settings.lookup_timeout_s))
            self._http = aiohttp.ClientSession(timeout=timeout)
            self._owns_http = True
        return self._http

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    async def __aenter__(self) -> "DnsQueryClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def query(self, name: str, rtype: str) -> List[str]:
        rtype = rtype.upper()
        if self.settings.resolver_mode == "doh":
            return await self._doh_query(name, rtype)

        failure: Optional[LookupFailure] = None
        try:
            answers = await self._dns_query(name, rtype)
            if answers:
                return answers
        except LookupFailure as e:
            failure = e
        try:
            return await self._doh_query(name, rtype)
        except LookupFailure:
            if failure is not None:
                raise failure
            return []

    async def _dns_query(self, name: str, rtype: str) -> List[str]:
        resolver = self._get_resolver()
        rdtype = dns.rdatatype.from_text(rtype)
        try:
            answer = await asyncio.wait_for(
                resolver.resolve(name, rdtype),
                timeout=self.settings.lookup_timeout_s,
            )
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except (dns.resolver.LifetimeTimeout, asyncio.TimeoutError) as e:
            raise LookupFailure(f"{rtype} {name}: timeout") from e
        except dns.exception.DNSException as e:
            raise LookupFailure(f"{rtype} {name}: {e.__class__.__name__}") from e

        out: List[str] = []
        for rdata in answer:
            if rtype in ("A", "AAAA"):
                value = str(rdata.address)
            elif rtype in ("CNAME", "PTR"):
                value = normalize_name(str(rdata.target))
            else:
                value = str(rdata)
            if value and value not in out:
                out.append(value)
        return out

    async def _doh_query(self, name: str, rtype: str) -> List[str]:
        http = await self._get_http()
        wanted = _JSON_TYPES.get(rtype)
        last_error: Optional[str] = None
        answered = False
        for endpoint in self.settings.doh_endpoints:
            try:
                async with http.get(
                    endpoint,
                    params={"name": name, "type": rtype},
                    headers={"accept": "application/dns-json"},
                ) as resp:
                    if resp.status != 200:
                        last_error = f"{endpoint} HTTP {resp.status}"
                        continue
                    data = await resp.json(content_type=None)
                answered = True
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = f"{endpoint} {e.__class__.__name__}"
                log.debug("DoH query {} {} via {} failed: {}", rtype, name, endpoint, e)
                continue

            out: List[str] = []
            for entry in (data or {}).get("Answer") or []:
                if wanted is not None and entry.get("type") not in (None, wanted):
                    continue
                raw = str(entry.get("data") or "").strip()
                if not raw:
                    continue
                value = normalize_name(raw) if rtype in ("CNAME", "PTR") else raw
                if value and value not in out:
                    out.append(value)
            if out:
                return out
        if last_error is not None and not answered:
            raise LookupFailure(f"{rtype} {name}: {last_error}")
        return []


class ExternalResolver:
    """
    Out-of-band resolution of names the zone itself cannot answer.

    `lookup` is any object offering `async query(name, rtype) -> List[str]`
    (DnsQueryClient by default).
    """

    def __init__(
        self,
        settings: Optional[TopologySettings] = None,
        lookup: Optional[Any] = None,
        semaphore: Optional[asyncio.Semaphore] = None,
    ):
        self.settings = settings or TopologySettings()
        self.lookup = lookup if lookup is not None else DnsQueryClient(self.settings)
        self._semaphore = semaphore
        self._inflight: Dict[str, asyncio.Future] = {}

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.settings.semaphore_limit)
        return self._semaphore

    async def close(self) -> None:
        closer = getattr(self.lookup, "close", None)
        if closer is not None:
            await closer()

    async def _query(self, name: str, rtype: str, errors: List[str]) -> List[str]:
        async with self._get_semaphore():
            try:
                return list(await self.lookup.query(name, rtype))
            except Exception as e:
                # one failed query degrades to an empty answer
                log.debug("External {} lookup for {} failed: {}", rtype, name, e)
                errors.append(str(e) or f"{rtype} {name}: {e.__class__.__name__}")
                return []

    async def _reverse(self, ips: Iterable[str], errors: List[str]) -> Dict[str, List[str]]:
        async def _one(ip: str):
            try:
                ptr_name = ipaddress.ip_address(ip).reverse_pointer
            except ValueError:
                return ip, []
            return ip, await self._query(ptr_name, "PTR", errors)

        out: Dict[str, List[str]] = {}
        for ip, hosts in await asyncio.gather(*[_one(ip) for ip in ips]):
            if hosts:
                out[ip] = hosts
        return out

    async def _resolve(self, start: str, max_hops: int) -> ExternalResolution:
        errors: List[str] = []
        chain = [start]
        seen = {start}
        cur = start
        if self.settings.scan_resolution_chain:
            hops = 0
            while hops < max_hops:
                targets = await self._query(cur, "CNAME", errors)
                nxt = next((t for t in targets if t), None)
                if not nxt or nxt in seen:
                    break
                chain.append(nxt)
                seen.add(nxt)
                cur = nxt
                hops += 1

        ipv4, ipv6 = await asyncio.gather(
            self._query(cur, "A", errors),
            self._query(cur, "AAAA", errors),
        )
        reverse: Dict[str, List[str]] = {}
        if self.settings.ptr_lookups and (ipv4 or ipv6):
            reverse = await self._reverse([*ipv4, *ipv6], errors)

        error: Optional[str] = None
        if len(chain) <= 1 and not ipv4 and not ipv6:
            error = "; ".join(errors) if errors else UNRESOLVED_ERROR
        elif errors:
            error = "; ".join(errors)

        return ExternalResolution(
            chain=chain,
            terminal=cur,
            ipv4=ipv4,
            ipv6=ipv6,
            source="external",
            error=error,
            requested_name=start,
            reverse_hostnames_by_ip=reverse,
        )

    async def resolve_external(self, name: str, max_hops: Optional[int] = None) -> ExternalResolution:
        """
        Resolve one name out of band. Never raises; concurrent calls for
        the same name share one lookup.
        """
        start = normalize_name(name)
        if not start:
            return ExternalResolution(source="external", error="empty name")
        hops = clamp_hops(max_hops if max_hops is not None else self.settings.max_hops)
        key = f"{start}|{hops}"

        task = self._inflight.get(key)
        if task is None:
            # detached from the first caller
            task = asyncio.ensure_future(self._resolve_guarded(start, hops))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        return await asyncio.shield(task)

    async def _resolve_guarded(self, start: str, hops: int) -> ExternalResolution:
        try:
            return await self._resolve(start, hops)
        except Exception as e:
            log.warning("External resolution of {} failed: {}", start, e)
            return ExternalResolution(
                chain=[start], terminal=start, source="external",
                error=str(e) or e.__class__.__name__, requested_name=start,
            )

    async def resolve_many(self, names: Iterable[str], max_hops: Optional[int] = None) -> Dict[str, ExternalResolution]:
        """Resolve distinct names concurrently; returns {normalized name: resolution}."""
        unique: List[str] = []
        for name in names:
            n = normalize_name(name)
            if n and n not in unique:
                unique.append(n)
        if not unique:
            return {}
        results = await asyncio.gather(*[self.resolve_external(n, max_hops) for n in unique])
        return dict(zip(unique, results))
