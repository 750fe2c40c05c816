"""
topology_module/discovery.py

Service discovery for a zone:
- infer_services(records, zone): signals read off the records alone
  (SMTP from MX, DNS from NS, SSH from ssh-like names or SRV port 22,
  FTP from _ftp SRV)
- probe_web_hosts(records, zone): HTTPS and HTTP reachability of up to four
  web hosts (apex, www.*, api.*). Any HTTP response counts as "up"; a
  connection error or timeout is "down".
- discover_services: both, inferred first.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiohttp

from .logger import get_child_logger
from .records import DNSRecord
from .zone_utils import normalize_name, owner_name, split_fields

log = get_child_logger("discovery")

MAX_PROBE_HOSTS = 4
WEB_RECORD_TYPES = ("A", "AAAA", "CNAME")


@dataclass
class ServiceSignal:
    service: str
    status: str  # "up" | "down" | "inferred"
    details: str

    def to_dict(self) -> Dict[str, str]:
        return {"service": self.service, "status": self.status, "details": self.details}


def _srv_port(record: DNSRecord) -> Optional[int]:
    parts = split_fields(record.content)
    if len(parts) < 3:
        return None
    try:
        return int(parts[2])
    except ValueError:
        return None


def infer_services(records: List[DNSRecord], zone: str) -> List[ServiceSignal]:
    zone = normalize_name(zone)
    names = [owner_name(r.name, zone) for r in records]
    srv = [r for r in records if r.type == "SRV"]
    out: List[ServiceSignal] = []
    if any(r.type == "MX" for r in records):
        out.append(ServiceSignal("SMTP", "inferred", "MX records present"))
    if any(r.type == "NS" for r in records):
        out.append(ServiceSignal("DNS", "inferred", "NS records present"))
    if any("ssh" in n for n in names) or any(_srv_port(r) == 22 for r in srv):
        out.append(ServiceSignal("SSH", "inferred", "SSH-like host/SRV detected"))
    if any("_ftp" in owner_name(r.name, zone) for r in srv):
        out.append(ServiceSignal("FTP", "inferred", "FTP SRV found"))
    return out


def web_probe_hosts(records: List[DNSRecord], zone: str) -> List[str]:
    """Apex and www.<zone>, then apex/www.*/api.* owners of web records; at most four."""
    zone = normalize_name(zone)
    hosts: Dict[str, None] = {}
    if zone:
        hosts[zone] = None
        hosts[f"www.{zone}"] = None
    for r in records:
        if r.type not in WEB_RECORD_TYPES:
            continue
        n = owner_name(r.name, zone)
        if n and (n == zone or n.startswith("www.") or n.startswith("api.")):
            hosts[n] = None
    return [h for h in hosts if h][:MAX_PROBE_HOSTS]


async def probe_url(session: aiohttp.ClientSession, url: str) -> str:
    try:
        async with session.get(url, allow_redirects=False, ssl=False) as resp:
            log.debug("Probe {} -> {}", url, resp.status)
            return "up"
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        log.debug("Probe {} failed: {}", url, e)
        return "down"


async def probe_web_hosts(
    records: List[DNSRecord],
    zone: str,
    timeout_s: float = 5.0,
    session: Optional[aiohttp.ClientSession] = None,
) -> List[ServiceSignal]:
    hosts = web_probe_hosts(records, zone)
    if not hosts:
        return []

    async def _run(s: aiohttp.ClientSession) -> List[ServiceSignal]:
        urls = [(host, scheme) for host in hosts for scheme in ("https", "http")]
        statuses = await asyncio.gather(*[probe_url(s, f"{scheme}://{host}") for host, scheme in urls])
        out: List[ServiceSignal] = []
        for (host, scheme), status in zip(urls, statuses):
            out.append(ServiceSignal(
                f"{scheme.upper()} ({host})",
                status,
                "Probe reachable" if status == "up" else "Probe failed/blocked",
            ))
        return out

    if session is not None:
        return await _run(session)
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    async with aiohttp.ClientSession(timeout=timeout) as s:
        return await _run(s)


async def discover_services(
    records: List[DNSRecord],
    zone: str,
    probe: bool = True,
    timeout_s: float = 5.0,
    session: Optional[aiohttp.ClientSession] = None,
) -> List[ServiceSignal]:
    signals = infer_services(records, zone)
    if probe:
        signals.extend(await probe_web_hosts(records, zone, timeout_s, session))
    return signals
