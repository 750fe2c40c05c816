# topology_module/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .zone_utils import clamp_hops

load_dotenv()

CLOUDFLARE_DOH = "https://cloudflare-dns.com/dns-query"
GOOGLE_DOH = "https://dns.google/resolve"
QUAD9_DOH = "https://dns.quad9.net:5053/dns-query"

_DOH_BY_SERVER = {
    "1.1.1.1": CLOUDFLARE_DOH,
    "1.0.0.1": CLOUDFLARE_DOH,
    "8.8.8.8": GOOGLE_DOH,
    "8.8.4.4": GOOGLE_DOH,
    "9.9.9.9": QUAD9_DOH,
    "149.112.112.112": QUAD9_DOH,
}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [s.strip() for s in raw.split(",") if s.strip()]


def resolve_doh_endpoints(dns_server: str = "1.1.1.1", custom_url: str = "") -> List[str]:
    """Preferred endpoint for the selected server first, then the public fallbacks, deduplicated."""
    preferred = (custom_url or "").strip() or _DOH_BY_SERVER.get((dns_server or "").strip(), CLOUDFLARE_DOH)
    out: List[str] = []
    for url in (preferred, CLOUDFLARE_DOH, GOOGLE_DOH, QUAD9_DOH):
        if url not in out:
            out.append(url)
    return out


@dataclass
class TopologySettings:
    """
    Runtime options for one zone-view session.

    resolver_mode:
      - "dns": dnspython against `nameservers`, DNS-over-HTTPS when that yields nothing
      - "doh": DNS-over-HTTPS only
    """
    max_hops: int = 15
    lookup_timeout_s: float = 1.2
    resolver_mode: str = "dns"
    nameservers: List[str] = field(default_factory=lambda: ["1.1.1.1"])
    doh_custom_url: str = ""
    ptr_lookups: bool = True
    scan_resolution_chain: bool = True
    semaphore_limit: int = 16
    service_patterns_path: Optional[str] = None
    mmdc_path: str = "mmdc"

    def __post_init__(self) -> None:
        self.max_hops = clamp_hops(self.max_hops)
        if self.resolver_mode not in ("dns", "doh"):
            self.resolver_mode = "dns"
        self.lookup_timeout_s = max(0.25, float(self.lookup_timeout_s))
        self.semaphore_limit = max(1, int(self.semaphore_limit))

    @property
    def doh_endpoints(self) -> List[str]:
        server = self.nameservers[0] if self.nameservers else "1.1.1.1"
        return resolve_doh_endpoints(server, self.doh_custom_url)

    @classmethod
    def from_env(cls) -> "TopologySettings":
        return cls(
            max_hops=clamp_hops(os.getenv("TOPOLOGY_MAX_HOPS", "15")),
            lookup_timeout_s=_env_float("TOPOLOGY_LOOKUP_TIMEOUT_S", 1.2),
            resolver_mode=os.getenv("TOPOLOGY_RESOLVER_MODE", "dns").strip().lower(),
            nameservers=_env_list("DNS_NAMESERVERS", "1.1.1.1"),
            doh_custom_url=os.getenv("TOPOLOGY_DOH_URL", ""),
            ptr_lookups=_env_bool("TOPOLOGY_PTR_LOOKUPS", True),
            scan_resolution_chain=_env_bool("TOPOLOGY_SCAN_CHAIN", True),
            semaphore_limit=int(_env_float("DNS_SEMAPHORE_LIMIT", 16)),
            service_patterns_path=os.getenv("TOPOLOGY_SERVICE_PATTERNS") or None,
            mmdc_path=os.getenv("TOPOLOGY_MMDC_PATH", "mmdc"),
        )
