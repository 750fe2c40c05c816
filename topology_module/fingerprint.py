# topology_module/fingerprint.py
from __future__ import annotations

import re
from typing import List, Optional, Tuple

import yaml

from .logger import get_child_logger
from .zone_utils import is_ip_address, normalize_name

log = get_child_logger("fingerprint")

# --------------------------------------------------------------------
# Third-party infrastructure by hostname suffix. Ordered: first match wins.
# --------------------------------------------------------------------
SERVICE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"cloudfront\.net$", re.I), "AWS CloudFront"),
    (re.compile(r"elb\.amazonaws\.com$", re.I), "AWS ELB"),
    (re.compile(r"azureedge\.net$", re.I), "Azure Edge/CDN"),
    (re.compile(r"trafficmanager\.net$", re.I), "Azure Traffic Manager"),
    (re.compile(r"fastly\.net$", re.I), "Fastly"),
    (re.compile(r"akamai(net|hd)\.net$", re.I), "Akamai"),
    (re.compile(r"herokudns\.com$", re.I), "Heroku DNS"),
    (re.compile(r"vercel-dns\.com$", re.I), "Vercel"),
    (re.compile(r"github\.io$", re.I), "GitHub Pages"),
    (re.compile(r"netlify\.(app|global)$", re.I), "Netlify"),
    (re.compile(r"cloudflare\.com$", re.I), "Cloudflare"),
]


def load_service_patterns(path: Optional[str]) -> List[Tuple[re.Pattern, str]]:
    """
    Built-in table, extended by a YAML file of the form

        patterns:
          - suffix: "myedge\\.example$"
            service: "My Edge"

    Extra patterns are tried before the built-in ones. A missing or broken
    file leaves the built-in table in place.
    """
    table = list(SERVICE_PATTERNS)
    if not path:
        return table
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as e:
        log.warning("Could not read service patterns from {}: {}", path, e)
        return table

    extra: List[Tuple[re.Pattern, str]] = []
    for entry in data.get("patterns") or []:
        try:
            suffix = str(entry["suffix"])
            service = str(entry["service"])
            if not suffix.endswith("$"):
                suffix += "$"
            extra.append((re.compile(suffix, re.I), service))
        except (KeyError, TypeError, re.error) as e:
            log.warning("Skipping service pattern {!r}: {}", entry, e)
    log.info("Loaded {} extra service patterns from {}", len(extra), path)
    return extra + table


def match_service(
    target: Optional[str],
    patterns: Optional[List[Tuple[re.Pattern, str]]] = None,
) -> Optional[str]:
    """Service name for a hostname target, or None. IP literals never match."""
    host = normalize_name(target)
    if not host or is_ip_address(host):
        return None
    for pat, service in patterns if patterns is not None else SERVICE_PATTERNS:
        if pat.search(host):
            return service
    return None
