# topology_module/areas.py
from __future__ import annotations

from typing import Iterable, List, Set

from .records import AREAS, DNSRecord
from .zone_utils import normalize_name

EMAIL_NAME_HINTS = ("_dmarc", "_domainkey", "_bimi")
EMAIL_TXT_TAGS = ("v=spf1", "v=dmarc1", "v=dkim1", "v=bimi1")
EMAIL_TYPES = {"MX", "SPF"}
INFRA_TYPES = {"NS", "SOA", "CAA", "DNSKEY", "DS", "RRSIG", "NSEC", "NSEC3"}
WEB_TYPES = {"A", "AAAA", "CNAME", "SVCB", "HTTPS", "SRV"}


def _is_email(name: str, records: List[DNSRecord], email_path_names: Set[str]) -> bool:
    if any(hint in name for hint in EMAIL_NAME_HINTS):
        return True
    if any(r.type in EMAIL_TYPES for r in records):
        return True
    for r in records:
        if r.type != "TXT":
            continue
        txt = str(r.content or "").lower()
        if any(tag in txt for tag in EMAIL_TXT_TAGS):
            return True
    return name in email_path_names


def classify(name: str, records: Iterable[DNSRecord], email_path_names: Set[str]) -> Set[str]:
    """
    Areas for one name. Rules are additive; a name that matches none is 'misc'.
    """
    lower = normalize_name(name)
    recs = list(records)
    types = {r.type for r in recs}
    areas: Set[str] = set()
    if _is_email(lower, recs, email_path_names):
        areas.add("email")
    if types & INFRA_TYPES:
        areas.add("infra")
    if types & WEB_TYPES:
        areas.add("web")
    if not areas:
        areas.add("misc")
    return areas


def ordered(areas: Set[str]) -> List[str]:
    """Areas in reporting order."""
    return [a for a in AREAS if a in areas]
