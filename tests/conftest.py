import asyncio
import itertools
from typing import Dict, List, Optional, Tuple

import pytest

from topology_module.records import DNSRecord, ExternalResolution

_ids = itertools.count(1)


def rec(rtype: str, name: str, content: str, **kw) -> DNSRecord:
    return DNSRecord(id=kw.pop("id", f"r{next(_ids)}"), name=name, type=rtype, content=content, **kw)


class FakeLookup:
    """Stands in for DnsQueryClient: answers from a table, optional failures, call log."""

    def __init__(self, answers: Dict[Tuple[str, str], List[str]], failures: Optional[Dict[Tuple[str, str], Exception]] = None):
        self.answers = answers
        self.failures = failures or {}
        self.calls: List[Tuple[str, str]] = []
        self.closed = False

    async def query(self, name: str, rtype: str) -> List[str]:
        self.calls.append((name, rtype))
        await asyncio.sleep(0)
        if (name, rtype) in self.failures:
            raise self.failures[(name, rtype)]
        return list(self.answers.get((name, rtype), []))

    async def close(self) -> None:
        self.closed = True


class FakeResolver:
    """Stands in for ExternalResolver inside a session."""

    def __init__(self, results: Dict[str, ExternalResolution], before_return=None):
        self.results = results
        self.before_return = before_return
        self.requested: List[str] = []

    async def resolve_external(self, name: str, max_hops=None) -> ExternalResolution:
        self.requested.append(name)
        await asyncio.sleep(0)
        if self.before_return is not None:
            self.before_return(name)
        return self.results.get(name, ExternalResolution(source="external"))

    async def close(self) -> None:
        pass


@pytest.fixture
def example_zone() -> List[DNSRecord]:
    return [
        rec("A", "@", "192.0.2.10", ttl=300),
        rec("A", "www", "192.0.2.10", ttl=300),
        rec("A", "api", "192.0.2.20", ttl=300),
        rec("AAAA", "api", "2001:db8::20", ttl=300),
        rec("CNAME", "blog", "www.example.com"),
        rec("CNAME", "shop", "shops.myshopify.com"),
        rec("MX", "@", "10 mail.example.com"),
        rec("MX", "@", "20 mx2.mailhost.net"),
        rec("A", "mail", "192.0.2.30"),
        rec("TXT", "@", "v=spf1 include:_spf.mailhost.net ~all"),
        rec("TXT", "_dmarc", "v=DMARC1; p=none"),
        rec("NS", "@", "ns1.provider.net"),
        rec("CAA", "@", '0 issue "letsencrypt.org"'),
    ]
