import asyncio

import aiohttp

from conftest import rec
from topology_module.discovery import discover_services, infer_services, web_probe_hosts


class _Resp:
    status = 200

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, up):
        self.up = set(up)
        self.urls = []

    def get(self, url, **kw):
        self.urls.append(url)
        if url not in self.up:
            raise aiohttp.ClientConnectionError(f"refused {url}")
        return _Resp()


def test_infer_services():
    records = [
        rec("MX", "@", "10 mx.example.com"),
        rec("NS", "@", "ns1.example.net"),
        rec("A", "ssh-gw", "192.0.2.22"),
        rec("SRV", "_ftp._tcp", "0 5 21 files.example.com"),
    ]
    services = [s.service for s in infer_services(records, "example.com")]
    assert services == ["SMTP", "DNS", "SSH", "FTP"]


def test_ssh_from_srv_port():
    records = [rec("SRV", "_admin._tcp", "0 5 22 box.example.com")]
    assert [s.service for s in infer_services(records, "example.com")] == ["SSH"]


def test_probe_hosts_capped_at_four():
    records = [
        rec("A", "api.example.com", "192.0.2.1"),
        rec("CNAME", "www.shop.example.com", "x.example.net"),
        rec("A", "api.v2.example.com", "192.0.2.2"),
        rec("TXT", "www.notes.example.com", "hi"),
    ]
    assert web_probe_hosts(records, "example.com") == [
        "example.com",
        "www.example.com",
        "api.example.com",
        "www.shop.example.com",
    ]


def test_discover_with_probes():
    fake = FakeSession(up={"https://example.com", "http://www.example.com"})
    signals = asyncio.run(discover_services([rec("MX", "@", "10 mx.example.com")], "example.com", session=fake))
    by_service = {s.service: s.status for s in signals}
    assert by_service == {
        "SMTP": "inferred",
        "HTTPS (example.com)": "up",
        "HTTP (example.com)": "down",
        "HTTPS (www.example.com)": "down",
        "HTTP (www.example.com)": "up",
    }
    assert len(fake.urls) == 4
