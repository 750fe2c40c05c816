import pytest

from conftest import rec
from topology_module.indexer import ZoneIndex, build_address_maps, build_cname_map, group_by_name
from topology_module.records import ExternalResolution, ResolutionResult
from topology_module.resolution import (
    index_external,
    pick_best_resolution,
    resolution_source,
    resolve_local,
)
from topology_module.zone_utils import clamp_hops, extract_target, normalize_name, parse_mx


def _resolve(records, name, hops, zone="example.com"):
    index = ZoneIndex.build(records, zone)
    return resolve_local(name, index.cname_map, index.addresses.ipv4_by_name, index.addresses.ipv6_by_name, hops)


def test_normalize_name():
    assert normalize_name("WWW.Example.COM.") == "www.example.com"
    assert normalize_name("  _dmarc.example.com ") == "_dmarc.example.com"
    assert normalize_name(None) == ""
    assert normalize_name("bücher.example") == "xn--bcher-kva.example"


def test_clamp_hops():
    assert clamp_hops(0) == 1
    assert clamp_hops(99) == 15
    assert clamp_hops("7") == 7
    assert clamp_hops(3.6) == 4
    assert clamp_hops("junk") == 15


def test_parse_mx_non_numeric_priority():
    assert parse_mx("10 mail.example.com.") == (10, "mail.example.com")
    assert parse_mx("high mail.example.com") == (None, "mail.example.com")
    assert parse_mx("") == (None, "")


def test_extract_target_per_type():
    assert extract_target(rec("CNAME", "www", "Edge.CDN.net.")) == "edge.cdn.net"
    assert extract_target(rec("MX", "@", "5 mx.example.com")) == "mx.example.com"
    assert extract_target(rec("SRV", "_sip._tcp", "10 60 5060 sip.example.com.")) == "sip.example.com"
    assert extract_target(rec("A", "www", " 192.0.2.1 ")) == "192.0.2.1"
    assert extract_target(rec("TXT", "@", "hello")) is None
    assert extract_target(rec("CNAME", "x", "")) is None


def test_group_by_name_apex_substitution():
    records = [rec("A", "@", "192.0.2.1"), rec("MX", "", "10 mx.example.com"), rec("A", "WWW", "192.0.2.2")]
    grouped = group_by_name(records, "example.com")
    assert list(grouped) == ["example.com", "www"]
    assert len(grouped["example.com"]) == 2


def test_address_maps_dedupe_and_skip_empty():
    records = [
        rec("A", "www", "192.0.2.1"),
        rec("A", "www", "192.0.2.1"),
        rec("A", "www", "192.0.2.2"),
        rec("AAAA", "www", "2001:db8::1"),
        rec("A", "empty", ""),
    ]
    maps = build_address_maps(records, "example.com")
    assert maps.ipv4_by_name["www"] == ["192.0.2.1", "192.0.2.2"]
    assert maps.ipv4_by_name["www.example.com"] == ["192.0.2.1", "192.0.2.2"]
    assert maps.ipv6_by_name["www"] == ["2001:db8::1"]
    assert "empty" not in maps.ipv4_by_name


def test_duplicate_cname_last_wins():
    records = [rec("CNAME", "www", "first.example.net"), rec("CNAME", "www", "second.example.net")]
    assert build_cname_map(records, "example.com")["www"] == "second.example.net"


def test_cname_cycle_terminates_without_revisit():
    records = [rec("CNAME", "a", "b"), rec("CNAME", "b", "c"), rec("CNAME", "c", "a")]
    res = _resolve(records, "a", 15, zone="")
    assert res.chain == ["a", "b", "c"]
    assert res.terminal == "c"
    assert len(set(res.chain)) == len(res.chain)


@pytest.mark.parametrize("hops", list(range(1, 16)))
def test_chain_length_bounded_by_hops(hops):
    records = [rec("CNAME", f"h{i}", f"h{i + 1}") for i in range(30)]
    res = _resolve(records, "h0", hops, zone="")
    assert len(res.chain) <= hops + 1
    assert len(res.chain) == hops + 1
    assert len(set(res.chain)) == len(res.chain)


def test_addresses_come_from_terminal_only():
    records = [
        rec("CNAME", "www", "edge.example.com"),
        rec("A", "www", "198.51.100.1"),
        rec("A", "edge", "192.0.2.5"),
    ]
    res = _resolve(records, "www", 5)
    assert res.chain == ["www", "edge.example.com"]
    assert res.ipv4 == ["192.0.2.5"]


def test_pick_best_prefers_external_when_local_has_no_addresses():
    local = ResolutionResult(chain=["www", "edge.cdn.net"], terminal="edge.cdn.net")
    ext = ExternalResolution(chain=["edge.cdn.net", "e1.cdn.net"], terminal="e1.cdn.net", ipv4=["203.0.113.9"])
    best = pick_best_resolution("www", local, {"edge.cdn.net": ext})
    assert best is ext
    assert resolution_source(local, best) == "external"


def test_pick_best_keeps_local_addresses_and_carries_ptr():
    local = ResolutionResult(chain=["mail"], terminal="mail", ipv4=["192.0.2.30"])
    ext = ExternalResolution(chain=["mail"], terminal="mail", ipv4=["192.0.2.30"],
                             reverse_hostnames_by_ip={"192.0.2.30": ["mx.isp.net"]})
    best = pick_best_resolution("mail", local, {"mail": ext})
    assert best.ipv4 == ["192.0.2.30"]
    assert best.reverse_hostnames_by_ip == {"192.0.2.30": ["mx.isp.net"]}
    assert resolution_source(local, best) == "in-zone"


def test_pick_best_without_external_reports_none():
    local = ResolutionResult(chain=["x"], terminal="x")
    best = pick_best_resolution("x", local, {})
    assert best.chain == ["x"]
    assert resolution_source(local, best) == "none"


def test_index_external_covers_terminal_and_hops():
    ext = ExternalResolution(chain=["a.net", "b.net", "c.net"], terminal="c.net", requested_name="a.net")
    by_name = index_external({"a.net": ext})
    assert set(by_name) == {"a.net", "b.net", "c.net"}
