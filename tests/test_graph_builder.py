from conftest import rec
from topology_module.graph_builder import ZONE_NODE, build_topology, build_units
from topology_module.records import ExternalResolution, SharedIp


def _node_id(result, text):
    ids = [node_id for node_id, meta in result.node_meta.items() if meta.text == text]
    assert len(ids) == 1, ids
    return ids[0]


def test_build_is_idempotent(example_zone):
    first = build_topology(example_zone, "example.com", 8, False)
    second = build_topology(example_zone, "example.com", 8, False)
    assert first.diagram_source == second.diagram_source
    assert first.summary.to_dict() == second.summary.to_dict()


def test_diagram_header_root_and_theme():
    records = [rec("A", "www", "192.0.2.1")]
    light = build_topology(records, "example.com", 5, False).diagram_source
    dark = build_topology(records, "example.com", 5, True).diagram_source
    assert light.splitlines()[0] == "flowchart LR"
    assert f'{ZONE_NODE}["<div><div>Zone: example.com</div></div>"]:::zone' in light
    assert "color:#1f2a44;" in light
    assert "color:#dce6ff;" in dark
    assert light.count("classDef ") == 5


def test_shared_target_is_one_node_with_two_edges():
    records = [rec("CNAME", "www", "target.cdn.net"), rec("CNAME", "blog", "target.cdn.net")]
    result = build_topology(records, "example.com", 5, False)
    lines = result.diagram_source.splitlines()
    target_id = _node_id(result, "target.cdn.net")
    declarations = [ln for ln in lines if ln.strip().startswith(f"{target_id}[")]
    assert len(declarations) == 1
    incoming = [ln for ln in lines if ln.endswith(f'-- "CNAME" --> {target_id}')]
    assert len(incoming) == 2


def test_edges_are_not_repeated_through_shared_chain():
    records = [
        rec("CNAME", "www", "edge.example.com"),
        rec("CNAME", "blog", "edge.example.com"),
        rec("CNAME", "edge", "origin.example.com"),
        rec("A", "origin", "192.0.2.7"),
    ]
    lines = build_topology(records, "example.com", 5, False).diagram_source.splitlines()
    cname_hops = [ln for ln in lines if '-. "CNAME" .->' in ln]
    addr_hops = [ln for ln in lines if '-. "A" .->' in ln]
    assert len(cname_hops) == len(set(cname_hops)) == 1
    assert len(addr_hops) == 1


def test_address_records_aggregate_per_name():
    records = [
        rec("A", "www", "192.0.2.1"),
        rec("A", "www", "192.0.2.2"),
        rec("AAAA", "www", "2001:db8::1"),
        rec("TXT", "www", "hello"),
    ]
    units = build_units(records, "example.com")
    assert [(u.type, len(u.records)) for u in units] == [("TXT", 1), ("A", 2), ("AAAA", 1)]
    result = build_topology(records, "example.com", 5, False)
    assert any("type:A x2" in m.text for m in result.node_meta.values())


def test_shared_ips_need_two_names():
    single = [rec("A", "www", "1.2.3.4")]
    assert build_topology(single, "example.com", 5, False).summary.shared_ips == []

    both = single + [rec("A", "api", "1.2.3.4")]
    assert build_topology(both, "example.com", 5, False).summary.shared_ips == [
        SharedIp(ip="1.2.3.4", names=["api", "www"])
    ]


def test_mx_trail_example():
    records = [rec("MX", "@", "10 mail.example.com"), rec("A", "mail", "9.9.9.9")]
    result = build_topology(records, "example.com", 5, False)
    trails = result.summary.mx_trails
    assert len(trails) == 1
    trail = trails[0]
    assert trail.from_name == "example.com"
    assert trail.priority == 10
    assert trail.target == "mail.example.com"
    assert trail.terminal == "mail.example.com"
    assert trail.ipv4 == ["9.9.9.9"]
    assert trail.source == "in-zone"
    assert trail.terminal_regdom == "example.com"
    assert trail.under_zone is True
    assert '-- "MX" -->' in result.diagram_source
    assert '-- "prio 10" -->' in result.diagram_source


def test_mx_trails_keep_repeated_targets_and_null_priority():
    records = [
        rec("MX", "@", "10 mx.mailhost.net"),
        rec("MX", "@", "10 mx.mailhost.net"),
        rec("MX", "@", "high mx.mailhost.net"),
    ]
    trails = build_topology(records, "example.com", 5, False).summary.mx_trails
    assert len(trails) == 3
    assert trails[2].priority is None
    assert all(t.source == "none" for t in trails)
    assert all(t.under_zone is False for t in trails)


def test_cname_chains_three_or_more():
    records = [
        rec("CNAME", "www", "edge.example.com"),
        rec("CNAME", "edge", "cdn.provider.net"),
    ]
    chains = build_topology(records, "example.com", 5, False).summary.cname_chains
    assert [(c.start, c.chain) for c in chains] == [("www", ["www", "edge.example.com", "cdn.provider.net"])]


def test_service_fingerprint_node():
    records = [rec("CNAME", "www", "d111abc.cloudfront.net"), rec("CNAME", "img", "d222.cloudfront.net")]
    result = build_topology(records, "example.com", 5, False)
    services = result.summary.detected_services
    assert [(s.name, s.via) for s in services] == [
        ("AWS CloudFront", "d111abc.cloudfront.net"),
        ("AWS CloudFront", "d222.cloudfront.net"),
    ]
    service_lines = [ln for ln in result.diagram_source.splitlines() if ln.endswith(":::service")]
    assert len(service_lines) == 1
    assert result.diagram_source.count("-.->") == 2


def test_areas_and_counts(example_zone):
    summary = build_topology(example_zone, "example.com", 5, False).summary
    by_name = {n.name: n for n in summary.node_summaries}
    assert by_name["example.com"].areas == ["email", "web", "infra"]
    assert by_name["_dmarc"].areas == ["email"]
    assert by_name["mail"].areas == ["email", "web"]
    assert by_name["blog"].areas == ["web"]
    assert [n.name for n in summary.node_summaries] == sorted(by_name)
    counts = summary.area_counts.to_dict()
    assert counts["misc"] == 0
    assert counts["infra"] >= 2


def test_node_summary_resolution(example_zone):
    summary = build_topology(example_zone, "example.com", 5, False).summary
    blog = next(n for n in summary.node_summaries if n.name == "blog")
    assert blog.resolved_to == ["www.example.com"]
    assert blog.terminal == "www.example.com"
    assert blog.ipv4 == ["192.0.2.10"]


def test_external_resolution_fills_terminal_and_ptr():
    records = [rec("CNAME", "shop", "shops.myshopify.com")]
    ext = ExternalResolution(
        chain=["shops.myshopify.com"],
        terminal="shops.myshopify.com",
        ipv4=["23.227.38.65"],
        requested_name="shops.myshopify.com",
        reverse_hostnames_by_ip={"23.227.38.65": ["myshopify.com"]},
    )
    result = build_topology(records, "example.com", 5, False, {"shops.myshopify.com": ext})
    src = result.diagram_source
    assert '-. "A" .->' in src
    assert '-. "PTR" .->' in src
    ip_id = _node_id(result, "23.227.38.65 | IP")
    assert result.node_meta[ip_id].address == "23.227.38.65"


def test_malformed_records_do_not_abort():
    records = [
        rec("", "", ""),
        rec("MX", "@", "garbage"),
        rec("CNAME", "x", ""),
        rec("SRV", "_sip._tcp", "10"),
        rec("A", "www", "192.0.2.1"),
    ]
    result = build_topology(records, "example.com", 5, False)
    assert result.diagram_source.startswith("flowchart LR")
    assert any(m.text.startswith("www |") for m in result.node_meta.values())


def test_node_meta_record_ids():
    records = [rec("CNAME", "www", "edge.cdn.net", id="abc123")]
    result = build_topology(records, "example.com", 5, False)
    metas = [m for m in result.node_meta.values() if m.record_id]
    assert [m.record_id for m in metas] == ["abc123"]
    assert result.to_dict()["nodeMeta"][ZONE_NODE] == {"text": "Zone: example.com"}
