import asyncio

import pytest

from conftest import FakeResolver, rec
from topology_module.config import TopologySettings
from topology_module.external_resolver import UNRESOLVED_ERROR
from topology_module.records import ExternalResolution
from topology_module.renderer import RenderedDiagram, RenderError
from topology_module.session import TopologySession, enrichment_candidates
from viewport_module.geometry import Size


class FakeRenderer:
    def __init__(self, fail=False):
        self.fail = fail
        self.sources = []

    async def render(self, source, dark_mode=False, want_png=False):
        self.sources.append(source)
        if self.fail:
            raise RenderError("Parse error on line 3")
        return RenderedDiagram(svg="<svg viewBox='0 0 2000 1000'></svg>", width=2000, height=1000)


def _external(name, ips):
    return ExternalResolution(chain=[name], terminal=name, ipv4=ips, requested_name=name)


@pytest.fixture
def records():
    return [
        rec("CNAME", "www", "site.hosting.net"),
        rec("CNAME", "docs", "edge.example.com"),
        rec("CNAME", "edge", "site.hosting.net"),
        rec("CNAME", "api", "api-lb.example.com"),
        rec("A", "api-lb", "192.0.2.80"),
        rec("MX", "@", "10 mx.mailhost.net"),
    ]


def test_candidates_are_unresolved_terminals(records):
    assert enrichment_candidates(records, "example.com", 5) == ["site.hosting.net", "mx.mailhost.net"]


def test_build_is_memoized_until_inputs_change(records):
    session = TopologySession(TopologySettings(), resolver=FakeResolver({}), service_patterns=[])
    session.set_records(records, "example.com")
    first = session.build(5)
    assert session.build(5) is first
    assert session.build(5, dark_mode=True) is not first
    assert session.set_records(records, "example.com") is False
    session.set_records(list(records), "example.com")
    assert session.build(5).diagram_source == first.diagram_source


def test_enrich_merges_results_and_never_requeries(records):
    fake = FakeResolver({
        "site.hosting.net": _external("site.hosting.net", ["203.0.113.10"]),
        "mx.mailhost.net": _external("mx.mailhost.net", ["203.0.113.25"]),
    })
    session = TopologySession(TopologySettings(), resolver=fake, service_patterns=[])
    session.set_records(records, "example.com")
    before = session.build(5)

    assert asyncio.run(session.enrich(5)) == 2
    assert sorted(fake.requested) == ["mx.mailhost.net", "site.hosting.net"]
    assert session.progress.to_dict() == {"running": False, "total": 2, "done": 2}
    assert session.active_names == []

    after = session.build(5)
    assert after is not before
    www = next(n for n in after.summary.node_summaries if n.name == "www")
    assert www.ipv4 == ["203.0.113.10"]
    trail = after.summary.mx_trails[0]
    assert trail.source == "external"
    assert trail.ipv4 == ["203.0.113.25"]

    assert asyncio.run(session.enrich(5)) == 0
    assert len(fake.requested) == 2


def test_unresolved_names_get_default_entry(records):
    session = TopologySession(TopologySettings(), resolver=FakeResolver({}), service_patterns=[])
    session.set_records(records, "example.com")
    asyncio.run(session.enrich(5))
    cached = session.cache["site.hosting.net"]
    assert cached.chain == ["site.hosting.net"]
    assert cached.terminal == "site.hosting.net"
    assert cached.error == UNRESOLVED_ERROR


def test_stale_enrichment_is_discarded(records):
    session = TopologySession(TopologySettings(), service_patterns=[])
    replacement = [rec("A", "www", "192.0.2.1")]

    def swap_records(name):
        if session.records is records:
            session.set_records(replacement, "example.com")

    session.resolver = FakeResolver(
        {"site.hosting.net": _external("site.hosting.net", ["203.0.113.10"])},
        before_return=swap_records,
    )
    session.set_records(records, "example.com")
    epoch = session.epoch

    assert asyncio.run(session.enrich(5)) == 0
    assert session.epoch == epoch + 1
    assert session.records is replacement
    assert session.cache == {}


def test_render_keeps_last_good_diagram_on_failure(records):
    session = TopologySession(TopologySettings(), resolver=FakeResolver({}), service_patterns=[])
    session.set_records(records, "example.com")
    session.viewport.update_geometry(viewport=Size(800, 600))

    state = asyncio.run(session.render(FakeRenderer()))
    assert state.error is None
    good = state.diagram
    assert session.viewport.zoom == pytest.approx(0.4)

    failed = asyncio.run(session.render(FakeRenderer(fail=True), dark_mode=True))
    assert failed.error == "Parse error on line 3"
    assert failed.diagram is good



class StalledResolver(FakeResolver):
    async def resolve_external(self, name, max_hops=None):
        self.requested.append(name)
        await asyncio.sleep(10)
        return ExternalResolution(source="external")


def test_cancelled_enrichment_leaves_names_pending(records):
    session = TopologySession(TopologySettings(), resolver=StalledResolver({}), service_patterns=[])
    session.set_records(records, "example.com")

    async def run():
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(session.enrich(5), 0.05)

    asyncio.run(run())
    assert session.pending_names(5) == ["site.hosting.net", "mx.mailhost.net"]
    assert session.progress.to_dict() == {"running": False, "total": 2, "done": 0}
    assert session.active_names == []
    assert session.cache == {}
