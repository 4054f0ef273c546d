"""
Tests para rag/query/live_fetch.py — Fallback de búsqueda en vivo.

Usa httpx.MockTransport: no hay requests reales a internet.
"""

import httpx
import pytest

from agent.models import AgentProfile
from rag.query.live_fetch import MAX_SNIPPETS, LiveFetcher, rank_urls, strip_html

REFUNDS_URL = "https://acme.example.com/help/refunds"
SHIPPING_URL = "https://acme.example.com/help/shipping"

AGENT = AgentProfile(
    agent_id="support-bot",
    company_id="acme",
    name="Ava",
    personality="friendly",
    knowledge_urls=[
        {"url": REFUNDS_URL, "title": "Refund policy"},
        {"url": SHIPPING_URL, "title": "Shipping information"},
    ],
)


def _fetcher(handler, agent=AGENT):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return LiveFetcher(agent_lookup=lambda agent_id, company_id: agent, client=client)


class TestHelpers:
    def test_strip_html_drops_scripts_and_tags(self):
        html = "<html><style>p {}</style><script>var a = 1;</script><p>Hello <b>world</b></p></html>"
        assert strip_html(html) == "Hello world"

    def test_rank_urls_prefers_matching_title(self):
        urls = rank_urls(AGENT.knowledge_urls, ["shipping"])
        assert urls == [SHIPPING_URL, REFUNDS_URL]

    def test_rank_urls_keeps_configured_order_on_ties(self):
        assert rank_urls(AGENT.knowledge_urls, ["hours"]) == [REFUNDS_URL, SHIPPING_URL]

    def test_rank_urls_dedupes_and_skips_invalid(self):
        items = [{"url": REFUNDS_URL}, {"url": REFUNDS_URL}, {"title": "no url"}, {"url": ""}]
        assert rank_urls(items, ["refund"]) == [REFUNDS_URL]


class TestFetch:
    def test_snippets_from_matching_sentences(self):
        def handler(request):
            if request.url.path == "/help/refunds":
                return httpx.Response(
                    200,
                    text="<p>Refunds are accepted within 30 days. Shipping is free.</p>",
                )
            return httpx.Response(404)

        result = _fetcher(handler).fetch("support-bot", "acme", "refund window")

        assert result["snippets"] == [
            f"Source: {REFUNDS_URL}\nRefunds are accepted within 30 days."
        ]
        assert result["sources"] == [REFUNDS_URL]

    def test_failed_pages_are_skipped(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        result = _fetcher(handler).fetch("support-bot", "acme", "refund")
        assert result == {"snippets": [], "sources": []}

    def test_snippets_are_capped(self):
        page = " ".join(f"Refund rule number {i}." for i in range(20))

        def handler(request):
            return httpx.Response(200, text=page)

        result = _fetcher(handler).fetch("support-bot", "acme", "refund")
        assert len(result["snippets"]) == MAX_SNIPPETS

    def test_max_urls_limits_requests(self):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, text="Nothing relevant here.")

        _fetcher(handler).fetch("support-bot", "acme", "refund", max_urls=1)
        assert requested == [REFUNDS_URL]

    @pytest.mark.parametrize("agent", [None, AgentProfile("x", "acme", "X", "calm")])
    def test_no_agent_or_no_urls(self, agent):
        def handler(request):
            raise AssertionError("no debería hacer requests")

        result = _fetcher(handler, agent=agent).fetch("x", "acme", "refund")
        assert result == {"snippets": [], "sources": []}
