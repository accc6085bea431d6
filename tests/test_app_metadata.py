from __future__ import annotations

from content import app_metadata
from content import items as item_service
from content.http import FetchError
from llm import openai_provider
from llm.openai_provider import Completion

PAGE = """<html>
<head>
  <title>Fallback title</title>
  <meta property="og:title" content="Pocket Planner">
  <meta property="og:description" content="Plan your week in two minutes with a calm, offline-first planner.">
  <meta property="og:image" content="/static/cover.png">
</head>
<body><h1>Pocket Planner</h1><p>Works   offline.</p></body>
</html>"""


def _app(session, **overrides):
    data = {"type": "app", "title": "Pocket Planner", "source_url": "https://apps.example.com/planner/"}
    data.update(overrides)
    return item_service.create_item(session, data)


def _serve(monkeypatch, html: str | None) -> None:
    def fake_fetch_text(url, *, headers=None, timeout=30, label="Fetch"):
        if html is None:
            raise FetchError("App page unreachable: timed out")
        return html

    monkeypatch.setattr(app_metadata, "fetch_text", fake_fetch_text)


def test_parse_page_reads_open_graph_tags() -> None:
    page = app_metadata.parse_page(PAGE)

    assert page.title == "Pocket Planner"
    assert page.description.startswith("Plan your week")
    assert page.image == "/static/cover.png"
    assert page.body_text == "Pocket Planner Works offline."


def test_parse_page_falls_back_to_title_and_meta_description() -> None:
    page = app_metadata.parse_page(
        '<html><head><title>Plain</title><meta name="description" content="Just a page"></head></html>'
    )

    assert page.title == "Plain"
    assert page.description == "Just a page"
    assert page.image is None
    assert page.body_text == ""


def test_enrich_without_llm_uses_og_description_and_absolute_image(session, monkeypatch) -> None:
    _serve(monkeypatch, PAGE)
    item = _app(session)

    result = app_metadata.enrich_app_item(session, item.id)

    session.refresh(item)
    assert result.summary == "Plan your week in two minutes with a calm, offline-first planner."
    assert item.blurb == result.summary
    assert item.image_url == "https://apps.example.com/static/cover.png"


def test_enrich_uses_summary_when_available(session, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(
        openai_provider,
        "complete",
        lambda prompt, model=None: Completion(text="A calm weekly planner that works offline.", tokens_in=50, tokens_out=9),
    )
    _serve(monkeypatch, PAGE)
    item = _app(session)

    result = app_metadata.enrich_app_item(session, item.id)

    session.refresh(item)
    assert result.summary == "A calm weekly planner that works offline."
    assert item.blurb == result.summary


def test_enrich_keeps_existing_values_unless_forced(session, monkeypatch) -> None:
    _serve(monkeypatch, PAGE)
    item = _app(session, blurb="Hand written", image_url="https://cdn.example.com/mine.png")

    app_metadata.enrich_app_item(session, item.id)
    session.refresh(item)
    assert item.blurb == "Hand written"
    assert item.image_url == "https://cdn.example.com/mine.png"

    app_metadata.enrich_app_item(session, item.id, force=True)
    session.refresh(item)
    assert item.blurb.startswith("Plan your week")
    assert item.image_url == "https://apps.example.com/static/cover.png"


def test_enrich_ignores_unreachable_pages_and_other_types(session, monkeypatch) -> None:
    _serve(monkeypatch, None)
    app = _app(session, blurb="kept")
    product = item_service.create_item(
        session, {"type": "product", "title": "Book", "source_url": "https://shop.example.com/book"}
    )

    assert app_metadata.enrich_app_item(session, app.id) is None
    assert app_metadata.enrich_app_item(session, product.id) is None
    session.refresh(app)
    assert app.blurb == "kept"
