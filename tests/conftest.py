"""Shared fixtures: afisha markup builders and a routed mock transport."""
import httpx
import pytest

BASE_URL = "https://theatre.test"

NO_EVENTS_PAGE = """
<html><body>
<div id="block-system-main">
  <div class="view-empty"><p>Вибачте, наразі немає подій</p></div>
</div>
</body></html>
"""


def listing_html(
    title="Гамлет",
    href="/vystava/hamlet",
    day="12",
    month="червня, четвер",
    time="19:00",
    image="https://theatre.test/files/hamlet.jpg?itok=abc",
    ticket="/tickets/hamlet-12",
    label="",
):
    return f"""
<div class="views-row event-card">
  <div class="views-field views-field-field-images"><img src="{image}"></div>
  <div class="views-field views-field-field-event-title"><span class="field-content"><a href="{href}">{title}</a></span></div>
  <div class="views-field views-field-field-time"><span class="field-content"><span class="t1">{day}</span><span class="t2">{month}</span><span class="t3">{time}</span></span></div>
  <div class="views-field views-field-field-label"><span class="field-content">{label}</span></div>
  <div class="views-field views-field-nothing"><a href="{ticket}">Квитки</a></div>
</div>"""


def day_page(*listings, calendar=""):
    rows = "".join(listings)
    return f"""
<html><body>
{calendar}
<div id="block-system-main"><div class="view-content">{rows}</div></div>
</body></html>
"""


def calendar_html(future_days, past_days=()):
    items = [f'<li class="past"><a href="/afisha/{d}">{d[-2:]}</a></li>' for d in past_days]
    items += [f'<li class="future"><a href="/afisha/{d}">{d[-2:]}</a></li>' for d in future_days]
    return f'<ul id="afisha-date-list">{"".join(items)}</ul>'


class Router:
    """Maps URL paths to (status, body) and records every request."""

    def __init__(self, routes=None, default=(404, "not found")):
        self.routes = dict(routes or {})
        self.default = default
        self.requests: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request.url.path)
        status, body = self.routes.get(request.url.path, self.default)
        return httpx.Response(status, text=body)

    def calls(self, path: str) -> int:
        return self.requests.count(path)


@pytest.fixture
def router():
    return Router()


@pytest.fixture
def make_fetcher(router):
    from afisha_crawler.fetch.client import BudgetedFetcher

    def _make(**kwargs):
        kwargs.setdefault("retry_delay", 0)
        kwargs.setdefault("max_retries", 1)
        kwargs.setdefault("rate_per_domain", 0)
        return BudgetedFetcher(transport=httpx.MockTransport(router), **kwargs)

    return _make
