from unittest.mock import MagicMock

import pytest

from gcmdlets.core import (
    FetchStatus,
    PermissionDeniedError,
    ResourceConflictError,
    ReadError,
    ResourceNotFoundError,
)
from gcmdlets.paging import (
    CancellationToken,
    NullResponsePolicy,
    execute,
    fetch,
    get_or_raise,
    iter_items,
    iter_pages,
)


class FakeRequest:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error

    def execute(self):
        if self.error is not None:
            raise self.error
        return self.response


class FakeListing:
    """Serves pages keyed by the token they are requested with."""

    def __init__(self, pages):
        self.pages = pages
        self.requested = []

    def __call__(self, page_token):
        self.requested.append(page_token)
        return FakeRequest(self.pages[page_token])


@pytest.fixture
def four_pages():
    return FakeListing(
        {
            None: {"datasets": [{"id": "d1"}, {"id": "d2"}], "nextPageToken": "A"},
            "A": {"datasets": [{"id": "d3"}], "nextPageToken": "B"},
            "B": {"datasets": [{"id": "d4"}], "nextPageToken": "C"},
            "C": {"datasets": [{"id": "d5"}]},
        }
    )


def test_iter_items_follows_tokens_until_absent(four_pages):
    items = list(iter_items(four_pages, "datasets", "datasets of project 'p'"))
    assert [i["id"] for i in items] == ["d1", "d2", "d3", "d4", "d5"]
    assert four_pages.requested == [None, "A", "B", "C"]


def test_iter_items_with_label_filter_yields_union_in_order():
    service = MagicMock()
    pages = [
        {"datasets": [{"id": "eng1"}], "nextPageToken": "A"},
        {"datasets": [{"id": "eng2"}], "nextPageToken": "B"},
        {"datasets": [{"id": "eng3"}], "nextPageToken": "C"},
        {"datasets": [{"id": "eng4"}]},
    ]
    service.datasets.return_value.list.return_value.execute.side_effect = pages

    def make_request(token):
        return service.datasets().list(projectId="p", filter="labels.dept:eng", pageToken=token)

    items = list(iter_items(make_request, "datasets", "datasets"))

    assert [i["id"] for i in items] == ["eng1", "eng2", "eng3", "eng4"]
    tokens = [c.kwargs["pageToken"] for c in service.datasets.return_value.list.call_args_list]
    assert tokens == [None, "A", "B", "C"]
    assert all(
        c.kwargs["filter"] == "labels.dept:eng"
        for c in service.datasets.return_value.list.call_args_list
    )


def test_iter_items_is_lazy(four_pages):
    items = iter_items(four_pages, "datasets", "datasets")
    assert four_pages.requested == []
    assert next(items)["id"] == "d1"
    assert four_pages.requested == [None]


def test_missing_items_field_is_an_empty_page():
    listing = FakeListing(
        {None: {"nextPageToken": "A"}, "A": {"datasets": [{"id": "d1"}]}}
    )
    pages = list(iter_pages(listing, "datasets", "datasets"))
    assert [p.items for p in pages] == [[], [{"id": "d1"}]]
    assert pages[0].next_page_token == "A"
    assert pages[1].next_page_token is None


def test_empty_response_yields_nothing():
    listing = FakeListing({None: {}})
    assert list(iter_items(listing, "datasets", "datasets")) == []
    assert listing.requested == [None]


def test_cancellation_between_pages_stops_requests(four_pages):
    cancel = CancellationToken()
    seen = []
    for item in iter_items(four_pages, "datasets", "datasets", cancel=cancel):
        seen.append(item["id"])
        if item["id"] == "d3":
            cancel.cancel()

    assert seen == ["d1", "d2", "d3"]
    assert four_pages.requested == [None, "A"]


def test_repeated_token_stops_listing():
    listing = FakeListing(
        {
            None: {"items": [1], "nextPageToken": "A"},
            "A": {"items": [2], "nextPageToken": "B"},
            "B": {"items": [3], "nextPageToken": "A"},
        }
    )
    assert list(iter_items(listing, "items", "things")) == [1, 2, 3]
    assert listing.requested == [None, "A", "B"]


def test_custom_token_field():
    listing = FakeListing(
        {None: {"rows": [1], "pageToken": "X"}, "X": {"rows": [2]}}
    )
    rows = list(iter_items(listing, "rows", "rows", token_field="pageToken"))
    assert rows == [1, 2]


def test_null_response_warns_and_ends_listing(caplog):
    listing = FakeListing({None: {"items": [1], "nextPageToken": "A"}, "A": None})
    assert list(iter_items(listing, "items", "buckets of project 'p'")) == [1]
    assert "buckets of project 'p'" in caplog.text


def test_null_response_abort_raises_read_error():
    listing = FakeListing({None: None})
    with pytest.raises(ReadError) as excinfo:
        list(
            iter_items(
                listing, "items", "topics of project 'p'", on_null=NullResponsePolicy.ABORT
            )
        )
    assert excinfo.value.scope == "topics of project 'p'"


def test_http_error_during_listing_is_translated(http_error):
    def make_request(token):
        return FakeRequest(error=http_error(403))

    with pytest.raises(PermissionDeniedError) as excinfo:
        list(iter_items(make_request, "items", "datasets of project 'p'"))
    assert str(excinfo.value) == "You do not have permission to list datasets of project 'p'."
    assert excinfo.value.scope == "datasets of project 'p'"
    assert excinfo.value.resource is None


def test_listing_not_found_names_the_listing_once(http_error):
    def make_request(token):
        return FakeRequest(error=http_error(404, "Not Found"))

    with pytest.raises(ResourceNotFoundError) as excinfo:
        list(iter_items(make_request, "subscriptions", "subscriptions of topic 't'"))
    message = str(excinfo.value)
    assert message == "Could not list subscriptions of topic 't': Not Found"
    assert "''" not in message


def test_fetch_found():
    result = fetch(FakeRequest({"id": "x"}), "x", "p")
    assert result.status is FetchStatus.FOUND
    assert result.found
    assert result.value == {"id": "x"}


def test_fetch_not_found_is_an_outcome(http_error):
    result = fetch(FakeRequest(error=http_error(404)), "ds1", "my-project")
    assert result.status is FetchStatus.NOT_FOUND
    assert isinstance(result.error, ResourceNotFoundError)


def test_fetch_other_errors_are_failed(http_error):
    result = fetch(FakeRequest(error=http_error(403)), "ds1", "my-project")
    assert result.status is FetchStatus.FAILED
    assert isinstance(result.error, PermissionDeniedError)


def test_get_or_raise_names_resource_and_scope(http_error):
    with pytest.raises(ResourceNotFoundError) as excinfo:
        get_or_raise(FakeRequest(error=http_error(404)), "ds1", "my-project")
    assert excinfo.value.resource == "ds1"
    assert excinfo.value.scope == "my-project"
    assert "ds1" in str(excinfo.value)
    assert "my-project" in str(excinfo.value)


def test_execute_overrides_message(http_error):
    with pytest.raises(ResourceConflictError, match="already exists"):
        execute(
            FakeRequest(error=http_error(409)),
            "t1",
            "p",
            messages={ResourceConflictError: "Topic 't1' already exists."},
        )
