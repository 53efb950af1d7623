import pytest

from statuskeeper.paging import ServiceStatusParams


@pytest.mark.parametrize(
    ("params", "events_page", "events_page_size", "results_page", "results_page_size"),
    [
        (ServiceStatusParams(), 0, 0, 0, 0),
        (ServiceStatusParams().with_events(2, 7), 2, 7, 0, 0),
        (ServiceStatusParams().with_events(4, 3), 4, 3, 0, 0),
        (ServiceStatusParams().with_results(1, 20), 0, 0, 1, 20),
        (ServiceStatusParams().with_results(2, 10).with_events(3, 50), 3, 50, 2, 10),
    ],
    ids=[
        "empty-params",
        "with-events-page-2-size-7",
        "with-events-page-4-size-3",
        "with-results-page-1-size-20",
        "with-results-page-2-size-10-events-page-3-size-50",
    ],
)
def test_service_status_params(params, events_page, events_page_size, results_page, results_page_size):
    assert params.events_page == events_page
    assert params.events_page_size == events_page_size
    assert params.results_page == results_page
    assert params.results_page_size == results_page_size


def test_with_methods_return_same_instance():
    params = ServiceStatusParams()
    assert params.with_events(1, 2) is params
    assert params.with_results(3, 4) is params


def test_later_call_overrides_earlier_one():
    params = ServiceStatusParams().with_results(1, 20).with_results(2, 10)
    assert (params.results_page, params.results_page_size) == (2, 10)