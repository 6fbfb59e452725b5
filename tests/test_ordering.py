import pytest

from pub_export.errors import ConfigurationError
from pub_export.ordering import resolve_order, sort_by_date, unknown_article_ids, validate_selection
from pub_export.types import (
    Article,
    ExportMode,
    ExportRequest,
    OrderMode,
    Publication,
    SortDirection,
)


def _article(article_id: str, published_at: str, title: str | None = None) -> Article:
    return Article(
        id=article_id,
        title=title or article_id,
        published_at=published_at,
        canonical_url=f"https://sample.example.com/p/{article_id}",
        body_markup="<p>body</p>",
    )


def _sample_articles() -> list[Article]:
    return [
        _article("A", "2024-01-01T00:00:00Z"),
        _article("B", "2024-03-01T00:00:00Z"),
        _article("C", "2024-02-01T00:00:00Z"),
    ]


def _request(articles: list[Article], **overrides) -> ExportRequest:
    return ExportRequest(
        publication=Publication(url="https://sample.example.com", title="Sample"),
        articles=articles,
        output_directory="out",
        **overrides,
    )


def test_entire_profile_sorts_by_date() -> None:
    articles = _sample_articles()

    assert resolve_order(articles, _request(articles)) == ["B", "C", "A"]
    assert resolve_order(articles, _request(articles, sort_direction=SortDirection.ASC)) == ["A", "C", "B"]


@pytest.mark.parametrize("direction", [SortDirection.ASC, SortDirection.DESC])
def test_manual_order_is_used_verbatim(direction: SortDirection) -> None:
    articles = _sample_articles()
    request = _request(
        articles,
        mode=ExportMode.SPECIFIC_POSTS,
        selected_article_ids={"A", "C"},
        order_mode=OrderMode.MANUAL,
        manual_order=["C", "A"],
        sort_direction=direction,
    )

    assert resolve_order(articles, request) == ["C", "A"]


def test_specific_posts_by_date_selects_only_the_selection() -> None:
    articles = _sample_articles()
    request = _request(articles, mode=ExportMode.SPECIFIC_POSTS, selected_article_ids={"A", "B"})

    assert resolve_order(articles, request) == ["B", "A"]


def test_ties_stay_title_ascending_in_both_directions() -> None:
    articles = [
        _article("1", "2024-05-01T00:00:00Z", title="beta"),
        _article("2", "2024-05-01T00:00:00Z", title="Alpha"),
        _article("3", "2024-06-01T00:00:00Z", title="Newest"),
        _article("4", "2024-04-01T00:00:00Z", title="Oldest"),
    ]

    desc = [article.title for article in sort_by_date(articles, SortDirection.DESC)]
    asc = [article.title for article in sort_by_date(articles, SortDirection.ASC)]

    assert desc == ["Newest", "Alpha", "beta", "Oldest"]
    assert asc == ["Oldest", "Alpha", "beta", "Newest"]


def test_unparseable_dates_sort_as_oldest() -> None:
    articles = [
        _article("dated", "2024-05-01T00:00:00Z"),
        _article("broken", "sometime last spring"),
        _article("rfc", "Wed, 01 May 2024 12:00:00 GMT"),
    ]

    assert [a.id for a in sort_by_date(articles, SortDirection.DESC)] == ["rfc", "dated", "broken"]
    assert [a.id for a in sort_by_date(articles, SortDirection.ASC)] == ["broken", "dated", "rfc"]


def test_unknown_ids_are_dropped_and_reported() -> None:
    articles = _sample_articles()
    request = _request(articles, mode=ExportMode.SPECIFIC_POSTS, selected_article_ids={"A", "Z"})

    assert resolve_order(articles, request) == ["A"]
    assert unknown_article_ids(articles, request) == ["Z"]
    assert unknown_article_ids(articles, _request(articles)) == []


def test_validate_selection_rejects_empty_selection() -> None:
    request = _request(_sample_articles(), mode=ExportMode.SPECIFIC_POSTS)

    with pytest.raises(ConfigurationError, match="No specific posts selected"):
        validate_selection(request)


@pytest.mark.parametrize(
    "manual_order",
    [["A"], ["A", "C", "B"], ["A", "A", "C"]],
)
def test_validate_selection_requires_manual_permutation(manual_order: list[str]) -> None:
    request = _request(
        _sample_articles(),
        mode=ExportMode.SPECIFIC_POSTS,
        selected_article_ids={"A", "C"},
        order_mode=OrderMode.MANUAL,
        manual_order=manual_order,
    )

    with pytest.raises(ConfigurationError):
        validate_selection(request)


def test_validate_selection_ignores_entire_profile() -> None:
    validate_selection(_request(_sample_articles()))
