from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

from .content import Post
from .utils import slugify


def listing_order(posts: Iterable[Post]) -> list[Post]:
    """Order posts for listings and the feed: newest first, slug ascending on ties.

    Sorting twice relies on sort stability: the slug pass fixes the tie-break,
    the date pass puts newest first without disturbing it.
    """
    by_slug = sorted(posts, key=lambda p: p.slug)
    return sorted(by_slug, key=lambda p: p.date, reverse=True)


class PostCollection(Sequence[Post]):
    """Posts in listing order with grouping helpers used by aggregate pages."""

    def __init__(self, posts: Iterable[Post]):
        self._posts = listing_order(posts)

    def __iter__(self) -> Iterator[Post]:
        return iter(self._posts)

    def __len__(self) -> int:
        return len(self._posts)

    def __getitem__(self, item):
        return self._posts[item]

    def tags(self) -> dict[str, list[Post]]:
        """Map tag slug to the posts carrying it, tags sorted by slug.

        Tags that slugify to the same value ("Python", "python") share one
        listing; the first spelling seen in listing order is kept as the label.
        """
        index: dict[str, list[Post]] = {}
        for post in self._posts:
            for tag in post.tags:
                key = slugify(tag)
                if key:
                    index.setdefault(key, []).append(post)
        return dict(sorted(index.items()))

    def tag_labels(self) -> dict[str, str]:
        labels: dict[str, str] = {}
        for post in self._posts:
            for tag in post.tags:
                labels.setdefault(slugify(tag), tag)
        return labels

    def by_year(self) -> list[tuple[int, list[Post]]]:
        """Group posts by publication year, newest year first."""
        years: dict[int, list[Post]] = {}
        for post in self._posts:
            years.setdefault(post.date.year, []).append(post)
        return sorted(years.items(), reverse=True)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"PostCollection({len(self._posts)} posts)"
