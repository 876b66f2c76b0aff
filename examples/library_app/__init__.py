from .demo import (  # noqa: F401
    bootstrap_session,
    fetch_books_with_authors,
    retire_book,
    run_demo,
    seed_sample_data,
)

__all__ = [
    "bootstrap_session",
    "seed_sample_data",
    "run_demo",
    "fetch_books_with_authors",
    "retire_book",
]
