"""
Library example showing cascade persist, generated keys flowing into
foreign keys, many-to-many synchronization and orphan removal on SQLite.
"""

from __future__ import annotations

from typing import Any, Dict, List

from emberorm.drivers import SQLDriver
from emberorm.persistence import Session

from .models import Book, Genre, Writer


def bootstrap_session(dsn: str = "sqlite:///:memory:") -> Session:
    driver = SQLDriver.from_dsn(dsn)
    driver.create_schema(Writer, Genre, Book)
    return Session(driver)


def seed_sample_data(session: Session) -> Dict[str, List[Dict[str, Any]]]:
    sci_fi = Genre(name="Sci-Fi")
    magical_realism = Genre(name="Magical Realism")
    fantasy = Genre(name="Fantasy")

    # Adding to writer.books sets each book's author.
    writers = [
        Writer(
            name="Octavia Butler",
            country="USA",
            books=[
                Book(title="Kindred", published=True, genres=[sci_fi]),
                Book(title="Fledgling", published=False, genres=[fantasy]),
            ],
        ),
        Writer(
            name="Haruki Murakami",
            country="Japan",
            books=[Book(title="Kafka on the Shore", published=True, genres=[magical_realism, fantasy])],
        ),
    ]

    with session.transaction():
        session.persist(*writers)

    books = [book for writer in writers for book in writer.books]
    return {
        "writers": [w.to_dict() for w in writers],
        "genres": [g.to_dict() for g in (sci_fi, magical_realism, fantasy)],
        "books": [b.to_dict() for b in books],
    }


def fetch_books_with_authors(session: Session) -> List[Dict[str, Any]]:
    result: List[Dict[str, Any]] = []
    for book in session.find(Book, {"published": True}):
        author = book.author
        if not author.is_initialized():
            author.init()
        result.append(
            {
                "title": book.title,
                "author": author.name,
                "genres": sorted(g.name for g in book.genres.load_items()),
            }
        )
    return result


def retire_book(session: Session, writer_name: str, title: str) -> bool:
    """
    Drop ``title`` from the writer's list; orphan removal deletes the row.
    """
    writer = session.find_one(Writer, {"name": writer_name})
    if writer is None:
        return False
    for book in writer.books.load_items():
        if book.title == title:
            writer.books.remove(book)
            session.flush()
            return True
    return False


def run_demo(dsn: str = "sqlite:///:memory:") -> List[Dict[str, Any]]:
    session = bootstrap_session(dsn)
    try:
        seed_sample_data(session)
        session.clear()
        return fetch_books_with_authors(session)
    finally:
        session.close()


if __name__ == "__main__":
    feed = run_demo("sqlite:///library_demo.db")
    for entry in feed:
        print(f"{entry['title']} by {entry['author']} [{', '.join(entry['genres'])}]")
