"""
Data models for the emberorm library example.
"""

from __future__ import annotations

from emberorm.core import (
    BooleanField,
    ForeignKey,
    ManyToManyField,
    Model,
    OneToMany,
    StringField,
    VersionField,
)


class Writer(Model):
    name = StringField(nullable=False, max_length=120)
    country = StringField(nullable=True)
    books = OneToMany("Book", mapped_by="author", orphan_removal=True)


class Genre(Model):
    name = StringField(nullable=False, unique=True, max_length=80)
    books = ManyToManyField("Book", mapped_by="genres")


class Book(Model):
    title = StringField(nullable=False, max_length=200)
    published = BooleanField(default=False)
    version = VersionField()
    author = ForeignKey(Writer)
    genres = ManyToManyField(Genre)
