"""
Pytest configuration for django-criteria tests.
"""

import os
import sys

import pytest

# Add the package root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


MODELS = {
    "Users": {
        "table": "users",
        "fields": {
            "username": {"type": "Text"},
            "email": {"type": "Email"},
            "password": {"type": "Password"},
            "first_name": {"type": "Text"},
            "last_name": {"type": "Text"},
            "avatar": {"type": "Image"},
            "bio": {"type": "BigText"},
            "deleted_at": {"type": "DateTime"},
        },
        "displayColumns": ["first_name", "last_name"],
    },
    "Movies": {
        "table": "movies",
        "fields": {
            "name": {"type": "Text"},
            "synopsis": {"type": "BigText"},
            "year": {"type": "Integer"},
            "rating": {"type": "Float"},
            "genres": {"type": "MultiEnum", "options": {"action": "Action", "drama": "Drama", "comedy": "Comedy"}},
            "poster": {"type": "Image"},
            "created_by": {"type": "RelatedRecord", "relatedModel": "Users", "displayFieldName": "created_by_name"},
            "deleted_at": {"type": "DateTime"},
        },
        "relationships": ["movies_movie_quotes"],
        "displayColumns": ["name"],
    },
    "Movie_Quotes": {
        "table": "movie_quotes",
        "fields": {
            "quote": {"type": "Text"},
            "is_favorite": {"type": "Boolean"},
            "status": {"type": "Enum", "options": ["draft", "published"]},
            "created_at": {"type": "DateTime"},
            "deleted_at": {"type": "DateTime"},
        },
        "relationships": ["movies_movie_quotes"],
        "displayColumns": ["quote"],
    },
}

RELATIONSHIPS = {
    "movies_movie_quotes": {
        "type": "OneToMany",
        "modelOne": "Movies",
        "modelMany": "Movie_Quotes",
        "additionalFields": {"position": {"type": "Integer"}},
    },
}


def pytest_configure():
    """Configure Django settings before tests run."""
    from django.conf import settings

    if not settings.configured:
        settings.configure(
            SECRET_KEY="test-secret-key",
            DEBUG=True,
            INSTALLED_APPS=[
                "django.contrib.contenttypes",
                "django.contrib.auth",
                "django_criteria",
            ],
            DATABASES={
                "default": {
                    "ENGINE": "django.db.backends.sqlite3",
                    "NAME": ":memory:",
                }
            },
            DEFAULT_AUTO_FIELD="django.db.models.BigAutoField",
            USE_TZ=True,
            DJANGO_CRITERIA={
                "DEFAULT_PAGE_SIZE": 20,
                "MAX_PAGE_SIZE": 1000,
                "MODELS": MODELS,
                "RELATIONSHIPS": RELATIONSHIPS,
            },
        )

    import django

    django.setup()


@pytest.fixture
def registry():
    from django_criteria.schema import SchemaRegistry

    return SchemaRegistry.from_metadata(models=MODELS, relationships=RELATIONSHIPS)


@pytest.fixture
def movies(registry):
    return registry.get_model_schema("Movies")


@pytest.fixture
def quotes(registry):
    return registry.get_model_schema("Movie_Quotes")


@pytest.fixture
def users(registry):
    return registry.get_model_schema("Users")


@pytest.fixture(autouse=True)
def fresh_criteria_settings(settings):
    """Install the sample metadata and drop cached settings so per-test overrides take effect."""
    from django_criteria.conf import criteria_settings

    settings.DJANGO_CRITERIA = {
        "DEFAULT_PAGE_SIZE": 20,
        "MAX_PAGE_SIZE": 1000,
        "MODELS": MODELS,
        "RELATIONSHIPS": RELATIONSHIPS,
    }
    criteria_settings.reload()
    yield
    criteria_settings.reload()


SAMPLE_TABLES = [
    """CREATE TABLE users (
        id INTEGER PRIMARY KEY, username TEXT, email TEXT, password TEXT,
        first_name TEXT, last_name TEXT, avatar TEXT, bio TEXT, deleted_at TEXT
    )""",
    """CREATE TABLE movies (
        id INTEGER PRIMARY KEY, name TEXT, synopsis TEXT, year INTEGER, rating REAL,
        genres TEXT, poster TEXT, created_by INTEGER, deleted_at TEXT
    )""",
    """CREATE TABLE movie_quotes (
        id INTEGER PRIMARY KEY, quote TEXT, is_favorite INTEGER, status TEXT,
        created_at TEXT, deleted_at TEXT
    )""",
    """CREATE TABLE rel_1_movies_M_movie_quotes (
        id INTEGER PRIMARY KEY, one_movies_id INTEGER, many_movie_quotes_id INTEGER,
        position INTEGER, created_at TEXT, updated_at TEXT, deleted_at TEXT
    )""",
]

SAMPLE_ROWS = [
    "INSERT INTO users VALUES (1, 'ripley', 'ripley@example.com', 'x', 'Ellen', 'Ripley', NULL, NULL, NULL)",
    "INSERT INTO users VALUES (2, 'deckard', 'deckard@example.com', 'y', 'Rick', 'Deckard', NULL, NULL, NULL)",
    """INSERT INTO movies VALUES
        (1, 'Alien', 'In space', 1979, 8.5, '["action","drama"]', NULL, 1, NULL),
        (2, 'Blade Runner', 'Replicants', 1982, 8.1, '["drama"]', NULL, 2, NULL),
        (3, 'Spaceballs', 'Parody', 1987, 7.1, '["comedy"]', NULL, NULL, '2020-01-01 00:00:00')""",
    """INSERT INTO movie_quotes VALUES
        (1, 'In space no one can hear you scream', 1, 'published', '2024-01-01 10:00:00', NULL),
        (2, 'Game over, man', 0, 'published', '2024-01-02 10:00:00', NULL),
        (3, 'Like tears in rain', 1, 'published', '2024-01-03 10:00:00', NULL),
        (4, 'May the Schwartz be with you', 0, 'draft', '2024-01-04 10:00:00', NULL),
        (5, 'Deleted quote', 0, 'draft', '2024-01-05 10:00:00', '2024-02-01 00:00:00')""",
    """INSERT INTO rel_1_movies_M_movie_quotes VALUES
        (1, 1, 1, 1, NULL, NULL, NULL),
        (2, 1, 2, 2, NULL, NULL, NULL),
        (3, 2, 3, 1, NULL, NULL, NULL),
        (4, 3, 4, 1, NULL, NULL, NULL)""",
]


@pytest.fixture
def sample_db(db):
    """Movies, quotes and users tables with a handful of rows."""
    from django.db import connection

    with connection.cursor() as cursor:
        for statement in SAMPLE_TABLES + SAMPLE_ROWS:
            cursor.execute(statement)
    yield connection
    with connection.cursor() as cursor:
        for table in ("rel_1_movies_M_movie_quotes", "movie_quotes", "movies", "users"):
            cursor.execute(f"DROP TABLE IF EXISTS {table}")
