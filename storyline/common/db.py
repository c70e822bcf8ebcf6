from contextlib import asynccontextmanager, contextmanager
from functools import partial
from typing import Any, AsyncIterator, Iterator
import json
import os

import psycopg
from psycopg import Connection
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from dotenv import load_dotenv

load_dotenv()

APPLICATION_NAME = "storyline"

_dumps = partial(json.dumps, default=str)


def conninfo() -> str:
    user = os.environ["POSTGRES_USER"]
    password = os.environ["POSTGRES_PASSWORD"]
    db = os.environ["POSTGRES_DB"]
    host = os.environ["POSTGRES_HOST"]
    port = os.environ["POSTGRES_PORT"]

    return f"postgresql://{user}:{password}@{host}:{port}/{db}?application_name={APPLICATION_NAME}"


@asynccontextmanager
async def get_conn_async() -> AsyncIterator[psycopg.AsyncConnection[Any]]:
    conn = await psycopg.AsyncConnection.connect(conninfo(), row_factory=dict_row)
    try:
        yield conn
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    finally:
        await conn.close()


@contextmanager
def get_conn() -> Iterator[Connection[Any]]:
    """One transaction per block: commit on clean exit, roll back on any error."""
    conn = psycopg.Connection.connect(conninfo(), row_factory=dict_row)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def lock_key(conn: Connection[Any], key: str) -> None:
    # Held until the surrounding transaction ends.
    conn.execute("SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))", (key,))


def jsonb(value: Any) -> Jsonb:
    # uuid and datetime values are stored as their string form.
    return Jsonb(value, dumps=_dumps)
