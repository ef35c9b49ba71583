from typing import Iterable, List


def row_to_dict(row) -> dict:
    """Plain dict of a model row's columns, ready for FastAPI's encoder."""
    if row is None:
        return None
    return {c.name: getattr(row, c.name) for c in row.__table__.columns}


def rows_to_list(rows: Iterable) -> List[dict]:
    return [row_to_dict(r) for r in rows]
