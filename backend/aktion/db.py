"""Supabase result helpers"""


def first_row(result) -> dict | None:
    """Return the first row of a PostgREST response, or None when it is empty."""
    data = result.data
    if isinstance(data, list):
        return data[0] if data else None
    return data or None
