import os
import uuid
from urllib.parse import parse_qs, urlparse


def is_plain_name(value):
    """True if `value` is a single path component that stays inside its directory."""
    if not value or value in (".", ".."):
        return False
    if "/" in value or os.sep in value or (os.altsep and os.altsep in value):
        return False
    return not os.path.isabs(value)


def resolve_filename(url, query_param, postfix, image_format):
    """
    Pick the output file name for a URL.

    If `query_param` is set and the URL carries it with a non-empty value
    that is a plain file name, that value is the base name; otherwise a
    random UUID is. Names taken from the query string are not checked for
    collisions.
    """
    base = ""
    if query_param:
        try:
            values = parse_qs(urlparse(url).query).get(query_param)
        except ValueError:
            values = None
        if values and is_plain_name(values[0]):
            base = values[0]
    if not base:
        base = str(uuid.uuid4())
    return f"{base}{postfix}.{image_format}"
