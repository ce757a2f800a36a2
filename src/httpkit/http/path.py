"""
URL path canonicalization used by the router's fixed-path redirect.

    clean_path("")              → "/"
    clean_path("a//b")          → "/a/b"
    clean_path("/a/./b/")       → "/a/b/"
    clean_path("/a/b/../c")     → "/a/c"
    clean_path("/../x")         → "/x"
    clean_path("/a/.")          → "/a/"

Rules:
1. Always rooted: a leading "/" is added if missing.
2. Repeated slashes collapse into one.
3. "." segments are dropped.
4. ".." removes the segment before it; at the root it is dropped.
5. A trailing slash survives (a trailing "." counts as one).
"""


def clean_path(p: str) -> str:
    """Return the canonical form of URL path `p`."""
    if not p:
        return "/"

    trailing = len(p) > 1 and (p.endswith("/") or p.endswith("/."))

    parts = []
    for segment in p.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)

    cleaned = "/" + "/".join(parts)
    if trailing and cleaned != "/":
        cleaned += "/"
    return cleaned
