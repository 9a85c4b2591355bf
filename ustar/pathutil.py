from __future__ import annotations

import os


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = p.replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return "/".join(parts)


def dir_entry_path(p: str) -> str:
    # Directory entries carry a trailing slash inside the archive
    return norm_path(p) + "/"


def safe_join(outdir: str, arc_path: str) -> str:
    """Join an archive path under ``outdir``; leading slashes are dropped and '..' is refused."""
    rel = norm_path(arc_path)
    if not rel:
        raise ValueError(f"Empty archive path: {arc_path!r}")
    return os.path.join(outdir, *rel.split("/"))
