from typing import Optional, Tuple


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_paging(page, page_size, max_page_size: int = 100) -> Tuple[int, int]:
    """Clamp page/page_size (ints or query-string values) to sane bounds."""
    p = _as_int(page)
    ps = _as_int(page_size)
    p = p if p and p > 0 else 1
    ps = ps if ps and ps > 0 else 20
    ps = min(ps, max_page_size)
    return p, ps
