from typing import Tuple


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def normalize_paging(page: int, page_size: int, max_page_size: int = MAX_PAGE_SIZE) -> Tuple[int, int]:
    """Clamp listing paging to ``(page >= 1, 1 <= page_size <= max_page_size)``."""
    p = page if page and page > 0 else 1
    ps = page_size if page_size and page_size > 0 else DEFAULT_PAGE_SIZE
    return p, min(ps, max_page_size)


def page_offset(page: int, page_size: int) -> int:
    return (page - 1) * page_size
