from __future__ import annotations

from typing import List, Tuple


# (name, price) pairs seeded into `merch_items` by every store backend.
DEFAULT_CATALOG: List[Tuple[str, int]] = [
    ("t-shirt", 80),
    ("cup", 20),
    ("book", 50),
    ("pen", 10),
    ("powerbank", 200),
    ("hoody", 300),
    ("umbrella", 200),
    ("socks", 10),
    ("wallet", 50),
    ("pink-hoody", 500),
]
