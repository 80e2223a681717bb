"""Path-segment matching shared by the sanitizer and the classifier.

A marker matches when a path segment, or a hyphen/underscore separated word
inside one, starts with it:

    path_has_marker("/api/v1/auth/reset-password", "password")  -> True
    path_has_marker("/api/v1/users/me/keys", "key")             -> True
    path_has_marker("/api/v1/monkeys", "key")                   -> False
"""

from __future__ import annotations

import re
from functools import lru_cache


@lru_cache(maxsize=64)
def _marker_pattern(marker: str) -> re.Pattern[str]:
    word = re.escape(marker.strip("/").lower())
    return re.compile(rf"(?:^|[/_-]){word}")


def path_has_marker(path: str, marker: str) -> bool:
    return _marker_pattern(marker).search(path.lower()) is not None
