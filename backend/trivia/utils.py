import time
from typing import Any, Dict, Iterable, List


def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def format_time(milliseconds: int) -> str:
    """Render a duration as ``MM:SS.cc``."""
    total_seconds = milliseconds // 1000
    minutes = total_seconds // 60
    seconds = total_seconds % 60
    centiseconds = (milliseconds % 1000) // 10
    return f"{minutes:02d}:{seconds:02d}.{centiseconds:02d}"


def sort_leaderboard(scores: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # Higher score first, faster completion breaks ties.
    return sorted(scores, key=lambda s: (-s.get("score", 0), s.get("time", 0)))
