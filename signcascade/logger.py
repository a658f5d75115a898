from functools import lru_cache
from rich.console import Console


@lru_cache(maxsize=1)
def get_console() -> Console:
    """Shared console for every pipeline component"""
    return Console(log_path=False)


def log_banner(title: str, style: str = "bold blue") -> None:
    """Log a section banner like ``====== TITLE ======``"""
    get_console().log(f"\n[{style}]====== {title.upper()} ======")
