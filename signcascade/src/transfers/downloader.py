import shutil
import time
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from signcascade.logger import get_console
from signcascade.src.core.errors import AcquisitionFailure

console = get_console()

DOWNLOAD_ATTEMPTS = 3
RETRY_DELAY = 2
CHUNK_SIZE = 1024 * 1024  # 1MB chunks


def is_remote(source: str) -> bool:
    return urlparse(source).scheme in ("http", "https")


def _local_path(source: str) -> Path:
    parsed = urlparse(source)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(source).expanduser()


def download_file(
    source: str,
    dest: Path,
    attempts: int = DOWNLOAD_ATTEMPTS,
    retry_delay: float = RETRY_DELAY,
    timeout: float = 60,
) -> Path:
    """Fetch ``source`` (http(s) URL, file:// URL or local path) into ``dest``."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    if not is_remote(source):
        local = _local_path(source)
        if not local.is_file():
            raise AcquisitionFailure(f"Source file not found: {local}")
        if local.resolve() != dest.resolve():
            shutil.copyfile(local, dest)
        console.log(f"[green]Copied local file:[/] {local} -> {dest}")
        return dest

    last_error = None
    for attempt in range(1, attempts + 1):
        console.log(f"[yellow]Downloading {dest.name} (attempt {attempt}/{attempts})...")
        try:
            with requests.get(source, stream=True, timeout=timeout) as response:
                response.raise_for_status()
                with open(dest, "wb") as f:
                    for data in response.iter_content(chunk_size=CHUNK_SIZE):
                        if data:
                            f.write(data)
            console.log(f"[green]Download completed:[/] {dest}")
            return dest
        except requests.RequestException as e:
            last_error = e
            console.log(f"[yellow]Download attempt {attempt} failed:[/] {e}")
            if dest.exists():
                dest.unlink()
            if attempt < attempts:
                time.sleep(retry_delay)

    raise AcquisitionFailure(
        f"Failed to download {dest.name} after {attempts} attempts: {last_error}"
    )


def validate_file(path: Path, min_size: int = 10) -> int:
    """Check the file exists and has at least ``min_size`` bytes; return its size."""
    path = Path(path)
    if not path.is_file():
        raise AcquisitionFailure(f"File does not exist: {path}")
    size = path.stat().st_size
    if size < min_size:
        raise AcquisitionFailure(f"File too small ({size} bytes): {path}")
    console.log(f"[green]File validated:[/] {path} ({size} bytes)")
    return size
