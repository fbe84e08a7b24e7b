"""
Sample change-event generator for demos and local dashboards.

Producers are simulated with inconsistent declared metadata on purpose,
the same way real watchers sometimes report it; the classifier corrects it.
"""

import random
import string
from typing import Any, Dict, Iterator, List, Optional

from .config import SAMPLE_MAC_ADDRESSES
from .models import CHANGE_KINDS, FILE_TYPES, now_ms

SAMPLE_EXTENSIONS = ['.txt', '.jpg', '.mp4', '.mp3', '.js', '.zip', '.pdf', '.png', '.ts', '.doc']
DAY_MS = 24 * 60 * 60 * 1000


def generate_sample_event(mac_address: str, timestamp: int,
                          rng: Optional[random.Random] = None) -> Dict[str, Any]:
    rng = rng or random
    change_kind = rng.choice(CHANGE_KINDS)
    directory = f"/home/user{rng.randrange(5)}/documents"
    token = ''.join(rng.choice(string.ascii_lowercase + string.digits) for _ in range(6))

    if change_kind in ('add-dir', 'remove-dir'):
        file_name = f"folder_{token}"
        extension = ''
    else:
        extension = rng.choice(SAMPLE_EXTENSIONS)
        file_name = f"sample_file_{token}{extension}"

    return {
        'filePath': f"{directory}/{file_name}",
        'fileName': file_name,
        'fileExtension': extension,
        'directory': directory,
        'fileType': rng.choice(FILE_TYPES),
        'category': 'other',
        'changeType': change_kind,
        'timestamp': timestamp,
        'size': rng.randrange(1000, 1_001_000),  # 1KB to 1MB
        'isDirectory': False,
        'clientMacAddress': mac_address,
    }


def generate_sample_events(count: int, days: int = 7, mac_addresses: Optional[List[str]] = None,
                           seed: Optional[int] = None) -> Iterator[Dict[str, Any]]:
    """Yield ``count`` payloads spread uniformly over the last ``days`` days, oldest first."""
    rng = random.Random(seed)
    macs = mac_addresses or SAMPLE_MAC_ADDRESSES
    now = now_ms()
    timestamps = sorted(now - rng.randrange(max(days, 1) * DAY_MS) for _ in range(count))
    for ts in timestamps:
        yield generate_sample_event(rng.choice(macs), ts, rng)
