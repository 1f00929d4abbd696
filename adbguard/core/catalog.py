"""
Risk catalogue: package name -> removal risk.

The catalogue is cached as JSON under the data directory and refreshed
from the Universal Android Debloater list, whose entries look like
{"com.x": {"list": "Oem", "removal": "Recommended", ...}}.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import requests

from .config import CATALOG_FILE, CATALOG_TIMEOUT, UAD_LIST_URL
from .errors import DownloadError
from .models import RiskLevel
from .validators import PACKAGE_NAME_RE

logger = logging.getLogger(__name__)

RiskCatalog = Dict[str, RiskLevel]

_LEVELS = {level.value: level for level in RiskLevel}


def _level(value: Any) -> Optional[RiskLevel]:
    if isinstance(value, Mapping):
        value = value.get("removal")
    if not isinstance(value, str):
        return None
    return _LEVELS.get(value.strip().lower())


def parse_catalog(data: Any) -> RiskCatalog:
    """
    Accept the upstream list or the cached form ({"com.x": "recommended"}).
    Entries with a malformed name or an unknown removal value are skipped.
    """
    if not isinstance(data, Mapping):
        raise ValueError("Risk catalogue must be a JSON object")
    catalog = {}
    for name, entry in data.items():
        level = _level(entry)
        if level is None or not PACKAGE_NAME_RE.fullmatch(name):
            continue
        catalog[name] = level
    return catalog


def load_catalog(path: Optional[Path] = None) -> RiskCatalog:
    """Read the cached catalogue; an absent or unreadable cache is empty."""
    path = Path(path) if path else CATALOG_FILE
    if not path.exists():
        logger.info("No risk catalogue at %s; every package defaults to advanced", path)
        return {}
    try:
        catalog = parse_catalog(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable risk catalogue %s: %s", path, e)
        return {}
    logger.info("Loaded %d risk entries from %s", len(catalog), path)
    return catalog


def save_catalog(catalog: Mapping[str, RiskLevel], path: Optional[Path] = None):
    path = Path(path) if path else CATALOG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {name: level.value for name, level in sorted(catalog.items())}
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def fetch_catalog(http: Optional[requests.Session] = None, url: str = UAD_LIST_URL,
                  path: Optional[Path] = None) -> RiskCatalog:
    """Download the upstream list, cache it and return it."""
    http = http if http is not None else requests.Session()
    try:
        response = http.get(url, timeout=CATALOG_TIMEOUT)
    except requests.RequestException as e:
        raise DownloadError("unreachable", f"Risk catalogue download failed ({e})")
    try:
        if not response.ok:
            raise DownloadError("unreachable", f"HTTP error! status: {response.status_code}")
        try:
            catalog = parse_catalog(response.json())
        except ValueError as e:
            raise DownloadError("wrong_content_type", f"Risk catalogue is not valid JSON ({e})")
    finally:
        response.close()

    if not catalog:
        raise DownloadError("wrong_content_type", "Risk catalogue has no usable entries")
    try:
        save_catalog(catalog, path)
    except OSError as e:
        logger.warning("Could not cache the risk catalogue: %s", e)
    return catalog
