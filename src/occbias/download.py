"""
Module: download.py
Project: Biodiversity Meets Data (BMD)
Work Package: WP3 - Data harmonisation in Space-Time-Taxonomy, Data gaps and biases
Task: T3.3 - Data gap and bias surfaces

Description:
Requests the occurrence download analysed by the pipeline from the GBIF
API: all Cerambycidae records from Sweden with coordinates. The request is
submitted, its status polled until GBIF has prepared the archive, and the
resulting ZIP is streamed to data/raw.

Notes:
Credentials are read from the environment variables GBIF_USER,
GBIF_PASSWORD and GBIF_EMAIL. No data-quality filters beyond coordinate
availability are applied at download time: the bias assessment needs to
see what is missing, and records are filtered and counted afterwards.
Run with: python -m occbias.download
"""

import logging
import sys
import time
from pathlib import Path
from typing import Dict, Iterable, Optional

import requests

from . import config
from .utils import log, rel, setup_logging

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# GBIF download predicate
# ----------------------------------------------------------------------

def build_predicate(user: str, email: str, taxon_keys: Iterable[int] = (config.TAXON_KEY,),
                    country: str = config.COUNTRY, fmt: str = "DWCA",
                    year_range: Optional[tuple] = None) -> Dict:
    """
    JSON body of a GBIF occurrence download request.

    The predicate combines an OR block over the taxon keys, the country, and
    coordinate availability; year_range=(start, end) adds a year filter.
    """
    keys = [int(k) for k in taxon_keys]
    if not keys:
        raise ValueError("At least one taxon key is required")

    predicates = [
        {
            "type": "or",
            "predicates": [{"type": "equals", "key": "TAXON_KEY", "value": k} for k in keys],
        },
        {"type": "equals", "key": "COUNTRY", "value": country},
        {"type": "equals", "key": "HAS_COORDINATE", "value": "TRUE"},
    ]
    if year_range is not None:
        start, end = year_range
        predicates.append({"type": "greaterThanOrEquals", "key": "YEAR", "value": str(start)})
        predicates.append({"type": "lessThanOrEquals", "key": "YEAR", "value": str(end)})

    return {
        "creator": user,
        "notificationAddresses": [email],
        "sendNotification": True,
        "format": fmt,
        "predicate": {"type": "and", "predicates": predicates},
    }


# ----------------------------------------------------------------------
# Submit, poll, retrieve
# ----------------------------------------------------------------------

def submit_download(predicate: Dict, user: str, password: str, session=requests) -> str:
    """Submit the request and return the GBIF download key."""
    response = session.post(f"{config.GBIF_API}/occurrence/download/request",
                            json=predicate, auth=(user, password))
    if response.status_code == 420:
        raise RuntimeError("Too many active downloads. Wait for some to finish in your GBIF profile.")
    if response.status_code != 201:
        raise RuntimeError(f"Error submitting download: {response.status_code} {response.text}")
    key = response.text.strip()
    logger.info("Download request submitted. Key: %s", key)
    return key


def wait_for_download(key: str, session=requests, interval: float = config.POLL_INTERVAL,
                      max_polls: Optional[int] = None) -> Dict:
    """Poll the download status until SUCCEEDED; raise on FAILED/KILLED or after max_polls."""
    status_url = f"{config.GBIF_API}/occurrence/download/{key}"
    polls = 0
    while True:
        response = session.get(status_url)
        response.raise_for_status()
        status = response.json()
        state = status.get("status")
        logger.info("Download %s status: %s", key, state)
        if state == "SUCCEEDED":
            return status
        if state in ("FAILED", "KILLED", "CANCELLED"):
            raise RuntimeError(f"GBIF download {key} ended with status {state}")
        polls += 1
        if max_polls is not None and polls >= max_polls:
            raise TimeoutError(f"GBIF download {key} not ready after {polls} status checks")
        time.sleep(interval)


def fetch_archive(key: str, output_file, session=requests) -> Path:
    """Stream the prepared ZIP archive to output_file."""
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    file_url = f"{config.GBIF_API}/occurrence/download/request/{key}.zip"
    with session.get(file_url, stream=True) as r:
        r.raise_for_status()
        with open(output_file, "wb") as f:
            for chunk in r.iter_content(chunk_size=8192):
                if chunk:
                    f.write(chunk)
    return output_file


def download_occurrences(output_file=config.OCCURRENCE_FILE, user: Optional[str] = config.GBIF_USER,
                         password: Optional[str] = config.GBIF_PASSWORD,
                         email: Optional[str] = config.GBIF_EMAIL, session=requests) -> Path:
    """Run the whole download: predicate, submission, polling, retrieval."""
    if not user or not password or not email:
        raise ValueError("GBIF credentials not set. Please define GBIF_USER, GBIF_PASSWORD, GBIF_EMAIL.")

    predicate = build_predicate(user, email)
    key = submit_download(predicate, user, password, session=session)
    wait_for_download(key, session=session)
    path = fetch_archive(key, output_file, session=session)
    log(f"Saved GBIF DwC-A archive to: {rel(path)}")
    return path


def main() -> int:
    setup_logging("download_gbif")
    log("=== GBIF download started ===")
    try:
        download_occurrences()
    except (ValueError, RuntimeError, TimeoutError, requests.RequestException) as exc:
        log(f"Download failed: {exc}")
        return 1
    log("=== GBIF download completed ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
