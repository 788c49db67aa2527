"""
Public CSV export reader.

Google Sheets serves ``/export?format=csv&gid=...`` for link-shared tabs; the
accounts and teachers sheets and the fallback score source are read this way.
"""
import csv
import io
import logging
from typing import List

import backoff
import pandas as pd
import requests

from dashboard.utils import SheetFormatError, looks_like_html

logger = logging.getLogger(__name__)

CSV_ACCEPT = "text/csv,text/plain;q=0.9,*/*;q=0.8"


def parse_csv_text(text: str) -> List[List[str]]:
    """CSV text → 2D list of strings; every cell kept as text, blanks as ""."""
    if not text.strip():
        return []
    # Ragged rows: size the frame by the widest record, quoted newlines included
    width = max((len(record) for record in csv.reader(io.StringIO(text))), default=1)
    df = pd.read_csv(
        io.StringIO(text),
        header=None,
        names=range(width),
        index_col=False,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=False,
    )
    return df.values.tolist()


@backoff.on_exception(
    backoff.expo,
    (requests.exceptions.ConnectionError, requests.exceptions.Timeout),
    max_tries=3,
)
def fetch_csv_text(url: str, timeout: float = 30.0) -> str:
    response = requests.get(url, headers={"Accept": CSV_ACCEPT}, timeout=timeout, allow_redirects=True)
    response.raise_for_status()
    response.encoding = response.encoding or "utf-8"
    return response.text


def fetch_csv_rows(url: str, timeout: float = 30.0) -> List[List[str]]:
    """
    Download a CSV export and split it into rows.

    Raises:
        SheetFormatError: the link served an HTML page (not shared, wrong URL)
    """
    text = fetch_csv_text(url, timeout=timeout)
    if looks_like_html(text):
        preview = " ".join(text[:200].split())
        raise SheetFormatError(
            "URL is not a CSV export link (got HTML). "
            "Use: https://docs.google.com/spreadsheets/d/<ID>/export?format=csv&gid=<GID>. "
            f"Preview: {preview}"
        )
    rows = parse_csv_text(text)
    logger.info(f"Read {len(rows)} CSV rows")
    return rows
