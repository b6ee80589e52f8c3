"""PDF download and page text extraction (requests -> PyMuPDF)."""

import logging
from typing import Dict, List, Optional, Tuple

import fitz  # PyMuPDF
import requests

from .errors import FetchError, ParseError

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 60.0


def fetch_pdf(
    url: str,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    headers: Optional[Dict[str, str]] = None
) -> bytes:
    """
    Download a document's raw bytes.

    Args:
        url: Source URL
        timeout: Connect/read timeout in seconds
        headers: Extra HTTP headers

    Raises:
        FetchError: on timeout, network failure, or a non-success status
    """
    try:
        resp = requests.get(url, headers=headers or {}, timeout=timeout)
    except requests.Timeout as e:
        raise FetchError(
            f"Timed out after {timeout}s downloading PDF",
            operation="fetch",
            details={"url": url}
        ) from e
    except requests.RequestException as e:
        raise FetchError(
            f"Failed to download PDF: {e}",
            operation="fetch",
            details={"url": url}
        ) from e

    if not resp.ok:
        raise FetchError(
            f"Failed to download PDF: {resp.status_code}",
            operation="fetch",
            details={"url": url, "status_code": resp.status_code}
        )

    logger.info(f"Downloaded {len(resp.content)} bytes from {url}")
    return resp.content


def extract_pages(data: bytes) -> List[Tuple[int, str]]:
    """
    Extract the text of every page in physical order.

    Returns:
        (page_number, text) pairs, page numbers starting at 1

    Raises:
        ParseError: when the bytes are not a readable PDF
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ParseError(f"Could not open PDF: {e}", operation="parse") from e

    try:
        if doc.needs_pass:
            raise ParseError("PDF is encrypted", operation="parse")

        pages = []
        for page_num in range(doc.page_count):
            text = doc[page_num].get_text().strip()
            pages.append((page_num + 1, text))

        logger.info(f"Extracted text from {len(pages)} pages")
        return pages

    except ParseError:
        raise
    except Exception as e:
        raise ParseError(f"Failed to extract page text: {e}", operation="parse") from e
    finally:
        doc.close()
