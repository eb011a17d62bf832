import logging
from dataclasses import dataclass
from typing import List

import pdfplumber

from docqa.exceptions import ExtractionFailure

logger = logging.getLogger(__name__)


@dataclass
class PageText:
    page_number: int
    text: str


class PDFParser:
    def extract_pages(self, pdf_path: str) -> List[PageText]:
        """
        Extracts text page by page, skipping pages without any text.
        Raises ExtractionFailure for unreadable or text-free PDFs.
        """
        pages: List[PageText] = []

        try:
            with pdfplumber.open(pdf_path) as pdf:
                for page_num, page in enumerate(pdf.pages, start=1):
                    text = page.extract_text()
                    if not text or not text.strip():
                        continue
                    pages.append(PageText(page_number=page_num, text=text))
        except Exception as e:
            logger.error(f"Failed to read PDF {pdf_path}: {e}")
            raise ExtractionFailure(f"Could not read PDF: {e}", cause=e) from e

        if not pages:
            raise ExtractionFailure("No content extracted from PDF")

        logger.info(f"Loaded {len(pages)} pages with text from {pdf_path}")
        return pages
