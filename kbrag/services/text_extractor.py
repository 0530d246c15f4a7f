import asyncio
from io import BytesIO
from pathlib import PurePath
from xml.etree.ElementTree import ParseError
from zipfile import BadZipFile

import docx2txt
from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from kbrag.core.exceptions import ExtractionError
from kbrag.services.storage_service import ByteStream
from kbrag.utils.logger import get_logger

logger = get_logger("services.text_extractor")

HTML_SUFFIXES = {".html", ".htm"}


def _pdf_text(data: bytes) -> str:
    reader = PdfReader(BytesIO(data))
    return "\n".join((page.extract_text() or "") for page in reader.pages)


def _html_text(data: bytes) -> str:
    return BeautifulSoup(data, "html.parser").get_text("\n")


def _docx_text(data: bytes) -> str:
    try:
        return docx2txt.process(BytesIO(data))
    except (BadZipFile, KeyError, ParseError) as e:
        raise ExtractionError(f"Not a valid Word document ({type(e).__name__})") from e


def _plain_text(data: bytes) -> str:
    if b"\x00" in data:
        raise ExtractionError("Unsupported binary content")
    return data.decode("utf-8")


class TextExtractor:
    """Turns stored file bytes into plain text, picking a parser (PDF, HTML, Word, UTF-8) from the filename."""

    async def extract(self, stream: ByteStream, filename: str) -> str:
        data = await stream.read()
        suffix = PurePath(filename or "").suffix.lower()

        if suffix == ".pdf" or data[:5] == b"%PDF-":
            parser = _pdf_text
        elif suffix in HTML_SUFFIXES:
            parser = _html_text
        elif suffix == ".docx":
            parser = _docx_text
        else:
            parser = _plain_text

        try:
            # Parsers are CPU bound
            loop = asyncio.get_running_loop()
            text = await loop.run_in_executor(None, parser, data)
        except ExtractionError as e:
            raise ExtractionError(f"{filename}: {e}") from e
        except (PyPdfError, UnicodeDecodeError, ValueError) as e:
            raise ExtractionError(f"{filename}: failed to extract text ({type(e).__name__}: {e})") from e

        logger.info(f"Extracted {len(text)} characters from {filename}")
        return text
