"""Wrappers around the external tools used to read PDF pages.

Each backend exposes one narrow method so the pipeline never depends on how
a tool is invoked. The command-line backends shell out to poppler
(``pdftotext``, ``pdftoppm``) and ``tesseract``.
"""
from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import List, Protocol, Sequence

from pdfminer.high_level import extract_text as pdfminer_extract_text
from PIL import Image, ImageFilter, ImageOps
from PyPDF2 import PdfReader

from .errors import ExtractionError, OcrError, PageCountError, RasterizationError

LOGGER = logging.getLogger(__name__)

DEFAULT_DPI = 450
DEFAULT_OCR_LANGUAGES = "vie+rus"
_PAGE_IMAGE_RE = re.compile(r"-(\d+)\.png$")


class PageCounter(Protocol):
    def get_total_pages(self, path: Path) -> int:
        ...


class TextBackend(Protocol):
    def extract_page_text(self, path: Path, page_number: int) -> str:
        ...


class Rasterizer(Protocol):
    def rasterize_pages(self, path: Path, output_dir: Path, first_page: int, last_page: int) -> List[Path]:
        ...


class OcrBackend(Protocol):
    def recognize_text(self, image_path: Path) -> str:
        ...


def _run_tool(cmd: Sequence[str]) -> subprocess.CompletedProcess:
    LOGGER.debug("Running command: %s", " ".join(cmd))
    return subprocess.run(list(cmd), check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)


def _stderr_text(error: subprocess.CalledProcessError) -> str:
    stderr = error.stderr or b""
    if isinstance(stderr, bytes):
        return stderr.decode(errors="ignore").strip()
    return str(stderr).strip()


class PyPDFPageCounter:
    """Count pages by parsing the PDF cross-reference table."""

    def get_total_pages(self, path: Path) -> int:
        try:
            reader = PdfReader(str(path))
            total = len(reader.pages)
        except Exception as exc:
            raise PageCountError(f"Unable to determine page count for {path}", cause=exc) from exc
        if total <= 0:
            raise PageCountError(f"PDF {path} has no pages")
        return total


class PdftotextBackend:
    """Extract the text layer of a single page with ``pdftotext``."""

    def extract_page_text(self, path: Path, page_number: int) -> str:
        if page_number < 1:
            raise ExtractionError(f"Invalid page number: {page_number}")
        cmd = ["pdftotext", "-f", str(page_number), "-l", str(page_number), str(path), "-"]
        try:
            result = _run_tool(cmd)
        except FileNotFoundError as exc:
            raise ExtractionError("pdftotext is not installed", cause=exc) from exc
        except subprocess.CalledProcessError as exc:
            raise ExtractionError(
                f"pdftotext failed on page {page_number}: {_stderr_text(exc)}", cause=exc
            ) from exc
        return result.stdout.decode("utf-8", errors="ignore").strip()


class PdfMinerTextBackend:
    """Extract the text layer of a single page with pdfminer.six."""

    def extract_page_text(self, path: Path, page_number: int) -> str:
        if page_number < 1:
            raise ExtractionError(f"Invalid page number: {page_number}")
        try:
            text = pdfminer_extract_text(str(path), page_numbers=[page_number - 1])
        except Exception as exc:
            raise ExtractionError(f"pdfminer failed on page {page_number}", cause=exc) from exc
        return (text or "").strip()


class PdftoppmRasterizer:
    """Render a page range to PNG images with ``pdftoppm``."""

    def __init__(self, dpi: int = DEFAULT_DPI) -> None:
        self.dpi = dpi

    def rasterize_pages(self, path: Path, output_dir: Path, first_page: int, last_page: int) -> List[Path]:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        cmd = [
            "pdftoppm",
            "-png",
            "-r",
            str(self.dpi),
            "-f",
            str(first_page),
            "-l",
            str(last_page),
            "-hide-annotations",
            str(path),
            str(output_dir / "page"),
        ]
        try:
            _run_tool(cmd)
        except FileNotFoundError as exc:
            raise RasterizationError("pdftoppm is not installed", cause=exc) from exc
        except subprocess.CalledProcessError as exc:
            raise RasterizationError(
                f"Error converting PDF to images: {_stderr_text(exc)}", cause=exc
            ) from exc

        images = sorted_page_images(output_dir)
        if not images:
            raise RasterizationError(f"pdftoppm produced no images for {path}")
        return images


def sorted_page_images(directory: Path) -> List[Path]:
    """Return ``page-N.png`` files ordered by their page number."""

    images = []
    for candidate in Path(directory).glob("page-*.png"):
        match = _PAGE_IMAGE_RE.search(candidate.name)
        if match:
            images.append((int(match.group(1)), candidate))
    return [image for _, image in sorted(images)]


def preprocess_image(source: Path, destination: Path) -> Path:
    """Write an OCR-friendly grayscale, contrast-stretched copy of ``source``."""

    with Image.open(source) as image:
        grayscale = ImageOps.grayscale(image)
        stretched = ImageOps.autocontrast(grayscale)
        sharpened = stretched.filter(ImageFilter.UnsharpMask(radius=1.6, percent=160, threshold=3))
        sharpened.save(destination)
    return destination


class TesseractOcrBackend:
    """Recognise page images with the ``tesseract`` command-line tool."""

    def __init__(
        self,
        languages: str = DEFAULT_OCR_LANGUAGES,
        *,
        oem: int = 3,
        psm: int = 3,
        dpi: int = DEFAULT_DPI,
        preprocess: bool = True,
    ) -> None:
        self.languages = languages
        self.oem = oem
        self.psm = psm
        self.dpi = dpi
        self.preprocess = preprocess

    def recognize_text(self, image_path: Path) -> str:
        image_path = Path(image_path)
        source = self._prepare_image(image_path) if self.preprocess else image_path
        cmd = [
            "tesseract",
            str(source),
            "stdout",
            "-l",
            self.languages,
            "--oem",
            str(self.oem),
            "--psm",
            str(self.psm),
            "--dpi",
            str(self.dpi),
        ]
        try:
            result = _run_tool(cmd)
        except FileNotFoundError as exc:
            raise OcrError("tesseract is not installed", cause=exc) from exc
        except subprocess.CalledProcessError as exc:
            raise OcrError(f"tesseract failed on {image_path.name}: {_stderr_text(exc)}", cause=exc) from exc
        return result.stdout.decode("utf-8", errors="ignore").strip()

    def _prepare_image(self, image_path: Path) -> Path:
        destination = image_path.with_name(f"processed-{image_path.name}")
        try:
            return preprocess_image(image_path, destination)
        except Exception as error:
            LOGGER.warning("Image preprocessing failed for %s (%s); using original image", image_path, error)
            return image_path
