from pathlib import Path

import pytest

from conftest import FakeOcrBackend, FakePageCounter, FakeRasterizer, FakeTextBackend, make_extractor
from docingest.ingest.batching import BatchPageProcessor
from docingest.ingest.errors import InvalidPageRangeError, PageCountError, RasterizationError, UnsupportedToolError
from docingest.ingest.extractors import DirectTextStrategy, OcrStrategy, PageExtractor
from docingest.ingest.models import ExtractionRequest, ExtractionTool


def _request(tool: ExtractionTool, from_page: int, to_page: int) -> ExtractionRequest:
    return ExtractionRequest(tool=tool, file_path=Path("contract.pdf"), from_page=from_page, to_page=to_page)


def test_direct_text_returns_pages_in_range() -> None:
    extractor = make_extractor(["one", "two", "three", "four"])

    pages = extractor.extract_pages(_request(ExtractionTool.DIRECT_TEXT, 2, 4))

    assert pages == ["two", "three", "four"]


def test_direct_text_failure_degrades_single_page() -> None:
    extractor = make_extractor(["one", "two", "three"], failing=[2])

    pages = extractor.extract_pages(_request(ExtractionTool.DIRECT_TEXT, 1, 3))

    assert pages == ["one", "", "three"]


def test_ocr_failure_on_one_page_keeps_the_others(tmp_path) -> None:
    extractor = make_extractor(["", "", "", "", ""], ocr_failing=[3], work_dir=tmp_path)

    pages = extractor.extract_pages(_request(ExtractionTool.OCR, 1, 5))

    assert pages == ["ocr text 1", "ocr text 2", "", "ocr text 4", "ocr text 5"]


def test_ocr_scratch_directory_is_removed(tmp_path) -> None:
    rasterizer = FakeRasterizer()
    extractor = PageExtractor(
        FakePageCounter(3),
        {ExtractionTool.OCR: OcrStrategy(rasterizer, FakeOcrBackend(), work_dir=tmp_path)},
        BatchPageProcessor(2),
    )

    extractor.extract_pages(_request(ExtractionTool.OCR, 1, 3))

    assert len(rasterizer.output_dirs) == 1
    scratch = rasterizer.output_dirs[0]
    assert scratch.parent == tmp_path
    assert not scratch.exists()


def test_rasterization_failure_is_fatal_and_cleans_up(tmp_path) -> None:
    rasterizer = FakeRasterizer(error=OSError("pdftoppm crashed"))
    extractor = PageExtractor(
        FakePageCounter(2),
        {ExtractionTool.OCR: OcrStrategy(rasterizer, FakeOcrBackend(), work_dir=tmp_path)},
        BatchPageProcessor(2),
    )

    with pytest.raises(RasterizationError):
        extractor.extract_pages(_request(ExtractionTool.OCR, 1, 2))
    assert not rasterizer.output_dirs[0].exists()


def test_missing_page_image_is_fatal(tmp_path) -> None:
    extractor = PageExtractor(
        FakePageCounter(3),
        {ExtractionTool.OCR: OcrStrategy(FakeRasterizer(drop_last=True), FakeOcrBackend(), work_dir=tmp_path)},
        BatchPageProcessor(2),
    )

    with pytest.raises(RasterizationError):
        extractor.extract_pages(_request(ExtractionTool.OCR, 1, 3))


@pytest.mark.parametrize(("from_page", "to_page"), [(0, 2), (2, 4), (3, 2)])
def test_invalid_page_range_is_rejected_before_extraction(from_page: int, to_page: int) -> None:
    backend = FakeTextBackend(["a", "b", "c"])
    extractor = PageExtractor(
        FakePageCounter(3),
        {ExtractionTool.DIRECT_TEXT: DirectTextStrategy(backend)},
        BatchPageProcessor(2),
    )

    with pytest.raises(InvalidPageRangeError):
        extractor.extract_pages(_request(ExtractionTool.DIRECT_TEXT, from_page, to_page))
    assert backend.requested == []


def test_page_count_failure_propagates() -> None:
    extractor = PageExtractor(
        FakePageCounter(error=ValueError("not a pdf")),
        {ExtractionTool.DIRECT_TEXT: DirectTextStrategy(FakeTextBackend(["a"]))},
        BatchPageProcessor(1),
    )

    with pytest.raises(PageCountError):
        extractor.extract_pages(_request(ExtractionTool.DIRECT_TEXT, 1, 1))


def test_tool_without_strategy_is_unsupported() -> None:
    extractor = PageExtractor(
        FakePageCounter(1),
        {ExtractionTool.DIRECT_TEXT: DirectTextStrategy(FakeTextBackend(["a"]))},
        BatchPageProcessor(1),
    )

    with pytest.raises(UnsupportedToolError):
        extractor.extract_pages(_request(ExtractionTool.OCR, 1, 1))


def test_extraction_tool_parse_accepts_legacy_name() -> None:
    assert ExtractionTool.parse("pdftotext") is ExtractionTool.DIRECT_TEXT
    assert ExtractionTool.parse(" OCR ") is ExtractionTool.OCR
    with pytest.raises(UnsupportedToolError):
        ExtractionTool.parse("magic")


class _CountingProcessor(BatchPageProcessor):
    def __init__(self, batch_size: int) -> None:
        super().__init__(batch_size)
        self.calls = 0

    def process(self, artifacts, worker, **kwargs):
        self.calls += 1
        return super().process(artifacts, worker, **kwargs)


def test_ocr_strategy_prefers_its_own_processor(tmp_path) -> None:
    shared = _CountingProcessor(2)
    ocr_only = _CountingProcessor(2)
    extractor = PageExtractor(
        FakePageCounter(2),
        {
            ExtractionTool.DIRECT_TEXT: DirectTextStrategy(FakeTextBackend(["a", "b"])),
            ExtractionTool.OCR: OcrStrategy(FakeRasterizer(), FakeOcrBackend(), work_dir=tmp_path, processor=ocr_only),
        },
        shared,
    )

    extractor.extract_pages(_request(ExtractionTool.OCR, 1, 2))
    assert (shared.calls, ocr_only.calls) == (0, 1)

    extractor.extract_pages(_request(ExtractionTool.DIRECT_TEXT, 1, 2))
    assert (shared.calls, ocr_only.calls) == (1, 1)
