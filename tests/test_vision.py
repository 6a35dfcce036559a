"""
Tests for the vision pipeline: extraction strategy order, line parsing and
draft production.
"""
import pytest

from conftest import FakeLLM

from todolist.analysis import TextAnalyzer
from todolist.errors import ImageValidationError, LLMError, ValidationError, VisionError
from todolist.schema import Category
from todolist.vision import (
    VisionExtractor,
    VisionPipeline,
    describe_model_error,
    parse_text_to_todos,
    validate_image,
)

PNG = b"\x89PNG\r\n\x1a\nfake"


class FakeOCR:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.ready = False

    def initialize(self):
        self.ready = True
        return self

    def recognize(self, image):
        if self.error:
            raise self.error
        return self.text


def extractor(llm=None, ocr=None):
    return VisionExtractor(llm=llm, ocr=ocr, vision_model="vision-primary", alt_model="vision-alt")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Extraction
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestExtractText:
    def test_primary_model_wins(self):
        llm = FakeLLM(transcriptions={"vision-primary": "  Buy milk  ", "vision-alt": "other"})
        assert extractor(llm).extract_text(PNG, "image/png") == "Buy milk"
        assert llm.calls == [("transcribe", "vision-primary")]

    def test_alternate_model_after_primary_failure(self):
        llm = FakeLLM(transcriptions={"vision-alt": "Buy milk"})
        assert extractor(llm).extract_text(PNG, "image/png") == "Buy milk"
        assert llm.calls == [("transcribe", "vision-primary"), ("transcribe", "vision-alt")]

    def test_ocr_is_last_resort(self):
        ocr = FakeOCR(text="Call mom")
        assert extractor(FakeLLM(), ocr).extract_text(PNG, "image/png") == "Call mom"
        assert ocr.ready

    def test_unconfigured_model_goes_straight_to_ocr(self):
        llm = FakeLLM(transcriptions={"vision-primary": "unused"}, configured=False)
        assert extractor(llm, FakeOCR(text="Call mom")).extract_text(PNG, "image/png") == "Call mom"
        assert llm.calls == []

    def test_all_strategies_fail(self):
        with pytest.raises(VisionError, match="Too many requests"):
            extractor(FakeLLM(fail_status=429)).extract_text(PNG, "image/png")

    def test_empty_result_returns_empty_string(self):
        llm = FakeLLM(transcriptions={"vision-primary": "   "})
        assert extractor(llm).extract_text(PNG, "image/png") == ""

    def test_nothing_configured(self):
        with pytest.raises(VisionError, match="No text extraction service"):
            extractor().extract_text(PNG, "image/png")


def test_describe_model_error():
    assert describe_model_error(LLMError("x", status=400)).startswith("Invalid image format")
    assert describe_model_error(LLMError("x", status=403)).startswith("Access denied")
    assert describe_model_error(LLMError("x", error_type="overloaded_error")).startswith("Too many")
    assert describe_model_error(LLMError("x", status=500)).startswith("The vision model is temporarily")
    assert describe_model_error(LLMError("x")).startswith("Failed to process image")


def test_validate_image():
    validate_image(PNG, "image/png")
    with pytest.raises(ImageValidationError):
        validate_image(b"hello", "text/plain")
    with pytest.raises(ImageValidationError):
        validate_image(b"", "image/png")
    with pytest.raises(ImageValidationError, match="File size"):
        validate_image(PNG, "image/png", max_bytes=4)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Parsing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestParseTextToTodos:
    def test_blank_input(self):
        assert parse_text_to_todos("") == []
        assert parse_text_to_todos("   ") == []

    def test_numbered_lines(self):
        drafts = parse_text_to_todos("1. Buy milk\n2. Call mom", TextAnalyzer())
        assert [d.text for d in drafts] == ["Buy milk", "Call mom"]
        for d in drafts:
            assert d.is_analyzed
            assert d.annotation.category is not None
            assert d.annotation.priority is not None
            assert d.annotation.sentiment is not None
            assert d.annotation.time_estimate is not None

    def test_headers_markers_and_artifacts(self):
        text = "GROCERIES\nBuy milk\n---\n- Pay the gas bill |"
        drafts = parse_text_to_todos(text, TextAnalyzer())
        assert [d.text for d in drafts] == ["Buy milk", "Pay the gas bill"]
        assert drafts[1].category == Category.FINANCE

    def test_capped(self):
        text = "\n".join(f"Task number {chr(65 + i)}" for i in range(15))
        assert len(parse_text_to_todos(text, TextAnalyzer())) == 10

    def test_failed_line_defaults_to_personal(self):
        class ExplodingAnalyzer(TextAnalyzer):
            def analyze(self, text):
                if "boom" in text:
                    raise RuntimeError("analysis crashed")
                return super().analyze(text)

        drafts = parse_text_to_todos("Buy milk\nboom goes the dynamite", ExplodingAnalyzer())
        assert len(drafts) == 2
        assert drafts[0].category == Category.SHOPPING
        assert drafts[1].category == Category.PERSONAL
        assert drafts[1].is_analyzed


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Pipeline
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestVisionPipeline:
    def test_image_to_drafts(self):
        llm = FakeLLM(transcriptions={"vision-primary": "1. Buy milk\n2. Call mom"})
        text, drafts = VisionPipeline(extractor(llm), TextAnalyzer()).drafts_from_image(PNG, "image/png")
        assert text.startswith("1. Buy milk")
        assert [d.text for d in drafts] == ["Buy milk", "Call mom"]

    def test_no_text_offers_manual_entry(self):
        llm = FakeLLM(transcriptions={"vision-primary": ""})
        with pytest.raises(ValidationError) as exc:
            VisionPipeline(extractor(llm), TextAnalyzer()).drafts_from_image(PNG, "image/png")
        assert exc.value.manual_entry

    def test_no_task_lines_offers_manual_entry(self):
        llm = FakeLLM(transcriptions={"vision-primary": "!!! ???"})
        with pytest.raises(ValidationError, match="Text found") as exc:
            VisionPipeline(extractor(llm), TextAnalyzer()).drafts_from_image(PNG, "image/png")
        assert exc.value.manual_entry

    def test_manual_text(self):
        pipeline = VisionPipeline(extractor(), TextAnalyzer())
        assert [d.text for d in pipeline.drafts_from_text("wash car\nmow lawn")] == ["wash car", "mow lawn"]
        with pytest.raises(ValidationError):
            pipeline.drafts_from_text("")
