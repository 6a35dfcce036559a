"""
Vision extraction: image → text → annotated todo drafts.

Text extraction tries, in order:
  1. the primary hosted vision model
  2. a cheaper alternate hosted model
  3. the local OCR engine (when one is configured)

Every extracted line then goes through the text analysis pipeline.
"""
import logging
import re
from typing import Callable, List, Optional, Tuple

from .analysis import (
    TextAnalyzer,
    estimate_time_by_rules,
    priority_by_keywords,
    sentiment_by_lexicon,
)
from .errors import ImageValidationError, LLMError, ValidationError, VisionError
from .schema import Annotation, Category, TodoDraft

logger = logging.getLogger(__name__)

PRIMARY_INSTRUCTION = """Please extract all text from this image, especially focusing on todo items, tasks, or notes.

Here's what I need:
1. Extract ALL readable text, even if handwriting is messy
2. Preserve line breaks and formatting where possible
3. If you see bullet points, numbers, or task-like items, include them
4. Don't correct spelling - extract exactly what you see
5. If some text is unclear, make your best guess

Please provide only the extracted text, nothing else."""

ALTERNATE_INSTRUCTION = (
    "Extract all text from this image. Focus on todo items, tasks, and notes. "
    "Include messy handwriting - make your best guess. Return only the extracted text."
)

MAX_DRAFTS = 10

LINE_SPLIT = re.compile(r"[\n\r•·◦▪]+|(?:^|\s)\d+[.)]\s+", re.MULTILINE)
LIST_PREFIX = re.compile(r"^(?:[-*+•·◦▪]+|\d+[.)\]}])+\s*")
ONLY_NON_LETTERS = re.compile(r"^[^a-zA-Z]*$")
HEADER_LINE = re.compile(r"^[A-Z\s]+$")
OCR_ARTIFACTS = re.compile(r"[|{}\[\]]")

ExtractStrategy = Callable[[bytes, str], str]


def validate_image(image: bytes, media_type: str, max_bytes: int = 10 * 1024 * 1024) -> None:
    if not (media_type or "").startswith("image/"):
        raise ImageValidationError("Please select a valid image file (PNG, JPG, GIF, etc.)")
    if not image:
        raise ImageValidationError("The uploaded image is empty")
    if len(image) > max_bytes:
        raise ImageValidationError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")


def describe_model_error(error: LLMError) -> str:
    """User-facing message for a failed vision request."""
    if error.status == 400 or error.error_type == "invalid_request_error":
        return "Invalid image format. Please use JPG, PNG, GIF, or WebP images."
    if error.status in (401, 403):
        return "Access denied to the vision model. Please check your API credentials."
    if error.status in (429, 529) or error.error_type in ("rate_limit_error", "overloaded_error"):
        return "Too many requests. Please wait a moment and try again."
    if error.status == 404 or error.status >= 500:
        return "The vision model is temporarily unavailable. Please try again later."
    return "Failed to process image with AI vision. Please try again."


class VisionExtractor:
    """Ordered extraction strategies over a model client and an optional OCR engine."""

    def __init__(self, llm=None, ocr=None, vision_model: str = "", alt_model: str = ""):
        self.llm = llm
        self.ocr = ocr
        self.vision_model = vision_model
        self.alt_model = alt_model

    @classmethod
    def from_settings(cls, settings, llm=None, ocr=None) -> "VisionExtractor":
        return cls(llm=llm, ocr=ocr, vision_model=settings.vision_model,
                   alt_model=settings.vision_alt_model)

    def strategies(self) -> List[Tuple[str, ExtractStrategy]]:
        chain: List[Tuple[str, ExtractStrategy]] = []
        if self.llm is not None and getattr(self.llm, "configured", True):
            chain.append(("primary model", self._model(self.vision_model, PRIMARY_INSTRUCTION, 1000)))
            if self.alt_model:
                chain.append(("alternate model", self._model(self.alt_model, ALTERNATE_INSTRUCTION, 800)))
        if self.ocr is not None:
            chain.append(("local OCR", self._ocr))
        return chain

    def _model(self, model: str, instruction: str, max_tokens: int) -> ExtractStrategy:
        def strategy(image: bytes, media_type: str) -> str:
            try:
                return self.llm.transcribe_image(image, media_type, instruction,
                                                 model=model, max_tokens=max_tokens)
            except LLMError as e:
                raise VisionError(describe_model_error(e)) from e
        return strategy

    def _ocr(self, image: bytes, media_type: str) -> str:
        if not self.ocr.ready:
            self.ocr.initialize()
        return self.ocr.recognize(image)

    def extract_text(self, image: bytes, media_type: str) -> str:
        """
        First non-empty transcription wins.

        Returns "" when a strategy succeeded but nothing was readable.
        Raises VisionError when every strategy failed.
        """
        chain = self.strategies()
        if not chain:
            raise VisionError("No text extraction service is configured.")

        saw_empty = False
        last_error = "Failed to extract text from image"
        for label, strategy in chain:
            try:
                text = strategy(image, media_type).strip()
            except Exception as e:
                last_error = str(e) or last_error
                logger.warning(f"Text extraction: {label} failed ({e}), trying next")
                continue
            if text:
                logger.info(f"Text extraction: {label} returned {len(text)} chars")
                return text
            saw_empty = True
        if saw_empty:
            return ""
        raise VisionError(last_error)


def _clean_line(line: str) -> Optional[str]:
    line = line.strip()
    if len(line) <= 2 or ONLY_NON_LETTERS.match(line):
        return None
    line = LIST_PREFIX.sub("", line).strip()
    if len(line) < 3 or HEADER_LINE.match(line):
        return None
    line = OCR_ARTIFACTS.sub("", line).strip()
    return line or None


def _rule_annotation(line: str) -> Annotation:
    return Annotation(
        category=Category.PERSONAL,
        priority=priority_by_keywords(line),
        sentiment=sentiment_by_lexicon(line),
        time_estimate=estimate_time_by_rules(line),
    )


def parse_text_to_todos(text: str, analyzer: Optional[TextAnalyzer] = None,
                        max_drafts: int = MAX_DRAFTS) -> List[TodoDraft]:
    """Split raw text into task lines and annotate each one (at most max_drafts)."""
    if not text or not text.strip():
        return []
    analyzer = analyzer or TextAnalyzer()

    drafts: List[TodoDraft] = []
    for raw in LINE_SPLIT.split(text):
        if len(drafts) >= max_drafts:
            break
        line = _clean_line(raw or "")
        if not line:
            continue
        try:
            annotation = analyzer.analyze(line)
        except Exception as e:
            logger.warning(f"Could not analyze '{line}', using defaults: {e}")
            annotation = _rule_annotation(line)
        drafts.append(TodoDraft(text=line, annotation=annotation, is_analyzed=True))
    return drafts


class VisionPipeline:
    """Image upload → validated image → text → drafts."""

    def __init__(self, extractor: VisionExtractor, analyzer: TextAnalyzer,
                 max_image_bytes: int = 10 * 1024 * 1024, max_drafts: int = MAX_DRAFTS):
        self.extractor = extractor
        self.analyzer = analyzer
        self.max_image_bytes = max_image_bytes
        self.max_drafts = max_drafts

    def drafts_from_text(self, text: str) -> List[TodoDraft]:
        drafts = parse_text_to_todos(text, self.analyzer, self.max_drafts)
        if not drafts:
            raise ValidationError(
                "Could not identify any todo items in the text. Please check your formatting.",
                manual_entry=True,
            )
        return drafts

    def drafts_from_image(self, image: bytes, media_type: str) -> Tuple[str, List[TodoDraft]]:
        validate_image(image, media_type, self.max_image_bytes)
        text = self.extractor.extract_text(image, media_type)
        if not text:
            raise ValidationError(
                "No text found in the image. Try the manual input option.",
                manual_entry=True,
            )
        drafts = parse_text_to_todos(text, self.analyzer, self.max_drafts)
        if not drafts:
            raise ValidationError(
                f'Could not identify todo items. Try manual input. Text found: "{text[:100]}..."',
                manual_entry=True,
            )
        return text, drafts
