"""
Local OCR engine (Tesseract), last resort of the vision pipeline.

The engine is constructed explicitly and has a lifecycle:

    engine = TesseractEngine(settings)
    engine.initialize()
    text = engine.recognize(image_bytes)
    engine.dispose()

or `with TesseractEngine(settings) as engine: ...`.
"""
import io
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from PIL import Image

from .errors import OCRError

logger = logging.getLogger(__name__)

CHAR_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789 .,!?-"
THRESHOLD = 128
LOW_CONFIDENCE_MESSAGE = (
    "The image quality is too low for accurate text recognition. "
    "Try with better lighting or clearer handwriting."
)


def preprocess_image(image: bytes) -> bytes:
    """Grayscale + hard threshold, returned as PNG bytes."""
    try:
        with Image.open(io.BytesIO(image)) as img:
            gray = img.convert("L")
            bw = gray.point(lambda p: 255 if p > THRESHOLD else 0)
            out = io.BytesIO()
            bw.save(out, format="PNG")
            return out.getvalue()
    except (OSError, ValueError) as e:
        raise OCRError(f"Unreadable image: {e}") from e


def parse_tsv(tsv: str) -> Tuple[str, float]:
    """
    Turn Tesseract TSV output into (text, mean word confidence).

    Words are regrouped into their original lines; rows with confidence -1
    are layout rows, not words.
    """
    lines: Dict[Tuple[str, str, str, str], List[str]] = {}
    confidences: List[float] = []
    rows = tsv.splitlines()
    for row in rows[1:]:
        cols = row.split("\t")
        if len(cols) < 12:
            continue
        try:
            conf = float(cols[10])
        except ValueError:
            continue
        word = cols[11].strip()
        if conf < 0 or not word:
            continue
        confidences.append(conf)
        key = (cols[1], cols[2], cols[3], cols[4])  # page, block, paragraph, line
        lines.setdefault(key, []).append(word)

    text = "\n".join(" ".join(words) for words in lines.values())
    mean = sum(confidences) / len(confidences) if confidences else 0.0
    return text, mean


class TesseractEngine:
    """Runs the tesseract binary on preprocessed images."""

    def __init__(self, cmd: str = "tesseract", min_confidence: float = 30.0, timeout: int = 60):
        self.cmd = cmd
        self.min_confidence = min_confidence
        self.timeout = timeout
        self._workdir: Optional[tempfile.TemporaryDirectory] = None

    @classmethod
    def from_settings(cls, settings) -> "TesseractEngine":
        return cls(cmd=settings.tesseract_cmd, min_confidence=settings.ocr_min_confidence)

    @property
    def ready(self) -> bool:
        return self._workdir is not None

    def initialize(self) -> "TesseractEngine":
        if self.ready:
            return self
        if shutil.which(self.cmd) is None:
            raise OCRError(f"OCR engine not found: {self.cmd}")
        self._workdir = tempfile.TemporaryDirectory(prefix="todolist-ocr-")
        logger.info(f"OCR engine ready ({self.cmd})")
        return self

    def dispose(self):
        if self._workdir is not None:
            self._workdir.cleanup()
            self._workdir = None

    def __enter__(self) -> "TesseractEngine":
        return self.initialize()

    def __exit__(self, exc_type, exc, tb):
        self.dispose()

    def recognize(self, image: bytes, preprocess: bool = True) -> str:
        """Extract text; raises OCRError on failure or low confidence."""
        if not self.ready:
            raise OCRError("OCR engine not initialized")

        data = preprocess_image(image) if preprocess else image
        path = Path(self._workdir.name) / "input.png"
        path.write_bytes(data)

        cmd = [
            self.cmd, str(path), "stdout",
            "--psm", "6",  # uniform block of text
            "-c", f"tessedit_char_whitelist={CHAR_WHITELIST}",
            "-c", "preserve_interword_spaces=1",
            "tsv",
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise OCRError(f"OCR failed: {e}") from e
        if result.returncode != 0:
            logger.error(f"tesseract exited {result.returncode}: {result.stderr[:200]}")
            raise OCRError("Failed to extract text from image")

        text, confidence = parse_tsv(result.stdout)
        logger.info(f"OCR confidence: {confidence:.0f}%")
        if confidence < self.min_confidence:
            raise OCRError(LOW_CONFIDENCE_MESSAGE)
        return text.strip()
