"""Shared fixtures: sample label texts, synthetic images, scripted recognition engine."""

import io
import threading
import time

import pytest
from PIL import Image, ImageDraw

from label_verifier.config import Settings
from label_verifier.models import ApplicationFields
from label_verifier.services.extraction import GOVERNMENT_WARNING_TEXT
from label_verifier.services.ocr import LayoutMode, RecognitionEngineHandle, RecognitionOutput


BOURBON_TEXT = f"""OLD TOM DISTILLERY
Kentucky Straight Bourbon Whiskey
45% Alc./Vol. (90 Proof)
750 mL

{GOVERNMENT_WARNING_TEXT}

Old Tom Distillery, 1234 Barrel Lane, Louisville, KY 40202"""

WINE_TEXT = f"""WILLAMETTE RESERVE
Pinot Noir
2021
Willamette Valley
13.5% Alc./Vol.
750 mL

{GOVERNMENT_WARNING_TEXT}

Willamette Reserve Winery, 567 Vine Road, Dundee, OR 97115"""

MALT_TEXT = f"""STONE'S THROW BREWING
India Pale Ale
6.8% Alc./Vol.
12 FL OZ

{GOVERNMENT_WARNING_TEXT}

Stone's Throw Brewing Co., 890 Hop Street, Portland, OR 97209"""


class FakeEngine:
    """Recognition engine returning scripted text per layout mode."""

    def __init__(self, texts=None, confidence=0.9, delay=0.0, error=None):
        self.texts = texts or {}
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.loaded = 0
        self.closed = 0
        self.calls = []
        self.layout_mode = None
        self._active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def load(self):
        self.loaded += 1

    def recognize(self, bitmap, layout_mode):
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            self.layout_mode = layout_mode
            self.calls.append((layout_mode, bitmap.shape))
            if self.delay:
                time.sleep(self.delay)
            if self.error is not None:
                raise self.error
            text = self.texts.get(layout_mode, "")
            if not text:
                return RecognitionOutput.empty()
            return RecognitionOutput(text=text, confidence=self.confidence, words=[])
        finally:
            with self._lock:
                self._active -= 1

    def close(self):
        self.closed += 1


def make_image_bytes(size=(400, 200), background="white", foreground="black", fmt="PNG"):
    """Synthetic label: a filled rectangle standing in for text."""
    img = Image.new("RGB", size, color=background)
    w, h = size
    ImageDraw.Draw(img).rectangle([w // 4, h // 3, 3 * w // 4, 2 * h // 3], fill=foreground)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def bourbon_text():
    return BOURBON_TEXT


@pytest.fixture
def wine_text():
    return WINE_TEXT


@pytest.fixture
def malt_text():
    return MALT_TEXT


@pytest.fixture
def make_engine():
    """Factory for scripted engines: make_engine(texts={LayoutMode.BLOCK: "..."})."""
    return FakeEngine


@pytest.fixture
def png_bytes():
    return make_image_bytes()


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes(fmt="JPEG")


@pytest.fixture
def dark_png_bytes():
    """White text block on a near-black label."""
    return make_image_bytes(background=(15, 15, 15), foreground="white")


@pytest.fixture
def large_png_bytes():
    return make_image_bytes(size=(2000, 1000))


@pytest.fixture
def small_png_bytes():
    return make_image_bytes(size=(200, 100))


@pytest.fixture
def fake_engine():
    return FakeEngine(texts={LayoutMode.BLOCK: BOURBON_TEXT})


@pytest.fixture
def engine_handle(fake_engine, settings):
    return RecognitionEngineHandle(factory=lambda: fake_engine, settings=settings)


@pytest.fixture
def bourbon_application():
    return ApplicationFields(
        brand_name="OLD TOM DISTILLERY",
        class_type="Kentucky Straight Bourbon Whiskey",
        alcohol_content="45% Alc./Vol. (90 Proof)",
        net_contents="750 mL",
        name_address="Old Tom Distillery, 1234 Barrel Lane, Louisville, KY 40202",
        government_warning=GOVERNMENT_WARNING_TEXT,
    )


@pytest.fixture
def wine_application():
    return ApplicationFields(
        brand_name="WILLAMETTE RESERVE",
        class_type="Pinot Noir",
        alcohol_content="13.5% Alc./Vol.",
        net_contents="750 mL",
        name_address="Willamette Reserve Winery, 567 Vine Road, Dundee, OR 97115",
        government_warning=GOVERNMENT_WARNING_TEXT,
        appellation="Willamette Valley",
        varietal="Pinot Noir",
        vintage_date="2021",
    )


@pytest.fixture
def malt_application():
    return ApplicationFields(
        brand_name="STONE'S THROW BREWING",
        class_type="India Pale Ale",
        alcohol_content="6.8% Alc./Vol.",
        net_contents="12 FL OZ",
        name_address="Stone's Throw Brewing Co., 890 Hop Street, Portland, OR 97209",
        government_warning=GOVERNMENT_WARNING_TEXT,
    )
