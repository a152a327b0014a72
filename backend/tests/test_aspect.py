import pytest

from app.core.errors import InvalidDimensions, TOOL_EXECUTION
from app.services.aspect import AspectClass, classify


def test_classify_examples():
    assert classify(1920, 1080) == AspectClass.landscape
    assert classify(1080, 1920) == AspectClass.portrait
    assert classify(1000, 1000) == AspectClass.other


def test_classify_tolerates_encoder_padding():
    assert classify(1920, 1088) == AspectClass.landscape
    assert classify(1088, 1920) == AspectClass.portrait


def test_classify_keeps_near_ratios_apart():
    # 16:10, 4:3 and 21:9 must not fall into the 16:9 band.
    assert classify(1920, 1200) == AspectClass.other
    assert classify(1024, 768) == AspectClass.other
    assert classify(2560, 1080) == AspectClass.other


@pytest.mark.parametrize("width,height", [(0, 1080), (1920, 0), (-1, 1080), (1920, -5), (0, 0)])
def test_classify_rejects_non_positive(width, height):
    with pytest.raises(InvalidDimensions) as ei:
        classify(width, height)
    assert ei.value.category == TOOL_EXECUTION


def test_classify_band_properties():
    for h in range(90, 2200, 7):
        for w in range(max(1, int(h * 1.70)), int(h * 1.85) + 1):
            r = w / h
            if abs(r - 16 / 9) < 0.02:
                assert classify(w, h) == AspectClass.landscape
                assert classify(h, w) != AspectClass.landscape
        for w in range(max(1, int(h * 0.53)), int(h * 0.59) + 1):
            r = w / h
            if abs(r - 9 / 16) < 0.02:
                assert classify(w, h) == AspectClass.portrait


def test_aspect_values_are_key_prefixes():
    assert [a.value for a in AspectClass] == ["landscape", "portrait", "other"]
