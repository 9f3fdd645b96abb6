from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from convert_compress.encoders import EncoderRegistry
from convert_compress.image_buffer import DecodedImage
from convert_compress.operations import ConstrainSize, FlipVertical, RemoveBackground, Resize
from convert_compress.pipeline_builder import (
    PipelineBuilder,
    PipelineOptions,
    build_pipeline,
    clamp_compression_level,
    parse_dimension,
    resize_input_from_options,
)
from convert_compress.resize_math import PercentResize, PixelResize, PixelSize


class StubSegmenter:
    def segment(self, image):
        return image.convert("RGBA")


@pytest.fixture
def builder(registry: EncoderRegistry) -> PipelineBuilder:
    return PipelineBuilder(registry, StubSegmenter())


def test_default_options_build_empty_pipeline(builder: PipelineBuilder) -> None:
    pipeline = builder.build(PipelineOptions())
    assert pipeline.operations == ()
    assert pipeline.final_format is None
    assert pipeline.is_identity


def test_operations_follow_fixed_order(builder: PipelineBuilder, catalog) -> None:
    options = PipelineOptions(
        size_unit="percent",
        resize_percent=0.5,
        target_format=catalog.get("ico"),
        flip_vertical=True,
        remove_background=True,
    )
    pipeline = builder.build(options)
    kinds = [type(op) for op in pipeline.operations]
    assert kinds == [Resize, ConstrainSize, FlipVertical, RemoveBackground]
    assert pipeline.operations[1].target_format == pipeline.final_format


def test_build_pipeline_function(registry: EncoderRegistry, catalog) -> None:
    pipeline = build_pipeline(PipelineOptions(resize_percent=0.5, target_format=catalog.get("png")), registry)
    assert pipeline.operations == (Resize(PercentResize(0.5)),)
    assert pipeline.encoders is registry


def test_unset_options_are_omitted(builder: PipelineBuilder, catalog) -> None:
    pipeline = builder.build(PipelineOptions(target_format=catalog.get("png"), flip_vertical=True))
    assert [type(op) for op in pipeline.operations] == [FlipVertical]


def test_percent_one_means_no_resize(builder: PipelineBuilder) -> None:
    pipeline = builder.build(PipelineOptions(size_unit="percent", resize_percent=1.0))
    assert not any(isinstance(op, Resize) for op in pipeline.operations)


def test_pixel_inputs_that_do_not_parse_are_ignored(builder: PipelineBuilder) -> None:
    pipeline = builder.build(PipelineOptions(size_unit="pixels", resize_width="abc", resize_height="-5"))
    assert pipeline.operations == ()


def test_pixel_width_only(builder: PipelineBuilder) -> None:
    pipeline = builder.build(PipelineOptions(size_unit="pixels", resize_width="800"))
    assert pipeline.operations == (Resize(PixelResize(width=800)),)


def test_settings_pass_through(builder: PipelineBuilder, tmp_path: Path) -> None:
    options = PipelineOptions(compression_level=1.7, remove_metadata=True, export_directory=tmp_path)
    pipeline = builder.build(options)
    assert pipeline.compression_level == 1.0
    assert pipeline.remove_metadata is True
    assert pipeline.export_directory == tmp_path


def test_end_to_end_square_format(square_catalog, decode_bytes) -> None:
    registry = EncoderRegistry(square_catalog)
    builder = PipelineBuilder(registry)
    pipeline = builder.build(
        PipelineOptions(size_unit="percent", resize_percent=0.5, target_format=square_catalog.get("square"))
    )
    image = DecodedImage(pixels=Image.new("RGB", (1920, 1080)), source_format=square_catalog.get("png"))

    result = pipeline.apply(image)
    assert result.pixel_size == PixelSize(540, 540)
    assert result.image_format.identifier == "square"
    assert decode_bytes(result.data).size == (540, 540)


@pytest.mark.parametrize(
    "text,expected",
    [("100", 100), (" 42 ", 42), ("0", None), ("", None), ("-3", None), ("1.5", None), ("abc", None), (None, None)],
)
def test_parse_dimension(text, expected) -> None:
    assert parse_dimension(text) == expected


def test_clamp_compression_level() -> None:
    assert clamp_compression_level(None) is None
    assert clamp_compression_level(-1) == 0.0
    assert clamp_compression_level(0.4) == 0.4
    assert clamp_compression_level(3) == 1.0
    assert clamp_compression_level(float("nan")) is None
    assert clamp_compression_level("bad") is None


def test_resize_input_from_options() -> None:
    assert resize_input_from_options("percent", 0.25, "", "") == PercentResize(0.25)
    assert resize_input_from_options("percent", 0, "", "") is None
    assert resize_input_from_options("pixels", 1.0, "10", "20") == PixelResize(10, 20)
    assert resize_input_from_options("pixels", 0.5, "", "") is None
