"""画像のリサイズ・形式変換・圧縮パイプライン。"""

__version__ = "0.3.0"

from .batch import BatchItem, BatchReport, BatchRunner
from .encoders import Encoder, EncoderRegistry, PillowEncoder
from .errors import (
    CatalogError,
    DecodeError,
    EncodeError,
    OperationError,
    PipelineError,
    SegmentationUnavailable,
    UnsupportedFormat,
    WriteError,
)
from .format_catalog import FormatCapabilities, ImageFormat, SizeRestriction, default_format_catalog
from .image_buffer import DecodedImage, EncodeResult, decode_image
from .operations import ConstrainSize, FlipVertical, Operation, RemoveBackground, Resize
from .pipeline import Pipeline
from .pipeline_builder import PipelineBuilder, PipelineOptions, build_pipeline
from .preview_estimator import PreviewEstimator, PreviewInfo
from .resize_math import PercentResize, PixelResize, PixelSize, target_size
from .usage_events import EventSink, InMemoryEventSink, UsageEvent, UsageEventKind

__all__ = [
    "BatchItem",
    "BatchReport",
    "BatchRunner",
    "CatalogError",
    "ConstrainSize",
    "DecodeError",
    "DecodedImage",
    "EncodeError",
    "EncodeResult",
    "Encoder",
    "EncoderRegistry",
    "EventSink",
    "FlipVertical",
    "FormatCapabilities",
    "ImageFormat",
    "InMemoryEventSink",
    "Operation",
    "OperationError",
    "PercentResize",
    "PillowEncoder",
    "Pipeline",
    "PipelineBuilder",
    "PipelineError",
    "PipelineOptions",
    "PixelResize",
    "PixelSize",
    "PreviewEstimator",
    "PreviewInfo",
    "RemoveBackground",
    "Resize",
    "SegmentationUnavailable",
    "SizeRestriction",
    "UnsupportedFormat",
    "UsageEvent",
    "UsageEventKind",
    "WriteError",
    "build_pipeline",
    "decode_image",
    "default_format_catalog",
    "target_size",
]
