from app.services.variants.codec import CodecError, CodecTool, FfmpegCodecTool, MediaProbe
from app.services.variants.generator import VariantConfig, VariantGenerator

__all__ = [
    "CodecError",
    "CodecTool",
    "FfmpegCodecTool",
    "MediaProbe",
    "VariantConfig",
    "VariantGenerator",
]
