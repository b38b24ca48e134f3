from podmix.models.clip import Clip, ClipAnalysis, ClipKind
from podmix.models.placement import LayoutResult, PlacementItem
from podmix.models.sample_buffer import SampleBuffer

__all__ = [
    "Clip",
    "ClipAnalysis",
    "ClipKind",
    "LayoutResult",
    "PlacementItem",
    "SampleBuffer",
]
