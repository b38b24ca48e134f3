from podmix.analyzers.clip_analyzer import analyze_clip
from podmix.planners.timeline_layout import layout_timeline
from podmix.renderers.mix_renderer import render_mix

__version__ = "0.1.0"

__all__ = ["analyze_clip", "layout_timeline", "render_mix"]
