from pydantic import BaseModel
from typing import List, Optional

class PlacementOut(BaseModel):
    clip_id: str
    kind: str
    start_time: float
    end_time: float
    play_offset: float
    playback_duration: float
    is_talk_up_intro: bool
    is_underlay: bool

class LayoutOut(BaseModel):
    total_duration: float
    items: List[PlacementOut]
    underlay_items: List[PlacementOut] = []

class RenderOut(BaseModel):
    sample_rate: int
    length_ms: int
    skipped_clip_ids: List[str] = []
    layout: LayoutOut
    debug: Optional[dict] = None
