"""Validated creative segment plan (content-plan collaborator input).

Plans usually arrive as JSON with camelCase keys; both camelCase and
snake_case are accepted.  Models are frozen: the composer only reads them.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from spotmix.services.composer.types import MusicBehavior, SegmentTransition, SegmentType


class _PlanModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        use_enum_values=False,
    )


class SegmentVoiceover(_PlanModel):
    text: str
    voice_style: Optional[str] = None


class SegmentMusic(_PlanModel):
    behavior: MusicBehavior
    volume: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    description: str = ""
    cultural_style: Optional[str] = None
    instruments: Optional[List[str]] = None


class SegmentSfx(_PlanModel):
    description: str = ""
    volume: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class AdCreativeSegment(_PlanModel):
    """One slot of the ad: what plays, for how long, and how it hands over."""
    segment_index: int = Field(ge=0)
    type: SegmentType
    label: str = ""
    duration: float = Field(gt=0.0, le=120.0)
    voiceover: Optional[SegmentVoiceover] = None
    music: Optional[SegmentMusic] = None
    sfx: Optional[SegmentSfx] = None
    transition: SegmentTransition = SegmentTransition.HARD_CUT
    transition_duration: Optional[float] = Field(default=None, ge=0.0, le=5.0)

    @property
    def behavior(self) -> MusicBehavior:
        """Music behavior, ``none`` when the segment has no music."""
        return self.music.behavior if self.music else MusicBehavior.NONE


class AdCreativePlan(_PlanModel):
    """A filled ad template: ordered segments plus overall direction."""
    template_id: str = "custom"
    template_name: str = ""
    segments: List[AdCreativeSegment] = Field(min_length=1, max_length=20)
    overall_music_direction: str = ""
    cultural_context: Optional[str] = None
    base_music_volume: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("segments")
    @classmethod
    def _unique_indices(cls, segments: List[AdCreativeSegment]) -> List[AdCreativeSegment]:
        seen = set()
        for seg in segments:
            if seg.segment_index in seen:
                raise ValueError(f"Duplicate segmentIndex {seg.segment_index}")
            seen.add(seg.segment_index)
        return segments

    @property
    def planned_duration(self) -> float:
        return sum(seg.duration for seg in self.segments)
