# src/mindflow_console/models.py

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class BackendModel(BaseModel):
    """Mindflow backend payloads use camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Wellness ---

class WellnessCheckIn(BackendModel):
    mood_level: Optional[str] = None
    reminder_enabled: Optional[bool] = None
    weekday_start_time_utc: Optional[str] = None
    weekday_end_time_utc: Optional[str] = None
    weekend_start_time_utc: Optional[str] = None
    weekend_end_time_utc: Optional[str] = None
    timezone_id: Optional[str] = None


# --- Tasks ---

class TaskItem(BackendModel):
    id: str
    title: str
    description: Optional[str] = None
    category: int = 0
    other_category_name: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    duration_minutes: int = 0
    reminder_enabled: bool = False
    repeat_type: int = 0
    status: int = 0
    created_by_suggestion_engine: bool = False
    is_approved: bool = False


# --- Brain dump ---

class BrainDumpRequest(BackendModel):
    text: str
    context: Optional[str] = None
    mood: Optional[float] = Field(default=None, ge=0, le=10)
    stress: Optional[float] = Field(default=None, ge=0, le=10)
    purpose: Optional[float] = Field(default=None, ge=0, le=10)


class TaskSuggestion(BackendModel):
    task: str
    frequency: Optional[str] = None
    duration: Optional[str] = None
    notes: Optional[str] = None
    priority: Optional[str] = None
    suggested_time: Optional[str] = None


class UserProfile(BackendModel):
    name: str = ""
    current_state: str = ""
    emoji: str = ""


class BrainDumpResponse(BackendModel):
    user_profile: UserProfile = Field(default_factory=UserProfile)
    key_themes: List[str] = Field(default_factory=list)
    ai_summary: str = ""
    suggested_activities: List[TaskSuggestion] = Field(default_factory=list)
    insights: Optional[List[str]] = None
    patterns: Optional[List[str]] = None
    brain_dump_entry_id: Optional[str] = None
    personalized_message: Optional[str] = None


class AddToCalendarRequest(BackendModel):
    task: str
    frequency: str = "Once"
    duration: str = "15 minutes"
    notes: Optional[str] = None
    brain_dump_entry_id: str
    reminder_enabled: bool = False


class ScheduledTask(BackendModel):
    title: str
    description: str = ""
    category: int = 0
    date: Optional[str] = None
    time: Optional[str] = None
    duration_minutes: int = 0
    repeat_type: int = 0
    source_brain_dump_entry_id: Optional[str] = None


class AddTaskResult(BackendModel):
    message: str = ""
    task_id: str
    task: ScheduledTask
