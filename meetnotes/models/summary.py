"""Structured meeting summary models."""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SummaryPoint(BaseModel):
    text: str = ""
    references: List[Any] = Field(default_factory=list)

    @field_validator("references", mode="before")
    @classmethod
    def _references_list(cls, value):
        return value if isinstance(value, list) else []

    @field_validator("text", mode="before")
    @classmethod
    def _text_str(cls, value):
        return value if isinstance(value, str) else ""


class SummarySection(BaseModel):
    heading: str = "Discussion"
    points: List[SummaryPoint] = Field(default_factory=list)

    @field_validator("heading", mode="before")
    @classmethod
    def _heading_default(cls, value):
        return value or "Discussion"

    @field_validator("points", mode="before")
    @classmethod
    def _coerce_points(cls, value):
        if not isinstance(value, list):
            return []
        # Models sometimes answer with bare strings instead of point objects.
        return [{"text": point} if isinstance(point, str) else point
                for point in value if isinstance(point, (str, dict))]


class ActionItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task: str = ""
    assignee: Optional[str] = None
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    priority: str = "medium"

    @field_validator("assignee", "due_date", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority_default(cls, value):
        return str(value).lower() if value else "medium"

    @field_validator("task", mode="before")
    @classmethod
    def _task_str(cls, value):
        return value if isinstance(value, str) else ""


class MeetingSummary(BaseModel):
    """``{title, sections: [{heading, points}], actionItems: [...]}``"""
    model_config = ConfigDict(populate_by_name=True)

    title: str = "Untitled Meeting"
    sections: List[SummarySection] = Field(default_factory=list)
    action_items: List[ActionItem] = Field(default_factory=list, alias="actionItems")

    @field_validator("title", mode="before")
    @classmethod
    def _title_default(cls, value):
        return value or "Untitled Meeting"

    @field_validator("sections", "action_items", mode="before")
    @classmethod
    def _list_or_empty(cls, value):
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


def placeholder_summary() -> MeetingSummary:
    """Summary stored when the summarization service could not produce one."""
    return MeetingSummary(
        title="Meeting Summary",
        sections=[SummarySection(
            heading="Discussion",
            points=[SummaryPoint(
                text="Meeting transcript was recorded. Summary generation encountered an error.",
            )],
        )],
        action_items=[],
    )
