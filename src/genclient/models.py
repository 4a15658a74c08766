"""Request and response models for the dashboard backend."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ArticleLength = Literal["short", "medium", "long"]


class ArticleRequest(BaseModel):
    """Generate an article from a title."""

    title: str = Field(..., min_length=1, description="Article title")
    length: ArticleLength = Field(default="medium", description="Desired article length")


class ImageRequest(BaseModel):
    """Generate an image from a text prompt."""

    prompt: str = Field(..., min_length=1, description="Image description")
    style: str | None = Field(default="realistic", description="Rendering style")
    size: str | None = Field(default="1024x1024", description="Output size as WIDTHxHEIGHT")


class HistoryItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    type: str = Field(default="unknown", description="article, image, background-removal or resume-analysis")
    title: str = ""
    description: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    status: str = Field(default="completed", description="completed, processing or failed")
    metadata: dict[str, Any] | None = None


class Pagination(BaseModel):
    """Pagination block of the history envelope; absent on limit-only responses."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    next_cursor: str | None = Field(default=None, alias="nextCursor")
    cursor: str | None = None
    has_next: bool | None = Field(default=None, alias="hasNext")
    has_more: bool | None = Field(default=None, alias="hasMore")
    has_prev: bool | None = Field(default=None, alias="hasPrev")
    total: int | None = Field(default=None, ge=0)
    total_count: int | None = Field(default=None, ge=0, alias="totalCount")


class UsageItem(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    feature: str
    used: int = 0
    limit: int | str = Field(default="unlimited", description="Numeric quota or 'unlimited'")
    remaining: int | str = "unlimited"
    is_premium: bool = Field(default=False, alias="isPremium")


class UsageReport(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    usage: list[UsageItem] = Field(default_factory=list)
    is_premium: bool = Field(default=False, alias="isPremium")
    reset_time: str | None = Field(default=None, alias="resetTime")


class ResumeAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    score: int = Field(default=0, ge=0, le=100)
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    def render_report(self, *, generated_on: date | None = None) -> str:
        """Render the downloadable plain-text report."""

        generated_on = generated_on or date.today()
        lines = [
            "Resume Analysis Report",
            "========================",
            "",
            f"Overall Score: {self.score}/100",
            "",
            "Strengths:",
            *(f"• {item}" for item in self.strengths),
            "",
            "Areas for Improvement:",
            *(f"• {item}" for item in self.improvements),
            "",
            "Key Skills Found:",
            ", ".join(self.keywords),
            "",
            "Recommendations:",
            *(f"• {item}" for item in self.recommendations),
            "",
            f"Generated on: {generated_on.isoformat()}",
        ]
        return "\n".join(lines) + "\n"
