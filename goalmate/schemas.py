from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Literal, Optional

GoalType = Literal["Individual", "Group", "Collaborative"]
CollaborativeType = Literal["compete", "achieve-together"]
SubTaskStatus = Literal["Not Started", "In Progress", "Completed"]
Priority = Literal["Low", "Medium", "High"]
Frequency = Literal["Daily", "Weekly", "Monthly"]
ProgressFrequency = Literal["Daily", "Weekly"]


# User schemas
class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)
    profile_picture: str = ""
    is_premium: bool = False


class UserSummary(BaseModel):
    """Display-level identity"""
    id: int
    name: str
    profile_picture: str = ""

    class Config:
        from_attributes = True


class UserResponse(UserSummary):
    email: str
    is_premium: bool
    created_at: datetime


# Sub-task schemas
class SubTaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    assigned_to: int
    start_value: Optional[float] = Field(None, allow_inf_nan=False)
    end_value: Optional[float] = Field(None, allow_inf_nan=False)


class SubTaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    assignee: UserSummary
    status: str
    start_value: Optional[float]
    end_value: Optional[float]
    completion_percentage: float
    created_at: datetime

    class Config:
        from_attributes = True


class SubTaskStatusUpdate(BaseModel):
    status: SubTaskStatus


# Progress schemas
class ProgressUpdate(BaseModel):
    value: float = Field(..., allow_inf_nan=False)
    notes: Optional[str] = Field(None, max_length=1000)
    sub_task_id: Optional[int] = None
    is_unit_value: bool = False


class ProgressEntryResponse(BaseModel):
    id: int
    date: datetime
    value: float
    notes: Optional[str]
    updated_by: int
    sub_task_id: Optional[int]

    class Config:
        from_attributes = True


class IndividualProgressResponse(BaseModel):
    user: UserSummary
    completion_percentage: float
    total_progress: float
    last_updated: datetime

    class Config:
        from_attributes = True


# Goal schemas
class CategoryMetrics(BaseModel):
    # Fitness specific fields
    fitness_type: Optional[str] = None
    duration: Optional[float] = Field(None, ge=0)
    distance: Optional[float] = Field(None, ge=0)
    sets: Optional[float] = Field(None, ge=0)
    reps: Optional[float] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0)

    # Education specific fields
    education_type: Optional[str] = None
    study_hours: Optional[float] = Field(None, ge=0)
    pages: Optional[float] = Field(None, ge=0)
    modules: Optional[float] = Field(None, ge=0)
    test_score: Optional[str] = None


class GoalCreate(CategoryMetrics):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    goal_type: GoalType = "Individual"
    collaborative_type: Optional[CollaborativeType] = None
    goal_category: str = Field(..., min_length=1, max_length=100)
    priority: Priority = "Medium"
    frequency: Frequency = "Daily"
    progress_frequency: ProgressFrequency = "Daily"
    start_date: Optional[datetime] = None
    end_date: datetime
    participant_ids: List[int] = []
    sub_tasks: List[SubTaskCreate] = []


class GoalUpdate(CategoryMetrics):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    goal_category: Optional[str] = Field(None, min_length=1, max_length=100)
    priority: Optional[Priority] = None
    frequency: Optional[Frequency] = None
    progress_frequency: Optional[ProgressFrequency] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    # Only Archived can be set by a client; anything else re-derives from progress
    archived: Optional[bool] = None


class GoalShareRequest(BaseModel):
    friend_ids: List[int] = Field(..., min_length=1)
    collaborative_type: Optional[CollaborativeType] = None
    sub_tasks: List[SubTaskCreate] = []


class ShareResult(BaseModel):
    friend_id: int
    status: Literal["success", "skipped", "failed"]
    reason: Optional[str] = None


class GoalShareResponse(BaseModel):
    goal_id: int
    share_results: List[ShareResult]


class GoalResponse(CategoryMetrics):
    id: int
    title: str
    description: str
    goal_type: str
    collaborative_type: Optional[str]
    goal_category: str
    is_custom_category: bool
    priority: str
    frequency: str
    progress_frequency: str
    start_date: Optional[datetime]
    end_date: datetime
    status: str
    completion_percentage: float
    version: int
    created_at: datetime
    updated_at: datetime

    creator: UserSummary
    participants: List[UserSummary] = []
    sub_tasks: List[SubTaskResponse] = []
    individual_progress: List[IndividualProgressResponse] = []
    progress_history: List[ProgressEntryResponse] = []

    class Config:
        from_attributes = True
