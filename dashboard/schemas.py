"""
Pydantic schemas for request/response models.

This module contains the data validation and serialization models used by
the Student Dashboard API endpoints. Stored documents are free-form JSON, so
the state models allow extra keys and only pin down the fields the server
reads.
"""

from typing import List, Dict, Optional, Any, Literal
from pydantic import BaseModel, ConfigDict, Field, StrictBool


MONTH_PATTERN = r"^\d{4}-\d{2}$"
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


# ============================================================================
# STATE SCHEMAS
# ============================================================================

class ScoreData(BaseModel):
    """Scores of one student for one month (15-point scale)."""
    month: str = Field(..., pattern=MONTH_PATTERN, examples=["2025-09"])
    math: Optional[float] = Field(None, examples=[7.5])
    lit: Optional[float] = Field(None, examples=[6.0])
    eng: Optional[float] = Field(None, examples=[8.25])


class TaskTick(BaseModel):
    """Completion of one action on one day."""
    date: str = Field(..., pattern=DATE_PATTERN, examples=["2025-10-03"])
    completed: bool


class StudyAction(BaseModel):
    """A habit the student ticks off."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., examples=["HS001-1727912345678-0"])
    description: str = ""
    frequency: str = Field("weekly", examples=["daily"])
    ticks: List[TaskTick] = Field(default_factory=list)


class Student(BaseModel):
    """One student record of the stored state."""
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)

    mhs: str = Field(..., description="Student identifier", examples=["HS001"])
    name: str = Field("", examples=["Nguyễn Văn A"])
    class_name: str = Field("", alias="class", examples=["8A1"])
    scores: List[ScoreData] = Field(default_factory=list)
    aiReport: Optional[Dict[str, Any]] = None
    actionsByMonth: Dict[str, List[StudyAction]] = Field(default_factory=dict)
    activeActions: List[StudyAction] = Field(default_factory=list)


class AppState(BaseModel):
    """The document stored per sheet id."""
    model_config = ConfigDict(extra="allow")

    students: List[Student] = Field(default_factory=list)


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, examples=["HS001"])
    password: str = Field(..., min_length=1)


class UserInfo(BaseModel):
    username: str
    name: str
    role: Literal["ADMIN", "TEACHER", "STUDENT"]
    teacherClass: Optional[str] = None


class LoginResponse(BaseModel):
    ok: bool = True
    user: UserInfo


class ChangePasswordRequest(BaseModel):
    currentPassword: str = Field(..., min_length=1)
    newPassword: str = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    mhs: str = Field(..., min_length=1, description="Account to reset (MHS or username)")


# ============================================================================
# SYNC SCHEMAS
# ============================================================================

class SyncRequest(BaseModel):
    """Body of POST /api/sync/sheets."""
    mode: Literal["new_only", "months"] = Field("new_only", description="new_only: months not stored yet; months: selectedMonths")
    selectedMonths: List[str] = Field(default_factory=list, examples=[["2025-09", "2025-10"]])
    sheet: Optional[str] = Field(None, description="Sheet name or db id; the configured default when omitted")
    source: Literal["apps_script", "csv", "gspread"] = "apps_script"


class ForceSyncRequest(BaseModel):
    sheet: Optional[str] = None
    source: Literal["apps_script", "csv", "gspread"] = "apps_script"


class SyncResponse(BaseModel):
    """Result of a sheet sync."""
    ok: bool = True
    mode: str = Field(..., examples=["new_only"])
    stateId: str = Field(..., examples=["DIEM_2526"])
    sheet: str = Field(..., examples=["DIEM_2526"])
    selectedMonths: List[str] = Field(default_factory=list)
    monthsAll: List[str] = Field(..., examples=[["2025-08", "2025-09"]])
    monthsSynced: List[str] = Field(..., examples=[["2025-09"]])
    newMonthsDetected: List[str] = Field(default_factory=list)
    students: int = Field(..., examples=[412])
    dryRun: bool = False
    timestamp: str


# ============================================================================
# STUDENT SCHEMAS
# ============================================================================

class TickRequest(BaseModel):
    actionId: str = Field(..., min_length=1)
    date: str = Field(..., pattern=DATE_PATTERN, examples=["2025-10-03"])
    completed: StrictBool


class GenerateReportRequest(BaseModel):
    mhs: str = Field(..., min_length=1)
    month: Optional[str] = Field(None, description="Month to analyze; the latest scored month when omitted")


class SaveReportRequest(BaseModel):
    mhs: str = Field(..., min_length=1)
    report: Dict[str, Any]
    actions: List[Dict[str, Any]]
    monthKey: Optional[str] = None


# ============================================================================
# ADMIN SCHEMAS
# ============================================================================

class SaveStudentsRequest(BaseModel):
    students: List[Dict[str, Any]]
    sheet: Optional[str] = None


class AddStudentRequest(BaseModel):
    mhs: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    className: str = Field(..., min_length=1)


class AddTeacherRequest(BaseModel):
    name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    teacherClass: str = ""
    note: str = ""


class DeleteStudentRequest(BaseModel):
    mhs: str = Field(..., min_length=1)


class UpdateStudentRequest(BaseModel):
    mhs: str = Field(..., min_length=1)
    newName: Optional[str] = None
    newClass: Optional[str] = None


class RecoverRequest(BaseModel):
    targetSheet: Optional[str] = Field(None, description="app_state id to repair; the configured default when omitted")
    sourceSheet: Optional[str] = Field(None, description="Only take data from this app_state id")
