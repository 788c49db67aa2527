"""
Student Dashboard API - FastAPI Application

Backend of the student performance dashboard:
- Sync monthly scores from the school's Google Sheet into one JSON document per sheet
- Coaching reports and habit tracking (actions with daily ticks)
- Role-based views for ADMIN, TEACHER and STUDENT

Version: 1.0.0
"""

# ============================================================================
# IMPORTS
# ============================================================================

# FastAPI and web framework imports
from fastapi import FastAPI, HTTPException, Depends, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session
from typing import Optional, List, Dict, Any
import logging
from requests.exceptions import RequestException

# Environment variables
from dotenv import load_dotenv
load_dotenv()  # Load .env file

# Local modules
from dashboard.utils import handle_errors, SheetBackendError
from dashboard.config_manager import get_config_manager, get_setting, default_state_id, legacy_state_id, EnvConfig
from dashboard.core.db import get_db, init_db
from dashboard.core.store import (
    get_app_state,
    set_app_state,
    list_app_states,
    get_state_record,
    get_override_password,
    set_override_password,
    clear_override_password,
)
from dashboard.session import get_session, require_role, set_session, clear_session
from dashboard.accounts import (
    ADMIN_USERNAME,
    authenticate,
    admin_passwords,
    effective_password,
    fetch_accounts,
    fetch_teachers,
)
from dashboard.reports import attach_report, normalize_report, report_month, score_for_month
from dashboard.services.gemini import FallbackReportGenerator, get_report_generator
from dashboard.services.sheets import AppsScriptClient
from dashboard.sync.service import SheetSyncService
from dashboard.sync.reconcile import apply_tick
from dashboard.sync.recovery import analyze_records, apply_recovery, pick_richest
from dashboard.queries.dashboard import dashboard_stats
from dashboard.queries.analytics import teacher_analytics
from dashboard.schemas import (
    AppState,
    LoginRequest,
    LoginResponse,
    ChangePasswordRequest,
    ResetPasswordRequest,
    SyncRequest,
    ForceSyncRequest,
    SyncResponse,
    TickRequest,
    GenerateReportRequest,
    SaveReportRequest,
    SaveStudentsRequest,
    AddStudentRequest,
    AddTeacherRequest,
    DeleteStudentRequest,
    UpdateStudentRequest,
    RecoverRequest,
)

# ============================================================================
# CONFIGURATION
# ============================================================================

# Initialize logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI application with metadata
app = FastAPI(
    title="Student Dashboard API",
    description="Monthly score sync, coaching reports and habit tracking for students, teachers and admins",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)


# ============================================================================
# DATABASE INITIALIZATION
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize database tables on application startup."""
    try:
        logger.info("Initializing database tables...")
        init_db()
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")


# ============================================================================
# ERROR RESPONSES
# ============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Every error leaves the API as {"ok": false, "error": ...}."""
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid payload: {location}: {first.get('msg')}" if first else "Invalid payload"
    return JSONResponse(status_code=400, content={"ok": False, "error": message})


# ============================================================================
# HELPERS
# ============================================================================

def resolve_state_id(sheet: Optional[str] = None) -> str:
    """Sheet name or db id → app_state id; the configured default when omitted."""
    if not sheet:
        return default_state_id()
    config_sheet = get_config_manager().find_sheet(sheet)
    return config_sheet.db_id if config_sheet else sheet


def load_state(db: Session, state_id: str) -> Dict[str, Any]:
    return get_app_state(db, state_id, fallback_id=legacy_state_id(state_id))


def find_student_index(students: List[Dict[str, Any]], mhs: str) -> int:
    mhs = str(mhs or "").strip()
    for i, student in enumerate(students):
        if str(student.get("mhs") or "").strip() == mhs:
            return i
    return -1


def teacher_class(session: Dict[str, Any]) -> str:
    return session.get("teacher", {}).get("class", "")


def check_student_access(session: Dict[str, Any], student: Dict[str, Any]) -> None:
    """Students see only themselves, teachers only their own class."""
    role = session["role"]
    if role == "STUDENT" and str(student.get("mhs") or "").strip() != session["mhs"]:
        raise HTTPException(status_code=403, detail="Forbidden")
    if role == "TEACHER" and str(student.get("class") or "").strip() != teacher_class(session):
        raise HTTPException(status_code=403, detail="Forbidden")


def check_sync_secret(secret: Optional[str]) -> None:
    expected = EnvConfig.get_sync_secret()
    if not expected or secret != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def sheet_writer() -> AppsScriptClient:
    """Client for the Apps Script write endpoint (roster and password changes)."""
    url, secret = EnvConfig.get_accounts_write()
    return AppsScriptClient(url, secret=secret)


def run_sync(sheet: Optional[str], mode: str, selected_months: Optional[List[str]] = None, source: str = "apps_script") -> Dict[str, Any]:
    """Sync one sheet; a name missing from config.json is both the tab and the state id."""
    config_sheet = get_config_manager().find_sheet(sheet) if sheet else None
    if config_sheet is not None:
        service = SheetSyncService(state_id=config_sheet.db_id, sheet_name=config_sheet.sheet_name)
    else:
        service = SheetSyncService(state_id=sheet, sheet_name=sheet)
    return service.sync(mode, selected_months, source=source).to_dict()


# ============================================================================
# ROOT ENDPOINT
# ============================================================================

@app.get(
    "/",
    tags=["General"],
    summary="API Information",
    description="Get basic information about the Student Dashboard API and available endpoints"
)
def read_root():
    """
    Root endpoint providing API information and endpoint discovery.

    Example:
        ```bash
        curl http://localhost:8000/
        ```
    """
    return {
        "message": "Welcome to the Student Dashboard API",
        "version": "1.0",
        "documentation": {
            "swagger_ui": "/docs",
            "redoc": "/redoc",
            "openapi_schema": "/openapi.json"
        },
        "endpoints": {
            "login": "/api/login - Sign in as admin, teacher or student",
            "sync": "/api/sync/sheets - Sync new months from the score sheet",
            "student": "/api/student/me - Own scores, actions and stats",
            "students": "/api/admin/get-students - Students visible to the caller",
            "analytics": "/api/teacher/analytics - Monthly risk and progress report",
            "years": "/api/years - Configured school years"
        }
    }


@app.get(
    "/api/years",
    tags=["General"],
    summary="List School Years",
    description="Configured school years and the sheets they sync"
)
def list_years():
    """
    List the school years from config.json.

    Returns:
        dict: years (list of {id, label, sheets}) and the default year id
    """
    config_manager = get_config_manager()
    return {
        "ok": True,
        "defaultYear": config_manager.default_year,
        "years": [y.to_dict() for y in config_manager.list_year_configs()],
    }


# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post(
    "/api/login",
    response_model=LoginResponse,
    tags=["Auth"],
    summary="Sign In",
    description="Check credentials (admin, teacher, student) and set the session cookie"
)
@handle_errors
def login(body: LoginRequest, response: Response, sheet: Optional[str] = None, db: Session = Depends(get_db)):
    """
    Sign in.

    Admin credentials come from the environment (or the admin's changed
    password), teachers from the TEACHERS sheet, students from the ACCOUNTS
    sheet. A student without a sheet password may use their MHS or 123456.
    A password changed in the app always wins.

    Raises:
        HTTPException: 401 on a wrong password, 404 for an unknown student
    """
    students = load_state(db, resolve_state_id(sheet))["students"]
    payload, user = authenticate(db, body.username, body.password, students)
    set_session(response, payload)
    return {"ok": True, "user": user}


@app.post("/api/logout", tags=["Auth"], summary="Sign Out")
def logout(response: Response):
    """Clear the session cookie."""
    clear_session(response)
    return {"ok": True}


@app.get("/api/me", tags=["Auth"], summary="Current Session")
def me(session: Optional[dict] = Depends(get_session)):
    """Return the current session payload (role, mhs, teacher)."""
    session = require_role(session)
    return {"ok": True, "session": session}


# ============================================================================
# ACCOUNT ENDPOINTS
# ============================================================================

@app.post(
    "/api/account/change-password",
    tags=["Accounts"],
    summary="Change Own Password (Student)"
)
@handle_errors
def change_password(body: ChangePasswordRequest, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """
    Change a student's password.

    The new password is stored as an override first, then written to the
    ACCOUNTS sheet. The two writes are reported separately; a failed sheet
    write does not undo the override.
    """
    session = require_role(session, "STUDENT", status_code=401)
    username = session["mhs"]

    account = fetch_accounts().get(username)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")

    current = effective_password(get_override_password(db, username), account)
    if body.currentPassword.strip() != current:
        raise HTTPException(status_code=400, detail="Wrong current password")

    new_password = body.newPassword.strip()
    set_override_password(db, username, account.mhs or username, new_password, "student_change")

    sheet_result = {"ok": True}
    try:
        sheet_writer().post_action("set_new_password", username=username, newPassword=new_password, note="student_change")
    except (ValueError, SheetBackendError, RequestException) as e:
        logger.error(f"Sheet password write failed for {username}: {e}")
        sheet_result = {"ok": False, "error": str(e)}

    return {"ok": True, "override": {"ok": True}, "sheet": sheet_result}


@app.post(
    "/api/account/reset-password",
    tags=["Accounts"],
    summary="Reset A Student Password"
)
@handle_errors
def reset_password(body: ResetPasswordRequest, sheet: Optional[str] = None, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """
    Reset a student to the sheet's default password.

    Clears the override and the sheet's NEW_PASSWORD; each step is attempted
    and reported independently. Teachers may only reset students of their class.

    Returns:
        dict: ok (both steps succeeded), override and sheet step results
    """
    session = require_role(session, "ADMIN", "TEACHER")
    mhs = body.mhs.strip()

    if session["role"] == "TEACHER":
        students = load_state(db, resolve_state_id(sheet))["students"]
        idx = find_student_index(students, mhs)
        if idx < 0:
            raise HTTPException(status_code=404, detail="Student not found")
        check_student_access(session, students[idx])

    note = "teacher_reset" if session["role"] == "TEACHER" else "admin_reset"
    results = {}
    try:
        clear_override_password(db, mhs)
        results["override"] = {"ok": True}
    except Exception as e:
        logger.exception(f"Clearing override failed for {mhs}")
        db.rollback()
        results["override"] = {"ok": False, "error": str(e)}

    try:
        sheet_writer().post_action("clear_new_password", username=mhs, note=note)
        results["sheet"] = {"ok": True}
    except Exception as e:
        logger.exception(f"Clearing sheet password failed for {mhs}")
        results["sheet"] = {"ok": False, "error": str(e)}

    if not results["override"]["ok"] and not results["sheet"]["ok"]:
        raise HTTPException(status_code=502, detail=f"Reset failed: {results['override']['error']}; {results['sheet']['error']}")
    return {"ok": all(r["ok"] for r in results.values()), **results}


@app.post(
    "/api/admin/change-password",
    tags=["Accounts"],
    summary="Change Admin Password"
)
@handle_errors
def change_admin_password(body: ChangePasswordRequest, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """Change the admin password; the current one may be the env password or a previous change."""
    require_role(session, "ADMIN", status_code=401)

    accepted = admin_passwords(db)
    current = body.currentPassword.strip()
    new_password = body.newPassword.strip()
    if current not in accepted:
        raise HTTPException(status_code=400, detail="Wrong current password")
    if new_password in accepted:
        raise HTTPException(status_code=400, detail="New password must be different")

    set_override_password(db, ADMIN_USERNAME, ADMIN_USERNAME, new_password, "admin_change")
    return {"ok": True}


# ============================================================================
# SYNC ENDPOINTS
# ============================================================================

@app.post(
    "/api/sync/sheets",
    response_model=SyncResponse,
    tags=["Synchronization"],
    summary="Sync Score Sheet",
    description="Merge months from the score sheet into the stored state (admin)"
)
@handle_errors
def sync_sheets(body: SyncRequest, session: Optional[dict] = Depends(get_session)):
    """
    Sync the score sheet.

    - **new_only**: months not stored yet; every month when only new students appeared
    - **months**: the months in ``selectedMonths`` (all months when empty)

    Reports, actions and ticks are carried over by MHS; students missing from
    the sheet are kept.

    Raises:
        HTTPException: 400 for a malformed sheet, 502/503 when the sheet backend fails
    """
    require_role(session, "ADMIN")
    return run_sync(body.sheet, body.mode, body.selectedMonths, body.source)


@app.get(
    "/api/sync/sheets",
    tags=["Synchronization"],
    summary="Scheduled Sync",
    description="new_only sync for cron jobs, authorized by the SYNC_SECRET query parameter"
)
@handle_errors
def sync_sheets_cron(secret: Optional[str] = None, sheet: Optional[str] = None):
    """
    Cron entry point.

    Example:
        ```bash
        curl "http://localhost:8000/api/sync/sheets?secret=$SYNC_SECRET"
        ```
    """
    check_sync_secret(secret)
    result = run_sync(sheet, "new_only")
    return {**result, "mode": "cron"}


@app.post(
    "/api/sync/force-all",
    response_model=SyncResponse,
    tags=["Synchronization"],
    summary="Sync Every Month",
    description="Re-read every month of the sheet (admin)"
)
@handle_errors
def sync_force_all(body: Optional[ForceSyncRequest] = None, session: Optional[dict] = Depends(get_session)):
    """
    Re-sync all months.

    Scores of every month are replaced by the sheet's values; reports and
    actions are preserved as in a normal sync.
    """
    require_role(session, "ADMIN")
    body = body or ForceSyncRequest()
    return run_sync(body.sheet, "all", source=body.source)


@app.get(
    "/api/sheets",
    tags=["Synchronization"],
    summary="Full Sync (Secret)",
    description="Every month of the sheet, authorized by the SYNC_SECRET query parameter"
)
@handle_errors
def sheets_full_sync(secret: Optional[str] = None, sheet: Optional[str] = None, source: str = "apps_script"):
    """Secret-protected full sync; also reports the detected month keys."""
    check_sync_secret(secret)
    result = run_sync(sheet, "all", source=source)
    return {**result, "monthsDetected": len(result["monthsAll"]), "months": result["monthsAll"]}


# ============================================================================
# STUDENT ENDPOINTS
# ============================================================================

@app.get(
    "/api/student/me",
    tags=["Student"],
    summary="Own Dashboard",
    description="The signed-in student's record with dashboard statistics"
)
@handle_errors
def student_me(sheet: Optional[str] = None, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """
    Own record plus ``dashboardStats``: latest-month average, best average,
    class and grade averages, target score, and tick leaderboards.
    """
    session = require_role(session, "STUDENT", status_code=401)
    students = load_state(db, resolve_state_id(sheet))["students"]
    idx = find_student_index(students, session["mhs"])
    if idx < 0:
        raise HTTPException(status_code=404, detail="Not found")

    stats = dashboard_stats(
        students[idx],
        students,
        target_score=float(get_setting("target_score", 8.5)),
        leaderboard_size=int(get_setting("leaderboard_size", 3)),
    )
    return {"ok": True, "student": {**students[idx], "dashboardStats": stats}}


@app.post(
    "/api/student/tick",
    tags=["Student"],
    summary="Tick An Action",
    description="Mark one of the student's actions done (or not) for a date"
)
@handle_errors
def student_tick(body: TickRequest, sheet: Optional[str] = None, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """
    Record a tick.

    The action is looked up in the month of ``date``, then in every month,
    then in the legacy activeActions. A date appears at most once per action.

    Raises:
        HTTPException: 404 when the student or the action does not exist
    """
    session = require_role(session, "STUDENT", status_code=401)
    state_id = resolve_state_id(sheet)
    state = load_state(db, state_id)
    students = state["students"]

    idx = find_student_index(students, session["mhs"])
    if idx < 0:
        raise HTTPException(status_code=404, detail="Student not found")

    found, student = apply_tick(students[idx], body.actionId.strip(), body.date, body.completed)
    if not found:
        raise HTTPException(status_code=404, detail="Action not found")

    students[idx] = student
    set_app_state(db, state_id, state)
    return {"ok": True, "student": student}


@app.get(
    "/api/student/history",
    tags=["Student"],
    summary="Long-Term History",
    description="History of a student's scores kept by the sheet backend"
)
@handle_errors
def student_history(mhs: Optional[str] = None, session: Optional[dict] = Depends(get_session)):
    """Proxy the Apps Script history of one student; students may only ask for themselves."""
    session = require_role(session)
    mhs = (mhs or session.get("mhs") or "").strip()
    if not mhs:
        raise HTTPException(status_code=400, detail="Missing mhs")
    if session["role"] == "STUDENT" and mhs != session["mhs"]:
        raise HTTPException(status_code=403, detail="Forbidden")

    return AppsScriptClient(EnvConfig.get_apps_script_url()).get_history(mhs)


# ============================================================================
# REPORT ENDPOINTS
# ============================================================================

@app.post(
    "/api/ai/generate-report",
    tags=["Reports"],
    summary="Generate Coaching Report",
    description="Generate a report for one month and turn its actions into trackable habits"
)
@handle_errors
def generate_report(body: GenerateReportRequest, sheet: Optional[str] = None, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """
    Generate and store a coaching report.

    Uses Gemini when GEMINI_API_KEY is set, a fixed report otherwise. The
    month's actions are rebuilt from the report, keeping the id and ticks of
    actions that did not change.

    Returns:
        dict: the normalized report
    """
    session = require_role(session)
    state_id = resolve_state_id(sheet)
    state = load_state(db, state_id)
    students = state["students"]

    idx = find_student_index(students, body.mhs)
    if idx < 0:
        raise HTTPException(status_code=404, detail="Student not found")
    student = students[idx]
    check_student_access(session, student)

    month = report_month(student, body.month)
    generator = get_report_generator(EnvConfig.get_gemini_api_key())
    fallback = FallbackReportGenerator().generate(student, month)
    raw = generator.generate(student, month, score_for_month(student, month))
    report = normalize_report(raw, month, fallback)

    students[idx] = attach_report(student, report, month)
    set_app_state(db, state_id, state)
    return {"ok": True, **report}


@app.post(
    "/api/admin/save-report",
    tags=["Reports"],
    summary="Save A Report",
    description="Store a report and its actions produced outside the server (admin)"
)
@handle_errors
def save_report(body: SaveReportRequest, sheet: Optional[str] = None, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """Store ``report`` as aiReport and rebuild the month's actions from ``actions``."""
    require_role(session, "ADMIN", status_code=401)
    state_id = resolve_state_id(sheet)
    state = load_state(db, state_id)
    students = state["students"]

    idx = find_student_index(students, body.mhs)
    if idx < 0:
        raise HTTPException(status_code=404, detail="Student not found")

    month = report_month(students[idx], body.monthKey or body.report.get("month"))
    students[idx] = attach_report(students[idx], body.report, month, actions=body.actions)
    set_app_state(db, state_id, state)
    return {"ok": True, "month": month}


# ============================================================================
# ADMIN / TEACHER ENDPOINTS
# ============================================================================

@app.get(
    "/api/admin/get-students",
    tags=["Admin"],
    summary="List Students",
    description="All students for admins, the own class for teachers"
)
@handle_errors
def get_students(sheet: Optional[str] = None, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """
    Students visible to the caller.

    Raises:
        HTTPException: 401 without a session, 403 for students
    """
    session = require_role(session, "ADMIN", "TEACHER")
    students = load_state(db, resolve_state_id(sheet))["students"]

    if session["role"] == "ADMIN":
        return {"ok": True, "students": students}

    cls = teacher_class(session)
    filtered = [s for s in students if str(s.get("class") or "").strip() == cls]
    return {
        "ok": True,
        "students": filtered,
        "meta": {"role": "TEACHER", "teacherClass": cls, "teacherUsername": session["teacher"]["username"]},
    }


@app.post(
    "/api/admin/save-students",
    tags=["Admin"],
    summary="Replace Students",
    description="Overwrite the stored student list (admin)"
)
@handle_errors
def save_students(body: SaveStudentsRequest, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """Validate and store a full student list."""
    require_role(session, "ADMIN", status_code=401)
    AppState.model_validate({"students": body.students})

    state_id = resolve_state_id(body.sheet)
    state = load_state(db, state_id)
    state["students"] = body.students
    set_app_state(db, state_id, state)
    return {"ok": True, "count": len(body.students)}


@app.post("/api/admin/add-student", tags=["Admin"], summary="Add Student To Sheet")
@handle_errors
def add_student(body: AddStudentRequest, session: Optional[dict] = Depends(get_session)):
    """Append a student row through the Apps Script write endpoint."""
    require_role(session, "ADMIN")
    result = sheet_writer().post_action("add_student", mhs=body.mhs.strip(), name=body.name.strip(), className=body.className.strip())
    return {"ok": True, "message": result.get("message")}


@app.post("/api/admin/add-teacher", tags=["Admin"], summary="Add Teacher To Sheet")
@handle_errors
def add_teacher(body: AddTeacherRequest, session: Optional[dict] = Depends(get_session)):
    """Append a teacher account through the Apps Script write endpoint."""
    require_role(session, "ADMIN")
    result = sheet_writer().post_action(
        "add_teacher",
        name=body.name.strip(),
        username=body.username.strip(),
        password=body.password,
        teacherClass=body.teacherClass.strip(),
        note=body.note,
    )
    return {"ok": True, "message": result.get("message")}


@app.post("/api/admin/delete-student", tags=["Admin"], summary="Delete Student From Sheet")
@handle_errors
def delete_student(body: DeleteStudentRequest, session: Optional[dict] = Depends(get_session)):
    """Remove a student's row through the Apps Script write endpoint."""
    require_role(session, "ADMIN")
    result = sheet_writer().post_action("delete_student", mhs=body.mhs.strip())
    return {"ok": True, "message": result.get("message")}


@app.post("/api/admin/update-student", tags=["Admin"], summary="Update Student In Sheet")
@handle_errors
def update_student(body: UpdateStudentRequest, session: Optional[dict] = Depends(get_session)):
    """Rename a student or move them to another class in the sheet."""
    require_role(session, "ADMIN")
    if not body.newName and not body.newClass:
        raise HTTPException(status_code=400, detail="Nothing to update")
    payload = {"mhs": body.mhs.strip()}
    if body.newName:
        payload["newName"] = body.newName.strip()
    if body.newClass:
        payload["newClass"] = body.newClass.strip()
    result = sheet_writer().post_action("update_student", **payload)
    return {"ok": True, "message": result.get("message")}


@app.get("/api/admin/users", tags=["Admin"], summary="List Accounts")
@handle_errors
def list_users(session: Optional[dict] = Depends(get_session)):
    """The admin account plus every teacher from the TEACHERS sheet."""
    require_role(session, "ADMIN")
    teachers = [
        {"username": t.username, "name": t.teacher_name, "role": "TEACHER", "teacherClass": t.teacher_class}
        for t in fetch_teachers().values()
    ]
    users = [{"username": ADMIN_USERNAME, "name": "Quản trị viên", "role": "ADMIN", "teacherClass": ""}] + teachers
    return {"ok": True, "users": users}


@app.get(
    "/api/admin/recover-data",
    tags=["Admin"],
    summary="Recovery Analysis",
    description="What every stored record holds and what could be recovered"
)
@handle_errors
def recover_data_analysis(targetSheet: Optional[str] = None, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """Analyze all stored records; nothing is written."""
    require_role(session, "ADMIN")
    records = list_app_states(db)
    if not records:
        raise HTTPException(status_code=404, detail="No records found in database")
    return {"ok": True, **analyze_records(records, resolve_state_id(targetSheet))}


@app.post(
    "/api/admin/recover-data",
    tags=["Admin"],
    summary="Recover Reports And Actions",
    description="Copy the richest stored reports and actions onto a target record"
)
@handle_errors
def recover_data(body: RecoverRequest, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """
    Apply recovery to ``targetSheet``.

    For every target student, the snapshot with the highest richness
    (report + months with actions) across the source records wins, and is
    applied only when strictly richer than the target's own data.
    """
    require_role(session, "ADMIN")
    target_id = resolve_state_id(body.targetSheet)

    if body.sourceSheet:
        source = get_state_record(db, resolve_state_id(body.sourceSheet))
        if source is None:
            raise HTTPException(status_code=404, detail=f"No data found for {body.sourceSheet}")
        records = [source]
    else:
        records = list_app_states(db)

    state = load_state(db, target_id)
    students, recovered = apply_recovery(state["students"], pick_richest(records))
    state["students"] = students
    set_app_state(db, target_id, state)

    return {
        "ok": True,
        "message": f"Đã phục hồi dữ liệu cho {len(recovered)} học sinh vào {target_id}",
        "recoveredCount": len(recovered),
        "recovered": recovered,
        "totalStudents": len(students),
    }


@app.get(
    "/api/teacher/analytics",
    tags=["Teacher"],
    summary="Monthly Analytics",
    description="Academic risk list, top improvers and subject averages for one month"
)
@handle_errors
def analytics(month: Optional[str] = None, sheet: Optional[str] = None, className: Optional[str] = None, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """
    Risk levels: DANGER (average below 4), WARNING (below 5 or a drop of
    more than 1.5 from the previous month), NOTICE (any subject below 5).

    Teachers always get their own class; admins may pass ``className``.
    """
    session = require_role(session, "ADMIN", "TEACHER")
    students = load_state(db, resolve_state_id(sheet))["students"]

    cls = teacher_class(session) if session["role"] == "TEACHER" else (className or "").strip()
    if cls:
        students = [s for s in students if str(s.get("class") or "").strip() == cls]
    return {"ok": True, "class": cls or None, **teacher_analytics(students, month)}


# ============================================================================
# DEBUG ENDPOINTS
# ============================================================================

@app.get("/api/debug/data", tags=["Debug"], summary="Inspect Stored Data")
@handle_errors
def debug_data(sheet: Optional[str] = None, limit: int = 5, session: Optional[dict] = Depends(get_session), db: Session = Depends(get_db)):
    """Counts per class and a sample of stored students (admin)."""
    require_role(session, "ADMIN")
    state_id = resolve_state_id(sheet)
    record = get_state_record(db, state_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No data found for {state_id}")

    students = record["state"]["students"]
    by_class: Dict[str, int] = {}
    for s in students:
        c = s.get("class") or "UNKNOWN"
        by_class[c] = by_class.get(c, 0) + 1

    sample = [
        {
            "mhs": s.get("mhs"),
            "name": s.get("name"),
            "class": s.get("class"),
            "scoreCount": len(s.get("scores") or []),
            "scores": s.get("scores"),
            "hasAI": bool(s.get("aiReport")),
            "hasActions": bool(s.get("actionsByMonth")) or bool(s.get("activeActions")),
        }
        for s in students[:max(0, limit)]
    ]
    return {
        "ok": True,
        "sheetId": state_id,
        "totalStudents": len(students),
        "classes": sorted(by_class),
        "studentsByClass": by_class,
        "sample": sample,
        "updated_at": record["updated_at"],
    }


@app.get("/api/debug/sheet-data", tags=["Debug"], summary="Inspect Sheet Layout")
@handle_errors
def debug_sheet_data(sheet: Optional[str] = None, session: Optional[dict] = Depends(get_session)):
    """Month row, header row and one data row as the Apps Script serves them (admin)."""
    require_role(session, "ADMIN")
    config_sheet = get_config_manager().find_sheet(sheet) if sheet else get_config_manager().default_sheet()
    sheet_name = config_sheet.sheet_name if config_sheet else sheet
    if not sheet_name:
        raise HTTPException(status_code=400, detail="Missing sheet")

    rows = AppsScriptClient(EnvConfig.get_apps_script_url()).get_data(sheet_name)
    month_row = rows[0] if rows else []
    return {
        "ok": True,
        "sheet": sheet_name,
        "totalRows": len(rows),
        "monthRow": [{"index": i, "value": str(v).strip()} for i, v in enumerate(month_row) if str(v or "").strip()],
        "headerRow": (rows[1] if len(rows) > 1 else [])[:20],
        "sampleDataRow": rows[2][:20] if len(rows) > 2 else None,
    }
