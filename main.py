import asyncio
import logging
from fastapi import FastAPI, HTTPException, Depends, Query
from uuid import UUID
from typing import List, NoReturn, Optional
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Reservation
    CreateReservationRequest, UpdateStatusRequest, ExtendReservationRequest,
    ReleaseReservationRequest, ArchiveReservationRequest, ReservationResponse,
    # Room
    CreateRoomRequest, AvailabilityOverrideRequest, RoomResponse, OccupancyDriftResponse,
    # Maintenance
    SweepReportResponse, SweepErrorResponse,
    # Auth
    Token, UserResponse
)

from api.dependencies import authenticate_user, get_current_active_user, require_staff, user_repo
from infrastructure.config import get_settings
from infrastructure.logging_config import configure_logging
from infrastructure.notifications import (
    InMemoryAuditSink, LoggingReminderDispatcher, RepositoryTenantAccounts,
)
from infrastructure.scheduler import risk_sweep_worker
from infrastructure.security import create_access_token
from domain.auth import User

from application.occupancy import OccupancyReconciler
from application.risk_sweeper import RiskSweeper
from application.services import ReservationService, RoomService
from infrastructure.repositories.in_memory_repositories import (
    InMemoryReservationRepository, InMemoryRoomRepository
)
from domain.entities import Bed, Reservation, Room
from domain.enums import ReservationStatus, RoomType
from domain.exceptions import DomainError
from domain.value_objects import BranchOccupancyStats, RoomOccupancySnapshot, SelectedBed

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(
    title=settings.APP_NAME,
    description="Dormitory reservation lifecycle and room/bed occupancy API",
    version="1.0.0"
)

# Initialize repositories and collaborators
reservation_repo = InMemoryReservationRepository()
room_repo = InMemoryRoomRepository()
audit_sink = InMemoryAuditSink()
reminder_dispatcher = LoggingReminderDispatcher()
tenant_accounts = RepositoryTenantAccounts(user_repo)

# One reconciler per process: it owns the per-room locks
reconciler = OccupancyReconciler(room_repo, reservation_repo)

_sweep_task: Optional[asyncio.Task] = None

# Dependency injection
def get_reservation_service() -> ReservationService:
    return ReservationService(
        reservation_repo, room_repo, reconciler,
        audit_sink=audit_sink,
        tenant_accounts=tenant_accounts,
        default_extension_days=settings.DEFAULT_EXTENSION_DAYS,
    )

def get_room_service() -> RoomService:
    return RoomService(room_repo, reconciler, audit_sink=audit_sink)

def get_risk_sweeper() -> RiskSweeper:
    return RiskSweeper(reservation_repo, reconciler, reminder_dispatcher, audit_sink=audit_sink)

# ============================================================================
# LIFECYCLE
# ============================================================================

@app.on_event("startup")
async def on_startup():
    global _sweep_task
    configure_logging(settings)
    if settings.SWEEP_ENABLED:
        _sweep_task = asyncio.create_task(risk_sweep_worker(
            get_risk_sweeper(),
            interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
            error_backoff_seconds=settings.SWEEP_ERROR_BACKOFF_SECONDS,
        ))
    logger.info("%s started (%s)", settings.APP_NAME, settings.ENVIRONMENT)

@app.on_event("shutdown")
async def on_shutdown():
    global _sweep_task
    if _sweep_task is not None:
        _sweep_task.cancel()
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass
        _sweep_task = None

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/reservation-status", tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.value for item in ReservationStatus],
        "description": "pending -> confirmed -> checked-in -> checked-out; cancelled; at-risk set by the risk sweep"
    }

@app.get("/api/enums/room-type", tags=["Enum Reference"])
async def get_room_types():
    """Get all RoomType enum values"""
    return {"values": [item.value for item in RoomType]}

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = await authenticate_user(form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = create_access_token(data={"sub": user.username})
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

# ============================================================================
# ROOM ENDPOINTS
# ============================================================================

@app.post("/api/rooms", response_model=RoomResponse, status_code=201, tags=["Rooms"])
async def create_room(
    request: CreateRoomRequest,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(require_staff)
):
    """Create a room with its bed layout"""
    scope = current_user.branch_scope
    if scope is not None and request.branch != scope:
        raise HTTPException(status_code=403, detail="Cannot create rooms outside your branch")
    try:
        room = await service.create_room(
            name=request.name,
            room_number=request.room_number,
            branch=request.branch,
            room_type=request.room_type,
            capacity=request.capacity,
            beds=[Bed(bed_id=b.bed_id, position=b.position) for b in request.beds],
        )
        return _room_to_response(room)
    except DomainError as e:
        _raise_http(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.get("/api/rooms", response_model=List[RoomResponse], tags=["Rooms"])
async def list_rooms(
    branch: Optional[str] = None,
    available: Optional[bool] = None,
    include_archived: bool = False,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    """List rooms; admins only see their own branch"""
    if current_user.is_staff and current_user.branch_scope is not None:
        branch = current_user.branch_scope
    if not current_user.is_staff:
        include_archived = False
    rooms = await service.list_rooms(branch=branch, available=available, include_archived=include_archived)
    return [_room_to_response(r) for r in rooms]

@app.get("/api/rooms/{room_id}", response_model=RoomResponse, tags=["Rooms"])
async def get_room(
    room_id: UUID,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get room by ID"""
    try:
        room = await service.get_room(room_id)
        _ensure_room_in_scope(room, current_user)
        return _room_to_response(room)
    except DomainError as e:
        _raise_http(e)

@app.get("/api/rooms/{room_id}/occupancy", response_model=RoomOccupancySnapshot, tags=["Occupancy"])
async def get_room_occupancy(
    room_id: UUID,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(require_staff)
):
    """Bed-by-bed occupancy of a room"""
    try:
        _ensure_room_in_scope(await service.get_room(room_id), current_user)
        return await service.get_occupancy_status(room_id)
    except DomainError as e:
        _raise_http(e)

@app.get("/api/rooms/{room_id}/drift", response_model=OccupancyDriftResponse, tags=["Occupancy"])
async def get_room_drift(
    room_id: UUID,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(require_staff)
):
    """Compare cached occupancy with the reservations that hold the room"""
    try:
        _ensure_room_in_scope(await service.get_room(room_id), current_user)
        drift = await service.detect_drift(room_id)
        return OccupancyDriftResponse(
            room_id=drift.room_id,
            cached_occupancy=drift.cached_occupancy,
            expected_occupancy=drift.expected_occupancy,
            has_drift=drift.has_drift,
            bed_drift=[d.model_dump() for d in drift.bed_drift],
        )
    except DomainError as e:
        _raise_http(e)

@app.post("/api/rooms/{room_id}/recalculate", response_model=RoomResponse, tags=["Occupancy"])
async def recalculate_room(
    room_id: UUID,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(require_staff)
):
    """Rebuild occupancy of a room from its reservations"""
    try:
        _ensure_room_in_scope(await service.get_room(room_id), current_user)
        room = await service.recalculate_room(room_id, actor=current_user.username)
        return _room_to_response(room)
    except DomainError as e:
        _raise_http(e)

@app.put("/api/rooms/{room_id}/availability", response_model=RoomResponse, tags=["Rooms"])
async def set_room_availability(
    room_id: UUID,
    request: AvailabilityOverrideRequest,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(require_staff)
):
    """Force a room open/closed for booking"""
    try:
        _ensure_room_in_scope(await service.get_room(room_id), current_user)
        room = await service.set_availability_override(room_id, request.available)
        return _room_to_response(room)
    except DomainError as e:
        _raise_http(e)

@app.put("/api/rooms/{room_id}/archive", response_model=RoomResponse, tags=["Rooms"])
async def archive_room(
    room_id: UUID,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(require_staff)
):
    """Archive a room that no longer has active reservations"""
    try:
        _ensure_room_in_scope(await service.get_room(room_id), current_user)
        room = await service.archive_room(room_id, actor=current_user.username)
        return _room_to_response(room)
    except DomainError as e:
        _raise_http(e)

@app.get("/api/occupancy/stats", response_model=BranchOccupancyStats, tags=["Occupancy"])
async def get_occupancy_stats(
    branch: Optional[str] = None,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(require_staff)
):
    """Occupancy totals for a branch (admins are limited to their own)"""
    if current_user.branch_scope is not None:
        branch = current_user.branch_scope
    return await service.get_branch_occupancy_stats(branch)

@app.post("/api/occupancy/recalculate", response_model=List[RoomResponse], tags=["Occupancy"])
async def recalculate_branch(
    branch: Optional[str] = None,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(require_staff)
):
    """Rebuild occupancy of every room in a branch"""
    if current_user.branch_scope is not None:
        branch = current_user.branch_scope
    rooms = await service.recalculate_branch(branch)
    return [_room_to_response(r) for r in rooms]

# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@app.post("/api/reservations", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def create_reservation(
    request: CreateReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Create new reservation"""
    guest_id = current_user.user_id
    if request.guest_id is not None and request.guest_id != guest_id:
        if not current_user.is_staff:
            raise HTTPException(status_code=403, detail="Cannot reserve on behalf of another guest")
        guest_id = request.guest_id

    selected_bed = None
    if request.selected_bed is not None:
        selected_bed = SelectedBed(bed_id=request.selected_bed.bed_id, position=request.selected_bed.position)
    try:
        reservation = await service.create_reservation(
            guest_id=guest_id,
            room_id=request.room_id,
            target_move_in_date=request.target_move_in_date,
            selected_bed=selected_bed,
            notes=request.notes,
            created_by=current_user.username,
        )
        return _reservation_to_response(reservation)
    except DomainError as e:
        _raise_http(e)

@app.get("/api/reservations", response_model=List[ReservationResponse], tags=["Reservations"])
async def list_reservations(
    status: Optional[List[ReservationStatus]] = Query(default=None),
    include_archived: bool = False,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Guests see their own reservations, admins those of their branch"""
    if current_user.is_staff:
        reservations = await service.list_reservations(
            branch=current_user.branch_scope,
            statuses=status,
            include_archived=include_archived,
        )
    else:
        reservations = await service.list_reservations(guest_id=current_user.user_id, statuses=status)
    return [_reservation_to_response(r) for r in reservations]

@app.get("/api/reservations/code/{reservation_code}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation_by_code(
    reservation_code: str,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get reservation by reservation code"""
    try:
        reservation = await service.get_reservation_by_code(reservation_code.upper())
        await _ensure_can_view(reservation, current_user)
        return _reservation_to_response(reservation)
    except DomainError as e:
        _raise_http(e)

@app.get("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get reservation by ID"""
    try:
        reservation = await service.get_reservation(reservation_id)
        await _ensure_can_view(reservation, current_user)
        return _reservation_to_response(reservation)
    except DomainError as e:
        _raise_http(e)

@app.put("/api/reservations/{reservation_id}/status", response_model=ReservationResponse, tags=["Reservations"])
async def update_reservation_status(
    reservation_id: UUID,
    request: UpdateStatusRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Move a reservation to a new status; guests may only cancel their own pending one"""
    try:
        reservation = await service.get_reservation(reservation_id)
        await _ensure_can_view(reservation, current_user)
        if not current_user.is_staff and (
            request.status != ReservationStatus.CANCELLED
            or reservation.status != ReservationStatus.PENDING
        ):
            raise HTTPException(status_code=403, detail="Only staff can change this status")

        reservation = await service.update_status(
            reservation_id=reservation_id,
            new_status=request.status,
            payment_verified=request.payment_verified if current_user.is_staff else None,
            actor=current_user.username,
        )
        return _reservation_to_response(reservation)
    except DomainError as e:
        _raise_http(e)

@app.put("/api/reservations/{reservation_id}/extend", response_model=ReservationResponse, tags=["Reservations"])
async def extend_reservation(
    reservation_id: UUID,
    request: ExtendReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Push back the move-in date and reset the reminder / at-risk clock"""
    try:
        reservation = await service.get_reservation(reservation_id)
        await _ensure_can_view(reservation, current_user)
        reservation = await service.extend_reservation(
            reservation_id=reservation_id,
            extension_days=request.extension_days,
            actor=current_user.username,
        )
        return _reservation_to_response(reservation)
    except DomainError as e:
        _raise_http(e)

@app.put("/api/reservations/{reservation_id}/release", response_model=ReservationResponse, tags=["Reservations"])
async def release_reservation(
    reservation_id: UUID,
    request: ReleaseReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Release a no-show and free the room/bed"""
    try:
        reservation = await service.get_reservation(reservation_id)
        await _ensure_can_view(reservation, current_user)
        reservation = await service.release_reservation(
            reservation_id=reservation_id,
            reason=request.reason,
            actor=current_user.username,
        )
        return _reservation_to_response(reservation)
    except DomainError as e:
        _raise_http(e)

@app.put("/api/reservations/{reservation_id}/archive", response_model=ReservationResponse, tags=["Reservations"])
async def archive_reservation(
    reservation_id: UUID,
    request: ArchiveReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Soft delete a reservation"""
    try:
        reservation = await service.get_reservation(reservation_id)
        await _ensure_can_view(reservation, current_user)
        reservation = await service.archive_reservation(
            reservation_id=reservation_id,
            reason=request.reason,
            actor=current_user.username,
        )
        return _reservation_to_response(reservation)
    except DomainError as e:
        _raise_http(e)

@app.put("/api/reservations/{reservation_id}/restore", response_model=ReservationResponse, tags=["Reservations"])
async def restore_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Undo an archive"""
    try:
        reservation = await service.get_reservation(reservation_id)
        await _ensure_can_view(reservation, current_user)
        reservation = await service.restore_reservation(reservation_id, actor=current_user.username)
        return _reservation_to_response(reservation)
    except DomainError as e:
        _raise_http(e)

# ============================================================================
# MAINTENANCE ENDPOINTS
# ============================================================================

@app.post("/api/maintenance/risk-sweep", response_model=SweepReportResponse, tags=["Maintenance"])
async def run_risk_sweep(
    sweeper: RiskSweeper = Depends(get_risk_sweeper),
    current_user: User = Depends(require_staff)
):
    """Run one reminder / at-risk sweep now"""
    report = await sweeper.sweep()
    return SweepReportResponse(
        started_at=report.started_at,
        scanned=report.scanned,
        reminders_sent=report.reminders_sent,
        reminders_failed=report.reminders_failed,
        flagged_at_risk=report.flagged_at_risk,
        errors=[SweepErrorResponse(reservation_id=rid, error=msg) for rid, msg in report.errors],
    )

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _raise_http(error: DomainError) -> NoReturn:
    """Translate a domain error into an HTTP error with a stable code"""
    raise HTTPException(
        status_code=error.status_code,
        detail={"code": error.error_code, "message": error.message},
    )

def _ensure_room_in_scope(room: Room, user: User) -> None:
    scope = user.branch_scope
    if user.is_staff and scope is not None and room.branch != scope:
        raise HTTPException(status_code=404, detail="Room not found")

async def _ensure_can_view(reservation: Reservation, user: User) -> None:
    """Guests only see their own reservations, admins only their branch"""
    if not user.is_staff:
        if reservation.guest_id != user.user_id:
            raise HTTPException(status_code=404, detail="Reservation not found")
        return
    if user.branch_scope is None:
        return
    room = await room_repo.find_by_id(reservation.room_id)
    if room is None or room.branch != user.branch_scope:
        raise HTTPException(status_code=404, detail="Reservation not found")

def _reservation_to_response(reservation: Reservation) -> ReservationResponse:
    """Convert Reservation entity to ReservationResponse"""
    return ReservationResponse.model_validate(reservation.model_dump())

def _room_to_response(room: Room) -> RoomResponse:
    """Convert Room entity to RoomResponse"""
    return RoomResponse.model_validate(room.model_dump())
