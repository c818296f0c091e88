"""
FastAPI Application - SprintSense Coach API
Sprint biomechanics analysis over HTTP (pose sequences, video uploads) and
WebSocket (live runs), with rate limiting and structured error handling.
"""

import os
import json
import shutil
import uuid
import logging
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import FastAPI, UploadFile, File, Form, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

# Internal imports
from config import DEFAULT_SPLIT_INTERVAL_M
from config.settings import get_settings
from core.athlete_tracker import pose_bounding_box
from core.calibration import Calibration
from core.models import DetectedPose, FormScore, Keypoint, SprintPhase
from core.report import (
    frame_result_to_dict,
    run_result_to_dict,
    snapshot_to_dict,
    split_to_dict,
    velocity_point_to_dict,
)
from core.session import AnalysisServices, PoseMessage, RunSession
from core.split_times import SplitTimeEstimator
from exceptions import (
    SprintSenseException,
    InvalidVideoFormat,
    FileTooLarge,
    InsufficientPoseData,
    ServiceUnavailable,
    SessionStateError,
    ValidationError,
    VideoProcessingError,
)
from logging_config import set_run_id, setup_logging_from_settings
from middleware import PerformanceMiddleware, limiter, setup_error_handlers, setup_rate_limiting

# Load settings
settings = get_settings()

setup_logging_from_settings(settings)
logger = logging.getLogger(__name__)

# =============================================================================
# Application Factory
# =============================================================================

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=settings.APP_NAME,
        description="Real-time sprint biomechanics analysis and coaching",
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,  # Disable docs in production
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID"],
        max_age=3600,  # Cache preflight for 1 hour
    )
    app.add_middleware(PerformanceMiddleware, slow_request_ms=settings.SLOW_REQUEST_MS)
    setup_error_handlers(app)
    setup_rate_limiting(app)

    return app


# Create app instance
app = create_app()

# =============================================================================
# Global State
# =============================================================================

ALLOWED_VIDEO_TYPES = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/webm": ".webm"
}

UPLOAD_DIR = Path(settings.UPLOAD_DIR)
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

split_estimator = SplitTimeEstimator()

# Live WebSocket runs, keyed by run id
live_sessions: Dict[str, RunSession] = {}

# =============================================================================
# Request/Response Models
# =============================================================================

class KeypointIn(BaseModel):
    landmark: int = Field(..., ge=0, le=32, description="MediaPipe landmark index")
    x: float = Field(..., description="Normalized x (0-1)")
    y: float = Field(..., description="Normalized y (0-1, grows downward)")
    confidence: float = 1.0
    visibility: float = 1.0


class PoseIn(BaseModel):
    keypoints: List[KeypointIn]
    bounding_box: Optional[List[float]] = Field(default=None, min_length=4, max_length=4)
    confidence: float = 1.0

    def to_pose(self) -> DetectedPose:
        keypoints = tuple(
            Keypoint(kp.landmark, kp.x, kp.y, kp.confidence, kp.visibility)
            for kp in self.keypoints
        )
        if self.bounding_box is not None:
            return DetectedPose(keypoints, tuple(self.bounding_box), confidence=self.confidence)
        return DetectedPose(keypoints, pose_bounding_box(keypoints), confidence=self.confidence)


class FrameIn(BaseModel):
    timestamp: float = Field(..., ge=0, description="Seconds since the start of the clip")
    poses: List[PoseIn] = []
    generation: Optional[int] = Field(default=None, description="Run generation (live only)")


class CalibrationIn(BaseModel):
    pixels_per_meter: Optional[float] = None
    frame_width_px: Optional[int] = None
    frame_height_px: Optional[int] = None
    camera_angle_deg: Optional[float] = None

    def to_calibration(self) -> Calibration:
        return Calibration(
            pixels_per_meter=self.pixels_per_meter if self.pixels_per_meter is not None else settings.PIXELS_PER_METER,
            frame_width_px=self.frame_width_px or settings.FRAME_WIDTH_PX,
            frame_height_px=self.frame_height_px or settings.FRAME_HEIGHT_PX,
            camera_angle_deg=self.camera_angle_deg if self.camera_angle_deg is not None else settings.CAMERA_ANGLE_DEG,
        )


class AnalyzeRunRequest(BaseModel):
    frames: List[FrameIn] = Field(..., min_length=1)
    calibration: Optional[CalibrationIn] = None
    multi_person: Optional[bool] = None
    split_interval_m: float = Field(default=DEFAULT_SPLIT_INTERVAL_M, gt=0)
    history: List[float] = Field(default=[], description="Earlier overall scores, oldest first")
    include_snapshots: bool = False


class SnapshotRequest(BaseModel):
    pose: PoseIn
    previous_pose: Optional[PoseIn] = None
    timestamp: float = 0.0
    frame_index: int = 0
    phase: SprintPhase = SprintPhase.UNKNOWN
    calibration: Optional[CalibrationIn] = None


class TheoreticalCurveRequest(BaseModel):
    target_100m_time: float = Field(..., gt=0, description="Target 100m time in seconds")
    resolution: int = Field(default=50, ge=2, le=1000)
    split_interval_m: float = Field(default=DEFAULT_SPLIT_INTERVAL_M, gt=0)


class CalibrationRequest(BaseModel):
    real_distance_m: float
    pixel_distance: Optional[float] = None
    point_a: Optional[List[float]] = Field(default=None, min_length=2, max_length=2)
    point_b: Optional[List[float]] = Field(default=None, min_length=2, max_length=2)
    camera_angle_deg: float = 0.0
    frame_width_px: Optional[int] = None
    frame_height_px: Optional[int] = None


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str


# =============================================================================
# Helpers
# =============================================================================

def resolve_calibration(calibration: Optional[CalibrationIn]) -> Calibration:
    return (calibration or CalibrationIn()).to_calibration()


def validate_video_file(file: UploadFile) -> str:
    """
    Validate uploaded video file.

    Returns:
        Generated safe filename

    Raises:
        InvalidVideoFormat: If file type not allowed
        FileTooLarge: If file exceeds size limit
    """
    if file.content_type not in ALLOWED_VIDEO_TYPES:
        raise InvalidVideoFormat(
            content_type=file.content_type or "unknown",
            allowed_types=list(ALLOWED_VIDEO_TYPES.keys())
        )

    if file.size and file.size > settings.max_video_size_bytes:
        raise FileTooLarge(
            file_size_mb=file.size / (1024 * 1024),
            max_size_mb=settings.MAX_VIDEO_SIZE_MB
        )

    return f"{uuid.uuid4()}{ALLOWED_VIDEO_TYPES[file.content_type]}"


def cleanup_file(filepath: Path) -> None:
    """Remove a temporary upload."""
    try:
        if filepath.exists():
            filepath.unlink()
    except OSError as e:
        logger.error(f"Failed to cleanup file {filepath}: {e}")


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/", response_model=HealthResponse, tags=["Health"])
async def root():
    """Root endpoint - basic health check."""
    return HealthResponse(
        status="ok",
        service=settings.APP_NAME,
        version=settings.APP_VERSION
    )


@app.get("/health", tags=["Health"])
async def health():
    """Simple health check for load balancers."""
    return {"status": "healthy"}


@app.get("/health/live", tags=["Health"])
async def health_live():
    """Liveness probe - is service responding?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
async def health_ready():
    """Readiness probe - is service ready for traffic?"""
    if not UPLOAD_DIR.exists():
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "upload_dir_missing"}
        )

    disk = shutil.disk_usage(UPLOAD_DIR)
    if disk.free < 100 * 1024 * 1024:  # Less than 100MB
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "low_disk_space"}
        )

    return {"status": "ready"}


@app.get("/metrics", tags=["Health"])
async def metrics():
    """Basic metrics endpoint for monitoring."""
    import psutil

    disk = shutil.disk_usage(UPLOAD_DIR)
    process = psutil.Process(os.getpid())

    return {
        "uptime_seconds": process.create_time(),
        "memory_mb": round(process.memory_info().rss / 1024 / 1024, 2),
        "cpu_percent": process.cpu_percent(interval=0.1),
        "disk_free_gb": round(disk.free / 1024**3, 2),
        "disk_used_gb": round(disk.used / 1024**3, 2),
        "live_sessions": len(live_sessions),
        "live_sessions_running": sum(1 for s in live_sessions.values() if s.is_running),
    }


# =============================================================================
# Run Analysis Endpoints
# =============================================================================

@app.post("/api/runs/analyze", tags=["Analysis"])
@limiter.limit(settings.RATE_LIMIT_ANALYZE)
async def analyze_run(request: Request, body: AnalyzeRunRequest):
    """
    Analyze a recorded run from a pose-frame sequence.

    - **frames**: timestamped pose estimates, in capture order
    - **calibration**: optional override of the configured pixels-per-meter
    - **history**: earlier overall scores, for trend recommendations
    """
    calibration = resolve_calibration(body.calibration)
    overrides = dict(
        voice_feedback=False,
        split_interval=body.split_interval_m,
        history=[FormScore(overall=s) for s in body.history],
    )
    if body.multi_person is not None:
        overrides["multi_person"] = body.multi_person
    session = RunSession.from_settings(settings, calibration=calibration, **overrides)

    session.start()
    analyzed = 0
    for frame in body.frames:
        if session.process([p.to_pose() for p in frame.poses], frame.timestamp) is not None:
            analyzed += 1
    result = session.stop()

    if analyzed == 0:
        raise InsufficientPoseData("No frame carried a usable pose")

    logger.info(f"Run {result.run_id} analyzed: {analyzed}/{len(body.frames)} frames")
    return run_result_to_dict(result, include_snapshots=body.include_snapshots)


@app.post("/api/snapshots", tags=["Analysis"])
async def compute_snapshot(body: SnapshotRequest):
    """Biomechanics snapshot for a single pose (and optional previous pose)."""
    services = AnalysisServices.create(resolve_calibration(body.calibration))
    snapshot = services.calculator.compute_snapshot(
        body.pose.to_pose(),
        body.previous_pose.to_pose() if body.previous_pose else None,
        frame_index=body.frame_index,
        timestamp=body.timestamp,
        phase=body.phase,
    )
    return snapshot_to_dict(snapshot)


@app.post("/api/splits/theoretical", tags=["Splits"])
async def theoretical_splits(body: TheoreticalCurveRequest):
    """Idealized velocity profile and splits for a target 100m time."""
    curve = split_estimator.theoretical_curve(body.target_100m_time, body.resolution)
    splits = split_estimator.estimate_splits(curve, body.split_interval_m)
    return {
        "target_100m_time": body.target_100m_time,
        "curve": [velocity_point_to_dict(p) for p in curve],
        "splits": [split_to_dict(s) for s in splits],
        "velocity_stats": {
            "max_velocity": round(max(p.velocity for p in curve), 3),
        },
    }


@app.post("/api/calibration", tags=["Calibration"])
async def calibrate(body: CalibrationRequest):
    """
    Pixels-per-meter from a known on-screen distance.

    Give either **pixel_distance** or the two marks **point_a** / **point_b**.
    """
    frame = dict(
        frame_width_px=body.frame_width_px or settings.FRAME_WIDTH_PX,
        frame_height_px=body.frame_height_px or settings.FRAME_HEIGHT_PX,
    )
    if body.point_a is not None and body.point_b is not None:
        calibration = Calibration.from_reference_points(
            tuple(body.point_a), tuple(body.point_b), body.real_distance_m, body.camera_angle_deg, **frame
        )
    elif body.pixel_distance is not None:
        calibration = Calibration.from_reference(
            body.pixel_distance, body.real_distance_m, body.camera_angle_deg, **frame
        )
    else:
        raise ValidationError("Provide pixel_distance or both point_a and point_b", field="pixel_distance")

    return {
        "pixels_per_meter": round(calibration.pixels_per_meter, 3),
        "camera_angle_deg": calibration.camera_angle_deg,
        "frame_width_px": calibration.frame_width_px,
        "frame_height_px": calibration.frame_height_px,
    }


@app.post("/api/videos/analyze", tags=["Analysis"])
@limiter.limit(settings.RATE_LIMIT_UPLOAD)
async def analyze_video_upload(
    request: Request,
    file: UploadFile = File(...),
    pixels_per_meter: Optional[float] = Form(None),
    include_snapshots: bool = Form(False)
):
    """
    Upload a sprint video and analyze it offline.
    Needs the optional pose stack (``pip install sprintsense[pose]``).
    """
    try:
        from core.pose_extractor import analyze_video
    except ImportError as e:
        logger.warning(f"Video analysis requested but pose stack unavailable: {e}")
        raise ServiceUnavailable("Video analysis requires the optional pose extra (opencv, mediapipe)")

    filepath = UPLOAD_DIR / validate_video_file(file)
    try:
        content = await file.read()
        if len(content) > settings.max_video_size_bytes:
            raise FileTooLarge(
                file_size_mb=len(content) / (1024 * 1024),
                max_size_mb=settings.MAX_VIDEO_SIZE_MB
            )
        filepath.write_bytes(content)

        run_settings = settings
        if pixels_per_meter is not None:
            run_settings = settings.model_copy(update={"PIXELS_PER_METER": pixels_per_meter})
        result = analyze_video(str(filepath), settings=run_settings)
        return run_result_to_dict(result, include_snapshots=include_snapshots)
    except SprintSenseException:
        raise
    except OSError as e:
        logger.error(f"Video analysis failed: {e}", exc_info=True)
        raise VideoProcessingError(f"Analysis failed: {str(e)}", stage="upload")
    finally:
        cleanup_file(filepath)


# =============================================================================
# Live Runs (WebSocket)
# =============================================================================

async def _send_error(websocket: WebSocket, exc: SprintSenseException) -> None:
    await websocket.send_json({"type": "error", **exc.to_dict()})


def _parse_message(raw: str) -> dict:
    try:
        message = json.loads(raw)
    except ValueError as e:
        raise ValidationError("Message is not valid JSON", field="message") from e
    if not isinstance(message, dict):
        raise ValidationError("Message must be a JSON object", field="message")
    return message


@app.websocket("/ws/live")
async def live_run(websocket: WebSocket):
    """
    Live run protocol (JSON messages):

    - ``{"type": "start", "calibration": {...}}`` -> ``started`` with run id and generation
    - ``{"type": "poses", "timestamp": t, "poses": [...], "generation": g}`` -> ``frame`` or ``skipped``
    - ``{"type": "stop"}`` -> ``result`` with the post-run analysis
    """
    await websocket.accept()
    session: Optional[RunSession] = None

    try:
        while True:
            raw = await websocket.receive_text()

            try:
                message = _parse_message(raw)
                kind = message.get("type")

                if kind == "start":
                    # One session per connection; later runs reuse it so generations keep increasing
                    if session is None:
                        calibration = CalibrationIn.model_validate(message.get("calibration") or {})
                        session = RunSession.from_settings(settings, calibration=calibration.to_calibration())
                        live_sessions[session.run_id] = session
                        set_run_id(session.run_id)
                    generation = session.start()
                    await websocket.send_json({
                        "type": "started", "run_id": session.run_id, "generation": generation
                    })

                elif kind == "poses":
                    if session is None or not session.is_running:
                        raise SessionStateError("Send start before poses", state="idle")
                    frame = FrameIn.model_validate(message)
                    result = session.deliver(PoseMessage(
                        poses=[p.to_pose() for p in frame.poses],
                        timestamp=frame.timestamp,
                        generation=session.generation if frame.generation is None else frame.generation,
                    ))
                    if result is None:
                        await websocket.send_json({"type": "skipped", "timestamp": frame.timestamp})
                    else:
                        await websocket.send_json({"type": "frame", **frame_result_to_dict(result)})

                elif kind == "stop":
                    if session is None:
                        raise SessionStateError("No run in progress", state="idle")
                    result = session.stop()
                    await websocket.send_json({"type": "result", **run_result_to_dict(result)})

                else:
                    await websocket.send_json({
                        "type": "error", "error": "UNKNOWN_MESSAGE", "detail": f"Unknown message type: {kind}"
                    })

            except SprintSenseException as e:
                logger.warning(f"Live run error: {e.code} - {e.message}")
                await _send_error(websocket, e)
            except PydanticValidationError as e:
                await websocket.send_json({
                    "type": "error", "error": "VALIDATION_ERROR", "detail": str(e)
                })

    except WebSocketDisconnect:
        logger.info("Live client disconnected")
    finally:
        if session is not None:
            live_sessions.pop(session.run_id, None)


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
