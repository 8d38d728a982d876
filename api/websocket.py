from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
import asyncio
import json
import math
import time
from typing import Any, Dict, List, Optional
from core.errors import CalibrationError, PostureEngineError
from core.landmarks import NUM_LANDMARKS
from models.schemas import DetectionSettings, EvaluationResult, Keypoint, SessionResult, SessionStats
from services.posture_monitor import PostureMonitor
from utils.debug import debug_log as _debug_log, is_debug
import config as cfg

router = APIRouter()


# === RATE LIMITER ===

class RateLimiter:
    """Simple rate limiter to prevent message spam."""
    def __init__(self, max_messages: int = 10, window_seconds: float = 1.0):
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self.messages: list = []

    def is_allowed(self) -> bool:
        """Returns True if message is allowed, False if rate limited."""
        now = time.monotonic()
        # Remove old messages outside the window
        self.messages = [t for t in self.messages if now - t < self.window_seconds]

        if len(self.messages) >= self.max_messages:
            return False

        self.messages.append(now)
        return True


# === UTILITY FUNCTIONS ===

def _parse_landmark(lm) -> Optional[Keypoint]:
    if not isinstance(lm, dict) or 'x' not in lm or 'y' not in lm:
        return None
    try:
        x = float(lm['x'])
        y = float(lm['y'])
        z = float(lm.get('z') or 0.0)
        vis = float(lm.get('visibility') or 0.0)
    except (ValueError, TypeError):
        return None
    if not all(math.isfinite(v) for v in (x, y, z, vis)):
        return None
    # Coordinates should be normalized 0-1 (allow some overshoot at the edges)
    if not (-10 <= x <= 10 and -10 <= y <= 10):
        return None
    return Keypoint(x=x, y=y, z=z, visibility=max(0.0, min(1.0, vis)))


def parse_landmarks(raw_landmarks) -> List[Keypoint]:
    """
    Convert a client landmark payload into a 33-point frame.

    Accepts a list in index order or a dict keyed by index string. Missing or
    malformed points become invisible keypoints so indices never shift.
    Returns an empty list when nothing usable was sent.
    """
    if isinstance(raw_landmarks, list):
        if len(raw_landmarks) > NUM_LANDMARKS * 2:
            return []
        items = {i: lm for i, lm in enumerate(raw_landmarks[:NUM_LANDMARKS])}
    elif isinstance(raw_landmarks, dict):
        if len(raw_landmarks) > NUM_LANDMARKS * 2:
            return []
        items = {i: raw_landmarks.get(str(i)) for i in range(NUM_LANDMARKS)}
    else:
        return []

    frame = []
    parsed_any = False
    for i in range(NUM_LANDMARKS):
        kp = _parse_landmark(items.get(i))
        if kp is None:
            kp = Keypoint(x=0.0, y=0.0, z=0.0, visibility=0.0)
        else:
            parsed_any = True
        frame.append(kp)
    return frame if parsed_any else []


class LatestFrameSource:
    """Holds the most recent frame pushed by the client; each frame is handed out once."""

    def __init__(self):
        self._frame: Optional[List[Keypoint]] = None

    def push(self, frame: List[Keypoint]):
        self._frame = frame

    def __call__(self) -> Optional[List[Keypoint]]:
        frame, self._frame = self._frame, None
        return frame


def passthrough_perception(frame: List[Keypoint], timestamp_ms: float) -> List[Keypoint]:
    """The browser already ran pose detection; the frame is the keypoints."""
    return frame


# Sent on every processed frame; safe to drop when the client falls behind
UPDATE_TYPES = {"frame", "posture", "stats"}


def new_outbox() -> asyncio.Queue:
    return asyncio.Queue(maxsize=cfg.WS_OUTBOX_SIZE)


def enqueue(outbox: asyncio.Queue, message: Dict) -> bool:
    """
    Queue a message for the client without ever blocking the engine.

    Per-frame updates are dropped once WS_MAX_PENDING_UPDATES messages are
    waiting; anything is dropped when the queue is full. Returns False when
    the message was dropped.
    """
    if message.get("type") in UPDATE_TYPES and outbox.qsize() >= cfg.WS_MAX_PENDING_UPDATES:
        return False
    try:
        outbox.put_nowait(message)
    except asyncio.QueueFull:
        _debug_log(f"[WS] Outbox full, dropped {message.get('type')}")
        return False
    return True


def build_monitor(outbox: asyncio.Queue, frame_source: LatestFrameSource) -> PostureMonitor:
    """Wire a PostureMonitor whose callbacks queue messages for the client."""
    def send(msg_type: str, data: Any = None):
        enqueue(outbox, {"type": msg_type, "data": data})

    def on_render(status, issues, view_mode):
        send("frame", {"status": status.value, "issues": [i.value for i in issues], "viewMode": view_mode.value})

    def on_posture_change(result: EvaluationResult):
        data = result.model_dump(mode="json")
        if not is_debug():
            data.pop("metrics", None)
        send("posture", data)

    def on_stats_update(stats: SessionStats):
        send("stats", stats.model_dump(mode="json"))

    def on_session_result(result: SessionResult):
        send("session_result", result.model_dump(mode="json", by_alias=True))

    def on_session_audit(record: Dict):
        send("session_audit", {"sessionId": record["sessionId"], "summary": record["summary"]})

    return PostureMonitor(
        perception=passthrough_perception,
        frame_source=frame_source,
        on_render=on_render,
        on_alert=lambda: send("alert", {"message": "Please correct your posture"}),
        on_session_result=on_session_result,
        on_posture_change=on_posture_change,
        on_stats_update=on_stats_update,
        on_view_mode_change=lambda view_mode: send("view_mode", {"viewMode": view_mode.value}),
        on_pose_in_guide_change=lambda in_guide: send("pose_in_guide", {"inGuide": in_guide}),
        on_break_reminder=lambda: send("break_reminder", {"message": "Time to take a break"}),
        on_instruction=lambda instruction: send("instruction", {"message": instruction}),
        on_session_audit=on_session_audit,
    )


async def _sender(websocket: WebSocket, outbox: asyncio.Queue):
    while True:
        message = await outbox.get()
        await websocket.send_json(message)


def handle_message(monitor: PostureMonitor, frame_source: LatestFrameSource, message: Dict) -> Optional[Dict]:
    """Apply one client message to the monitor. Returns a direct reply, if any."""
    action = message.get('action')
    if not action or not isinstance(action, str) or len(action) > 50:
        return None

    if action == 'landmarks':
        raw = message.get('landmarks')
        landmarks = parse_landmarks(raw)
        # An empty frame still counts: it tells the engine nobody is in view
        frame_source.push(landmarks)
        if raw and not landmarks:
            return {"type": "landmarks_warning", "data": {"message": "Malformed landmarks"}}
        return None

    if action == 'update_settings':
        changes = message.get('settings')
        if not isinstance(changes, dict):
            return {"type": "settings_error", "data": {"message": "Invalid settings"}}
        allowed = {k: v for k, v in changes.items() if k in DetectionSettings.model_fields}
        try:
            settings = monitor.update_settings(**allowed)
        except ValidationError:
            return {"type": "settings_error", "data": {"message": "Invalid settings"}}
        return {"type": "settings_updated", "data": settings.model_dump()}

    if action == 'start_calibration':
        monitor.begin_calibration()
        monitor.start()
        return {"type": "state", "data": {"state": monitor.state.value}}

    if action == 'calibrate':
        try:
            profile = monitor.confirm_calibration()
        except CalibrationError as e:
            return {"type": "calibration_warning", "data": {"message": str(e)}}
        return {"type": "calibration_complete", "data": {"profile": profile.model_dump(mode="json")}}

    if action == 'recalibrate':
        monitor.recalibrate()
        monitor.start()
        return {"type": "state", "data": {"state": monitor.state.value}}

    if action == 'stop_session':
        # The result itself is delivered through the session-result callback
        monitor.stop_session()
        return {"type": "state", "data": {"state": monitor.state.value}}

    if action == 'pong':
        # Response to our ping, connection is alive
        return None

    return None


class MessageThrottle:
    """
    Separate budgets for the landmark stream and for control actions, so a
    client streaming at full frame rate can still calibrate or stop.
    """

    def __init__(
        self,
        frame_limit: int = cfg.WS_RATE_LIMIT_MESSAGES,
        control_limit: int = cfg.WS_CONTROL_RATE_LIMIT,
        window_seconds: float = 1.0,
    ):
        self.frames = RateLimiter(max_messages=frame_limit, window_seconds=window_seconds)
        self.controls = RateLimiter(max_messages=control_limit, window_seconds=window_seconds)

    def is_allowed(self, message: Dict) -> bool:
        if message.get('action') == 'landmarks':
            return self.frames.is_allowed()
        return self.controls.is_allowed()


# === WEBSOCKET ENDPOINT ===

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    outbox = new_outbox()
    frame_source = LatestFrameSource()
    monitor = build_monitor(outbox, frame_source)
    sender_task = asyncio.create_task(_sender(websocket, outbox))
    throttle = MessageThrottle()

    try:
        while True:
            # Add timeout to prevent blocking forever
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=cfg.WEBSOCKET_TIMEOUT
                )
            except asyncio.TimeoutError:
                # Send ping to keep connection alive
                enqueue(outbox, {"type": "ping"})
                continue

            # Message size limit - prevent memory exhaustion attacks
            if len(data) > cfg.MAX_MESSAGE_SIZE:
                continue

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(message, dict):
                continue

            # Surplus frames are dropped silently, surplus control actions get told
            if not throttle.is_allowed(message):
                if message.get('action') != 'landmarks':
                    enqueue(outbox, {"type": "error", "data": {"message": "Too many requests"}})
                continue

            try:
                reply = handle_message(monitor, frame_source, message)
            except PostureEngineError as e:
                # Sanitize error message in production to avoid information leakage
                error_msg = str(e) if is_debug() else "Invalid request"
                reply = {"type": "error", "data": {"message": error_msg}}

            if reply is not None:
                enqueue(outbox, reply)

    except WebSocketDisconnect:
        _debug_log("[WS] Client disconnected")
    except Exception as e:
        _debug_log(f"[WS] Connection error: {e}")
    finally:
        monitor.reset()
        sender_task.cancel()
        try:
            await sender_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            _debug_log(f"[WS] Sender error: {e}")
