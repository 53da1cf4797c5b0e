from __future__ import annotations
import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from repcoach.counter.angles import MissingJointError, ThresholdData
from repcoach.counter.session import CountingSource, RepSessionManager, UnknownExerciseError
from repcoach.counter.thresholds import derive_thresholds
from repcoach.vision.prompts import RepCheckInstructions

logging.basicConfig(level=os.getenv("REPCOACH_LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

app = FastAPI()

@app.get("/favicon.ico")
async def favicon():
    return Response(status_code=204)

MANAGER: Optional[RepSessionManager] = None

def ACTIVE_MANAGER() -> RepSessionManager:
    global MANAGER
    if MANAGER is None:
        MANAGER = RepSessionManager()
        MANAGER.set_event_sink(_sink)
    return MANAGER

# let the manager emit events to all WS clients
def _sink(ev: dict):
    try:
        asyncio.get_running_loop().create_task(broadcast(ev))
    except RuntimeError:
        logger.debug("no running loop; dropping event %s", ev.get("type"))


class InstructionsBody(BaseModel):
    start_description: str
    end_description: str
    exercise_context: str


class StartBody(BaseModel):
    exercise_id: str
    exercise_name: Optional[str] = None
    source: CountingSource = CountingSource.POSE
    instructions: Optional[InstructionsBody] = None
    orientation: Optional[str] = Field(None, description="setup the user should hold, e.g. side-on to the camera")


class AngleFrameBody(BaseModel):
    timestamp: int
    angles: Dict[str, float]


class TemplateBody(BaseModel):
    duration: float = Field(0, description="ms; 0 means use the last frame's timestamp")
    sampleRate: float = 0
    frames: List[AngleFrameBody]


@app.get("/sessions/current")
async def current():
    return JSONResponse(ACTIVE_MANAGER().status())

@app.post("/counter/start")
async def start(body: StartBody):
    m = ACTIVE_MANAGER()
    instructions = RepCheckInstructions(**body.instructions.model_dump()) if body.instructions else None
    try:
        sid = await m.start(
            exercise_id=body.exercise_id,
            exercise_name=body.exercise_name,
            source=body.source,
            instructions=instructions,
            orientation=body.orientation,
        )
    except UnknownExerciseError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"session_id": sid, "source": body.source.value}

@app.post("/counter/stop")
async def stop():
    sid = await ACTIVE_MANAGER().stop()
    return JSONResponse({"stopped": True, "session_id": sid})

@app.post("/counter/pause")
async def pause():
    m = ACTIVE_MANAGER()
    if m.active_id is None:
        raise HTTPException(status_code=409, detail="No active session")
    m.pause()
    return {"session_id": m.active_id, "paused": True}

@app.post("/counter/resume")
async def resume():
    m = ACTIVE_MANAGER()
    if m.active_id is None:
        raise HTTPException(status_code=409, detail="No active session")
    m.resume()
    return {"session_id": m.active_id, "paused": False}

@app.post("/counter/source")
async def switch_source(source: CountingSource):
    m = ACTIVE_MANAGER()
    if m.active_id is None:
        raise HTTPException(status_code=409, detail="No active session")
    try:
        await m.switch_source(source)
    except UnknownExerciseError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"session_id": m.active_id, "source": source.value}

@app.put("/templates/{exercise_id}")
async def put_template(exercise_id: str, body: TemplateBody):
    try:
        template = ThresholdData.from_dict(body.model_dump())
        if template.frames and template.frames[0].timestamp != 0:
            # client sent wall-clock timestamps
            template = ThresholdData.from_frames(template.frames, template.sample_rate)
        derived = derive_thresholds(template)
    except (MissingJointError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    ACTIVE_MANAGER().templates.put(exercise_id, template)
    return {
        "exercise_id": exercise_id,
        "frames": len(template.frames),
        "primary_joint": derived.primary_joint,
        "amplitude": derived.amplitude,
        "min_rep_duration": derived.min_rep_duration,
        "max_rep_duration": derived.max_rep_duration,
    }

@app.get("/templates/{exercise_id}")
async def get_template(exercise_id: str):
    template = ACTIVE_MANAGER().templates.get(exercise_id)
    if template is None:
        raise HTTPException(status_code=404, detail="No template recorded")
    return template.to_dict()

@app.websocket("/ws/angles")
async def ws_angles(ws: WebSocket):
    await ws.accept()
    WS_CLIENTS.add(ws)
    await broadcast({"type": "trace", "msg": "ws: angle client connected"})
    try:
        while True:
            raw = await ws.receive_text()
            data = _decode(raw)
            if data is None or data.get("type") != "angle_frame":
                continue
            ACTIVE_MANAGER().push_angle_frame(data)
    except WebSocketDisconnect:
        pass
    finally:
        WS_CLIENTS.discard(ws)
        await broadcast({"type": "trace", "msg": "ws: angle client closed"})

@app.websocket("/ws/frames")
async def ws_frames(ws: WebSocket):
    await ws.accept()
    try:
        while True:
            raw = await ws.receive_text()
            data = _decode(raw)
            if data is None or data.get("type") != "frame":
                continue
            image = data.get("image")
            if not image:
                continue
            try:
                ACTIVE_MANAGER().push_camera_frame(str(image))
            except ValueError as e:
                logger.debug("bad camera frame: %r", e)
    except WebSocketDisconnect:
        pass

def _decode(raw: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("ignoring non-JSON ws message")
        return None
    return data if isinstance(data, dict) else None

WS_CLIENTS: Set[WebSocket] = set()

async def broadcast(obj: dict):
    dead = []
    for ws in list(WS_CLIENTS):
        try:
            await ws.send_text(json.dumps(obj))
        except Exception:
            dead.append(ws)
    for d in dead:
        WS_CLIENTS.discard(d)


def main():
    import uvicorn
    uvicorn.run("repcoach.runtime.server:app", host=os.getenv("REPCOACH_HOST", "127.0.0.1"), port=int(os.getenv("REPCOACH_PORT", "8000")))

if __name__ == "__main__":
    main()
