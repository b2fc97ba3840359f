import logging

from fastapi import FastAPI, Depends, Header, Request, UploadFile, File, Form
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core import config, crud, accounts
from core.accounts import Unauthorized, Forbidden
from core.backend_client import BackendClient, BackendError
from core.database import Base, SessionLocal, engine
from core.relay import FrameError, relay_message
from core.utils import parse_measurement, build_audio_filename
from http_rest_api.schemas import RelayRequest, BrokerSettingsIn, BrokerSettingsOut, AdminRequest

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Agri Monitor API")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, PUT, OPTIONS",
}


# ===============================
# STARTUP
# ===============================

@app.on_event("startup")
def create_tables():
    Base.metadata.create_all(bind=engine)
    logger.info("Database ready")


# ===============================
# CORS
# ===============================

@app.middleware("http")
async def cors(request: Request, call_next):
    # Pre-flight for every path: empty body, permissive headers
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)
    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


# ===============================
# ERRORS
# ===============================

@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in e['loc'] if p != 'body')}: {e['msg']}" for e in exc.errors()
    )
    return JSONResponse(status_code=400, content={"success": False, "error": details or "Invalid request"})


@app.exception_handler(Unauthorized)
async def unauthorized(request: Request, exc: Unauthorized):
    return JSONResponse(status_code=401, content={"error": str(exc)})


@app.exception_handler(Forbidden)
async def forbidden(request: Request, exc: Forbidden):
    return JSONResponse(status_code=403, content={"error": str(exc)})


# ===============================
# DEPENDENCIES
# ===============================

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_backend():
    backend = BackendClient()
    try:
        yield backend
    finally:
        backend.close()


def get_current_user(
    authorization: str = Header(None),
    db: Session = Depends(get_db),
    backend: BackendClient = Depends(get_backend),
):

    '''Resolve the bearer token to a local profile. Any failure to do so is a 401.'''

    token = (authorization or "").replace("Bearer ", "", 1).strip()
    try:
        user = backend.get_user(token)
    except BackendError as e:
        logger.error("Could not resolve caller: %s", e)
        raise Unauthorized()
    if not user:
        raise Unauthorized()
    return accounts.ensure_profile(db, user)


def error_response(status_code: int, error: str, **extra):
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


@app.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok", "db": "up"}
    except Exception as ex:
        logger.error("Health check failed: %s", ex)
        return JSONResponse(status_code=503, content={"status": "degraded", "db": "down", "error": str(ex)})


# ===============================
# INGEST: JSON (gateway)
# ===============================

@app.post("/receive-nodered-data")
async def receive_nodered_data(request: Request, db: Session = Depends(get_db)):

    '''Temperature, humidity and soil moisture from the gateway. NPK, message and audio stay NULL.'''

    try:
        data = await request.json()
        if not isinstance(data, dict):
            raise ValueError("Expected a JSON object")

        values = {
            name: parse_measurement(name, data.get(name))
            for name in ("temperature", "humidity", "soil_moisture")
        }
        logger.info("Gateway data: %s", values)

        row = await run_in_threadpool(
            crud.create_reading,
            db,
            nitrogen_value=None,
            phosphorus_value=None,
            potassium_value=None,
            auto_message=None,
            audio_url=None,
            **values,
        )
    except Exception as e:
        logger.error("Error processing gateway data: %s", e)
        return error_response(500, str(e) or "Internal server error")

    logger.info("Gateway data saved: %s", row.id)
    return {
        "success": True,
        "message": "Node-RED data received and saved successfully",
        "data": {"id": row.id},
    }


# ===============================
# INGEST: MULTIPART (webhook)
# ===============================

@app.post("/receive-sensor-data")
def receive_sensor_data(
    temperature: str = Form(None),
    humidity: str = Form(None),
    soil_moisture: str = Form(None),
    nitrogen: str = Form(None),
    phosphorus: str = Form(None),
    potassium: str = Form(None),
    auto_message: str = Form(None),
    audio_file: UploadFile = File(None),
    db: Session = Depends(get_db),
    backend: BackendClient = Depends(get_backend),
):

    '''
        Full reading from the webhook, optionally with an audio clip.
        The clip is uploaded before the row is written; if the insert then fails the stored
        object is left behind (there is no transaction spanning storage and database).
    '''

    audio_url = None
    try:
        values = {
            "temperature": parse_measurement("temperature", temperature),
            "humidity": parse_measurement("humidity", humidity),
            "soil_moisture": parse_measurement("soil_moisture", soil_moisture),
            "nitrogen_value": parse_measurement("nitrogen", nitrogen),
            "phosphorus_value": parse_measurement("phosphorus", phosphorus),
            "potassium_value": parse_measurement("potassium", potassium),
        }

        if audio_file is not None:
            content = audio_file.file.read()
            if content:
                logger.info("Processing audio file: %s (%d bytes)", audio_file.filename, len(content))
                path = f"{config.AUDIO_PREFIX}/{build_audio_filename(audio_file.filename)}"
                try:
                    backend.upload(config.AUDIO_BUCKET, path, content, audio_file.content_type or "audio/mpeg")
                except BackendError as e:
                    raise BackendError(f"Failed to upload audio file: {e}") from e
                audio_url = backend.public_url(config.AUDIO_BUCKET, path)
                logger.info("Audio public URL: %s", audio_url)

        try:
            row = crud.create_reading(db, auto_message=auto_message or "", audio_url=audio_url, **values)
        except Exception as e:
            if audio_url:
                logger.error("Insert failed after upload, orphaned object: %s", audio_url)
            raise RuntimeError(f"Failed to insert sensor data: {e}") from e

    except Exception as e:
        logger.error("Error processing sensor data: %s", e)
        return error_response(500, str(e) or "Internal server error")

    logger.info("Sensor data saved: %s", row.id)
    return {
        "success": True,
        "message": "Sensor data received and saved successfully",
        "data": {"id": row.id, "audio_url": audio_url},
    }


# ===============================
# READ SIDE
# ===============================

@app.get("/sensor-data/latest")
def sensor_data_latest(profile=Depends(get_current_user), db: Session = Depends(get_db)):
    return {"success": True, "data": crud.latest_reading(db)}


@app.get("/sensor-data/history")
def sensor_data_history(limit: int = 50, profile=Depends(get_current_user), db: Session = Depends(get_db)):
    if not 1 <= limit <= 500:
        return error_response(400, "limit must be between 1 and 500")
    return {"success": True, "data": crud.reading_history(db, limit=limit)}


# ===============================
# RELAY
# ===============================

def relay_response(url: str, port: int, topic, message: str):
    details = {"url": f"{url}:{port}", "topic": topic, "message": message}
    try:
        result = relay_message(url, port, topic, message)
    except FrameError as e:
        logger.warning("Rejected relay request: %s", e)
        return error_response(400, str(e), details=details)
    except Exception as e:
        logger.exception("Relay failed unexpectedly")
        return error_response(500, str(e), details=details)

    details.update(topic=result["topic"], attempts=result["attempts"])
    if not result["delivered"]:
        endpoints = ", ".join(a["endpoint"] for a in result["attempts"])
        return error_response(500, f"Could not deliver message (tried {endpoints})", details=details)

    details["url"] = result["via"]
    return {"success": True, "message": "Message sent", "details": details}


@app.post("/publish-mqtt")
def publish_mqtt(body: RelayRequest):
    logger.info("Relay request: %s:%s topic=%s", body.url, body.port, body.topic)
    if not body.url.strip():
        return error_response(400, "url is required")
    if not body.message.strip():
        return error_response(400, "message is required")
    return relay_response(body.url, body.port, body.topic, body.message)


# ===============================
# BROKER SETTINGS
# ===============================

@app.get("/mqtt-settings")
def get_mqtt_settings(profile=Depends(get_current_user), db: Session = Depends(get_db)):
    row = crud.load_settings(db, profile.id)
    if row is None:
        data = {
            "url": config.DEFAULT_BROKER_HOST,
            "port": config.DEFAULT_BROKER_PORT,
            "topic": None,
            "message": config.DEFAULT_BROKER_MESSAGE,
        }
        return {"success": True, "saved": False, "data": data}
    return {"success": True, "saved": True, "data": BrokerSettingsOut.model_validate(row).model_dump()}


@app.put("/mqtt-settings")
def put_mqtt_settings(body: BrokerSettingsIn, profile=Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        row = crud.save_settings(db, profile.id, body.url, body.port, body.message, topic=body.topic)
    except crud.InvalidSettings as e:
        return error_response(400, str(e))
    except Exception as e:
        db.rollback()
        logger.error("Could not save settings for %s: %s", profile.id, e)
        return error_response(500, "Could not save settings")
    return {"success": True, "message": "Settings saved", "data": BrokerSettingsOut.model_validate(row).model_dump()}


@app.post("/mqtt-settings/publish")
def publish_with_settings(profile=Depends(get_current_user), db: Session = Depends(get_db)):
    row = crud.load_settings(db, profile.id)
    if row is None:
        return error_response(400, "No broker settings saved")
    return relay_response(row.url, row.port, row.topic, row.message)


# ===============================
# ACCOUNTS
# ===============================

@app.get("/me")
def me(profile=Depends(get_current_user), db: Session = Depends(get_db)):
    return {
        "id": profile.id,
        "username": profile.username,
        "email": profile.email,
        "is_admin": accounts.has_role(db, profile.id, config.ADMIN_ROLE),
    }


@app.get("/admin/users")
def admin_users(profile=Depends(get_current_user), db: Session = Depends(get_db)):
    accounts.require_admin(db, profile.id)
    return {"success": True, "data": accounts.list_users(db)}


@app.post("/admin-manage-users")
def admin_manage_users(
    body: AdminRequest,
    profile=Depends(get_current_user),
    db: Session = Depends(get_db),
    backend: BackendClient = Depends(get_backend),
):
    logger.info("Admin action: %s for user: %s", body.action, body.userId)
    try:
        message = accounts.manage_user(db, backend, profile.id, body.action, body.userId, body.role)
    except Forbidden:
        raise
    except Exception as e:
        logger.error("Error in admin-manage-users: %s", e)
        return JSONResponse(status_code=500, content={"error": str(e)})
    return {"success": True, "message": message}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.API_PORT)
