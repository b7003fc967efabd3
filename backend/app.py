# CSV Email Flagger Backend
# Flask API that appends a has_email column to uploaded CSV files in the background

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path

from flask import Flask, Response, g, jsonify, request, send_file
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

import storage
import worker
from config import Config
from csv_utils import HAS_EMAIL_COLUMN
from job_state import Completed, Failed, Processing, get_job_registry

# Request ID context for structured logging
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")


# Structured logging formatter
class StructuredFormatter(logging.Formatter):
    """Key=value structured logging formatter for readability on all consoles."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
        }

        # Add request ID if available
        req_id = request_id_ctx.get("")
        if req_id:
            log_data["request_id"] = req_id

        # Add extra fields from record
        extra_fields = [
            "job_id",
            "file_name",
            "elapsed_ms",
            "job_status",
            "row_count",
            "max_upload_mb",
        ]
        for field in extra_fields:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Format as key=value for readability
        parts = [f"{k}={json.dumps(v) if isinstance(v, str) else v}" for k, v in log_data.items()]
        return " ".join(parts)


def configure_logging() -> None:
    """Install the structured handler on the root logger (once)."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, Config.LOG_LEVEL))
    if any(isinstance(h.formatter, StructuredFormatter) for h in root_logger.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)


# Setup logger
configure_logging()
logger = logging.getLogger(__name__)

# Create Flask app with configuration
app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = Config.MAX_CONTENT_LENGTH
app.config["TESTING"] = Config.TESTING

# Configure CORS - restrictive by default
cors_origins = Config.get_cors_origins()
if cors_origins:
    CORS(app, origins=cors_origins)
    logger.info(f"CORS enabled for origins: {cors_origins}")
else:
    CORS(app, origins=["http://localhost:3000", "http://localhost:8080", "http://127.0.0.1:8080"])
    logger.info("CORS enabled for localhost development only")

# Initialize storage and the job registry
storage.ensure_storage_dirs()
get_job_registry()

logger.info("Email flagger started", extra={"max_upload_mb": Config.MAX_UPLOAD_MB})


# Request ID middleware
@app.before_request
def set_request_id() -> None:
    """Set request ID from header or generate new one."""
    req_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request_id_ctx.set(req_id)
    g.request_id = req_id


@app.after_request
def add_request_id_header(response: Response) -> Response:
    """Add request ID to response headers."""
    if hasattr(g, "request_id"):
        response.headers["X-Request-ID"] = g.request_id
    return response


def error_response(
    code: str,
    message: str,
    details: dict | None = None,
    status_code: int = 400,
) -> tuple[Response, int]:
    """
    Create a structured error response.

    Args:
        code: Error code (e.g., "INVALID_JOB_ID", "JOB_FAILED")
        message: Human-readable message
        details: Optional additional details
        status_code: HTTP status code
    """
    payload: dict = {
        "error": {
            "code": code,
            "message": message,
        },
        "request_id": g.get("request_id", "unknown"),
    }
    if details:
        payload["error"]["details"] = details

    return jsonify(payload), status_code


@app.errorhandler(413)
def handle_too_large(e: Exception) -> tuple[Response, int]:
    """Handle file too large error."""
    max_mb = Config.MAX_UPLOAD_MB
    return error_response(
        code="FILE_TOO_LARGE",
        message=f"File too large. Maximum size is {max_mb}MB",
        details={"max_upload_mb": max_mb},
        status_code=413,
    )


# Exception handler
@app.errorhandler(Exception)
def handle_exception(e: Exception) -> tuple[Response, int]:
    """Log exceptions and return safe error response."""
    if isinstance(e, HTTPException):
        code = (e.name or "error").upper().replace(" ", "_")
        return error_response(code, e.description or e.name, status_code=e.code or 500)

    logger.exception("Unhandled exception", exc_info=e)
    return error_response("INTERNAL_ERROR", "Internal server error", status_code=500)


def is_csv_upload(filename: str, content_type: str | None) -> bool:
    """Accept a part declared as text/csv or named *.csv."""
    if content_type and "text/csv" in content_type.lower():
        return True
    return filename.lower().endswith(".csv")


@app.route("/API/upload", methods=["POST"])
def upload() -> tuple[Response, int] | Response:
    """
    Upload a CSV file and start the background has_email job.
    Returns the job id immediately; the file is processed asynchronously.
    """
    # Validate file presence
    if "file" not in request.files:
        return error_response("NO_FILE", "No file provided")

    file = request.files["file"]
    if not file.filename:
        return error_response("NO_FILE", "No file selected")

    # Validate file type
    if not is_csv_upload(file.filename, file.content_type):
        return error_response(
            "INVALID_FILE_TYPE",
            "File must be a CSV file",
            details={"filename": file.filename, "content_type": file.content_type},
        )

    content = file.read()

    job_id = str(uuid.uuid4())
    registry = get_job_registry()
    registry.create(job_id)

    logger.info(
        "Job created",
        extra={"job_id": job_id, "file_name": file.filename, "job_status": "processing"},
    )

    worker.dispatch_job(registry, job_id, content, file.filename)

    return jsonify({"id": job_id})


@app.route("/API/download/<job_id>")
def download(job_id: str) -> tuple[Response, int] | Response:
    """
    Download the processed CSV for a job.

    Unknown job -> 400, still processing -> 423, failed -> 500 with the
    job's error message, completed -> the file as an attachment.
    """
    job = get_job_registry().get(job_id)
    if job is None:
        return error_response("INVALID_JOB_ID", "Invalid job ID", status_code=400)

    match job.state:
        case Processing():
            return error_response(
                "JOB_PROCESSING",
                "Job is still processing, try again later",
                status_code=423,
            )
        case Failed(error_message=message):
            return error_response("JOB_FAILED", message, status_code=500)
        case Completed(output_location=location):
            output_path = Path(location)
            if not output_path.is_file():
                logger.error("Processed file missing", extra={"job_id": job_id})
                return error_response(
                    "FILE_UNAVAILABLE",
                    "Failed to open processed file",
                    status_code=500,
                )
            return send_file(
                output_path,
                mimetype="application/octet-stream",
                as_attachment=True,
                download_name=output_path.name,
            )

    return error_response("UNKNOWN_STATUS", "Unknown job status", status_code=500)


@app.route("/API/jobs/<job_id>")
def job_status(job_id: str) -> tuple[Response, int] | Response:
    """Get the current status of a job without downloading it."""
    job = get_job_registry().get(job_id)
    if job is None:
        return error_response("JOB_NOT_FOUND", "Job not found", status_code=404)
    return jsonify(job.to_dict())


@app.route("/schema")
def schema() -> Response:
    """Return API schema and configuration information."""
    return jsonify(
        {
            "server_version": Config.VERSION,
            "appended_column": HAS_EMAIL_COLUMN,
            "endpoints": {
                "upload": "POST /API/upload",
                "download": "GET /API/download/<id>",
                "status": "GET /API/jobs/<id>",
                "health": "GET /health",
            },
            "max_upload_mb": Config.MAX_UPLOAD_MB,
        }
    )


@app.route("/health")
def health() -> Response:
    """Health check endpoint."""
    return jsonify({"status": "ok"})


@app.route("/metrics")
def metrics() -> Response:
    """
    Simple metrics endpoint for monitoring.
    Returns JSON with job counts and storage stats.
    """
    storage_stats = storage.get_storage_stats()

    return jsonify(
        {
            "status": "ok",
            "server_version": Config.VERSION,
            "timestamp": datetime.now(UTC).isoformat(),
            "jobs": get_job_registry().count_by_status(),
            "storage": {
                "storage_dir": Config.STORAGE_DIR,
                "uploads_size_mb": round(storage_stats["uploads_size_bytes"] / 1024 / 1024, 2),
                "outputs_size_mb": round(storage_stats["outputs_size_bytes"] / 1024 / 1024, 2),
            },
            "config": {
                "max_upload_mb": Config.MAX_UPLOAD_MB,
            },
        }
    )


if __name__ == "__main__":
    app.run(debug=Config.DEBUG, port=Config.PORT, host=Config.HOST)
