"""
Background processing for uploaded CSV files.

The upload handler creates the job, hands the bytes to dispatch_job and
returns immediately. The worker thread saves the upload, runs the row
transformer and records the outcome on the job. Nothing is returned to the
caller: the job record is the only channel, and a failure is captured as the
job's error message instead of being raised.

There is no cancellation, timeout or retry. A failed job is terminal.
"""

import logging
import threading
import time

import storage
from csv_utils import TransformError, transform_file
from job_state import JobRegistry

logger = logging.getLogger(__name__)


def process_upload_job(
    registry: JobRegistry,
    job_id: str,
    content: bytes,
    filename: str,
) -> None:
    """
    Process one uploaded CSV to completion or failure.

    Args:
        registry: Registry holding the job (already created as processing)
        job_id: Unique job identifier
        content: Raw uploaded bytes
        filename: Original filename, used for the stored upload's name
    """
    start_time = time.time()

    try:
        upload_path = storage.save_upload(job_id, filename, content)
    except (OSError, ValueError) as e:
        message = f"Failed to save uploaded file: {e}"
        logger.error(message, extra={"job_id": job_id, "job_status": "failed"})
        registry.mark_failed(job_id, message)
        return

    try:
        output_path = storage.get_output_path(job_id)
        row_count = transform_file(upload_path, output_path)
    except (TransformError, ValueError) as e:
        message = f"Failed to process CSV: {e}"
        logger.warning(message, extra={"job_id": job_id, "job_status": "failed"})
        registry.mark_failed(job_id, message)
        return
    except Exception as e:
        # Keep the job from staying in processing forever
        logger.exception("Unexpected error while processing job", extra={"job_id": job_id})
        registry.mark_failed(job_id, f"Failed to process CSV: unexpected error: {e}")
        return

    registry.mark_completed(job_id, str(output_path))

    elapsed_ms = int((time.time() - start_time) * 1000)
    logger.info(
        "Job completed",
        extra={
            "job_id": job_id,
            "file_name": filename,
            "row_count": row_count,
            "elapsed_ms": elapsed_ms,
            "job_status": "completed",
        },
    )


def dispatch_job(
    registry: JobRegistry,
    job_id: str,
    content: bytes,
    filename: str,
) -> threading.Thread:
    """
    Start process_upload_job on a daemon thread and return without waiting.

    The thread is returned for callers that want to join it (tests); the
    upload path discards it.
    """
    thread = threading.Thread(
        target=process_upload_job,
        args=(registry, job_id, content, filename),
        daemon=True,
        name=f"csv-job-{job_id[:8]}",
    )
    thread.start()
    return thread
