"""Legacy progress migration endpoint.

POST /migrate  {"userId": "...", "courseProgressMap": {courseId: {...}}}

  200  {"success": true, "message": "...", "data": MigrationResult}
  400  {"error": "..."}            missing fields or malformed entries
  500  {"error": "Migration failed", "data": MigrationResult}
  500  {"error": "..."}            anything unexpected

The body is parsed by hand instead of through a pydantic model so that
every client error comes back in the same ``{"error": ...}`` shape the
migration clients already understand.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from proctorsync.core.errors import MalformedLegacyData
from proctorsync.services.migration import migration_engine, parse_course_map

logger = logging.getLogger(__name__)

router = APIRouter(tags=["migration"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/migrate")
async def migrate(request: Request) -> JSONResponse:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(status.HTTP_400_BAD_REQUEST, "Request body must be JSON")
    if not isinstance(body, dict):
        return _error(status.HTTP_400_BAD_REQUEST, "Request body must be an object")

    user_id = body.get("userId")
    if not user_id or not isinstance(user_id, str):
        return _error(status.HTTP_400_BAD_REQUEST, "Missing userId")
    raw_map = body.get("courseProgressMap")
    # An empty map is a valid no-op migration
    if not raw_map and raw_map != {}:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing courseProgressMap")

    try:
        course_map = parse_course_map(raw_map)
    except MalformedLegacyData as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    try:
        result = await migration_engine.migrate_old_data(user_id, course_map)
    except Exception as exc:
        logger.exception("Migration request crashed", extra={"user_id": user_id})
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Unknown error")

    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Migration failed", "data": result.to_record()},
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "success": True,
            "message": (
                f"Successfully migrated {result.migrated_courses} courses with "
                f"{result.completed_videos}/{result.total_videos} completed videos"
            ),
            "data": result.to_record(),
        },
    )
