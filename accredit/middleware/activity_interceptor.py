"""
Activity interceptor — mirrors every API call into the Activity Log as an
``api_request`` entry.

Enabled per request by ``ACTIVITY_REQUEST_LOGGING``; health checks are never
recorded. Runs after the timing hook so the duration is available.
"""

from flask import Flask, current_app, g, request

from accredit.middleware.timing import request_duration_ms
from accredit.services.activity_log import ActivityLogger

_SKIP_PREFIXES = ("/api/v1/health",)


def init_activity_interceptor(app: Flask):
    if not app.config.get("ACTIVITY_REQUEST_LOGGING"):
        app.logger.info("Activity request logging disabled")

    @app.after_request
    def _record_request(response):
        if not current_app.config.get("ACTIVITY_REQUEST_LOGGING"):
            return response
        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(_SKIP_PREFIXES):
            return response

        failed = response.status_code >= 400
        duration = request_duration_ms()
        ActivityLogger.record(
            "api_request",
            getattr(g, "current_user", None),
            details={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "query": request.args.to_dict(),
            },
            severity="high" if failed else None,
            status="failure" if failed else "success",
            duration_ms=int(duration) if duration is not None else 0,
        )
        return response
