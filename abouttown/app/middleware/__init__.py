"""Middleware package for the About Town API."""

from abouttown.app.middleware.pipeline import AdmissionPipeline, AdmissionStage
from abouttown.app.middleware.bot_detection import BotDetectionStage
from abouttown.app.middleware.fingerprint import FingerprintStage
from abouttown.app.middleware.rate_limit import RateLimiter, RateLimitStage
from abouttown.app.middleware.request_id import RequestIdMiddleware, get_request_id
from abouttown.app.middleware.security_headers import SecurityHeadersStage

__all__ = [
    "AdmissionPipeline",
    "AdmissionStage",
    "BotDetectionStage",
    "FingerprintStage",
    "RateLimiter",
    "RateLimitStage",
    "RequestIdMiddleware",
    "SecurityHeadersStage",
    "get_request_id",
]
