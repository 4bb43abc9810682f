#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from typing import List, Optional


class ApiError(Exception):
    """Base for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])


class ValidationError(ApiError):
    status_code = 400


class InvalidGeometry(ValidationError):
    pass


class InvalidDateRange(ValidationError):
    pass


class AuthenticationFailed(ApiError):
    status_code = 502


class RemoteProcessingError(ApiError):
    status_code = 500

    def __init__(self, message: str, upstream_status: Optional[int] = None, upstream_body: str = ""):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class TransformError(Exception):
    """Raised inside DEM reshaping; always degraded to a null result."""


class ConfigError(Exception):
    def __init__(self, missing: List[str]):
        super().__init__(f"Missing required environment variables: {', '.join(missing)}")
        self.missing = missing
