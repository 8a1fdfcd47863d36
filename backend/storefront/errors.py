# Overview: Domain error taxonomy shared by services and routes.

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StorefrontError):
    """400-level input problem. Raised before any state is touched."""
    status_code = 400


class AuthenticationError(StorefrontError):
    status_code = 401


class NotFoundError(StorefrontError):
    status_code = 404


class BusinessRuleViolation(StorefrontError):
    """409-level business rule conflict (no open register, inactive product...)."""
    status_code = 409


class InsufficientStockError(BusinessRuleViolation):
    pass


class GatewayError(StorefrontError):
    """
    The payment gateway could not produce a checkout.

    For checkouts this is raised after the local sale is committed:
    callers must read it as "sale exists, payment link missing".
    """
    status_code = 502


class GatewayRejectedError(GatewayError):
    """The gateway answered 4xx. Never retried."""

    def __init__(self, message: str, status: int, details: dict | None = None):
        super().__init__(message, details)
        self.status = status


class GatewayConfigurationError(GatewayError):
    pass
