from typing import Optional


class ReplayError(Exception):
    status = 500
    message = "Internal error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInput(ReplayError):
    status = 400
    message = "Invalid request"


class Unauthorized(ReplayError):
    status = 401
    message = "Unauthorized"


class PathTraversal(ReplayError):
    status = 400
    message = "Invalid path"


class NotFound(ReplayError):
    status = 404
    message = "File not found"


class BrowserLaunchError(ReplayError):
    message = "Failed to launch browser"


class CriticalCaptureError(ReplayError):
    message = "Browser capture failed"


class CaptureFailed(ReplayError):
    message = "Failed to fetch website content"


class ResourceTooLarge(ReplayError):
    message = "Resource exceeds size limit"
