import json


class MyPlantError(Exception):
    """Base class for all client errors."""


class AuthenticationError(MyPlantError):
    """The server rejected the login."""

    def __init__(self, body: str, status: int | None = None):
        self.body = body
        self.status = status
        super().__init__(body or f"Login failed with status {status}")


class NotAuthenticatedError(MyPlantError):
    """No credential is available for a path that requires one."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Not logged in: {path} requires authentication. Run `myplant login` first.")


class RequestError(MyPlantError):
    """An authenticated request failed."""

    def __init__(self, status: int | None, body: str):
        self.status = status
        self.body = body
        super().__init__(self._describe(status, body))

    @staticmethod
    def _describe(status: int | None, body: str) -> str:
        if status is None:
            return f"Request failed: {body}"
        try:
            error_data = json.loads(body)
        except (json.JSONDecodeError, TypeError):
            error_data = None
        if isinstance(error_data, dict) and error_data.get("error"):
            error_msg = str(error_data["error"])
            hint = error_data.get("hint", "")
            if hint:
                error_msg += f"\nHint: {hint}"
            return error_msg
        return f"Request failed with status {status}: {body}"


class MalformedCredentialError(MyPlantError):
    """A stored credential could not be decoded; callers treat it as absent."""
