import os
from typing import Any, TypeVar

import requests
from pydantic import BaseModel, TypeAdapter, ValidationError
from rich.console import Console

from .constants import BASE_URL, ENV_API_URL, LOGIN_PATH
from .errors import AuthenticationError, NotAuthenticatedError, RequestError
from .models.activity import Activity, ActivitySignup, RemoveRegistration
from .models.auth import LoginResponse, Session, User
from .models.wudje import PostWudjeRequest, Wud
from .storage import CredentialStore
from .theme import myplant_theme

T = TypeVar("T")

ACTIVITY = TypeAdapter(Activity)
ACTIVITY_LIST = TypeAdapter(list[Activity])
WUD_LIST = TypeAdapter(list[Wud])


def mask_headers(headers: dict[str, str]) -> dict[str, str]:
    """Copy of ``headers`` that is safe to print."""
    masked = dict(headers)
    if "Cookie" in masked:
        masked["Cookie"] = "pb_auth=****"
    return masked


class MyPlantClient:
    """API client for MyPlant."""

    session: requests.Session
    store: CredentialStore
    _verbose: bool = False
    console: Console

    def __init__(
        self,
        console: Console | None = None,
        base_url: str | None = None,
        store: CredentialStore | None = None,
        session: requests.Session | None = None,
        verbose: bool = False,
    ):
        self.console = console or Console(theme=myplant_theme)
        self._base_url = (base_url or os.getenv(ENV_API_URL) or BASE_URL).rstrip("/")
        self.store = store or CredentialStore(console=self.console)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "myplant-cli/0.1.0"})

        # Set verbose last to trigger the property setter if it's True
        self.verbose = verbose

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def verbose(self) -> bool:
        return self._verbose

    @verbose.setter
    def verbose(self, value: bool):
        old_value = self._verbose
        self._verbose = value
        self.store.console = self.store.console or self.console
        self.store.verbose = value
        if value and not old_value:
            self.console.print(f"[info]Debug: Credential storage: {self.store.backend_name}[/info]")
            credential = self.store.load()
            if credential is None:
                self.console.print("[warning]Debug: No session found[/warning]")
            elif credential.expiration_date is not None:
                self.console.print(f"[info]Debug: Session expires {credential.expiration_date.isoformat()}[/info]")
            else:
                self.console.print("[info]Debug: Session without expiry[/info]")

    def debug(self, message: str):
        """Print a debug message if verbose is enabled."""
        if self.verbose:
            self.console.print(f"[info]Debug: {message}[/info]")

    def _send(self, method: str, path: str, headers: dict[str, str], body: Any = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        if isinstance(body, BaseModel):
            body = body.model_dump(mode="json", by_alias=True)

        self.debug(f"{method} {url}")
        if body is not None and path != LOGIN_PATH:
            self.debug(f"Payload: {body}")
        self.debug(f"Headers: {mask_headers(headers)}")

        try:
            response = self.session.request(method, url, headers=headers, json=body)
        except requests.exceptions.RequestException as e:
            raise RequestError(None, str(e)) from e
        self.debug(f"Response Status: {response.status_code}")
        return response

    def _refresh_credential(self, response: requests.Response, profile: Any = None) -> Session | None:
        """Persist the session carried by ``response``, if it has one."""
        # requests folds Set-Cookie/set-cookie into one case-insensitive header
        credential = Session.from_set_cookie(response.headers.get("Set-Cookie"))
        if credential is not None:
            self.store.save(credential, profile)
            self.debug("Stored session from response")
        return credential

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RequestError(response.status_code, f"Invalid JSON response: {response.text}") from e

    @staticmethod
    def _field(payload: Any, field: str) -> Any:
        if not isinstance(payload, dict) or field not in payload:
            raise RequestError(None, f"Response has no '{field}' field")
        return payload[field]

    def _unwrap(self, adapter: TypeAdapter[T], payload: Any, field: str) -> T:
        """Validate ``payload[field]`` against ``adapter``."""
        try:
            return adapter.validate_python(self._field(payload, field))
        except ValidationError as e:
            self.debug(f"Unexpected '{field}' payload: {e}")
            raise RequestError(None, f"Response '{field}' does not match the expected format ({e.error_count()} errors)") from e

    # Authentication
    def login(self, username: str, password: str) -> LoginResponse:
        response = self._send(
            "POST",
            LOGIN_PATH,
            {"Content-Type": "application/json"},
            {"email": username, "password": password},
        )
        if not response.ok:
            raise AuthenticationError(response.text, response.status_code)

        data = self._decode(response)
        if not isinstance(data, dict):
            raise AuthenticationError(f"Unexpected login response: {response.text}", response.status_code)

        header = response.headers.get("Set-Cookie")
        if self._refresh_credential(response, data.get("user")) is None:
            self.debug("Login response carried no pb_auth cookie")
        return LoginResponse(data=data, header=header)

    def logout(self):
        self.store.clear()
        self.session.cookies.clear()
        self.debug("Session cleared")

    def get_session(self) -> Session | None:
        credential = self.store.load()
        if credential is not None and credential.is_expired:
            self.debug("Stored session has expired")
            return None
        return credential

    def get_user(self) -> User | None:
        profile = self.store.load_profile()
        if profile is None:
            return None
        try:
            return User.model_validate(profile)
        except ValidationError:
            self.debug("Ignoring cached user profile that does not match the user schema")
            return None

    def request(self, method: str, path: str, body: Any = None) -> Any:
        """Make an authenticated API request and return the decoded JSON body."""
        credential = self.store.load()
        if credential is None and path != LOGIN_PATH:
            raise NotAuthenticatedError(path)

        headers = {"Content-Type": "application/json"}
        if credential is not None:
            headers["Cookie"] = credential.cookie_header

        response = self._send(method, path, headers, body)
        self._refresh_credential(response)

        if not response.ok:
            self.debug(f"Raw Error Response: {response.text}")
            raise RequestError(response.status_code, response.text)
        return self._decode(response)

    # Activities
    def get_activities(self) -> list[Activity]:
        payload = self.request("GET", "/activities")
        return self._unwrap(ACTIVITY_LIST, payload, "data")

    def get_activity(self, activity_id: str) -> Activity:
        payload = self.request("GET", f"/activities/{activity_id}")
        return self._unwrap(ACTIVITY, payload, "activity")

    def join_activity(self, activity_id: str, info: ActivitySignup) -> Any:
        return self.request("POST", f"/activities/{activity_id}", info)

    def remove_activity(self, info: RemoveRegistration) -> Any:
        return self.request("DELETE", f"/activities/{info.id}", info)

    # Wudjes
    def get_wudjes(self) -> list[Wud]:
        payload = self.request("GET", "/wudjes")
        return self._unwrap(WUD_LIST, payload, "items")

    def post_wudje(self, info: PostWudjeRequest) -> Any:
        return self.request("POST", "/wudjes", info)
