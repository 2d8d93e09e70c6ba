import json
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Any, NoReturn

import typer
from dotenv import load_dotenv
from pydantic import BaseModel
from rich.console import Console
from rich.prompt import Prompt
from rich.syntax import Syntax

from .api import MyPlantClient
from .constants import ENV_API_URL, ENV_PASSWORD, ENV_USERNAME
from .errors import MyPlantError
from .models.activity import ActivitySignup, RemoveRegistration
from .models.wudje import PostWudjeRequest
from .theme import myplant_theme

load_dotenv()

console = Console(theme=myplant_theme)
app = typer.Typer(
    help="MyPlant CLI - activities and Wudjes from the command line",
    rich_markup_mode="rich",
    no_args_is_help=True,
)
state: dict[str, MyPlantClient] = {}


def get_api() -> MyPlantClient:
    if "api" not in state:
        state["api"] = MyPlantClient(console)
    return state["api"]


def version_callback(value: bool):
    if value:
        try:
            pkg_version = version("myplant-cli")
            console.print(f"myplant-cli: [plant]{pkg_version}[/plant]")
        except PackageNotFoundError:
            console.print("myplant-cli: [warning]unknown[/warning]")
        raise typer.Exit()


def to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, list):
        return [to_jsonable(item) for item in data]
    return data


def print_json(data: Any):
    """Print JSON with syntax highlighting."""
    json_str = json.dumps(to_jsonable(data), indent=2, ensure_ascii=False)
    syntax = Syntax(json_str, "json", theme="monokai", background_color="default")
    console.print(syntax)


def fail(e: Exception) -> NoReturn:
    console.print(f"[error]Error:[/error] {e}")
    raise typer.Exit(1)


def read_pipe() -> str:
    if sys.stdin.isatty():
        console.print("[error]Error:[/error] Message is required when not piping from stdin")
        raise typer.Exit(1)

    return sys.stdin.read().strip()


def parse_answers(answers: list[str]) -> dict[str, str]:
    parsed = {}
    for answer in answers:
        question_id, sep, value = answer.partition("=")
        if not sep or not question_id:
            raise typer.BadParameter(f"Expected QUESTION_ID=VALUE, got {answer!r}", param_hint="--answer")
        parsed[question_id] = value
    return parsed


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    base_url: str | None = typer.Option(None, "--base-url", envvar=ENV_API_URL, help="API base URL"),
    version: bool | None = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    """
    MyPlant CLI - activities and Wudjes from the command line
    """
    if "api" not in state:
        state["api"] = MyPlantClient(console, base_url=base_url)
    get_api().verbose = verbose


# --- CLI Commands ---


@app.command()
def login(
    username: str | None = typer.Option(None, envvar=ENV_USERNAME, help="Account email"),
    password: str | None = typer.Option(None, envvar=ENV_PASSWORD, help="Account password"),
):
    """Log in and store the session."""
    if username is None:
        username = Prompt.ask("Email")
    if password is None:
        password = Prompt.ask("Password", password=True)

    try:
        result = get_api().login(username, password)
    except MyPlantError as e:
        fail(e)

    user = result.data.get("user") or {}
    console.print(f"[success]✓ Logged in as {user.get('name', username)}[/success]")
    if get_api().get_session() is None:
        console.print("[warning]Server did not return a session cookie[/warning]")


@app.command()
def logout():
    """Forget the stored session."""
    get_api().logout()
    console.print("[success]✓ Logged out[/success]")


@app.command()
def whoami():
    """Show the cached user profile."""
    api = get_api()
    if api.get_session() is None:
        console.print("[warning]Not logged in[/warning]")
        raise typer.Exit(1)
    user = api.get_user()
    if user is None:
        console.print("[warning]Logged in, but no user profile is cached[/warning]")
        return
    print_json(user)


# Activity Group
activity_app = typer.Typer(help="Activity operations")
app.add_typer(activity_app, name="activity")


@activity_app.command("list")
def activity_list():
    """List activities."""
    try:
        print_json(get_api().get_activities())
    except MyPlantError as e:
        fail(e)


@activity_app.command("get")
def activity_get(activity_id: str = typer.Argument(..., help="Activity ID")):
    """Get a single activity."""
    try:
        print_json(get_api().get_activity(activity_id))
    except MyPlantError as e:
        fail(e)


@activity_app.command("join")
def activity_join(
    activity_id: str = typer.Argument(..., help="Activity ID"),
    waitlist: bool = typer.Option(False, "--waitlist", help="Join the waitlist instead"),
    answer: list[str] = typer.Option([], "--answer", "-a", help="Signup answer as QUESTION_ID=VALUE"),
):
    """Sign up for an activity."""
    info = ActivitySignup(type="waitlist" if waitlist else "signup", answers=parse_answers(answer))
    try:
        print_json(get_api().join_activity(activity_id, info))
    except MyPlantError as e:
        fail(e)


@activity_app.command("leave")
def activity_leave(registration_id: str = typer.Argument(..., help="Registration ID")):
    """Sign out of an activity."""
    try:
        print_json(get_api().remove_activity(RemoveRegistration(id=registration_id)))
    except MyPlantError as e:
        fail(e)


# Wudje Group
wudje_app = typer.Typer(help="Wudje operations")
app.add_typer(wudje_app, name="wudje")


@wudje_app.command("list")
def wudje_list():
    """List Wudjes."""
    try:
        print_json(get_api().get_wudjes())
    except MyPlantError as e:
        fail(e)


@wudje_app.command("post")
def wudje_post(message: str | None = typer.Argument(None, help="Message (can be piped from stdin)")):
    """Post a Wudje. The message can be piped from stdin."""
    if message is None:
        message = read_pipe()
    if not message:
        console.print("[error]Error:[/error] Message is required")
        raise typer.Exit(1)

    try:
        print_json(get_api().post_wudje(PostWudjeRequest(message=message)))
    except MyPlantError as e:
        fail(e)


if __name__ == "__main__":
    app()
