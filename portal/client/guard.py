from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, TypeVar, Union

from portal.auth.util import sanitize_next_path
from portal.client.session import Authenticated, ClientSession, CurrentUser

T = TypeVar("T")


class HasSessionState(Protocol):
    @property
    def state(self) -> ClientSession:
        ...


@dataclass(frozen=True)
class Redirect:
    """Client-side navigation instruction (replace the current history entry)."""

    to: str
    replace: bool = True


def protected_route(
    session: HasSessionState,
    render: Callable[[CurrentUser], T],
    redirect_to: str = "/",
) -> Union[T, Redirect]:
    """
    Render protected content only for an authenticated session.

    Reads the session state on every call; never touches the network and never
    calls `render` when anonymous.
    """
    state = session.state
    if isinstance(state, Authenticated):
        return render(state.user)
    return Redirect(to=sanitize_next_path(redirect_to), replace=True)
