from typing import Callable, Awaitable, Protocol

from .state import CameraState, initial_state
from .actions import Action
from .effects import Effect
from .update import update


class EffectHandler(Protocol):
    async def __call__(
        self,
        effect: Effect,
        dispatch: Callable[[Action], Awaitable[None]]
    ) -> None: ...


class Store:
    """Holds the camera state; every transition goes through ``update``.

    ``dispatch`` applies the reducer before its first suspension point, so a
    second caller always observes the phase the first caller produced.
    """

    def __init__(self, initial: CameraState | None = None):
        self._state = initial if initial is not None else initial_state()
        self._subscribers: list[Callable[[CameraState], None]] = []
        self._effect_handler: EffectHandler | None = None

    @property
    def state(self) -> CameraState:
        return self._state

    def subscribe(self, callback: Callable[[CameraState], None]) -> Callable[[], None]:
        self._subscribers.append(callback)
        callback(self._state)
        return lambda: self._subscribers.remove(callback)

    def set_effect_handler(self, handler: EffectHandler) -> None:
        self._effect_handler = handler

    def _notify_subscribers(self) -> None:
        for subscriber in list(self._subscribers):
            subscriber(self._state)

    async def dispatch(self, action: Action) -> None:
        previous = self._state
        self._state, effects = update(self._state, action)
        if self._state is not previous:
            self._notify_subscribers()

        if self._effect_handler:
            for effect in effects:
                await self._effect_handler(effect, self.dispatch)


def create_store(initial: CameraState | None = None) -> Store:
    return Store(initial)
