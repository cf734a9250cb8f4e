"""
Lifecycle controller.

Owns the session and sequences everything that touches remote resources:
startup validation, the optional family sweep, provisioning, serving the
local API and the drain on SIGINT/SIGTERM. Provisioning, rebinding and
teardown are serialized by one lock, and the drain runs at most once no
matter how many signals arrive.
"""

import asyncio
import contextlib
import logging
import signal
from typing import Any, Callable, Optional

import uvicorn

from devphone.config import Settings
from devphone.core.errors import DevPhoneError, ProvisionError
from devphone.core.gateway import SessionGateway
from devphone.core.lifecycle.state import (
    InvalidTransition,
    LifecycleState,
    can_transition,
)
from devphone.core.models import (
    CREATION_ORDER,
    PhoneNumber,
    PhoneNumberBinding,
    ProvisionedResources,
    Session,
    SessionToken,
)
from devphone.core.naming import generate_session_name
from devphone.core.provisioning import ResourceProvisioner, TwilioAccountClient
from devphone.core.tokens import TokenIssuer
from devphone.core.webhooks import WebhookBinder

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GatewayServer(uvicorn.Server):
    """
    uvicorn server that leaves signal handling to the controller.

    on_started runs once the socket is bound and lifespan startup succeeded.
    """

    def __init__(self, config: uvicorn.Config, on_started: Optional[Callable[[], None]] = None):
        super().__init__(config)
        self.on_started = on_started

    async def startup(self, sockets: Optional[list] = None) -> None:
        await super().startup(sockets=sockets)
        if self.started and self.on_started is not None:
            self.on_started()

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class LifecycleController:
    """
    Runs one dev phone session.

    States: IDLE -> PROVISIONING -> SERVING -> DRAINING -> TERMINATED, with
    PROVISIONING -> TERMINATED when provisioning fails.

    Usage:
        controller = LifecycleController(settings, account)
        app = create_app(controller)
        exit_code = await controller.run(app)
    """

    def __init__(
        self,
        settings: Settings,
        account: TwilioAccountClient,
        session: Optional[Session] = None,
        provisioner: Optional[ResourceProvisioner] = None,
        binder: Optional[WebhookBinder] = None,
        issuer: Optional[TokenIssuer] = None,
    ):
        self.settings = settings
        self.account = account
        self.session = session or Session(name=generate_session_name())
        self.provisioner = provisioner or ResourceProvisioner(account, settings)
        self.binder = binder or WebhookBinder(account)
        self.issuer = issuer or TokenIssuer(
            settings.profile.account_sid, ttl=settings.token_ttl
        )
        self.gateway = SessionGateway(self)

        self.state = LifecycleState.IDLE
        self.resources = ProvisionedResources()
        self.binding: Optional[PhoneNumberBinding] = None
        self.token: Optional[SessionToken] = None

        self._lock = asyncio.Lock()
        self._shutdown_requested = False
        self._drain_task: Optional[asyncio.Task] = None
        self._server: Optional[uvicorn.Server] = None
        self._listening_callbacks: list[Callable[[], None]] = []

    # === State ===

    def transition(self, to_state: LifecycleState) -> None:
        """Move to to_state or raise InvalidTransition."""
        if not can_transition(self.state, to_state):
            raise InvalidTransition(self.state, to_state)
        logger.debug(f"Lifecycle {self.state.value} -> {to_state.value}")
        self.state = to_state

    def on_listening(self) -> None:
        """Called once the local web server accepts requests."""
        if self.state != LifecycleState.PROVISIONING:
            return
        self.transition(LifecycleState.SERVING)
        for callback in self._listening_callbacks:
            callback()

    def add_listening_callback(self, callback: Callable[[], None]) -> None:
        """Run callback when the session starts serving."""
        self._listening_callbacks.append(callback)

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    # === Startup ===

    async def validate_phone_number(self) -> Optional[PhoneNumber]:
        """
        Look up the configured phone number before anything is created.

        Raises:
            NotFoundError: The number is not on the account
            ConflictError: The number has webhooks and force is off
        """
        if not self.settings.phone_number:
            return None
        number = await self.binder.lookup(self.settings.phone_number)
        self.binder.check(number, force=self.settings.force)
        return number

    async def clear(self) -> int:
        """
        Remove every dev phone resource on the account.

        Only runs before provisioning; the current session is unaffected.
        """
        async with self._lock:
            logger.info("Deleting all dev-phone resources from your account before starting...")
            removed = await self.provisioner.destroy_family()
            logger.info(f"All resources have been deleted ({removed} removed)")
            return removed

    async def provision(self, number: Optional[PhoneNumber] = None) -> None:
        """
        Create the session's resources, bind number and issue the first token.

        Any failure is fatal: the session moves to TERMINATED and the error
        is re-raised. With ``sweep_on_failure``, resources created so far are
        removed first.
        """
        async with self._lock:
            self.transition(LifecycleState.PROVISIONING)
            logger.info(f"Hello! I'm your dev-phone and my name is {self.session.name}")
            try:
                for kind in CREATION_ORDER:
                    self._check_interrupted()
                    resource = await self.provisioner.provision(
                        kind, self.session, self.resources
                    )
                    self.resources.add(resource)

                if number is not None:
                    self._check_interrupted()
                    urls = self.provisioner.webhook_urls(self.resources)
                    self.binding = await self.binder.bind(
                        number, urls, force=self.settings.force
                    )

                self.token = self._issue_token()
            except Exception as e:
                logger.error(f"Provisioning failed: {e}")
                await self._abort()
                raise

    def _check_interrupted(self) -> None:
        if self._shutdown_requested:
            raise ProvisionError("Interrupted while provisioning")

    async def _abort(self) -> None:
        if self.settings.sweep_on_failure:
            logger.info(f"Removing resources created for {self.session.name}")
            await self._release_binding()
            await self.provisioner.destroy_session(self.session)
        self.transition(LifecycleState.TERMINATED)

    # === Serving ===

    def _issue_token(self) -> SessionToken:
        return self.issuer.issue(
            self.session,
            self.resources.credential,
            self.resources.grant_targets,
        )

    async def current_token(self) -> SessionToken:
        """Current access token, re-issued when absent or expired."""
        if self.token is None or self.token.is_expired:
            self.token = self._issue_token()
        return self.token

    async def rebind(self, phone_number: str) -> PhoneNumberBinding:
        """Move the dev phone to phone_number."""
        async with self._lock:
            urls = self.provisioner.webhook_urls(self.resources)
            self.binding = await self.binder.rebind(
                self.binding, phone_number, urls, force=self.settings.force
            )
            return self.binding

    # === Shutdown ===

    def request_shutdown(self, sig: Optional[int] = None) -> bool:
        """
        Ask the session to stop. Only the first request counts.

        Returns:
            True if this call started the shutdown
        """
        name = signal.Signals(sig).name if sig is not None else "request"
        if self._shutdown_requested:
            logger.info(f"Already shutting down, ignoring {name}")
            return False

        self._shutdown_requested = True
        logger.info(f"Shutting down ({name})")
        if self._server is not None:
            self._server.should_exit = True
        return True

    async def drain(self) -> int:
        """
        Unbind the phone number and remove this session's resources.

        Safe to call concurrently or repeatedly: every caller waits on the
        same single drain.

        Returns:
            Process exit code
        """
        if self._drain_task is None:
            self._drain_task = asyncio.ensure_future(self._drain())
        return await asyncio.shield(self._drain_task)

    async def _drain(self) -> int:
        async with self._lock:
            self.transition(LifecycleState.DRAINING)
            await self._release_binding()
            removed = await self.provisioner.destroy_session(self.session)
            logger.info(f"Removed {removed} resources for {self.session.name}")
            self.token = None
            self.transition(LifecycleState.TERMINATED)
        return 0

    async def _release_binding(self) -> None:
        try:
            self.binding = await self.binder.unbind(self.binding)
        except DevPhoneError as e:
            logger.error(f"Failed to remove phone number webhooks: {e}")

    # === Process ===

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to request_shutdown."""
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except NotImplementedError:
                signal.signal(
                    sig,
                    lambda s, _frame: loop.call_soon_threadsafe(self.request_shutdown, s),
                )

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.SIG_DFL)

    def server_config(self, app: Any) -> uvicorn.Config:
        return uvicorn.Config(
            app,
            host=self.settings.host,
            port=self.settings.port or 1337,
            log_level="debug" if self.settings.debug else "info",
            lifespan="on",
        )

    async def run(self, app: Any) -> int:
        """
        Run the whole session: validate, optionally clear, provision, serve
        until a shutdown signal, then drain.

        Returns:
            Process exit code (0 after a clean drain)

        Raises:
            DevPhoneError: Startup failed; nothing is left serving
        """
        self.install_signal_handlers()
        try:
            number = await self.validate_phone_number()
            if self.settings.clear:
                await self.clear()
            await self.provision(number)

            if self._shutdown_requested:
                return await self.drain_before_serving()

            self._server = GatewayServer(self.server_config(app), on_started=self.on_listening)
            server_failed = False
            try:
                await self._server.serve()
            except SystemExit:
                # uvicorn exits when it cannot bind the port
                server_failed = True
                logger.error("The local web server failed to start")

            if self.state == LifecycleState.PROVISIONING:
                await self._abort()
                return 1
            exit_code = await self.drain()
            return 1 if server_failed else exit_code
        finally:
            self.remove_signal_handlers()

    async def drain_before_serving(self) -> int:
        """Shutdown requested after provisioning but before listening."""
        self.transition(LifecycleState.SERVING)
        return await self.drain()
