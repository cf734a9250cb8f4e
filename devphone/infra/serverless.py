"""
Webhook backend deployment.

Deploys the handler functions in ``serverless_functions_dir`` as a Twilio
Serverless service named after the session:

1. Create the service and an environment
2. Upload one function version per handler file
3. Build and wait for the build to complete
4. Set the environment variables and deploy the build

Function content cannot be uploaded through the helper library, so versions
go to the upload endpoint with httpx.
"""

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

import httpx

from devphone.config import Settings
from devphone.core.errors import ProvisionError
from devphone.core.models import ManagedResource, ResourceKind

if TYPE_CHECKING:
    from devphone.infra.twilio_client import TwilioAccount

logger = logging.getLogger(__name__)

UPLOAD_URL = (
    "https://serverless-upload.twilio.com/v1/Services/{service_sid}"
    "/Functions/{function_sid}/Versions"
)

ENVIRONMENT_NAME = "dev-environment"
DOMAIN_SUFFIX = "dev"

BUILD_DONE = "completed"
BUILD_FAILED = "failed"


class ServerlessDeployer:
    """Deploys the webhook handlers for a session."""

    def __init__(self, account: "TwilioAccount", settings: Settings):
        self.account = account
        self.functions_dir = Path(settings.serverless_functions_dir)
        self.poll_interval = settings.build_poll_interval
        self.build_timeout = settings.build_timeout
        self.timeout = settings.remote_timeout
        profile = settings.profile
        self.auth = (profile.api_key, profile.api_secret)

    def handler_files(self) -> list[Path]:
        """Handler sources, one function per file."""
        if not self.functions_dir.is_dir():
            return []
        return sorted(self.functions_dir.glob("*.js"))

    async def deploy(
        self,
        label: str,
        env: dict[str, str],
        on_update: Optional[Callable[[dict], None]] = None,
    ) -> ManagedResource:
        """
        Deploy the handlers as a service labelled with label.

        Args:
            label: Service unique and friendly name (the session name)
            env: Environment variables for the handlers
            on_update: Receives ``{"status", "message"}`` events

        Returns:
            The service, with ``domain`` set to the deployed domain

        Raises:
            ProvisionError: Any step failed or the build did not complete
        """
        notify = on_update or (lambda event: None)
        files = self.handler_files()
        if not files:
            raise ProvisionError(f"No webhook handlers found in {self.functions_dir}")

        call = self.account.call
        services = self.account.client.serverless.v1.services

        service = await call(
            "Creating Serverless service",
            services.create,
            unique_name=label,
            friendly_name=label,
            include_credentials=True,
        )
        service_context = services(service.sid)
        notify({"status": "creating", "message": f"Created service {service.sid}"})

        environment = await call(
            "Creating Serverless environment",
            service_context.environments.create,
            unique_name=ENVIRONMENT_NAME,
            domain_suffix=DOMAIN_SUFFIX,
        )

        version_sids = []
        for path in files:
            function = await call(
                f"Creating function {path.stem}",
                service_context.functions.create,
                friendly_name=path.stem,
            )
            version_sids.append(await self._upload(service.sid, function.sid, path))
            notify({"status": "uploading", "message": f"Uploaded /{path.stem}"})

        build = await call(
            "Creating build",
            service_context.builds.create,
            function_versions=version_sids,
        )
        await self._wait_for_build(service_context, build.sid, notify)

        environment_context = service_context.environments(environment.sid)
        notify({"status": "configuring", "message": "Setting environment variables"})
        for key, value in env.items():
            await call(
                f"Setting variable {key}",
                environment_context.variables.create,
                key=key,
                value=value,
            )

        await call(
            "Deploying build",
            environment_context.deployments.create,
            build_sid=build.sid,
        )
        notify({"status": "deployed", "message": f"Deployed to {environment.domain_name}"})

        return ManagedResource(
            kind=ResourceKind.WEBHOOK_BACKEND,
            remote_id=service.sid,
            label=service.friendly_name,
            fields={
                "domain": environment.domain_name,
                "environment_sid": environment.sid,
                "build_sid": build.sid,
            },
        )

    async def _upload(self, service_sid: str, function_sid: str, path: Path) -> str:
        url = UPLOAD_URL.format(service_sid=service_sid, function_sid=function_sid)
        try:
            async with httpx.AsyncClient(auth=self.auth, timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    data={"Path": f"/{path.stem}", "Visibility": "protected"},
                    files={"Content": (path.name, path.read_bytes(), "application/javascript")},
                )
                response.raise_for_status()
                return response.json()["sid"]
        except httpx.HTTPStatusError as e:
            raise ProvisionError(
                f"Uploading {path.name} failed: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ProvisionError(f"Uploading {path.name} failed: {e}") from e

    async def _wait_for_build(
        self,
        service_context,
        build_sid: str,
        notify: Callable[[dict], None],
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.build_timeout
        build_context = service_context.builds(build_sid)

        while True:
            build = await self.account.call("Fetching build status", build_context.fetch)
            if build.status == BUILD_DONE:
                notify({"status": "built", "message": f"Build {build_sid} completed"})
                return
            if build.status == BUILD_FAILED:
                raise ProvisionError(f"Build {build_sid} failed")
            if loop.time() >= deadline:
                raise ProvisionError(
                    f"Build {build_sid} did not complete within {self.build_timeout:.0f}s",
                    status_code=504,
                )
            notify({"status": "building", "message": "Current status: building"})
            await asyncio.sleep(self.poll_interval)
