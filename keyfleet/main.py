"""Main module entrypoint for the service and the rolling deploy command.

`api` loads credentials and serves HTTP; `deploy` rolls the Compose service
to a new image tag and exits with a status-derived code.
"""

import argparse
import asyncio
import logging

from keyfleet.bootstrap import bootstrap_create_deploy, bootstrap_create_service, bootstrap_serve
from keyfleet.config import config_configure_logging, config_load_deploy_settings, config_load_settings
from keyfleet.deploy import DeploymentResult
from keyfleet.secrets import StartupLoadError

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Run selected runtime command with validated startup configuration.

    Args:
        argv: Optional argument list, defaults to process arguments.

    Returns:
        None: This function does not return a runtime value.

    Raises:
        SettingsLoadError: Raised when configuration validation fails.
        SystemExit: Raised with a non-zero code when the command fails.
    """

    argument_parser = argparse.ArgumentParser(description="keyfleet runtime entrypoint")
    argument_parser.add_argument(
        "command",
        nargs="?",
        default="api",
        choices=("api", "deploy"),
        help="Runtime command: `api` loads credentials and starts the server, "
        "`deploy` performs one rolling deployment",
        type=str,
    )
    argument_parser.add_argument(
        "image_tag",
        nargs="?",
        default="latest",
        help="Image tag to roll out for `deploy`",
        type=str,
    )
    parsed_arguments = argument_parser.parse_args(argv)

    if parsed_arguments.command == "deploy":
        deploy_result = main_run_deploy(image_tag=parsed_arguments.image_tag)
        if deploy_result.exit_code != 0:
            raise SystemExit(deploy_result.exit_code)
        return

    settings = config_load_settings()
    config_configure_logging(log_level=settings.log_level)
    components = bootstrap_create_service(settings)
    try:
        asyncio.run(bootstrap_serve(settings, components))
    except StartupLoadError as error:
        logger.critical("Startup aborted, no credentials loaded: %s", error)
        raise SystemExit(1) from error


def main_run_deploy(image_tag: str) -> DeploymentResult:
    """Execute one rolling deployment and log its summary.

    Args:
        image_tag: Image tag to roll out.

    Returns:
        DeploymentResult: Final deployment result.

    Raises:
        SettingsLoadError: Raised when deploy configuration validation fails.
    """

    settings = config_load_deploy_settings()
    config_configure_logging(log_level=settings.log_level, log_file=settings.deploy_log_file or None)
    components = bootstrap_create_deploy(settings)

    async def _run() -> DeploymentResult:
        try:
            return await components.controller.deploy_execute(image_tag)
        finally:
            await components.probe.probe_close()

    deploy_result = asyncio.run(_run())
    logger.info(
        "Deployment finished: status=%s image_tag=%s replaced=%d exit_code=%d",
        deploy_result.status,
        deploy_result.image_tag,
        deploy_result.replaced_count,
        deploy_result.exit_code,
    )
    if deploy_result.error_code is not None:
        logger.error("Deployment error %s: %s", deploy_result.error_code, deploy_result.error_message)
    return deploy_result


if __name__ == "__main__":
    main()
