# src/nodestrap/cli/app.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pydantic
import typer

from nodestrap.bootstrap.orchestrator import BootstrapOrchestrator
from nodestrap.config.loader import load_config, load_vault_file, load_vault_list
from nodestrap.config.models import DEFAULT_TEMPLATE, BootstrapRequest, SshSettings, SudoSettings
from nodestrap.errors import NodestrapError, RemoteCommandFailed, ValidationError
from nodestrap.logging.log import init_logging
from nodestrap.observers.dispatcher import EventBus
from nodestrap.observers.logger import LoggerObserver

log = logging.getLogger("nodestrap")

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Bootstrap managed nodes over SSH")

FATAL_EXIT = 2


@app.callback()
def main() -> None:
    """nodestrap: register and bootstrap managed nodes."""


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def parse_hints(values: Optional[List[str]]) -> Dict[str, Dict[str, Any]]:
    """
    --hint NAME[=FILE] -> {NAME: <json from FILE or {}>}
    """
    hints: Dict[str, Dict[str, Any]] = {}
    for raw in values or []:
        name, _, path = raw.partition("=")
        hints[name] = json.loads(Path(path).read_text()) if path else {}
    return hints


def select_template(
    bootstrap_template: Optional[str],
    template_file: Optional[str],
    distro: Optional[str],
) -> str:
    """
    --bootstrap-template wins over the deprecated --template-file and --distro.
    """
    if template_file:
        log.warning("[DEPRECATED] --template-file option is deprecated. Use -t / --bootstrap-template option instead.")
    if distro:
        log.warning("[DEPRECATED] -d / --distro option is deprecated. Use -t / --bootstrap-template option instead.")
    return bootstrap_template or template_file or distro or DEFAULT_TEMPLATE


def read_secret(secret: Optional[str], secret_file: Optional[Path]) -> Optional[str]:
    if secret and secret_file:
        raise typer.BadParameter("Please specify only one of --secret, --secret-file")
    if secret_file:
        return secret_file.expanduser().read_text().strip()
    return secret


# ------------------------------------------------------------------------------
# Bootstrap command
# ------------------------------------------------------------------------------

@app.command()
def bootstrap(
    target: Optional[str] = typer.Argument(None, help="FQDN or IP of the node to bootstrap"),
    ssh_user: str = typer.Option("root", "--ssh-user", "-x", help="The ssh username"),
    ssh_password: Optional[str] = typer.Option(None, "--ssh-password", "-P", help="The ssh password"),
    ssh_port: int = typer.Option(22, "--ssh-port", "-p", help="The ssh port"),
    ssh_gateway: Optional[str] = typer.Option(None, "--ssh-gateway", "-G", help="The ssh gateway"),
    forward_agent: bool = typer.Option(False, "--forward-agent", "-A", help="Enable SSH agent forwarding"),
    identity_file: Optional[Path] = typer.Option(
        None, "--identity-file", "-i", help="The SSH identity file used for authentication"
    ),
    node_name: Optional[str] = typer.Option(None, "--node-name", "-N", help="The node name for your new node"),
    environment: Optional[str] = typer.Option(None, "--environment", "-E", help="Environment for the new node"),
    prerelease: bool = typer.Option(False, "--prerelease", help="Install the pre-release client"),
    bootstrap_version: Optional[str] = typer.Option(None, "--bootstrap-version", help="The client version to install"),
    bootstrap_proxy: Optional[str] = typer.Option(
        None, "--bootstrap-proxy", help="The proxy server for the node being bootstrapped"
    ),
    bootstrap_no_proxy: Optional[str] = typer.Option(
        None, "--bootstrap-no-proxy", help="Do not proxy locations for the node being bootstrapped"
    ),
    distro: Optional[str] = typer.Option(None, "--distro", "-d", help="[DEPRECATED] Use --bootstrap-template"),
    bootstrap_template: Optional[str] = typer.Option(
        None, "--bootstrap-template", "-t", help="Built-in template name or path to a custom template"
    ),
    template_file: Optional[str] = typer.Option(None, "--template-file", help="[DEPRECATED] Use --bootstrap-template"),
    use_sudo: bool = typer.Option(False, "--sudo", help="Execute the bootstrap via sudo"),
    use_sudo_password: bool = typer.Option(
        False, "--use-sudo-password", help="Execute the bootstrap via sudo with password"
    ),
    run_list: Optional[str] = typer.Option(
        None, "--run-list", "-r", help="Comma separated list of roles/recipes to apply"
    ),
    json_attributes: Optional[str] = typer.Option(
        None, "--json-attributes", "-j", help="A JSON string to be added to the first client run"
    ),
    host_key_verify: bool = typer.Option(True, "--host-key-verify/--no-host-key-verify", help="Verify host key"),
    hint: Optional[List[str]] = typer.Option(None, "--hint", help="Hint to set on the target: NAME[=FILE]"),
    bootstrap_url: Optional[str] = typer.Option(None, "--bootstrap-url", help="URL to a custom installation script"),
    bootstrap_install_command: Optional[str] = typer.Option(
        None, "--bootstrap-install-command", help="Custom command to install the client"
    ),
    bootstrap_wget_options: Optional[str] = typer.Option(None, "--bootstrap-wget-options"),
    bootstrap_curl_options: Optional[str] = typer.Option(None, "--bootstrap-curl-options"),
    node_ssl_verify_mode: Optional[str] = typer.Option(
        None, "--node-ssl-verify-mode", help="Whether or not to verify the SSL cert [peer|none]"
    ),
    node_verify_api_cert: Optional[bool] = typer.Option(
        None, "--node-verify-api-cert/--no-node-verify-api-cert",
        help="Verify the SSL cert for HTTPS requests to the server API",
    ),
    vault_file: Optional[Path] = typer.Option(None, "--vault-file", "-L", help="A JSON file with a list of vault"),
    vault_list: Optional[str] = typer.Option(
        None, "--vault-list", "-l", help="A JSON string with the vault to be updated"
    ),
    overwrite_node: bool = typer.Option(
        False, "--bootstrap-overwrite-node/--no-bootstrap-overwrite-node",
        help="When registering, overwrite an existing node and client",
    ),
    bootstrap_uses_validator: bool = typer.Option(
        False, "--bootstrap-uses-validator/--no-bootstrap-uses-validator",
        help="Force bootstrap to use validation.pem instead of registering a client",
    ),
    secret: Optional[str] = typer.Option(None, "--secret", help="Encrypted data bag secret to ship to the node"),
    secret_file: Optional[Path] = typer.Option(None, "--secret-file", help="File holding the data bag secret"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Debug output on the console"),
):
    """
    Register the node (unless --bootstrap-uses-validator) and bootstrap TARGET.
    """
    logger, run_id, _ = init_logging(verbose=verbose)

    if node_ssl_verify_mode is not None and node_ssl_verify_mode not in ("peer", "none"):
        raise typer.BadParameter(
            f"Invalid value '{node_ssl_verify_mode}' for --node-ssl-verify-mode. "
            "Valid values are: none, peer"
        )

    try:
        request = BootstrapRequest(
            target=target,
            node_name=node_name,
            run_list=run_list,
            first_boot_attributes=json_attributes,
            environment=environment,
            template=select_template(bootstrap_template, template_file, distro),
            ssh=SshSettings(
                user=ssh_user,
                password=ssh_password,
                port=ssh_port,
                gateway=ssh_gateway,
                identity_file=identity_file,
                forward_agent=forward_agent,
                host_key_verify=host_key_verify,
            ),
            sudo=SudoSettings(use_sudo=use_sudo, use_sudo_password=use_sudo_password),
            overwrite_node=overwrite_node,
            bootstrap_uses_validator=bootstrap_uses_validator,
            vault_list=load_vault_list(vault_list) if vault_list else None,
            vault_file=load_vault_file(vault_file) if vault_file else None,
            bootstrap_version=bootstrap_version,
            prerelease=prerelease,
            bootstrap_proxy=bootstrap_proxy,
            bootstrap_no_proxy=bootstrap_no_proxy,
            bootstrap_url=bootstrap_url,
            bootstrap_install_command=bootstrap_install_command,
            bootstrap_wget_options=bootstrap_wget_options,
            bootstrap_curl_options=bootstrap_curl_options,
            node_ssl_verify_mode=node_ssl_verify_mode,
            node_verify_api_cert=node_verify_api_cert,
            hints=parse_hints(hint),
            secret=read_secret(secret, secret_file),
        )
        server_config = load_config(config)
    except (ValueError, OSError, pydantic.ValidationError) as exc:
        # json.JSONDecodeError is a ValueError
        logger.error(f"Invalid bootstrap options: {exc}")
        raise typer.Exit(code=FATAL_EXIT)

    orchestrator = BootstrapOrchestrator(
        request,
        server_config,
        bus=EventBus(observers=[LoggerObserver(logger)]),
    )

    try:
        orchestrator.run()
    except ValidationError as exc:
        logger.error(str(exc))
        raise typer.Exit(code=1)
    except RemoteCommandFailed as exc:
        logger.error(str(exc))
        raise typer.Exit(code=exc.exit_status)
    except NodestrapError as exc:
        logger.error(str(exc))
        raise typer.Exit(code=FATAL_EXIT)

    logger.info(f"run_id={run_id} finished")


if __name__ == "__main__":
    app()
