"""acl-bootstrap CLI — command-line interface for the ACL bootstrap.

Commands:
    init            Scaffold a config file and a sample policy
    run             Bootstrap this node (rally point or follower)
    rally-point     Show the group membership and the elected rally point
    status          Show which cluster secrets are present in the store
    secret get      Print one stored secret value
    validate        Validate the config file and policy definitions

Exit codes: 0 on success, 2 for configuration errors, and one code per
bootstrap error kind (see ``acl_bootstrap.errors``).
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click

from acl_bootstrap import __version__
from acl_bootstrap.acl.client import SchedulerAclClient
from acl_bootstrap.acl.policies import load_policies
from acl_bootstrap.config import CONFIG_FILENAME, BootstrapConfig, load_config
from acl_bootstrap.coordinator.handoff import write_handoff
from acl_bootstrap.coordinator.node import NodeBootstrap
from acl_bootstrap.directory.client import CloudDirectoryClient
from acl_bootstrap.directory.metadata import MetadataClient
from acl_bootstrap.errors import BootstrapError
from acl_bootstrap.models import ROOT_SECRET_NAME, ClusterIdentity, PolicyStatus
from acl_bootstrap.retry.executor import RetryExecutor
from acl_bootstrap.store.gateway import SecretStoreGateway, build_store

logger = logging.getLogger(__name__)

CONFIG_ERROR_EXIT = 2


# --- Helpers ---


def _load_cfg(config_path: str | None, **overrides: Any) -> BootstrapConfig:
    """Load config (explicit path or auto-discover), then CLI overrides."""
    try:
        cfg = load_config(config_path)
    except (FileNotFoundError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(CONFIG_ERROR_EXIT)
    return cfg.with_overrides(**overrides)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _fail(exc: BootstrapError) -> None:
    click.echo(
        click.style("FAILED", fg="red", bold=True) + f" [{exc.kind}] {exc}",
        err=True,
    )
    sys.exit(exc.exit_code)


def _build_directory(cfg: BootstrapConfig) -> CloudDirectoryClient:
    return CloudDirectoryClient(
        region=cfg.region,
        metadata=MetadataClient(cfg.metadata_url),
        parameter_prefix=cfg.parameter_prefix,
        endpoint_url=cfg.endpoint_url,
    )


def _build_node(cfg: BootstrapConfig) -> NodeBootstrap:
    """Assemble a NodeBootstrap from configuration."""
    directory = _build_directory(cfg)
    return NodeBootstrap(
        directory,
        SchedulerAclClient(cfg.acl_address),
        store=build_store({"type": cfg.store_type}, directory),
        policies=load_policies(cfg.policies_dir),
        cluster_tag_key=cfg.cluster_tag_key,
        cluster_tag_value=cfg.cluster_tag_value,
        asg_name=cfg.asg_name,
        wait_for_capacity=cfg.wait_for_capacity,
        directory_retry=RetryExecutor.from_policy(cfg.retry),
        bootstrap_retry=RetryExecutor.from_policy(cfg.bootstrap),
        poll_retry=RetryExecutor.from_policy(cfg.poll),
    )


def _build_gateway(cfg: BootstrapConfig) -> SecretStoreGateway:
    """Gateway for the configured cluster, resolving the cluster tag if unset."""
    node = _build_node(cfg)
    if cfg.cluster_tag_value:
        cluster = ClusterIdentity(
            cluster_tag_value=cfg.cluster_tag_value,
            region=cfg.region or "unknown",
        )
    else:
        _, cluster = node.resolve_identity()
    return SecretStoreGateway(node.store, cluster)


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help=f"Path to {CONFIG_FILENAME}")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """ACL bootstrap for scheduler clusters in an autoscaling group."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


# --- init command ---


_INIT_CONFIG = """\
# acl-bootstrap configuration. Every key can be overridden with an
# ACL_BOOTSTRAP_<KEY> environment variable or a command-line flag.
cluster_tag_key: "acl-bootstrap:cluster"
acl_address: "http://127.0.0.1:4646"
policies_dir: ./policies
output: ./acl-secrets.yaml
parameter_prefix: /acl-bootstrap
wait_for_capacity: true

retry:
  attempts: 10
  delay: 3
bootstrap:
  attempts: 5
  delay: 5
poll:
  attempts: 60
  delay: 5
"""

_INIT_POLICIES: dict[str, str] = {
    "readonly.hcl": """\
# Read-only access to jobs and nodes
namespace "*" {
  policy = "read"
}

node {
  policy = "read"
}
""",
}


@cli.command()
@click.argument("directory", default=".")
def init(directory: str) -> None:
    """Scaffold acl-bootstrap.yaml and a sample policy in DIRECTORY."""
    root = Path(directory)
    root.mkdir(parents=True, exist_ok=True)

    config_file = root / CONFIG_FILENAME
    if config_file.exists():
        click.echo(f"Skipped {config_file} (already exists)")
    else:
        config_file.write_text(_INIT_CONFIG, encoding="utf-8")
        click.echo(f"Created {config_file}")

    policies = root / "policies"
    policies.mkdir(exist_ok=True)
    for name, content in _INIT_POLICIES.items():
        path = policies / name
        if path.exists():
            click.echo(f"Skipped {path} (already exists)")
            continue
        path.write_text(content, encoding="utf-8")
        click.echo(f"Created {path}")


# --- run command ---


@cli.command()
@click.option("--cluster", default=None, help="Cluster tag value (skips the tag lookup)")
@click.option("--region", default=None, help="AWS region")
@click.option("--asg", "asg_name", default=None, help="Autoscaling group name")
@click.option("--policies", "policies_dir", default=None, help="Policy definitions directory")
@click.option("--output", default=None, help="Write secrets for the config renderer here")
@click.option("--acl-address", default=None, help="Scheduler HTTP API address")
@click.option("--json-output", is_flag=True, help="Output the result as JSON (no secret values)")
@click.pass_context
def run(
    ctx: click.Context,
    cluster: str | None,
    region: str | None,
    asg_name: str | None,
    policies_dir: str | None,
    output: str | None,
    acl_address: str | None,
    json_output: bool,
) -> None:
    """Bootstrap this node's ACL credentials.

    The rally point bootstraps the ACL system and stores the secrets;
    every other node waits until the root secret is in the store.
    """
    cfg = _load_cfg(
        ctx.obj["config_path"],
        cluster_tag_value=cluster,
        region=region,
        asg_name=asg_name,
        policies_dir=policies_dir,
        output=output,
        acl_address=acl_address,
    )
    _configure_logging(ctx.obj["log_level"] or cfg.log_level)

    try:
        node = _build_node(cfg)
        result = node.run()
    except BootstrapError as exc:
        _fail(exc)
        return

    if cfg.output:
        try:
            path = write_handoff(result, cfg.output)
        except BootstrapError as exc:
            _fail(exc)
            return
        logger.info("Wrote %d secret(s) to %s", len(result.secrets()), path)

    if json_output:
        click.echo(json.dumps(result.summary(), indent=2))
        return

    click.echo(
        click.style("OK", fg="green", bold=True)
        + f" — {result.role} {result.node.instance_id}"
        + f" (cluster {result.cluster.cluster_tag_value})",
    )
    click.echo(f"  root secret: {'minted' if result.minted else 'obtained from store'}")
    for outcome in result.policy_outcomes:
        if outcome.status == PolicyStatus.FAILED:
            click.echo(
                "  policy "
                + click.style(outcome.policy, fg="yellow")
                + f": MISSING ({outcome.error})",
            )
        else:
            click.echo(f"  policy {outcome.policy}: {outcome.status}")


# --- rally-point command ---


@cli.command("rally-point")
@click.option("--asg", "asg_name", default=None, help="Autoscaling group name")
@click.option("--region", default=None, help="AWS region")
@click.option("--json-output", is_flag=True, help="Output as JSON")
@click.pass_context
def rally_point(
    ctx: click.Context,
    asg_name: str | None,
    region: str | None,
    json_output: bool,
) -> None:
    """Show the group membership in rally order and the elected node."""
    cfg = _load_cfg(ctx.obj["config_path"], asg_name=asg_name, region=region)
    _configure_logging(ctx.obj["log_level"] or "WARNING")

    try:
        context = _build_node(cfg.with_overrides(wait_for_capacity=False)).resolve()
        rally = context.rally_point
    except BootstrapError as exc:
        _fail(exc)
        return

    if json_output:
        click.echo(json.dumps({
            "group": context.membership.group_name,
            "desired_capacity": context.membership.desired_capacity,
            "members": [m.instance_id for m in context.ordered_members],
            "rally_point": rally.instance_id,
            "self": context.node.instance_id,
            "role": str(context.role),
        }, indent=2))
        return

    click.echo(
        f"Group {context.membership.group_name}: "
        f"{context.membership.size}/{context.membership.desired_capacity} members",
    )
    for member in context.ordered_members:
        marks = []
        if member.instance_id == rally.instance_id:
            marks.append("rally point")
        if member.instance_id == context.node.instance_id:
            marks.append("this node")
        suffix = f"  <- {', '.join(marks)}" if marks else ""
        click.echo(f"  {member.instance_id}  {member.private_ip}{suffix}")


# --- status command ---


@cli.command()
@click.option("--cluster", default=None, help="Cluster tag value")
@click.option("--policies", "policies_dir", default=None, help="Policy definitions directory")
@click.option("--json-output", is_flag=True, help="Output as JSON")
@click.pass_context
def status(
    ctx: click.Context,
    cluster: str | None,
    policies_dir: str | None,
    json_output: bool,
) -> None:
    """Show which cluster secrets exist in the store (values are not shown).

    Exits non-zero if the root secret or any policy secret is missing.
    """
    cfg = _load_cfg(ctx.obj["config_path"], cluster_tag_value=cluster, policies_dir=policies_dir)
    _configure_logging(ctx.obj["log_level"] or "WARNING")

    try:
        policies = load_policies(cfg.policies_dir)
        gateway = _build_gateway(cfg)
        names = [ROOT_SECRET_NAME] + [p.name for p in policies]
        present = {name: gateway.exists(name) for name in names}
    except BootstrapError as exc:
        _fail(exc)
        return

    if json_output:
        click.echo(json.dumps({
            "cluster": gateway.cluster.cluster_tag_value,
            "secrets": present,
        }, indent=2))
    else:
        click.echo(f"Cluster {gateway.cluster.cluster_tag_value}:")
        for name, ok in present.items():
            label = click.style("present", fg="green") if ok else click.style("MISSING", fg="red")
            click.echo(f"  {gateway.key_for(name)}: {label}")

    if not all(present.values()):
        sys.exit(1)


# --- secret group ---


@cli.group()
def secret() -> None:
    """Stored secret commands."""


@secret.command("get")
@click.argument("name", default=ROOT_SECRET_NAME)
@click.option("--cluster", default=None, help="Cluster tag value")
@click.pass_context
def secret_get(ctx: click.Context, name: str, cluster: str | None) -> None:
    """Print the value of secret NAME (default: the root secret)."""
    cfg = _load_cfg(ctx.obj["config_path"], cluster_tag_value=cluster)
    _configure_logging(ctx.obj["log_level"] or "WARNING")

    try:
        gateway = _build_gateway(cfg)
        stored = gateway.get_secret(name)
    except BootstrapError as exc:
        _fail(exc)
        return

    if stored is None:
        click.echo(f"Secret not found: {gateway.key_for(name)}", err=True)
        sys.exit(1)
    click.echo(stored.value)


# --- validate command ---


@cli.command()
@click.option("--policies", "policies_dir", default=None, help="Policy definitions directory")
@click.pass_context
def validate(ctx: click.Context, policies_dir: str | None) -> None:
    """Validate the config file and policy definitions."""
    cfg = _load_cfg(ctx.obj["config_path"], policies_dir=policies_dir)

    source = cfg.config_path or "defaults (no config file found)"
    click.echo(f"Config: {source}")

    try:
        policies = load_policies(cfg.policies_dir)
    except BootstrapError as exc:
        _fail(exc)
        return

    if not policies:
        click.echo("Policies: none configured")
    for policy in policies:
        desc = f" — {policy.description}" if policy.description else ""
        click.echo(f"  policy {policy.name}{desc}")

    click.echo(click.style("OK", fg="green", bold=True) + f" — {len(policies)} policy file(s) valid")
