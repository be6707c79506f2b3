"""Cluster manager operator CLI (cmo).

Usage:
    cmo resources --mode Hosted --registration-webhook-address 10.0.0.1
    cmo plan clustermanager.yaml       # Desired and decommissioned manifests
    cmo render clustermanager.yaml cluster-manager/cluster-manager-namespace.yaml
    cmo run                            # Run the operator (reads env config)
"""

from __future__ import annotations

from pathlib import Path

import click

from .catalog import ResourceSetSelector
from .manifests import ManifestLoadError, ManifestRenderer, ManifestRenderError
from .models import ClusterManager, HubConfig, InstallMode, WebhookTarget, is_ip_format
from .spec_loader import SpecLoadError, load_cluster_manager


def _load_hub_config(
    spec_file: Path, operator_namespace: str
) -> tuple[ClusterManager, HubConfig]:
    try:
        cluster_manager = load_cluster_manager(spec_file)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e
    return cluster_manager, HubConfig.from_cluster_manager(
        cluster_manager, operator_namespace=operator_namespace
    )


@click.group()
@click.version_option(version="0.1.0", prog_name="cmo")
def cli() -> None:
    """Cluster manager operator CLI (cmo).

    Inspect which hub manifests a ClusterManager converges toward and run
    the operator.
    """
    pass


@cli.command()
@click.option(
    "--mode",
    type=click.Choice([m.value for m in InstallMode]),
    default=InstallMode.DEFAULT.value,
    show_default=True,
)
@click.option("--addon-manager/--no-addon-manager", default=False, show_default=True)
@click.option(
    "--mwrs/--no-mwrs",
    default=False,
    show_default=True,
    help="Enable the ManifestWorkReplicaSet feature.",
)
@click.option("--registration-webhook-address", default="", help="Hosted mode only.")
@click.option("--work-webhook-address", default="", help="Hosted mode only.")
def resources(
    mode: str,
    addon_manager: bool,
    mwrs: bool,
    registration_webhook_address: str,
    work_webhook_address: str,
) -> None:
    """Print the hub manifests selected for a mode and feature set."""
    install_mode = InstallMode(mode)
    config = HubConfig(
        cluster_manager_name="cluster-manager",
        cluster_manager_namespace="open-cluster-management-hub",
        operator_namespace="open-cluster-management",
        hosted_mode=install_mode == InstallMode.HOSTED,
        registration_webhook=WebhookTarget(
            address=registration_webhook_address,
            is_ip_format=is_ip_format(registration_webhook_address),
        ),
        work_webhook=WebhookTarget(
            address=work_webhook_address,
            is_ip_format=is_ip_format(work_webhook_address),
        ),
        add_on_manager_enabled=addon_manager,
        mw_replica_set_enabled=mwrs,
    )
    for name in ResourceSetSelector().select(install_mode, config):
        click.echo(name)


@cli.command()
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--operator-namespace", default="open-cluster-management", show_default=True)
def plan(spec_file: Path, operator_namespace: str) -> None:
    """Show what one reconcile pass would remove and apply."""
    cluster_manager, config = _load_hub_config(spec_file, operator_namespace)
    selector = ResourceSetSelector()

    click.secho(
        f"ClusterManager {cluster_manager.metadata.name} ({cluster_manager.mode.value} mode)",
        bold=True,
    )

    disabled = selector.disabled_feature_groups(config)
    if disabled:
        click.echo("\nRemove (disabled features):")
        for feature, group in disabled:
            for name in group:
                click.secho(f"  - {name}  [{feature.value}]", fg="red")

    click.echo("\nApply:")
    for name in selector.select(cluster_manager.mode, config):
        click.secho(f"  + {name}", fg="green")


@cli.command()
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("manifest")
@click.option("--operator-namespace", default="open-cluster-management", show_default=True)
@click.option(
    "--manifests-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
)
def render(
    spec_file: Path, manifest: str, operator_namespace: str, manifests_dir: Path | None
) -> None:
    """Render one manifest for a ClusterManager."""
    _, config = _load_hub_config(spec_file, operator_namespace)
    try:
        data = ManifestRenderer(config, manifests_dir)(manifest)
    except (ManifestLoadError, ManifestRenderError) as e:
        raise click.ClickException(str(e)) from e
    click.echo(data.decode("utf-8"), nl=False)


@cli.command()
def run() -> None:
    """Run the operator with configuration from the environment."""
    from .main import run as run_operator

    run_operator()


if __name__ == "__main__":
    cli()
