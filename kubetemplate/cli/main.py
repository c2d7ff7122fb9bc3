"""Click entry point for the ``kubetemplate`` command.

Commands:
    render  learn a template, render it, and keep it current
    deps    learn a template and print its Kubernetes dependencies as JSON
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from pathlib import Path

import click

from kubetemplate import __version__
from kubetemplate.config import load_config
from kubetemplate.models.config import KubeTemplateConfig

_LOG_LEVELS = ["debug", "info", "warning", "error"]


def _with_overrides(
    config: KubeTemplateConfig,
    *,
    template: str | None = None,
    output: str | None = None,
    once: bool | None = None,
    kubeconfig: str | None = None,
    resync: int | None = None,
    log_level: str | None = None,
) -> KubeTemplateConfig:
    """Apply command-line flags over environment configuration."""
    tmpl = config.template
    if template is not None:
        tmpl = dataclasses.replace(tmpl, template_path=template)
    if output is not None:
        tmpl = dataclasses.replace(tmpl, output_path=output)
    if once:
        tmpl = dataclasses.replace(tmpl, once=True)

    cluster = config.cluster
    if kubeconfig is not None:
        cluster = dataclasses.replace(cluster, kubeconfig=kubeconfig)

    watch = config.watch
    if resync is not None:
        watch = dataclasses.replace(watch, resync_seconds=resync)

    log = config.log
    if log_level is not None:
        log = dataclasses.replace(log, level=log_level.lower())

    return dataclasses.replace(config, template=tmpl, cluster=cluster, watch=watch, log=log)


def _load(ctx: click.Context) -> KubeTemplateConfig:
    try:
        return load_config()
    except ValueError as exc:
        ctx.fail(f"invalid configuration: {exc}")


@click.group()
@click.version_option(__version__, prog_name="kubetemplate")
def cli() -> None:
    """Render configuration files from live Kubernetes state."""


@cli.command()
@click.option("-t", "--template", "template", type=click.Path(exists=True, dir_okay=False), help="Template file.")
@click.option("-o", "--output", "output", type=str, help="Output file, '-' for stdout.")
@click.option("--once", is_flag=True, default=False, help="Render once and exit.")
@click.option("--kubeconfig", type=click.Path(dir_okay=False), help="Path to a kubeconfig file.")
@click.option("--resync", type=click.IntRange(10, 3600), help="Watch resync interval in seconds.")
@click.option("--log-level", type=click.Choice(_LOG_LEVELS, case_sensitive=False), help="Log level.")
@click.pass_context
def render(
    ctx: click.Context,
    template: str | None,
    output: str | None,
    once: bool,
    kubeconfig: str | None,
    resync: int | None,
    log_level: str | None,
) -> None:
    """Render TEMPLATE and re-render whenever a dependency changes."""
    from kubetemplate.app import main

    config = _with_overrides(
        _load(ctx),
        template=template,
        output=output,
        once=once,
        kubeconfig=kubeconfig,
        resync=resync,
        log_level=log_level,
    )
    if not config.template.template_path:
        raise click.UsageError("a template is required (--template or KUBETEMPLATE_TEMPLATE)")
    asyncio.run(main(config))


@cli.command()
@click.argument("template", type=click.Path(exists=True, dir_okay=False))
@click.option("--kubeconfig", type=click.Path(dir_okay=False), help="Path to a kubeconfig file.")
@click.option("--log-level", type=click.Choice(_LOG_LEVELS, case_sensitive=False), help="Log level.")
@click.pass_context
def deps(ctx: click.Context, template: str, kubeconfig: str | None, log_level: str | None) -> None:
    """Learn TEMPLATE and print the resources it reads as JSON."""
    config = _with_overrides(_load(ctx), kubeconfig=kubeconfig, log_level=log_level or "warning")
    source = Path(template).read_text(encoding="utf-8")
    dependencies = asyncio.run(_learn_dependencies(config, source))
    click.echo(json.dumps(dependencies, indent=2))


async def _learn_dependencies(config: KubeTemplateConfig, source: str) -> list[dict[str, object]]:
    from kubetemplate.cluster.client import build_client
    from kubetemplate.engine import Engine
    from kubetemplate.network import NetDiscoverer
    from kubetemplate.observability.logging import setup_logging

    setup_logging(config.log.level)
    client = await build_client(config.cluster.kubeconfig, config.cluster.api_timeout_seconds)
    engine = Engine(
        client,
        NetDiscoverer(
            public_ipv4_url=config.network.public_ipv4_url,
            public_ipv6_url=config.network.public_ipv6_url,
            timeout_seconds=config.network.timeout_seconds,
        ),
        resync_seconds=config.watch.resync_seconds,
        sync_timeout_seconds=config.watch.sync_timeout_seconds,
    )
    try:
        await engine.learn(source)
        return [
            {"namespace": dep.namespace, "kind": str(dep.kind), "name": dep.name, "keys": list(dep.keys)}
            for dep in engine.dependencies()
        ]
    finally:
        await engine.aclose()
        await client.close()
