"""CLI：依赖解析与缓存命令"""

from __future__ import annotations

import click

from largo.cli import EXIT_STALE, _svc
from largo.core.models import Stale


def register(group: click.Group) -> None:
    group.add_command(lock)
    group.add_command(check)
    group.add_command(gc)


@click.command()
@click.option("--update", is_flag=True, help="忽略已锁定版本，重新查询浮动 ref 和注册表")
@click.pass_context
def lock(ctx: click.Context, update: bool) -> None:
    """解析依赖并写入锁文件"""
    svc = _svc(ctx)
    lockfile = svc.lock(update=update)
    click.echo(f"已锁定 {len(lockfile.packages)} 个包 -> {svc.locks.path}")
    for identity, pkg in lockfile.packages.items():
        click.echo(f"  {identity:24s} {pkg.kind:8s} {pkg.revision[:19]}")


@click.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """检查锁文件是否与清单和本地依赖一致"""
    status = _svc(ctx).check()
    if isinstance(status, Stale):
        click.echo("锁文件已过期:", err=True)
        for reason in status.reasons:
            click.echo(f"  - {reason}", err=True)
        click.echo("请执行 largo lock 重新解析", err=True)
        ctx.exit(EXIT_STALE)
    click.echo("锁文件是最新的")


@click.command()
@click.pass_context
def gc(ctx: click.Context) -> None:
    """清理所有已登记项目都不再引用的缓存条目"""
    evicted = _svc(ctx).gc()
    click.echo(f"已回收 {len(evicted)} 个缓存条目")
