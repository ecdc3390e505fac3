"""CLI：构建计划与 eject 命令"""

from __future__ import annotations

import click

from largo.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(plan)
    group.add_command(eject)


@click.command()
@click.option("--profile", "-p", default="", help="构建配置（默认 debug）")
@click.option("--defs", is_flag=True, help="只输出注入引擎的宏定义")
@click.pass_context
def plan(ctx: click.Context, profile: str, defs: bool) -> None:
    """显示某个构建配置下实际生效的包和参数"""
    with _svc(ctx).plan(profile) as build_plan:
        if defs:
            click.echo(build_plan.variables.to_defs())
            return
        click.echo(f"构建配置: {build_plan.build.profile}")
        click.echo("参数:")
        for key, value in build_plan.build.parameters.items():
            click.echo(f"  {key} = {value}")
        click.echo(f"生效的包 ({len(build_plan.views)}):")
        for identity, root in build_plan.roots.items():
            click.echo(f"  {identity:24s} {root}")


@click.command()
@click.argument("output", type=click.Path(file_okay=False))
@click.option("--profile", "-p", default="", help="构建配置（默认 debug）")
@click.pass_context
def eject(ctx: click.Context, output: str, profile: str) -> None:
    """导出不依赖 largo 的自包含项目树"""
    report = _svc(ctx).eject(output, profile)
    click.echo(
        f"eject 完成: {report.output} "
        f"(复制 {len(report.copied)}, 跳过 {len(report.skipped)}, 写入文件 {report.files_written})"
    )
    if report.non_reproducible:
        click.echo(f"注意: 参考文献 {report.bibliography} 来自网络快照，不可复现", err=True)
