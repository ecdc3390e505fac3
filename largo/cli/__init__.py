"""largo 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
业务异常在 group 层统一转换为错误提示和退出码:

    0  成功
    2  依赖图错误 / 版本冲突
    3  锁文件过期
    4  eject 未完成（可重新执行继续）
    1  其他错误
"""

from __future__ import annotations

import logging
import os
from typing import Any

import click

from largo import __version__
from largo.core.config import DEFAULT_CONFIG_PATH, init_config
from largo.core.exceptions import (
    GraphError,
    LargoError,
    PartialEject,
    ResolutionError,
    StaleLockfile,
)
from largo.utils.logger import setup_logging

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_CONFLICT = 2
EXIT_STALE = 3
EXIT_PARTIAL = 4


def exit_code_for(error: LargoError) -> int:
    if isinstance(error, (GraphError, ResolutionError)):
        return EXIT_CONFLICT
    if isinstance(error, StaleLockfile):
        return EXIT_STALE
    if isinstance(error, PartialEject):
        return EXIT_PARTIAL
    return EXIT_FAILURE


class LargoGroup(click.Group):
    """把 LargoError 转为错误输出 + 退出码"""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except LargoError as e:
            logger.debug("命令失败", exc_info=True)
            click.echo(f"错误 [{e.code}]: {e}", err=True)
            ctx.exit(exit_code_for(e))


def _svc(ctx: click.Context) -> Any:
    """按全局选项构造项目服务"""
    from largo.services.project_service import ProjectService, find_project_root

    obj = ctx.find_root().obj
    if obj.get("service") is None:
        cfg = obj["config"]
        root = obj["project"] or find_project_root(".", cfg.manifest_name)
        obj["service"] = ProjectService(root, cfg)
    return obj["service"]


@click.group(cls=LargoGroup)
@click.version_option(version=__version__)
@click.option(
    "--config", "config_path",
    default=lambda: os.getenv("LARGO_CONFIG", DEFAULT_CONFIG_PATH),
    help="用户配置文件路径（默认 $LARGO_CONFIG 或 ~/.largo/config.yml）",
)
@click.option(
    "-C", "--project", default=None,
    type=click.Path(file_okay=False, exists=True),
    help="项目根目录（默认从当前目录向上查找 largo.yml）",
)
@click.pass_context
def main(ctx: click.Context, config_path: str, project: str | None) -> None:
    """largo - TeX 项目依赖管理"""
    setup_logging(
        level=os.getenv("LARGO_LOG_LEVEL", "INFO"),
        json_output=os.getenv("LARGO_LOG_JSON", "") == "1",
    )
    ctx.obj = {"config": init_config(config_path), "project": project, "service": None}


# 注册各领域子命令
from largo.cli.cmd_deps import register as _reg_deps  # noqa: E402
from largo.cli.cmd_build import register as _reg_build  # noqa: E402

_reg_deps(main)
_reg_build(main)
