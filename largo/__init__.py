"""largo - TeX 项目依赖解析、锁定与 eject"""

__version__ = "0.3.0"
