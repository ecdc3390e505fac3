"""核心层: 数据模型、配置、异常、清单、锁文件、构建配置与 eject"""
