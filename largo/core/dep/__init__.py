"""依赖子系统: 来源定位、内容仓库、依赖图构建与版本求解"""
