"""工具系统：工具目录 (registry)、执行器 (executor) 与各工具实现 (handlers)。"""
