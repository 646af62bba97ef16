"""领域层模型与协议。

包含：
- models: Message / Content / ProviderRequest / OrchestrationResult 等模型。
- conversation: 会话记录与 SessionStore 端口。
- exceptions: 业务异常类型定义。
"""
