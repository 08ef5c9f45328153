"""领域层模型与异常。

包含：
- models: Conversation / Message / PromptRequest / ActiveModel / ErrorState 等模型。
- exceptions: 业务异常类型定义。
"""
