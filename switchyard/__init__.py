"""
Switchyard: provider switching & cross-provider continuity.

在多个 AI Provider 之间迁移进行中的会话，保留可用上下文、记录切换历史，并统一核算跨 Provider 的费用。
"""

__version__ = "0.1.0"
