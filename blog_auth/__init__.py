"""博客系统认证与会话子系统"""

__version__ = "0.1.0"
