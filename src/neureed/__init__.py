"""NeuReed - 个人 RSS 阅读服务."""

__version__ = "0.1.0"
