from .client import HttpAdvisor

__all__ = ["HttpAdvisor"]
