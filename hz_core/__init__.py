"""
Hazel 订单履约与库存预留核心模块
"""

__version__ = "1.0.0"
