from .pool import AaveV3Pool

__all__ = ["AaveV3Pool"]
